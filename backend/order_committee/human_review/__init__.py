"""
Human review routing and outbound notifications.
"""

from .outbox import NotificationOutbox
from .queue import ReviewQueue

__all__ = [
    "NotificationOutbox",
    "ReviewQueue",
]
