"""
Outbound notification queue.

The engine publishes one notification per finished task; the chat or
notification collaborator consumes them on its own schedule.
"""

import asyncio

import structlog

from ..models import CommitteeNotification, CommitteeResult, EvidenceContract

logger = structlog.get_logger()


class NotificationOutbox:
    """Unbounded asyncio queue of committee notifications."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[CommitteeNotification] = asyncio.Queue()

    def publish(self, notification: CommitteeNotification) -> None:
        """Enqueue a notification without waiting for a consumer."""
        self._queue.put_nowait(notification)
        logger.debug(
            "notification_published",
            task_id=notification.task_id,
            requires_human_review=notification.requires_human_review,
            pending=self._queue.qsize(),
        )

    def publish_result(
        self, result: CommitteeResult, result_reference: str | None = None
    ) -> CommitteeNotification:
        notification = CommitteeNotification(
            task_id=result.task_id,
            requires_human_review=result.requires_human_review,
            unresolved_fields=tuple(result.unresolved_fields),
            review_fields=tuple(result.review_fields),
            result_reference=result_reference,
        )
        self.publish(notification)
        return notification

    def publish_fallback(self, contract: EvidenceContract) -> CommitteeNotification:
        notification = CommitteeNotification(
            task_id=contract.task_id,
            requires_human_review=True,
            unresolved_fields=contract.target_fields,
            review_fields=contract.target_fields,
            fallback=True,
        )
        self.publish(notification)
        return notification

    async def get(self) -> CommitteeNotification:
        """Wait for the next notification."""
        notification = await self._queue.get()
        self._queue.task_done()
        return notification

    def drain(self) -> list[CommitteeNotification]:
        """Remove and return every pending notification."""
        items: list[CommitteeNotification] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
            self._queue.task_done()
        return items

    def __len__(self) -> int:
        return self._queue.qsize()
