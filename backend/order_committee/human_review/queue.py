"""
Human Review Queue Management.

Priority-based queue for committee tasks that need a human.
"""

from collections import deque
from typing import Any, Deque, Iterable
from uuid import UUID

import structlog

from ..config.settings import settings
from ..models import (
    CommitteeResult,
    ConsensusLabel,
    EvidenceContract,
    ReviewItem,
    ReviewKind,
    ReviewStatus,
    utcnow,
)

logger = structlog.get_logger()


class ReviewQueue:
    """
    Priority-based queue for human review.

    Queue structure:
    - Fallback: tasks that lost quorum, human picks every column - highest priority
    - Critical: results with a flagged critical field - normal priority
    - Standard: results with other flagged fields - lowest priority

    Items are processed in priority order: fallback > critical > standard
    """

    def __init__(
        self,
        max_size: int | None = None,
        critical_fields: Iterable[str] | None = None,
    ):
        """
        Initialize review queue.

        Args:
            max_size: Maximum queue size (default from settings)
            critical_fields: Fields routed to the critical queue (default from settings)
        """
        self.max_size = max_size or settings.max_queue_size
        self.critical_fields = frozenset(
            settings.critical_fields if critical_fields is None else critical_fields
        )

        # Priority queues
        self.fallback: Deque[ReviewItem] = deque()
        self.critical: Deque[ReviewItem] = deque()
        self.standard: Deque[ReviewItem] = deque()

        # Index for quick lookup
        self._index: dict[UUID, ReviewItem] = {}

        # Statistics
        self._stats = {
            "total_added": 0,
            "total_processed": 0,
            "fallback_count": 0,
            "critical_count": 0,
            "standard_count": 0,
        }

    @property
    def size(self) -> int:
        """Total number of items in queue."""
        return len(self.fallback) + len(self.critical) + len(self.standard)

    @property
    def is_full(self) -> bool:
        """Check if queue is at capacity."""
        return self.size >= self.max_size

    def add_result(self, result: CommitteeResult) -> ReviewItem | None:
        """
        Queue a committee result that requires review.

        Args:
            result: Result of a committee run

        Returns:
            ReviewItem if added, None if the result needs no review or queue full
        """
        if not result.requires_human_review:
            return None
        if self.is_full:
            logger.warning("review_queue_full", size=self.size, max=self.max_size)
            return None

        fields = tuple(result.review_fields)
        reasons = tuple(
            sorted({r for f in fields for r in result.decisions[f].review_reasons})
        )
        item = ReviewItem(
            task_id=result.task_id,
            kind=ReviewKind.FIELD_REVIEW,
            fields=fields,
            reasons=reasons,
            result=result,
            priority=self._calculate_priority(result),
        )

        if any(f in self.critical_fields for f in fields):
            self.critical.append(item)
            self._stats["critical_count"] += 1
        else:
            self.standard.append(item)
            self._stats["standard_count"] += 1

        self._register(item)
        return item

    def add_fallback(self, contract: EvidenceContract, reason: str) -> ReviewItem | None:
        """
        Queue a whole task for human column selection.

        Args:
            contract: Evidence contract of the failed task
            reason: Why the committee could not decide

        Returns:
            ReviewItem if added, None if queue full
        """
        if self.is_full:
            logger.warning("review_queue_full", size=self.size, max=self.max_size)
            return None

        item = ReviewItem(
            task_id=contract.task_id,
            kind=ReviewKind.FALLBACK,
            fields=contract.target_fields,
            reasons=(reason,),
            contract=contract,
            priority=0,
        )
        self.fallback.append(item)
        self._stats["fallback_count"] += 1
        self._register(item)
        return item

    def _register(self, item: ReviewItem) -> None:
        self._index[item.id] = item
        self._stats["total_added"] += 1

        logger.info(
            "item_added_to_review_queue",
            item_id=str(item.id),
            task_id=item.task_id,
            kind=item.kind.value,
            fields=list(item.fields),
            queue_size=self.size,
        )

    def _calculate_priority(self, result: CommitteeResult) -> int:
        """
        Calculate priority score for queue ordering.

        Lower score = higher priority.

        Args:
            result: Committee result

        Returns:
            Priority score (0-1000)
        """
        base_priority = 500

        flagged = [result.decisions[f] for f in result.review_fields]
        if any(d.winner is None for d in flagged):
            base_priority = 200
        elif any(d.consensus == ConsensusLabel.SPLIT for d in flagged):
            base_priority = 300

        # More flagged fields = higher priority
        field_adjustment = min(len(flagged) * 20, 100)

        # Older = higher priority
        age_seconds = (utcnow() - result.created_at).total_seconds()
        age_adjustment = min(int(age_seconds / 3600), 100)

        return base_priority - field_adjustment - age_adjustment

    def get_next(self) -> ReviewItem | None:
        """
        Get next item for review (highest priority first).

        Returns:
            Next ReviewItem or None if queue empty
        """
        item = None

        # Check queues in priority order
        if self.fallback:
            item = self.fallback.popleft()
        elif self.critical:
            item = self.critical.popleft()
        elif self.standard:
            item = self.standard.popleft()

        if item:
            item.status = ReviewStatus.IN_PROGRESS
            self._stats["total_processed"] += 1

            logger.info(
                "item_retrieved_for_review",
                item_id=str(item.id),
                task_id=item.task_id,
                priority=item.priority,
            )

        return item

    def get_batch(self, size: int | None = None) -> list[ReviewItem]:
        """
        Get batch of items for review session.

        Args:
            size: Batch size (default from settings)

        Returns:
            List of ReviewItems
        """
        size = size or settings.review_batch_size
        items = []

        for _ in range(size):
            item = self.get_next()
            if item:
                items.append(item)
            else:
                break

        return items

    def get_by_id(self, item_id: UUID) -> ReviewItem | None:
        """Get item by ID."""
        return self._index.get(item_id)

    def resolve(self, item_id: UUID) -> bool:
        """
        Mark an item as resolved and drop it from the index.

        Returns:
            True if resolved, False if not found
        """
        item = self._index.pop(item_id, None)
        if item is None:
            return False
        item.status = ReviewStatus.RESOLVED
        logger.info("review_item_resolved", item_id=str(item_id), task_id=item.task_id)
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        return {
            "total_size": self.size,
            "max_size": self.max_size,
            "fallback_pending": len(self.fallback),
            "critical_pending": len(self.critical),
            "standard_pending": len(self.standard),
            **self._stats,
        }
