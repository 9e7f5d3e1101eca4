import pytest

from order_committee.human_review import NotificationOutbox, ReviewQueue
from order_committee.models import (
    CommitteeResult,
    ConsensusLabel,
    FieldDecision,
    ReviewKind,
    ReviewStatus,
)


def result_with(
    task_id: str, flagged: dict[str, tuple[ConsensusLabel, str | None]]
) -> CommitteeResult:
    decisions = {
        "description": FieldDecision(
            field="description",
            winner="col-B",
            consensus=ConsensusLabel.UNANIMOUS,
            requires_human=False,
        )
    }
    for field_name, (label, winner) in flagged.items():
        decisions[field_name] = FieldDecision(
            field=field_name,
            winner=winner,
            consensus=label,
            requires_human=True,
            review_reasons=("consensus_split",),
        )
    return CommitteeResult(
        task_id=task_id,
        final_mapping={f: d.resolved for f, d in decisions.items()},
        decisions=decisions,
        selected_providers=("p1", "p2", "p3"),
        participating_providers=("p1", "p2", "p3"),
        requires_human_review=bool(flagged),
        weights_version="v1",
    )


@pytest.fixture
def queue() -> ReviewQueue:
    return ReviewQueue(max_size=10, critical_fields=["customer", "sku", "gtin"])


def test_fallback_before_critical_before_standard(queue, contract):
    queue.add_result(result_with("standard", {"notes": (ConsensusLabel.SPLIT, "col-C")}))
    queue.add_result(result_with("critical", {"sku": (ConsensusLabel.MAJORITY, "col-A")}))
    queue.add_fallback(contract, "quorum lost")

    order = [item.task_id for item in queue.get_batch(5)]

    assert order == ["task-001", "critical", "standard"]


def test_result_without_review_is_not_queued(queue):
    assert queue.add_result(result_with("clean", {})) is None
    assert queue.size == 0


def test_fallback_item_carries_contract(queue, contract):
    item = queue.add_fallback(contract, "Insufficient valid provider votes")

    assert item.kind == ReviewKind.FALLBACK
    assert item.contract == contract
    assert item.fields == ("sku", "description")


def test_field_review_item_lists_flagged_fields(queue):
    item = queue.add_result(result_with("t", {"customer": (ConsensusLabel.NONE, None)}))

    assert item.fields == ("customer",)
    assert item.reasons == ("consensus_split",)
    assert item.priority < 500


def test_full_queue_rejects_items(contract):
    queue = ReviewQueue(max_size=1, critical_fields=[])
    queue.add_fallback(contract, "first")

    assert queue.add_fallback(contract, "second") is None


def test_get_next_marks_in_progress_and_resolve(queue, contract):
    queue.add_fallback(contract, "quorum lost")

    item = queue.get_next()

    assert item.status == ReviewStatus.IN_PROGRESS
    assert queue.resolve(item.id) is True
    assert item.status == ReviewStatus.RESOLVED
    assert queue.get_by_id(item.id) is None
    assert queue.get_stats()["total_processed"] == 1


async def test_outbox_publishes_without_consumer():
    outbox = NotificationOutbox()
    result = result_with("t-1", {"gtin": (ConsensusLabel.NONE, None)})

    outbox.publish_result(result, result_reference="memory://t-1/result")

    assert len(outbox) == 1
    notification = await outbox.get()
    assert notification.task_id == "t-1"
    assert notification.requires_human_review is True
    assert notification.unresolved_fields == ("gtin",)
    assert notification.result_reference == "memory://t-1/result"


def test_outbox_fallback_and_drain(contract):
    outbox = NotificationOutbox()

    outbox.publish_fallback(contract)
    drained = outbox.drain()

    assert len(drained) == 1
    assert drained[0].fallback is True
    assert len(outbox) == 0
