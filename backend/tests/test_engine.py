import asyncio
import os

import pytest

from fakes import FailingProvider, FakeProvider, make_pool, mapping_answer, uniform_store
from order_committee.consensus.weights import WeightSnapshot, WeightStore
from order_committee.engine import CommitteeEngine
from order_committee.errors import InsufficientProviders, PoolExhausted
from order_committee.human_review import NotificationOutbox, ReviewQueue
from order_committee.models import CandidateChoice, ConsensusLabel, EvidenceContract, VoteError


def sku_and_description(sku_confidence: float, description_confidence: float) -> dict:
    return mapping_answer(
        {"sku": ("col-A", sku_confidence), "description": ("col-B", description_confidence)}
    )


def build_engine(providers, settings, audit_sink, weight_store=None, **kwargs) -> CommitteeEngine:
    pool = make_pool(*providers)
    return CommitteeEngine(
        pool=pool,
        weight_store=weight_store or uniform_store(*pool.all_ids()),
        audit_sink=audit_sink,
        settings=settings,
        **kwargs,
    )


async def test_unanimous_task_needs_no_review(contract, test_settings, audit_sink):
    providers = [
        FakeProvider("p1", answer=sku_and_description(0.95, 0.9)),
        FakeProvider("p2", answer=sku_and_description(0.92, 0.85)),
        FakeProvider("p3", answer=sku_and_description(0.90, 0.8)),
    ]
    engine = build_engine(providers, test_settings, audit_sink)

    result = await engine.run(contract)

    assert result.final_mapping == {"sku": "col-A", "description": "col-B"}
    assert result.decisions["sku"].consensus == ConsensusLabel.UNANIMOUS
    assert result.decisions["sku"].winner_score == pytest.approx(0.92333, abs=1e-4)
    assert result.requires_human_review is False
    assert set(result.selected_providers) == {"p1", "p2", "p3"}
    assert result.weights_version == "uniform"


async def test_one_timeout_still_reaches_quorum(contract, test_settings, audit_sink):
    providers = [
        FakeProvider("p1", answer=sku_and_description(0.90, 0.9)),
        FakeProvider("p2", answer=sku_and_description(0.85, 0.8)),
        FakeProvider("p3", answer=mapping_answer({"sku": ("col-C", 0.99)}), delay=5),
    ]
    engine = build_engine(providers, test_settings, audit_sink)

    result = await engine.run(contract)

    assert set(result.participating_providers) == {"p1", "p2"}
    assert result.decisions["sku"].consensus == ConsensusLabel.UNANIMOUS
    assert result.final_mapping["sku"] == "col-A"
    assert result.requires_human_review is False
    votes = audit_sink.get(contract.task_id, "votes")
    assert {v["provider_id"]: v["error"] for v in votes}["p3"] == VoteError.TIMEOUT.value


async def test_critical_field_disagreement_forces_review(test_settings, audit_sink):
    contract = EvidenceContract(
        task_id="task-critical",
        candidates=(
            CandidateChoice(id="col-A", label="Client"),
            CandidateChoice(id="col-B", label="Ship To"),
        ),
        target_fields=("customer",),
    )
    providers = [
        FakeProvider("p1", answer=mapping_answer({"customer": ("col-A", 0.95)})),
        FakeProvider("p2", answer=mapping_answer({"customer": ("col-A", 0.95)})),
        FakeProvider("p3", answer=mapping_answer({"customer": ("col-B", 0.95)})),
    ]
    review_queue = ReviewQueue(critical_fields=test_settings.critical_fields)
    engine = build_engine(providers, test_settings, audit_sink, review_queue=review_queue)

    result = await engine.run(contract)

    assert result.decisions["customer"].consensus == ConsensusLabel.MAJORITY
    assert result.final_mapping["customer"] == "col-A"
    assert result.requires_human_review is True
    assert review_queue.get_stats()["critical_pending"] == 1


async def test_three_way_split_is_unresolved(contract, test_settings, audit_sink):
    providers = [
        FakeProvider(pid, answer=mapping_answer({"description": (cid, 0.9)}))
        for pid, cid in (("p1", "col-A"), ("p2", "col-B"), ("p3", "col-C"))
    ]
    engine = build_engine(providers, test_settings, audit_sink)

    result = await engine.run(contract)

    assert result.decisions["description"].consensus == ConsensusLabel.NONE
    assert result.final_mapping["description"] == "unresolved"
    assert result.final_mapping["sku"] == "unresolved"
    assert result.unresolved_fields == ["sku", "description"]
    assert result.requires_human_review is True


async def test_quorum_failure_archives_votes_and_falls_back(contract, test_settings, audit_sink):
    providers = [
        FakeProvider("p1", answer=mapping_answer({"sku": ("col-A", 0.9)})),
        FailingProvider("p2"),
        FakeProvider("p3", answer=mapping_answer({"sku": ("col-Z", 0.9)})),
    ]
    outbox = NotificationOutbox()
    review_queue = ReviewQueue(critical_fields=[])
    engine = build_engine(
        providers, test_settings, audit_sink, outbox=outbox, review_queue=review_queue
    )

    with pytest.raises(InsufficientProviders) as exc_info:
        await engine.run(contract)

    error = exc_info.value
    assert error.valid == 1
    assert error.audit.votes == "memory://task-001/votes"
    assert audit_sink.get("task-001", "result") is None
    archived = {v["provider_id"]: v for v in audit_sink.get("task-001", "votes")}
    assert archived["p3"]["error"] == "invalid_output"
    assert archived["p3"]["raw_payload"]["mappings"][0]["candidate_id"] == "col-Z"
    assert review_queue.get_stats()["fallback_pending"] == 1
    assert outbox.drain()[0].fallback is True


async def test_pool_exhausted_before_any_call(contract, test_settings, audit_sink):
    providers = [FakeProvider("p1"), FakeProvider("p2", enabled=False)]
    engine = build_engine(providers, test_settings, audit_sink)

    with pytest.raises(PoolExhausted):
        await engine.run(contract)

    assert providers[0].calls == 0
    assert audit_sink.artifacts == {}


async def test_result_is_archived_and_notified(contract, test_settings, audit_sink):
    answer = mapping_answer({"sku": ("col-A", 0.9), "description": ("col-B", 0.9)})
    outbox = NotificationOutbox()
    engine = build_engine(
        [FakeProvider(f"p{i}", answer=answer) for i in range(3)],
        test_settings,
        audit_sink,
        outbox=outbox,
    )

    result = await engine.run(contract)

    assert result.audit.evidence == "memory://task-001/evidence"
    archived = audit_sink.get("task-001", "result")
    assert archived["result"]["final_mapping"] == {"sku": "col-A", "description": "col-B"}
    assert archived["voting"]["algorithm"] == "weighted_voting"
    notification = outbox.drain()[0]
    assert notification.result_reference == "memory://task-001/result"
    assert notification.requires_human_review is False


async def test_weights_are_fixed_for_the_whole_run(contract, test_settings, audit_sink):
    store = WeightStore(
        current=WeightSnapshot.from_raw({"p1": 0.6, "p2": 0.2, "p3": 0.2}, version="before")
    )
    answer = mapping_answer({"sku": ("col-A", 1.0)})
    providers = [FakeProvider(f"p{i}", answer=answer, delay=0.05) for i in (1, 2, 3)]
    engine = build_engine(providers, test_settings, audit_sink, weight_store=store)

    run = asyncio.create_task(engine.run(contract))
    await asyncio.sleep(0.01)
    store.publish(WeightSnapshot.from_raw({"p1": 0.1, "p2": 0.1, "p3": 0.8}, version="after"))
    result = await run

    assert result.weights_version == "before"
    assert store.snapshot().version == "after"


async def test_concurrent_tasks_share_the_engine(contract, test_settings, audit_sink):
    answer = mapping_answer({"sku": ("col-A", 0.9), "description": ("col-B", 0.9)})
    engine = build_engine(
        [FakeProvider(f"p{i}", answer=answer, delay=0.02) for i in range(4)],
        test_settings,
        audit_sink,
    )
    contracts = [contract.model_copy(update={"task_id": f"task-{n}"}) for n in range(5)]

    results = await asyncio.gather(*(engine.run(c) for c in contracts))

    assert [r.task_id for r in results] == [f"task-{n}" for n in range(5)]
    assert all(r.final_mapping["sku"] == "col-A" for r in results)


async def test_next_run_uses_recalibrated_weights_file(
    tmp_path, contract, test_settings, audit_sink
):
    path = tmp_path / "weights.json"
    first = WeightSnapshot.from_raw({"p1": 0.4, "p2": 0.3, "p3": 0.3}, version="cal-1")
    WeightStore(current=first, path=path).save(first)
    store = WeightStore.load(path, ["p1", "p2", "p3"])
    answer = mapping_answer({"sku": ("col-A", 0.9), "description": ("col-B", 0.9)})
    engine = build_engine(
        [FakeProvider(f"p{i}", answer=answer) for i in (1, 2, 3)],
        test_settings,
        audit_sink,
        weight_store=store,
    )
    before = await engine.run(contract)

    second = WeightSnapshot.from_raw({"p1": 0.2, "p2": 0.2, "p3": 0.6}, version="cal-2")
    WeightStore(current=second, path=path).save(second)
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))
    after = await engine.run(contract.model_copy(update={"task_id": "task-002"}))

    assert before.weights_version == "cal-1"
    assert after.weights_version == "cal-2"
