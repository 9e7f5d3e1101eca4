import json
import math
import os
import threading

import pytest

from fakes import make_vote
from order_committee.consensus.calibration import WeightCalibrator, labels_from_golden
from order_committee.consensus.weights import WeightSnapshot, WeightStore
from order_committee.errors import ConfigurationError
from order_committee.models import LabeledAnswer, ProviderVote, VoteError


def labels_for(provider_id: str, correct: int, total: int, field_name: str = "sku"):
    return [
        LabeledAnswer(
            task_id=f"case-{i}", field=field_name, provider_id=provider_id, correct=i < correct
        )
        for i in range(total)
    ]


# ===========================================
# Calibration
# ===========================================


def test_calibrated_weights_preserve_accuracy_order():
    labels = labels_for("A", 92, 100) + labels_for("B", 88, 100) + labels_for("C", 85, 100)

    report = WeightCalibrator().calibrate(labels, ["A", "B", "C"])
    weights = report.snapshot.weights

    assert weights["A"] > weights["B"] > weights["C"]
    assert math.fsum(weights.values()) == pytest.approx(1.0, abs=1e-9)
    assert report.providers["A"].accuracy == pytest.approx(0.92)
    assert report.labeled_count == 300


def test_logistic_curve_separates_more_than_linear():
    report = WeightCalibrator().calibrate_accuracies({"A": 0.92, "B": 0.88, "C": 0.85})
    weights = report.snapshot.weights

    linear_ratio = 0.92 / 0.85
    assert weights["A"] / weights["C"] > linear_ratio


def test_provider_without_data_gets_mean_weight():
    labels = labels_for("A", 9, 10) + labels_for("B", 6, 10)

    report = WeightCalibrator().calibrate(labels, ["A", "B", "new"])

    raw = {pid: p.raw_weight for pid, p in report.providers.items()}
    assert raw["new"] == pytest.approx((raw["A"] + raw["B"]) / 2)
    assert report.snapshot.weights["new"] > 0
    assert report.providers_without_data == ["new"]


def test_no_labels_gives_uniform_weights():
    report = WeightCalibrator().calibrate([], ["A", "B", "C", "D"])

    assert all(w == pytest.approx(0.25) for w in report.snapshot.weights.values())


def test_weak_provider_keeps_positive_weight():
    report = WeightCalibrator(steepness=50.0).calibrate_accuracies({"A": 1.0, "B": 0.0})

    assert report.snapshot.weights["B"] > 0
    assert math.fsum(report.snapshot.weights.values()) == pytest.approx(1.0, abs=1e-9)


def test_labels_for_inactive_providers_are_ignored():
    labels = labels_for("A", 8, 10) + labels_for("retired", 10, 10)

    report = WeightCalibrator().calibrate(labels, ["A", "B"])

    assert set(report.snapshot.weights) == {"A", "B"}


def test_per_field_accuracy_is_reported():
    labels = labels_for("A", 10, 10, "sku") + labels_for("A", 5, 10, "customer")

    report = WeightCalibrator().calibrate(labels, ["A"])

    assert report.providers["A"].field_accuracy == {"customer": 0.5, "sku": 1.0}
    assert report.providers["A"].accuracy == pytest.approx(0.75)


def test_fixed_center_is_used():
    report = WeightCalibrator(center=0.5).calibrate_accuracies({"A": 0.9, "B": 0.6})

    assert report.center == 0.5


def test_labels_from_golden_case():
    votes = [
        make_vote("p1", {"sku": ("col-A", 0.9), "gtin": (None, 0.8)}),
        make_vote("p2", {"sku": ("col-B", 0.7)}),
        ProviderVote(provider_id="p3", error=VoteError.TIMEOUT),
    ]

    labels = labels_from_golden("golden-1", {"sku": "col-A", "gtin": None}, votes)

    outcomes = {(lbl.provider_id, lbl.field): lbl.correct for lbl in labels}
    assert outcomes == {
        ("p1", "sku"): True,
        ("p1", "gtin"): True,
        ("p2", "sku"): False,
    }


# ===========================================
# Weight snapshots and store
# ===========================================


def test_snapshot_is_read_only():
    snapshot = WeightSnapshot.uniform(["p1", "p2"])

    with pytest.raises(TypeError):
        snapshot.weights["p1"] = 0.9  # type: ignore[index]


def test_committee_weights_are_renormalized():
    snapshot = WeightSnapshot.from_raw({"p1": 0.5, "p2": 0.3, "p3": 0.2}, version="v1")

    committee = snapshot.for_committee(["p1", "p3"])

    assert committee.weights["p1"] == pytest.approx(0.5 / 0.7)
    assert math.fsum(committee.weights.values()) == pytest.approx(1.0, abs=1e-9)
    assert committee.version == "v1"


def test_committee_member_missing_from_snapshot_gets_mean_weight():
    snapshot = WeightSnapshot.from_raw({"p1": 0.6, "p2": 0.4}, version="v1")

    committee = snapshot.for_committee(["p1", "p2", "p3"])

    assert committee.weights["p3"] == pytest.approx(0.5 / 1.5)


def test_unnormalized_snapshot_rejected():
    with pytest.raises(ValueError):
        WeightSnapshot(version="bad", weights={"p1": 0.5, "p2": 0.2})


def test_publish_swaps_snapshot_without_touching_old_one():
    store = WeightStore(current=WeightSnapshot.uniform(["p1", "p2"], version="old"))
    in_flight = store.snapshot()

    previous = store.publish(WeightSnapshot.from_raw({"p1": 3, "p2": 1}, version="new"))

    assert previous is in_flight
    assert in_flight.weights["p1"] == pytest.approx(0.5)
    assert store.snapshot().version == "new"


def test_concurrent_publish_never_exposes_partial_snapshot():
    store = WeightStore(current=WeightSnapshot.uniform(["p1", "p2"], version="v0"))
    seen = []

    def writer(n: int) -> None:
        for i in range(50):
            store.publish(WeightSnapshot.from_raw({"p1": n + 1, "p2": i + 1}, version=f"{n}-{i}"))

    def reader() -> None:
        for _ in range(200):
            seen.append(math.fsum(store.snapshot().weights.values()))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(3)]
    threads += [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(total == pytest.approx(1.0, abs=1e-9) for total in seen)


def test_weights_file_round_trip(tmp_path):
    path = tmp_path / "weights.json"
    report = WeightCalibrator().calibrate_accuracies({"A": 0.92, "B": 0.88}, version="cal-1")
    store = WeightStore(current=report.snapshot, path=path)

    store.save(report.snapshot, provider_stats=report.provider_stats(), labeled_count=12)
    loaded = WeightStore.load(path, ["A", "B"])

    assert loaded.snapshot().version == "cal-1"
    assert loaded.snapshot().weights["A"] == pytest.approx(report.snapshot.weights["A"])
    data = json.loads(path.read_text())
    assert data["version"] == "1.0.0"
    assert data["labeled_answers"] == 12
    assert "A" in data["provider_stats"]


def test_missing_weights_file_falls_back_to_uniform(tmp_path):
    store = WeightStore.load(tmp_path / "absent.json", ["p1", "p2", "p3", "p4"])

    assert store.snapshot().weights == {"p1": 0.25, "p2": 0.25, "p3": 0.25, "p4": 0.25}


def test_corrupt_weights_file_raises(tmp_path):
    path = tmp_path / "weights.json"
    path.write_text("{not json")

    with pytest.raises(ConfigurationError):
        WeightStore.load(path, ["p1"])


def test_reload_publishes_recalibrated_file(tmp_path):
    path = tmp_path / "weights.json"
    store = WeightStore.load(path, ["A", "B"])
    writer = WeightStore(current=store.snapshot(), path=path)
    report = WeightCalibrator().calibrate_accuracies({"A": 0.95, "B": 0.7}, version="cal-2")

    writer.save(report.snapshot)

    assert store.reload() is True
    assert store.snapshot().version == "cal-2"
    assert store.reload() is False


def test_reload_ignores_unchanged_version(tmp_path):
    path = tmp_path / "weights.json"
    snapshot = WeightSnapshot.from_raw({"A": 0.6, "B": 0.4}, version="cal-1")
    WeightStore(current=snapshot, path=path).save(snapshot)
    store = WeightStore.load(path, ["A", "B"])
    before = store.snapshot()

    WeightStore(current=snapshot, path=path).save(snapshot)
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))

    assert store.reload() is False
    assert store.snapshot() is before


def test_reload_keeps_current_weights_on_corrupt_file(tmp_path):
    path = tmp_path / "weights.json"
    store = WeightStore.load(path, ["A", "B"])

    path.write_text("{not json")

    assert store.reload() is False
    assert store.snapshot().version == "uniform"
