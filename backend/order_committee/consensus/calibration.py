"""
Provider weight calibration from labeled answers.

Turns per-provider accuracy on a golden dataset into a new normalized
weight snapshot. Runs out-of-band; live runs keep their loaded snapshot.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional, Union

import structlog

from ..config.settings import Settings
from ..models import CalibrationRecord, LabeledAnswer, ProviderVote, utcnow
from .weights import WeightSnapshot

logger = structlog.get_logger()

# Raw weights never drop to zero, however poor the accuracy
MIN_RAW_WEIGHT = 1e-6


@dataclass
class ProviderCalibration:
    """Calibration outcome for one provider."""

    provider_id: str
    correct: int = 0
    total: int = 0
    field_accuracy: dict[str, float] = field(default_factory=dict)
    raw_weight: float = 0.0
    weight: float = 0.0

    @property
    def has_data(self) -> bool:
        return self.total > 0

    @property
    def accuracy(self) -> Optional[float]:
        return self.correct / self.total if self.total else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "correct": self.correct,
            "total": self.total,
            "field_accuracy": dict(self.field_accuracy),
            "raw_weight": self.raw_weight,
            "weight": self.weight,
        }


@dataclass
class CalibrationReport:
    """Result of one calibration run."""

    snapshot: WeightSnapshot
    providers: dict[str, ProviderCalibration]
    center: float
    labeled_count: int
    calibrated_at: datetime = field(default_factory=utcnow)

    def provider_stats(self) -> dict[str, dict[str, Any]]:
        return {pid: p.to_dict() for pid, p in self.providers.items()}

    @property
    def providers_without_data(self) -> list[str]:
        return [pid for pid, p in self.providers.items() if not p.has_data]


class WeightCalibrator:
    """
    Maps provider accuracy to normalized weights.

    Formula: raw = 1 / (1 + e^(-k × (accuracy - center)))

    ``center`` defaults to the mean accuracy of the providers with data, so
    the curve separates the pool around its own average. A provider with no
    labeled data gets the mean raw weight of the others.
    """

    def __init__(
        self,
        steepness: float = 10.0,
        center: Union[Literal["mean"], float] = "mean",
    ):
        if steepness <= 0:
            raise ValueError("steepness must be positive")
        if center != "mean" and not 0.0 <= float(center) <= 1.0:
            raise ValueError("center must be 'mean' or a value in [0, 1]")
        self.steepness = steepness
        self.center = center

    @classmethod
    def from_settings(cls, settings: Settings) -> "WeightCalibrator":
        return cls(
            steepness=settings.calibration_steepness,
            center=settings.calibration_center,
        )

    def logistic(self, accuracy: float, center: float) -> float:
        raw = 1.0 / (1.0 + math.exp(-self.steepness * (accuracy - center)))
        return max(raw, MIN_RAW_WEIGHT)

    def calibrate(
        self,
        labels: Iterable[LabeledAnswer],
        active_providers: Iterable[str],
        version: Optional[str] = None,
    ) -> CalibrationReport:
        """
        Compute a new weight snapshot from labeled answers.

        Args:
            labels: Labeled (task, field, provider) outcomes
            active_providers: Providers that should receive a weight
            version: Snapshot version (defaults to a timestamp)

        Returns:
            CalibrationReport holding the new snapshot
        """
        active = list(dict.fromkeys(active_providers))
        if not active:
            raise ValueError("No active providers to calibrate")

        records: dict[tuple[str, str], CalibrationRecord] = {}
        labeled_count = 0
        ignored: set[str] = set()

        for label in labels:
            if label.provider_id not in active:
                ignored.add(label.provider_id)
                continue
            key = (label.provider_id, label.field)
            record = records.setdefault(
                key, CalibrationRecord(provider_id=label.provider_id, field=label.field)
            )
            record.total += 1
            if label.correct:
                record.correct += 1
            labeled_count += 1

        if ignored:
            logger.warning("calibration_labels_ignored", providers=sorted(ignored))

        providers = {pid: ProviderCalibration(provider_id=pid) for pid in active}
        for (pid, field_name), record in sorted(records.items()):
            stats = providers[pid]
            stats.correct += record.correct
            stats.total += record.total
            stats.field_accuracy[field_name] = record.accuracy

        accuracies = {pid: p.accuracy for pid, p in providers.items() if p.accuracy is not None}
        return self._build_report(providers, accuracies, labeled_count, version)

    def calibrate_accuracies(
        self,
        accuracies: Mapping[str, Optional[float]],
        version: Optional[str] = None,
    ) -> CalibrationReport:
        """
        Compute weights from precomputed per-provider accuracies.

        A provider mapped to None has no labeled data.
        """
        providers = {pid: ProviderCalibration(provider_id=pid) for pid in accuracies}
        known = {pid: acc for pid, acc in accuracies.items() if acc is not None}
        for pid, acc in known.items():
            if not 0.0 <= acc <= 1.0:
                raise ValueError(f"accuracy for {pid} must be in [0, 1], got {acc}")
        return self._build_report(providers, known, 0, version)

    def _build_report(
        self,
        providers: dict[str, ProviderCalibration],
        accuracies: Mapping[str, float],
        labeled_count: int,
        version: Optional[str],
    ) -> CalibrationReport:
        calibrated_at = utcnow()
        version = version or f"cal-{calibrated_at.strftime('%Y%m%dT%H%M%SZ')}"

        if accuracies:
            center = (
                math.fsum(accuracies.values()) / len(accuracies)
                if self.center == "mean"
                else float(self.center)
            )
            raw = {pid: self.logistic(acc, center) for pid, acc in accuracies.items()}
            default_raw = math.fsum(raw.values()) / len(raw)
        else:
            center = 0.5 if self.center == "mean" else float(self.center)
            raw = {}
            default_raw = 1.0
            logger.warning("calibration_without_labels", fallback="uniform")

        for pid in providers:
            raw.setdefault(pid, default_raw)

        snapshot = WeightSnapshot.from_raw(
            {pid: raw[pid] for pid in providers},
            version=version,
            calibrated_at=calibrated_at,
        )
        for pid, stats in providers.items():
            stats.raw_weight = raw[pid]
            stats.weight = snapshot.weights[pid]

        report = CalibrationReport(
            snapshot=snapshot,
            providers=providers,
            center=center,
            labeled_count=labeled_count,
            calibrated_at=calibrated_at,
        )

        logger.info(
            "weights_calibrated",
            version=version,
            center=round(center, 4),
            labeled=labeled_count,
            weights={pid: round(w, 4) for pid, w in snapshot.weights.items()},
            without_data=report.providers_without_data,
        )
        return report


def labels_from_golden(
    task_id: str,
    expected_mappings: Mapping[str, Optional[str]],
    votes: Iterable[ProviderVote],
) -> list[LabeledAnswer]:
    """
    Label recorded provider votes against a golden mapping.

    Args:
        task_id: Golden case id
        expected_mappings: Field -> expected candidate id (None for no column)
        votes: Votes recorded for the case; failed votes are skipped

    Returns:
        One LabeledAnswer per (provider, field) the provider answered
    """
    labels: list[LabeledAnswer] = []
    for vote in votes:
        if not vote.is_valid:
            continue
        for field_name, expected in expected_mappings.items():
            answer = vote.answers.get(field_name)
            if answer is None:
                continue
            labels.append(
                LabeledAnswer(
                    task_id=task_id,
                    field=field_name,
                    provider_id=vote.provider_id,
                    correct=answer.candidate_id == expected,
                )
            )
    return labels
