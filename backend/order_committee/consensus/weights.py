"""
Provider weight snapshots and the store that publishes them.

A snapshot is immutable. Calibration builds a new one and the store swaps
the reference, so a running aggregation never sees a half-updated table.
"""

import json
import math
import os
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

import structlog

from ..errors import ConfigurationError
from ..models import utcnow

logger = structlog.get_logger()

WEIGHT_FILE_VERSION = "1.0.0"


@dataclass(frozen=True)
class WeightSnapshot:
    """Immutable, normalized provider weights."""

    version: str
    weights: Mapping[str, float]
    calibrated_at: Optional[datetime] = None
    source: str = "default"

    def __post_init__(self) -> None:
        for provider_id, weight in self.weights.items():
            if not (0.0 < weight <= 1.0) or math.isnan(weight):
                raise ValueError(f"weight for {provider_id} must be in (0, 1], got {weight}")
        if self.weights and not math.isclose(math.fsum(self.weights.values()), 1.0, abs_tol=1e-9):
            raise ValueError("weights must sum to 1")
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))

    @classmethod
    def uniform(cls, provider_ids: Iterable[str], version: str = "uniform") -> "WeightSnapshot":
        ids = list(dict.fromkeys(provider_ids))
        if not ids:
            return cls(version=version, weights={})
        return cls(version=version, weights={pid: 1.0 / len(ids) for pid in ids})

    @classmethod
    def from_raw(
        cls,
        raw_weights: Mapping[str, float],
        version: str,
        calibrated_at: Optional[datetime] = None,
        source: str = "calibration",
    ) -> "WeightSnapshot":
        """Normalize positive raw weights so they sum to 1."""
        if any(w <= 0 or math.isnan(w) for w in raw_weights.values()):
            raise ValueError("raw weights must be positive")
        total = math.fsum(raw_weights.values())
        if not raw_weights or total == 0:
            return cls(version=version, weights={}, calibrated_at=calibrated_at, source=source)
        return cls(
            version=version,
            weights={pid: w / total for pid, w in raw_weights.items()},
            calibrated_at=calibrated_at,
            source=source,
        )

    @property
    def mean_weight(self) -> float:
        if not self.weights:
            return 1.0
        return math.fsum(self.weights.values()) / len(self.weights)

    def weight(self, provider_id: str) -> float:
        """Weight for a provider, or the snapshot mean if it has none."""
        return self.weights.get(provider_id, self.mean_weight)

    def for_committee(self, provider_ids: Iterable[str]) -> "WeightSnapshot":
        """
        Restrict the snapshot to one committee and renormalize it.

        Providers missing from the snapshot get its mean weight, so a new
        provider is never silently disabled.
        """
        ids = list(dict.fromkeys(provider_ids))
        raw = {pid: self.weight(pid) for pid in ids}
        return WeightSnapshot.from_raw(
            raw,
            version=self.version,
            calibrated_at=self.calibrated_at,
            source=self.source,
        )

    def as_dict(self) -> dict[str, float]:
        return dict(self.weights)


@dataclass
class WeightStore:
    """
    Holds the current weight snapshot.

    ``snapshot()`` is what a run loads once at start; ``publish()`` swaps
    the reference atomically. Readers never wait on calibration.
    """

    current: WeightSnapshot
    path: Optional[Path] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _mtime: Optional[float] = field(default=None, repr=False)

    def snapshot(self) -> WeightSnapshot:
        return self.current

    def publish(self, snapshot: WeightSnapshot) -> WeightSnapshot:
        """Make ``snapshot`` current and return the one it replaced."""
        with self._lock:
            previous = self.current
            self.current = snapshot

        logger.info(
            "weights_published",
            version=snapshot.version,
            previous_version=previous.version,
            weights={k: round(v, 4) for k, v in snapshot.weights.items()},
        )
        return previous

    @classmethod
    def load(cls, path: Path, provider_ids: Iterable[str]) -> "WeightStore":
        """
        Load weights from a calibration file.

        Falls back to uniform weights over ``provider_ids`` when the file is
        missing.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        provider_ids = list(provider_ids)
        if not path.exists():
            logger.info("weights_file_missing", path=str(path), fallback="uniform")
            return cls(current=WeightSnapshot.uniform(provider_ids), path=path)

        mtime = path.stat().st_mtime
        snapshot = cls.read_file(path)
        logger.info("weights_loaded", path=str(path), version=snapshot.version)
        return cls(current=snapshot, path=path, _mtime=mtime)

    @staticmethod
    def read_file(path: Path) -> WeightSnapshot:
        """
        Parse a weights file into a snapshot.

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if data.get("version") != WEIGHT_FILE_VERSION:
                logger.warning(
                    "weights_file_version_mismatch",
                    expected=WEIGHT_FILE_VERSION,
                    found=data.get("version"),
                )
            calibrated_at = data.get("calibrated_at")
            return WeightSnapshot.from_raw(
                data["weights"],
                version=data.get("snapshot_version") or calibrated_at or "file",
                calibrated_at=datetime.fromisoformat(calibrated_at) if calibrated_at else None,
                source=str(path),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigurationError(f"Cannot load weights from {path}: {e}") from e

    def reload(self) -> bool:
        """
        Publish the weights file if it changed since it was last read.

        A file that cannot be parsed leaves the current snapshot in place.

        Returns:
            True if a new snapshot was published
        """
        if self.path is None:
            return False
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        if self._mtime is not None and mtime <= self._mtime:
            return False

        try:
            snapshot = self.read_file(self.path)
        except ConfigurationError as e:
            logger.warning("weights_reload_failed", path=str(self.path), error=str(e))
            return False

        self._mtime = mtime
        current = self.current
        if snapshot.version == current.version and snapshot.as_dict() == current.as_dict():
            return False

        self.publish(snapshot)
        return True

    def save(
        self,
        snapshot: WeightSnapshot,
        provider_stats: Mapping[str, Any] | None = None,
        labeled_count: int = 0,
        path: Optional[Path] = None,
    ) -> Path:
        """
        Write a snapshot to the weights file.

        The file is written next to its target and renamed into place.
        """
        target = path or self.path
        if target is None:
            raise ConfigurationError("No weights file path configured")

        data = {
            "version": WEIGHT_FILE_VERSION,
            "snapshot_version": snapshot.version,
            "calibrated_at": (snapshot.calibrated_at or utcnow()).isoformat(),
            "labeled_answers": labeled_count,
            "weights": snapshot.as_dict(),
            "provider_stats": dict(provider_stats or {}),
        }

        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, target)

        logger.info("weights_saved", path=str(target), version=snapshot.version)
        return target
