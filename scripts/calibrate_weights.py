#!/usr/bin/env python3
"""Recalibrate provider weights from labeled answers.

Labels are (task_id, field, provider_id, correct) rows in JSONL or CSV.
Golden cases (expected mapping plus recorded votes) can be used instead.

Usage:
    python scripts/calibrate_weights.py --labels data/labels.jsonl
    python scripts/calibrate_weights.py --labels data/labels.csv --dry-run
    python scripts/calibrate_weights.py --golden data/golden_cases.json
"""

import argparse
import csv
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from order_committee.config.settings import get_settings
from order_committee.consensus import (
    CalibrationReport,
    WeightCalibrator,
    WeightStore,
    labels_from_golden,
)
from order_committee.errors import ConfigurationError
from order_committee.logging_config import configure_logging
from order_committee.models import LabeledAnswer, ProviderVote
from order_committee.providers import load_provider_configs

TRUE_VALUES = {"1", "true", "yes", "y", "correct"}


def load_labels(path: Path) -> list[LabeledAnswer]:
    """Load labeled answers from a .jsonl or .csv file."""
    labels = []
    if path.suffix.lower() == ".csv":
        with open(path, "r", encoding="utf-8", newline="") as f:
            for row in csv.DictReader(f):
                labels.append(
                    LabeledAnswer(
                        task_id=row["task_id"],
                        field=row["field"],
                        provider_id=row["provider_id"],
                        correct=row["correct"].strip().lower() in TRUE_VALUES,
                    )
                )
        return labels

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                labels.append(LabeledAnswer.model_validate_json(line))
    return labels


def load_golden(path: Path) -> list[LabeledAnswer]:
    """
    Load golden cases and label their recorded votes.

    File format: [{"task_id": ..., "expected": {field: candidate_id | null},
    "votes": [ProviderVote, ...]}, ...]
    """
    with open(path, "r", encoding="utf-8") as f:
        cases = json.load(f)

    labels = []
    for case in cases:
        votes = [ProviderVote.model_validate(v) for v in case.get("votes", [])]
        labels.extend(labels_from_golden(case["task_id"], case["expected"], votes))
    return labels


def show_report(report: CalibrationReport) -> None:
    print(f"\n{'=' * 70}")
    print(f"CALIBRATION {report.snapshot.version}")
    print(f"{'=' * 70}")
    print(f"Labeled answers: {report.labeled_count}")
    print(f"Center accuracy: {report.center:.3f}\n")
    print(f"{'Provider':<28} {'Accuracy':>9} {'Samples':>8} {'Weight':>8}")
    for provider_id, stats in sorted(
        report.providers.items(), key=lambda kv: kv[1].weight, reverse=True
    ):
        accuracy = f"{stats.accuracy:.1%}" if stats.accuracy is not None else "n/a"
        print(f"{provider_id:<28} {accuracy:>9} {stats.total:>8} {stats.weight:>8.4f}")
    if report.providers_without_data:
        print(f"\nNo labeled data (mean weight): {', '.join(report.providers_without_data)}")


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Calibrate committee provider weights")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--labels", "-l", help="Labeled answers (.jsonl or .csv)")
    source.add_argument("--golden", "-g", help="Golden cases JSON with recorded votes")
    parser.add_argument(
        "--output", "-o", default=str(settings.weights_file), help="Weights file to write"
    )
    parser.add_argument(
        "--providers",
        nargs="+",
        help="Active provider ids (default: enabled providers in providers.yaml)",
    )
    parser.add_argument(
        "--steepness", type=float, default=settings.calibration_steepness
    )
    parser.add_argument("--dry-run", action="store_true", help="Print weights only")

    args = parser.parse_args()
    configure_logging(settings.log_level, settings.log_json)

    try:
        if args.labels:
            labels = load_labels(Path(args.labels))
        else:
            labels = load_golden(Path(args.golden))
    except (OSError, KeyError, ValueError, ValidationError) as e:
        print(f"Error: cannot read labeled data: {e}")
        sys.exit(1)

    if not labels:
        print("Error: no labeled answers found. Cannot calibrate.")
        sys.exit(1)

    try:
        providers = args.providers or [
            config.id
            for config in load_provider_configs(settings.providers_yaml_path)
            if config.enabled
        ]
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not providers:
        print("Error: no enabled providers found. Check your configuration.")
        sys.exit(1)

    calibrator = WeightCalibrator(
        steepness=args.steepness, center=settings.calibration_center
    )
    report = calibrator.calibrate(labels, providers)
    show_report(report)

    if args.dry_run:
        return

    store = WeightStore(current=report.snapshot, path=Path(args.output))
    path = store.save(
        report.snapshot,
        provider_stats=report.provider_stats(),
        labeled_count=report.labeled_count,
    )
    print(f"\nSaved to {path}")


if __name__ == "__main__":
    main()
