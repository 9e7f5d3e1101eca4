#!/usr/bin/env python3
"""Run the committee on one evidence contract.

The input is either a full EvidenceContract JSON or a column sheet:
{"task_id": ..., "target_fields": [...], "columns": [{"header": ..., "values": [...]}]}

Usage:
    python scripts/run_committee.py --input data/contract.json
    python scripts/run_committee.py --input data/columns.json --output data/result.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from order_committee import CommitteeEngine, EvidenceContract, EvidenceContractBuilder
from order_committee.config.settings import get_settings
from order_committee.errors import CommitteeError
from order_committee.logging_config import configure_logging


def load_contract(path: Path) -> EvidenceContract:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if "columns" not in data:
        return EvidenceContract.model_validate(data)

    builder = EvidenceContractBuilder(data["task_id"], data["target_fields"])
    for column in data["columns"]:
        builder.add_column(column["header"], column.get("values", []))
    for field_name, candidate_ids in data.get("field_candidates", {}).items():
        builder.restrict_field(field_name, candidate_ids)
    if data.get("language"):
        builder.with_language(data["language"])
    return builder.build()


async def run(contract: EvidenceContract) -> dict:
    engine = CommitteeEngine.from_settings()
    result = await engine.run(contract)
    return result.model_dump(mode="json")


def main():
    parser = argparse.ArgumentParser(description="Run the mapping committee on one task")
    parser.add_argument("--input", "-i", required=True, help="Contract or column sheet JSON")
    parser.add_argument("--output", "-o", help="Write the result JSON here")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    try:
        contract = load_contract(Path(args.input))
    except (OSError, KeyError, ValueError, ValidationError) as e:
        print(f"Error: cannot load contract: {e}")
        sys.exit(1)

    try:
        result = asyncio.run(run(contract))
    except CommitteeError as e:
        print(f"Committee failed: {e}")
        sys.exit(2)

    print(f"\n{'=' * 70}")
    print(f"TASK {result['task_id']}")
    print(f"{'=' * 70}")
    for field_name, choice in result["final_mapping"].items():
        decision = result["decisions"][field_name]
        flag = " [REVIEW]" if decision["requires_human"] else ""
        print(f"  {field_name:<20} -> {choice:<12} ({decision['consensus']}){flag}")
    print(f"\nRequires human review: {result['requires_human_review']}")

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(result, f, ensure_ascii=False, indent=2)
        print(f"Saved to {args.output}")


if __name__ == "__main__":
    main()
