"""
Prompt construction for mapping review requests.

The request carries only the evidence contract's fields plus the
explicit constraint text; providers never see the source document.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
import yaml

from .config.settings import settings
from .models import NO_CANDIDATE, EvidenceContract

logger = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = (
    "You map spreadsheet columns to canonical order fields. Only choose from the "
    "candidate ids given for each field, choose at most one per field, answer "
    f"\"{NO_CANDIDATE}\" when nothing fits, and return strict JSON with keys "
    "mappings, overall_confidence and issues."
)
DEFAULT_TASK_PROMPT = (
    "For each target field, select the best matching candidate id or "
    f"\"{NO_CANDIDATE}\". Return valid JSON only."
)


@lru_cache
def load_prompts(path: Path | None = None) -> dict[str, Any]:
    """Load prompts from YAML configuration."""
    prompts_path = path or settings.prompts_yaml_path
    try:
        with open(prompts_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("failed_to_load_prompts", path=str(prompts_path), error=str(e))
        return {}


def get_system_prompt() -> str:
    section = load_prompts().get("mapping_review", {})
    return section.get("system") or DEFAULT_SYSTEM_PROMPT


def build_user_prompt(contract: EvidenceContract) -> str:
    """Render the evidence contract as the user message."""
    section = load_prompts().get("mapping_review", {})
    task_text = section.get("task") or DEFAULT_TASK_PROMPT

    lines = [
        "# Column Mapping Task",
        "",
        f"**Task ID**: {contract.task_id}",
        f"**Language**: {contract.language or 'unknown'}",
        "",
        "## Constraints",
    ]
    lines.extend(f"- {c}" for c in contract.constraints)

    lines += ["", "## Candidates"]
    for candidate in contract.candidates:
        lines.append("")
        lines.append(f"### {candidate.id}")
        lines.append(f"**Header**: {candidate.label}")
        if candidate.samples:
            lines.append("**Sample Values**:")
            lines.extend(f"  - {v}" for v in candidate.samples)

    lines += ["", "## Target Fields"]
    for field_name in contract.target_fields:
        allowed = sorted(contract.allowed_candidates(field_name))
        lines.append(f"- {field_name}: choose from {', '.join(allowed)} or {NO_CANDIDATE}")

    lines += ["", "## Your Task", task_text.strip()]
    return "\n".join(lines)


def build_messages(contract: EvidenceContract) -> list[dict[str, str]]:
    """Helper to build standard message format."""
    return [
        {"role": "system", "content": get_system_prompt()},
        {"role": "user", "content": build_user_prompt(contract)},
    ]
