"""
Audit sink for committee artifacts.

The engine archives three artifacts per task (evidence, votes, result)
and keeps only the reference string each write returns.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel

from .errors import AuditSinkError

logger = structlog.get_logger()

EVIDENCE_ARTIFACT = "evidence"
VOTES_ARTIFACT = "votes"
RESULT_ARTIFACT = "result"


def to_jsonable(payload: Any) -> Any:
    """Convert models (and lists of models) to JSON-compatible data."""
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, (list, tuple)):
        return [to_jsonable(item) for item in payload]
    if isinstance(payload, dict):
        return {str(k): to_jsonable(v) for k, v in payload.items()}
    return payload


class AuditSink(ABC):
    """
    Durable store for committee artifacts.

    Writing the same artifact twice must leave the same stored content.
    """

    @abstractmethod
    async def write(self, task_id: str, artifact: str, payload: Any) -> str:
        """
        Archive one artifact.

        Args:
            task_id: Task the artifact belongs to
            artifact: Artifact name (evidence, votes, result)
            payload: Model or JSON-compatible data

        Returns:
            Reference string for the stored artifact

        Raises:
            AuditSinkError: If the artifact could not be stored
        """
        pass


class FileAuditSink(AuditSink):
    """Writes artifacts to ``<root>/<task_id>/<artifact>.json``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, task_id: str, artifact: str) -> Path:
        safe_task = task_id.replace("/", "_").replace("\\", "_")
        return self.root / safe_task / f"{artifact}.json"

    async def write(self, task_id: str, artifact: str, payload: Any) -> str:
        path = self.path_for(task_id, artifact)
        try:
            content = json.dumps(to_jsonable(payload), indent=2, ensure_ascii=False, sort_keys=True)
            await asyncio.to_thread(self._write_file, path, content)
        except (OSError, TypeError, ValueError) as e:
            logger.error("audit_write_failed", artifact=artifact, path=str(path), error=str(e))
            raise AuditSinkError(task_id, artifact, e) from e

        logger.debug("audit_artifact_written", artifact=artifact, path=str(path))
        return path.resolve().as_uri()

    @staticmethod
    def _write_file(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(path)


class InMemoryAuditSink(AuditSink):
    """Keeps artifacts in a dict; for tests and local runs."""

    def __init__(self) -> None:
        self.artifacts: dict[str, Any] = {}

    async def write(self, task_id: str, artifact: str, payload: Any) -> str:
        reference = f"memory://{task_id}/{artifact}"
        self.artifacts[reference] = to_jsonable(payload)
        return reference

    def get(self, task_id: str, artifact: str) -> Any:
        return self.artifacts.get(f"memory://{task_id}/{artifact}")
