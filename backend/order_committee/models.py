"""
Data models for the Committee Engine.

This module defines the shared data types passed between the selector,
dispatcher, validator, aggregator, classifier and audit sink.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

NO_CANDIDATE = "none"
UNRESOLVED = "unresolved"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================
# Enums
# ===========================================


class ConsensusLabel(str, Enum):
    """How strongly the committee agreed on one field."""

    UNANIMOUS = "unanimous"
    MAJORITY = "majority"
    SPLIT = "split"
    NONE = "none"


class VoteError(str, Enum):
    """Why a provider vote was excluded from voting."""

    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
    INVALID_OUTPUT = "invalid_output"


class IssueSeverity(str, Enum):
    """Severity of an issue flagged by a provider."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# ===========================================
# Evidence Contract
# ===========================================


class CandidateChoice(BaseModel):
    """One column a provider may choose for a field."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable candidate id")
    label: str = Field(..., description="Header text shown to providers")
    samples: tuple[str, ...] = Field(
        default=(), description="Small fixed number of sample values"
    )


DEFAULT_CONSTRAINTS: tuple[str, ...] = (
    "Must choose only from the provided candidate ids",
    "Must not invent new candidates or values",
    "Must return at most one candidate per field, or \"none\" if no candidate fits",
)


class EvidenceContract(BaseModel):
    """Bounded description of one column-mapping decision task."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(..., min_length=1)
    candidates: tuple[CandidateChoice, ...] = Field(..., min_length=1)
    target_fields: tuple[str, ...] = Field(..., min_length=1)
    field_candidates: dict[str, tuple[str, ...]] = Field(
        default_factory=dict,
        description="Optional per-field restriction of allowed candidate ids",
    )
    constraints: tuple[str, ...] = DEFAULT_CONSTRAINTS
    language: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_candidates(self) -> "EvidenceContract":
        ids = [c.id for c in self.candidates]
        if len(set(ids)) != len(ids):
            raise ValueError("candidate ids must be unique")
        if NO_CANDIDATE in ids:
            raise ValueError(f"'{NO_CANDIDATE}' is reserved and cannot be a candidate id")
        if len(set(self.target_fields)) != len(self.target_fields):
            raise ValueError("target fields must be unique")

        known = set(ids)
        for field_name, allowed in self.field_candidates.items():
            if field_name not in self.target_fields:
                raise ValueError(f"restriction for unknown field '{field_name}'")
            unknown = set(allowed) - known
            if unknown:
                raise ValueError(
                    f"field '{field_name}' restricted to unknown candidates: "
                    f"{sorted(unknown)}"
                )
        return self

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        return tuple(c.id for c in self.candidates)

    def allowed_candidates(self, field_name: str) -> frozenset[str]:
        """Candidate ids a provider may choose for ``field_name``."""
        if field_name in self.field_candidates:
            return frozenset(self.field_candidates[field_name])
        return frozenset(self.candidate_ids)


# ===========================================
# Provider Votes
# ===========================================


class FieldAnswer(BaseModel):
    """A provider's answer for a single target field."""

    model_config = ConfigDict(frozen=True)

    candidate_id: Optional[str] = Field(
        ..., description="Chosen candidate id, or None for no suitable candidate"
    )
    confidence: float = Field(..., ge=0.0, le=1.0)
    rationale: Optional[str] = None

    @property
    def choice(self) -> str:
        return self.candidate_id if self.candidate_id is not None else NO_CANDIDATE


class ProviderIssue(BaseModel):
    """Issue flagged by a provider, kept for the audit trail."""

    model_config = ConfigDict(frozen=True)

    code: str
    severity: IssueSeverity
    evidence: str


class ProviderVote(BaseModel):
    """Result of calling one provider for one task.

    Invalid votes are excluded from voting but kept for audit.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str
    answers: dict[str, FieldAnswer] = Field(default_factory=dict)
    overall_confidence: Optional[float] = None
    issues: tuple[ProviderIssue, ...] = ()
    latency_ms: float = Field(default=0.0, ge=0.0)
    error: Optional[VoteError] = None
    error_detail: Optional[str] = None
    raw_payload: Any = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


# ===========================================
# Decisions
# ===========================================


class FieldDecision(BaseModel):
    """Aggregated decision for one target field."""

    model_config = ConfigDict(frozen=True)

    field: str
    scores: dict[str, float] = Field(default_factory=dict)
    choices: dict[str, str] = Field(
        default_factory=dict, description="provider id -> chosen candidate id"
    )
    winner: Optional[str] = None
    winner_score: float = 0.0
    margin: float = 0.0
    average_confidence: float = 0.0
    tie_broken: bool = False
    consensus: ConsensusLabel = ConsensusLabel.NONE
    requires_human: bool = True
    review_reasons: tuple[str, ...] = ()
    notes: tuple[str, ...] = Field(default=(), description="Observations that do not force review")

    @property
    def resolved(self) -> str:
        return self.winner if self.winner is not None else UNRESOLVED


class AuditReferences(BaseModel):
    """Where the artifacts of one run were archived."""

    model_config = ConfigDict(frozen=True)

    evidence: Optional[str] = None
    votes: Optional[str] = None


class CommitteeResult(BaseModel):
    """Terminal artifact of one committee run."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    final_mapping: dict[str, str]
    decisions: dict[str, FieldDecision]
    selected_providers: tuple[str, ...]
    participating_providers: tuple[str, ...]
    requires_human_review: bool
    weights_version: str
    audit: AuditReferences = Field(default_factory=AuditReferences)
    execution_time_ms: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def unresolved_fields(self) -> list[str]:
        return [f for f, choice in self.final_mapping.items() if choice == UNRESOLVED]

    @property
    def review_fields(self) -> list[str]:
        return [f for f, d in self.decisions.items() if d.requires_human]


# ===========================================
# Calibration
# ===========================================


class LabeledAnswer(BaseModel):
    """One labeled (task, field, provider) outcome from a golden dataset."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    field: str
    provider_id: str
    correct: bool


class CalibrationRecord(BaseModel):
    """Correct and total counts for one (provider, field) pair."""

    provider_id: str
    field: str
    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


# ===========================================
# Human Review Models
# ===========================================


class ReviewStatus(str, Enum):
    """Human review status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class ReviewKind(str, Enum):
    """What the reviewer is asked to do."""

    FIELD_REVIEW = "field_review"
    FALLBACK = "fallback"


class ReviewItem(BaseModel):
    """An item in the human review queue."""

    id: UUID = Field(default_factory=uuid4)
    task_id: str
    kind: ReviewKind
    fields: tuple[str, ...] = ()
    reasons: tuple[str, ...] = ()
    contract: Optional[EvidenceContract] = None
    result: Optional[CommitteeResult] = None
    priority: int = Field(default=0)
    status: ReviewStatus = Field(default=ReviewStatus.PENDING)
    assigned_to: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class CommitteeNotification(BaseModel):
    """Outbound message emitted after a committee run."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    requires_human_review: bool
    unresolved_fields: tuple[str, ...] = ()
    review_fields: tuple[str, ...] = ()
    result_reference: Optional[str] = None
    fallback: bool = False
    created_at: datetime = Field(default_factory=utcnow)


# ===========================================
# API Response Models
# ===========================================


class ChatResponse(BaseModel):
    """Response from an LLM API call."""

    content: str
    model: str
    usage: dict[str, int] = Field(default_factory=dict)
    latency_ms: float = Field(default=0.0)
