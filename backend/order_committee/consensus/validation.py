"""
Output validation for provider answers.

This is the only gate that stops a provider from fabricating candidates.
A single violation rejects the provider's whole vote for the task; nothing
is repaired or clamped.
"""

from dataclasses import dataclass
from typing import Any, NoReturn, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictStr, ValidationError

from ..errors import ProviderInvalidOutput
from ..models import NO_CANDIDATE, EvidenceContract, FieldAnswer, IssueSeverity, ProviderIssue

logger = structlog.get_logger()


class MappingPayload(BaseModel):
    """One field mapping as sent by a provider."""

    model_config = ConfigDict(extra="forbid")

    field: StrictStr = Field(..., min_length=1)
    candidate_id: Optional[StrictStr]
    confidence: StrictFloat = Field(..., ge=0.0, le=1.0)
    rationale: Optional[str] = None


class IssuePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., min_length=1, pattern=r"^[A-Z][A-Z0-9_]*$")
    severity: IssueSeverity
    evidence: str = Field(..., min_length=1)


class ProviderAnswerPayload(BaseModel):
    """Strict wire schema for a provider answer."""

    model_config = ConfigDict(extra="forbid")

    mappings: list[MappingPayload]
    overall_confidence: Optional[StrictFloat] = Field(default=None, ge=0.0, le=1.0)
    issues: list[IssuePayload] = Field(default_factory=list)


@dataclass(frozen=True)
class ValidatedAnswer:
    """Provider answer that passed every check."""

    answers: dict[str, FieldAnswer]
    overall_confidence: Optional[float]
    issues: tuple[ProviderIssue, ...]


class OutputValidator:
    """Checks provider answers against the evidence contract."""

    def validate(
        self,
        provider_id: str,
        payload: Any,
        contract: EvidenceContract,
    ) -> ValidatedAnswer:
        """
        Validate a raw provider answer.

        Args:
            provider_id: Provider that produced the answer
            payload: Parsed JSON answer
            contract: The contract the provider was asked to resolve

        Returns:
            ValidatedAnswer keyed by target field

        Raises:
            ProviderInvalidOutput: On any schema or bounded-choice violation
        """
        try:
            parsed = ProviderAnswerPayload.model_validate(payload)
        except ValidationError as e:
            schema_errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'root'}: {err['msg']}"
                for err in e.errors()
            ]
            self._reject(provider_id, schema_errors, payload)

        reasons: list[str] = []
        answers: dict[str, FieldAnswer] = {}
        targets = set(contract.target_fields)

        for mapping in parsed.mappings:
            if mapping.field not in targets:
                reasons.append(f"field '{mapping.field}' is not a target field")
                continue
            if mapping.field in answers:
                reasons.append(f"field '{mapping.field}' answered more than once")
                continue

            candidate_id = mapping.candidate_id
            if candidate_id == NO_CANDIDATE:
                candidate_id = None
            if candidate_id is not None and candidate_id not in contract.allowed_candidates(
                mapping.field
            ):
                reasons.append(
                    f"field '{mapping.field}' references unknown candidate '{candidate_id}'"
                )
                continue

            answers[mapping.field] = FieldAnswer(
                candidate_id=candidate_id,
                confidence=mapping.confidence,
                rationale=mapping.rationale,
            )

        if reasons:
            self._reject(provider_id, reasons, payload)

        missing = targets - set(answers)
        if missing:
            logger.info(
                "provider_skipped_fields",
                provider=provider_id,
                fields=sorted(missing),
            )

        issues = tuple(
            ProviderIssue(code=i.code, severity=i.severity, evidence=i.evidence)
            for i in parsed.issues
        )
        return ValidatedAnswer(
            answers=answers,
            overall_confidence=parsed.overall_confidence,
            issues=issues,
        )

    def _reject(self, provider_id: str, reasons: list[str], payload: Any) -> NoReturn:
        logger.warning("provider_output_rejected", provider=provider_id, reasons=reasons)
        raise ProviderInvalidOutput(provider_id, reasons, payload=payload)
