"""
Consensus classification and human-review routing.

Labels how strongly the committee agreed on each field and decides whether
the field needs a human.
"""

from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any, Optional

import structlog

from ..config.settings import Settings
from ..models import NO_CANDIDATE, ConsensusLabel, FieldDecision
from .voting import FieldTally

logger = structlog.get_logger()


class ReviewReason:
    """Reason codes recorded on a FieldDecision."""

    SPLIT = "consensus_split"
    NO_CONSENSUS = "consensus_none"
    CRITICAL_NOT_UNANIMOUS = "critical_field_not_unanimous"
    LOW_CONFIDENCE = "low_confidence"
    TIE_BROKEN = "tie_broken"
    UNRESOLVED = "unresolved"


class DecisionNote:
    """Audit notes recorded on a FieldDecision; they never force review."""

    # Weighted scores picked a candidate other than the most voted one
    WINNER_NOT_MAJORITY = "weighted_winner_not_majority_choice"


class ConsensusClassifier:
    """
    Labels field consensus and applies the review rules.

    Labels (from raw choices, unweighted):
    - unanimous: every valid voter chose the same candidate
    - majority: strictly more than half chose the same candidate
    - split: no strict majority, more than one voter
    - none: every voter chose differently, or no candidate votes at all

    Critical fields need unanimity; other fields accept any majority.
    """

    def __init__(
        self,
        critical_fields: Iterable[str] = ("customer", "sku", "gtin"),
        confidence_threshold: float = 0.75,
        tie_break_requires_review: bool = True,
    ):
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError(
                f"confidence_threshold must be in [0, 1], got {confidence_threshold}"
            )
        self.critical_fields = frozenset(critical_fields)
        self.confidence_threshold = confidence_threshold
        self.tie_break_requires_review = tie_break_requires_review

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConsensusClassifier":
        return cls(
            critical_fields=settings.critical_fields,
            confidence_threshold=settings.confidence_threshold,
            tie_break_requires_review=settings.tie_break_requires_review,
        )

    def label(self, choices: Mapping[str, str]) -> ConsensusLabel:
        """
        Classify raw provider choices for one field.

        Args:
            choices: Provider id -> chosen candidate id (or "none")

        Returns:
            ConsensusLabel for the field
        """
        values = list(choices.values())
        if not any(v != NO_CANDIDATE for v in values):
            return ConsensusLabel.NONE

        counts = Counter(values)
        if len(counts) == 1:
            return ConsensusLabel.UNANIMOUS

        top_count = counts.most_common(1)[0][1]
        if top_count * 2 > len(values):
            return ConsensusLabel.MAJORITY
        if len(counts) == len(values):
            return ConsensusLabel.NONE
        return ConsensusLabel.SPLIT

    def classify(self, tally: FieldTally) -> FieldDecision:
        """
        Turn a field tally into a decision with review flags.

        Args:
            tally: Weighted scores for the field

        Returns:
            FieldDecision with consensus label and review reasons
        """
        consensus = self.label(tally.choices)
        winner: Optional[str] = tally.winner

        if consensus == ConsensusLabel.NONE:
            winner = None
        elif consensus == ConsensusLabel.MAJORITY and self._majority_choice(tally) == NO_CANDIDATE:
            # Most voters said no column fits
            winner = None

        reasons: list[str] = []
        if consensus == ConsensusLabel.SPLIT:
            reasons.append(ReviewReason.SPLIT)
        elif consensus == ConsensusLabel.NONE:
            reasons.append(ReviewReason.NO_CONSENSUS)

        if tally.field in self.critical_fields and consensus != ConsensusLabel.UNANIMOUS:
            reasons.append(ReviewReason.CRITICAL_NOT_UNANIMOUS)

        if winner is None:
            reasons.append(ReviewReason.UNRESOLVED)
        else:
            if tally.average_confidence < self.confidence_threshold:
                reasons.append(ReviewReason.LOW_CONFIDENCE)
            if tally.tie_broken and self.tie_break_requires_review:
                reasons.append(ReviewReason.TIE_BROKEN)

        notes: list[str] = []
        if consensus == ConsensusLabel.MAJORITY and winner is not None:
            majority_choice = self._majority_choice(tally)
            if winner != majority_choice:
                notes.append(DecisionNote.WINNER_NOT_MAJORITY)
                logger.warning(
                    "weighted_winner_differs_from_majority",
                    field=tally.field,
                    winner=winner,
                    majority_choice=majority_choice,
                )

        decision = FieldDecision(
            field=tally.field,
            scores=dict(tally.scores),
            choices=dict(tally.choices),
            winner=winner,
            winner_score=tally.winner_score if winner is not None else 0.0,
            margin=tally.margin if winner is not None else 0.0,
            average_confidence=tally.average_confidence if winner is not None else 0.0,
            tie_broken=tally.tie_broken,
            consensus=consensus,
            requires_human=bool(reasons),
            review_reasons=tuple(reasons),
            notes=tuple(notes),
        )

        if decision.requires_human:
            logger.info(
                "field_flagged_for_review",
                field=tally.field,
                consensus=consensus.value,
                reasons=reasons,
            )
        return decision

    def classify_all(self, tallies: Mapping[str, FieldTally]) -> dict[str, FieldDecision]:
        return {name: self.classify(tally) for name, tally in tallies.items()}

    def get_config(self) -> dict[str, Any]:
        """Get current review configuration."""
        return {
            "critical_fields": sorted(self.critical_fields),
            "confidence_threshold": self.confidence_threshold,
            "tie_break_requires_review": self.tie_break_requires_review,
        }

    @staticmethod
    def _majority_choice(tally: FieldTally) -> str:
        return Counter(tally.choices.values()).most_common(1)[0][0]
