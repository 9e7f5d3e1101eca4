"""
Weighted voting for committee decisions.

Combines the valid provider votes for each target field into ranked
candidate scores, a winner and a margin over the runner-up.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from ..models import NO_CANDIDATE, EvidenceContract, ProviderVote
from .weights import WeightSnapshot

logger = structlog.get_logger()

# Scores closer than this are treated as equal
TIE_TOLERANCE = 1e-12


@dataclass(frozen=True)
class FieldTally:
    """Weighted scores for one field, before consensus classification."""

    field: str
    scores: Mapping[str, float]
    choices: Mapping[str, str]
    confidences: Mapping[str, float]
    winner: Optional[str] = None
    winner_score: float = 0.0
    margin: float = 0.0
    average_confidence: float = 0.0
    tie_broken: bool = False

    @property
    def voter_count(self) -> int:
        return len(self.choices)


class WeightedVotingAggregator:
    """
    Weighted voting over provider votes.

    Formula: score(candidate) = Σ(provider_weight × provider_confidence)
    over the providers that chose the candidate. "none" answers are counted
    as choices but never scored.

    Ties on the top score go to the candidate id that sorts first.
    """

    def aggregate(
        self,
        contract: EvidenceContract,
        votes: Iterable[ProviderVote],
        weights: WeightSnapshot,
    ) -> dict[str, FieldTally]:
        """
        Score every target field of a contract.

        Args:
            contract: The task's evidence contract
            votes: Provider votes; invalid ones are ignored
            weights: Weight snapshot for this run

        Returns:
            Dict of target field to its FieldTally
        """
        valid = [v for v in votes if v.is_valid]
        return {
            field_name: self.aggregate_field(field_name, valid, weights)
            for field_name in contract.target_fields
        }

    def aggregate_field(
        self,
        field_name: str,
        votes: Iterable[ProviderVote],
        weights: WeightSnapshot,
    ) -> FieldTally:
        """Score a single field from the votes that answered it."""
        choices: dict[str, str] = {}
        confidences: dict[str, float] = {}
        contributions: dict[str, list[float]] = {}

        # Sorted so the tally is identical for any arrival order
        for vote in sorted(votes, key=lambda v: v.provider_id):
            if not vote.is_valid:
                continue
            answer = vote.answers.get(field_name)
            if answer is None:
                continue

            choices[vote.provider_id] = answer.choice
            confidences[vote.provider_id] = answer.confidence
            if answer.candidate_id is None:
                continue
            contributions.setdefault(answer.candidate_id, []).append(
                weights.weight(vote.provider_id) * answer.confidence
            )

        scores = {cid: math.fsum(parts) for cid, parts in sorted(contributions.items())}
        if not scores:
            logger.debug("field_without_candidate_votes", field=field_name, voters=len(choices))
            return FieldTally(
                field=field_name,
                scores=scores,
                choices=choices,
                confidences=confidences,
            )

        top_score = max(scores.values())
        leaders = sorted(cid for cid, s in scores.items() if top_score - s <= TIE_TOLERANCE)
        winner = leaders[0]
        tie_broken = len(leaders) > 1

        # A lone candidate or a tie has no margin
        others = [s for cid, s in scores.items() if cid != winner]
        margin = 0.0 if tie_broken or not others else scores[winner] - max(others)

        winner_confidences = [
            confidences[pid] for pid, choice in choices.items() if choice == winner
        ]
        average_confidence = math.fsum(winner_confidences) / len(winner_confidences)

        if tie_broken:
            logger.info(
                "aggregation_tie_broken",
                field=field_name,
                tied=leaders,
                winner=winner,
                score=round(top_score, 4),
            )

        return FieldTally(
            field=field_name,
            scores=scores,
            choices=choices,
            confidences=confidences,
            winner=winner,
            winner_score=scores[winner],
            margin=margin,
            average_confidence=average_confidence,
            tie_broken=tie_broken,
        )

    def audit_trail(
        self,
        tallies: Mapping[str, FieldTally],
        weights: WeightSnapshot,
    ) -> dict[str, Any]:
        """Generate an audit trail of the weighted scoring."""
        return {
            "algorithm": "weighted_voting",
            "weights_version": weights.version,
            "weights": {k: round(v, 6) for k, v in weights.weights.items()},
            "fields": {
                name: {
                    "choices": dict(t.choices),
                    "scores": {k: round(v, 6) for k, v in t.scores.items()},
                    "winner": t.winner or NO_CANDIDATE,
                    "margin": round(t.margin, 6),
                    "tie_broken": t.tie_broken,
                }
                for name, t in tallies.items()
            },
        }
