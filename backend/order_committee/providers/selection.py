"""
Committee member selection.

Each task gets a fresh uniformly random committee so exposure spreads
across the pool over time. The chosen ids are recorded on the result.
"""

import random
from dataclasses import dataclass, field

import structlog

from ..errors import PoolExhausted
from .base import BaseDecisionProvider
from .pool import ProviderPool

logger = structlog.get_logger()


@dataclass
class Selection:
    """Providers chosen for one task."""

    providers: list[BaseDecisionProvider]
    diversity_met: bool = True
    skipped_due_to_family: list[str] = field(default_factory=list)

    @property
    def provider_ids(self) -> list[str]:
        return [p.provider_id for p in self.providers]


class ProviderSelector:
    """
    Picks N distinct enabled providers for a task.

    With ``enforce_diversity`` the selector walks a shuffled pool and skips
    a provider whose model family is already on the committee, then relaxes
    the rule if there are not enough families to fill every seat.
    """

    def __init__(
        self,
        committee_size: int,
        enforce_diversity: bool = False,
        rng: random.Random | None = None,
    ):
        if committee_size < 1:
            raise ValueError("committee_size must be at least 1")
        self.committee_size = committee_size
        self.enforce_diversity = enforce_diversity
        self._rng = rng or random.SystemRandom()

    def select(self, pool: ProviderPool) -> Selection:
        """
        Select the committee for one task.

        Raises:
            PoolExhausted: If fewer than ``committee_size`` providers are enabled
        """
        available = pool.enabled()
        if len(available) < self.committee_size:
            logger.error(
                "provider_pool_exhausted",
                requested=self.committee_size,
                available=len(available),
            )
            raise PoolExhausted(self.committee_size, len(available))

        if not self.enforce_diversity:
            chosen = self._rng.sample(available, self.committee_size)
            return Selection(providers=chosen)

        return self._select_diverse(available)

    def _select_diverse(self, available: list[BaseDecisionProvider]) -> Selection:
        shuffled = self._rng.sample(available, len(available))
        chosen: list[BaseDecisionProvider] = []
        skipped: list[BaseDecisionProvider] = []
        used_families: set[str] = set()

        for provider in shuffled:
            if len(chosen) >= self.committee_size:
                break
            family = provider.family
            if family and family in used_families:
                skipped.append(provider)
                continue
            chosen.append(provider)
            if family:
                used_families.add(family)

        diversity_met = len(chosen) >= self.committee_size
        if not diversity_met:
            chosen.extend(skipped[: self.committee_size - len(chosen)])
            logger.warning(
                "provider_diversity_not_met",
                selected=[p.provider_id for p in chosen],
                skipped=[p.provider_id for p in skipped],
            )

        return Selection(
            providers=chosen,
            diversity_met=diversity_met,
            skipped_due_to_family=[p.provider_id for p in skipped],
        )
