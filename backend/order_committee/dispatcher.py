"""
Concurrent dispatch of a task to its committee.

Each provider call runs as its own asyncio task under an engine-wide
concurrency cap and a per-call timeout. Provider failures never escape
this module; they become marked votes.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

import structlog

from .consensus.validation import OutputValidator
from .errors import (
    InsufficientProviders,
    ProviderError,
    ProviderInvalidOutput,
    ProviderTransportError,
)
from .models import AuditReferences, EvidenceContract, ProviderVote, VoteError
from .providers.base import BaseDecisionProvider

logger = structlog.get_logger()


class ConcurrencyLimiter:
    """
    Caps simultaneous provider calls across every task of an engine.

    Waiters are admitted in arrival order; nothing is ever dropped.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_flight = 0
        self.peak_in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                yield
            finally:
                self._in_flight -= 1


class Dispatcher:
    """
    Runs the selected providers concurrently for one task.

    The per-call timeout starts once a call holds a concurrency slot, so a
    queued call is delayed rather than timed out. A timeout cancels only
    that call.
    """

    def __init__(
        self,
        limiter: ConcurrencyLimiter,
        timeout_seconds: float = 30.0,
        min_successful: int = 2,
        validator: OutputValidator | None = None,
    ):
        self.limiter = limiter
        self.timeout_seconds = timeout_seconds
        self.min_successful = min_successful
        self.validator = validator or OutputValidator()

    async def dispatch(
        self,
        contract: EvidenceContract,
        providers: Sequence[BaseDecisionProvider],
    ) -> list[ProviderVote]:
        """
        Collect one vote per provider.

        Args:
            contract: Evidence contract for the task
            providers: Selected committee

        Returns:
            Votes in committee order, including failed ones
        """
        tasks = [asyncio.create_task(self._call(p, contract)) for p in providers]
        votes = list(await asyncio.gather(*tasks))

        logger.info(
            "dispatch_completed",
            providers=len(votes),
            valid=sum(1 for v in votes if v.is_valid),
            errors={v.provider_id: v.error.value for v in votes if v.error},
        )
        return votes

    def ensure_quorum(
        self,
        task_id: str,
        votes: Sequence[ProviderVote],
        audit: AuditReferences | None = None,
    ) -> None:
        """
        Raises:
            InsufficientProviders: If fewer than ``min_successful`` votes are valid
        """
        valid = sum(1 for v in votes if v.is_valid)
        if valid < self.min_successful:
            logger.warning(
                "quorum_not_met",
                required=self.min_successful,
                valid=valid,
            )
            raise InsufficientProviders(
                task_id, self.min_successful, valid, list(votes), audit=audit
            )

    async def _call(
        self,
        provider: BaseDecisionProvider,
        contract: EvidenceContract,
    ) -> ProviderVote:
        provider_id = provider.provider_id

        async with self.limiter.slot():
            start_time = time.perf_counter()
            try:
                payload = await asyncio.wait_for(
                    provider.submit(contract), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "provider_timeout", provider=provider_id, timeout=self.timeout_seconds
                )
                return self._failed(
                    provider_id,
                    VoteError.TIMEOUT,
                    f"Provider timeout after {self.timeout_seconds}s",
                    start_time,
                )
            except ProviderInvalidOutput as e:
                return self._failed(
                    provider_id, VoteError.INVALID_OUTPUT, e.message, start_time, e.payload
                )
            except ProviderTransportError as e:
                logger.warning("provider_transport_error", provider=provider_id, error=e.message)
                return self._failed(provider_id, VoteError.TRANSPORT_ERROR, e.message, start_time)
            except ProviderError as e:
                logger.warning("provider_error", provider=provider_id, error=e.message)
                return self._failed(provider_id, VoteError.TRANSPORT_ERROR, e.message, start_time)
            except Exception as e:
                logger.exception("provider_unexpected_error", provider=provider_id)
                return self._failed(provider_id, VoteError.TRANSPORT_ERROR, str(e), start_time)

            latency_ms = (time.perf_counter() - start_time) * 1000

        try:
            validated = self.validator.validate(provider_id, payload, contract)
        except ProviderInvalidOutput as e:
            return ProviderVote(
                provider_id=provider_id,
                latency_ms=latency_ms,
                error=VoteError.INVALID_OUTPUT,
                error_detail="; ".join(e.reasons),
                raw_payload=payload,
            )

        logger.debug(
            "provider_vote_accepted",
            provider=provider_id,
            fields=len(validated.answers),
            latency_ms=round(latency_ms, 2),
        )
        return ProviderVote(
            provider_id=provider_id,
            answers=validated.answers,
            overall_confidence=validated.overall_confidence,
            issues=validated.issues,
            latency_ms=latency_ms,
            raw_payload=payload,
        )

    @staticmethod
    def _failed(
        provider_id: str,
        error: VoteError,
        detail: str,
        start_time: float,
        raw_payload: object = None,
    ) -> ProviderVote:
        return ProviderVote(
            provider_id=provider_id,
            latency_ms=(time.perf_counter() - start_time) * 1000,
            error=error,
            error_detail=detail,
            raw_payload=raw_payload,
        )
