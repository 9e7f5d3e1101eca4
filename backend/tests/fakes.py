"""Scripted providers and vote builders for tests."""

import asyncio
import json
from typing import Any

from order_committee.consensus.weights import WeightSnapshot, WeightStore
from order_committee.errors import ProviderTransportError
from order_committee.models import ChatResponse, FieldAnswer, ProviderVote
from order_committee.providers.base import BaseDecisionProvider, ProviderConfig
from order_committee.providers.pool import ProviderPool


def mapping_answer(choices: dict[str, tuple[str | None, float]], **extra: Any) -> dict[str, Any]:
    """Build a wire-format answer from {field: (candidate_id, confidence)}."""
    return {
        "mappings": [
            {"field": f, "candidate_id": cid, "confidence": conf, "rationale": None}
            for f, (cid, conf) in choices.items()
        ],
        "overall_confidence": extra.pop("overall_confidence", 0.9),
        "issues": extra.pop("issues", []),
        **extra,
    }


def make_vote(provider_id: str, choices: dict[str, tuple[str | None, float]]) -> ProviderVote:
    return ProviderVote(
        provider_id=provider_id,
        answers={
            f: FieldAnswer(candidate_id=cid, confidence=conf)
            for f, (cid, conf) in choices.items()
        },
    )


class FakeProvider(BaseDecisionProvider):
    """Provider that replies with a scripted answer after an optional delay."""

    def __init__(
        self,
        provider_id: str,
        answer: Any = None,
        delay: float = 0.0,
        error: Exception | None = None,
        family: str | None = None,
        enabled: bool = True,
        raw_content: str | None = None,
        started: list[str] | None = None,
    ):
        super().__init__(
            ProviderConfig(
                id=provider_id,
                type="fake",
                model="fake-model",
                family=family,
                enabled=enabled,
            )
        )
        self.answer = answer
        self.delay = delay
        self.error = error
        self.raw_content = raw_content
        self.started = started
        self.calls = 0
        self.cancelled = False
        self.completed = False

    async def chat_completion(self, messages: list[dict[str, str]]) -> ChatResponse:
        self.calls += 1
        if self.started is not None:
            self.started.append(self.provider_id)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        self.completed = True
        content = self.raw_content if self.raw_content is not None else json.dumps(self.answer)
        return ChatResponse(content=content, model="fake-model")


class FailingProvider(FakeProvider):
    def __init__(self, provider_id: str, **kwargs: Any):
        super().__init__(
            provider_id,
            error=ProviderTransportError("connection refused", provider_id),
            **kwargs,
        )


def make_pool(*providers: BaseDecisionProvider) -> ProviderPool:
    return ProviderPool(providers)


def uniform_store(*provider_ids: str) -> WeightStore:
    return WeightStore(current=WeightSnapshot.uniform(provider_ids))
