"""
HuggingFace Inference API provider.

Uses the Inference Providers API with its OpenAI-compatible chat interface.
"""

import time

import structlog
from huggingface_hub import AsyncInferenceClient

from ..config.settings import settings
from ..errors import ProviderTransportError
from ..models import ChatResponse
from .base import BaseDecisionProvider, ProviderConfig

logger = structlog.get_logger()


class HuggingFaceProvider(BaseDecisionProvider):
    """HuggingFace Inference API provider."""

    def __init__(self, config: ProviderConfig, token: str | None = None):
        super().__init__(config)
        self.token = token or settings.hf_token
        self.client = AsyncInferenceClient(token=self.token) if self.token else None

        if self.client is None:
            logger.warning("huggingface_provider_missing_token", provider=self.provider_id)
            self.config = config.model_copy(update={"enabled": False})

    async def chat_completion(self, messages: list[dict[str, str]]) -> ChatResponse:
        if not self.client:
            raise ProviderTransportError(
                "HuggingFace client not initialized (missing token)", self.provider_id
            )

        model = self.config.model
        start_time = time.perf_counter()

        try:
            response = await self.client.chat_completion(
                model=model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "huggingface_completion_error",
                provider=self.provider_id,
                model=model,
                error=str(e),
                latency_ms=round(latency_ms, 2),
            )
            raise ProviderTransportError(str(e), self.provider_id, e) from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        content = response.choices[0].message.content or ""
        usage = {
            "prompt_tokens": response.usage.prompt_tokens if response.usage else 0,
            "completion_tokens": response.usage.completion_tokens if response.usage else 0,
            "total_tokens": response.usage.total_tokens if response.usage else 0,
        }

        logger.info(
            "huggingface_completion_success",
            provider=self.provider_id,
            model=model,
            latency_ms=round(latency_ms, 2),
            tokens=usage.get("total_tokens", 0),
        )

        return ChatResponse(content=content, model=model, usage=usage, latency_ms=latency_ms)
