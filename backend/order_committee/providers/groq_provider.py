"""
Groq decision provider.

Runs Llama, DeepSeek-R1 and Qwen models on Groq's hosted inference.
"""

import time
from typing import Any

import structlog
from groq import APIError, AsyncGroq

from ..config.settings import settings
from ..errors import ProviderTransportError
from ..models import ChatResponse
from .base import BaseDecisionProvider, ProviderConfig

logger = structlog.get_logger()


class GroqProvider(BaseDecisionProvider):
    """Groq API provider for fast inference."""

    def __init__(self, config: ProviderConfig, api_key: str | None = None):
        """
        Initialize Groq provider.

        Args:
            config: Provider pool entry
            api_key: Groq API key (uses settings if not provided)
        """
        super().__init__(config)
        self.api_key = api_key or settings.groq_api_key
        # SDK retries disabled; the dispatcher timeout bounds each call.
        self.client = AsyncGroq(api_key=self.api_key, max_retries=0) if self.api_key else None

        if self.client is None:
            logger.warning("groq_provider_missing_api_key", provider=self.provider_id)
            self.config = config.model_copy(update={"enabled": False})

    async def chat_completion(self, messages: list[dict[str, str]]) -> ChatResponse:
        if not self.client:
            raise ProviderTransportError(
                "Groq client not initialized (missing API key)", self.provider_id
            )

        model = self.config.model
        start_time = time.perf_counter()

        try:
            kwargs: dict[str, Any] = {
                "model": model,
                "messages": messages,
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
                "response_format": {"type": "json_object"},
            }
            response = await self.client.chat.completions.create(**kwargs)
        except APIError as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "groq_completion_error",
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
            "groq_completion_success",
            provider=self.provider_id,
            model=model,
            latency_ms=round(latency_ms, 2),
            tokens=usage.get("total_tokens", 0),
        )

        return ChatResponse(content=content, model=model, usage=usage, latency_ms=latency_ms)

    async def health_check(self) -> bool:
        if not self.client:
            return False

        try:
            models = await self.client.models.list()
            return any(m.id == self.config.model for m in models.data)
        except APIError as e:
            logger.warning("groq_health_check_failed", provider=self.provider_id, error=str(e))
            return False
