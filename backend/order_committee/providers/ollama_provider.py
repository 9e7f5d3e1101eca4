"""
Ollama decision provider for locally hosted models.
"""

import time

import structlog
from ollama import AsyncClient

from ..config.settings import settings
from ..errors import ProviderTransportError
from ..models import ChatResponse
from .base import BaseDecisionProvider, ProviderConfig

logger = structlog.get_logger()


class OllamaProvider(BaseDecisionProvider):
    """
    Ollama provider for local inference.

    Useful as a zero-cost committee member during development.
    """

    def __init__(self, config: ProviderConfig, host: str | None = None):
        super().__init__(config)
        self.host = host or settings.ollama_host
        self.client = AsyncClient(host=self.host)

    async def chat_completion(self, messages: list[dict[str, str]]) -> ChatResponse:
        model = self.config.model
        start_time = time.perf_counter()

        try:
            response = await self.client.chat(
                model=model,
                messages=messages,
                options={
                    "temperature": self.config.temperature,
                    "num_predict": self.config.max_tokens,
                },
                format="json",
            )
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "ollama_completion_error",
                provider=self.provider_id,
                model=model,
                host=self.host,
                error=str(e),
                latency_ms=round(latency_ms, 2),
            )
            raise ProviderTransportError(str(e), self.provider_id, e) from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        content = response.message.content or ""
        usage = {
            "prompt_tokens": response.prompt_eval_count or 0,
            "completion_tokens": response.eval_count or 0,
            "total_tokens": (response.prompt_eval_count or 0) + (response.eval_count or 0),
        }

        logger.info(
            "ollama_completion_success",
            provider=self.provider_id,
            model=model,
            latency_ms=round(latency_ms, 2),
            tokens=usage.get("total_tokens", 0),
        )

        return ChatResponse(content=content, model=model, usage=usage, latency_ms=latency_ms)

    async def health_check(self) -> bool:
        try:
            response = await self.client.list()
        except Exception as e:
            logger.warning("ollama_health_check_failed", provider=self.provider_id, error=str(e))
            return False
        wanted = self.config.model.split(":")[0]
        return any((m.model or "").split(":")[0] == wanted for m in response.models)
