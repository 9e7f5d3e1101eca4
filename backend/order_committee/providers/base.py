"""
Base decision provider interface.

Every provider sits behind one capability: ``submit(contract)`` returns the
provider's structured answer as a parsed JSON object. Timeouts, retries and
output validation belong to the dispatcher, not to the adapters.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..errors import ProviderInvalidOutput
from ..models import ChatResponse, EvidenceContract
from ..prompts import build_messages

logger = structlog.get_logger()


class ProviderConfig(BaseModel):
    """Configuration entry for one provider in the pool."""

    id: str = Field(..., min_length=1)
    type: str = Field(..., description="Adapter type: groq, huggingface, ollama")
    model: str
    family: str | None = None
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    enabled: bool = True


class BaseDecisionProvider(ABC):
    """Abstract base class for committee decision providers."""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def provider_id(self) -> str:
        return self.config.id

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def family(self) -> str | None:
        return self.config.family

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def submit(self, contract: EvidenceContract) -> dict[str, Any]:
        """
        Ask the provider to resolve the contract's target fields.

        Args:
            contract: Bounded evidence contract

        Returns:
            Parsed JSON answer, not yet validated

        Raises:
            ProviderTransportError: When the call fails
            ProviderInvalidOutput: When the reply is not a JSON object
        """
        response = await self.chat_completion(build_messages(contract))
        logger.debug(
            "provider_replied",
            provider=self.provider_id,
            model=response.model,
            latency_ms=round(response.latency_ms, 2),
        )
        return self.parse_json_response(response.content)

    @abstractmethod
    async def chat_completion(self, messages: list[dict[str, str]]) -> ChatResponse:
        """
        Execute one chat completion request in JSON mode.

        Args:
            messages: List of message dicts with 'role' and 'content'

        Returns:
            ChatResponse with content, model, usage, and latency
        """

    async def health_check(self) -> bool:
        """Check if the provider is reachable. Defaults to enabled state."""
        return self.enabled

    def parse_json_response(self, content: str) -> dict[str, Any]:
        """
        Parse JSON from LLM response, handling common issues.

        Args:
            content: Raw response content

        Returns:
            Parsed JSON dict
        """
        # Try direct parse
        try:
            parsed = json.loads(content)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

        # Try to extract JSON from markdown code blocks
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if json_match:
            try:
                parsed = json.loads(json_match.group(1).strip())
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError:
                pass

        # Try to find JSON object in the text
        json_match = re.search(r"\{[\s\S]*\}", content)
        if json_match:
            try:
                parsed = json.loads(json_match.group(0))
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError:
                pass

        logger.warning(
            "failed_to_parse_json",
            provider=self.provider_id,
            content_preview=content[:200],
        )
        raise ProviderInvalidOutput(
            self.provider_id, ["response is not a JSON object"], payload=content
        )
