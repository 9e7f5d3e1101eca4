"""
Provider pool for the committee.

Builds the configured decision providers and exposes the enabled ones
to the selector.
"""

from collections.abc import Iterable
from pathlib import Path
from typing import Callable

import structlog
import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .base import BaseDecisionProvider, ProviderConfig
from .groq_provider import GroqProvider
from .huggingface_provider import HuggingFaceProvider
from .ollama_provider import OllamaProvider

logger = structlog.get_logger()

ProviderBuilder = Callable[[ProviderConfig], BaseDecisionProvider]

PROVIDER_TYPES: dict[str, ProviderBuilder] = {
    "groq": GroqProvider,
    "huggingface": HuggingFaceProvider,
    "ollama": OllamaProvider,
}


def load_provider_configs(path: Path) -> list[ProviderConfig]:
    """
    Read provider entries from a providers.yaml file.

    The entries keep their configured ``enabled`` flag; no adapter is built.

    Raises:
        ConfigurationError: If the file cannot be read or an entry is invalid
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read provider config {path}: {e}") from e

    try:
        return [ProviderConfig(**entry) for entry in data.get("providers", [])]
    except (TypeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid provider config in {path}: {e}") from e


class ProviderPool:
    """
    Holds the configured decision providers.

    Disabled providers stay registered so they show up in health reports,
    but are never offered for selection.
    """

    def __init__(self, providers: Iterable[BaseDecisionProvider]):
        self._providers: dict[str, BaseDecisionProvider] = {}
        for provider in providers:
            if provider.provider_id in self._providers:
                raise ConfigurationError(f"Duplicate provider id: {provider.provider_id}")
            self._providers[provider.provider_id] = provider

    @classmethod
    def from_configs(
        cls,
        configs: Iterable[ProviderConfig],
        builders: dict[str, ProviderBuilder] | None = None,
    ) -> "ProviderPool":
        """
        Build providers from configuration entries.

        Args:
            configs: Provider configuration entries
            builders: Adapter type -> constructor (defaults to PROVIDER_TYPES)

        Raises:
            ConfigurationError: If a type is unknown or an id repeats
        """
        registry = builders or PROVIDER_TYPES
        providers: list[BaseDecisionProvider] = []

        for config in configs:
            builder = registry.get(config.type)
            if builder is None:
                raise ConfigurationError(
                    f"Unknown provider type '{config.type}' for provider {config.id}"
                )
            providers.append(builder(config))

        pool = cls(providers)
        logger.info(
            "provider_pool_built",
            configured=len(providers),
            enabled=pool.enabled_ids(),
        )
        return pool

    @classmethod
    def from_yaml(cls, path: Path) -> "ProviderPool":
        """Build the pool from a providers.yaml file."""
        return cls.from_configs(load_provider_configs(path))

    def get(self, provider_id: str) -> BaseDecisionProvider:
        """
        Get a provider by id.

        Raises:
            KeyError: If the provider is not registered
        """
        return self._providers[provider_id]

    def enabled(self) -> list[BaseDecisionProvider]:
        return [p for p in self._providers.values() if p.enabled]

    def enabled_ids(self) -> list[str]:
        return [p.provider_id for p in self.enabled()]

    def all_ids(self) -> list[str]:
        return list(self._providers)

    async def health_check_all(self) -> dict[str, bool]:
        """
        Check health of all providers.

        Returns:
            Dict of provider id to health status
        """
        results = {}
        for provider_id, provider in self._providers.items():
            results[provider_id] = await provider.health_check()
            logger.info(
                "provider_health_status", provider=provider_id, healthy=results[provider_id]
            )
        return results

    def __len__(self) -> int:
        return len(self._providers)
