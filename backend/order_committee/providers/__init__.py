"""
Decision providers for the committee.

Provides a single ``submit`` interface over Groq, HuggingFace, and Ollama.
"""

from .base import BaseDecisionProvider, ProviderConfig
from .groq_provider import GroqProvider
from .huggingface_provider import HuggingFaceProvider
from .ollama_provider import OllamaProvider
from .pool import PROVIDER_TYPES, ProviderPool, load_provider_configs
from .selection import ProviderSelector, Selection

__all__ = [
    # Base
    "BaseDecisionProvider",
    "ProviderConfig",
    # Providers
    "GroqProvider",
    "HuggingFaceProvider",
    "OllamaProvider",
    # Pool
    "PROVIDER_TYPES",
    "ProviderPool",
    "load_provider_configs",
    "ProviderSelector",
    "Selection",
]
