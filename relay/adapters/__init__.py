"""Provider adapters implementing the capability contract.

Concrete adapters are selected by :class:`~relay.types.ProviderKind`; callers never
inspect adapter types.
"""

from typing import Any, Dict, Type

from relay.types import ProviderKind

from .anthropic import AnthropicAdapter
from .base import AdapterConfig, BaseAdapter
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter, OpenAICompatibleAdapter
from .openrouter import OpenRouterAdapter
from .perplexity import PerplexityAdapter
from .zai import ZaiAdapter

ADAPTER_CLASSES: Dict[ProviderKind, Type[BaseAdapter]] = {
    ProviderKind.GEMINI: GeminiAdapter,
    ProviderKind.OPENROUTER: OpenRouterAdapter,
    ProviderKind.PERPLEXITY: PerplexityAdapter,
    ProviderKind.OPENAI: OpenAIAdapter,
    ProviderKind.OLLAMA: OllamaAdapter,
    ProviderKind.ZAI: ZaiAdapter,
    ProviderKind.ANTHROPIC: AnthropicAdapter,
}


def create_adapter(kind: ProviderKind, config: AdapterConfig, **kwargs: Any) -> BaseAdapter:
    """Create an adapter instance by provider kind."""
    adapter_class = ADAPTER_CLASSES.get(ProviderKind(kind))
    if adapter_class is None:
        raise ValueError(f"Unknown provider type: {kind}")
    return adapter_class(config, **kwargs)


__all__ = [
    "ADAPTER_CLASSES",
    "AdapterConfig",
    "AnthropicAdapter",
    "BaseAdapter",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "OpenRouterAdapter",
    "PerplexityAdapter",
    "ZaiAdapter",
    "create_adapter",
]
