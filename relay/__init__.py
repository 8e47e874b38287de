"""Resilient multi-provider AI request router."""

from relay.router import ProviderRouter, build_router
from relay.settings import ProviderConfig, RouterSettings, load_router_settings
from relay.types import (
    PROVIDERS,
    AudioRequest,
    AudioResponse,
    Capability,
    ImageRequest,
    ImageResponse,
    Message,
    MessageRole,
    ProviderKind,
    ResponseFormat,
    SearchRequest,
    SearchResponse,
    SearchSource,
    TextRequest,
    TextResponse,
    VisionRequest,
    VisionResponse,
)

__version__ = "0.1.0"

__all__ = [
    "PROVIDERS",
    "AudioRequest",
    "AudioResponse",
    "Capability",
    "ImageRequest",
    "ImageResponse",
    "Message",
    "MessageRole",
    "ProviderConfig",
    "ProviderKind",
    "ProviderRouter",
    "ResponseFormat",
    "RouterSettings",
    "SearchRequest",
    "SearchResponse",
    "SearchSource",
    "TextRequest",
    "TextResponse",
    "VisionRequest",
    "VisionResponse",
    "build_router",
    "load_router_settings",
]
