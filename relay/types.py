"""Provider kinds, capabilities and the request/response value objects."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple


class ProviderKind(str, Enum):
    """Known upstream providers."""
    GEMINI = "gemini"
    OPENROUTER = "openrouter"
    PERPLEXITY = "perplexity"
    OPENAI = "openai"
    OLLAMA = "ollama"
    ZAI = "zai"
    ANTHROPIC = "anthropic"


class Capability(str, Enum):
    """Discrete kinds of AI operation a provider may support."""
    TEXT = "text"
    VISION = "vision"
    IMAGE_GEN = "image_gen"
    SEARCH = "search"
    AUDIO = "audio"


class MessageRole(str, Enum):
    """Message roles for chat completion."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ResponseFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


@dataclass(frozen=True)
class ProviderInfo:
    """Static metadata of a provider kind."""
    id: ProviderKind
    name: str
    description: str
    docs_url: str
    capabilities: FrozenSet[Capability]
    is_local: bool = False
    default_base_url: Optional[str] = None

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


# Registry order is the default priority when providers come from the environment.
PROVIDERS: Dict[ProviderKind, ProviderInfo] = {
    ProviderKind.GEMINI: ProviderInfo(
        id=ProviderKind.GEMINI,
        name="Google Gemini",
        description="Google's multimodal AI with native search",
        docs_url="https://aistudio.google.com/app/apikey",
        capabilities=frozenset({
            Capability.TEXT, Capability.VISION, Capability.IMAGE_GEN,
            Capability.SEARCH, Capability.AUDIO,
        }),
        default_base_url="https://generativelanguage.googleapis.com/v1beta",
    ),
    ProviderKind.OPENROUTER: ProviderInfo(
        id=ProviderKind.OPENROUTER,
        name="OpenRouter",
        description="Access 100+ AI models through one API",
        docs_url="https://openrouter.ai/keys",
        capabilities=frozenset({Capability.TEXT, Capability.VISION}),
        default_base_url="https://openrouter.ai/api/v1",
    ),
    ProviderKind.PERPLEXITY: ProviderInfo(
        id=ProviderKind.PERPLEXITY,
        name="Perplexity",
        description="AI search with real-time web grounding",
        docs_url="https://perplexity.ai/settings/api",
        capabilities=frozenset({Capability.TEXT, Capability.SEARCH}),
        default_base_url="https://api.perplexity.ai",
    ),
    ProviderKind.OPENAI: ProviderInfo(
        id=ProviderKind.OPENAI,
        name="OpenAI",
        description="GPT-4o chat, vision and image generation",
        docs_url="https://platform.openai.com/api-keys",
        capabilities=frozenset({Capability.TEXT, Capability.VISION, Capability.IMAGE_GEN}),
        default_base_url="https://api.openai.com/v1",
    ),
    ProviderKind.OLLAMA: ProviderInfo(
        id=ProviderKind.OLLAMA,
        name="Ollama",
        description="Run AI models locally - free & private",
        docs_url="https://ollama.ai/download",
        capabilities=frozenset({Capability.TEXT, Capability.VISION}),
        is_local=True,
        default_base_url="http://localhost:11434",
    ),
    ProviderKind.ZAI: ProviderInfo(
        id=ProviderKind.ZAI,
        name="Z.ai",
        description="Z.ai conversational AI platform",
        docs_url="https://z.ai",
        capabilities=frozenset({Capability.TEXT}),
        default_base_url="https://api.z.ai",
    ),
    ProviderKind.ANTHROPIC: ProviderInfo(
        id=ProviderKind.ANTHROPIC,
        name="Anthropic Claude",
        description="Advanced reasoning with constitutional AI",
        docs_url="https://console.anthropic.com",
        capabilities=frozenset({Capability.TEXT, Capability.VISION}),
        default_base_url="https://api.anthropic.com",
    ),
}


def provider_supports(kind: ProviderKind, capability: Capability) -> bool:
    info = PROVIDERS.get(kind)
    return info is not None and info.supports(capability)


# ---------------------------------------------------------------------------
# Request / response DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Message:
    """Chat message."""
    role: MessageRole
    content: str


@dataclass(frozen=True)
class TextRequest:
    messages: Sequence[Message]
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    response_format: ResponseFormat = ResponseFormat.TEXT

    def system_instruction(self) -> str:
        """All system messages joined, or ``system_prompt`` when there are none."""
        system = [m.content for m in self.messages if m.role == MessageRole.SYSTEM]
        if system:
            return "\n".join(system)
        return self.system_prompt or ""

    def conversation(self) -> List[Message]:
        return [m for m in self.messages if m.role != MessageRole.SYSTEM]


@dataclass(frozen=True)
class TextResponse:
    content: str
    model: str
    provider: ProviderKind


@dataclass(frozen=True)
class VisionRequest:
    image_data: str  # base64
    mime_type: str
    prompt: str


@dataclass(frozen=True)
class VisionResponse:
    content: str
    provider: ProviderKind
    model: str


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    input_image: Optional[str] = None  # base64
    size: Optional[str] = None


@dataclass(frozen=True)
class ImageResponse:
    image_url: str
    provider: ProviderKind
    model: str


@dataclass(frozen=True)
class SearchRequest:
    query: str
    max_results: Optional[int] = None


@dataclass(frozen=True)
class SearchSource:
    title: str
    url: str


@dataclass(frozen=True)
class SearchResponse:
    content: str
    provider: ProviderKind
    sources: Tuple[SearchSource, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AudioRequest:
    audio_data: str  # base64
    mime_type: str
    prompt: str


@dataclass(frozen=True)
class AudioResponse:
    content: str
    provider: ProviderKind
    model: str
