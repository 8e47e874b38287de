"""OpenRouter adapter: many hosted models behind one chat-completions API."""
from typing import Dict

from relay.adapters.openai import OpenAICompatibleAdapter
from relay.types import ProviderKind

APP_REFERER = "http://localhost"
APP_TITLE = "relay-router"


class OpenRouterAdapter(OpenAICompatibleAdapter):
    kind = ProviderKind.OPENROUTER
    display_name = "OpenRouter"
    text_model = "anthropic/claude-3.5-sonnet"
    vision_model = "anthropic/claude-3.5-sonnet"
    health_path = "/auth/key"

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["HTTP-Referer"] = APP_REFERER
        headers["X-Title"] = APP_TITLE
        return headers
