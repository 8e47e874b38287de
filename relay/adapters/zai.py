"""Z.ai adapter (text only)."""
from relay.adapters.openai import OpenAICompatibleAdapter
from relay.types import ProviderKind


class ZaiAdapter(OpenAICompatibleAdapter):
    kind = ProviderKind.ZAI
    display_name = "Z.ai"
    text_model = "zai-large"
    vision_model = text_model
    chat_path = "/v1/chat/completions"
    health_path = "/v1/models"
