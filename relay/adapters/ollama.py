"""Ollama local model adapter."""
from typing import Any, AsyncIterator, Dict

from core.errors import ProviderError, TransportError
from relay.adapters.base import (
    DEFAULT_MAX_TOKENS,
    BaseAdapter,
    decode_chunk,
    provider_call,
    provider_stream,
)
from relay.types import ProviderKind, TextRequest, TextResponse, VisionRequest, VisionResponse


class OllamaAdapter(BaseAdapter):
    """Runs against a local Ollama server; the API key is only a presence marker."""

    kind = ProviderKind.OLLAMA
    display_name = "Ollama"
    text_model = "llama3.2"
    vision_model = "llama3.2-vision"
    error_messages = {
        400: "rejected the request as invalid",
        404: "model not found. Pull the model first",
    }

    def _text_payload(self, request: TextRequest, stream: bool) -> Dict[str, Any]:
        messages = self._convert_messages(list(request.messages))
        system = request.system_instruction()
        if system and not any(m["role"] == "system" for m in messages):
            messages.insert(0, {"role": "system", "content": system})
        return {
            "model": self._model(self.text_model),
            "messages": messages,
            "stream": stream,
            "options": {
                "temperature": self._temperature(request.temperature),
                "num_predict": request.max_tokens or DEFAULT_MAX_TOKENS,
            },
        }

    @provider_call
    async def chat(self, request: TextRequest) -> TextResponse:
        data = await self.fetch_json("POST", "/api/chat", json=self._text_payload(request, stream=False))
        return TextResponse(
            content=(data.get("message") or {}).get("content") or "",
            model=data.get("model") or self._model(self.text_model),
            provider=self.kind,
        )

    @provider_call
    async def vision(self, request: VisionRequest) -> VisionResponse:
        payload = {
            "model": self.vision_model,
            "messages": [
                {"role": "user", "content": request.prompt, "images": [request.image_data]}
            ],
            "stream": False,
            "options": {"temperature": 0.7},
        }
        data = await self.fetch_json("POST", "/api/chat", json=payload)
        return VisionResponse(
            content=(data.get("message") or {}).get("content") or "",
            provider=self.kind,
            model=data.get("model") or self.vision_model,
        )

    def supports_streaming(self) -> bool:
        return True

    @provider_stream
    async def stream(self, request: TextRequest) -> AsyncIterator[str]:
        # newline-delimited JSON, one object per chunk
        lines = self.stream_lines("POST", "/api/chat", json=self._text_payload(request, stream=True))
        async for line in lines:
            if not line.strip():
                continue
            chunk = decode_chunk(line)
            if not chunk:
                continue
            content = (chunk.get("message") or {}).get("content")
            if content:
                yield content
            if chunk.get("done"):
                return

    async def _probe(self) -> None:
        await self.transport.fetch_with_retry("GET", self._url("/api/tags"), retries=0)

    def _translate_error(self, error: Exception) -> ProviderError:
        if isinstance(error, TransportError):
            return TransportError(
                f"Ollama server not reachable at {self.base_url} ({error}). Please start Ollama locally.",
                self.kind.value,
            )
        return super()._translate_error(error)
