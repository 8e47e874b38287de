"""Anthropic Claude adapter (Messages API)."""
from typing import Any, AsyncIterator, Dict, List

from relay.adapters.base import (
    DEFAULT_MAX_TOKENS,
    BaseAdapter,
    decode_chunk,
    iter_sse_data,
    provider_call,
    provider_stream,
)
from relay.types import (
    MessageRole,
    ProviderKind,
    TextRequest,
    TextResponse,
    VisionRequest,
    VisionResponse,
)

ANTHROPIC_VERSION = "2023-06-01"
STREAM_MAX_TOKENS = 4096


class AnthropicAdapter(BaseAdapter):
    """Anthropic API provider (Claude 3.5 Sonnet by default)."""

    kind = ProviderKind.ANTHROPIC
    display_name = "Anthropic"
    text_model = "claude-3-5-sonnet-20241022"
    health_model = "claude-3-haiku-20240307"
    error_messages = {
        400: "rejected the request as invalid",
        402: "credit insufficient",
    }

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    @staticmethod
    def _claude_messages(request: TextRequest) -> List[Dict[str, Any]]:
        return [
            {
                "role": "assistant" if msg.role == MessageRole.ASSISTANT else "user",
                "content": msg.content,
            }
            for msg in request.conversation()
        ]

    def _text_payload(self, request: TextRequest, max_tokens: int) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._model(self.text_model),
            "max_tokens": request.max_tokens or max_tokens,
            "temperature": self._temperature(request.temperature),
            "messages": self._claude_messages(request),
        }
        system = request.system_instruction()
        if system:
            payload["system"] = system
        return payload

    @staticmethod
    def _text(data: Dict[str, Any]) -> str:
        blocks = data.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type", "text") == "text")

    @provider_call
    async def chat(self, request: TextRequest) -> TextResponse:
        data = await self.fetch_json(
            "POST", "/v1/messages", headers=self._headers(),
            json=self._text_payload(request, DEFAULT_MAX_TOKENS),
        )
        return TextResponse(
            content=self._text(data),
            model=data.get("model") or self._model(self.text_model),
            provider=self.kind,
        )

    @provider_call
    async def vision(self, request: VisionRequest) -> VisionResponse:
        payload = {
            "model": self.text_model,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "temperature": 0.7,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": request.prompt},
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": request.mime_type,
                                "data": request.image_data,
                            },
                        },
                    ],
                }
            ],
        }
        data = await self.fetch_json("POST", "/v1/messages", headers=self._headers(), json=payload)
        return VisionResponse(
            content=self._text(data),
            provider=self.kind,
            model=data.get("model") or self.text_model,
        )

    def supports_streaming(self) -> bool:
        return True

    @provider_stream
    async def stream(self, request: TextRequest) -> AsyncIterator[str]:
        payload = self._text_payload(request, STREAM_MAX_TOKENS)
        payload["stream"] = True
        lines = self.stream_lines("POST", "/v1/messages", headers=self._headers(), json=payload)
        async for data in iter_sse_data(lines):
            event = decode_chunk(data)
            if not event:
                continue
            if event.get("type") == "message_stop":
                return
            text = (event.get("delta") or {}).get("text")
            if text:
                yield text

    async def _probe(self) -> None:
        await self.transport.fetch_with_retry(
            "POST",
            self._url("/v1/messages"),
            headers=self._headers(),
            json={
                "model": self.health_model,
                "max_tokens": 1,
                "messages": [{"role": "user", "content": "ping"}],
            },
            retries=0,
        )
