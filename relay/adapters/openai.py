"""OpenAI and OpenAI-compatible chat-completions adapters."""
from typing import Any, AsyncIterator, ClassVar, Dict, List, Optional

from relay.adapters.base import (
    DEFAULT_MAX_TOKENS,
    BaseAdapter,
    decode_chunk,
    iter_sse_data,
    provider_call,
    provider_stream,
)
from relay.types import (
    Capability,
    ImageRequest,
    ImageResponse,
    MessageRole,
    ProviderKind,
    ResponseFormat,
    TextRequest,
    TextResponse,
    VisionRequest,
    VisionResponse,
)


class OpenAICompatibleAdapter(BaseAdapter):
    """Shared implementation for providers speaking the chat-completions dialect."""

    chat_path: ClassVar[str] = "/chat/completions"
    health_path: ClassVar[str] = "/models"
    text_model: ClassVar[str]
    vision_model: ClassVar[str]
    vision_temperature: ClassVar[float] = 0.7
    error_messages: ClassVar[Dict[int, str]] = {402: "credit insufficient"}

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def _messages(self, request: TextRequest) -> List[Dict[str, Any]]:
        messages = self._convert_messages(list(request.messages))
        has_system = any(m.role == MessageRole.SYSTEM for m in request.messages)
        if request.system_prompt and not has_system:
            messages.insert(0, {"role": "system", "content": request.system_prompt})
        return messages

    def _text_payload(self, request: TextRequest, stream: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._model(self.text_model),
            "messages": self._messages(request),
            "temperature": self._temperature(request.temperature),
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if request.response_format == ResponseFormat.JSON:
            payload["response_format"] = {"type": "json_object"}
        if stream:
            payload["stream"] = True
        return payload

    @staticmethod
    def _first_message(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    @provider_call
    async def chat(self, request: TextRequest) -> TextResponse:
        data = await self.fetch_json(
            "POST", self.chat_path, headers=self._headers(), json=self._text_payload(request)
        )
        return TextResponse(
            content=self._first_message(data),
            model=data.get("model") or self._model(self.text_model),
            provider=self.kind,
        )

    @provider_call
    async def vision(self, request: VisionRequest) -> VisionResponse:
        self._require(Capability.VISION)
        payload = {
            "model": self.vision_model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": request.prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{request.mime_type};base64,{request.image_data}"},
                        },
                    ],
                }
            ],
            "temperature": self.vision_temperature,
            "max_tokens": DEFAULT_MAX_TOKENS,
        }
        data = await self.fetch_json("POST", self.chat_path, headers=self._headers(), json=payload)
        return VisionResponse(
            content=self._first_message(data),
            provider=self.kind,
            model=data.get("model") or self.vision_model,
        )

    def supports_streaming(self) -> bool:
        return True

    @provider_stream
    async def stream(self, request: TextRequest) -> AsyncIterator[str]:
        lines = self.stream_lines(
            "POST", self.chat_path, headers=self._headers(),
            json=self._text_payload(request, stream=True),
        )
        async for data in iter_sse_data(lines):
            chunk = decode_chunk(data)
            if not chunk:
                continue
            choices = chunk.get("choices") or [{}]
            content = (choices[0].get("delta") or {}).get("content")
            if content:
                yield content

    async def _probe(self) -> None:
        await self.transport.fetch_with_retry(
            "GET", self._url(self.health_path), headers=self._headers(), retries=0
        )


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI: chat completions for text/vision, Images API for generation."""

    kind = ProviderKind.OPENAI
    display_name = "OpenAI"
    text_model = "gpt-4o-mini"
    vision_model = "gpt-4o"
    image_model = "gpt-image-1"
    vision_temperature = 0.2

    @provider_call
    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        # input_image would need the edits endpoint; generation ignores it
        payload = {
            "model": self.image_model,
            "prompt": request.prompt,
            "size": request.size or "1024x1024",
            "n": 1,
        }
        data = await self.fetch_json(
            "POST", "/images/generations", headers=self._headers(), json=payload
        )
        image = (data.get("data") or [{}])[0]
        image_url: Optional[str] = image.get("url")
        if not image_url and image.get("b64_json"):
            image_url = f"data:image/png;base64,{image['b64_json']}"
        if not image_url:
            raise ValueError("image generation returned no image")
        return ImageResponse(image_url=image_url, provider=self.kind, model=self.image_model)
