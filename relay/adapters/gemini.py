"""Google Gemini adapter over the Generative Language REST API.

Gemini is the only provider that covers every capability: text, vision, audio
analysis, image generation and Google-grounded search.
"""
from typing import Any, AsyncIterator, Dict, List

from relay.adapters.base import BaseAdapter, decode_chunk, iter_sse_data, provider_call, provider_stream
from relay.types import (
    AudioRequest,
    AudioResponse,
    ImageRequest,
    ImageResponse,
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

GEMINI_MODELS = {
    "flash": "gemini-2.5-flash",
    "image_gen": "gemini-2.5-flash-image",
    "health_check": "gemini-2.5-flash",
}


class GeminiAdapter(BaseAdapter):
    kind = ProviderKind.GEMINI
    display_name = "Gemini"
    error_messages = {400: "rejected the request as invalid"}

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self.config.api_key}

    def _path(self, model: str, method: str) -> str:
        return f"/models/{model}:{method}"

    @property
    def _text_model(self) -> str:
        return self._model(GEMINI_MODELS["flash"])

    def _text_payload(self, request: TextRequest) -> Dict[str, Any]:
        prompt = "\n\n".join(m.content for m in request.conversation())
        generation_config: Dict[str, Any] = {"temperature": self._temperature(request.temperature)}
        if request.response_format == ResponseFormat.JSON:
            generation_config["responseMimeType"] = "application/json"
        if request.max_tokens:
            generation_config["maxOutputTokens"] = request.max_tokens
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        system = request.system_instruction()
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    @staticmethod
    def _parts(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        candidates = data.get("candidates") or [{}]
        return (candidates[0].get("content") or {}).get("parts") or []

    def _text(self, data: Dict[str, Any]) -> str:
        return "".join(part.get("text", "") for part in self._parts(data))

    async def _generate(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.fetch_json(
            "POST", self._path(model, "generateContent"), headers=self._headers(), json=payload
        )

    async def _inline(self, model: str, mime_type: str, data: str, prompt: str) -> Dict[str, Any]:
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": data}},
                        {"text": prompt},
                    ],
                }
            ]
        }
        return await self._generate(model, payload)

    @provider_call
    async def chat(self, request: TextRequest) -> TextResponse:
        data = await self._generate(self._text_model, self._text_payload(request))
        return TextResponse(content=self._text(data), model=self._text_model, provider=self.kind)

    @provider_call
    async def vision(self, request: VisionRequest) -> VisionResponse:
        model = GEMINI_MODELS["flash"]
        data = await self._inline(model, request.mime_type, request.image_data, request.prompt)
        return VisionResponse(content=self._text(data), provider=self.kind, model=model)

    @provider_call
    async def analyze_audio(self, request: AudioRequest) -> AudioResponse:
        model = GEMINI_MODELS["flash"]
        data = await self._inline(model, request.mime_type, request.audio_data, request.prompt)
        return AudioResponse(content=self._text(data), provider=self.kind, model=model)

    @provider_call
    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        model = GEMINI_MODELS["image_gen"]
        parts: List[Dict[str, Any]] = []
        if request.input_image:
            parts.append({"inlineData": {"mimeType": "image/png", "data": request.input_image}})
        parts.append({"text": request.prompt})
        data = await self._generate(model, {"contents": [{"role": "user", "parts": parts}]})
        for part in self._parts(data):
            inline = part.get("inlineData")
            if inline:
                return ImageResponse(
                    image_url=f"data:{inline.get('mimeType', 'image/png')};base64,{inline['data']}",
                    provider=self.kind,
                    model=model,
                )
        raise ValueError("No image in response")

    @provider_call
    async def search(self, request: SearchRequest) -> SearchResponse:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": request.query}]}],
            "tools": [{"google_search": {}}],
        }
        data = await self._generate(GEMINI_MODELS["flash"], payload)
        candidates = data.get("candidates") or [{}]
        chunks = (candidates[0].get("groundingMetadata") or {}).get("groundingChunks") or []
        if request.max_results is not None:
            chunks = chunks[: request.max_results]
        sources = tuple(
            SearchSource(
                title=(chunk.get("web") or {}).get("title") or "Source",
                url=(chunk.get("web") or {}).get("uri") or "",
            )
            for chunk in chunks
        )
        return SearchResponse(content=self._text(data), provider=self.kind, sources=sources)

    def supports_streaming(self) -> bool:
        return True

    @provider_stream
    async def stream(self, request: TextRequest) -> AsyncIterator[str]:
        lines = self.stream_lines(
            "POST",
            self._path(self._text_model, "streamGenerateContent"),
            params={"alt": "sse"},
            headers=self._headers(),
            json=self._text_payload(request),
        )
        async for data in iter_sse_data(lines):
            chunk = decode_chunk(data)
            if not chunk:
                continue
            text = self._text(chunk)
            if text:
                yield text

    async def _probe(self) -> None:
        await self.transport.fetch_with_retry(
            "POST",
            self._url(self._path(GEMINI_MODELS["health_check"], "countTokens")),
            headers=self._headers(),
            json={"contents": [{"parts": [{"text": "ping"}]}]},
            retries=0,
        )
