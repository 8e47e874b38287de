"""Perplexity adapter: chat plus web-grounded search with citations."""
from relay.adapters.base import DEFAULT_MAX_TOKENS, provider_call
from relay.adapters.openai import OpenAICompatibleAdapter
from relay.types import ProviderKind, SearchRequest, SearchResponse, SearchSource


class PerplexityAdapter(OpenAICompatibleAdapter):
    kind = ProviderKind.PERPLEXITY
    display_name = "Perplexity"
    text_model = "llama-3.1-sonar-small-128k-online"
    vision_model = text_model

    @provider_call
    async def search(self, request: SearchRequest) -> SearchResponse:
        payload = {
            "model": self.text_model,
            "messages": [{"role": "user", "content": request.query}],
            # low temperature keeps answers factual
            "temperature": 0.2,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "search_recency_filter": "week",
            "top_p": 0.9,
            "frequency_penalty": 1,
        }
        data = await self.fetch_json("POST", self.chat_path, headers=self._headers(), json=payload)
        citations = data.get("citations") or []
        if request.max_results is not None:
            citations = citations[: request.max_results]
        sources = tuple(
            SearchSource(title=f"Source {index + 1}", url=url)
            for index, url in enumerate(citations)
        )
        return SearchResponse(content=self._first_message(data), provider=self.kind, sources=sources)

    async def _probe(self) -> None:
        # no cheap model listing; a one-token completion proves the key
        await self.transport.fetch_with_retry(
            "POST",
            self._url(self.chat_path),
            headers=self._headers(),
            json={
                "model": self.text_model,
                "messages": [{"role": "user", "content": "ping"}],
                "max_tokens": 1,
            },
            retries=0,
        )
