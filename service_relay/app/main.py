"""
News relay service: cached RSS fetch proxy and Gemini summarize/chat relay.
"""

from typing import Any, Callable, Dict, Optional

from fastapi import Query, Request, Response
from fastapi.responses import StreamingResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.logging import get_request_id

from .adapters.gemini_client import GeminiClient, GenerationBackend
from .adapters.rss_client import RssSourceClient
from .caching.feed_cache import CachedFetchProxy, ContentSource, FeedCache, canonicalize_url
from .domain.assistant import AssistantService
from .domain.models import ChatRequest, ChatResponse, SummarizeRequest, SummarizeResponse
from .sse.stream_relay import StreamingRelay


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class RelayService(BaseService):
    """Relay service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        feed_source: Optional[ContentSource] = None,
        backend: Optional[GenerationBackend] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__("relay", config or get_config("relay"))

        cache_kwargs: Dict[str, Any] = {"ttl_seconds": self.config.rss_cache_ttl_seconds}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self.feed_cache = FeedCache(**cache_kwargs)
        self.feed_source = feed_source or RssSourceClient(timeout=self.config.rss_fetch_timeout_seconds)
        self.fetch_proxy = CachedFetchProxy(
            self.feed_source,
            self.feed_cache,
            single_flight=self.config.rss_single_flight,
            metrics=self.metrics,
        )

        self.backend = backend or GeminiClient(
            api_key=self.config.gemini_api_key,
            model=self.config.gemini_model,
            base_url=self.config.gemini_base_url,
            timeout=self.config.generation_timeout_seconds,
        )
        self.assistant = AssistantService(
            self.backend,
            web_search=self.config.chat_web_search,
            metrics=self.metrics,
        )
        self.stream_relay = StreamingRelay(
            self.backend,
            max_sessions=self.config.max_stream_sessions,
            metrics=self.metrics,
        )

        if not self.backend.is_configured:
            self.logger.warning("GEMINI_API_KEY is not set; generation endpoints will return 500")

        self._setup_relay_routes()
        self.app.state.relay_service = self

    def _setup_relay_routes(self):
        """Set up relay-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "relay",
                "message": "News Relay - RSS cache and generation relay",
                "version": "1.0.0",
                "capabilities": ["rss", "summarize", "summarize-stream", "chat"],
                "generation_configured": self.backend.is_configured,
            }

        @self.app.get("/get-rss")
        async def get_rss(url: Optional[str] = Query(None)):
            """Return the raw RSS document for ``url``, served from cache while fresh."""
            content = await self.fetch_proxy.get(url)
            return Response(content=content.payload, media_type=content.content_type)

        @self.app.post("/summarize", response_model=SummarizeResponse)
        async def summarize(body: SummarizeRequest):
            """Summarize the given text in one upstream call."""
            summary = await self.assistant.summarize(body.prompt)
            return SummarizeResponse(summary=summary)

        @self.app.get("/summarize-stream")
        async def summarize_stream(request: Request, prompt: Optional[str] = Query(None)):
            """Stream a summary as SSE frames: {text}, {error}, then {done: true}."""
            session = self.stream_relay.open_session(prompt, request_id=get_request_id())
            return StreamingResponse(
                self.stream_relay.sse_frames(session, is_disconnected=request.is_disconnected),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        @self.app.post("/chat", response_model=ChatResponse)
        async def chat(body: ChatRequest):
            """Answer a prompt or a multi-turn history, with web search when enabled."""
            answer = await self.assistant.chat(body)
            return ChatResponse(answer=answer)

        @self.app.get("/stats")
        async def get_stats():
            """Get cache and stream statistics."""
            return {
                "cache": self.fetch_proxy.get_stats(),
                "streams": self.stream_relay.get_stats(),
            }

        @self.app.delete("/cache")
        async def clear_cache(url: Optional[str] = Query(None)):
            """Drop one cached document, or all of them when no url is given."""
            if url is None:
                removed = self.feed_cache.clear()
            else:
                removed = int(self.feed_cache.invalidate(canonicalize_url(url)))
            self.logger.info("Cache cleared", url=url, removed=removed)
            return {"removed": removed}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report configuration of upstream dependencies."""
        return {
            "generation_backend": "ok" if self.backend.is_configured else "unconfigured",
            "rss_cache": "ok",
        }


def create_app(
    config: Optional[ServiceConfig] = None,
    *,
    feed_source: Optional[ContentSource] = None,
    backend: Optional[GenerationBackend] = None,
    clock: Optional[Callable[[], float]] = None,
):
    """Create relay service application."""
    service = RelayService(config, feed_source=feed_source, backend=backend, clock=clock)
    return service.app


def main():
    service = RelayService()
    service.run()


if __name__ == "__main__":
    main()
