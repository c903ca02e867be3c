"""
Non-streaming summarize/chat calls against the generation backend.
"""

from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger
from shared.errors import ConfigurationError, UpstreamFailureError
from ..adapters.gemini_client import GenerationBackend
from .models import ChatRequest, GenerationRequest, require_prompt
from .prompts import CHAT_INSTRUCTION, SUMMARIZE_INSTRUCTION, WEB_SEARCH_TOOL

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class AssistantService:
    """Builds generation requests for the summarizer and chat personas."""

    def __init__(
        self,
        backend: GenerationBackend,
        *,
        web_search: bool = True,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.backend = backend
        self.web_search = web_search
        self.metrics = metrics
        self.logger = get_logger("relay.assistant")

    def _ensure_configured(self):
        if not self.backend.is_configured:
            raise ConfigurationError("API key is not configured on the server")

    async def summarize(self, prompt: Optional[str]) -> str:
        prompt = require_prompt(prompt)
        self._ensure_configured()
        request = GenerationRequest.from_prompt(prompt, SUMMARIZE_INSTRUCTION)
        return await self._complete(request, operation="summarize")

    async def chat(self, body: ChatRequest) -> str:
        contents = body.to_contents()
        self._ensure_configured()
        request = GenerationRequest(
            contents=contents,
            system_instruction=CHAT_INSTRUCTION,
            tools=[WEB_SEARCH_TOOL] if self.web_search else [],
        )
        return await self._complete(request, operation="chat")

    async def _complete(self, request: GenerationRequest, operation: str) -> str:
        try:
            text = await self.backend.complete(request)
        except UpstreamFailureError as exc:
            self._record(operation, "error")
            self.logger.error("Generation call failed", operation=operation, code=exc.code, error=exc.message)
            raise

        self._record(operation, "ok")
        self.logger.info("Generation call completed", operation=operation, turns=len(request.contents), length=len(text))
        return text

    def _record(self, operation: str, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("upstream_fetches_total", source=f"generation_{operation}", outcome=outcome)
