"""
Generation backend interface and its Gemini REST implementation.
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx

from shared.logging import get_logger
from shared.errors import (
    ConfigurationError,
    MalformedUpstreamResponseError,
    UpstreamFailureError,
)
from ..domain.models import GenerationRequest


SERVICE_NAME = "gemini"


class GenerationBackend(Protocol):
    """A generative-text service with one-shot and streaming calls."""

    @property
    def is_configured(self) -> bool:
        ...

    async def complete(self, request: GenerationRequest) -> str:
        ...

    def stream(self, request: GenerationRequest) -> AsyncIterator[Dict[str, Any]]:
        ...


def extract_candidate_text(payload: Dict[str, Any]) -> str:
    """Return the text of the first candidate, or raise MalformedUpstreamResponseError."""
    if not isinstance(payload, dict):
        raise MalformedUpstreamResponseError(SERVICE_NAME, "Response is not a JSON object")

    if "error" in payload:
        error = payload["error"] or {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise MalformedUpstreamResponseError(SERVICE_NAME, message or "Upstream reported an error")

    candidates = payload.get("candidates") or []
    if not candidates:
        block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise MalformedUpstreamResponseError(
                SERVICE_NAME,
                f"Prompt blocked: {block_reason}",
                details={"block_reason": block_reason},
            )
        raise MalformedUpstreamResponseError(SERVICE_NAME, "No candidates in response")

    candidate = candidates[0] or {}
    parts = (candidate.get("content") or {}).get("parts") or []
    texts = [part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
    if not texts:
        finish_reason = candidate.get("finishReason")
        details = {"finish_reason": finish_reason} if finish_reason else {}
        raise MalformedUpstreamResponseError(
            SERVICE_NAME,
            f"No text in candidate (finishReason={finish_reason})" if finish_reason else "No text in candidate",
            details=details,
        )

    return "".join(texts)


def _error_message(response: httpx.Response, body: Optional[bytes] = None) -> str:
    """Pull Gemini's error message out of a failed response, if present."""
    raw = body if body is not None else response.content
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return f"HTTP {response.status_code}"

    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        message = (data.get("error") or {}).get("message")
        if message:
            return f"HTTP {response.status_code}: {message}"
    return f"HTTP {response.status_code}"


class GeminiClient:
    """Client for the Gemini ``generateContent`` REST API."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash-preview-09-2025",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self.transport = transport
        self.logger = get_logger("relay.gemini_client")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("API key is not configured on the server")
        return self.api_key

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": self._require_api_key(),
            },
        )

    @staticmethod
    def build_payload(request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"contents": request.contents}
        if request.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": request.system_instruction}]}
        if request.tools:
            payload["tools"] = request.tools
        return payload

    async def complete(self, request: GenerationRequest) -> str:
        """Single request/response generation call."""
        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = self.build_payload(request)

        try:
            async with self._client() as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            self.logger.error("Gemini transport error", error=str(exc))
            raise UpstreamFailureError(SERVICE_NAME, str(exc) or type(exc).__name__)

        if not response.is_success:
            message = _error_message(response)
            self.logger.error("Gemini request failed", status_code=response.status_code, error=message)
            raise UpstreamFailureError(SERVICE_NAME, message, upstream_status=response.status_code)

        try:
            result = response.json()
        except ValueError:
            raise MalformedUpstreamResponseError(SERVICE_NAME, "Response body is not valid JSON")

        text = extract_candidate_text(result)
        self.logger.debug("Gemini completion received", length=len(text))
        return text

    async def stream(self, request: GenerationRequest) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded ``streamGenerateContent`` chunks as they arrive.

        Closing the iterator (``aclose``) closes the upstream connection.
        """
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent"
        payload = self.build_payload(request)

        try:
            async with self._client() as client:
                async with client.stream("POST", url, params={"alt": "sse"}, json=payload) as response:
                    if not response.is_success:
                        body = await response.aread()
                        message = _error_message(response, body)
                        self.logger.error(
                            "Gemini stream request failed",
                            status_code=response.status_code,
                            error=message,
                        )
                        raise UpstreamFailureError(SERVICE_NAME, message, upstream_status=response.status_code)

                    data_lines: List[str] = []
                    async for line in response.aiter_lines():
                        if line.startswith("data:"):
                            data_lines.append(line[5:].lstrip())
                            continue
                        if line.strip() or not data_lines:
                            continue
                        yield self._decode_chunk("\n".join(data_lines))
                        data_lines = []

                    if data_lines:
                        yield self._decode_chunk("\n".join(data_lines))
        except httpx.HTTPError as exc:
            self.logger.error("Gemini stream transport error", error=str(exc))
            raise UpstreamFailureError(SERVICE_NAME, str(exc) or type(exc).__name__)

    def _decode_chunk(self, data: str) -> Dict[str, Any]:
        try:
            chunk = json.loads(data)
        except ValueError:
            self.logger.warning("Undecodable stream chunk", size=len(data))
            # Text extraction reports this chunk as suppressed
            return {}
        return chunk if isinstance(chunk, dict) else {}
