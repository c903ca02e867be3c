"""
Streaming relay: forwards generated fragments to a client as Server-Sent Events.
"""

import asyncio
import inspect
import json
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TYPE_CHECKING, Union

from shared.logging import get_logger
from shared.errors import (
    ConfigurationError,
    FragmentSuppressedError,
    MalformedUpstreamResponseError,
    StreamLimitError,
    UpstreamFailureError,
)
from ..adapters.gemini_client import GenerationBackend, extract_candidate_text
from ..domain.models import GenerationRequest, require_prompt
from ..domain.prompts import STREAM_INSTRUCTION

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class StreamState(str, Enum):
    """Lifecycle of a streaming session."""
    OPEN = "open"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED})

_TRANSITIONS = {
    StreamState.OPEN: {StreamState.STREAMING, StreamState.FAILED, StreamState.CANCELLED},
    StreamState.STREAMING: {StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED},
}


class InvalidStateTransition(RuntimeError):
    """Raised when a session is moved along an edge the state machine does not have."""


@dataclass
class StreamSession:
    """One client connection bound to one upstream generation call."""
    prompt: str
    request_id: Optional[str] = None
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: StreamState = StreamState.OPEN
    fragments_sent: int = 0
    fragment_errors: int = 0
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: StreamState):
        if new_state not in _TRANSITIONS.get(self.state, ()):
            raise InvalidStateTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        if new_state in TERMINAL_STATES:
            self.finished_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "request_id": self.request_id,
            "state": self.state.value,
            "fragments_sent": self.fragments_sent,
            "fragment_errors": self.fragment_errors,
            "error": self.error,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }


class CancellationToken:
    """Signals the fragment loop that the client is gone."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class RelayEvent:
    """One event delivered to the client: a text fragment, an error, or completion."""
    kind: str
    value: Any = None

    @classmethod
    def text(cls, text: str) -> "RelayEvent":
        return cls("text", text)

    @classmethod
    def error(cls, message: str) -> "RelayEvent":
        return cls("error", message)

    @classmethod
    def done(cls) -> "RelayEvent":
        return cls("done", True)

    def payload(self) -> Dict[str, Any]:
        return {self.kind: self.value}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.payload(), ensure_ascii=False)}\n\n"


EventCallback = Callable[[RelayEvent], Union[None, Awaitable[None]]]
DisconnectProbe = Callable[[], Awaitable[bool]]


class StreamingRelay:
    """Relays an upstream generation stream, one fragment at a time, in arrival order."""

    def __init__(
        self,
        backend: GenerationBackend,
        *,
        system_instruction: str = STREAM_INSTRUCTION,
        max_sessions: int = 500,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.backend = backend
        self.system_instruction = system_instruction
        self.max_sessions = max_sessions
        self.metrics = metrics
        self.logger = get_logger("relay.stream")

        self.sessions: Dict[str, StreamSession] = {}
        self.totals: Counter = Counter()

    def open_session(self, prompt: Optional[str], request_id: Optional[str] = None) -> StreamSession:
        """Validate input, configuration and capacity; return a new OPEN session.

        Raises before any upstream call is attempted. The session only takes a
        slot once ``run`` starts, so a stream that is never iterated holds none.
        """
        prompt = require_prompt(prompt)
        if not self.backend.is_configured:
            raise ConfigurationError("API key is not configured on the server")
        if len(self.sessions) >= self.max_sessions:
            raise StreamLimitError(
                f"Maximum stream sessions ({self.max_sessions}) exceeded",
                details={"max_sessions": self.max_sessions},
            )

        return StreamSession(prompt=prompt, request_id=request_id)

    async def relay(
        self,
        prompt: Optional[str],
        on_event: EventCallback,
        *,
        cancel_token: Optional[CancellationToken] = None,
        request_id: Optional[str] = None,
    ) -> StreamSession:
        """Run a whole session, handing each event to ``on_event``; returns the finished session."""
        session = self.open_session(prompt, request_id)
        events = self.run(session, cancel_token)
        try:
            async for event in events:
                result = on_event(event)
                if inspect.isawaitable(result):
                    await result
        finally:
            await events.aclose()
        return session

    async def run(
        self,
        session: StreamSession,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[RelayEvent]:
        """Drive ``session`` through the state machine, yielding events in order."""
        if not self._register(session):
            session.error = f"Maximum stream sessions ({self.max_sessions}) exceeded"
            session.transition(StreamState.FAILED)
            self.totals[session.state.value] += 1
            self._record("stream_sessions_total", state=session.state.value)
            self.logger.warning("Stream session refused", session_id=session.session_id, max_sessions=self.max_sessions)
            yield RelayEvent.error(session.error)
            yield RelayEvent.done()
            return

        token = cancel_token or CancellationToken()
        request = GenerationRequest.from_prompt(session.prompt, self.system_instruction)
        fragments = self.backend.stream(request)

        try:
            session.transition(StreamState.STREAMING)
            try:
                async for chunk in fragments:
                    if token.cancelled:
                        break
                    yield self._to_event(session, chunk)
                    if token.cancelled:
                        break
            except UpstreamFailureError as exc:
                failure = exc.message
            except Exception as exc:
                self.logger.error("Unexpected stream error", session_id=session.session_id, error=str(exc), exc_info=True)
                failure = str(exc) or type(exc).__name__
            else:
                failure = None

            if token.cancelled:
                self._cancel(session)
                return

            if failure is not None:
                session.error = failure
                session.transition(StreamState.FAILED)
                self.logger.error("Stream session failed", session_id=session.session_id, error=failure)
                yield RelayEvent.error(failure)
                yield RelayEvent.done()
                return

            session.transition(StreamState.COMPLETED)
            yield RelayEvent.done()
        except (asyncio.CancelledError, GeneratorExit):
            self._cancel(session)
            raise
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()
            self._finish(session)

    async def sse_frames(
        self,
        session: StreamSession,
        is_disconnected: Optional[DisconnectProbe] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[str]:
        """Format the session's events as SSE frames, stopping once the client has gone."""
        token = cancel_token or CancellationToken()
        events = self.run(session, token)
        try:
            async for event in events:
                if is_disconnected is not None and await is_disconnected():
                    self.logger.info("Client disconnected", session_id=session.session_id)
                    token.cancel()
                    break
                yield event.to_sse()
        finally:
            await events.aclose()

    def _register(self, session: StreamSession) -> bool:
        if len(self.sessions) >= self.max_sessions:
            return False
        self.sessions[session.session_id] = session
        self._set_active_gauge()
        self.logger.info(
            "Stream session opened",
            session_id=session.session_id,
            request_id=session.request_id,
            active_sessions=len(self.sessions),
        )
        return True

    def _to_event(self, session: StreamSession, chunk: Dict[str, Any]) -> RelayEvent:
        try:
            text = extract_candidate_text(chunk)
        except MalformedUpstreamResponseError as exc:
            suppressed = FragmentSuppressedError(exc.message, details=exc.details)
            session.fragment_errors += 1
            self.logger.warning(
                "Fragment suppressed",
                session_id=session.session_id,
                reason=suppressed.message,
            )
            self._record("fragments_relayed_total", kind="error")
            return RelayEvent.error(suppressed.message)

        session.fragments_sent += 1
        self._record("fragments_relayed_total", kind="text")
        return RelayEvent.text(text)

    def _cancel(self, session: StreamSession):
        if not session.finished:
            session.transition(StreamState.CANCELLED)
            self.logger.info(
                "Stream session cancelled",
                session_id=session.session_id,
                fragments_sent=session.fragments_sent,
            )

    def _finish(self, session: StreamSession):
        if not session.finished:
            # Loop exited without reaching a terminal state (e.g. abandoned generator)
            session.transition(StreamState.CANCELLED)
        if self.sessions.pop(session.session_id, None) is None:
            return

        self.totals[session.state.value] += 1
        self._set_active_gauge()
        self._record("stream_sessions_total", state=session.state.value)
        if self.metrics and session.finished_at is not None:
            self.metrics.observe_histogram(
                "stream_session_duration_seconds",
                session.finished_at - session.created_at,
            )
        self.logger.info(
            "Stream session closed",
            session_id=session.session_id,
            state=session.state.value,
            fragments_sent=session.fragments_sent,
            fragment_errors=session.fragment_errors,
        )

    def _set_active_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("active_stream_sessions", len(self.sessions))

    def _record(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": len(self.sessions),
            "max_sessions": self.max_sessions,
            "finished": dict(self.totals),
            "sessions": [session.to_dict() for session in self.sessions.values()],
        }
