"""
SSE streaming relay for the Relay Service.

Binds each client connection to one upstream generation stream, runs it
through the session state machine, and frames fragments as Server-Sent
Events until completion or disconnect.
"""

from .stream_relay import (
    CancellationToken,
    InvalidStateTransition,
    RelayEvent,
    StreamingRelay,
    StreamSession,
    StreamState,
)

__all__ = [
    "CancellationToken",
    "InvalidStateTransition",
    "RelayEvent",
    "StreamingRelay",
    "StreamSession",
    "StreamState",
]
