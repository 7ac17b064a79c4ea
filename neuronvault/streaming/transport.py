"""
Transport abstraction shared by the WebSocket and the HTTP push-stream variants.

The session manager only talks to `StreamTransport`, so it never branches on
which variant is in use.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional

from neuronvault.streaming.events import StreamingEvent
from neuronvault.streaming.streaming_session import TransportKind


class TransportFault(Exception):
    """Connection lost, refused, handshake timeout or heartbeat silence."""

    def __init__(self, message: str, transport_kind: Optional[TransportKind] = None):
        self.transport_kind = transport_kind
        super().__init__(message)


@dataclass(frozen=True)
class StreamRequest:
    """What a streaming backend needs in order to start a conversation stream."""
    conversation_id: str
    prompt: str
    model_selection: Dict[str, bool]
    weights: Optional[Dict[str, float]] = None
    mode: str = "chat"

    @property
    def enabled_models(self) -> list[str]:
        return [model for model, enabled in self.model_selection.items() if enabled]

    def to_body(self) -> dict:
        return {
            "prompt": self.prompt,
            "modelConfig": dict(self.model_selection),
            "customWeights": dict(self.weights) if self.weights is not None else None,
            "mode": self.mode,
        }

    def to_start_frame(self) -> dict:
        return {
            "type": "start_stream",
            "conversationId": self.conversation_id,
            **self.to_body(),
        }


class StreamTransport(ABC):
    """
    One connection to a streaming backend.

    Lifecycle: `open()` once, iterate `events()` until it ends (normal
    completion) or raises TransportFault, then `close()`. A transport instance
    is not reused after `close()`.
    """

    kind: TransportKind

    @abstractmethod
    async def open(self, request: StreamRequest) -> None:
        """Connect and send the start request. Raises TransportFault on failure."""

    @abstractmethod
    def events(self) -> AsyncIterator[StreamingEvent]:
        """Yield parsed events in arrival order. Malformed frames are dropped."""

    @abstractmethod
    async def close(self) -> None:
        """Tear down the connection. Safe to call more than once."""


TransportFactory = Callable[[TransportKind], StreamTransport]


def default_transport_factory(kind: TransportKind) -> StreamTransport:
    """Build the concrete transport for a kind using the configured endpoints."""
    # Imported here so that importing the interface does not pull in both client stacks.
    if kind == TransportKind.websocket:
        from neuronvault.streaming.websocket_transport import WebSocketTransport
        return WebSocketTransport()
    if kind == TransportKind.server_sent_events:
        from neuronvault.streaming.sse_transport import SseTransport
        return SseTransport()
    raise ValueError(f"Unsupported transport kind: {kind!r}")
