"""Streaming session management over interchangeable WebSocket and HTTP push-stream transports."""

from .events import EventKind, FrameParseError, StreamingEvent, UnknownEventKindError, parse_frame
from .streaming_session import ModelProgress, ModelStatus, StreamingSession, TransportKind
from .transport import StreamRequest, StreamTransport, TransportFault, default_transport_factory
from .session_manager import StreamingSessionManager, StreamingState

__all__ = [
    "EventKind",
    "FrameParseError",
    "StreamingEvent",
    "UnknownEventKindError",
    "parse_frame",
    "ModelProgress",
    "ModelStatus",
    "StreamingSession",
    "TransportKind",
    "StreamRequest",
    "StreamTransport",
    "TransportFault",
    "default_transport_factory",
    "StreamingSessionManager",
    "StreamingState",
]
