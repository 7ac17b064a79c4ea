"""
Canonical streaming events and the parser that turns raw backend frames into them.

A raw frame looks like this:
```
{"type": "model_chunk", "conversationId": "conv_1", "data": {"model": "claude", "chunk": "Hello", "progress": 0.1}, "timestamp": 1718000000000}
```
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    stream_started = "stream_started"
    strategy_selected = "strategy_selected"
    model_stream_started = "model_stream_started"
    model_chunk = "model_chunk"
    synthesis_started = "synthesis_started"
    synthesis_chunk = "synthesis_chunk"
    synthesis_completed = "synthesis_completed"
    stream_completed = "stream_completed"
    stream_error = "stream_error"
    synthesis_error = "synthesis_error"
    model_streaming_error = "model_streaming_error"
    heartbeat = "heartbeat"

    @property
    def is_error(self) -> bool:
        return self in ERROR_EVENT_KINDS


ERROR_EVENT_KINDS = frozenset({
    EventKind.stream_error,
    EventKind.synthesis_error,
    EventKind.model_streaming_error,
})


class FrameParseError(ValueError):
    """Raised when a raw frame is not a well-formed event frame."""


class UnknownEventKindError(FrameParseError):
    """Raised when a frame carries a `type` this client does not understand."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown event kind: {kind!r}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StreamingEvent:
    """An immutable event appended to a session's event log."""

    kind: EventKind
    session_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    def __post_init__(self):
        # Freeze the payload so the event log can never be edited after the fact.
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @property
    def model(self) -> Optional[str]:
        value = self.payload.get("model")
        return str(value) if value is not None else None

    @property
    def error_message(self) -> str:
        value = self.payload.get("error") or self.payload.get("message")
        return str(value) if value else "Unknown streaming error"

    def to_frame(self) -> dict:
        """Wire representation, the inverse of `parse_frame`."""
        return {
            "type": self.kind.value,
            "conversationId": self.session_id,
            "data": dict(self.payload),
            "timestamp": int(self.timestamp.timestamp() * 1000),
        }

    def __repr__(self) -> str:
        return f"StreamingEvent(kind={self.kind.value!r}, session_id={self.session_id!r})"


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return _now()
    if isinstance(value, bool):
        raise FrameParseError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise FrameParseError(f"Invalid timestamp: {value!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise FrameParseError(f"Invalid timestamp: {value!r}")


def event_from_dict(data: Mapping[str, Any], default_session_id: str = "") -> StreamingEvent:
    """
    Build a StreamingEvent from a decoded frame.

    Raises FrameParseError for malformed frames and UnknownEventKindError for
    frames with an unrecognized `type`.
    """
    if not isinstance(data, Mapping):
        raise FrameParseError(f"Frame must be a JSON object, got {type(data).__name__}")
    raw_kind = data.get("type")
    if not isinstance(raw_kind, str) or not raw_kind:
        raise FrameParseError("Frame has no 'type' field")
    try:
        kind = EventKind(raw_kind)
    except ValueError:
        raise UnknownEventKindError(raw_kind) from None

    payload = data.get("data")
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise FrameParseError(f"Frame 'data' must be an object, got {type(payload).__name__}")

    session_id = data.get("conversationId") or default_session_id
    return StreamingEvent(
        kind=kind,
        session_id=str(session_id),
        payload=payload,
        timestamp=_parse_timestamp(data.get("timestamp")),
    )


def parse_frame(raw: Union[str, bytes, Mapping[str, Any]], default_session_id: str = "") -> Optional[StreamingEvent]:
    """
    Parse one raw frame. Malformed frames and unknown kinds are logged and
    dropped by returning None, they never fail the session.
    """
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise FrameParseError(f"Frame is not valid JSON: {exc}") from exc
        return event_from_dict(raw, default_session_id=default_session_id)
    except UnknownEventKindError as exc:
        logger.warning(f"Dropping frame with unknown event kind {exc.kind!r}")
        return None
    except (FrameParseError, UnicodeDecodeError) as exc:
        logger.warning(f"Dropping malformed frame: {exc}")
        return None
