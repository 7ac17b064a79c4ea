"""Per-conversation streaming state: model progress, event log and derived aggregates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from neuronvault.streaming.events import EventKind, StreamingEvent


class TransportKind(str, Enum):
    """The two interchangeable transport variants."""
    websocket = "websocket"
    server_sent_events = "server_sent_events"


class ModelStatus(str, Enum):
    queued = "queued"
    streaming = "streaming"
    completed = "completed"
    failed = "failed"


def _clamp_fraction(value: Any) -> float:
    try:
        fraction = float(value)
    except (TypeError, ValueError):
        return 0.0
    if fraction != fraction:  # NaN
        return 0.0
    return min(1.0, max(0.0, fraction))


@dataclass
class ModelProgress:
    """Progress of one model inside a session."""
    model_id: str
    status: ModelStatus = ModelStatus.queued
    fraction_complete: float = 0.0
    accumulated_chunks: List[str] = field(default_factory=list)
    error_detail: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    event_count: int = 0

    @property
    def completed(self) -> bool:
        return self.status == ModelStatus.completed

    @property
    def text(self) -> str:
        return "".join(self.accumulated_chunks)

    def mark_started(self) -> None:
        self.event_count += 1
        if self.status == ModelStatus.queued:
            self.status = ModelStatus.streaming

    def append_chunk(self, chunk: str, progress: Any, metrics: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Record one chunk. Returns False, changing nothing, once the model has
        completed. The fraction never decreases.
        """
        if self.completed:
            return False
        self.event_count += 1
        self.accumulated_chunks.append(chunk)
        if metrics:
            self.metrics = dict(metrics)
        self.fraction_complete = max(self.fraction_complete, _clamp_fraction(progress))
        if self.fraction_complete >= 1.0:
            self.fraction_complete = 1.0
            self.status = ModelStatus.completed
        elif self.status != ModelStatus.failed:
            self.status = ModelStatus.streaming
        return True

    def mark_failed(self, error_detail: str) -> None:
        self.event_count += 1
        self.status = ModelStatus.failed
        self.error_detail = error_detail


@dataclass
class StreamingSession:
    """
    One live orchestration instance for a conversation.

    Only the session manager mutates a session; everyone else reads it.
    """
    session_id: str
    transport_kind: TransportKind
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    strategy_name: str = "adaptive"
    model_progress: Dict[str, ModelProgress] = field(default_factory=dict)
    event_log: List[StreamingEvent] = field(default_factory=list)
    synthesis_progress: float = 0.0
    final_response: Optional[str] = None
    last_error: Optional[str] = None
    # Chunks still to be skipped while the backend replays the stream after a reconnect.
    replay_skip: Dict[str, int] = field(default_factory=dict)
    synthesis_replay_skip: int = 0

    @property
    def duration(self) -> timedelta:
        return datetime.now(timezone.utc) - self.created_at

    @property
    def active_models(self) -> List[str]:
        return list(self.model_progress.keys())

    @property
    def aggregate_progress(self) -> float:
        """Mean fraction over the models that have emitted at least one event."""
        seen = [progress.fraction_complete for progress in self.model_progress.values() if progress.event_count > 0]
        if not seen:
            return 0.0
        return sum(seen) / len(seen)

    @property
    def is_complete(self) -> bool:
        if not self.model_progress:
            return False
        return all(progress.completed for progress in self.model_progress.values())

    @property
    def synthesized_text(self) -> str:
        return "".join(
            str(event.payload.get("chunk") or "")
            for event in self.event_log
            if event.kind == EventKind.synthesis_chunk
        )

    def progress_for(self, model_id: str) -> ModelProgress:
        """Return the progress entry for a model, registering it as queued if unseen."""
        progress = self.model_progress.get(model_id)
        if progress is None:
            progress = ModelProgress(model_id=model_id)
            self.model_progress[model_id] = progress
        return progress

    def begin_replay(self) -> None:
        """
        The backend restarts a stream from its first frame after a reconnect.
        Remember how many chunks were already applied, per model and for the
        synthesis, so that `is_replayed` can drop the repeats.
        """
        self.replay_skip = {
            model_id: len(progress.accumulated_chunks)
            for model_id, progress in self.model_progress.items()
            if progress.accumulated_chunks
        }
        self.synthesis_replay_skip = sum(1 for event in self.event_log if event.kind == EventKind.synthesis_chunk)

    def is_replayed(self, event: StreamingEvent) -> bool:
        """True for a chunk that repeats one applied before the reconnect. Consumes it from the skip counts."""
        if event.kind == EventKind.model_chunk:
            model = event.model
            remaining = self.replay_skip.get(model, 0) if model else 0
            if remaining > 0:
                self.replay_skip[model] = remaining - 1
                return True
        elif event.kind == EventKind.synthesis_chunk and self.synthesis_replay_skip > 0:
            self.synthesis_replay_skip -= 1
            return True
        return False

    def register_models(self, model_ids: List[str]) -> None:
        for model_id in model_ids:
            self.progress_for(model_id)

    def stats(self) -> Dict[str, Any]:
        return {
            "conversationId": self.session_id,
            "transport": self.transport_kind.value,
            "duration": int(self.duration.total_seconds() * 1000),
            "totalProgress": self.aggregate_progress,
            "activeModels": len(self.model_progress),
            "eventsReceived": len(self.event_log),
            "strategy": self.strategy_name,
            "isCompleted": self.is_complete,
            "modelProgress": {
                model_id: {
                    "status": progress.status.value,
                    "progress": progress.fraction_complete,
                    "chunks": len(progress.accumulated_chunks),
                    "completed": progress.completed,
                    "error": progress.error_detail,
                    "metrics": dict(progress.metrics),
                }
                for model_id, progress in self.model_progress.items()
            },
        }
