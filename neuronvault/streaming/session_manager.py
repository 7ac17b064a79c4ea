"""
Owns the transport lifecycle of one streaming session at a time.

State machine:
```
idle -> connecting -> connected -> streaming -> completed
             any transport fault or *_error event -> error
             stop_session() from any state -> idle
```

Events are applied to the session strictly in arrival order by a single pump
task, then republished to event subscribers, and a plain-text feed of
`[model] text`, `[SYNTHESIS] text` and `[FINAL] text` lines.

On a transport fault the manager schedules a reconnect after
`attempt * reconnect_backoff_seconds`, up to `max_reconnect_attempts`. After
that the manager stays in the error state until the caller starts a new session.
A reconnect resends the same request and the backend restarts the stream, so
after its `stream_started` the chunks already applied are skipped.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

from neuronvault.config import STREAMING_CONTROLS, StreamingControls
from neuronvault.streaming.broadcast import Broadcaster, Subscription
from neuronvault.streaming.events import EventKind, StreamingEvent
from neuronvault.streaming.streaming_session import StreamingSession, TransportKind, _clamp_fraction
from neuronvault.streaming.transport import (
    StreamRequest,
    StreamTransport,
    TransportFactory,
    TransportFault,
    default_transport_factory,
)

logger = logging.getLogger(__name__)


class StreamingState(str, Enum):
    idle = "idle"
    connecting = "connecting"
    connected = "connected"
    streaming = "streaming"
    completed = "completed"
    error = "error"


class StreamingSessionManager:
    """
    At most one live session per manager instance. Construct one manager per
    conversation context and pass it to whoever needs it.
    """

    def __init__(
        self,
        transport_factory: TransportFactory = default_transport_factory,
        controls: StreamingControls = STREAMING_CONTROLS,
    ) -> None:
        self._transport_factory = transport_factory
        self._controls = controls

        self._state = StreamingState.idle
        self._session: Optional[StreamingSession] = None
        self._request: Optional[StreamRequest] = None
        self._transport: Optional[StreamTransport] = None
        self._error: Optional[str] = None

        self._pump_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        # Set by a successful reconnect, the next stream_started begins a replay.
        self._replay_pending = False
        # Bumped on every start/stop so a slow open() can tell it has been superseded.
        self._generation = 0

        self._event_broadcaster: Broadcaster[StreamingEvent] = Broadcaster()
        self._message_broadcaster: Broadcaster[str] = Broadcaster()

    @property
    def state(self) -> StreamingState:
        return self._state

    @property
    def current_session(self) -> Optional[StreamingSession]:
        return self._session

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    @property
    def is_connected(self) -> bool:
        return self._state in (StreamingState.connected, StreamingState.streaming)

    @property
    def is_streaming(self) -> bool:
        return self._state == StreamingState.streaming

    def subscribe_events(self) -> Subscription[StreamingEvent]:
        return self._event_broadcaster.subscribe()

    def subscribe_messages(self) -> Subscription[str]:
        return self._message_broadcaster.subscribe()

    async def start_session(
        self,
        transport_kind: TransportKind,
        conversation_id: str,
        prompt: str,
        model_selection: Dict[str, bool],
        weights: Optional[Dict[str, float]] = None,
        mode: str = "chat",
    ) -> bool:
        """Open a transport and start streaming. Returns False if the transport could not be opened."""
        if self._state != StreamingState.idle:
            await self.stop_session()

        self._generation += 1
        generation = self._generation
        request = StreamRequest(
            conversation_id=conversation_id,
            prompt=prompt,
            model_selection=dict(model_selection),
            weights=dict(weights) if weights is not None else None,
            mode=mode,
        )
        self._error = None
        self._reconnect_attempts = 0
        self._replay_pending = False
        self._set_state(StreamingState.connecting)

        transport = self._transport_factory(transport_kind)
        try:
            await self._open_transport(transport, request)
        except TransportFault as fault:
            if generation == self._generation:
                self._set_error(f"Failed to start streaming: {fault}")
            return False

        if generation != self._generation:
            logger.info(f"Session {conversation_id!r} was stopped while connecting")
            await transport.close()
            return False

        self._session = StreamingSession(session_id=conversation_id, transport_kind=transport_kind)
        self._request = request
        self._transport = transport
        self._set_state(StreamingState.connected)
        self._pump_task = asyncio.create_task(self._pump(self._session, transport))
        logger.info(f"Streaming session started: {conversation_id!r} ({transport_kind.value})")
        return True

    async def stop_session(self) -> None:
        """Tear down the transport and discard the session. Later events for it are ignored."""
        if self._state == StreamingState.idle:
            return
        logger.info("Stopping streaming session")
        self._generation += 1
        self._session = None
        self._request = None

        retry_task, self._retry_task = self._retry_task, None
        pump_task, self._pump_task = self._pump_task, None
        for task in (retry_task, pump_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

        self._error = None
        self._reconnect_attempts = 0
        self._replay_pending = False
        self._set_state(StreamingState.idle)

    async def aclose(self) -> None:
        """Stop any session and end every subscription."""
        await self.stop_session()
        self._event_broadcaster.close()
        self._message_broadcaster.close()

    def get_streaming_stats(self) -> Dict[str, Any]:
        if self._session is None:
            return {}
        stats = self._session.stats()
        stats["state"] = self._state.value
        stats["reconnectAttempts"] = self._reconnect_attempts
        return stats

    async def _open_transport(self, transport: StreamTransport, request: StreamRequest) -> None:
        try:
            await asyncio.wait_for(transport.open(request), timeout=self._controls.connection_timeout)
        except asyncio.TimeoutError:
            await transport.close()
            raise TransportFault(
                f"Handshake timed out after {self._controls.connection_timeout:.1f} seconds",
                transport.kind,
            ) from None
        except TransportFault:
            await transport.close()
            raise
        except asyncio.CancelledError:
            # stop_session() cancelled a reconnect while it was still opening.
            await transport.close()
            raise

    async def _pump(self, session: StreamingSession, transport: StreamTransport) -> None:
        try:
            async for event in transport.events():
                if session is not self._session:
                    return
                self._reconnect_attempts = 0
                self._apply_event(session, event)
        except TransportFault as fault:
            if session is self._session:
                await self._handle_transport_fault(session, transport, fault)
            return

        await transport.close()
        if session is not self._session:
            return
        if self._state in (StreamingState.connected, StreamingState.streaming):
            logger.info(f"Stream ended for session {session.session_id!r}")
            self._set_state(StreamingState.completed)

    async def _handle_transport_fault(
        self,
        session: StreamingSession,
        transport: StreamTransport,
        fault: TransportFault,
    ) -> None:
        await transport.close()
        if self._state == StreamingState.completed:
            logger.info(f"Ignoring transport fault after completion: {fault}")
            return

        self._reconnect_attempts += 1
        max_attempts = self._controls.max_reconnect_attempts
        logger.error(f"Transport fault ({self._reconnect_attempts}/{max_attempts}): {fault}")
        if self._reconnect_attempts < max_attempts:
            delay = self._reconnect_attempts * self._controls.reconnect_backoff_seconds
            self._set_error(f"Connection lost. Retry {self._reconnect_attempts}/{max_attempts}")
            self._retry_task = asyncio.create_task(self._reconnect_after(session, delay))
        else:
            self._set_error(f"Streaming failed: {fault}")

    async def _reconnect_after(self, session: StreamingSession, delay: float) -> None:
        await asyncio.sleep(delay)
        if session is not self._session or self._request is None:
            return
        logger.info(f"Reconnecting session {session.session_id!r}, attempt {self._reconnect_attempts}")
        transport = self._transport_factory(session.transport_kind)
        try:
            await self._open_transport(transport, self._request)
        except TransportFault as fault:
            if session is self._session:
                self._retry_task = None
                await self._handle_transport_fault(session, transport, fault)
            return

        if session is not self._session:
            await transport.close()
            return
        self._retry_task = None
        self._transport = transport
        self._error = None
        self._replay_pending = True
        session.last_error = None
        self._set_state(StreamingState.connected)
        self._pump_task = asyncio.create_task(self._pump(session, transport))

    def _apply_event(self, session: StreamingSession, event: StreamingEvent) -> None:
        if event.kind == EventKind.stream_started and self._replay_pending:
            self._replay_pending = False
            session.begin_replay()
            logger.info(f"Backend restarted the stream for {session.session_id!r}, skipping replayed chunks")
        elif session.is_replayed(event):
            logger.debug(f"Skipping replayed {event.kind.value} event")
            return

        session.event_log.append(event)
        self._event_broadcaster.publish(event)

        payload = event.payload
        kind = event.kind
        if kind == EventKind.stream_started:
            models = payload.get("modelIds") or payload.get("models") or []
            session.register_models([str(model) for model in models])
            if self._state == StreamingState.connected:
                self._set_state(StreamingState.streaming)
            logger.info(f"Streaming started with models: {models}")

        elif kind == EventKind.strategy_selected:
            session.strategy_name = str(payload.get("strategy") or "unknown")
            logger.debug(f"Strategy selected: {session.strategy_name}")

        elif kind == EventKind.model_stream_started:
            model = event.model
            if model:
                session.progress_for(model).mark_started()

        elif kind == EventKind.model_chunk:
            model = event.model
            chunk = payload.get("chunk")
            if model and chunk is not None:
                applied = session.progress_for(model).append_chunk(
                    str(chunk),
                    payload.get("progress", 0.0),
                    payload.get("metrics"),
                )
                if applied:
                    self._message_broadcaster.publish(f"[{model}] {chunk}")
                else:
                    logger.debug(f"Ignoring chunk for completed model {model!r}")

        elif kind == EventKind.synthesis_started:
            logger.debug("Synthesis started")

        elif kind == EventKind.synthesis_chunk:
            chunk = payload.get("chunk")
            session.synthesis_progress = _clamp_fraction(payload.get("progress", session.synthesis_progress))
            if chunk is not None:
                self._message_broadcaster.publish(f"[SYNTHESIS] {chunk}")

        elif kind == EventKind.synthesis_completed:
            final_response = payload.get("finalResponse")
            if final_response is not None:
                session.final_response = str(final_response)
                self._message_broadcaster.publish(f"[FINAL] {final_response}")
            logger.info("Synthesis completed")

        elif kind == EventKind.stream_completed:
            if self._state in (StreamingState.connected, StreamingState.streaming):
                self._set_state(StreamingState.completed)
            logger.info(f"Stream completed in {session.duration.total_seconds() * 1000:.0f}ms")

        elif kind.is_error:
            message = event.error_message
            model = event.model
            if kind == EventKind.model_streaming_error and model:
                session.progress_for(model).mark_failed(message)
            self._set_error(message)

        elif kind == EventKind.heartbeat:
            pass

    def _set_state(self, new_state: StreamingState) -> None:
        if self._state != new_state:
            logger.debug(f"Streaming state {self._state.value} -> {new_state.value}")
            self._state = new_state

    def _set_error(self, message: str) -> None:
        self._error = message
        if self._session is not None:
            self._session.last_error = message
        self._set_state(StreamingState.error)
        logger.error(f"Streaming error: {message}")
