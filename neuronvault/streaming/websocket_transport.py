"""
Persistent bidirectional transport over a WebSocket.

Sends `{type: start_stream, ...}` once connected, then a `{type: ping}`
keepalive every `heartbeat_interval` seconds while active. The backend is
expected to send `heartbeat` frames; if none arrives within
`heartbeat_timeout` seconds the connection is considered dead and a
TransportFault is raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import AsyncIterator, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from neuronvault.config import STREAMING_CONTROLS, StreamingControls
from neuronvault.streaming.events import EventKind, StreamingEvent, parse_frame
from neuronvault.streaming.streaming_session import TransportKind
from neuronvault.streaming.transport import StreamRequest, StreamTransport, TransportFault

logger = logging.getLogger(__name__)


class WebSocketTransport(StreamTransport):
    kind = TransportKind.websocket

    def __init__(self, url: Optional[str] = None, controls: StreamingControls = STREAMING_CONTROLS) -> None:
        self._url = url or controls.websocket_url
        self._controls = controls
        self._connection = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._last_heartbeat = 0.0
        self._conversation_id = ""
        self.pings_sent = 0

    async def open(self, request: StreamRequest) -> None:
        self._conversation_id = request.conversation_id
        try:
            self._connection = await websockets.connect(
                self._url,
                open_timeout=self._controls.connection_timeout,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise TransportFault(f"WebSocket connection to {self._url} failed: {exc}", self.kind) from exc

        try:
            await self._connection.send(json.dumps(request.to_start_frame()))
        except ConnectionClosed as exc:
            await self.close()
            raise TransportFault(f"WebSocket closed before the stream started: {exc}", self.kind) from exc

        self._last_heartbeat = asyncio.get_running_loop().time()
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        logger.info(f"WebSocket connected to {self._url} for conversation {request.conversation_id!r}")

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._controls.heartbeat_interval)
            connection = self._connection
            if connection is None:
                return
            try:
                await connection.send(json.dumps({
                    "type": "ping",
                    "timestamp": int(time.time() * 1000),
                }))
                self.pings_sent += 1
            except ConnectionClosed as exc:
                # The receive side reports the closure, the keepalive just stops.
                logger.warning(f"Keepalive ping failed: {exc}")
                return

    async def events(self) -> AsyncIterator[StreamingEvent]:
        if self._connection is None:
            raise TransportFault("WebSocket transport is not open", self.kind)
        loop = asyncio.get_running_loop()
        while True:
            connection = self._connection
            if connection is None:
                return
            remaining = self._last_heartbeat + self._controls.heartbeat_timeout - loop.time()
            if remaining <= 0:
                raise TransportFault(
                    f"No heartbeat received for {self._controls.heartbeat_timeout:.1f} seconds",
                    self.kind,
                )
            try:
                raw = await asyncio.wait_for(connection.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                raise TransportFault(
                    f"No heartbeat received for {self._controls.heartbeat_timeout:.1f} seconds",
                    self.kind,
                ) from None
            except ConnectionClosedOK:
                logger.debug(f"WebSocket stream completed for conversation {self._conversation_id!r}")
                return
            except ConnectionClosed as exc:
                raise TransportFault(f"WebSocket connection lost: {exc}", self.kind) from exc

            event = parse_frame(raw, default_session_id=self._conversation_id)
            if event is None:
                continue
            if event.kind == EventKind.heartbeat:
                self._last_heartbeat = loop.time()
            yield event

    async def close(self) -> None:
        keepalive_task, self._keepalive_task = self._keepalive_task, None
        if keepalive_task is not None:
            keepalive_task.cancel()
            try:
                await keepalive_task
            except asyncio.CancelledError:
                pass
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except WebSocketException as exc:
                logger.debug(f"Ignoring error while closing WebSocket: {exc}")
