"""
FastAPI app serving the streaming endpoints the NeuronVault client talks to.

- POST /api/stream/sse/{conversation_id}: server-sent events, one JSON frame per `data:` line.
- WS /ws/stream: send `{"type": "start_stream", ...}`, receive frames plus periodic heartbeats.
- GET /health

PROMPT> python -m neuronvault_api.api
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sse_starlette import EventSourceResponse

from neuronvault.config import SERVER_CONTROLS, STREAMING_CONTROLS, ServerControls, StreamingControls
from neuronvault.orchestrator import NeuronVaultServices
from neuronvault.streaming.events import EventKind, StreamingEvent
from neuronvault_api.model_registry import ModelRegistry
from neuronvault_api.models import HealthResponse, StartStreamFrame, StreamRequestBody
from neuronvault_api.orchestration_stream_service import OrchestrationStreamService

logger = logging.getLogger(__name__)


def _error_frame(conversation_id: str, message: str) -> Dict[str, Any]:
    return StreamingEvent(kind=EventKind.stream_error, session_id=conversation_id, payload={"error": message}).to_frame()


class WebSocketStreamConnection:
    """One client on the WebSocket channel: heartbeats out, start_stream and ping in."""

    def __init__(
        self,
        websocket: WebSocket,
        stream_service: OrchestrationStreamService,
        heartbeat_interval: float,
    ) -> None:
        self._websocket = websocket
        self._stream_service = stream_service
        self._heartbeat_interval = heartbeat_interval
        self._send_lock = asyncio.Lock()
        self._conversation_id = ""
        self._stream_task: Optional[asyncio.Task] = None

    async def send(self, frame: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self._websocket.send_json(frame)

    async def run(self) -> None:
        await self._websocket.accept()
        heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        try:
            while True:
                message = await self._websocket.receive_json()
                if not isinstance(message, dict):
                    await self.send(_error_frame(self._conversation_id, "Frames must be JSON objects"))
                    continue
                message_type = message.get("type")
                if message_type == "ping":
                    logger.debug(f"Ping from client, conversation {self._conversation_id!r}")
                elif message_type == "start_stream":
                    await self._start_stream(message)
                else:
                    logger.warning(f"Ignoring WebSocket frame of type {message_type!r}")
        except WebSocketDisconnect:
            logger.info(f"WebSocket client disconnected, conversation {self._conversation_id!r}")
        except RuntimeError as exc:
            # Raised by starlette when receiving after the stream task closed the socket.
            logger.debug(f"WebSocket receive loop ended: {exc}")
        except json.JSONDecodeError:
            logger.warning("WebSocket client sent a frame that is not JSON, closing")
            await self._websocket.close(code=1003)
        finally:
            heartbeat_task.cancel()
            tasks = [heartbeat_task]
            if self._stream_task is not None:
                self._stream_task.cancel()
                tasks.append(self._stream_task)
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _start_stream(self, message: Dict[str, Any]) -> None:
        if self._stream_task is not None and not self._stream_task.done():
            await self.send(_error_frame(self._conversation_id, "A stream is already running on this connection"))
            return
        try:
            frame = StartStreamFrame.model_validate(message)
        except ValidationError as exc:
            await self.send(_error_frame(str(message.get("conversationId") or ""), f"Invalid start_stream frame: {exc}"))
            return
        self._conversation_id = frame.conversation_id
        try:
            self._stream_service.validate(frame)
        except HTTPException as exc:
            await self.send(_error_frame(frame.conversation_id, str(exc.detail)))
            return
        self._stream_task = asyncio.create_task(self._relay(frame))

    async def _relay(self, frame: StartStreamFrame) -> None:
        async for event_frame in self._stream_service.stream(conversation_id=frame.conversation_id, request=frame):
            await self.send(event_frame)
        logger.info(f"Stream finished for conversation {frame.conversation_id!r}, closing WebSocket")
        async with self._send_lock:
            await self._websocket.close(code=1000)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            frame = StreamingEvent(kind=EventKind.heartbeat, session_id=self._conversation_id).to_frame()
            try:
                await self.send(frame)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.debug(f"Heartbeat stopped: {exc}")
                return


def create_app(
    services: Optional[NeuronVaultServices] = None,
    registry: Optional[ModelRegistry] = None,
    server_controls: ServerControls = SERVER_CONTROLS,
    streaming_controls: StreamingControls = STREAMING_CONTROLS,
) -> FastAPI:
    services = services or NeuronVaultServices()
    registry = registry or ModelRegistry.demo(latency_seconds=server_controls.demo_latency_seconds)
    stream_service = OrchestrationStreamService(services=services, registry=registry, controls=server_controls)

    app = FastAPI(
        title="NeuronVault Streaming API",
        description="Multi-model orchestration with streaming synthesis",
        version="0.1.0",
    )
    app.state.services = services
    app.state.stream_service = stream_service

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(
            status="healthy",
            models=registry.model_ids,
            max_concurrent_calls=services.limiter.capacity,
        )

    @app.post("/api/stream/sse/{conversation_id}")
    async def stream_sse_endpoint(conversation_id: str, request: StreamRequestBody):
        stream_service.validate(request)

        async def event_generator():
            async for frame in stream_service.stream(conversation_id=conversation_id, request=request):
                yield {"event": frame["type"], "data": json.dumps(frame)}

        return EventSourceResponse(event_generator(), ping=int(streaming_controls.heartbeat_interval))

    @app.websocket("/ws/stream")
    async def websocket_stream_endpoint(websocket: WebSocket):
        connection = WebSocketStreamConnection(websocket, stream_service, streaming_controls.heartbeat_interval)
        await connection.run()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    uvicorn.run(app, host=SERVER_CONTROLS.host, port=SERVER_CONTROLS.port)
