"""
Unidirectional push-stream transport.

Issues one POST to `/api/stream/sse/{conversationId}` and reads newline
delimited JSON frames. Lines may carry the Server-Sent Events `data: ` prefix.
The stream ending without a terminal event is a normal completion.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

import httpx

from neuronvault.config import STREAMING_CONTROLS, StreamingControls
from neuronvault.streaming.events import StreamingEvent, parse_frame
from neuronvault.streaming.streaming_session import TransportKind
from neuronvault.streaming.transport import StreamRequest, StreamTransport, TransportFault

logger = logging.getLogger(__name__)

_SSE_FIELD_PREFIXES = ("event:", "id:", "retry:")


def parse_stream_line(line: str, default_session_id: str = "") -> Optional[StreamingEvent]:
    """Turn one line of the push stream into an event, or None if there is nothing to apply."""
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
        if not line:
            return None
    elif line.startswith(_SSE_FIELD_PREFIXES):
        return None
    return parse_frame(line, default_session_id=default_session_id)


class SseTransport(StreamTransport):
    kind = TransportKind.server_sent_events

    def __init__(
        self,
        base_url: Optional[str] = None,
        controls: StreamingControls = STREAMING_CONTROLS,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = (base_url or controls.base_url).rstrip("/")
        self._controls = controls
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None
        self._response: Optional[httpx.Response] = None
        self._conversation_id = ""

    async def open(self, request: StreamRequest) -> None:
        self._conversation_id = request.conversation_id
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            transport=self._http_transport,
            # The stream is unbounded, only the connect phase has a deadline.
            timeout=httpx.Timeout(None, connect=self._controls.connection_timeout),
        )
        http_request = self._client.build_request(
            "POST",
            f"/api/stream/sse/{request.conversation_id}",
            json=request.to_body(),
            headers={
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
            },
        )
        try:
            self._response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            await self.close()
            raise TransportFault(f"SSE connection failed: {exc}", self.kind) from exc

        if self._response.status_code != 200:
            status_code = self._response.status_code
            await self.close()
            raise TransportFault(f"SSE connection failed: {status_code}", self.kind)
        logger.info(f"SSE stream opened for conversation {request.conversation_id!r}")

    async def events(self) -> AsyncIterator[StreamingEvent]:
        if self._response is None:
            raise TransportFault("SSE transport is not open", self.kind)
        try:
            async for line in self._response.aiter_lines():
                event = parse_stream_line(line, default_session_id=self._conversation_id)
                if event is not None:
                    yield event
        except (httpx.HTTPError, httpx.StreamError) as exc:
            raise TransportFault(f"SSE stream interrupted: {exc}", self.kind) from exc
        logger.debug(f"SSE stream completed for conversation {self._conversation_id!r}")

    async def close(self) -> None:
        response, self._response = self._response, None
        client, self._client = self._client, None
        if response is not None:
            await response.aclose()
        if client is not None:
            await client.aclose()
