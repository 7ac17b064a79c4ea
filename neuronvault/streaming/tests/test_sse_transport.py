import json
import unittest

import httpx

from neuronvault.config import StreamingControls
from neuronvault.streaming.events import EventKind
from neuronvault.streaming.sse_transport import SseTransport, parse_stream_line
from neuronvault.streaming.transport import StreamRequest, TransportFault

CONTROLS = StreamingControls(base_url="http://testserver", connection_timeout=1.0)
REQUEST = StreamRequest(
    conversation_id="conv_1",
    prompt="Explain backpressure",
    model_selection={"claude": True, "gpt": False},
    weights={"claude": 2.0},
)


def frame_line(kind: str, **data) -> str:
    return "data: " + json.dumps({"type": kind, "conversationId": "conv_1", "data": data})


class TestParseStreamLine(unittest.TestCase):
    def test_data_prefix(self):
        event = parse_stream_line(frame_line("model_chunk", model="claude", chunk="Hi", progress=0.1))
        self.assertEqual(event.kind, EventKind.model_chunk)
        self.assertEqual(event.payload["chunk"], "Hi")

    def test_plain_json_line(self):
        event = parse_stream_line('{"type": "heartbeat"}', default_session_id="conv_7")
        self.assertEqual(event.session_id, "conv_7")

    def test_skips_non_data_lines(self):
        for line in ["", "   ", ": ping - 2024-06-10", "event: model_chunk", "id: 4", "retry: 1000", "data:"]:
            self.assertIsNone(parse_stream_line(line), line)


class TestSseTransport(unittest.IsolatedAsyncioTestCase):
    async def test_streams_events_and_sends_request_body(self):
        # Arrange
        captured = {}
        body = "\n".join([
            ": ping",
            "event: stream_started",
            frame_line("stream_started", modelIds=["claude"]),
            "",
            frame_line("model_chunk", model="claude", chunk="Hello", progress=1.0),
            "",
            "data: {broken",
            frame_line("stream_completed"),
            "",
        ])

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["accept"] = request.headers["accept"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        transport = SseTransport(controls=CONTROLS, http_transport=httpx.MockTransport(handler))

        # Act
        await transport.open(REQUEST)
        events = [event async for event in transport.events()]
        await transport.close()

        # Assert
        self.assertEqual(captured["url"], "http://testserver/api/stream/sse/conv_1")
        self.assertEqual(captured["accept"], "text/event-stream")
        self.assertEqual(captured["body"], {
            "prompt": "Explain backpressure",
            "modelConfig": {"claude": True, "gpt": False},
            "customWeights": {"claude": 2.0},
            "mode": "chat",
        })
        self.assertEqual(
            [event.kind for event in events],
            [EventKind.stream_started, EventKind.model_chunk, EventKind.stream_completed],
        )

    async def test_non_200_status_is_a_fault(self):
        transport = SseTransport(
            controls=CONTROLS,
            http_transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with self.assertRaises(TransportFault) as context:
            await transport.open(REQUEST)
        self.assertIn("503", str(context.exception))

    async def test_connect_error_is_a_fault(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = SseTransport(controls=CONTROLS, http_transport=httpx.MockTransport(handler))
        with self.assertRaises(TransportFault):
            await transport.open(REQUEST)

    async def test_interrupted_stream_is_a_fault(self):
        # Arrange
        async def broken_body():
            yield (frame_line("stream_started", modelIds=["claude"]) + "\n").encode("utf-8")
            raise httpx.ReadError("connection reset")

        transport = SseTransport(
            controls=CONTROLS,
            http_transport=httpx.MockTransport(lambda request: httpx.Response(200, content=broken_body())),
        )
        await transport.open(REQUEST)

        # Act
        received = []
        with self.assertRaises(TransportFault):
            async for event in transport.events():
                received.append(event)
        await transport.close()

        # Assert
        self.assertEqual([event.kind for event in received], [EventKind.stream_started])

    async def test_events_before_open_is_a_fault(self):
        transport = SseTransport(controls=CONTROLS)
        with self.assertRaises(TransportFault):
            async for _ in transport.events():
                pass

    async def test_close_is_idempotent(self):
        transport = SseTransport(controls=CONTROLS)
        await transport.close()
        await transport.close()


if __name__ == '__main__':
    unittest.main()
