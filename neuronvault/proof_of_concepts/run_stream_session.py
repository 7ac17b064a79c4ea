"""
Connect a StreamingSessionManager to a running backend and print the message feed.

Start the backend first:
PROMPT> python -m neuronvault_api.api

Then:
PROMPT> python -m neuronvault.proof_of_concepts.run_stream_session
PROMPT> NEURONVAULT_TRANSPORT=server_sent_events python -m neuronvault.proof_of_concepts.run_stream_session
"""
import asyncio
import logging
import os
import uuid

from neuronvault.streaming.session_manager import StreamingSessionManager, StreamingState
from neuronvault.streaming.streaming_session import TransportKind

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

transport_kind = TransportKind(os.getenv("NEURONVAULT_TRANSPORT", TransportKind.websocket.value))
prompt = "How should I structure a small team's first service?"


async def print_messages(manager: StreamingSessionManager) -> None:
    async for message in manager.subscribe_messages():
        print(message)


async def main() -> None:
    manager = StreamingSessionManager()
    printer = asyncio.create_task(print_messages(manager))
    started = await manager.start_session(
        transport_kind,
        conversation_id=f"conv_{uuid.uuid4().hex[:8]}",
        prompt=prompt,
        model_selection={"claude": True, "gpt": True, "deepseek": True, "gemini": False},
        weights={"claude": 1.5},
    )
    if not started:
        print(f"Could not start: {manager.error}")
    else:
        while manager.state not in (StreamingState.completed, StreamingState.error) or manager.retry_pending:
            await asyncio.sleep(0.1)
        print(f"state: {manager.state.value}, error: {manager.error}")
        print(f"stats: {manager.get_streaming_stats()!r}")
    await manager.aclose()
    await printer

asyncio.run(main())
