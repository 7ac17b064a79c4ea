"""
Server side of a streaming session: run the enabled models, stream their
answers as event frames, then stream the synthesized answer.

Frame order for a healthy run:
```
stream_started, strategy_selected,
model_stream_started / model_chunk ... (interleaved across models),
synthesis_started, synthesis_chunk ..., synthesis_completed,
stream_completed
```
A failing model emits `model_streaming_error` and the others carry on. If no
model succeeds the stream ends with `stream_error`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, AsyncGenerator, Dict, List, Optional

from fastapi import HTTPException
from llama_index.core.llms.llm import LLM

from neuronvault.batch.fan_out_coordinator import AllModelsFailedError, PartialResultsPolicy
from neuronvault.config import SERVER_CONTROLS, ServerControls
from neuronvault.orchestrator import NeuronVaultServices
from neuronvault.streaming.events import EventKind, StreamingEvent
from neuronvault.synthesis.synthesis_engine import WeightedResponseSet
from neuronvault_api.model_registry import ModelRegistry
from neuronvault_api.models import StreamRequestBody

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\S+\s*")


def split_into_chunks(text: str, max_chunks: int) -> List[str]:
    """Split into at most `max_chunks` word-aligned pieces that concatenate back to `text`."""
    tokens = _TOKEN.findall(text.lstrip())
    if not tokens:
        return []
    count = max(1, min(max_chunks, len(tokens)))
    size, remainder = divmod(len(tokens), count)
    chunks = []
    start = 0
    for index in range(count):
        end = start + size + (1 if index < remainder else 0)
        chunks.append("".join(tokens[start:end]))
        start = end
    return chunks


class FrameHarness:
    """Queue of outgoing event frames for one conversation."""

    def __init__(self, *, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self._queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue()
        self._closed = False
        self.reported_failures: set[str] = set()

    async def emit(self, kind: EventKind, payload: Dict[str, Any]) -> None:
        event = StreamingEvent(kind=kind, session_id=self.conversation_id, payload=payload)
        await self._queue.put(event.to_frame())

    async def frames(self) -> AsyncGenerator[Dict[str, Any], None]:
        while True:
            item = await self._queue.get()
            if item is None:
                break
            yield item

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(None)


class OrchestrationStreamService:
    def __init__(
        self,
        *,
        services: NeuronVaultServices,
        registry: ModelRegistry,
        controls: ServerControls = SERVER_CONTROLS,
    ) -> None:
        self._services = services
        self._registry = registry
        self._controls = controls

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def validate(self, request: StreamRequestBody) -> List[str]:
        """Return the enabled model ids, or raise HTTPException(422) when the selection is unusable."""
        enabled = request.enabled_models
        if not enabled:
            raise HTTPException(status_code=422, detail="NO_MODELS_ENABLED")
        unknown = self._registry.unknown_ids(enabled)
        if unknown:
            raise HTTPException(status_code=422, detail=f"UNKNOWN_MODELS: {', '.join(unknown)}")
        return enabled

    async def stream(self, *, conversation_id: str, request: StreamRequestBody) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield event frames for one conversation. Call `validate()` first."""
        harness = FrameHarness(conversation_id=conversation_id)
        run_task = asyncio.create_task(self._run_stream(harness=harness, request=request))
        try:
            async for frame in harness.frames():
                yield frame
        finally:
            await harness.close()
            if not run_task.done():
                run_task.cancel()
            await asyncio.gather(run_task, return_exceptions=True)

    async def _run_stream(self, *, harness: FrameHarness, request: StreamRequestBody) -> None:
        start_time = time.perf_counter()
        try:
            enabled = request.enabled_models
            strategy = "weighted" if request.weights else "parallel"
            await harness.emit(EventKind.stream_started, {
                "modelIds": enabled,
                "mode": request.mode,
            })
            await harness.emit(EventKind.strategy_selected, {"strategy": strategy})

            calls = {
                model_id: self._stream_model(harness, model_id, llm, request.prompt)
                for model_id, llm in self._registry.subset(enabled).items()
            }
            try:
                fan_out = await self._services.coordinator.gather(
                    calls,
                    timeout=self._services.batch_controls.call_timeout,
                    policy=PartialResultsPolicy.allow_partial,
                )
            except AllModelsFailedError as exc:
                await self._report_remaining_failures(harness, exc.failures)
                await harness.emit(EventKind.stream_error, {"error": str(exc)})
                return
            await self._report_remaining_failures(harness, fan_out.failures)

            await harness.emit(EventKind.synthesis_started, {"models": list(fan_out.responses.keys())})
            response_set = WeightedResponseSet(responses=fan_out.responses, weights=request.weights or {})
            final_response = await self._services.synthesis_engine.synthesize(response_set, context=request.prompt)

            chunks = split_into_chunks(final_response, self._controls.chunks_per_model)
            for index, chunk in enumerate(chunks, start=1):
                await harness.emit(EventKind.synthesis_chunk, {"chunk": chunk, "progress": index / len(chunks)})
                await self._pause()
            await harness.emit(EventKind.synthesis_completed, {
                "finalResponse": final_response,
                "strategy": strategy,
                "modelsUsed": list(fan_out.responses.keys()),
                "weights": {model_id: response_set.weight_for(model_id) for model_id in response_set.ranked_model_ids()},
            })
            await harness.emit(EventKind.stream_completed, {
                "totalModels": len(enabled),
                "successfulModels": len(fan_out.responses),
                "duration": int((time.perf_counter() - start_time) * 1000),
            })
        except asyncio.CancelledError:
            logger.info(f"Stream for {harness.conversation_id!r} cancelled")
            raise
        except Exception as exc:
            logger.error(f"Stream for {harness.conversation_id!r} failed: {exc}", exc_info=True)
            await harness.emit(EventKind.stream_error, {"error": f"{type(exc).__name__}: {exc}"})
        finally:
            await harness.close()

    async def _stream_model(self, harness: FrameHarness, model_id: str, llm: LLM, prompt: str) -> str:
        await harness.emit(EventKind.model_stream_started, {"model": model_id})
        model_start = time.perf_counter()
        try:
            response = await llm.acomplete(prompt)
        except Exception as exc:
            logger.warning(f"Model {model_id!r} failed: {exc}")
            harness.reported_failures.add(model_id)
            await harness.emit(EventKind.model_streaming_error, {"model": model_id, "error": str(exc)})
            raise

        text = response.text
        chunks = split_into_chunks(text, self._controls.chunks_per_model)
        elapsed_ms = int((time.perf_counter() - model_start) * 1000)
        for index, chunk in enumerate(chunks, start=1):
            await harness.emit(EventKind.model_chunk, {
                "model": model_id,
                "chunk": chunk,
                "progress": index / len(chunks),
                "metrics": {"latencyMs": elapsed_ms, "characters": len(text)},
            })
            await self._pause()
        return text

    async def _report_remaining_failures(self, harness: FrameHarness, failures: Dict[str, Any]) -> None:
        for model_id, error in failures.items():
            if model_id not in harness.reported_failures:
                harness.reported_failures.add(model_id)
                await harness.emit(EventKind.model_streaming_error, {"model": model_id, "error": str(error)})

    async def _pause(self) -> None:
        if self._controls.chunk_delay_seconds > 0:
            await asyncio.sleep(self._controls.chunk_delay_seconds)
