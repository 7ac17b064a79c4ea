"""
Wires the engine's services together.

Build one `NeuronVaultServices` per process and pass it down. It owns the
single ConcurrencyLimiter that every batch synthesis shares, and hands out a
fresh StreamingSessionManager per conversation context.

PROMPT> python -m neuronvault.orchestrator
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Mapping, Optional

from llama_index.core.llms.llm import LLM

from neuronvault.batch.concurrency_limiter import ConcurrencyLimiter
from neuronvault.batch.fan_out_coordinator import FanOutCoordinator, ModelCallError, PartialResultsPolicy
from neuronvault.batch.response_normalizer import ResponseNormalizer
from neuronvault.config import (
    BATCH_CONTROLS,
    STREAMING_CONTROLS,
    SYNTHESIS_CONTROLS,
    BatchControls,
    StreamingControls,
    SynthesisControls,
)
from neuronvault.llm_util.model_calls import start_model_calls
from neuronvault.streaming.session_manager import StreamingSessionManager
from neuronvault.streaming.transport import TransportFactory, default_transport_factory
from neuronvault.synthesis.synthesis_engine import SynthesisEngine, WeightedResponseSet

logger = logging.getLogger(__name__)


@dataclass
class BatchSynthesisResult:
    text: str
    responses: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, ModelCallError] = field(default_factory=dict)


class BatchSynthesisService:
    """Fan out to the models, then merge what came back."""

    def __init__(self, coordinator: FanOutCoordinator, engine: SynthesisEngine, controls: BatchControls = BATCH_CONTROLS):
        self._coordinator = coordinator
        self._engine = engine
        self._controls = controls

    async def synthesize(
        self,
        calls: Mapping[str, Awaitable[Any]],
        weights: Optional[Mapping[str, float]] = None,
        *,
        context: Optional[str] = None,
        timeout: Optional[float] = None,
        policy: PartialResultsPolicy = PartialResultsPolicy.allow_partial,
    ) -> BatchSynthesisResult:
        if timeout is None:
            timeout = self._controls.call_timeout
        fan_out = await self._coordinator.gather(calls, timeout=timeout, policy=policy)
        response_set = WeightedResponseSet(responses=fan_out.responses, weights=weights or {})
        text = await self._engine.synthesize(response_set, context=context)
        return BatchSynthesisResult(text=text, responses=fan_out.responses, failures=fan_out.failures)

    async def synthesize_prompt(
        self,
        llms: Mapping[str, LLM],
        prompt: str,
        weights: Optional[Mapping[str, float]] = None,
        **kwargs: Any,
    ) -> BatchSynthesisResult:
        calls = start_model_calls(llms, prompt)
        return await self.synthesize(calls, weights, context=prompt, **kwargs)


class NeuronVaultServices:
    def __init__(
        self,
        streaming_controls: StreamingControls = STREAMING_CONTROLS,
        batch_controls: BatchControls = BATCH_CONTROLS,
        synthesis_controls: SynthesisControls = SYNTHESIS_CONTROLS,
        transport_factory: TransportFactory = default_transport_factory,
        executor: Optional[Executor] = None,
    ):
        self.streaming_controls = streaming_controls
        self.batch_controls = batch_controls
        self.synthesis_controls = synthesis_controls
        self.transport_factory = transport_factory

        self.limiter = ConcurrencyLimiter(capacity=batch_controls.max_concurrent_calls)
        self.normalizer = ResponseNormalizer()
        self.coordinator = FanOutCoordinator(self.limiter, self.normalizer)
        self.synthesis_engine = SynthesisEngine(synthesis_controls, executor=executor)
        self.batch_synthesis = BatchSynthesisService(self.coordinator, self.synthesis_engine, batch_controls)

    def create_session_manager(self) -> StreamingSessionManager:
        return StreamingSessionManager(transport_factory=self.transport_factory, controls=self.streaming_controls)

    def __repr__(self) -> str:
        return f"NeuronVaultServices(limiter={self.limiter!r})"


if __name__ == "__main__":
    import asyncio

    from neuronvault.llm_util.response_mockllm import ResponseMockLLM

    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')

    async def main() -> None:
        services = NeuronVaultServices()
        llms = {
            "claude": ResponseMockLLM(responses=["Here's my take: batch the writes. Flush every second."], latency_seconds=0.1),
            "gpt": ResponseMockLLM(responses=["Batch the writes. Use a write-ahead log for durability."], latency_seconds=0.2),
            "deepseek": ResponseMockLLM(responses=["raise:quota exceeded"]),
        }
        result = await services.batch_synthesis.synthesize_prompt(llms, "How do I make writes faster?", {"claude": 1.2})
        print(f"text:\n{result.text}")
        print(f"failures: {result.failures!r}")

    asyncio.run(main())
