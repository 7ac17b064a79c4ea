"""
Combine several model answers into one, weighted by model.

Small inputs are merged inline. Heavy inputs, many answers or one very long
answer, are merged in an executor worker so the event loop keeps serving.
Pass a `concurrent.futures.ProcessPoolExecutor` to move the work off the
interpreter entirely, the default is the loop's thread pool.

PROMPT> python -m neuronvault.synthesis.synthesis_engine
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from neuronvault.config import SYNTHESIS_CONTROLS, SynthesisControls
from neuronvault.synthesis.merge import merge_weighted_responses, rank_by_weight

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeightedResponseSet:
    """Answers keyed by model id, with optional per-model weights. Unweighted models count as 1.0."""
    responses: Mapping[str, str]
    weights: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "responses", dict(self.responses))
        object.__setattr__(self, "weights", {model_id: float(weight) for model_id, weight in self.weights.items()})

    def __len__(self) -> int:
        return len(self.responses)

    def weight_for(self, model_id: str) -> float:
        return self.weights.get(model_id, 1.0)

    def ranked_model_ids(self) -> list[str]:
        return [model_id for model_id, _, _ in rank_by_weight(self.responses, self.weights)]


class SynthesisEngine:
    def __init__(self, controls: SynthesisControls = SYNTHESIS_CONTROLS, executor: Optional[Executor] = None):
        self._controls = controls
        self._executor = executor

    @property
    def controls(self) -> SynthesisControls:
        return self._controls

    def is_heavy(self, response_set: WeightedResponseSet) -> bool:
        if len(response_set) > self._controls.heavy_entry_count:
            return True
        return any(len(text) > self._controls.heavy_entry_chars for text in response_set.responses.values())

    async def synthesize(self, response_set: WeightedResponseSet, context: Optional[str] = None) -> str:
        """
        Merge the answers into one string.

        An empty set gives "", a single answer is returned verbatim. `context`
        is the prompt or conversation the answers belong to. It is logged but
        does not change the merge.
        """
        if len(response_set) == 0:
            return ""
        if len(response_set) == 1:
            return next(iter(response_set.responses.values()))

        if context:
            logger.debug(f"Synthesizing {len(response_set)} responses for context of {len(context)} characters")

        responses: Dict[str, str] = dict(response_set.responses)
        weights: Dict[str, float] = dict(response_set.weights)
        logger.debug(f"Merge order by weight: {response_set.ranked_model_ids()}")
        if not self.is_heavy(response_set):
            return merge_weighted_responses(responses, weights, self._controls)

        logger.info(f"Offloading heavy synthesis of {len(response_set)} responses to an executor")
        loop = asyncio.get_running_loop()
        merge = functools.partial(merge_weighted_responses, responses, weights, self._controls)
        return await loop.run_in_executor(self._executor, merge)


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')
    response_set = WeightedResponseSet(
        responses={
            "claude": "Cache the results. Invalidate on write. Keep keys short",
            "gpt": "Cache the results. Use a time to live for stale entries.",
            "deepseek": "Measure the hit rate before and after the change.",
        },
        weights={"claude": 1.5, "gpt": 1.0, "deepseek": 0.8},
    )
    print(asyncio.run(SynthesisEngine().synthesize(response_set, context="How do I speed up lookups?")))
