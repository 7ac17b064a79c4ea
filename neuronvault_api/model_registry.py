"""
The models the backend can orchestrate, keyed by model id.

The demo registry answers with canned text through ResponseMockLLM, so the
backend runs without any provider credentials.
"""
import logging
from typing import Dict, Iterable, List

from llama_index.core.llms.llm import LLM

from neuronvault.llm_util.response_mockllm import ResponseMockLLM

logger = logging.getLogger(__name__)

DEMO_RESPONSES: Dict[str, List[str]] = {
    "claude": [
        "Here's how I would approach it: start from the constraints. "
        "Break the problem into small steps and verify each one. "
        "Keep the design simple until measurements say otherwise.",
    ],
    "gpt": [
        "Start from the constraints and break the problem into small steps. "
        "Write a test for every step before moving on. "
        "Review the result with someone who knows the domain.",
    ],
    "deepseek": [
        "1. Clarify the constraints\n"
        "2. Split the work into small steps\n"
        "3. Measure before optimizing anything",
    ],
    "gemini": [
        "Think about who uses the result and what they need first. "
        "Sketch the simplest version that could work. "
        "Iterate with feedback from real usage.",
    ],
}


class ModelRegistry:
    def __init__(self, llms: Dict[str, LLM]):
        self._llms = dict(llms)

    @property
    def model_ids(self) -> List[str]:
        return list(self._llms.keys())

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._llms

    def get(self, model_id: str) -> LLM:
        try:
            return self._llms[model_id]
        except KeyError:
            raise KeyError(f"Unknown model id: {model_id!r}") from None

    def unknown_ids(self, model_ids: Iterable[str]) -> List[str]:
        return [model_id for model_id in model_ids if model_id not in self]

    def subset(self, model_ids: Iterable[str]) -> Dict[str, LLM]:
        return {model_id: self.get(model_id) for model_id in model_ids}

    @classmethod
    def demo(cls, latency_seconds: float = 0.0) -> "ModelRegistry":
        logger.info(f"Using demo model registry with {len(DEMO_RESPONSES)} models, latency {latency_seconds}s")
        return cls({
            model_id: ResponseMockLLM(responses=responses, latency_seconds=latency_seconds)
            for model_id, responses in DEMO_RESPONSES.items()
        })
