"""
Start one in-flight completion per model, ready to hand to the FanOutCoordinator.

PROMPT> python -m neuronvault.llm_util.model_calls
"""
import asyncio
import logging
from typing import Dict, Mapping

from llama_index.core.llms.llm import LLM

logger = logging.getLogger(__name__)


async def complete_text(model_id: str, llm: LLM, prompt: str) -> str:
    logger.debug(f"Calling {model_id!r} with a prompt of {len(prompt)} characters")
    response = await llm.acomplete(prompt)
    return response.text


def start_model_calls(llms: Mapping[str, LLM], prompt: str) -> Dict[str, asyncio.Task]:
    """Must be called from a running event loop. The calls start immediately."""
    return {
        model_id: asyncio.create_task(complete_text(model_id, llm, prompt), name=f"model-call-{model_id}")
        for model_id, llm in llms.items()
    }


if __name__ == "__main__":
    from neuronvault.llm_util.response_mockllm import ResponseMockLLM

    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')

    async def main() -> None:
        llms = {
            "claude": ResponseMockLLM(responses=["Here's one way: use a queue."]),
            "gpt": ResponseMockLLM(responses=["Use a queue with a size limit."]),
        }
        tasks = start_model_calls(llms, "How do I limit concurrency?")
        for model_id, task in tasks.items():
            print(f"{model_id}: {await task!r}")

    asyncio.run(main())
