"""
An LLM with predefined responses, to be used for tests and the demo backend.

A response starting with "raise:" makes the call fail with the rest of the
text as the message. `latency_seconds` delays the async calls so that
timeouts and concurrency limits can be exercised.

PROMPT> python -m neuronvault.llm_util.response_mockllm
"""
import asyncio
import itertools
from typing import Any, Sequence

from llama_index.core.llms import ChatMessage, ChatResponse, CompletionResponse, MessageRole, MockLLM


class ResponseMockLLM(MockLLM):
    """
    An LLM with predefined responses, cycle through them.
    """
    def __init__(self, responses: list[str], latency_seconds: float = 0.0, **kwargs):
        responses = responses or ["Mock response"]
        # The longest response, so MockLLM never falls back to echoing the prompt.
        max_tokens = max(len(response) for response in responses)
        super().__init__(max_tokens=max_tokens, **kwargs)
        object.__setattr__(self, 'responses', responses)
        object.__setattr__(self, 'response_cycle', itertools.cycle(responses))
        object.__setattr__(self, 'latency_seconds', latency_seconds)

    def raise_exception_if_needed(self, response_text: str) -> None:
        if response_text.startswith("raise:"):
            raise RuntimeError(response_text.split(":", 1)[1])

    def chat(self, messages: Sequence[ChatMessage], **kwargs: Any) -> ChatResponse:
        response_text = next(self.response_cycle)
        self.raise_exception_if_needed(response_text)
        assistant_message = ChatMessage(
            role=MessageRole.ASSISTANT,
            content=response_text
        )
        return ChatResponse(message=assistant_message)

    async def acomplete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        return self.complete(prompt, formatted=formatted, **kwargs)

    async def achat(self, messages: Sequence[ChatMessage], **kwargs: Any) -> ChatResponse:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        return self.chat(messages, **kwargs)

    def _generate_text(self, length: int) -> str:
        message = next(self.response_cycle)
        self.raise_exception_if_needed(message)
        return message

if __name__ == "__main__":
    llm = ResponseMockLLM(
        responses=["Use a bounded queue.", "raise:backend unavailable"],
        latency_seconds=0.1,
    )
    response1 = asyncio.run(llm.acomplete("How do I limit concurrency?"))
    print(f"response1:\n{response1.text!r}")
    try:
        asyncio.run(llm.acomplete("And again?"))
    except RuntimeError as e:
        print(f"response2 failed: {e}")
