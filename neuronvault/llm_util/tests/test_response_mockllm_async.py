import asyncio
import unittest

from llama_index.core.llms import ChatMessage, ChatResponse, CompletionResponse, MessageRole

from neuronvault.llm_util.response_mockllm import ResponseMockLLM


class TestResponseMockLLM(unittest.TestCase):
    def test_complete_function(self):
        # Arrange
        responses = ["or not to be", "123 123 123 123 123", "abc"]
        llm = ResponseMockLLM(responses=responses)
        prompt = "To be "

        # Act
        response = llm.complete(prompt)

        # Assert
        self.assertIsInstance(response, CompletionResponse)
        self.assertEqual(response.text, responses[0])

    def test_chat_cycles_through_responses(self):
        llm = ResponseMockLLM(responses=["Hello there!", "Goodbye!"])
        message = ChatMessage(role=MessageRole.USER, content="Hello")
        texts = [llm.chat([message]).message.content for _ in range(3)]
        self.assertEqual(texts, ["Hello there!", "Goodbye!", "Hello there!"])

    def test_raise_prefix(self):
        llm = ResponseMockLLM(responses=["raise:backend unavailable"])
        with self.assertRaises(RuntimeError) as context:
            llm.complete("anything")
        self.assertEqual(str(context.exception), "backend unavailable")


class TestResponseMockLLMAsync(unittest.IsolatedAsyncioTestCase):
    async def test_acomplete_waits_for_latency(self):
        # Arrange
        llm = ResponseMockLLM(responses=["Use a queue."], latency_seconds=0.05)
        loop = asyncio.get_running_loop()
        start = loop.time()

        # Act
        response = await llm.acomplete("How?")

        # Assert
        self.assertGreaterEqual(loop.time() - start, 0.04)
        self.assertEqual(response.text, "Use a queue.")

    async def test_achat(self):
        llm = ResponseMockLLM(responses=["Hi!"])
        response = await llm.achat([ChatMessage(role=MessageRole.USER, content="Hello")])
        self.assertIsInstance(response, ChatResponse)
        self.assertEqual(response.message.content, "Hi!")

    async def test_acomplete_raise_prefix(self):
        llm = ResponseMockLLM(responses=["raise:quota exceeded"])
        with self.assertRaises(RuntimeError):
            await llm.acomplete("How?")


if __name__ == '__main__':
    unittest.main()
