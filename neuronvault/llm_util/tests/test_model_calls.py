import asyncio
import unittest

from neuronvault.llm_util.model_calls import start_model_calls
from neuronvault.llm_util.response_mockllm import ResponseMockLLM


class TestStartModelCalls(unittest.IsolatedAsyncioTestCase):
    async def test_one_task_per_model(self):
        # Arrange
        llms = {
            "claude": ResponseMockLLM(responses=["Here's one way: use a queue."]),
            "gpt": ResponseMockLLM(responses=["Use a queue with a size limit."], latency_seconds=0.01),
        }

        # Act
        tasks = start_model_calls(llms, "How do I limit concurrency?")
        results = {model_id: await task for model_id, task in tasks.items()}

        # Assert
        self.assertTrue(all(isinstance(task, asyncio.Task) for task in tasks.values()))
        self.assertEqual(results, {
            "claude": "Here's one way: use a queue.",
            "gpt": "Use a queue with a size limit.",
        })

    async def test_failing_model_fails_its_task_only(self):
        llms = {
            "claude": ResponseMockLLM(responses=["Fine."]),
            "deepseek": ResponseMockLLM(responses=["raise:quota exceeded"]),
        }
        tasks = start_model_calls(llms, "Hi")
        self.assertEqual(await tasks["claude"], "Fine.")
        with self.assertRaises(RuntimeError):
            await tasks["deepseek"]


if __name__ == '__main__':
    unittest.main()
