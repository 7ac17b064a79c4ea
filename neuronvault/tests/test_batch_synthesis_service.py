import asyncio
import unittest

from neuronvault.batch.fan_out_coordinator import AllModelsFailedError, ModelCallError, PartialResultsPolicy
from neuronvault.config import BatchControls, SynthesisControls
from neuronvault.llm_util.response_mockllm import ResponseMockLLM
from neuronvault.orchestrator import NeuronVaultServices
from neuronvault.streaming.session_manager import StreamingSessionManager, StreamingState


class TestBatchSynthesisService(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.services = NeuronVaultServices(
            batch_controls=BatchControls(max_concurrent_calls=2, call_timeout=None),
            synthesis_controls=SynthesisControls(),
        )

    async def test_dominant_model_wins(self):
        # Arrange
        llms = {
            "claude": ResponseMockLLM(responses=["Here's the answer: batch the writes."]),
            "gpt": ResponseMockLLM(responses=["Write everything one row at a time."]),
        }

        # Act
        result = await self.services.batch_synthesis.synthesize_prompt(llms, "How do I speed up writes?", {"claude": 5.0})

        # Assert
        self.assertEqual(result.text, "**Here's the answer:** batch the writes.")
        self.assertEqual(set(result.responses.keys()), {"claude", "gpt"})
        self.assertEqual(result.failures, {})

    async def test_failed_model_is_reported_and_skipped(self):
        llms = {
            "claude": ResponseMockLLM(responses=["Batch the writes."]),
            "deepseek": ResponseMockLLM(responses=["raise:quota exceeded"]),
        }
        result = await self.services.batch_synthesis.synthesize_prompt(llms, "How do I speed up writes?")
        self.assertEqual(result.text, "Batch the writes.")
        self.assertIsInstance(result.failures["deepseek"], ModelCallError)

    async def test_timeout_from_controls(self):
        services = NeuronVaultServices(batch_controls=BatchControls(max_concurrent_calls=3, call_timeout=0.05))
        llms = {
            "claude": ResponseMockLLM(responses=["Quick answer."]),
            "gpt": ResponseMockLLM(responses=["Slow answer."], latency_seconds=1.0),
        }
        result = await services.batch_synthesis.synthesize_prompt(llms, "Hi")
        self.assertEqual(result.text, "Quick answer.")
        self.assertTrue(result.failures["gpt"].timed_out)

    async def test_fail_fast_policy(self):
        llms = {
            "claude": ResponseMockLLM(responses=["raise:down"]),
            "gpt": ResponseMockLLM(responses=["Fine."], latency_seconds=0.2),
        }
        with self.assertRaises(ModelCallError):
            await self.services.batch_synthesis.synthesize_prompt(llms, "Hi", policy=PartialResultsPolicy.fail_fast)
        await asyncio.sleep(0.3)

    async def test_all_failed(self):
        llms = {"claude": ResponseMockLLM(responses=["raise:down"])}
        with self.assertRaises(AllModelsFailedError):
            await self.services.batch_synthesis.synthesize_prompt(llms, "Hi")

    async def test_limiter_is_shared(self):
        self.assertIs(self.services.coordinator.limiter, self.services.limiter)
        self.assertEqual(self.services.limiter.capacity, 2)

    async def test_session_managers_are_independent(self):
        first = self.services.create_session_manager()
        second = self.services.create_session_manager()
        self.assertIsInstance(first, StreamingSessionManager)
        self.assertIsNot(first, second)
        self.assertEqual(first.state, StreamingState.idle)


if __name__ == '__main__':
    unittest.main()
