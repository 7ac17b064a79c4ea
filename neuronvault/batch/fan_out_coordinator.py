"""
Await a set of in-flight model calls under a shared ConcurrencyLimiter and
collect their normalized answers.

Each call acquires a limiter slot before it is awaited and releases it in a
`finally`, whatever the outcome. A per-call timeout turns that one model into
a timed-out failure, its siblings keep running.

Policies:
- allow-partial: wait for everything. Successes go into `responses`, failures
  into `failures`. AllModelsFailedError only when nothing succeeded.
- fail-fast: raise the first ModelCallError observed. Calls still in flight
  are left to finish on their own and their results are discarded.

PROMPT> python -m neuronvault.batch.fan_out_coordinator
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, Mapping, Optional, Tuple

from neuronvault.batch.concurrency_limiter import ConcurrencyLimiter
from neuronvault.batch.response_normalizer import ResponseNormalizer

logger = logging.getLogger(__name__)


class PartialResultsPolicy(str, Enum):
    allow_partial = "allow-partial"
    fail_fast = "fail-fast"


class ModelCallError(Exception):
    """One model's call timed out, raised or returned nothing usable."""

    def __init__(self, model_id: str, message: str, timed_out: bool = False):
        self.model_id = model_id
        self.timed_out = timed_out
        super().__init__(f"{model_id}: {message}")


class AllModelsFailedError(RuntimeError):
    """Raised under allow-partial when not a single model succeeded."""

    def __init__(self, failures: Dict[str, ModelCallError]):
        self.failures = dict(failures)
        details = "; ".join(str(error) for error in self.failures.values())
        super().__init__(f"All {len(self.failures)} model calls failed: {details}")


@dataclass
class FanOutResult:
    responses: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, ModelCallError] = field(default_factory=dict)

    @property
    def timed_out_models(self) -> list[str]:
        return [model_id for model_id, error in self.failures.items() if error.timed_out]


def _retrieve_outcome(task: asyncio.Future) -> None:
    """Done callback for abandoned calls, so their failures are not reported as never retrieved."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Discarding result of abandoned model call: {exc}")


class FanOutCoordinator:
    def __init__(self, limiter: ConcurrencyLimiter, normalizer: Optional[ResponseNormalizer] = None):
        self._limiter = limiter
        self._normalizer = normalizer or ResponseNormalizer()

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    async def gather(
        self,
        calls: Mapping[str, Awaitable[Any]],
        *,
        timeout: Optional[float] = None,
        policy: PartialResultsPolicy = PartialResultsPolicy.allow_partial,
    ) -> FanOutResult:
        if not calls:
            raise ValueError("No model calls provided")

        tasks: Dict[str, asyncio.Future] = {
            model_id: asyncio.ensure_future(self._run_one(model_id, call, timeout))
            for model_id, call in calls.items()
        }
        logger.info(f"Fan-out of {len(tasks)} model calls, policy={policy.value}, timeout={timeout}")

        if policy == PartialResultsPolicy.fail_fast:
            return await self._gather_fail_fast(tasks)
        return await self._gather_allow_partial(tasks)

    async def _gather_allow_partial(self, tasks: Dict[str, asyncio.Future]) -> FanOutResult:
        await asyncio.wait(list(tasks.values()))
        result = FanOutResult()
        for model_id, task in tasks.items():
            if task.cancelled():
                result.failures[model_id] = ModelCallError(model_id, "call was cancelled")
                continue
            exc = task.exception()
            if exc is None:
                _, text = task.result()
                result.responses[model_id] = text
            elif isinstance(exc, ModelCallError):
                result.failures[model_id] = exc
            else:
                result.failures[model_id] = ModelCallError(model_id, str(exc))

        for model_id, error in result.failures.items():
            logger.warning(f"Model call failed, timed_out={error.timed_out}: {error}")
        if not result.responses:
            raise AllModelsFailedError(result.failures)
        logger.info(f"Fan-out finished with {len(result.responses)} responses and {len(result.failures)} failures")
        return result

    async def _gather_fail_fast(self, tasks: Dict[str, asyncio.Future]) -> FanOutResult:
        result = FanOutResult()
        try:
            for next_done in asyncio.as_completed(list(tasks.values())):
                model_id, text = await next_done
                result.responses[model_id] = text
        except ModelCallError as error:
            logger.warning(f"Failing fast on {error.model_id}, timed_out={error.timed_out}: {error}")
            for task in tasks.values():
                task.add_done_callback(_retrieve_outcome)
            raise
        return result

    async def _run_one(self, model_id: str, call: Awaitable[Any], timeout: Optional[float]) -> Tuple[str, str]:
        await self._limiter.acquire()
        start_time = time.perf_counter()
        try:
            try:
                if timeout is None:
                    raw = await call
                else:
                    raw = await asyncio.wait_for(call, timeout=timeout)
            except asyncio.TimeoutError:
                raise ModelCallError(model_id, f"timed out after {timeout:.1f} seconds", timed_out=True) from None
            except ModelCallError:
                raise
            except Exception as exc:
                raise ModelCallError(model_id, f"{type(exc).__name__}: {exc}") from exc
        finally:
            self._limiter.release()

        duration = time.perf_counter() - start_time
        if raw is None:
            raise ModelCallError(model_id, "returned no response")
        text = str(getattr(raw, "text", raw))
        if not text.strip():
            raise ModelCallError(model_id, "returned an empty response")
        logger.debug(f"Model {model_id!r} answered in {duration:.2f} seconds, {len(text)} characters")
        return model_id, self._normalizer.normalize(text, model_id)


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')

    async def answer(text: str, delay: float) -> str:
        await asyncio.sleep(delay)
        return text

    async def main() -> None:
        coordinator = FanOutCoordinator(ConcurrencyLimiter(capacity=2))
        calls = {
            "claude": asyncio.ensure_future(answer("Here's the idea: keep it small.", 0.1)),
            "gpt": asyncio.ensure_future(answer("Keep it small and simple.", 0.2)),
            "deepseek": asyncio.ensure_future(answer("1. Slow answer", 5.0)),
        }
        result = await coordinator.gather(calls, timeout=1.0)
        print(f"responses: {result.responses!r}")
        print(f"failures: {result.failures!r}")

    asyncio.run(main())
