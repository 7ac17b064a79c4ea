import asyncio
import unittest

from neuronvault.batch.concurrency_limiter import ConcurrencyLimiter


class TestConcurrencyLimiter(unittest.IsolatedAsyncioTestCase):
    async def test_acquire_within_capacity_returns_immediately(self):
        limiter = ConcurrencyLimiter(capacity=3)
        await limiter.acquire()
        await limiter.acquire()
        self.assertEqual(limiter.available, 1)
        self.assertEqual(limiter.in_use, 2)
        self.assertEqual(limiter.waiting, 0)

    async def test_never_more_than_capacity_in_flight(self):
        # Arrange
        limiter = ConcurrencyLimiter(capacity=3)
        in_flight = 0
        peak = 0

        async def work():
            nonlocal in_flight, peak
            async with limiter:
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1

        # Act
        await asyncio.gather(*(work() for _ in range(10)))

        # Assert
        self.assertEqual(peak, 3)
        self.assertEqual(limiter.available, 3)

    async def test_release_hands_slot_to_oldest_waiter(self):
        # Arrange
        limiter = ConcurrencyLimiter(capacity=1)
        await limiter.acquire()
        order = []

        async def waiter(name: str):
            await limiter.acquire()
            order.append(name)

        first = asyncio.create_task(waiter("first"))
        await asyncio.sleep(0)
        second = asyncio.create_task(waiter("second"))
        await asyncio.sleep(0)
        self.assertEqual(limiter.waiting, 2)

        # Act
        limiter.release()
        await asyncio.sleep(0)

        # Assert
        self.assertEqual(order, ["first"])
        self.assertEqual(limiter.available, 0)
        self.assertEqual(limiter.waiting, 1)

        limiter.release()
        await asyncio.gather(first, second)
        self.assertEqual(order, ["first", "second"])
        self.assertEqual(limiter.available, 0)
        limiter.release()
        self.assertEqual(limiter.available, 1)

    async def test_newcomer_cannot_barge_past_a_waiter(self):
        limiter = ConcurrencyLimiter(capacity=1)
        await limiter.acquire()
        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)

        limiter.release()
        newcomer = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)

        self.assertTrue(waiter.done())
        self.assertFalse(newcomer.done())
        limiter.release()
        await newcomer
        limiter.release()

    async def test_cancelled_waiter_leaves_the_queue(self):
        limiter = ConcurrencyLimiter(capacity=1)
        await limiter.acquire()
        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)

        waiter.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await waiter

        self.assertEqual(limiter.waiting, 0)
        limiter.release()
        self.assertEqual(limiter.available, 1)

    async def test_release_is_exception_safe_with_context_manager(self):
        limiter = ConcurrencyLimiter(capacity=2)
        with self.assertRaises(ValueError):
            async with limiter:
                raise ValueError("model exploded")
        self.assertEqual(limiter.available, 2)

    async def test_release_without_acquire_raises(self):
        limiter = ConcurrencyLimiter(capacity=2)
        with self.assertRaises(RuntimeError):
            limiter.release()

    def test_capacity_must_be_positive(self):
        with self.assertRaises(ValueError):
            ConcurrencyLimiter(capacity=0)


if __name__ == '__main__':
    unittest.main()
