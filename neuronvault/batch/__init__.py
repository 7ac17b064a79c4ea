"""Concurrent batch path: bounded fan-out over model calls, then normalization."""

from .concurrency_limiter import ConcurrencyLimiter
from .fan_out_coordinator import (
    AllModelsFailedError,
    FanOutCoordinator,
    FanOutResult,
    ModelCallError,
    PartialResultsPolicy,
)
from .response_normalizer import ModelFamily, ResponseNormalizer

__all__ = [
    "ConcurrencyLimiter",
    "AllModelsFailedError",
    "FanOutCoordinator",
    "FanOutResult",
    "ModelCallError",
    "PartialResultsPolicy",
    "ModelFamily",
    "ResponseNormalizer",
]
