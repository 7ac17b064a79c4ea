"""
Centralised configuration for the NeuronVault orchestration engine.

Environment variables take priority, then values from a `.env` file in the
working directory, then the defaults declared on the dataclasses below.

PROMPT> python -m neuronvault.config
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values, find_dotenv

logger = logging.getLogger(__name__)


def _load_dotenv_dict() -> Dict[str, Optional[str]]:
    dotenv_path = find_dotenv(usecwd=True)
    if not dotenv_path:
        return {}
    logger.debug(f"Loading settings from {dotenv_path!r}")
    return dotenv_values(dotenv_path=dotenv_path)


_DOTENV_DICT = _load_dotenv_dict()


def _raw_setting(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is not None:
        return value
    return _DOTENV_DICT.get(name)


def _str_setting(name: str, default: str) -> str:
    value = _raw_setting(name)
    if value is None or value.strip() == "":
        return default
    return value


def _int_setting(name: str, default: int) -> int:
    value = _raw_setting(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}") from exc


def _float_setting(name: str, default: float) -> float:
    value = _raw_setting(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}") from exc


def _optional_float_setting(name: str, default: Optional[float]) -> Optional[float]:
    value = _raw_setting(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class StreamingControls:
    """Connection, keepalive and reconnection settings for streaming sessions."""

    base_url: str = "http://localhost:4000"
    websocket_url: str = "ws://localhost:4000/ws/stream"
    connection_timeout: float = 10.0
    heartbeat_interval: float = 15.0
    heartbeat_timeout: float = 45.0
    max_reconnect_attempts: int = 3
    reconnect_backoff_seconds: float = 2.0


@dataclass(frozen=True)
class BatchControls:
    """Settings for the concurrent batch path."""

    max_concurrent_calls: int = 3
    call_timeout: Optional[float] = None


@dataclass(frozen=True)
class SynthesisControls:
    """Empirical constants used by the weighted merge."""

    duplicate_similarity: float = 0.8
    unique_similarity: float = 0.7
    dominance_ratio: float = 2.0
    min_sentence_length: int = 5
    min_point_length: int = 10
    candidate_count: int = 2
    max_points_per_candidate: int = 3
    heavy_entry_count: int = 5
    heavy_entry_chars: int = 5000
    section_label: str = "Further considerations"


@dataclass(frozen=True)
class ServerControls:
    """Settings for the reference streaming backend."""

    host: str = "127.0.0.1"
    port: int = 4000
    demo_latency_seconds: float = 0.05
    chunks_per_model: int = 10
    chunk_delay_seconds: float = 0.0


def _build_streaming_controls() -> StreamingControls:
    defaults = StreamingControls()
    heartbeat_interval = _float_setting("NEURONVAULT_HEARTBEAT_INTERVAL", defaults.heartbeat_interval)
    heartbeat_timeout = _float_setting("NEURONVAULT_HEARTBEAT_TIMEOUT", defaults.heartbeat_timeout)
    if heartbeat_timeout <= heartbeat_interval:
        raise ValueError(
            "NEURONVAULT_HEARTBEAT_TIMEOUT must be greater than NEURONVAULT_HEARTBEAT_INTERVAL"
        )
    return StreamingControls(
        base_url=_str_setting("NEURONVAULT_BASE_URL", defaults.base_url),
        websocket_url=_str_setting("NEURONVAULT_WEBSOCKET_URL", defaults.websocket_url),
        connection_timeout=_float_setting("NEURONVAULT_CONNECTION_TIMEOUT", defaults.connection_timeout),
        heartbeat_interval=heartbeat_interval,
        heartbeat_timeout=heartbeat_timeout,
        max_reconnect_attempts=_int_setting("NEURONVAULT_MAX_RECONNECT_ATTEMPTS", defaults.max_reconnect_attempts),
        reconnect_backoff_seconds=_float_setting("NEURONVAULT_RECONNECT_BACKOFF", defaults.reconnect_backoff_seconds),
    )


def _build_batch_controls() -> BatchControls:
    defaults = BatchControls()
    max_concurrent_calls = _int_setting("NEURONVAULT_MAX_CONCURRENT_CALLS", defaults.max_concurrent_calls)
    if max_concurrent_calls < 1:
        raise ValueError("NEURONVAULT_MAX_CONCURRENT_CALLS must be at least 1")
    return BatchControls(
        max_concurrent_calls=max_concurrent_calls,
        call_timeout=_optional_float_setting("NEURONVAULT_CALL_TIMEOUT", defaults.call_timeout),
    )


def _build_synthesis_controls() -> SynthesisControls:
    defaults = SynthesisControls()
    return SynthesisControls(
        duplicate_similarity=_float_setting("NEURONVAULT_DUPLICATE_SIMILARITY", defaults.duplicate_similarity),
        unique_similarity=_float_setting("NEURONVAULT_UNIQUE_SIMILARITY", defaults.unique_similarity),
        dominance_ratio=_float_setting("NEURONVAULT_DOMINANCE_RATIO", defaults.dominance_ratio),
        heavy_entry_count=_int_setting("NEURONVAULT_HEAVY_ENTRY_COUNT", defaults.heavy_entry_count),
        heavy_entry_chars=_int_setting("NEURONVAULT_HEAVY_ENTRY_CHARS", defaults.heavy_entry_chars),
    )


def _build_server_controls() -> ServerControls:
    defaults = ServerControls()
    return ServerControls(
        host=_str_setting("NEURONVAULT_HOST", defaults.host),
        port=_int_setting("NEURONVAULT_PORT", defaults.port),
        demo_latency_seconds=_float_setting("NEURONVAULT_DEMO_LATENCY", defaults.demo_latency_seconds),
        chunks_per_model=_int_setting("NEURONVAULT_CHUNKS_PER_MODEL", defaults.chunks_per_model),
        chunk_delay_seconds=_float_setting("NEURONVAULT_CHUNK_DELAY", defaults.chunk_delay_seconds),
    )


STREAMING_CONTROLS = _build_streaming_controls()
BATCH_CONTROLS = _build_batch_controls()
SYNTHESIS_CONTROLS = _build_synthesis_controls()
SERVER_CONTROLS = _build_server_controls()


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')
    print(f"STREAMING_CONTROLS: {STREAMING_CONTROLS!r}")
    print(f"BATCH_CONTROLS: {BATCH_CONTROLS!r}")
    print(f"SYNTHESIS_CONTROLS: {SYNTHESIS_CONTROLS!r}")
    print(f"SERVER_CONTROLS: {SERVER_CONTROLS!r}")
