"""
In-process telemetry for analysis runs.

Nothing is exported to a metrics backend. Events become structured log lines,
counters and latencies stay in memory so tests can assert on instrumentation.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("timeq.telemetry")

_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, list[float]] = {}


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Callers pass counts and ids, never message bodies.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and emit a debug log.

    Side Effects:
        - Modifies _COUNTERS dict (in-memory state)
        - Writes to logger (debug level)
    """
    value = _COUNTERS.get(name, 0) + increment
    _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Time a block and record the elapsed seconds under ``metric_name``.

    Side Effects:
        - Appends to _LATENCIES dict (in-memory state)
        - Writes to logger (debug level) with timing
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("timing=%s seconds=%.6f", metric_name, elapsed)
        _LATENCIES.setdefault(metric_name, []).append(elapsed)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """Summary statistics (count, min, max, avg, p50, p95) for a timed block."""
    samples = sorted(_LATENCIES.get(metric_name, []))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p50": samples[int(count * 0.50)],
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def reset_telemetry() -> None:
    """
    Clear counters and latencies (used by tests).

    Side Effects:
        - Clears _COUNTERS and _LATENCIES
    """
    _COUNTERS.clear()
    _LATENCIES.clear()
