"""
Concurrent event aggregation.

Every configured connector runs as its own asyncio task. Tasks append into a
single lock-guarded list; a failing or slow connector only loses its own
contribution. The merged stream is filtered to the window, de-duplicated by
event id and sorted by (timestamp, id), so downstream stages never see
connector completion order.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from timeq.connectors.base import SourceConnector
from timeq.contracts.errors import ConfigurationError, RequestValidationError, SourceFetchError
from timeq.contracts.models import SourceEvent, TimeWindow
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)


@dataclass
class AggregationResult:
    events: list[SourceEvent]
    sources_used: list[str]
    skipped: dict[str, str] = field(default_factory=dict)


def in_window(event: SourceEvent, window: TimeWindow) -> bool:
    if event.metadata.get("date_only"):
        return window.overlaps_day(event.timestamp.date())
    return window.contains(event.timestamp)


def merge_events(batches: Sequence[Sequence[SourceEvent]], window: TimeWindow) -> list[SourceEvent]:
    """Filter to the window, keep the first occurrence of each id, sort stably."""
    seen: set[str] = set()
    merged: list[SourceEvent] = []
    for batch in batches:
        for event in batch:
            if event.id in seen or not in_window(event, window):
                continue
            seen.add(event.id)
            merged.append(event)
    merged.sort(key=lambda e: (e.timestamp, e.id))
    return merged


class EventAggregator:
    async def collect(
        self,
        connectors: Sequence[SourceConnector],
        window: TimeWindow,
        deadline: float | None = None,
    ) -> AggregationResult:
        """
        Run configured connectors concurrently and merge their events.

        Args:
            connectors: candidate sources, in registration order
            window: analysis window
            deadline: absolute ``time.monotonic()`` cutoff; pending fetches are
                cancelled when it passes

        Raises:
            RequestValidationError: none of the connectors is configured

        Side Effects:
            - Logs and counts per-source failures and timeouts
        """
        skipped: dict[str, str] = {}
        active: list[SourceConnector] = []
        for connector in connectors:
            if connector.is_configured():
                active.append(connector)
            else:
                skipped[connector.name] = "not configured"
                logger.info("Skipping %s: not configured", connector.name)

        if not active:
            raise RequestValidationError("no configured activity source")

        lock = asyncio.Lock()
        collected: dict[int, list[SourceEvent]] = {}

        async def run(position: int, connector: SourceConnector) -> None:
            events = await connector.fetch_events(window)
            async with lock:
                collected[position] = events

        tasks = {
            asyncio.create_task(run(i, c), name=f"fetch:{c.name}"): c for i, c in enumerate(active)
        }
        timeout = None if deadline is None else max(deadline - time.monotonic(), 0.0)

        with time_block("aggregator.collect"):
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task in pending:
            name = tasks[task].name
            skipped[name] = "timed out"
            counter("aggregator.source_timeouts")
            logger.warning("Source %s did not finish before the deadline", name)

        for task in done:
            name = tasks[task].name
            exc = task.exception()
            if exc is None:
                continue
            if isinstance(exc, (SourceFetchError, ConfigurationError)):
                skipped[name] = str(exc)
            else:
                skipped[name] = f"unexpected error: {exc!r}"
            counter("aggregator.source_failures")
            logger.warning("Source %s failed: %s", name, exc)

        # Registration order, not completion order
        positions = sorted(collected)
        used = [active[i].name for i in positions]
        events = merge_events([collected[i] for i in positions], window)

        log_event(
            "aggregator.collected",
            sources=used,
            skipped=sorted(skipped),
            events=len(events),
        )
        return AggregationResult(events=events, sources_used=used, skipped=skipped)
