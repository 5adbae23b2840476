"""
Connector contract shared by every activity source.

A connector answers three questions: is it configured, what is it, and which
events fall in a window. Unconfigured connectors say so through
``is_configured()``; a configured connector that fails while fetching raises
SourceFetchError naming itself so the aggregator can isolate it.
"""

from __future__ import annotations

import asyncio
import hashlib
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from timeq.contracts.errors import ConfigurationError, SourceFetchError
from timeq.contracts.models import SourceEvent, SourceKind, TimeWindow
from timeq.infrastructure import settings
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ConnectorMetadata:
    name: str
    source_kind: SourceKind
    requires_auth: bool
    description: str = ""
    version: str = "1.0.0"


def event_id(prefix: str, *parts: object) -> str:
    """
    Deterministic event id from the fields that identify a source record.

    Example:
        >>> event_id("email", "<abc@mail>")[:6]
        'email:'
    """
    digest = hashlib.sha256("|".join(str(part) for part in parts).encode("utf-8")).hexdigest()
    return f"{prefix}:{digest[:16]}"


class SourceConnector(ABC):
    """Base class for activity sources."""

    name: str = "source"
    source_kind: SourceKind

    def __init__(self, timeout: float = settings.DEFAULT_SOURCE_TIMEOUT) -> None:
        self.timeout = timeout

    @abstractmethod
    def is_configured(self) -> bool:
        """True when every credential/path this source needs is present."""

    @abstractmethod
    def metadata(self) -> ConnectorMetadata: ...

    @abstractmethod
    async def _fetch(self, window: TimeWindow) -> list[SourceEvent]: ...

    async def run_blocking(self, func: Callable[..., T], *args: Any) -> T:
        """
        Run blocking I/O in a worker thread.

        ``func`` receives a trailing ``threading.Event`` that is set once the
        awaiting task finishes or is cancelled; long loops check it and stop,
        so a fetch abandoned at the deadline does not keep scanning.
        """
        stop = threading.Event()
        try:
            return await asyncio.to_thread(func, *args, stop)
        finally:
            stop.set()

    async def fetch_events(self, window: TimeWindow) -> list[SourceEvent]:
        """
        Fetch this source's events for ``window``, bounded by ``self.timeout``.

        Raises:
            ConfigurationError: connector is not configured
            SourceFetchError: any runtime failure, including timeout

        Side Effects:
            - Records connector latency and event counters
        """
        if not self.is_configured():
            raise ConfigurationError(f"{self.name} is not configured")

        with time_block(f"connector.{self.name}"):
            try:
                events = await asyncio.wait_for(self._fetch(window), timeout=self.timeout)
            except SourceFetchError:
                counter(f"connector.{self.name}.errors")
                raise
            except TimeoutError as exc:
                counter(f"connector.{self.name}.errors")
                raise SourceFetchError(self.name, f"timed out after {self.timeout:.1f}s") from exc
            except Exception as exc:
                counter(f"connector.{self.name}.errors")
                raise SourceFetchError(self.name, str(exc) or type(exc).__name__) from exc

        counter(f"connector.{self.name}.events", len(events))
        log_event("connector.fetched", source=self.name, events=len(events))
        return events
