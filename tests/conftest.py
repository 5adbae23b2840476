"""
Shared fixtures for timeq tests.

Async code is driven with asyncio.run() from plain synchronous tests.
"""

from __future__ import annotations

from datetime import UTC, datetime
from itertools import count

import pytest

from timeq.config import EngineConfig
from timeq.contracts.models import (
    Evidence,
    EvidenceType,
    MatterRef,
    SourceEvent,
    SourceKind,
    TimeWindow,
)
from timeq.observability.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def reset_metrics():
    reset_telemetry()
    yield
    reset_telemetry()


@pytest.fixture(autouse=True)
def no_llm_env(monkeypatch):
    monkeypatch.delenv("TIMEQ_USE_LLM", raising=False)


def at(hour: int, minute: int = 0, day: int = 4) -> datetime:
    """2024-03-<day> hour:minute UTC."""
    return datetime(2024, 3, day, hour, minute, tzinfo=UTC)


@pytest.fixture
def window() -> TimeWindow:
    return TimeWindow(start=at(0), end=datetime(2024, 3, 7, tzinfo=UTC))


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(source_timeout=5.0, ai_timeout=1.0, analysis_timeout=10.0)


@pytest.fixture
def make_event():
    """Factory for SourceEvents with sensible defaults and unique ids."""
    ids = count(1)

    def _make(
        timestamp: datetime,
        kind: SourceKind = SourceKind.LOCAL_ACTIVITY,
        matter_id: str | None = "M-100",
        subject: str = "",
        description: str = "",
        duration: float | None = None,
        end: datetime | None = None,
        evidence_type: EvidenceType = EvidenceType.DIRECT,
        event_id: str | None = None,
        **metadata,
    ) -> SourceEvent:
        return SourceEvent(
            id=event_id or f"evt:{next(ids):04d}",
            kind=kind,
            timestamp=timestamp,
            end_timestamp=end,
            duration_minutes=duration,
            matter=MatterRef(matter_id=matter_id) if matter_id else None,
            subject=subject,
            description=description,
            evidence=[
                Evidence(
                    type=evidence_type,
                    source_kind=kind,
                    description=description or subject or "activity",
                    timestamp=timestamp,
                )
            ],
            metadata=dict(metadata),
        )

    return _make
