"""End-to-end analysis runs over real files, a mocked ledger and a scripted model."""

from __future__ import annotations

import asyncio
import json
import os
import threading
import time
from datetime import UTC, datetime

import httpx
import pytest

from timeq.config import EngineConfig
from timeq.connectors.ledger import LedgerConnector
from timeq.connectors.local_activity import LocalActivityConnector
from timeq.contracts.errors import ConfigurationError, RequestValidationError
from timeq.contracts.models import AnalyzeRequest, LedgerConfig, TimeWindow
from timeq.engine import ForensicTimeEngine, analyze_period, find_billing_gaps, push_entries
from timeq.infrastructure.retry import RetryPolicy

WINDOW = {"start": "2024-03-04T00:00:00Z", "end": "2024-03-07T00:00:00Z"}


class ScriptedProvider:
    def __init__(self, reply: str):
        self.reply = reply
        self.calls = 0

    def is_available(self) -> bool:
        return True

    async def complete(self, prompt: str) -> str:
        self.calls += 1
        return self.reply


def touch(path, modified: datetime) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("draft", encoding="utf-8")
    os.utime(path, (modified.timestamp(), modified.timestamp()))


@pytest.fixture
def sources(tmp_path) -> dict:
    matters = tmp_path / "matters"
    touch(matters / "Smith" / "notice of hearing.docx", datetime(2024, 3, 4, 10, 30, tzinfo=UTC))
    touch(matters / "Smith" / "notice of hearing v2.docx", datetime(2024, 3, 4, 10, 40, tzinfo=UTC))
    touch(matters / "Smith" / "stale.docx", datetime(2024, 1, 2, 8, 0, tzinfo=UTC))

    export = tmp_path / "research.csv"
    export.write_text(
        "Date,Duration,Matter ID,Query\n"
        "2024-03-05 14:00,1:30,M-7,negligence per se\n"
        "2024-03-09 14:00,15,M-7,outside the window\n",
        encoding="utf-8",
    )
    return {"localPaths": [str(matters)], "researchCsvPaths": [str(export)]}


@pytest.fixture
def engine(engine_config) -> ForensicTimeEngine:
    return ForensicTimeEngine(config=engine_config)


def test_analyze_period_builds_proposals(sources, engine):
    payload = analyze_period({"window": WINDOW, "sources": sources}, engine=engine)

    assert payload["toolsUsed"] == ["local_activity", "research_log"]
    assert payload["skippedSources"] == {}
    assert payload["duplicates"] == []
    assert payload["stats"] == {
        "totalEvents": 3,
        "totalProposals": 2,
        "totalRecommendedMinutes": 120,
        "totalActualMinutes": 90,
        "eventsBySource": {"local_activity": 2, "research": 1},
    }

    drafting, research = payload["proposals"]
    assert drafting["taskCode"] == "draft_notice_of_hearing"
    assert drafting["date"] == "2024-03-04"
    assert drafting["matter"] is None
    assert drafting["normativeMinutes"] == 30
    assert drafting["recommendedMinutes"] == 30
    assert drafting["actualMinutes"] is None
    assert drafting["basis"] == "normative"
    assert drafting["evidenceCount"] == 2
    assert drafting["confidence"] == 0.8

    assert research["taskCode"] == "research_issue"
    assert research["matter"]["matterId"] == "M-7"
    assert research["actualMinutes"] == 90
    assert research["recommendedMinutes"] == 90
    assert research["confidence"] == 0.95


def test_analysis_is_repeatable(sources, engine):
    request = {"window": WINDOW, "sources": sources, "policy": {"mode": "blended"}}
    first = analyze_period(request, engine=engine)
    second = analyze_period(request, engine=engine)
    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)
    assert {p["basis"] for p in first["proposals"]} == {"normative", "hybrid"}


def test_normative_rules_override_catalog(sources, engine):
    payload = analyze_period(
        {
            "window": WINDOW,
            "sources": sources,
            "policy": {"normativeRules": [{"task": "draft_notice_of_hearing", "baselineMinutes": 24}]},
        },
        engine=engine,
    )
    assert payload["proposals"][0]["normativeMinutes"] == 48


def test_ai_assignment_replaces_heuristic_code(sources, engine_config):
    provider = ScriptedProvider('[{"index": 0, "taskCode": "motion_draft", "confidence": 0.9}]')
    engine = ForensicTimeEngine(config=engine_config, ai_provider=provider)

    payload = analyze_period({"window": WINDOW, "sources": sources, "flags": {"useLLM": True}}, engine=engine)

    assert provider.calls == 1
    assert [p["taskCode"] for p in payload["proposals"]] == ["motion_draft", "research_issue"]
    assert payload["proposals"][0]["normativeMinutes"] == 180


def test_bad_ai_reply_keeps_heuristic_codes(sources, engine_config):
    engine = ForensicTimeEngine(config=engine_config, ai_provider=ScriptedProvider("no idea"))
    payload = analyze_period({"window": WINDOW, "sources": sources, "flags": {"useLLM": True}}, engine=engine)
    assert [p["taskCode"] for p in payload["proposals"]] == ["draft_notice_of_hearing", "research_issue"]


def test_inverted_window_is_rejected(sources, engine):
    with pytest.raises(RequestValidationError, match="window"):
        analyze_period(
            {"window": {"start": WINDOW["end"], "end": WINDOW["start"]}, "sources": sources},
            engine=engine,
        )


def test_request_without_sources_is_rejected(engine):
    with pytest.raises(RequestValidationError):
        analyze_period({"window": WINDOW}, engine=engine)


def test_failing_source_does_not_fail_the_run(tmp_path, sources, engine):
    sources = {**sources, "localPaths": [str(tmp_path / "missing")]}
    payload = analyze_period({"window": WINDOW, "sources": sources}, engine=engine)

    assert payload["toolsUsed"] == ["research_log"]
    assert "root does not exist" in payload["skippedSources"]["local_activity"]
    assert [p["taskCode"] for p in payload["proposals"]] == ["research_issue"]


def test_every_source_failing_gives_empty_result(tmp_path, engine):
    payload = analyze_period(
        {"window": WINDOW, "sources": {"localPaths": [str(tmp_path / "missing")]}}, engine=engine
    )
    assert payload["proposals"] == []
    assert payload["stats"]["totalEvents"] == 0
    assert list(payload["skippedSources"]) == ["local_activity"]


def test_gaps_from_ledger(engine):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": [
                    {"id": 1, "date": "2024-03-04", "quantity_in_hours": 0.5},
                    {"id": 2, "date": "2024-03-05", "quantity_in_hours": 1.5},
                    {"id": 3, "date": "2024-03-05", "quantity_in_hours": 1.0},
                ]
            },
        )

    async def no_sleep(_: float) -> None:
        return None

    ledger = LedgerConnector(
        LedgerConfig(api_key="token", base_url="https://ledger.example/api/v4"),
        transport=httpx.MockTransport(handler),
        retry=RetryPolicy(stage="ledger", async_sleep_fn=no_sleep),
    )
    window = TimeWindow.model_validate(WINDOW)

    gaps = asyncio.run(engine.identify_gaps(window, ledger))

    assert [(g.date.day, g.recorded_minutes) for g in gaps] == [(4, 30), (6, 0)]


def test_gaps_without_ledger_is_a_configuration_error(engine):
    with pytest.raises(ConfigurationError):
        find_billing_gaps({"window": WINDOW}, engine=engine)


def test_push_dry_run(engine):
    result = push_entries(
        {
            "dryRun": True,
            "rate": 300,
            "entries": [
                {"matterId": "42", "date": "2024-03-04", "minutes": 30, "description": "Notice of hearing"},
                {"matterId": "", "date": "2024-03-04", "minutes": 6, "description": "Email"},
            ],
        },
        engine=engine,
    )

    assert result["dryRun"] is True
    assert result["pushed"] == 1
    assert result["failed"] == 1
    first, second = result["results"]
    assert first["payload"]["data"]["price"] == 300
    assert first["payload"]["data"]["quantity"] == 0.5
    assert "error" not in first
    assert second["ok"] is False
    assert "matterId" in second["error"]
    assert (first["matterId"], first["date"]) == ("42", "2024-03-04")
    assert second["date"] == "2024-03-04"


def test_engine_config_from_environment(monkeypatch):
    monkeypatch.setenv("TIMEQ_SESSION_GAP_MINUTES", "45")
    monkeypatch.setenv("TIMEQ_ANALYSIS_TIMEOUT", "12.5")
    config = EngineConfig.from_settings()
    assert config.session_gap_minutes == 45.0
    assert config.analysis_timeout == 12.5
    assert config.source_timeout == 30.0


def test_request_timeout_overrides_config(sources, engine):
    request = AnalyzeRequest.model_validate({"window": WINDOW, "sources": sources, "timeoutSeconds": 5})
    result = asyncio.run(engine.analyze(request))
    assert result.stats.total_proposals == 2


def test_sync_call_returns_at_the_deadline_while_a_scan_is_stuck(monkeypatch, sources, engine):
    stops: list[threading.Event] = []

    def stuck_scan(self, window, stop):
        stops.append(stop)
        time.sleep(2.0)
        return []

    monkeypatch.setattr(LocalActivityConnector, "_scan_all", stuck_scan)

    started = time.monotonic()
    payload = analyze_period({"window": WINDOW, "sources": sources, "timeoutSeconds": 0.3}, engine=engine)
    elapsed = time.monotonic() - started

    assert elapsed < 1.5
    assert payload["skippedSources"] == {"local_activity": "timed out"}
    assert [p["taskCode"] for p in payload["proposals"]] == ["research_issue"]
    assert stops[0].is_set()
