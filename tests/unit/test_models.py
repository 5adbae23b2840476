from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from timeq.contracts.models import (
    AnalyzeRequest,
    BillingMode,
    Complexity,
    EngineFlags,
    Evidence,
    EvidenceType,
    MatterRef,
    ProposedBasis,
    ProposedEntry,
    SourceEvent,
    SourceKind,
    TimeWindow,
    matter_key,
)


class TestTimeWindow:
    def test_rejects_inverted_window(self):
        with pytest.raises(ValidationError):
            TimeWindow(start=datetime(2024, 3, 2, tzinfo=UTC), end=datetime(2024, 3, 1, tzinfo=UTC))

    def test_rejects_empty_window(self):
        moment = datetime(2024, 3, 2, tzinfo=UTC)
        with pytest.raises(ValidationError):
            TimeWindow(start=moment, end=moment)

    def test_naive_and_offset_datetimes_become_utc(self):
        window = TimeWindow(
            start=datetime(2024, 3, 1, 9, 0),
            end=datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))),
        )
        assert window.start == datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
        assert window.end == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)

    def test_half_open_contains(self):
        window = TimeWindow(start=datetime(2024, 3, 1, tzinfo=UTC), end=datetime(2024, 3, 2, tzinfo=UTC))
        assert window.contains(datetime(2024, 3, 1, tzinfo=UTC))
        assert not window.contains(datetime(2024, 3, 2, tzinfo=UTC))

    def test_days_excludes_exclusive_end_midnight(self):
        window = TimeWindow(start=datetime(2024, 3, 1, tzinfo=UTC), end=datetime(2024, 3, 4, tzinfo=UTC))
        assert window.days() == [date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)]

    def test_days_includes_partial_last_day(self):
        window = TimeWindow(
            start=datetime(2024, 3, 1, 15, tzinfo=UTC), end=datetime(2024, 3, 2, 9, tzinfo=UTC)
        )
        assert window.days() == [date(2024, 3, 1), date(2024, 3, 2)]

    def test_overlaps_day(self):
        window = TimeWindow(
            start=datetime(2024, 3, 1, 15, tzinfo=UTC), end=datetime(2024, 3, 2, tzinfo=UTC)
        )
        assert window.overlaps_day(date(2024, 3, 1))
        assert not window.overlaps_day(date(2024, 3, 2))
        assert not window.overlaps_day(date(2024, 2, 29))


class TestMatterKey:
    def test_matter_id_wins(self):
        assert MatterRef(matter_id="42", client_name="Acme").group_key == "42"

    def test_client_and_matter_names(self):
        assert MatterRef(client_name="Acme", matter_name="Lease").group_key == "Acme::Lease"

    def test_partial_names_use_defaults(self):
        assert MatterRef(matter_name="Lease").group_key == "Internal::Lease"
        assert MatterRef(client_name="Acme").group_key == "Acme::Unassigned"

    def test_absent_matter_is_internal(self):
        assert matter_key(None) == "Internal"
        assert MatterRef().group_key == "Internal"


def test_source_event_annotate_returns_copy():
    event = SourceEvent(
        id="evt:1", kind=SourceKind.EMAIL, timestamp=datetime(2024, 3, 1, 9, tzinfo=UTC), subject="Hi"
    )
    annotated = event.annotate(task_code="email_correspondence")
    assert annotated.task_code == "email_correspondence"
    assert event.task_code is None
    assert annotated.timestamp == event.timestamp


def test_source_event_is_frozen():
    event = SourceEvent(id="evt:1", kind=SourceKind.EMAIL, timestamp=datetime(2024, 3, 1, tzinfo=UTC))
    with pytest.raises(ValidationError):
        event.subject = "changed"


def test_analyze_request_accepts_wire_shape():
    request = AnalyzeRequest.model_validate(
        {
            "window": {"start": "2024-03-01T00:00:00Z", "end": "2024-03-02T00:00:00Z"},
            "sources": {"localPaths": ["/tmp/work"], "researchCsvPaths": ["/tmp/log.csv"]},
            "policy": {"mode": "blended", "blendRatio": 0.25, "capMultiplier": 2},
            "flags": {"useLLM": True, "enableDupeCheck": False, "normativeStrategy": "aggressive"},
        }
    )
    assert request.sources.local_paths is not None
    assert request.sources.local_paths.paths == ["/tmp/work"]
    assert request.sources.research_csv_paths == ["/tmp/log.csv"]
    assert request.policy.mode == BillingMode.BLENDED
    assert request.policy.blend_ratio == 0.25
    assert request.policy.min_increment_minutes == 6
    assert request.flags.use_llm is True
    assert request.flags.enable_dupe_check is False


def test_flags_default_use_llm_from_environment(monkeypatch):
    monkeypatch.setenv("TIMEQ_USE_LLM", "true")
    assert EngineFlags().use_llm is True
    monkeypatch.setenv("TIMEQ_USE_LLM", "false")
    assert EngineFlags().use_llm is False


def test_blend_ratio_bounds():
    with pytest.raises(ValidationError):
        AnalyzeRequest.model_validate(
            {
                "window": {"start": "2024-03-01T00:00:00Z", "end": "2024-03-02T00:00:00Z"},
                "policy": {"blendRatio": 1.5},
            }
        )


def test_proposed_entry_view_summarizes_evidence():
    evidence = Evidence(
        type=EvidenceType.DIRECT, source_kind=SourceKind.EMAIL, description="Email: hello"
    )
    entry = ProposedEntry(
        id="entry:1",
        matter=MatterRef(matter_id="M-1"),
        date=date(2024, 3, 1),
        task_code="email_correspondence",
        task_label="Email Correspondence",
        normative_minutes=6,
        recommended_minutes=6,
        basis=ProposedBasis.NORMATIVE,
        description="Email: hello",
        activity_category="Communication",
        evidence=[evidence, evidence],
        complexity=Complexity.MEDIUM,
        confidence=0.9,
    )
    view = entry.to_view()
    assert view["evidenceCount"] == 2
    assert "evidence" not in view
    assert view["taskCode"] == "email_correspondence"
    assert view["recommendedMinutes"] == 6
    assert view["actualMinutes"] is None
    assert view["matter"]["matterId"] == "M-1"
    assert view["date"] == "2024-03-01"
