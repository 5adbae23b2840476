from __future__ import annotations

from datetime import UTC, datetime

from timeq.contracts.models import SourceKind
from timeq.pipeline.sessionizer import Sessionizer


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 3, 4, hour, minute, tzinfo=UTC)


def test_events_within_threshold_form_one_session(make_event):
    events = [make_event(at(9, 0)), make_event(at(9, 20))]
    sessions = Sessionizer(30).sessionize(events)
    assert len(sessions) == 1
    assert [e.id for e in sessions[0].events] == [events[0].id, events[1].id]


def test_gap_beyond_threshold_splits_sessions(make_event):
    sessions = Sessionizer(30).sessionize([make_event(at(9, 0)), make_event(at(10, 0))])
    assert len(sessions) == 2


def test_gap_exactly_at_threshold_stays_in_session(make_event):
    sessions = Sessionizer(30).sessionize([make_event(at(9, 0)), make_event(at(9, 30))])
    assert len(sessions) == 1


def test_gap_measured_between_consecutive_events(make_event):
    # 09:00 -> 09:25 -> 09:50 -> 10:15 chains into one session
    events = [make_event(at(9, 0)), make_event(at(9, 25)), make_event(at(9, 50)), make_event(at(10, 15))]
    sessions = Sessionizer(30).sessionize(events)
    assert len(sessions) == 1
    assert sessions[0].start == at(9, 0)
    assert sessions[0].end == at(10, 15)


def test_matters_are_sessionized_separately(make_event):
    events = [
        make_event(at(9, 0), matter_id="A"),
        make_event(at(9, 5), matter_id="B"),
        make_event(at(9, 10), matter_id="A"),
        make_event(at(9, 15), matter_id=None),
    ]
    sessions = Sessionizer(30).sessionize(events)
    assert [s.matter_key for s in sessions] == ["A", "B", "Internal"]
    assert len(sessions[0].events) == 2


def test_result_does_not_depend_on_input_order(make_event):
    events = [
        make_event(at(9, 0), matter_id="A"),
        make_event(at(9, 0), matter_id="B"),
        make_event(at(9, 40), matter_id="A"),
        make_event(at(11, 0), matter_id="A"),
        make_event(at(11, 0), matter_id="A"),
    ]

    def shape(sessions):
        return [(s.matter_key, [e.id for e in s.events]) for s in sessions]

    forward = shape(Sessionizer(30).sessionize(events))
    backward = shape(Sessionizer(30).sessionize(list(reversed(events))))
    assert forward == backward


def test_session_exposes_kinds_and_text(make_event):
    events = [
        make_event(at(9, 0), kind=SourceKind.EMAIL, subject="Re: hearing"),
        make_event(at(9, 10), description="Edited notice.docx"),
    ]
    session = Sessionizer().sessionize(events)[0]
    assert session.kinds == ["email", "local_activity"]
    assert "Re: hearing" in session.text
    assert "Edited notice.docx" in session.text


def test_empty_input_gives_no_sessions():
    assert Sessionizer().sessionize([]) == []
