from __future__ import annotations

from datetime import UTC, date, datetime
from fractions import Fraction

import pytest

from timeq.billing.catalog import NormativeCatalog
from timeq.billing.policy import (
    PolicyEngine,
    minutes_between,
    recommend_minutes,
    round_half_up,
    round_to_increment,
)
from timeq.contracts.models import (
    BillingMode,
    BillingPolicy,
    Complexity,
    EngineFlags,
    EvidenceType,
    NormativeStrategy,
    ProposedBasis,
    SourceKind,
)
from timeq.observability.telemetry import get_counter


def at(hour: int, minute: int = 0, day: int = 4) -> datetime:
    return datetime(2024, 3, day, hour, minute, tzinfo=UTC)


def engine(policy: BillingPolicy | None = None, flags: EngineFlags | None = None) -> PolicyEngine:
    return PolicyEngine(
        NormativeCatalog.default(),
        policy or BillingPolicy(),
        flags or EngineFlags(use_llm=False),
    )


class TestRoundToIncrement:
    @pytest.mark.parametrize(
        ("minutes", "expected"),
        [(13, 18), (12, 12), (0.5, 6), (6.0001, 12), (50, 54), (20, 24)],
    )
    def test_rounds_up_to_next_multiple(self, minutes, expected):
        assert round_to_increment(minutes, 6) == expected

    @pytest.mark.parametrize(("minutes", "expected"), [(13, 12), (15, 18), (14.9, 12), (2, 0)])
    def test_nearest_multiple_with_halves_up(self, minutes, expected):
        assert round_to_increment(minutes, 6, round_up=False) == expected

    def test_non_positive_minutes_give_zero(self):
        assert round_to_increment(0, 6) == 0
        assert round_to_increment(-4, 6) == 0

    def test_zero_increment_leaves_minutes(self):
        assert round_to_increment(7, 0) == 7
        assert round_to_increment(10.5, 0) == 10.5

    def test_result_is_a_multiple_and_not_below_input(self):
        for minutes in (1, 5.5, 6, 29, 61, 119.99):
            result = round_to_increment(minutes, 6)
            assert result >= minutes
            assert result % 6 == 0


def test_round_half_up_uses_decimal_value():
    assert round_half_up(10.5) == 11
    assert round_half_up(2.5) == 3
    assert round_half_up(Fraction(49, 2)) == 25


def test_minutes_between():
    assert minutes_between(at(9), at(9, 40)) == 40
    assert minutes_between(at(9), None) == 0
    assert minutes_between(at(9, 40), at(9)) == 0


class TestRecommendMinutes:
    def test_blended_mixes_normative_and_actual(self):
        result = recommend_minutes(60, 40, BillingPolicy(mode=BillingMode.BLENDED, blend_ratio=0.5))
        assert result.minutes == 50
        assert result.basis == ProposedBasis.HYBRID

    def test_blend_ratio_weights_normative(self):
        result = recommend_minutes(60, 40, BillingPolicy(mode=BillingMode.BLENDED, blend_ratio=0.25))
        assert result.minutes == 45

    def test_cap_limits_normative_to_multiple_of_actual(self):
        result = recommend_minutes(90, 10, BillingPolicy(cap_multiplier=2))
        assert result.minutes == 20
        assert result.capped is True
        assert result.basis == ProposedBasis.NORMATIVE

    def test_cap_ignored_without_actual(self):
        result = recommend_minutes(90, None, BillingPolicy(cap_multiplier=2))
        assert result.minutes == 90
        assert result.capped is False

    def test_actual_mode_uses_actual(self):
        result = recommend_minutes(90, 40, BillingPolicy(mode=BillingMode.ACTUAL))
        assert result.minutes == 40
        assert result.basis == ProposedBasis.ACTUAL

    @pytest.mark.parametrize("mode", [BillingMode.ACTUAL, BillingMode.BLENDED])
    def test_modes_fall_back_to_normative_without_actual(self, mode):
        result = recommend_minutes(30, None, BillingPolicy(mode=mode))
        assert result.minutes == 30
        assert result.basis == ProposedBasis.NORMATIVE


class TestPolicyEngine:
    def test_value_mode_entry_from_single_event(self, make_event):
        event = make_event(
            at(9),
            description="Edited notice.docx",
            evidence_type=EvidenceType.CIRCUMSTANTIAL,
            task_code="draft_notice_of_hearing",
        )
        [entry] = engine().build_entries([event])

        assert entry.task_code == "draft_notice_of_hearing"
        assert entry.task_label == "Draft Notice of Hearing"
        assert entry.activity_category == "Drafting"
        assert entry.normative_minutes == 15
        assert entry.actual_minutes is None
        assert entry.recommended_minutes == 18
        assert entry.basis == ProposedBasis.NORMATIVE
        assert entry.date == date(2024, 3, 4)
        assert entry.matter.matter_id == "M-100"
        assert entry.description == "Edited notice.docx"
        assert entry.source_event_ids == [event.id]
        assert entry.confidence == 0.8
        assert get_counter("policy.entries") == 1

    def test_groups_by_day_matter_and_task(self, make_event):
        events = [
            make_event(at(9), task_code="email_correspondence", kind=SourceKind.EMAIL),
            make_event(at(10), task_code="email_correspondence", kind=SourceKind.EMAIL),
            make_event(at(11), task_code="scheduling"),
            make_event(at(9), matter_id="M-200", task_code="email_correspondence"),
            make_event(at(9, day=5), task_code="email_correspondence"),
        ]
        entries = engine().build_entries(events)
        keys = [(e.date.day, e.matter.matter_id, e.task_code) for e in entries]
        assert keys == [
            (4, "M-100", "email_correspondence"),
            (4, "M-100", "scheduling"),
            (4, "M-200", "email_correspondence"),
            (5, "M-100", "email_correspondence"),
        ]
        assert len(entries[0].source_event_ids) == 2

    def test_distinct_descriptions_count_as_instances(self, make_event):
        events = [
            make_event(at(9), description="Email: Re hearing date", task_code="email_correspondence"),
            make_event(at(9, 30), description="Email: Exhibit list", task_code="email_correspondence"),
            make_event(at(10), description="Email: Exhibit list", task_code="email_correspondence"),
        ]
        [entry] = engine().build_entries(events)
        assert entry.normative_minutes == 12
        assert entry.description == "Email Correspondence: Email: Re hearing date; Email: Exhibit list"

    def test_complexity_multiplier_applies(self, make_event):
        low = make_event(at(9), task_code="draft_notice_of_hearing", complexity="low")
        high = make_event(at(9, day=5), task_code="draft_notice_of_hearing", complexity="HIGH")
        first, second = engine().build_entries([low, high])
        assert first.complexity == Complexity.LOW
        assert first.normative_minutes == 11
        assert second.complexity == Complexity.HIGH
        assert second.normative_minutes == 23

    @pytest.mark.parametrize(
        ("strategy", "expected"),
        [
            (NormativeStrategy.CONSERVATIVE, 14),
            (NormativeStrategy.STANDARD, 15),
            (NormativeStrategy.AGGRESSIVE, 18),
        ],
    )
    def test_strategy_scales_normative_minutes(self, make_event, strategy, expected):
        event = make_event(at(9), task_code="draft_notice_of_hearing")
        flags = EngineFlags(use_llm=False, normative_strategy=strategy)
        [entry] = engine(flags=flags).build_entries([event])
        assert entry.normative_minutes == expected

    def test_actual_mode_uses_observed_duration(self, make_event):
        event = make_event(at(9), end=at(9, 40), kind=SourceKind.RESEARCH, task_code="research_issue")
        [entry] = engine(BillingPolicy(mode=BillingMode.ACTUAL)).build_entries([event])
        assert entry.actual_minutes == 40
        assert entry.normative_minutes == 90
        assert entry.recommended_minutes == 42
        assert entry.basis == ProposedBasis.ACTUAL

    def test_blended_mode_with_cap(self, make_event):
        event = make_event(at(9), duration=10, task_code="research_issue")
        policy = BillingPolicy(mode=BillingMode.BLENDED, cap_multiplier=2)
        [entry] = engine(policy).build_entries([event])
        # 0.5 * 90 + 0.5 * 10 = 50, capped at 20, rounded up to 24
        assert entry.recommended_minutes == 24
        assert entry.basis == ProposedBasis.HYBRID

    def test_minimum_entry_size(self, make_event):
        event = make_event(at(9), task_code="email_correspondence")
        policy = BillingPolicy(min_increment_minutes=0)
        flags = EngineFlags(use_llm=False, min_entry_minutes=10)
        [entry] = engine(policy, flags).build_entries([event])
        assert entry.normative_minutes == 6
        assert entry.recommended_minutes == 10

    def test_unknown_code_falls_back_to_actual(self, make_event):
        event = make_event(at(9), duration=20, task_code="custom_thing")
        [entry] = engine().build_entries([event])
        assert entry.normative_minutes == 20
        assert entry.task_label == "Custom Thing"
        assert entry.activity_category == "Uncategorized"

    def test_unclassified_event_uses_catch_all(self, make_event):
        [entry] = engine().build_entries([make_event(at(9))])
        assert entry.task_code == "admin_tech"

    def test_confidence_tracks_direct_evidence(self, make_event):
        direct = make_event(at(9), task_code="scheduling", evidence_type=EvidenceType.DIRECT)
        inferred = make_event(
            at(9, 10), task_code="scheduling", evidence_type=EvidenceType.CIRCUMSTANTIAL
        )
        [all_direct] = engine().build_entries([direct])
        [mixed] = engine().build_entries([direct, inferred])
        assert all_direct.confidence == 0.95
        assert mixed.confidence == 0.875

    def test_entries_are_deterministic(self, make_event):
        events = [
            make_event(at(9), task_code="scheduling"),
            make_event(at(9, 5), task_code="scheduling"),
            make_event(at(14), matter_id="M-200", task_code="research_issue", duration=33),
        ]
        first = engine().build_entries(events)
        second = engine().build_entries(list(reversed(events)))
        assert [e.model_dump() for e in first] == [e.model_dump() for e in second]
        assert all(e.id.startswith("entry:") for e in first)
