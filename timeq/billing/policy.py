"""
Policy engine: classified events to proposed ledger entries.

Events are grouped by (matter, day, task code). For each group the engine
derives actual minutes from the evidence, normative minutes from the
catalog, picks or blends them per the billing mode, applies the cap, then
rounds to the billing increment and enforces the minimum entry size.

Arithmetic runs on ``fractions.Fraction`` built from the decimal form of
each input, so 15 x 0.7 is exactly 10.5 and rounds the same way everywhere.
"""

from __future__ import annotations

import hashlib
import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from fractions import Fraction

from timeq.billing.catalog import CATCH_ALL_CODE, STRATEGY_FACTORS, NormativeCatalog
from timeq.contracts.models import (
    BillingMode,
    BillingPolicy,
    Complexity,
    EngineFlags,
    EvidenceType,
    ProposedBasis,
    ProposedEntry,
    SourceEvent,
    matter_key,
)
from timeq.infrastructure import settings
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

Number = int | float | Fraction


def exact(value: Number) -> Fraction:
    if isinstance(value, Fraction):
        return value
    if isinstance(value, int):
        return Fraction(value)
    return Fraction(repr(float(value)))


def round_half_up(value: Number) -> int:
    return math.floor(exact(value) + Fraction(1, 2))


def _plain(value: Fraction) -> int | float:
    return value.numerator if value.denominator == 1 else float(value)


def round_to_increment(minutes: Number, increment: Number, round_up: bool = True) -> int | float:
    """
    Round minutes to a billing increment.

    ``round_up`` returns the smallest multiple of ``increment`` that is
    >= ``minutes``; otherwise the nearest multiple, halves rounding up.
    Non-positive minutes give 0; a non-positive increment leaves minutes as is.

    Example:
        >>> round_to_increment(13, 6)
        18
        >>> round_to_increment(13, 6, round_up=False)
        12
    """
    m = exact(minutes)
    if m <= 0:
        return 0
    inc = exact(increment)
    if inc <= 0:
        return _plain(m)
    units = m / inc
    count = math.ceil(units) if round_up else math.floor(units + Fraction(1, 2))
    return _plain(count * inc)


def minutes_between(start: datetime, end: datetime | None) -> int:
    """Whole minutes from start to end; 0 when end is missing or not after start."""
    if end is None or end <= start:
        return 0
    microseconds = (end - start) // timedelta(microseconds=1)
    return round_half_up(Fraction(microseconds, 60_000_000))


def event_actual_minutes(event: SourceEvent) -> Fraction:
    if event.duration_minutes:
        return exact(event.duration_minutes)
    return Fraction(minutes_between(event.timestamp, event.end_timestamp))


@dataclass(frozen=True)
class Recommendation:
    minutes: Fraction
    basis: ProposedBasis
    capped: bool = False


def recommend_minutes(
    normative: Number, actual: Number | None, policy: BillingPolicy
) -> Recommendation:
    """Pre-rounding recommended minutes for one group, with the branch that produced it."""
    norm = exact(normative)
    act = exact(actual) if actual else None

    if policy.mode == BillingMode.ACTUAL and act is not None:
        value, basis = act, ProposedBasis.ACTUAL
    elif policy.mode == BillingMode.BLENDED and act is not None:
        ratio = exact(policy.blend_ratio)
        value, basis = norm * ratio + act * (1 - ratio), ProposedBasis.HYBRID
    else:
        value, basis = norm, ProposedBasis.NORMATIVE

    capped = False
    if policy.cap_multiplier is not None and act is not None:
        ceiling = act * exact(policy.cap_multiplier)
        if value > ceiling:
            value, capped = ceiling, True
    return Recommendation(value, basis, capped)


def count_instances(events: Sequence[SourceEvent]) -> int:
    """Distinct non-empty descriptions, at least 1."""
    return max(len({e.description.strip() for e in events if e.description.strip()}), 1)


def infer_complexity(events: Sequence[SourceEvent]) -> Complexity:
    for event in events:
        raw = event.metadata.get("complexity")
        if raw is None:
            continue
        try:
            return Complexity(str(raw).lower())
        except ValueError:
            logger.debug("Ignoring unknown complexity %r on %s", raw, event.id)
    return Complexity.MEDIUM


def build_description(label: str, events: Sequence[SourceEvent]) -> str:
    if len(events) == 1:
        only = events[0]
        return only.description.strip() or only.subject.strip() or label or "Work performed"
    distinct: list[str] = []
    for event in events:
        text = event.description.strip()
        if text and text not in distinct:
            distinct.append(text)
    if distinct:
        return f"{label}: {'; '.join(distinct)}"
    return f"{label} ({len(events)} activities)"


def entry_id(group_key: str, day: date, code: str, event_ids: Iterable[str]) -> str:
    joined = "|".join([group_key, day.isoformat(), code, *sorted(event_ids)])
    return "entry:" + hashlib.sha256(joined.encode("utf-8")).hexdigest()[:16]


class PolicyEngine:
    def __init__(
        self,
        catalog: NormativeCatalog,
        policy: BillingPolicy,
        flags: EngineFlags,
        confidence_baseline: float = settings.DEFAULT_CONFIDENCE_BASELINE,
    ) -> None:
        self.catalog = catalog
        self.policy = policy
        self.flags = flags
        self.confidence_baseline = confidence_baseline

    def normative_minutes(self, code: str, complexity: Complexity, instances: int, actual: int | None) -> int:
        item = self.catalog.get(code)
        if item is None:
            fallback = actual or self.catalog[CATCH_ALL_CODE].base_minutes
            return round_half_up(exact(fallback)) * instances
        per_instance = (
            exact(item.base_minutes)
            * exact(item.multiplier(complexity))
            * exact(STRATEGY_FACTORS[self.flags.normative_strategy])
        )
        return round_half_up(per_instance) * instances

    def confidence(self, events: Sequence[SourceEvent]) -> float:
        evidence = [item for e in events for item in e.evidence]
        if not evidence:
            ratio = 0.0
        else:
            ratio = sum(1 for item in evidence if item.type == EvidenceType.DIRECT) / len(evidence)
        ceiling = settings.MAX_CONFIDENCE
        return round(min(ceiling, self.confidence_baseline + (ceiling - self.confidence_baseline) * ratio), 3)

    def build_entries(self, events: Iterable[SourceEvent]) -> list[ProposedEntry]:
        """
        One ProposedEntry per (matter, day, task code) group, ordered by
        (day, matter key, task code).
        """
        groups: dict[tuple[date, str, str], list[SourceEvent]] = defaultdict(list)
        for event in events:
            code = event.task_code or CATCH_ALL_CODE
            groups[(event.timestamp.date(), matter_key(event.matter), code)].append(event)

        entries = [
            self._build_entry(key, sorted(group, key=lambda e: (e.timestamp, e.id)))
            for key, group in sorted(groups.items(), key=lambda kv: kv[0])
        ]
        counter("policy.entries", len(entries))
        log_event(
            "policy.entries_built",
            entries=len(entries),
            mode=self.policy.mode.value,
            recommended_minutes=sum(e.recommended_minutes for e in entries),
        )
        return entries

    def _build_entry(self, key: tuple[date, str, str], events: list[SourceEvent]) -> ProposedEntry:
        day, group_key, code = key

        actual_total = sum((event_actual_minutes(e) for e in events), Fraction(0))
        actual = round_half_up(actual_total) if actual_total > 0 else None
        if actual == 0:
            actual = None

        complexity = infer_complexity(events)
        normative = self.normative_minutes(code, complexity, count_instances(events), actual)

        recommendation = recommend_minutes(normative, actual, self.policy)
        rounded = round_to_increment(
            recommendation.minutes, self.policy.min_increment_minutes, self.policy.round_up
        )
        recommended = max(round_half_up(rounded), self.flags.min_entry_minutes)

        label = self.catalog.label(code)
        return ProposedEntry(
            id=entry_id(group_key, day, code, (e.id for e in events)),
            matter=events[0].matter,
            date=day,
            task_code=code,
            task_label=label,
            actual_minutes=actual,
            normative_minutes=normative,
            recommended_minutes=recommended,
            basis=recommendation.basis,
            description=build_description(label, events),
            activity_category=self.catalog.category(code),
            source_event_ids=[e.id for e in events],
            evidence=[item for e in events for item in e.evidence],
            complexity=complexity,
            confidence=self.confidence(events),
        )
