"""
Billing-gap identification.

Sums minutes already recorded in the ledger per calendar day of the window
and reports days below the expected minimum. Only the ledger connector can
answer this question, so an unconfigured ledger is an error rather than an
empty result.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date
from fractions import Fraction

from timeq.billing.policy import exact, round_half_up
from timeq.connectors.ledger import LedgerConnector
from timeq.contracts.errors import ConfigurationError
from timeq.contracts.models import BillingGap, SourceEvent, TimeWindow
from timeq.infrastructure import settings
from timeq.observability.telemetry import log_event


def recorded_minutes_by_day(events: Iterable[SourceEvent]) -> dict[date, Fraction]:
    totals: dict[date, Fraction] = defaultdict(Fraction)
    for event in events:
        if event.duration_minutes:
            totals[event.timestamp.date()] += exact(event.duration_minutes)
    return totals


def identify_gaps(
    window: TimeWindow,
    ledger_events: Iterable[SourceEvent],
    threshold_minutes: int = settings.DEFAULT_GAP_THRESHOLD_MINUTES,
) -> list[BillingGap]:
    """Days of ``window`` whose recorded minutes fall below ``threshold_minutes``."""
    totals = recorded_minutes_by_day(ledger_events)
    gaps = [
        BillingGap(
            date=day,
            recorded_minutes=round_half_up(totals.get(day, Fraction(0))),
            threshold_minutes=threshold_minutes,
        )
        for day in window.days()
        if totals.get(day, Fraction(0)) < threshold_minutes
    ]
    log_event("gaps.identified", days=len(window.days()), gaps=len(gaps))
    return gaps


async def identify_ledger_gaps(
    window: TimeWindow,
    ledger: LedgerConnector,
    threshold_minutes: int = settings.DEFAULT_GAP_THRESHOLD_MINUTES,
) -> list[BillingGap]:
    """
    Fetch recorded activities from the ledger and report under-recorded days.

    Raises:
        ConfigurationError: the ledger connector is not configured
        SourceFetchError: the ledger could not be read
    """
    if not ledger.is_configured():
        raise ConfigurationError("gap identification requires a configured ledger")
    events = await ledger.fetch_events(window)
    return identify_gaps(window, events, threshold_minutes)
