"""
Duplicate-entry detection.

Scores every pair of proposed entries from independent signals and flags
likely double billing. Naturally repeatable short tasks (emails, calls,
scheduling, routine research) on the same day need a much higher score,
since several genuine entries of that kind per day are normal.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from timeq.contracts.models import DuplicateMatch, ProposedEntry, TaskCode
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

DUPLICATE_THRESHOLD = 50
REPEATABLE_THRESHOLD = 80

REPEATABLE_TASKS: frozenset[str] = frozenset(
    code.value
    for code in (
        TaskCode.EMAIL_CORRESPONDENCE,
        TaskCode.CLIENT_COMMUNICATION_EMAIL,
        TaskCode.CLIENT_COMMUNICATION_PHONE,
        TaskCode.OPPOSING_COUNSEL_COMMUNICATION,
        TaskCode.COURT_STAFF_COMMUNICATION,
        TaskCode.SCHEDULING,
        TaskCode.DOCUMENT_REVIEW,
        TaskCode.RESEARCH_CASELAW,
        TaskCode.RESEARCH_STATUTE,
        TaskCode.CASE_MANAGEMENT,
    )
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def jaccard(a: str, b: str) -> float:
    left, right = tokenize(a), tokenize(b)
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def score_pair(a: ProposedEntry, b: ProposedEntry) -> tuple[int, list[str]]:
    """
    Similarity score (0-100) and the reasons that contributed.

    Every signal is symmetric, so ``score_pair(a, b) == score_pair(b, a)``.
    """
    score = 0
    reasons: list[str] = []

    if a.date == b.date:
        score += 30
        reasons.append("Same date")

    matter_a = a.matter.matter_id if a.matter else None
    matter_b = b.matter.matter_id if b.matter else None
    if matter_a and matter_a == matter_b:
        score += 20
        reasons.append("Same matter")

    if a.task_code == b.task_code:
        score += 25
        reasons.append("Same task type")

    similarity = jaccard(a.description, b.description)
    if similarity > 0.8:
        score += 20
        reasons.append("Similar description")
    elif similarity > 0.5:
        score += 10
        reasons.append("Somewhat similar description")

    shared = set(a.source_event_ids) & set(b.source_event_ids)
    if shared:
        score += 30
        reasons.append(f"{len(shared)} shared source event(s)")

    average = (a.recommended_minutes + b.recommended_minutes) / 2
    if average > 0 and abs(a.recommended_minutes - b.recommended_minutes) / average < 0.1:
        score += 10
        reasons.append("Similar duration")

    return min(score, 100), reasons


def threshold_for(a: ProposedEntry, b: ProposedEntry) -> int:
    if a.date == b.date and a.task_code in REPEATABLE_TASKS and b.task_code in REPEATABLE_TASKS:
        return REPEATABLE_THRESHOLD
    return DUPLICATE_THRESHOLD


def detect_duplicates(entries: Sequence[ProposedEntry]) -> list[DuplicateMatch]:
    """
    Pairwise O(n^2) scan; matches are listed in (i, j) order.

    Side Effects:
        - Increments duplicates.flagged / duplicates.suppressed_repeatable
    """
    matches: list[DuplicateMatch] = []
    suppressed = 0
    for i, first in enumerate(entries):
        for second in entries[i + 1 :]:
            score, reasons = score_pair(first, second)
            if score < DUPLICATE_THRESHOLD:
                continue
            if score < threshold_for(first, second):
                suppressed += 1
                continue
            matches.append(
                DuplicateMatch(
                    entry1_id=first.id, entry2_id=second.id, similarity=score, reasons=reasons
                )
            )

    counter("duplicates.flagged", len(matches))
    counter("duplicates.suppressed_repeatable", suppressed)
    log_event("duplicates.scanned", entries=len(entries), flagged=len(matches), suppressed=suppressed)
    return matches
