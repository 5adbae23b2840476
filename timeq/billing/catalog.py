"""
Normative catalog: professional-standard baseline minutes per task code.

The default table covers common litigation and advisory tasks. Callers may
replace baselines (or add codes) per request with ``with_overrides``, which
returns a new catalog; the default instance is never modified.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from timeq.contracts.models import (
    Complexity,
    NormativeCatalogItem,
    NormativeRule,
    NormativeStrategy,
    TaskCode,
)

CATCH_ALL_CODE = TaskCode.ADMIN_TECH.value

STRATEGY_FACTORS: Mapping[NormativeStrategy, float] = MappingProxyType(
    {
        NormativeStrategy.CONSERVATIVE: 0.9,
        NormativeStrategy.STANDARD: 1.0,
        NormativeStrategy.AGGRESSIVE: 1.2,
    }
)

# code, label, base minutes, activity category
_DEFAULT_ROWS: tuple[tuple[TaskCode, str, float, str], ...] = (
    (TaskCode.DRAFT_NOTICE_OF_HEARING, "Draft Notice of Hearing", 15, "Drafting"),
    (TaskCode.PROOF_OF_SERVICE, "Prepare Proof of Service", 15, "Drafting"),
    (TaskCode.RESEARCH_ISSUE, "Research Legal Issue", 90, "Research"),
    (TaskCode.RESEARCH_CASELAW, "Research Case Law", 60, "Research"),
    (TaskCode.RESEARCH_STATUTE, "Research Statute/Regulation", 45, "Research"),
    (TaskCode.BRIEF_OUTLINING, "Outline Brief", 45, "Drafting"),
    (TaskCode.BRIEF_FIRST_DRAFT, "Draft Brief (First Pass)", 120, "Drafting"),
    (TaskCode.BRIEF_REVISION, "Revise Brief", 60, "Drafting"),
    (TaskCode.MOTION_DRAFT, "Draft Motion", 90, "Drafting"),
    (TaskCode.MOTION_OPPOSITION, "Draft Opposition to Motion", 120, "Drafting"),
    (TaskCode.FILING_AND_SERVICE, "Filing and Service", 30, "Filing"),
    (TaskCode.CLIENT_COMMUNICATION_EMAIL, "Client Communication (Email)", 12, "Communication"),
    (TaskCode.CLIENT_COMMUNICATION_PHONE, "Client Communication (Phone)", 15, "Communication"),
    (TaskCode.CLIENT_MEETING, "Client Meeting", 60, "Communication"),
    (TaskCode.OPPOSING_COUNSEL_COMMUNICATION, "Communication with Opposing Counsel", 15, "Communication"),
    (TaskCode.COURT_STAFF_COMMUNICATION, "Communication with Court Staff", 12, "Communication"),
    (TaskCode.HEARING_PREP, "Hearing Preparation", 60, "Preparation"),
    (TaskCode.TRIAL_PREP, "Trial Preparation", 120, "Preparation"),
    (TaskCode.DOCUMENT_REVIEW, "Document Review", 30, "Review"),
    (TaskCode.CONTRACT_REVIEW, "Contract Review", 60, "Review"),
    (TaskCode.DISCOVERY_REVIEW, "Discovery Document Review", 45, "Discovery"),
    (TaskCode.DISCOVERY_RESPONSE, "Prepare Discovery Response", 90, "Discovery"),
    (TaskCode.DEPOSITION_PREP, "Deposition Preparation", 90, "Preparation"),
    (TaskCode.EMAIL_CORRESPONDENCE, "Email Correspondence", 6, "Communication"),
    (TaskCode.SCHEDULING, "Scheduling/Calendar Management", 6, "Administrative"),
    (TaskCode.CASE_MANAGEMENT, "Case Management", 15, "Administrative"),
    (TaskCode.PROFESSIONAL_DEVELOPMENT, "Professional Development", 30, "Internal"),
    (TaskCode.ADMIN_TECH, "Admin/Tech Issue Resolution", 15, "Internal"),
)


def _label_from_code(code: str) -> str:
    return code.replace("_", " ").strip().title() or code


class NormativeCatalog(Mapping[str, NormativeCatalogItem]):
    """Read-only mapping of task code to catalog item."""

    def __init__(self, items: Iterable[NormativeCatalogItem]) -> None:
        self._items: dict[str, NormativeCatalogItem] = {item.code: item for item in items}

    @classmethod
    def default(cls) -> NormativeCatalog:
        return _DEFAULT_CATALOG

    def __getitem__(self, code: str) -> NormativeCatalogItem:
        return self._items[code]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def codes(self) -> list[str]:
        return list(self._items)

    def label(self, code: str) -> str:
        item = self._items.get(code)
        return item.label if item else _label_from_code(code)

    def category(self, code: str) -> str:
        item = self._items.get(code)
        return item.activity_category if item else "Uncategorized"

    def normative_minutes(
        self,
        code: str,
        complexity: Complexity = Complexity.MEDIUM,
        strategy: NormativeStrategy = NormativeStrategy.STANDARD,
    ) -> float | None:
        """Baseline x complexity x strategy for one instance, or None for unknown codes."""
        item = self._items.get(code)
        if item is None:
            return None
        return item.base_minutes * item.multiplier(complexity) * STRATEGY_FACTORS[strategy]

    def with_overrides(self, rules: Iterable[NormativeRule]) -> NormativeCatalog:
        """
        New catalog with caller baselines applied.

        Known codes keep their label/category unless the rule supplies one;
        unknown codes are added under the "Custom" category.
        """
        items = dict(self._items)
        changed = False
        for rule in rules:
            changed = True
            current = items.get(rule.task)
            if current is not None:
                items[rule.task] = current.model_copy(
                    update={
                        "base_minutes": rule.baseline_minutes,
                        "label": rule.label or current.label,
                        "activity_category": rule.activity_category or current.activity_category,
                    }
                )
            else:
                items[rule.task] = NormativeCatalogItem(
                    code=rule.task,
                    label=rule.label or _label_from_code(rule.task),
                    base_minutes=rule.baseline_minutes,
                    activity_category=rule.activity_category or "Custom",
                )
        return NormativeCatalog(items.values()) if changed else self


_DEFAULT_CATALOG = NormativeCatalog(
    NormativeCatalogItem(
        code=code.value, label=label, base_minutes=minutes, activity_category=category
    )
    for code, label, minutes, category in _DEFAULT_ROWS
)
