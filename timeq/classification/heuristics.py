"""
Deterministic task-code rules.

Rules live in task_rules.yaml next to this module and are matched against
event text in file order. The heuristic tier always runs: it is the whole
classifier when AI is disabled and the fallback when AI fails.

Classification is pure: the same events yield the same codes on every run.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from timeq.billing.catalog import CATCH_ALL_CODE, NormativeCatalog
from timeq.contracts.models import SourceEvent
from timeq.infrastructure import settings
from timeq.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TaskRule:
    code: str
    patterns: tuple[re.Pattern[str], ...]
    kinds: frozenset[str] = frozenset()
    confidence: float = 0.7
    fallback: bool = False

    def matches(self, text: str, kind: str) -> bool:
        if self.kinds and kind not in self.kinds:
            return False
        return any(p.search(text) for p in self.patterns)


@dataclass(frozen=True)
class RuleMatch:
    code: str
    confidence: float
    matched_rule: str
    decider: str = "heuristic"


def load_rules(rules_path: str | Path, catalog: NormativeCatalog) -> tuple[str, list[TaskRule]]:
    """
    Load and compile rules; entries for codes missing from the catalog are dropped.

    A missing or unreadable file yields an empty rule set (every event then
    falls to the catch-all code) rather than an exception.
    """
    try:
        with open(rules_path, encoding="utf-8") as handle:
            config = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        logger.warning("Task rules not found: %s, using empty ruleset", rules_path)
        return "missing", []
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load task rules %s: %s, using empty ruleset", rules_path, exc)
        return "invalid", []

    rules: list[TaskRule] = []
    for raw in config.get("rules") or []:
        code = str(raw.get("code", ""))
        if code not in catalog:
            logger.warning("Ignoring task rule for unknown code %r", code)
            continue
        try:
            patterns = tuple(re.compile(p, re.IGNORECASE) for p in raw.get("patterns") or [])
        except re.error as exc:
            logger.warning("Ignoring task rule %s with invalid pattern: %s", code, exc)
            continue
        if not patterns:
            continue
        rules.append(
            TaskRule(
                code=code,
                patterns=patterns,
                kinds=frozenset(raw.get("kinds") or ()),
                confidence=float(raw.get("confidence", 0.7)),
                fallback=bool(raw.get("fallback", False)),
            )
        )

    version = str(config.get("version", "unknown"))
    logger.info("Task rules loaded: version %s, %d rules", version, len(rules))
    return version, rules


class HeuristicTaskClassifier:
    """
    Keyword/regex task classifier.

    Example:
        >>> classifier = HeuristicTaskClassifier()
        >>> classifier.match_event_text("Draft notice of hearing", "local_activity").code
        'draft_notice_of_hearing'
    """

    def __init__(
        self,
        catalog: NormativeCatalog | None = None,
        rules_path: str | Path | None = None,
    ) -> None:
        self.catalog = catalog or NormativeCatalog.default()
        self.version, self.rules = load_rules(rules_path or settings.TASK_RULES_PATH, self.catalog)
        self._specific = [r for r in self.rules if not r.fallback]
        self._fallback = [r for r in self.rules if r.fallback]

    @staticmethod
    def _first(rules: Iterable[TaskRule], text: str, kind: str) -> RuleMatch | None:
        for index, rule in enumerate(rules):
            if rule.matches(text, kind):
                return RuleMatch(rule.code, rule.confidence, f"{rule.code}#{index}")
        return None

    def match_codes(self, text: str, kind: str) -> list[str]:
        """All codes whose specific rules match, in rule order, without repeats."""
        codes: list[str] = []
        for rule in self._specific:
            if rule.code not in codes and rule.matches(text, kind):
                codes.append(rule.code)
        return codes

    def match_event_text(self, text: str, kind: str) -> RuleMatch | None:
        return self._first(self._specific, text, kind) or self._first(self._fallback, text, kind)

    def primary_code(self, events: Sequence[SourceEvent]) -> RuleMatch | None:
        """Highest-priority specific rule matched by any event of a session."""
        for index, rule in enumerate(self._specific):
            if any(rule.matches(e.text, e.kind.value) for e in events):
                return RuleMatch(rule.code, rule.confidence, f"{rule.code}#{index}", "session")
        return None

    def classify_events(self, events: Sequence[SourceEvent]) -> list[SourceEvent]:
        """
        Annotate one session's events with task codes.

        Own specific match, then own source-kind default, then the session's
        primary code, then the catch-all code.
        """
        primary = self.primary_code(events)
        classified: list[SourceEvent] = []
        for event in events:
            match = self.match_event_text(event.text, event.kind.value) or primary
            if match is None:
                match = RuleMatch(CATCH_ALL_CODE, 0.5, "catch_all", "default")
            classified.append(
                event.annotate(
                    task_code=match.code,
                    classified_by="heuristic",
                    heuristic_rule=match.matched_rule,
                )
            )
        return classified

    def describe(self) -> dict[str, Any]:
        return {"version": self.version, "rules": len(self.rules)}
