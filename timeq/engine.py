"""
Forensic time-capture engine.

Orchestrates one analysis run:

    connectors -> aggregator -> sessionizer -> classifier -> policy -> duplicates

plus the two ledger side paths (gap identification and write-back).

The async methods on ForensicTimeEngine are the primary API. The module
functions ``analyze_period``, ``find_billing_gaps`` and ``push_entries``
accept and return plain JSON-shaped dicts for callers that are not async.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Coroutine, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from pydantic import ValidationError

from timeq.billing.catalog import NormativeCatalog
from timeq.billing.duplicates import detect_duplicates
from timeq.billing.gaps import identify_ledger_gaps
from timeq.billing.policy import PolicyEngine
from timeq.classification.ai_classifier import AIClassifier
from timeq.classification.classifier import TaskClassifier
from timeq.classification.heuristics import HeuristicTaskClassifier
from timeq.config import EngineConfig
from timeq.connectors import LedgerConnector, SourceConnector, build_connectors
from timeq.contracts.errors import RequestValidationError
from timeq.contracts.models import (
    AnalysisResult,
    AnalysisStats,
    AnalyzeRequest,
    BillingGap,
    GapRequest,
    LedgerConfig,
    ProposedEntry,
    PushEntry,
    PushRequest,
    PushResult,
    SourceEvent,
    TimeWindow,
)
from timeq.llm.gemini import CompletionProvider
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import log_event, time_block
from timeq.pipeline.aggregator import EventAggregator
from timeq.pipeline.sessionizer import Sessionizer

logger = get_logger(__name__)

T = TypeVar("T")


def compute_stats(events: Sequence[SourceEvent], proposals: Sequence[ProposedEntry]) -> AnalysisStats:
    return AnalysisStats(
        total_events=len(events),
        total_proposals=len(proposals),
        total_recommended_minutes=sum(p.recommended_minutes for p in proposals),
        total_actual_minutes=sum(p.actual_minutes or 0 for p in proposals),
        events_by_source=dict(sorted(Counter(e.kind.value for e in events).items())),
    )


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    where = ".".join(str(part) for part in first.get("loc", ())) or "request"
    return f"{where}: {first.get('msg', 'invalid value')}"


class ForensicTimeEngine:
    """
    Reconstructs proposed time entries from activity sources.

    Args:
        config: engine settings; defaults to EngineConfig.from_settings()
        catalog: base normative catalog; request rules are layered on top
        ai_provider: model used when a request enables AI classification
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        catalog: NormativeCatalog | None = None,
        ai_provider: CompletionProvider | None = None,
    ) -> None:
        self.config = config or EngineConfig.from_settings()
        self.catalog = catalog or NormativeCatalog.default()
        self.heuristics = HeuristicTaskClassifier(self.catalog, self.config.task_rules_path)
        self.aggregator = EventAggregator()
        self.ai = (
            AIClassifier(
                ai_provider,
                self.catalog,
                timeout=self.config.ai_timeout,
                cache_ttl_seconds=self.config.ai_cache_ttl_seconds,
                cache_max_entries=self.config.ai_cache_max_entries,
            )
            if ai_provider is not None
            else None
        )

    @classmethod
    def with_gemini(cls, config: EngineConfig | None = None) -> ForensicTimeEngine:
        from timeq.llm.gemini import GeminiProvider

        return cls(config=config, ai_provider=GeminiProvider())

    async def analyze(
        self,
        request: AnalyzeRequest,
        connectors: Sequence[SourceConnector] | None = None,
    ) -> AnalysisResult:
        """
        Run one analysis over ``request.window``.

        Args:
            request: validated request
            connectors: override the connectors built from ``request.sources``

        Raises:
            RequestValidationError: no source configured at all

        Side Effects:
            - Reads from every configured source (network, filesystem)
            - Calls the AI provider when ``request.flags.use_llm`` is set
        """
        budget = request.timeout_seconds or self.config.analysis_timeout
        deadline = time.monotonic() + budget

        if connectors is None:
            connectors = build_connectors(request.sources, timeout=self.config.source_timeout)
        if not connectors:
            raise RequestValidationError("no activity source configured")

        with time_block("engine.analyze"):
            aggregated = await self.aggregator.collect(connectors, request.window, deadline)
            sessions = Sessionizer(self.config.session_gap_minutes).sessionize(aggregated.events)

            catalog = self.catalog.with_overrides(request.policy.normative_rules)
            ai = self.ai.for_catalog(catalog) if self.ai is not None else None
            classified = await TaskClassifier(self.heuristics, ai).classify(
                sessions, use_llm=request.flags.use_llm, deadline=deadline
            )

            events = [event for session in classified for event in session.events]
            proposals = PolicyEngine(
                catalog, request.policy, request.flags, self.config.confidence_baseline
            ).build_entries(events)
            duplicates = detect_duplicates(proposals) if request.flags.enable_dupe_check else []

        stats = compute_stats(aggregated.events, proposals)
        log_event(
            "engine.analyzed",
            sources=aggregated.sources_used,
            sessions=len(sessions),
            proposals=stats.total_proposals,
            duplicates=len(duplicates),
        )
        return AnalysisResult(
            window=request.window,
            tools_used=aggregated.sources_used,
            skipped_sources=aggregated.skipped,
            proposals=proposals,
            duplicates=duplicates,
            stats=stats,
        )

    def _ledger(self, ledger: LedgerConnector | LedgerConfig | None) -> LedgerConnector:
        if isinstance(ledger, LedgerConnector):
            return ledger
        return LedgerConnector(ledger or LedgerConfig(), timeout=self.config.source_timeout)

    async def identify_gaps(
        self,
        window: TimeWindow,
        ledger: LedgerConnector | LedgerConfig | None,
        threshold_minutes: int | None = None,
    ) -> list[BillingGap]:
        """
        Raises:
            ConfigurationError: ledger not configured
            SourceFetchError: ledger could not be read
        """
        threshold = (
            self.config.gap_threshold_minutes if threshold_minutes is None else threshold_minutes
        )
        return await identify_ledger_gaps(window, self._ledger(ledger), threshold)

    async def push_entries(
        self,
        entries: Sequence[PushEntry | dict[str, Any]],
        ledger: LedgerConnector | LedgerConfig | None,
        dry_run: bool = False,
        rate: float | None = None,
        user_id: int | str | None = None,
    ) -> list[PushResult]:
        return await self._ledger(ledger).push_entries(
            entries, dry_run=dry_run, rate=rate, user_id=user_id
        )


def run_sync(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run ``coro`` to completion on a private event loop.

    Unlike ``asyncio.run`` this does not join the loop's worker threads on
    the way out. A blocking fetch abandoned at the deadline may still be
    running; the call returns anyway and the thread finishes on its own.
    """
    loop = asyncio.new_event_loop()
    executor = ThreadPoolExecutor(thread_name_prefix="timeq-io")
    loop.set_default_executor(executor)
    try:
        return loop.run_until_complete(coro)
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            loop.close()


def _parse(model: type[Any], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(_validation_message(exc)) from exc


def analyze_period(
    payload: dict[str, Any], engine: ForensicTimeEngine | None = None
) -> dict[str, Any]:
    """
    Analyze a period from a JSON-shaped request and return a JSON-shaped result.

    Raises:
        RequestValidationError: malformed request, inverted window, or no source
    """
    request = _parse(AnalyzeRequest, payload)
    engine = engine or ForensicTimeEngine()
    return run_sync(engine.analyze(request)).to_payload()


def find_billing_gaps(
    payload: dict[str, Any], engine: ForensicTimeEngine | None = None
) -> dict[str, Any]:
    request: GapRequest = _parse(GapRequest, payload)
    engine = engine or ForensicTimeEngine()
    gaps = run_sync(engine.identify_gaps(request.window, request.ledger, request.threshold_minutes))
    return {
        "window": request.window.model_dump(mode="json", by_alias=True),
        "gaps": [gap.model_dump(mode="json", by_alias=True) for gap in gaps],
    }


def push_entries(
    payload: dict[str, Any], engine: ForensicTimeEngine | None = None
) -> dict[str, Any]:
    """Write approved entries back to the ledger; per-entry results, never all-or-nothing."""
    request: PushRequest = _parse(PushRequest, payload)
    engine = engine or ForensicTimeEngine()
    results = run_sync(
        engine.push_entries(
            request.entries,
            request.ledger,
            dry_run=request.dry_run,
            rate=request.rate,
            user_id=request.user_id,
        )
    )
    return {
        "dryRun": request.dry_run,
        "pushed": sum(1 for r in results if r.ok),
        "failed": sum(1 for r in results if not r.ok),
        "results": [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in results],
    }
