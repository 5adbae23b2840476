"""
Batched AI task classification with validation, caching and circuit breakers.

All sessions of a run go to the model in one request. The reply must be a
JSON array of ``{index, taskCode, confidence}`` objects restricted to the
catalog's codes. Any timeout, provider error, unparseable reply or schema
violation raises ClassificationError; the caller falls back to heuristics.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import re
from collections.abc import Sequence
from typing import Any

from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from timeq.billing.catalog import NormativeCatalog
from timeq.contracts.errors import ClassificationError
from timeq.infrastructure import settings
from timeq.infrastructure.circuitbreaker import InvalidJSONCircuitBreaker
from timeq.infrastructure.retry import CircuitBreaker
from timeq.llm.gemini import CompletionProvider
from timeq.llm.prompts import PROMPT_VERSION, build_classification_prompt
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter, log_event, time_block
from timeq.pipeline.sessionizer import WorkSession

logger = get_logger(__name__)


class TaskAssignment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    index: int = Field(..., ge=0)
    task_code: str = Field(..., alias="taskCode", min_length=1)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


_ASSIGNMENT_LIST = TypeAdapter(list[TaskAssignment])


def extract_json_array(text: str) -> Any:
    """
    Parse a model reply into a JSON value, repairing common formatting slips.

    Handles markdown fences, prose around the array, and trailing commas.
    A top-level object wrapping a single list is unwrapped.

    Raises:
        ClassificationError: nothing parseable was found
    """
    text = re.sub(r"```(?:json)?\s*", "", text or "").strip()
    candidates = [text]
    match = re.search(r"\[.*\]", text, re.DOTALL)
    if match:
        candidates.append(match.group(0))
        candidates.append(re.sub(r",\s*([\}\]])", r"\1", match.group(0)))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            lists = [v for v in data.values() if isinstance(v, list)]
            if len(lists) == 1:
                return lists[0]
        return data

    raise ClassificationError("model reply is not valid JSON")


def prompt_cache_key(prompt: str) -> str:
    return hashlib.sha256(f"{PROMPT_VERSION}::{prompt}".encode("utf-8")).hexdigest()


class AIClassifier:
    def __init__(
        self,
        provider: CompletionProvider,
        catalog: NormativeCatalog | None = None,
        timeout: float = settings.DEFAULT_AI_TIMEOUT,
        cache_ttl_seconds: int = settings.AI_CACHE_TTL_SECONDS,
        cache_max_entries: int = settings.AI_CACHE_MAX_ENTRIES,
        breaker: CircuitBreaker | None = None,
        json_breaker: InvalidJSONCircuitBreaker | None = None,
    ) -> None:
        self.provider = provider
        self.catalog = catalog or NormativeCatalog.default()
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(stage="ai_classifier", fail_max=3)
        self.json_breaker = json_breaker or InvalidJSONCircuitBreaker()
        self._cache: TTLCache[str, dict[int, TaskAssignment]] = TTLCache(
            maxsize=cache_max_entries, ttl=cache_ttl_seconds
        )

    def is_available(self) -> bool:
        return self.provider.is_available()

    def for_catalog(self, catalog: NormativeCatalog) -> AIClassifier:
        """Same provider, cache and breakers, constrained to another code set."""
        if catalog is self.catalog:
            return self
        clone = copy.copy(self)
        clone.catalog = catalog
        return clone

    def parse_response(self, raw: str, session_count: int) -> dict[int, TaskAssignment]:
        """Validate the reply; entries with unknown codes or indices are dropped."""
        data = extract_json_array(raw)
        try:
            items = _ASSIGNMENT_LIST.validate_python(data)
        except ValidationError as exc:
            raise ClassificationError(f"schema violation ({exc.error_count()} errors)") from exc

        assignments: dict[int, TaskAssignment] = {}
        for item in items:
            if item.index >= session_count or item.task_code not in self.catalog:
                counter("ai_classifier.dropped_items")
                logger.debug("Dropping AI assignment %s", item)
                continue
            assignments.setdefault(item.index, item)
        return assignments

    async def classify(
        self, sessions: Sequence[WorkSession], timeout: float | None = None
    ) -> dict[int, TaskAssignment]:
        """
        Classify every session in one model call.

        Returns:
            session index -> assignment; sessions the model skipped are absent

        Raises:
            ClassificationError: timeout, provider failure, bad reply, open circuit

        Side Effects:
            - Calls the model provider (network)
            - Caches validated replies by prompt hash
        """
        if not sessions:
            return {}
        if self.json_breaker.is_tripped():
            raise ClassificationError("too many invalid AI replies recently")
        if not self.breaker.allow_request():
            raise ClassificationError("AI provider circuit is open")

        prompt = build_classification_prompt(sessions, self.catalog)
        key = prompt_cache_key(prompt)
        cached = self._cache.get(key)
        if cached is not None:
            counter("ai_classifier.cache_hit")
            return dict(cached)

        limit = self.timeout if timeout is None else min(self.timeout, timeout)
        with time_block("ai_classifier.call"):
            try:
                raw = await asyncio.wait_for(self.provider.complete(prompt), timeout=limit)
            except TimeoutError as exc:
                self.breaker.record_failure()
                raise ClassificationError(f"AI call timed out after {limit:.1f}s") from exc
            except Exception as exc:
                self.breaker.record_failure()
                raise ClassificationError(f"AI provider error: {exc}") from exc
        self.breaker.record_success()

        try:
            assignments = self.parse_response(raw, len(sessions))
        except ClassificationError:
            self.json_breaker.record(False)
            raise
        self.json_breaker.record(True)

        self._cache[key] = assignments
        log_event(
            "ai_classifier.classified",
            sessions=len(sessions),
            assigned=len(assignments),
            prompt_version=PROMPT_VERSION,
        )
        return dict(assignments)
