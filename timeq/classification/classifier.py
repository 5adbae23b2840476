"""
Two-tier task classification.

Heuristics always run first and produce a complete answer. When AI is
enabled and a provider is available, one batched AI pass may replace the
code of each session it covers; sessions the AI skipped, and every session
after an AI failure, keep their heuristic codes.
"""

from __future__ import annotations

import time
from collections.abc import Sequence

from timeq.classification.ai_classifier import AIClassifier
from timeq.classification.heuristics import HeuristicTaskClassifier
from timeq.contracts.errors import ClassificationError
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter, log_event
from timeq.pipeline.sessionizer import WorkSession

logger = get_logger(__name__)


class TaskClassifier:
    def __init__(self, heuristics: HeuristicTaskClassifier, ai: AIClassifier | None = None) -> None:
        self.heuristics = heuristics
        self.ai = ai

    def classify_heuristic(self, sessions: Sequence[WorkSession]) -> list[WorkSession]:
        return [
            WorkSession(s.matter_key, s.matter, self.heuristics.classify_events(s.events))
            for s in sessions
        ]

    async def classify(
        self,
        sessions: Sequence[WorkSession],
        use_llm: bool = False,
        deadline: float | None = None,
    ) -> list[WorkSession]:
        """
        Annotate every event with ``task_code`` and ``classified_by``.

        Never raises on AI trouble; the reason is logged and counted instead.
        """
        classified = self.classify_heuristic(sessions)
        if not use_llm or not classified:
            return classified

        if self.ai is None or not self.ai.is_available():
            counter("classifier.ai_unavailable")
            logger.info("AI classification requested but no provider is available")
            return classified

        timeout = None
        if deadline is not None:
            timeout = deadline - time.monotonic()
            if timeout <= 0:
                counter("classifier.ai_fallback")
                logger.warning("Deadline reached before AI classification; using heuristics")
                return classified

        try:
            assignments = await self.ai.classify(sessions, timeout=timeout)
        except ClassificationError as exc:
            counter("classifier.ai_fallback")
            log_event("classifier.ai_fallback", reason=str(exc), sessions=len(sessions))
            logger.warning("AI classification failed, using heuristics: %s", exc)
            return classified

        refined: list[WorkSession] = []
        for index, session in enumerate(classified):
            assignment = assignments.get(index)
            if assignment is None:
                refined.append(session)
                continue
            refined.append(
                WorkSession(
                    session.matter_key,
                    session.matter,
                    [
                        event.annotate(
                            task_code=assignment.task_code,
                            classified_by="ai",
                            ai_confidence=assignment.confidence,
                        )
                        for event in session.events
                    ],
                )
            )

        counter("classifier.ai_sessions", len(assignments))
        log_event(
            "classifier.refined",
            sessions=len(classified),
            ai_sessions=len(assignments),
            heuristic_sessions=len(classified) - len(assignments),
        )
        return refined
