"""
Temporal sessionization.

Events are grouped per matter and split into sessions wherever the gap
between consecutive events exceeds the threshold. Each group is sorted by
(timestamp, id) before the single pass, so the result does not depend on
input order.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta

from timeq.contracts.models import MatterRef, SourceEvent, matter_key
from timeq.infrastructure import settings


@dataclass
class WorkSession:
    matter_key: str
    matter: MatterRef | None
    events: list[SourceEvent] = field(default_factory=list)

    @property
    def start(self):
        return self.events[0].timestamp

    @property
    def end(self):
        return self.events[-1].timestamp

    @property
    def text(self) -> str:
        return " ".join(e.text for e in self.events if e.text)

    @property
    def kinds(self) -> list[str]:
        return sorted({e.kind.value for e in self.events})


class Sessionizer:
    def __init__(self, gap_minutes: float = settings.DEFAULT_SESSION_GAP_MINUTES) -> None:
        self.gap = timedelta(minutes=gap_minutes)

    def sessionize(self, events: Iterable[SourceEvent]) -> list[WorkSession]:
        groups: dict[str, list[SourceEvent]] = defaultdict(list)
        for event in events:
            groups[matter_key(event.matter)].append(event)

        sessions: list[WorkSession] = []
        for key, group in groups.items():
            group.sort(key=lambda e: (e.timestamp, e.id))
            current: WorkSession | None = None
            previous = None
            for event in group:
                if current is None or event.timestamp - previous > self.gap:
                    current = WorkSession(matter_key=key, matter=event.matter)
                    sessions.append(current)
                current.events.append(event)
                previous = event.timestamp

        sessions.sort(key=lambda s: (s.start, s.matter_key, s.events[0].id))
        return sessions
