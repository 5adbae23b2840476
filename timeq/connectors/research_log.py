"""
Research-log import connector.

Reads delimited exports from legal research services. Export layouts differ
between vendors and account settings, so each logical field is located by a
list of header aliases compared case- and punctuation-insensitively. Rows
without a parseable start timestamp are skipped and counted.
"""

from __future__ import annotations

import csv
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from timeq.connectors.base import ConnectorMetadata, SourceConnector, event_id
from timeq.contracts.errors import SourceFetchError
from timeq.contracts.models import (
    Evidence,
    EvidenceType,
    MatterRef,
    SourceEvent,
    SourceKind,
    TimeWindow,
    ensure_utc,
)
from timeq.infrastructure import settings
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter

logger = get_logger(__name__)

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "start": ("start time", "start", "started", "date", "timestamp", "date time"),
    "end": ("end time", "end", "ended"),
    "minutes": ("minutes", "duration", "duration minutes", "time spent", "elapsed"),
    "matter_id": ("matter id", "matter number"),
    "matter": ("matter", "client/matter", "matter name", "client matter"),
    "client": ("client", "client name"),
    "query": ("search terms", "query", "topic", "search", "description"),
}

TIMESTAMP_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %I:%M:%S %p",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d-%b-%Y %H:%M",
    "%m/%d/%Y",
)

_CLOCK_RE = re.compile(r"^(\d+):([0-5]\d)$")


def normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]", "", header.lower())


def resolve_columns(headers: list[str]) -> dict[str, str]:
    """Map logical field -> actual header, taking the first alias present."""
    by_normal = {}
    for header in headers:
        if header is not None:
            by_normal.setdefault(normalize_header(header), header)
    resolved: dict[str, str] = {}
    for field, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            header = by_normal.get(normalize_header(alias))
            if header is not None and header not in resolved.values():
                resolved[field] = header
                break
    return resolved


def parse_timestamp(raw: str | None) -> datetime | None:
    """Parse an exported timestamp; naive values are treated as UTC."""
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    for fmt in TIMESTAMP_FORMATS:
        try:
            return ensure_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def parse_minutes(raw: str | None) -> float | None:
    """Positive minutes from ``"45"``, ``"12.5"`` or ``"1:30"``; otherwise None."""
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    clock = _CLOCK_RE.match(text)
    if clock:
        value = int(clock.group(1)) * 60 + int(clock.group(2))
    else:
        try:
            value = float(text)
        except ValueError:
            return None
    return value if value > 0 else None


class ResearchLogConnector(SourceConnector):
    name = "research_log"
    source_kind = SourceKind.RESEARCH

    def __init__(self, csv_paths: list[str], timeout: float = settings.DEFAULT_SOURCE_TIMEOUT):
        super().__init__(timeout)
        self.csv_paths = [p for p in csv_paths if p and p.strip()]

    def is_configured(self) -> bool:
        return bool(self.csv_paths)

    def metadata(self) -> ConnectorMetadata:
        return ConnectorMetadata(
            name=self.name,
            source_kind=self.source_kind,
            requires_auth=False,
            description="Imports research session logs from delimited exports",
        )

    async def _fetch(self, window: TimeWindow) -> list[SourceEvent]:
        return await self.run_blocking(self._parse_all)

    def _parse_all(self, stop: threading.Event | None = None) -> list[SourceEvent]:
        events: list[SourceEvent] = []
        for raw_path in self.csv_paths:
            events.extend(self.parse_file(Path(raw_path).expanduser(), stop))
        return events

    def parse_file(self, path: Path, stop: threading.Event | None = None) -> list[SourceEvent]:
        try:
            with open(path, newline="", encoding="utf-8-sig") as handle:
                sample = handle.read(4096)
                handle.seek(0)
                try:
                    dialect: Any = csv.Sniffer().sniff(sample, delimiters=",;\t|")
                except csv.Error:
                    dialect = csv.excel
                reader = csv.DictReader(handle, dialect=dialect)
                columns = resolve_columns(list(reader.fieldnames or []))
                if "start" not in columns:
                    logger.warning("No start column in %s (headers=%s)", path, reader.fieldnames)
                    return []
                events: list[SourceEvent] = []
                skipped = 0
                for row_number, row in enumerate(reader, start=2):
                    if stop is not None and stop.is_set():
                        logger.debug("Abandoning %s at row %d", path, row_number)
                        break
                    event = self._row_to_event(path, row_number, row, columns)
                    if event is None:
                        skipped += 1
                        continue
                    events.append(event)
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise SourceFetchError(self.name, f"cannot read {path}: {exc}") from exc

        if skipped:
            counter("research_log.rows_skipped", skipped)
            logger.info("Skipped %d research rows without a start timestamp in %s", skipped, path)
        return events

    def _row_to_event(
        self, path: Path, row_number: int, row: dict[str, Any], columns: dict[str, str]
    ) -> SourceEvent | None:
        def cell(field: str) -> str:
            header = columns.get(field)
            value = row.get(header) if header else None
            return value.strip() if isinstance(value, str) else ""

        started = parse_timestamp(cell("start"))
        if started is None:
            return None
        ended = parse_timestamp(cell("end"))
        if ended is not None and ended <= started:
            ended = None

        query = cell("query")
        matter_id, matter_name, client = cell("matter_id"), cell("matter"), cell("client")
        matter = None
        if matter_id or matter_name:
            matter = MatterRef(
                matter_id=matter_id or None,
                matter_name=matter_name or None,
                client_name=client or None,
            )

        locator = f"{path.resolve().as_uri()}#row={row_number}"
        evidence = Evidence(
            type=EvidenceType.DIRECT,
            source_kind=self.source_kind,
            description=f"Research session: {query or 'Research session'}",
            timestamp=started,
            locator=locator,
            metadata={"file": str(path), "row": row_number, "search_terms": query},
        )
        return SourceEvent(
            id=event_id("research", path.resolve(), row_number, started.isoformat(), query),
            kind=self.source_kind,
            timestamp=started,
            end_timestamp=ended,
            duration_minutes=parse_minutes(cell("minutes")),
            matter=matter,
            subject=query,
            description=f"Research: {query}" if query else "Research session",
            evidence=[evidence],
            metadata={"file": str(path), "row": row_number},
        )
