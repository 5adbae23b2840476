"""
Local file activity connector.

Walks configured roots and turns every file modified inside the window into
a circumstantial ``local_activity`` event. Patterns are matched against the
root-relative posix path, so ``**/build/**`` excludes a top-level ``build``
directory as well as nested ones.
"""

from __future__ import annotations

import threading
import os
from datetime import UTC, datetime
from fnmatch import fnmatchcase
from pathlib import Path

from timeq.connectors.base import ConnectorMetadata, SourceConnector, event_id
from timeq.contracts.errors import SourceFetchError
from timeq.contracts.models import (
    Evidence,
    EvidenceType,
    LocalActivityConfig,
    SourceEvent,
    SourceKind,
    TimeWindow,
)
from timeq.infrastructure import settings
from timeq.observability.logging import get_logger

logger = get_logger(__name__)


def matches_pattern(relative_path: str, pattern: str) -> bool:
    if fnmatchcase(relative_path, pattern):
        return True
    # "**/" also matches zero leading directories
    while pattern.startswith("**/"):
        pattern = pattern[3:]
        if fnmatchcase(relative_path, pattern):
            return True
    return False


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if ext in ("", "*"):
        return ""
    return ext if ext.startswith(".") else f".{ext}"


class LocalActivityConnector(SourceConnector):
    name = "local_activity"
    source_kind = SourceKind.LOCAL_ACTIVITY

    def __init__(
        self, config: LocalActivityConfig, timeout: float = settings.DEFAULT_SOURCE_TIMEOUT
    ) -> None:
        super().__init__(timeout)
        self.config = config
        self._extensions = {e for e in map(_normalize_extension, config.extensions) if e}

    def is_configured(self) -> bool:
        return any(p.strip() for p in self.config.paths)

    def metadata(self) -> ConnectorMetadata:
        return ConnectorMetadata(
            name=self.name,
            source_kind=self.source_kind,
            requires_auth=False,
            description="Scans local folders for files modified in the window",
        )

    async def _fetch(self, window: TimeWindow) -> list[SourceEvent]:
        return await self.run_blocking(self._scan_all, window)

    def _scan_all(self, window: TimeWindow, stop: threading.Event | None = None) -> list[SourceEvent]:
        events: list[SourceEvent] = []
        for raw_root in self.config.paths:
            if not raw_root.strip():
                continue
            root = Path(raw_root).expanduser()
            if not root.is_dir():
                raise SourceFetchError(self.name, f"root does not exist: {root}")
            events.extend(self._scan_root(root.resolve(), window, stop))
        return events

    def _excluded(self, relative_path: str) -> bool:
        return any(matches_pattern(relative_path, p) for p in self.config.exclude_patterns)

    def _included(self, relative_path: str) -> bool:
        if self._extensions and Path(relative_path).suffix.lower() not in self._extensions:
            return False
        return any(matches_pattern(relative_path, p) for p in self.config.include_patterns)

    def _scan_root(
        self, root: Path, window: TimeWindow, stop: threading.Event | None = None
    ) -> list[SourceEvent]:
        events: list[SourceEvent] = []
        for dirpath, dirnames, filenames in os.walk(root):
            if stop is not None and stop.is_set():
                logger.debug("Abandoning scan of %s", root)
                break
            current = Path(dirpath)
            # Prune excluded directories before descending
            dirnames[:] = sorted(
                d for d in dirnames if not self._excluded(f"{(current / d).relative_to(root).as_posix()}/")
            )
            for filename in sorted(filenames):
                path = current / filename
                relative = path.relative_to(root).as_posix()
                if self._excluded(relative) or not self._included(relative):
                    continue
                try:
                    stat = path.stat()
                except OSError as exc:
                    logger.warning("Could not stat %s: %s", path, exc)
                    continue
                modified = datetime.fromtimestamp(stat.st_mtime, UTC)
                if not window.contains(modified):
                    continue
                events.append(self._to_event(root, path, relative, modified, stat.st_size))
        return events

    def _to_event(
        self, root: Path, path: Path, relative: str, modified: datetime, size: int
    ) -> SourceEvent:
        uri = path.as_uri()
        evidence = Evidence(
            type=EvidenceType.CIRCUMSTANTIAL,
            source_kind=self.source_kind,
            description=f"File modified: {relative}",
            timestamp=modified,
            locator=uri,
            metadata={"size": size},
        )
        return SourceEvent(
            id=event_id("local", uri, modified.isoformat()),
            kind=self.source_kind,
            timestamp=modified,
            subject=relative,
            description=f"Edited {relative}",
            evidence=[evidence],
            metadata={
                "size": size,
                "extension": path.suffix,
                "relative_path": relative,
                "root": str(root),
            },
        )
