"""
Practice-management ledger connector (Clio-style REST API v4).

Reads already-recorded activities for the window and writes approved
entries back. Durations are exchanged in hours and converted to minutes at
this boundary.

Activity dates from the ledger are calendar days without a time of day, so
events carry ``metadata["date_only"]`` and the aggregator compares them to
the window at day granularity.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import UTC, date, datetime, time
from typing import Any

import httpx
from pydantic import ValidationError

from timeq.connectors.base import ConnectorMetadata, SourceConnector, event_id
from timeq.contracts.errors import ConfigurationError, PushError, SourceFetchError
from timeq.contracts.models import (
    Evidence,
    EvidenceType,
    LedgerConfig,
    MatterRef,
    PushEntry,
    PushResult,
    SourceEvent,
    SourceKind,
    TimeWindow,
)
from timeq.infrastructure import settings
from timeq.infrastructure.retry import AdapterError, RetryPolicy
from timeq.observability.logging import get_logger
from timeq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

ACTIVITY_FIELDS = "id,date,quantity,quantity_in_hours,note,type,matter{id,display_number,description},client{id,name}"


def hours_to_minutes(hours: float) -> int:
    return int(round(float(hours) * 60))


def minutes_to_hours(minutes: float) -> float:
    return round(minutes / 60.0, 2)


def _matter_id_value(matter_id: str) -> int | str:
    return int(matter_id) if matter_id.isdigit() else matter_id


def _echo(raw: object, key: str, alias: str) -> str | None:
    if not isinstance(raw, Mapping):
        return None
    value = raw.get(alias, raw.get(key))
    if value is None or value == "":
        return None
    return value.isoformat() if isinstance(value, date) else str(value)


class LedgerConnector(SourceConnector):
    name = "ledger"
    source_kind = SourceKind.LEDGER_ACTIVITY

    def __init__(
        self,
        config: LedgerConfig,
        timeout: float = settings.DEFAULT_SOURCE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        super().__init__(timeout)
        self.config = config
        self._transport = transport
        self.retry = retry or RetryPolicy(stage="ledger")
        # One POST per approved entry: a resend could create a second activity
        self.push_retry = replace(self.retry, stage="ledger.push", idempotent=False)

    def is_configured(self) -> bool:
        return bool(self.config.api_key and self.config.base_url)

    def metadata(self) -> ConnectorMetadata:
        return ConnectorMetadata(
            name=self.name,
            source_kind=self.source_kind,
            requires_auth=True,
            description="Reads and writes time activities in the practice-management ledger",
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/") + "/",
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request_json(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await client.request(method, url, params=params, json=body)
        except httpx.TimeoutException as exc:
            raise AdapterError(f"{method} {url} timed out") from exc
        except httpx.RequestError as exc:
            raise AdapterError(f"{method} {url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise AdapterError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AdapterError("ledger returned non-JSON body", status_code=response.status_code) from exc
        if not isinstance(payload, dict):
            raise AdapterError("ledger returned unexpected body", status_code=response.status_code)
        return payload

    async def _fetch(self, window: TimeWindow) -> list[SourceEvent]:
        params: dict[str, Any] | None = {
            "fields": ACTIVITY_FIELDS,
            "limit": self.config.page_size,
            "start_date": window.start.date().isoformat(),
            "end_date": window.days()[-1].isoformat(),
            **self.config.query,
        }
        events: list[SourceEvent] = []
        url: str | None = "activities.json"
        pages = 0

        async with self._client() as client:
            while url and pages < self.config.max_pages:
                try:
                    payload = await self.retry.execute_async(
                        self._request_json, client, "GET", url, params
                    )
                except AdapterError as exc:
                    if exc.status_code in (401, 403):
                        raise SourceFetchError(self.name, "authentication rejected") from exc
                    raise SourceFetchError(self.name, str(exc)) from exc

                for item in payload.get("data") or []:
                    event = self._to_event(item)
                    if event is not None and window.overlaps_day(event.timestamp.date()):
                        events.append(event)

                pages += 1
                # The next-page URL already carries the query string
                params = None
                url = ((payload.get("meta") or {}).get("paging") or {}).get("next")

        if url:
            logger.warning("Ledger fetch stopped after %d pages; results truncated", pages)
            counter("ledger.pages_truncated")
        return events

    def _to_event(self, item: dict[str, Any]) -> SourceEvent | None:
        activity_id = item.get("id")
        try:
            day = date.fromisoformat(str(item.get("date") or "")[:10])
        except ValueError:
            logger.warning("Skipping ledger activity %s without a valid date", activity_id)
            return None

        hours = item.get("quantity_in_hours", item.get("quantity"))
        try:
            minutes = hours_to_minutes(hours) if hours is not None else None
        except (TypeError, ValueError):
            minutes = None
        if minutes is not None and minutes < 0:
            logger.warning("Skipping ledger activity %s with negative quantity %s", activity_id, hours)
            counter("ledger.activities_skipped")
            return None

        matter = None
        raw_matter = item.get("matter") or {}
        raw_client = item.get("client") or {}
        if raw_matter.get("id") is not None:
            matter = MatterRef(
                matter_id=str(raw_matter["id"]),
                matter_name=raw_matter.get("display_number") or raw_matter.get("description"),
                client_id=str(raw_client["id"]) if raw_client.get("id") is not None else None,
                client_name=raw_client.get("name"),
            )

        note = str(item.get("note") or item.get("description") or "").strip()
        timestamp = datetime.combine(day, time.min, tzinfo=UTC)
        locator = f"{self.config.base_url.rstrip('/')}/activities/{activity_id}"
        evidence = Evidence(
            type=EvidenceType.DIRECT,
            source_kind=self.source_kind,
            description=f"Ledger entry: {note or 'Activity'}",
            timestamp=timestamp,
            locator=locator,
            metadata={"activity_id": activity_id, "hours": hours},
        )
        return SourceEvent(
            id=event_id("ledger", self.config.base_url, activity_id),
            kind=self.source_kind,
            timestamp=timestamp,
            duration_minutes=minutes,
            matter=matter,
            subject=note,
            description=note or "Ledger activity",
            evidence=[evidence],
            metadata={"activity_id": activity_id, "type": item.get("type"), "date_only": True},
        )

    @staticmethod
    def activity_body(
        entry: PushEntry, rate: float | None = None, user_id: int | str | None = None
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "TimeEntry",
            "date": entry.date.isoformat(),
            "quantity": entry.hours,
            "note": entry.description,
            "matter": {"id": _matter_id_value(entry.matter_id)},
        }
        if rate is not None:
            data["price"] = rate
        if user_id is not None:
            data["user"] = {"id": user_id}
        return {"data": data}

    async def push_entries(
        self,
        entries: Sequence[PushEntry | dict[str, Any]],
        dry_run: bool = False,
        rate: float | None = None,
        user_id: int | str | None = None,
    ) -> list[PushResult]:
        """
        Post approved entries as individual ledger activities.

        Each entry is validated and posted on its own; a failure is recorded
        in that entry's result and the batch continues. ``dry_run`` maps and
        validates without any network call.

        Raises:
            ConfigurationError: live push requested without credentials

        Side Effects:
            - Creates ledger activities (unless dry_run)
            - Increments ledger.push.ok / ledger.push.failed counters
        """
        if not dry_run and not self.is_configured():
            raise ConfigurationError("ledger is not configured; use dry_run to validate entries")

        results: list[PushResult] = []
        client = None if dry_run else self._client()
        try:
            for index, raw in enumerate(entries):
                try:
                    entry = raw if isinstance(raw, PushEntry) else PushEntry.model_validate(raw)
                except ValidationError as exc:
                    first = exc.errors()[0]
                    where = ".".join(str(p) for p in first.get("loc", ()))
                    error = PushError(f"invalid entry: {where} {first.get('msg', '')}".strip())
                    results.append(
                        PushResult(
                            index=index,
                            matter_id=_echo(raw, "matter_id", "matterId"),
                            date=_echo(raw, "date", "date"),
                            ok=False,
                            error=str(error),
                        )
                    )
                    counter("ledger.push.failed")
                    continue

                echo = {"index": index, "matter_id": entry.matter_id, "date": entry.date.isoformat()}
                body = self.activity_body(entry, rate=rate, user_id=user_id)
                if client is None:
                    results.append(PushResult(**echo, ok=True, payload=body))
                    continue

                try:
                    created = await self.push_retry.execute_async(
                        self._request_json, client, "POST", "activities.json", None, body
                    )
                except AdapterError as exc:
                    error = PushError(str(exc), status_code=exc.status_code)
                    results.append(PushResult(**echo, ok=False, error=str(error)))
                    counter("ledger.push.failed")
                    continue

                created_id = (created.get("data") or {}).get("id")
                results.append(
                    PushResult(**echo, ok=True, id=str(created_id) if created_id is not None else None)
                )
                counter("ledger.push.ok")
        finally:
            if client is not None:
                await client.aclose()

        log_event(
            "ledger.pushed",
            total=len(results),
            failed=sum(1 for r in results if not r.ok),
            dry_run=dry_run,
        )
        return results
