"""
Mailbox connector (IMAP).

Each message in the window becomes one ``email`` event with a fixed duration
quantum, because reading and composing time is not observable from the mail
store. IMAP SEARCH is day-granular and its BEFORE bound is exclusive, so the
search runs up to the day after the window end; the aggregator trims the
extra messages against the exact window.
"""

from __future__ import annotations

import email
import imaplib
import re
import threading
from collections.abc import Callable
from datetime import date, datetime, timedelta
from email import policy
from email.utils import getaddresses, parsedate_to_datetime

from timeq.connectors.base import ConnectorMetadata, SourceConnector, event_id
from timeq.contracts.errors import SourceFetchError
from timeq.contracts.models import (
    Evidence,
    EvidenceType,
    MailboxConfig,
    SourceEvent,
    SourceKind,
    TimeWindow,
    ensure_utc,
)
from timeq.infrastructure import settings
from timeq.observability.logging import get_logger

logger = get_logger(__name__)

HEADER_FETCH = (
    "(RFC822.SIZE BODY.PEEK[HEADER.FIELDS (SUBJECT FROM TO DATE MESSAGE-ID IN-REPLY-TO)])"
)
_SIZE_RE = re.compile(rb"RFC822\.SIZE (\d+)")
_IMAP_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ImapFactory = Callable[[MailboxConfig, float], imaplib.IMAP4]


def imap_date(day: date) -> str:
    """IMAP SEARCH date literal (``01-Mar-2024``), independent of locale."""
    return f"{day.day:02d}-{_IMAP_MONTHS[day.month - 1]}-{day.year}"


def search_criteria(window: TimeWindow) -> tuple[str, str, str, str]:
    since = window.start.date()
    before = window.end.date() + timedelta(days=1)
    return ("SINCE", imap_date(since), "BEFORE", imap_date(before))


def _default_factory(config: MailboxConfig, timeout: float) -> imaplib.IMAP4:
    if config.use_ssl:
        return imaplib.IMAP4_SSL(config.host, config.port, timeout=timeout)
    return imaplib.IMAP4(config.host, config.port, timeout=timeout)


def _addresses(value: str | None) -> str:
    if not value:
        return ""
    return ", ".join(addr for _, addr in getaddresses([value]) if addr)


class MailboxConnector(SourceConnector):
    name = "mailbox"
    source_kind = SourceKind.EMAIL

    def __init__(
        self,
        config: MailboxConfig,
        timeout: float = settings.DEFAULT_SOURCE_TIMEOUT,
        client_factory: ImapFactory | None = None,
    ) -> None:
        super().__init__(timeout)
        self.config = config
        self._client_factory = client_factory or _default_factory

    def is_configured(self) -> bool:
        return bool(self.config.host and self.config.username and self.config.password)

    def metadata(self) -> ConnectorMetadata:
        return ConnectorMetadata(
            name=self.name,
            source_kind=self.source_kind,
            requires_auth=True,
            description="Fetches message envelopes from an IMAP mailbox",
        )

    async def _fetch(self, window: TimeWindow) -> list[SourceEvent]:
        return await self.run_blocking(self._fetch_sync, window)

    def _fetch_sync(self, window: TimeWindow, stop: threading.Event | None = None) -> list[SourceEvent]:
        try:
            client = self._client_factory(self.config, self.timeout)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise SourceFetchError(self.name, f"connect failed: {exc}") from exc

        try:
            client.login(self.config.username, self.config.password)
            status, _ = client.select(self.config.mailbox, readonly=True)
            if status != "OK":
                raise SourceFetchError(self.name, f"cannot open mailbox {self.config.mailbox}")

            status, data = client.search(None, *search_criteria(window))
            if status != "OK":
                raise SourceFetchError(self.name, "search failed")
            message_numbers = data[0].split() if data and data[0] else []

            events: list[SourceEvent] = []
            for number in message_numbers:
                if stop is not None and stop.is_set():
                    logger.debug("Abandoning mailbox fetch after %d messages", len(events))
                    break
                status, parts = client.fetch(number, HEADER_FETCH)
                if status != "OK":
                    logger.warning("Skipping message %s: fetch status %s", number, status)
                    continue
                event = self._to_event(number, parts)
                if event is not None:
                    events.append(event)
            return events
        except (imaplib.IMAP4.error, OSError) as exc:
            raise SourceFetchError(self.name, str(exc)) from exc
        finally:
            try:
                client.logout()
            except (imaplib.IMAP4.error, OSError) as exc:
                logger.debug("IMAP logout failed: %s", exc)

    def _to_event(self, number: bytes, parts: list) -> SourceEvent | None:
        header_bytes = b""
        size: int | None = None
        for part in parts or []:
            if isinstance(part, tuple) and len(part) == 2:
                meta, header_bytes = part
                match = _SIZE_RE.search(meta)
                if match:
                    size = int(match.group(1))
                break

        message = email.message_from_bytes(header_bytes, policy=policy.default)
        sent_at = self._message_date(message.get("Date"))
        if sent_at is None:
            logger.warning("Skipping message %s: missing or unparseable Date header", number)
            return None

        subject = str(message.get("Subject") or "").strip() or "(no subject)"
        sender = _addresses(message.get("From"))
        recipients = _addresses(message.get("To"))
        message_id = str(message.get("Message-ID") or "").strip()
        in_reply_to = str(message.get("In-Reply-To") or "").strip() or None
        locator = message_id or f"{self.config.mailbox}/{number.decode()}"

        evidence = Evidence(
            type=EvidenceType.DIRECT,
            source_kind=self.source_kind,
            description=f'Email: "{subject}" from {sender}',
            timestamp=sent_at,
            locator=f"mid:{message_id.strip('<>')}" if message_id else None,
            metadata={"message_id": message_id, "in_reply_to": in_reply_to, "size": size},
        )
        return SourceEvent(
            id=event_id("email", self.config.host, self.config.username, locator),
            kind=self.source_kind,
            timestamp=sent_at,
            duration_minutes=self.config.message_minutes,
            subject=subject,
            description=f"Email: {subject}",
            evidence=[evidence],
            metadata={"from": sender, "to": recipients, "message_id": message_id, "size": size},
        )

    @staticmethod
    def _message_date(raw: object) -> datetime | None:
        if not raw:
            return None
        try:
            return ensure_utc(parsedate_to_datetime(str(raw)))
        except (TypeError, ValueError):
            return None
