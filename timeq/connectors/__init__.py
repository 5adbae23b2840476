"""
Activity source connectors and the connector registry.

CONNECTOR_TYPES is built once at import time and is read-only. Adding a
source means adding a SourceKind member and registering its class here.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from timeq.connectors.base import ConnectorMetadata, SourceConnector, event_id
from timeq.connectors.ledger import LedgerConnector
from timeq.connectors.local_activity import LocalActivityConnector
from timeq.connectors.mailbox import MailboxConnector
from timeq.connectors.research_log import ResearchLogConnector
from timeq.contracts.models import SourceKind, SourcesConfig

CONNECTOR_TYPES: Mapping[SourceKind, type[SourceConnector]] = MappingProxyType(
    {
        SourceKind.EMAIL: MailboxConnector,
        SourceKind.LOCAL_ACTIVITY: LocalActivityConnector,
        SourceKind.RESEARCH: ResearchLogConnector,
        SourceKind.LEDGER_ACTIVITY: LedgerConnector,
    }
)


def build_connectors(sources: SourcesConfig, timeout: float) -> list[SourceConnector]:
    """
    One connector per source section present in the request, in registry order.

    Sections that are present but incomplete still produce a connector; it
    reports ``is_configured() == False`` and the aggregator skips it.
    """
    built: list[SourceConnector] = []
    if sources.mailbox is not None:
        built.append(CONNECTOR_TYPES[SourceKind.EMAIL](sources.mailbox, timeout=timeout))
    if sources.local_paths is not None:
        built.append(CONNECTOR_TYPES[SourceKind.LOCAL_ACTIVITY](sources.local_paths, timeout=timeout))
    if sources.research_csv_paths is not None:
        built.append(CONNECTOR_TYPES[SourceKind.RESEARCH](sources.research_csv_paths, timeout=timeout))
    if sources.ledger is not None:
        built.append(CONNECTOR_TYPES[SourceKind.LEDGER_ACTIVITY](sources.ledger, timeout=timeout))
    return built


__all__ = [
    "CONNECTOR_TYPES",
    "ConnectorMetadata",
    "LedgerConnector",
    "LocalActivityConnector",
    "MailboxConnector",
    "ResearchLogConnector",
    "SourceConnector",
    "build_connectors",
    "event_id",
]
