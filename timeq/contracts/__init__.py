"""Domain models and error taxonomy shared by every stage."""

from timeq.contracts.errors import (
    ClassificationError,
    ConfigurationError,
    PushError,
    RequestValidationError,
    SourceFetchError,
    TimeqError,
)
from timeq.contracts.models import (
    AnalysisResult,
    AnalysisStats,
    AnalyzeRequest,
    BillingGap,
    BillingMode,
    BillingPolicy,
    Complexity,
    DuplicateMatch,
    EngineFlags,
    Evidence,
    EvidenceType,
    GapRequest,
    LedgerConfig,
    LocalActivityConfig,
    MailboxConfig,
    MatterRef,
    NormativeCatalogItem,
    NormativeRule,
    NormativeStrategy,
    ProposedBasis,
    ProposedEntry,
    PushEntry,
    PushRequest,
    PushResult,
    SourceEvent,
    SourceKind,
    SourcesConfig,
    TaskCode,
    TimeWindow,
)

__all__ = [
    "AnalysisResult",
    "AnalysisStats",
    "AnalyzeRequest",
    "BillingGap",
    "BillingMode",
    "BillingPolicy",
    "ClassificationError",
    "Complexity",
    "ConfigurationError",
    "DuplicateMatch",
    "EngineFlags",
    "Evidence",
    "EvidenceType",
    "GapRequest",
    "LedgerConfig",
    "LocalActivityConfig",
    "MailboxConfig",
    "MatterRef",
    "NormativeCatalogItem",
    "NormativeRule",
    "NormativeStrategy",
    "ProposedBasis",
    "ProposedEntry",
    "PushEntry",
    "PushError",
    "PushRequest",
    "PushResult",
    "RequestValidationError",
    "SourceEvent",
    "SourceFetchError",
    "SourceKind",
    "SourcesConfig",
    "TaskCode",
    "TimeWindow",
    "TimeqError",
]
