"""
Domain models for the time-capture engine.

Every record that crosses the engine boundary is a pydantic model. Field
names are snake_case in Python and camelCase on the wire, so a request
payload can be validated with ``model_validate`` and a result can be emitted
with ``model_dump(by_alias=True)``.

Records produced during a run (events, proposals, duplicate matches) are
frozen. Annotating one means building a copy with ``model_copy``.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from timeq.infrastructure import settings

INTERNAL_MATTER_KEY = "Internal"


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class SourceKind(str, Enum):
    """Closed set of activity sources the engine understands."""

    EMAIL = "email"
    LOCAL_ACTIVITY = "local_activity"
    RESEARCH = "research"
    LEDGER_ACTIVITY = "ledger_activity"


class EvidenceType(str, Enum):
    DIRECT = "direct"  # Authoritative record (ledger activity, mail envelope)
    CIRCUMSTANTIAL = "circumstantial"  # Inferred (file modification time)


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    NOVEL = "novel"


class ProposedBasis(str, Enum):
    NORMATIVE = "normative"
    ACTUAL = "actual"
    HYBRID = "hybrid"


class BillingMode(str, Enum):
    VALUE = "value"
    ACTUAL = "actual"
    BLENDED = "blended"


class NormativeStrategy(str, Enum):
    CONSERVATIVE = "conservative"
    STANDARD = "standard"
    AGGRESSIVE = "aggressive"


class TaskCode(str, Enum):
    """Task codes shipped with the default legal catalog."""

    DRAFT_NOTICE_OF_HEARING = "draft_notice_of_hearing"
    PROOF_OF_SERVICE = "proof_of_service"
    RESEARCH_ISSUE = "research_issue"
    RESEARCH_CASELAW = "research_caselaw"
    RESEARCH_STATUTE = "research_statute"
    BRIEF_OUTLINING = "brief_outlining"
    BRIEF_FIRST_DRAFT = "brief_first_draft"
    BRIEF_REVISION = "brief_revision"
    MOTION_DRAFT = "motion_draft"
    MOTION_OPPOSITION = "motion_opposition"
    FILING_AND_SERVICE = "filing_and_service"
    CLIENT_COMMUNICATION_EMAIL = "client_communication_email"
    CLIENT_COMMUNICATION_PHONE = "client_communication_phone"
    CLIENT_MEETING = "client_meeting"
    OPPOSING_COUNSEL_COMMUNICATION = "opposing_counsel_communication"
    COURT_STAFF_COMMUNICATION = "court_staff_communication"
    HEARING_PREP = "hearing_prep"
    TRIAL_PREP = "trial_prep"
    DOCUMENT_REVIEW = "document_review"
    CONTRACT_REVIEW = "contract_review"
    DISCOVERY_REVIEW = "discovery_review"
    DISCOVERY_RESPONSE = "discovery_response"
    DEPOSITION_PREP = "deposition_prep"
    EMAIL_CORRESPONDENCE = "email_correspondence"
    SCHEDULING = "scheduling"
    CASE_MANAGEMENT = "case_management"
    PROFESSIONAL_DEVELOPMENT = "professional_development"
    ADMIN_TECH = "admin_tech"


DEFAULT_COMPLEXITY_MULTIPLIERS: dict[Complexity, float] = {
    Complexity.LOW: 0.7,
    Complexity.MEDIUM: 1.0,
    Complexity.HIGH: 1.5,
    Complexity.NOVEL: 2.0,
}


class TimeWindow(_Model):
    """Half-open analysis window ``[start, end)`` in UTC."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def end_after_start(self) -> TimeWindow:
        if self.end <= self.start:
            raise ValueError("window end must be after window start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= ensure_utc(moment) < self.end

    def overlaps_day(self, day: date) -> bool:
        """True when any instant of calendar day ``day`` (UTC) falls in the window."""
        day_start = datetime(day.year, day.month, day.day, tzinfo=UTC)
        return day_start < self.end and day_start + timedelta(days=1) > self.start

    def days(self) -> list[date]:
        """Calendar days (UTC) touched by the window, in order."""
        last = (self.end - timedelta(microseconds=1)).date()
        current = self.start.date()
        out: list[date] = []
        while current <= last:
            out.append(current)
            current += timedelta(days=1)
        return out

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0


class MatterRef(_Model):
    """Client engagement the work is attributed to. Absent means internal work."""

    matter_id: str | None = None
    client_id: str | None = None
    client_name: str | None = None
    matter_name: str | None = None

    @property
    def group_key(self) -> str:
        if self.matter_id:
            return self.matter_id
        if self.client_name or self.matter_name:
            return f"{self.client_name or INTERNAL_MATTER_KEY}::{self.matter_name or 'Unassigned'}"
        return INTERNAL_MATTER_KEY


def matter_key(matter: MatterRef | None) -> str:
    return matter.group_key if matter is not None else INTERNAL_MATTER_KEY


class Evidence(_Model):
    type: EvidenceType
    source_kind: SourceKind
    description: str
    timestamp: datetime | None = None
    locator: str | None = Field(default=None, description="URI or record reference")
    metadata: dict[str, Any] = Field(default_factory=dict)


class SourceEvent(_Model):
    """
    One canonical activity signal produced by a connector.

    Only ``metadata`` may be extended after creation, and only by the
    classifier (task_code, classified_by, ai_confidence).
    """

    id: str = Field(..., description="Deterministic per source record")
    kind: SourceKind
    timestamp: datetime
    end_timestamp: datetime | None = None
    duration_minutes: float | None = Field(default=None, ge=0)
    matter: MatterRef | None = None
    subject: str = ""
    description: str = ""
    evidence: list[Evidence] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp", "end_timestamp")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @property
    def text(self) -> str:
        return f"{self.subject} {self.description}".strip()

    @property
    def task_code(self) -> str | None:
        return self.metadata.get("task_code")

    def annotate(self, **fields: Any) -> SourceEvent:
        return self.model_copy(update={"metadata": {**self.metadata, **fields}})


class NormativeCatalogItem(_Model):
    code: str
    label: str
    base_minutes: float = Field(..., gt=0)
    activity_category: str
    complexity_multipliers: dict[Complexity, float] = Field(
        default_factory=lambda: dict(DEFAULT_COMPLEXITY_MULTIPLIERS)
    )

    def multiplier(self, complexity: Complexity) -> float:
        return self.complexity_multipliers.get(
            complexity, DEFAULT_COMPLEXITY_MULTIPLIERS[complexity]
        )


class NormativeRule(_Model):
    """Caller-supplied baseline that replaces (or adds) a catalog entry."""

    task: str = Field(..., min_length=1)
    baseline_minutes: float = Field(..., gt=0)
    label: str | None = None
    activity_category: str | None = None


class ProposedEntry(_Model):
    id: str
    matter: MatterRef | None = None
    date: date
    task_code: str
    task_label: str
    actual_minutes: int | None = None
    normative_minutes: int
    recommended_minutes: int
    basis: ProposedBasis
    description: str
    activity_category: str
    source_event_ids: list[str] = Field(default_factory=list)
    evidence: list[Evidence] = Field(default_factory=list)
    complexity: Complexity = Complexity.MEDIUM
    confidence: float = Field(..., ge=0.0, le=1.0)

    @computed_field(alias="evidenceCount")  # type: ignore[prop-decorator]
    @property
    def evidence_count(self) -> int:
        return len(self.evidence)

    def to_view(self) -> dict[str, Any]:
        """Wire shape of a proposal: evidence is summarized as evidenceCount."""
        return self.model_dump(mode="json", by_alias=True, exclude={"evidence"})


class DuplicateMatch(_Model):
    entry1_id: str = Field(..., alias="entry1Id")
    entry2_id: str = Field(..., alias="entry2Id")
    similarity: int = Field(..., ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)


class BillingPolicy(_Model):
    mode: BillingMode = BillingMode.VALUE
    blend_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
    min_increment_minutes: int = Field(default=6, ge=0)
    round_up: bool = True
    cap_multiplier: float | None = Field(default=None, gt=0)
    normative_rules: list[NormativeRule] = Field(default_factory=list)


class EngineFlags(_Model):
    use_llm: bool = Field(default_factory=settings.use_llm, alias="useLLM")
    enable_dupe_check: bool = True
    normative_strategy: NormativeStrategy = NormativeStrategy.STANDARD
    min_entry_minutes: int = Field(default=6, ge=0)


class MailboxConfig(_Model):
    host: str = ""
    port: int = 993
    use_ssl: bool = True
    username: str = ""
    password: str = Field(default="", repr=False)
    mailbox: str = "INBOX"
    message_minutes: int = Field(default_factory=settings.message_minutes, gt=0)


class LocalActivityConfig(_Model):
    paths: list[str] = Field(default_factory=list)
    include_patterns: list[str] = Field(default_factory=lambda: ["**/*"])
    exclude_patterns: list[str] = Field(
        default_factory=lambda: ["**/node_modules/**", "**/.git/**", "**/dist/**", "**/build/**"]
    )
    extensions: list[str] = Field(default_factory=list, description="e.g. ['.docx', '.pdf']")


class LedgerConfig(_Model):
    api_key: str = Field(default="", repr=False)
    base_url: str = settings.DEFAULT_LEDGER_BASE_URL
    page_size: int = Field(default=200, gt=0)
    max_pages: int = Field(default=50, gt=0)
    query: dict[str, str] = Field(default_factory=dict, description="Extra list filters")


class SourcesConfig(_Model):
    mailbox: MailboxConfig | None = None
    local_paths: LocalActivityConfig | None = None
    research_csv_paths: list[str] | None = None
    ledger: LedgerConfig | None = None

    @field_validator("local_paths", mode="before")
    @classmethod
    def accept_plain_path_list(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return {"paths": list(v)}
        return v


class AnalyzeRequest(_Model):
    window: TimeWindow
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    policy: BillingPolicy = Field(default_factory=BillingPolicy)
    flags: EngineFlags = Field(default_factory=EngineFlags)
    timeout_seconds: float | None = Field(default=None, gt=0)


class AnalysisStats(_Model):
    total_events: int = 0
    total_proposals: int = 0
    total_recommended_minutes: int = 0
    total_actual_minutes: int = 0
    events_by_source: dict[str, int] = Field(default_factory=dict)


class AnalysisResult(_Model):
    window: TimeWindow
    tools_used: list[str] = Field(default_factory=list)
    skipped_sources: dict[str, str] = Field(
        default_factory=dict, description="Source name -> reason it contributed nothing"
    )
    proposals: list[ProposedEntry] = Field(default_factory=list)
    duplicates: list[DuplicateMatch] = Field(default_factory=list)
    stats: AnalysisStats = Field(default_factory=AnalysisStats)

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True, exclude={"proposals"})
        payload["proposals"] = [proposal.to_view() for proposal in self.proposals]
        return payload


class BillingGap(_Model):
    date: date
    recorded_minutes: int
    threshold_minutes: int

    @computed_field(alias="shortfallMinutes")  # type: ignore[prop-decorator]
    @property
    def shortfall_minutes(self) -> int:
        return max(self.threshold_minutes - self.recorded_minutes, 0)


class PushEntry(_Model):
    matter_id: str = Field(..., min_length=1)
    date: date
    minutes: float = Field(..., gt=0)
    description: str = Field(..., min_length=1)

    @property
    def hours(self) -> float:
        return round(self.minutes / 60.0, 2)


class PushResult(_Model):
    """Outcome of one write-back entry, echoing the entry it answers."""

    index: int
    matter_id: str | None = None
    date: str | None = Field(default=None, description="ISO date of the entry")
    ok: bool
    id: str | None = None
    error: str | None = None
    payload: dict[str, Any] | None = Field(default=None, description="Mapped body (dry run)")


class PushRequest(_Model):
    """Write-back request. Entries stay raw so each one is validated on its own."""

    ledger: LedgerConfig | None = None
    entries: list[dict[str, Any]] = Field(default_factory=list)
    dry_run: bool = False
    rate: float | None = Field(default=None, ge=0)
    user_id: int | str | None = None


class GapRequest(_Model):
    window: TimeWindow
    ledger: LedgerConfig | None = None
    threshold_minutes: int | None = Field(default=None, ge=0)
