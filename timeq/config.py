"""Engine configuration.

EngineConfig is built once (usually from the environment via
``EngineConfig.from_settings()``) and handed to every component that needs
it. Nothing reads configuration from a process-wide mutable registry.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from timeq.infrastructure import settings
from timeq.infrastructure.env import ensure_env_loaded

APP_VERSION: str = "0.1.0"


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_gap_minutes: float = Field(default=settings.DEFAULT_SESSION_GAP_MINUTES, gt=0)
    gap_threshold_minutes: int = Field(default=settings.DEFAULT_GAP_THRESHOLD_MINUTES, ge=0)
    confidence_baseline: float = Field(
        default=settings.DEFAULT_CONFIDENCE_BASELINE, ge=0.0, le=settings.MAX_CONFIDENCE
    )
    source_timeout: float = Field(default=settings.DEFAULT_SOURCE_TIMEOUT, gt=0)
    ai_timeout: float = Field(default=settings.DEFAULT_AI_TIMEOUT, gt=0)
    analysis_timeout: float = Field(default=settings.DEFAULT_ANALYSIS_TIMEOUT, gt=0)
    task_rules_path: Path = settings.TASK_RULES_PATH
    ai_cache_ttl_seconds: int = settings.AI_CACHE_TTL_SECONDS
    ai_cache_max_entries: int = settings.AI_CACHE_MAX_ENTRIES

    @classmethod
    def from_settings(cls) -> EngineConfig:
        """
        Build a config from TIMEQ_* environment variables.

        Side Effects:
            - Loads .env on first call
        """
        ensure_env_loaded()
        return cls(
            session_gap_minutes=settings.session_gap_minutes(),
            gap_threshold_minutes=settings.gap_threshold_minutes(),
            confidence_baseline=settings.confidence_baseline(),
            source_timeout=settings.source_timeout(),
            ai_timeout=settings.ai_timeout(),
            analysis_timeout=settings.analysis_timeout(),
        )
