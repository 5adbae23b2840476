"""
Environment-driven defaults for the billing engine.

Values are read when EngineConfig.from_settings() is called, so tests can
patch os.environ without reloading this module.
"""

from __future__ import annotations

from pathlib import Path

from timeq.infrastructure.env import get_bool_env, get_float_env, get_optional_env

PACKAGE_ROOT = Path(__file__).parent.parent
TASK_RULES_PATH = PACKAGE_ROOT / "classification" / "task_rules.yaml"

# Engine defaults
DEFAULT_SESSION_GAP_MINUTES = 30.0
DEFAULT_MESSAGE_MINUTES = 6
DEFAULT_GAP_THRESHOLD_MINUTES = 120
DEFAULT_CONFIDENCE_BASELINE = 0.8
MAX_CONFIDENCE = 0.95

# Timeouts (seconds)
DEFAULT_SOURCE_TIMEOUT = 30.0
DEFAULT_AI_TIMEOUT = 20.0
DEFAULT_ANALYSIS_TIMEOUT = 60.0

# Ledger
DEFAULT_LEDGER_BASE_URL = "https://app.clio.com/api/v4"

# Gemini
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-001"
DEFAULT_GEMINI_LOCATION = "us-central1"
AI_CACHE_TTL_SECONDS = 3600
AI_CACHE_MAX_ENTRIES = 256


def use_llm() -> bool:
    return get_bool_env("TIMEQ_USE_LLM", False)


def session_gap_minutes() -> float:
    return get_float_env("TIMEQ_SESSION_GAP_MINUTES", DEFAULT_SESSION_GAP_MINUTES)


def message_minutes() -> int:
    return int(get_float_env("TIMEQ_MESSAGE_MINUTES", DEFAULT_MESSAGE_MINUTES))


def gap_threshold_minutes() -> int:
    return int(get_float_env("TIMEQ_GAP_THRESHOLD_MINUTES", DEFAULT_GAP_THRESHOLD_MINUTES))


def confidence_baseline() -> float:
    return get_float_env("TIMEQ_CONFIDENCE_BASELINE", DEFAULT_CONFIDENCE_BASELINE)


def source_timeout() -> float:
    return get_float_env("TIMEQ_SOURCE_TIMEOUT", DEFAULT_SOURCE_TIMEOUT)


def ai_timeout() -> float:
    return get_float_env("TIMEQ_AI_TIMEOUT", DEFAULT_AI_TIMEOUT)


def analysis_timeout() -> float:
    return get_float_env("TIMEQ_ANALYSIS_TIMEOUT", DEFAULT_ANALYSIS_TIMEOUT)


def gemini_model() -> str:
    return get_optional_env("GEMINI_MODEL", DEFAULT_GEMINI_MODEL)


def gemini_location() -> str:
    return get_optional_env("GEMINI_LOCATION", DEFAULT_GEMINI_LOCATION)


def google_cloud_project() -> str:
    return get_optional_env("GOOGLE_CLOUD_PROJECT", "")


def google_api_key() -> str:
    return get_optional_env("GOOGLE_API_KEY", "")
