"""
Environment loader for timeq.

Call ensure_env_loaded() before reading TIMEQ_* variables so values from a
project-level .env file are visible.

Side Effects:
    - Loads .env file from the nearest ancestor directory that has one
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Ensure the .env file is loaded exactly once.

    Args:
        env_path: Optional path to .env file. If None, walks up from this package.

    Side Effects:
        - Loads environment variables from .env file (existing values win)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = Path(__file__).parent
        while current != current.parent:
            candidate = current / ".env"
            if candidate.exists():
                env_path = candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()
    _ENV_LOADED = True


def get_optional_env(key: str, default: str = "") -> str:
    ensure_env_loaded()
    return os.getenv(key, default)


def get_bool_env(key: str, default: bool = False) -> bool:
    """Read a boolean flag; accepts true/1/yes/on in any case."""
    raw = get_optional_env(key, "")
    if not raw:
        return default
    return raw.strip().lower() in {"true", "1", "yes", "on"}


def get_float_env(key: str, default: float) -> float:
    raw = get_optional_env(key, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default
