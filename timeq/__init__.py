"""timeq - reconstruct billable attorney time from activity evidence"""

from __future__ import annotations

__version__ = "0.1.0"


# Lazy imports so that importing timeq.contracts does not pull in connectors and httpx
def __getattr__(name: str):
    if name in ("ForensicTimeEngine", "analyze_period", "find_billing_gaps", "push_entries"):
        from timeq import engine

        return getattr(engine, name)

    if name == "EngineConfig":
        from timeq.config import EngineConfig

        return EngineConfig

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "EngineConfig",
    "ForensicTimeEngine",
    "analyze_period",
    "find_billing_gaps",
    "push_entries",
]
