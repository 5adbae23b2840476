"""Prompt builders for batched task classification."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from timeq.billing.catalog import NormativeCatalog
from timeq.pipeline.sessionizer import WorkSession

PROMPT_VERSION = "task-batch-v2"
MAX_SESSION_TEXT = 600

CLASSIFY_TEMPLATE = """You classify attorney work sessions into billing task codes.

Allowed task codes:
{codes}

Sessions (JSON):
{sessions}

Return a JSON array with one object per session: {{"index": <session index>, "taskCode": <one allowed code>, "confidence": <0.0-1.0>}}.
Use only the allowed codes. Return only the JSON array."""


def session_payload(index: int, session: WorkSession) -> dict[str, Any]:
    text = session.text
    if len(text) > MAX_SESSION_TEXT:
        text = text[:MAX_SESSION_TEXT] + "..."
    return {
        "index": index,
        "kinds": session.kinds,
        "events": len(session.events),
        "text": text,
    }


def build_classification_prompt(sessions: Sequence[WorkSession], catalog: NormativeCatalog) -> str:
    """
    One prompt for the whole run. Matter names are left out so client
    identities are not sent to the model.
    """
    codes = "\n".join(f"- {code}: {catalog.label(code)}" for code in catalog.codes)
    payload = [session_payload(i, s) for i, s in enumerate(sessions)]
    return CLASSIFY_TEMPLATE.format(
        codes=codes, sessions=json.dumps(payload, ensure_ascii=False, sort_keys=True)
    )
