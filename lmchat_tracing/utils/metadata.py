"""
Trace metadata helpers.

Node users type custom Langfuse metadata as free-form JSON. A bad value must
never stop the model from being supplied, so unparsable input is kept as-is
under ``_raw`` instead of raising.
"""

from __future__ import annotations

import json
from typing import Any


def parse_custom_metadata(raw: Any) -> dict[str, Any]:
    """Turn the custom metadata parameter into a dict."""
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {"_raw": raw}
        return parsed if isinstance(parsed, dict) else {"_raw": raw}

    if isinstance(raw, dict):
        return raw

    return {}


def build_trace_metadata(
    custom_metadata: Any = None,
    session_id: str | None = None,
    user_id: str | None = None,
) -> dict[str, Any]:
    """Model run metadata: custom keys plus the Langfuse session/user ids."""
    metadata = dict(parse_custom_metadata(custom_metadata))
    if session_id:
        metadata["langfuse_session_id"] = session_id
    if user_id:
        metadata["langfuse_user_id"] = user_id
    return metadata
