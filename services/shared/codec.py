from __future__ import annotations

import json
from typing import Any, List, Optional, Sequence


def canon_json(obj: Any) -> str:
    """
    Canonical JSON string:
    - deterministic key order
    - no whitespace
    - stable across runs
    """
    return json.dumps(
        obj,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def dump_list(values: Optional[Sequence[Any]]) -> Optional[str]:
    """Serialize a list column (evidence ids, tags, fingerprint). None stays NULL."""
    if values is None:
        return None
    return canon_json(list(values))


def load_list(raw: Optional[str]) -> Optional[List[Any]]:
    if raw is None or raw == "":
        return None
    value = json.loads(raw)
    if not isinstance(value, list):
        raise ValueError(f"Expected a JSON list column, got {type(value).__name__}")
    return value
