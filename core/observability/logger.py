"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout by default
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def now_ms() -> int:
    """Wall-clock timestamp in milliseconds (log correlation only)."""
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event.

    The caller supplies a fully-formed event dict (event_type plus context).
    A missing ts_ms is filled in.

    This function never raises: values that are not JSON serializable are
    logged through their repr.
    """
    payload = dict(event)
    payload.setdefault("ts_ms", now_ms())
    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # logging must never crash the pipeline
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def log(event_type: str, **fields: Any) -> None:
    """Shorthand for log_event({"event_type": ..., **fields})."""
    log_event({"event_type": event_type, **fields})
