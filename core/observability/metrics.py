"""
Metrics and timing helpers.

- Durations use monotonic time (immune to clock changes)
- One metric = one METRIC_* log event, never aggregated here
- Prefer the `timed()` context manager to avoid leaked timers
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


def emit_counter(name: str, value: int, **details: Any) -> None:
    """Emit a single counter sample (e.g. dropped frames)."""
    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_COUNTER",
        "metric": name,
        "value": value,
        "details": details,
    })


@contextmanager
def timed(
    name: str,
    *,
    utterance_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure a block and emit one METRIC_TIMER event.

    Guarantees:
    - The metric is emitted exactly once, also when the block raises
    - Exceptions are never suppressed

    The yielded dict can be filled with extra details inside the block:

        with timed("lm_generate", utterance_id=7) as extra:
            text = generate()
            extra["chars"] = len(text)
    """
    extra: dict[str, Any] = dict(details or {})
    start_ns = time.monotonic_ns()
    try:
        yield extra
    finally:
        log_event({
            # Wall-clock ts for correlation; the duration uses monotonic time
            "ts_ms": now_ms(),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": (time.monotonic_ns() - start_ns) // 1_000_000,
            "utterance_id": utterance_id,
            "details": extra,
        })
