"""
Consumer-facing output definitions.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- OutputEvents feed the preview/commit stream; Notices are the separate
  channel for overruns, utterance errors and model failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol


class OutputKind(str, Enum):
    """
    PARTIAL:    live preview, superseded by the next event of the utterance
    FINAL_RAW:  final unrefined transcript, emitted as soon as ASR finishes
    COMMIT:     text to insert, in utterance order (refined or fallback)
    """

    PARTIAL = "PARTIAL"
    FINAL_RAW = "FINAL_RAW"
    COMMIT = "COMMIT"


@dataclass(frozen=True)
class OutputEvent:
    kind: OutputKind
    utterance_id: int
    text: str
    refined: bool = False
    sequence_num: int = 0


class NoticeKind(str, Enum):
    """
    OVERRUN:     ingest queue dropped audio
    ERROR:       one utterance failed, nothing is committed for it
    LOAD_ERROR:  a model kind is disabled until retry_model()
    FATAL:       a model kind could not be loaded even after eviction
    """

    OVERRUN = "OVERRUN"
    ERROR = "ERROR"
    LOAD_ERROR = "LOAD_ERROR"
    FATAL = "FATAL"


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    message: str
    utterance_id: Optional[int] = None
    dropped_frames: int = 0
    model_kind: Optional[str] = None


class OutputConsumer(Protocol):
    """Downstream sink (live preview, keyboard injection). Called on the event loop."""

    def on_output(self, event: OutputEvent) -> None: ...

    def on_notice(self, notice: Notice) -> None: ...
