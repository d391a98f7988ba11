"""
Per-utterance state enumeration.

Rules:
- This enum defines ONLY the lifecycle states of one utterance.
- No behavior, no helper methods, no side effects.
- Allowed transitions live in orchestrator.state_dataclass.
"""

from __future__ import annotations

from enum import Enum


class UtteranceState(str, Enum):
    """
    CAPTURING:     segmenter is still collecting audio (ASR may already run)
    TRANSCRIBING:  audio closed, waiting for the final hypothesis
    REFINING:      final transcript handed to the refinement engine

    COMPLETED / CANCELLED / FAILED are terminal.
    """

    CAPTURING = "CAPTURING"
    TRANSCRIBING = "TRANSCRIBING"
    REFINING = "REFINING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
