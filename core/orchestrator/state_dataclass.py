"""
Per-utterance bookkeeping owned by the orchestrator.

Rules:
- One UtteranceRecord per utterance_id, created at UtteranceStarted.
- State changes go through advance(); illegal transitions raise.
- Terminal states are final.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from orchestrator.enums.state import UtteranceState


TERMINAL_STATES: frozenset[UtteranceState] = frozenset({
    UtteranceState.COMPLETED,
    UtteranceState.CANCELLED,
    UtteranceState.FAILED,
})

_ALLOWED: dict[UtteranceState, frozenset[UtteranceState]] = {
    # ASR can fail while audio is still being captured
    UtteranceState.CAPTURING: frozenset({UtteranceState.TRANSCRIBING, UtteranceState.FAILED}),
    # COMPLETED directly: empty transcript or refinement disabled
    UtteranceState.TRANSCRIBING: frozenset({
        UtteranceState.REFINING,
        UtteranceState.COMPLETED,
        UtteranceState.FAILED,
    }),
    UtteranceState.REFINING: TERMINAL_STATES,
}


@dataclass
class UtteranceRecord:
    utterance_id: int
    state: UtteranceState = UtteranceState.CAPTURING
    final_text: Optional[str] = None
    error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: UtteranceState) -> UtteranceState:
        """
        Move to target and return the previous state.

        Raises:
            ValueError on a transition the lifecycle does not allow.
        """
        if target not in _ALLOWED.get(self.state, frozenset()):
            raise ValueError(
                f"utterance {self.utterance_id}: illegal transition {self.state.value} -> {target.value}"
            )
        previous = self.state
        self.state = target
        return previous
