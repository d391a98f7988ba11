"""
Cooperative cancellation for refinement runs.

Responsibilities:
- CancellationToken: thread-safe flag polled by the LM capability at token
  boundaries (generation runs on a worker thread)
- CancellationManager: one token per utterance_id, ACK timeout timers,
  CANCEL_TIMEOUT logging

Non-responsibilities:
- NO decision about WHAT to cancel (orchestrator policy)
- NO forced thread termination
"""

from __future__ import annotations

import asyncio
import threading
from asyncio import Task

from constants import CANCEL_ACK_TIMEOUT_MS
from errors import GenerationCancelled
from observability.logger import log


# ---------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------

class CancellationToken:
    """
    Cancellation flag shared between the event loop and a worker thread.

    Once cancelled, a token stays cancelled.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Step-boundary check for generation loops."""
        if self._event.is_set():
            raise GenerationCancelled("generation cancelled")


# ---------------------------------------------------------------------
# Cancellation Manager
# ---------------------------------------------------------------------

class CancellationManager:
    """
    Runtime manager for the cancel/ACK protocol of refinement runs.

    Lifecycle:
    1. Orchestrator calls token_for(utterance_id) before refine()
    2. Orchestrator calls request_cancel(utterance_id)
    3. Manager sets the token and starts an ACK timeout timer
    4a. RefinementEngine reports the run finished -> notify_ack(...)
    4b. Timer fires -> CANCEL_TIMEOUT is logged

    This class never decides what happens next.
    """

    def __init__(self, *, ack_timeout_ms: int = CANCEL_ACK_TIMEOUT_MS) -> None:
        self._ack_timeout_ms = ack_timeout_ms
        self._tokens: dict[int, CancellationToken] = {}
        self._timers: dict[int, Task[None]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def token_for(self, utterance_id: int) -> CancellationToken:
        """Return (creating if needed) the token of an utterance."""
        token = self._tokens.get(utterance_id)
        if token is None:
            token = CancellationToken()
            self._tokens[utterance_id] = token
        return token

    def request_cancel(self, utterance_id: int) -> bool:
        """
        Cancel the utterance's refinement and start its ACK timer.

        Idempotent. Returns False if no token exists for utterance_id.
        """
        token = self._tokens.get(utterance_id)
        if token is None:
            return False
        if utterance_id in self._timers or token.cancelled:
            return True

        token.cancel()
        log("CANCEL_REQUESTED", utterance_id=utterance_id)
        self._timers[utterance_id] = asyncio.create_task(
            self._ack_timeout_task(utterance_id)
        )
        return True

    def notify_ack(self, utterance_id: int) -> None:
        """
        The run for utterance_id has finished (for any reason).

        Stops the ACK timer and forgets the token.
        """
        self._tokens.pop(utterance_id, None)
        task = self._timers.pop(utterance_id, None)
        if task:
            task.cancel()

    def pending(self) -> list[int]:
        """Utterance ids with a live token."""
        return sorted(self._tokens)

    def clear_all(self) -> None:
        """Cancel and clear all outstanding ACK timers (teardown)."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
        self._tokens.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _ack_timeout_task(self, utterance_id: int) -> None:
        try:
            await asyncio.sleep(self._ack_timeout_ms / 1000.0)
        except asyncio.CancelledError:
            return

        self._timers.pop(utterance_id, None)
        log(
            "CANCEL_TIMEOUT",
            utterance_id=utterance_id,
            ack_timeout_ms=self._ack_timeout_ms,
        )
