"""
Refinement engine: LM correction of final transcripts.

Responsibilities:
- Resolve the processing mode (configured default, per-call override,
  spoken voice prefix) and build the prompt
- Acquire the REFINEMENT model slot (lazy load)
- Run generation on a dedicated LM thread pool
- Honor cooperative cancellation with a bounded acknowledgement wait
- Retry transient GenerationErrors once, then fall back to the original text

refine() never raises for model or generation failures: every outcome is a
RefinedText. FAILED and CANCELLED results carry the unrefined transcript.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Awaitable, Mapping, Optional, TypeVar

from adapters.llm.base import LMCapability
from constants import (
    CANCEL_ACK_TIMEOUT_MS,
    DEFAULT_PROCESSING_MODE,
    LM_MAX_TOKENS,
    LM_WORKERS,
    MODEL_ACQUIRE_TIMEOUT_S,
)
from errors import (
    GenerationCancelled,
    GenerationError,
    LoadError,
    ModelFatalError,
    ModelUnavailable,
)
from models.lifecycle import ModelKind, ModelLifecycleManager, ModelSlot
from observability.logger import log
from observability.metrics import timed
from orchestrator.retry import (
    FailureType,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from refinement.cancellation import CancellationToken
from refinement.modes import ProcessingMode
from refinement.prefixes import detect_prefix
from refinement.prompts import Prompt, PromptTemplate, build_prompt

T = TypeVar("T")

# How often a suspended refine() re-checks its token
_CANCEL_POLL_S = 0.02


class RefinementStatus(str, Enum):
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class RefinedText:
    """
    Outcome of refining one utterance.

    text is the refined text when COMPLETED, else the unrefined transcript.
    mode is the mode actually applied (after voice prefix detection).
    """
    utterance_id: int
    text: str
    status: RefinementStatus
    mode: ProcessingMode
    error: Optional[str] = None

    @property
    def refined(self) -> bool:
        """True if the language model actually rewrote the text."""
        return self.status is RefinementStatus.COMPLETED and self.mode.requires_llm


class RefinementEngine:
    def __init__(
        self,
        lm: LMCapability,
        models: ModelLifecycleManager,
        *,
        workers: int = LM_WORKERS,
        acquire_timeout_s: float = MODEL_ACQUIRE_TIMEOUT_S,
        cancel_ack_timeout_ms: int = CANCEL_ACK_TIMEOUT_MS,
        max_tokens: int = LM_MAX_TOKENS,
        default_mode: ProcessingMode = ProcessingMode(DEFAULT_PROCESSING_MODE),
        templates: Optional[Mapping[ProcessingMode, PromptTemplate]] = None,
        voice_prefixes: bool = True,
        language: str = "en",
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._lm = lm
        self._models = models
        self._acquire_timeout_s = acquire_timeout_s
        self._cancel_ack_timeout_s = cancel_ack_timeout_ms / 1000.0
        self._max_tokens = max_tokens
        self._default_mode = default_mode
        self._templates = dict(templates or {})
        self._voice_prefixes = voice_prefixes
        self._language = language

        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lm")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_mode(self, text: str, mode: Optional[ProcessingMode] = None) -> tuple[ProcessingMode, str]:
        """Mode and text after applying a spoken prefix, if any."""
        mode = mode or self._default_mode
        if self._voice_prefixes:
            match = detect_prefix(text)
            if match is not None:
                return match.mode, match.stripped_text
        return mode, text

    async def refine(
        self,
        text: str,
        token: CancellationToken,
        *,
        utterance_id: int,
        mode: Optional[ProcessingMode] = None,
    ) -> RefinedText:
        """
        Refine a final transcript.

        Returns:
            RefinedText with status COMPLETED, CANCELLED or FAILED.
        """
        mode, text = self.resolve_mode(text, mode)

        if not mode.requires_llm:
            return RefinedText(utterance_id, text, RefinementStatus.COMPLETED, mode)
        if token.cancelled:
            return self._cancelled(utterance_id, text, mode)

        try:
            slot = await self._unless_cancelled(
                self._models.acquire(ModelKind.REFINEMENT, timeout=self._acquire_timeout_s),
                token,
            )
        except GenerationCancelled:
            return self._cancelled(utterance_id, text, mode)
        except (ModelUnavailable, LoadError, ModelFatalError) as e:
            log("REFINEMENT_MODEL_UNAVAILABLE", utterance_id=utterance_id, error=str(e))
            return self._failed(utterance_id, text, mode, str(e))

        return await self._generate_with_retry(slot, text, token, utterance_id=utterance_id, mode=mode)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate_with_retry(
        self,
        slot: ModelSlot,
        text: str,
        token: CancellationToken,
        *,
        utterance_id: int,
        mode: ProcessingMode,
    ) -> RefinedText:
        prompt = build_prompt(text, mode, self._templates.get(mode), language=self._language)
        attempt = reset_attempt()
        # Ownership of the slot passes to the worker callback if we stop
        # waiting for a cancelled run before it returns.
        owns_slot = True
        try:
            while True:
                future = self._submit(slot, prompt, token)
                try:
                    with timed("lm_generate", utterance_id=utterance_id, details={"mode": mode.value}) as extra:
                        output = await self._await_generation(future, token, utterance_id)
                        extra["chars"] = len(output)
                except GenerationCancelled:
                    if not future.done():
                        owns_slot = False
                        future.add_done_callback(
                            partial(self._release_detached, asyncio.get_running_loop(), slot)
                        )
                    return self._cancelled(utterance_id, text, mode)
                except GenerationError as e:
                    if token.cancelled:
                        return self._cancelled(utterance_id, text, mode)
                    if not should_retry(failure=FailureType.GENERATION_ERROR, attempt=attempt):
                        return self._failed(utterance_id, text, mode, str(e))
                    delay_ms = get_retry_delay_ms(failure=FailureType.GENERATION_ERROR, attempt=attempt)
                    log(
                        "LM_GENERATE_RETRY",
                        utterance_id=utterance_id,
                        attempt=attempt.attempt + 1,
                        delay_ms=delay_ms,
                        error=str(e),
                    )
                    await asyncio.sleep(delay_ms / 1000.0)
                    attempt = next_attempt(attempt)
                    continue
                except MemoryError as e:
                    log("LM_OUT_OF_MEMORY", utterance_id=utterance_id)
                    return self._failed(utterance_id, text, mode, f"out of memory: {e}")

                refined = output.strip()
                if not refined:
                    return self._failed(utterance_id, text, mode, "empty model output")

                log("REFINEMENT_COMPLETED", utterance_id=utterance_id, mode=mode.value, chars=len(refined))
                return RefinedText(utterance_id, refined, RefinementStatus.COMPLETED, mode)
        finally:
            if owns_slot:
                self._models.release(slot)

    def _submit(self, slot: ModelSlot, prompt: Prompt, token: CancellationToken) -> Future[str]:
        call = partial(self._lm.generate, slot.handle, prompt, token, max_tokens=self._max_tokens)
        return self._executor.submit(call)

    async def _await_generation(
        self,
        future: Future[str],
        token: CancellationToken,
        utterance_id: int,
    ) -> str:
        """
        Wait for a generation run.

        Once the token is cancelled the worker gets cancel_ack_timeout to
        return; after that the run is detached and GenerationCancelled raised.
        """
        wrapped = asyncio.wrap_future(future)
        cancel_seen_at: Optional[float] = None

        while not wrapped.done():
            if token.cancelled and cancel_seen_at is None:
                cancel_seen_at = time.monotonic()
            if cancel_seen_at is not None and time.monotonic() - cancel_seen_at >= self._cancel_ack_timeout_s:
                log(
                    "REFINEMENT_DETACHED",
                    utterance_id=utterance_id,
                    ack_timeout_ms=int(self._cancel_ack_timeout_s * 1000),
                )
                wrapped.cancel()
                raise GenerationCancelled("no acknowledgement within timeout")
            await asyncio.wait({wrapped}, timeout=_CANCEL_POLL_S)

        return wrapped.result()

    async def _unless_cancelled(self, aw: Awaitable[T], token: CancellationToken) -> T:
        task = asyncio.ensure_future(aw)
        while not task.done():
            if token.cancelled:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                else:
                    # Finished before the cancel landed; hand the result back
                    return task.result()
                raise GenerationCancelled("cancelled while waiting for the model")
            await asyncio.wait({task}, timeout=_CANCEL_POLL_S)
        return task.result()

    def _release_detached(
        self,
        loop: asyncio.AbstractEventLoop,
        slot: ModelSlot,
        future: Future[str],
    ) -> None:
        # Worker thread; hop back to the loop that owns the slot
        if not future.cancelled():
            future.exception()
        loop.call_soon_threadsafe(self._models.release, slot)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _cancelled(self, utterance_id: int, text: str, mode: ProcessingMode) -> RefinedText:
        log("REFINEMENT_CANCELLED", utterance_id=utterance_id)
        return RefinedText(utterance_id, text, RefinementStatus.CANCELLED, mode)

    def _failed(self, utterance_id: int, text: str, mode: ProcessingMode, error: str) -> RefinedText:
        log("REFINEMENT_FAILED", utterance_id=utterance_id, error=error)
        return RefinedText(utterance_id, text, RefinementStatus.FAILED, mode, error=error)
