"""
Streaming transcription engine.

Responsibilities:
- Acquire the TRANSCRIPTION model slot per utterance (bounded wait)
- Bound concurrent decoding to the configured fan-out (FIFO admission)
- Run blocking decoder calls on a dedicated ASR thread pool
- Turn decoder output into ordered Hypotheses (partials, then one final)
- Retry transient DecodeErrors once

Non-responsibilities:
- No segmentation / endpointing (AudioSegmenter)
- No refinement, no commit ordering (PipelineOrchestrator)
- No model loading policy (ModelLifecycleManager)
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, AsyncIterator, Callable, Mapping, Optional

from adapters.asr.base import ASRCapability
from constants import ASR_FANOUT, ASR_WORKERS, MODEL_ACQUIRE_TIMEOUT_S
from errors import DecodeError, TranscriptionFailed
from models.lifecycle import ModelKind, ModelLifecycleManager
from observability.logger import log
from observability.metrics import timed
from orchestrator.retry import (
    FailureType,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from transcription.hypothesis import Hypothesis, UtteranceStream
from transcription.vocabulary import VocabularyReplacer


class TranscriptionEngine:
    """
    Turns UtteranceStreams into Hypothesis streams.

    Usage:
        async for hyp in engine.transcribe(stream):
            ...
    """

    def __init__(
        self,
        asr: ASRCapability,
        models: ModelLifecycleManager,
        *,
        workers: int = ASR_WORKERS,
        fanout: int = ASR_FANOUT,
        acquire_timeout_s: float = MODEL_ACQUIRE_TIMEOUT_S,
        vocabulary: Optional[Mapping[str, str]] = None,
    ) -> None:
        if workers < 1 or fanout < 1:
            raise ValueError("workers and fanout must be >= 1")
        self._asr = asr
        self._models = models
        self._acquire_timeout_s = acquire_timeout_s
        self._vocabulary = VocabularyReplacer(vocabulary)

        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="asr")
        self._fanout = asyncio.Semaphore(fanout)

    def close(self) -> None:
        """Release the ASR worker pool (does not wait for running decodes)."""
        self._executor.shutdown(wait=False)

    async def transcribe(self, stream: UtteranceStream) -> AsyncIterator[Hypothesis]:
        """
        Decode one utterance incrementally.

        Lazy: nothing happens until the first item is requested. Finite: ends
        after the final Hypothesis. A stream can only be transcribed once.

        Raises:
            RuntimeError if the stream was already consumed.
            ModelUnavailable if the ASR model is not READY in time (no hypotheses).
            LoadError / ModelFatalError if the ASR model could not be loaded.
            TranscriptionFailed after a DecodeError survived its retry.
        """
        stream.claim()
        uid = stream.utterance_id

        async with self._fanout:
            slot = await self._models.acquire(ModelKind.TRANSCRIPTION, timeout=self._acquire_timeout_s)
            try:
                session = await self._run(self._asr.open_session, slot.handle)
                try:
                    sequence_num = 0
                    last_text = ""
                    while True:
                        batch = await stream.next_batch()
                        if batch is None:
                            break
                        text = await self._decode(
                            uid, "decode_incremental", partial(self._asr.decode_incremental, session, batch)
                        )
                        text = self._normalize(text)
                        if text and text != last_text:
                            sequence_num += 1
                            last_text = text
                            yield Hypothesis(uid, sequence_num, text, is_final=False)

                    final_text = await self._decode(
                        uid, "decode_final", partial(self._asr.decode_final, session)
                    )
                    sequence_num += 1
                    log(
                        "ASR_FINAL",
                        utterance_id=uid,
                        sequence_num=sequence_num,
                        chars=len(final_text),
                    )
                    yield Hypothesis(uid, sequence_num, self._normalize(final_text), is_final=True)
                finally:
                    await self._run(self._asr.close_session, session)
            finally:
                self._models.release(slot)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _normalize(self, text: str) -> str:
        return self._vocabulary.apply(text.strip())

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    async def _decode(self, utterance_id: int, op: str, call: Callable[[], str]) -> str:
        attempt = reset_attempt()
        while True:
            try:
                with timed("asr_" + op, utterance_id=utterance_id):
                    return await self._run(call)
            except DecodeError as e:
                if not should_retry(failure=FailureType.DECODE_ERROR, attempt=attempt):
                    log("ASR_FAILED", utterance_id=utterance_id, op=op, error=str(e))
                    raise TranscriptionFailed(utterance_id, f"{op}: {e}") from e

                delay_ms = get_retry_delay_ms(failure=FailureType.DECODE_ERROR, attempt=attempt)
                log(
                    "ASR_DECODE_RETRY",
                    utterance_id=utterance_id,
                    op=op,
                    attempt=attempt.attempt + 1,
                    delay_ms=delay_ms,
                    error=str(e),
                )
                await asyncio.sleep(delay_ms / 1000.0)
                attempt = next_attempt(attempt)
