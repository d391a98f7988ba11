"""
Pipeline orchestrator: audio in, ordered text out.

Responsibilities:
- Accept audio without ever suspending the capture source (bounded,
  drop-oldest ingest queue + OVERRUN notices)
- Drive the AudioSegmenter and open one transcription task per utterance
- Forward partial and raw final hypotheses immediately
- Submit final transcripts to refinement, cancel stale refinements
  (latest wins), and fall back to raw text on any refinement failure
- Commit text strictly in utterance order
- Own per-utterance state

Non-responsibilities:
- No inference, no model loading decisions (engines / ModelLifecycleManager)
- No platform audio capture or text injection (host / OutputConsumer)

Failure containment:
- Any failure of one utterance ends that utterance only.
- Model failures are reported once per load: LoadError as a LOAD_ERROR
  notice, ModelFatalError as a FATAL notice plus the host callback.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from adapters.asr.base import ASRCapability
from adapters.llm.base import LMCapability
from audio.frames import AudioFrame
from audio.queues import AudioFrameQueue
from audio.segmenter import (
    AudioSegmenter,
    SegmenterEvent,
    UtteranceAudio,
    UtteranceEnded,
    UtteranceStarted,
)
from config import PipelineConfig
from errors import LoadError, ModelFatalError, PipelineError
from models.lifecycle import MemoryPressureLevel, ModelKind, ModelLifecycleManager, ModelSpec
from observability.logger import log
from observability.metrics import emit_counter
from orchestrator.enums.state import UtteranceState
from orchestrator.events import Notice, NoticeKind, OutputConsumer, OutputEvent, OutputKind
from orchestrator.ordering import OrderedReleaseBuffer
from orchestrator.state_dataclass import UtteranceRecord
from refinement.cancellation import CancellationManager
from refinement.engine import RefinedText, RefinementEngine, RefinementStatus
from refinement.modes import ProcessingMode
from refinement.prompts import PromptTemplate
from transcription.engine import TranscriptionEngine
from transcription.hypothesis import Hypothesis, UtteranceStream


FatalHook = Callable[[ModelKind, ModelFatalError], None]

_TERMINAL_FOR_STATUS: dict[RefinementStatus, UtteranceState] = {
    RefinementStatus.COMPLETED: UtteranceState.COMPLETED,
    RefinementStatus.CANCELLED: UtteranceState.CANCELLED,
    RefinementStatus.FAILED: UtteranceState.FAILED,
}


class PipelineOrchestrator:
    """
    Wires segmenter, engines and model manager for one audio stream.

    Usage:
        pipeline = PipelineOrchestrator(config, asr=asr, lm=lm, consumer=sink)
        await pipeline.start()
        pipeline.push_audio(frame)      # from the capture callback
        ...
        await pipeline.stop()
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        asr: ASRCapability,
        lm: Optional[LMCapability],
        consumer: OutputConsumer,
        templates: Optional[dict[ProcessingMode, PromptTemplate]] = None,
        on_fatal: Optional[FatalHook] = None,
    ) -> None:
        self._config = config
        self._consumer = consumer
        self._on_fatal_hook = on_fatal

        refinement_enabled = config.refinement_enabled and lm is not None
        specs = [
            ModelSpec(
                kind=ModelKind.TRANSCRIPTION,
                capability=asr,
                path=config.asr_model_path,
                footprint_mb=config.asr_footprint_mb,
                essential=True,
                eager=True,
            )
        ]
        if refinement_enabled:
            assert lm is not None
            specs.append(
                ModelSpec(
                    kind=ModelKind.REFINEMENT,
                    capability=lm,
                    path=config.lm_model_path,
                    footprint_mb=config.lm_footprint_mb,
                    idle_timeout_s=config.lm_idle_timeout_s,
                )
            )

        self._models = ModelLifecycleManager(
            specs,
            memory_budget_mb=config.memory_budget_mb,
            policy_interval_s=config.model_policy_interval_s,
            on_fatal=self._on_model_fatal,
            on_load_error=self._on_model_load_error,
        )
        self._transcriber = TranscriptionEngine(
            asr,
            self._models,
            workers=config.asr_workers,
            fanout=config.asr_fanout,
            acquire_timeout_s=config.model_acquire_timeout_s,
            vocabulary=config.vocabulary,
        )
        self._refiner: Optional[RefinementEngine] = None
        if refinement_enabled:
            assert lm is not None
            self._refiner = RefinementEngine(
                lm,
                self._models,
                workers=config.lm_workers,
                acquire_timeout_s=config.model_acquire_timeout_s,
                cancel_ack_timeout_ms=config.cancel_ack_timeout_ms,
                max_tokens=config.lm_max_tokens,
                default_mode=ProcessingMode(config.processing_mode),
                templates=templates,
                language=config.language,
            )

        self._segmenter = AudioSegmenter(
            rms_threshold=config.vad_rms_threshold,
            debounce_ms=config.vad_debounce_ms,
            hangover_ms=config.vad_hangover_ms,
            pre_roll_ms=config.pre_roll_ms,
            max_utterance_s=config.max_utterance_s,
        )
        self._ingest = AudioFrameQueue(max_depth_s=config.ingest_queue_max_s)
        self._ingest_ready = asyncio.Event()
        self._ingest_task: Optional[asyncio.Task[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._cancellation = CancellationManager(ack_timeout_ms=config.cancel_ack_timeout_ms)
        self._commits: OrderedReleaseBuffer[RefinedText] = OrderedReleaseBuffer(self._emit_commit)

        self._records: dict[int, UtteranceRecord] = {}
        self._streams: dict[int, UtteranceStream] = {}
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._results: dict[int, RefinedText] = {}
        self._refining: set[int] = set()
        self._latest_final_id = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start model policy (eager ASR load) and the ingest loop."""
        self._loop = asyncio.get_running_loop()
        await self._models.start()
        if self._ingest_task is None:
            self._ingest_task = asyncio.create_task(self._ingest_loop())
        log("PIPELINE_STARTED", refinement=self._refiner is not None)

    async def stop(self) -> None:
        """Flush, wait for in-flight utterances, then release everything."""
        await self.drain()

        if self._ingest_task is not None:
            self._ingest_task.cancel()
            try:
                await self._ingest_task
            except asyncio.CancelledError:
                pass
            self._ingest_task = None

        self._cancellation.clear_all()
        await self._models.stop()
        self._transcriber.close()
        if self._refiner is not None:
            self._refiner.close()
        log("PIPELINE_STOPPED", utterances=len(self._records))

    # ------------------------------------------------------------------
    # Audio ingest
    # ------------------------------------------------------------------

    def push_audio(self, frame: AudioFrame) -> None:
        """
        Accept one captured frame. Never suspends, never raises on overflow.

        Must be called on the event loop thread; use push_audio_threadsafe()
        from capture callbacks.
        """
        dropped = self._ingest.enqueue(frame)
        if dropped:
            emit_counter("audio_frames_dropped", dropped, total=self._ingest.drops.overrun)
            self._notify(Notice(
                kind=NoticeKind.OVERRUN,
                message="ingest queue full, dropped oldest audio",
                dropped_frames=self._ingest.drops.overrun,
            ))
        self._ingest_ready.set()

    def push_audio_threadsafe(self, frame: AudioFrame) -> None:
        if self._loop is None:
            raise RuntimeError("pipeline not started")
        self._loop.call_soon_threadsafe(self.push_audio, frame)

    async def _ingest_loop(self) -> None:
        while True:
            frame = self._ingest.dequeue()
            if frame is None:
                self._ingest_ready.clear()
                await self._ingest_ready.wait()
                continue
            self._handle_segmenter_events(self._segmenter.push(frame))
            # Let transcription tasks interleave with a backlog
            await asyncio.sleep(0)

    def _process_queued_frames(self) -> None:
        while True:
            frame = self._ingest.dequeue()
            if frame is None:
                return
            self._handle_segmenter_events(self._segmenter.push(frame))

    # ------------------------------------------------------------------
    # Host controls
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """End of input: segment queued audio and close the active utterance."""
        self._process_queued_frames()
        self._handle_segmenter_events(self._segmenter.force_flush())

    async def drain(self) -> None:
        """flush(), then wait until every utterance reached a terminal state."""
        self.flush()
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def on_memory_pressure(
        self,
        level: MemoryPressureLevel = MemoryPressureLevel.WARNING,
    ) -> list[ModelKind]:
        """Forward the host memory-pressure signal to the model manager."""
        return self._models.on_memory_pressure(level)

    def retry_model(self, kind: ModelKind) -> None:
        """Re-enable a model kind disabled by a load failure."""
        self._models.retry(kind)

    def utterance_states(self) -> dict[int, UtteranceState]:
        return {uid: rec.state for uid, rec in self._records.items()}

    def results(self) -> dict[int, RefinedText]:
        return dict(self._results)

    @property
    def models(self) -> ModelLifecycleManager:
        return self._models

    def snapshot(self) -> dict[str, object]:
        return {
            "ingest": self._ingest.snapshot(),
            "models": self._models.snapshot(),
            "pending_commits": self._commits.pending(),
            "refining": sorted(self._refining),
        }

    # ------------------------------------------------------------------
    # Segmenter events
    # ------------------------------------------------------------------

    def _handle_segmenter_events(self, events: list[SegmenterEvent]) -> None:
        for event in events:
            if isinstance(event, UtteranceStarted):
                self._open_utterance(event.utterance_id)
            elif isinstance(event, UtteranceAudio):
                self._streams[event.utterance_id].push(event.frame)
            elif isinstance(event, UtteranceEnded):
                self._close_utterance(event.utterance_id)

    def _open_utterance(self, utterance_id: int) -> None:
        self._records[utterance_id] = UtteranceRecord(utterance_id)
        stream = UtteranceStream(utterance_id)
        self._streams[utterance_id] = stream
        # One utterance is captured at a time, so start order == end order
        self._commits.reserve(utterance_id)
        task = asyncio.create_task(self._run_utterance(utterance_id, stream))
        self._tasks[utterance_id] = task
        task.add_done_callback(lambda _t, uid=utterance_id: self._tasks.pop(uid, None))

    def _close_utterance(self, utterance_id: int) -> None:
        stream = self._streams.pop(utterance_id)
        stream.close()
        record = self._records[utterance_id]
        if record.state is UtteranceState.CAPTURING:
            self._transition(record, UtteranceState.TRANSCRIBING)

    # ------------------------------------------------------------------
    # Per-utterance flow
    # ------------------------------------------------------------------

    async def _run_utterance(self, utterance_id: int, stream: UtteranceStream) -> None:
        record = self._records[utterance_id]
        try:
            final = await self._transcribe(utterance_id, stream)
            if final is None:
                return
            await self._refine(record, final)
        except PipelineError as e:
            self._fail(record, str(e))
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Contained per utterance; the pipeline keeps running
            log("UTTERANCE_TASK_ERROR", utterance_id=utterance_id, error=f"{type(e).__name__}: {e}")
            self._fail(record, f"{type(e).__name__}: {e}")

    async def _transcribe(self, utterance_id: int, stream: UtteranceStream) -> Optional[Hypothesis]:
        final: Optional[Hypothesis] = None
        async for hyp in self._transcriber.transcribe(stream):
            if hyp.is_final:
                final = hyp
            else:
                self._output(OutputEvent(
                    kind=OutputKind.PARTIAL,
                    utterance_id=utterance_id,
                    text=hyp.text,
                    sequence_num=hyp.sequence_num,
                ))
        if final is None:
            raise PipelineError(f"utterance {utterance_id}: transcription ended without a final hypothesis")

        self._output(OutputEvent(
            kind=OutputKind.FINAL_RAW,
            utterance_id=utterance_id,
            text=final.text,
            sequence_num=final.sequence_num,
        ))

        record = self._records[utterance_id]
        record.final_text = final.text
        if not final.text:
            self._transition(record, UtteranceState.COMPLETED)
            self._commits.resolve(utterance_id, None)
            return None
        return final

    async def _refine(self, record: UtteranceRecord, final: Hypothesis) -> None:
        uid = record.utterance_id
        self._latest_final_id = max(self._latest_final_id, uid)

        if self._refiner is None:
            self._finish(record, RefinedText(uid, final.text, RefinementStatus.COMPLETED, ProcessingMode.RAW))
            return

        if self._config.latest_wins:
            for earlier in sorted(self._refining):
                if earlier < uid:
                    self._cancellation.request_cancel(earlier)

        self._transition(record, UtteranceState.REFINING)
        token = self._cancellation.token_for(uid)
        if self._config.latest_wins and uid < self._latest_final_id:
            # A later utterance already reached its final transcript
            self._cancellation.request_cancel(uid)

        self._refining.add(uid)
        try:
            result = await self._refiner.refine(final.text, token, utterance_id=uid)
        finally:
            self._refining.discard(uid)
            self._cancellation.notify_ack(uid)
        self._finish(record, result)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _finish(self, record: UtteranceRecord, result: RefinedText) -> None:
        self._results[record.utterance_id] = result
        if record.state is UtteranceState.REFINING:
            self._transition(record, _TERMINAL_FOR_STATUS[result.status])
        else:
            self._transition(record, UtteranceState.COMPLETED)
        self._commits.resolve(record.utterance_id, result)

    def _fail(self, record: UtteranceRecord, reason: str) -> None:
        if record.terminal:
            return
        record.error = reason
        self._transition(record, UtteranceState.FAILED)
        self._notify(Notice(kind=NoticeKind.ERROR, message=reason, utterance_id=record.utterance_id))
        self._commits.resolve(record.utterance_id, None)

    def _transition(self, record: UtteranceRecord, target: UtteranceState) -> None:
        previous = record.advance(target)
        log(
            "UTTERANCE_STATE",
            utterance_id=record.utterance_id,
            from_state=previous.value,
            to_state=target.value,
        )

    def _emit_commit(self, utterance_id: int, result: RefinedText) -> None:
        log(
            "COMMIT",
            utterance_id=utterance_id,
            refined=result.refined,
            status=result.status.value,
            chars=len(result.text),
        )
        self._output(OutputEvent(
            kind=OutputKind.COMMIT,
            utterance_id=utterance_id,
            text=result.text,
            refined=result.refined,
        ))

    def _on_model_load_error(self, kind: ModelKind, error: LoadError) -> None:
        self._notify(Notice(
            kind=NoticeKind.LOAD_ERROR,
            message=f"{kind.value} model disabled: {error}",
            model_kind=kind.value,
        ))

    def _on_model_fatal(self, kind: ModelKind, error: ModelFatalError) -> None:
        self._notify(Notice(kind=NoticeKind.FATAL, message=f"{kind.value}: {error}", model_kind=kind.value))
        if self._on_fatal_hook is not None:
            self._on_fatal_hook(kind, error)

    # ------------------------------------------------------------------
    # Consumer delivery
    # ------------------------------------------------------------------

    def _output(self, event: OutputEvent) -> None:
        try:
            self._consumer.on_output(event)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log("CONSUMER_ERROR", channel="output", utterance_id=event.utterance_id, error=str(e))

    def _notify(self, notice: Notice) -> None:
        log(
            "NOTICE",
            kind=notice.kind.value,
            message=notice.message,
            utterance_id=notice.utterance_id,
            dropped_frames=notice.dropped_frames,
            model_kind=notice.model_kind,
        )
        try:
            self._consumer.on_notice(notice)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log("CONSUMER_ERROR", channel="notice", error=str(e))
