"""
Utterance segmentation.

AudioSegmenter turns a stream of AudioFrames into utterance lifecycle events:

    push(frame) -> [UtteranceStarted, UtteranceAudio..., UtteranceEnded]

Policy (all durations configurable):
- An utterance starts after `debounce` consecutive voiced frames, so
  single-frame transients never open one.
- A rolling pre-roll buffer of the frames preceding the onset is prepended,
  so the utterance includes the speech lead-in.
- An utterance ends after `hangover` consecutive silent frames, on
  force_flush(), or when the max-duration cap is hit (policy, not an error).

Invariants:
- At most one utterance is active at a time.
- utterance_id is monotonically increasing, starting at 1, never reused.
- The Utterance carried by UtteranceEnded is immutable.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional, Union

from audio.frames import AudioFrame
from audio.pcm import pcm16le_to_float32
from audio.vad import EnergyVAD
from constants import (
    AUDIO_FRAME_MS,
    MAX_UTTERANCE_S,
    PRE_ROLL_MS,
    VAD_DEBOUNCE_MS,
    VAD_HANGOVER_MS,
    VAD_RMS_THRESHOLD,
    frames_to_seconds,
    ms_to_frames,
)
from observability.logger import log


class EndReason(str, Enum):
    """Why an utterance was closed."""

    SILENCE = "silence"
    MAX_DURATION = "max_duration"
    FLUSH = "flush"


@dataclass(frozen=True)
class Utterance:
    """
    One bounded span of speech.

    frames includes the pre-roll (the first `preroll_frames` entries).
    """
    utterance_id: int
    frames: tuple[AudioFrame, ...]
    preroll_frames: int
    end_reason: EndReason

    @property
    def duration_s(self) -> float:
        return frames_to_seconds(len(self.frames))

    @property
    def start_ts_ms(self) -> int:
        return self.frames[0].ts_ms if self.frames else 0


@dataclass(frozen=True)
class UtteranceStarted:
    utterance_id: int
    preroll_frames: int = 0


@dataclass(frozen=True)
class UtteranceAudio:
    utterance_id: int
    frame: AudioFrame


@dataclass(frozen=True)
class UtteranceEnded:
    utterance_id: int
    utterance: Utterance


SegmenterEvent = Union[UtteranceStarted, UtteranceAudio, UtteranceEnded]


class AudioSegmenter:
    """
    Frame-by-frame VAD segmenter with pre-roll, debounce and hangover.

    Synchronous and deterministic: the same frame sequence always produces
    the same events.
    """

    def __init__(
        self,
        *,
        rms_threshold: float = VAD_RMS_THRESHOLD,
        debounce_ms: int = VAD_DEBOUNCE_MS,
        hangover_ms: int = VAD_HANGOVER_MS,
        pre_roll_ms: int = PRE_ROLL_MS,
        max_utterance_s: float = MAX_UTTERANCE_S,
        frame_ms: int = AUDIO_FRAME_MS,
    ) -> None:
        self._vad = EnergyVAD(rms_threshold)
        self._debounce_frames = ms_to_frames(debounce_ms, frame_ms=frame_ms)
        self._hangover_frames = ms_to_frames(hangover_ms, frame_ms=frame_ms)
        self._max_frames = max(1, int(max_utterance_s * 1000) // frame_ms)

        self._preroll: Deque[AudioFrame] = deque(maxlen=max(0, ms_to_frames(pre_roll_ms, frame_ms=frame_ms)))
        if self._max_frames < (self._preroll.maxlen or 0) + self._debounce_frames:
            # The whole lead-in must fit in the first utterance
            raise ValueError("max_utterance_s must cover pre_roll_ms + debounce_ms")
        self._onset: list[AudioFrame] = []

        self._next_id = 1
        self._active_id: Optional[int] = None
        self._active_frames: list[AudioFrame] = []
        self._active_preroll = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active_utterance_id(self) -> Optional[int]:
        """Id of the utterance currently being captured, if any."""
        return self._active_id

    def push(self, frame: AudioFrame) -> list[SegmenterEvent]:
        """Consume one frame and return the lifecycle events it caused."""
        voiced = self._vad.observe(pcm16le_to_float32(frame.pcm_bytes))

        if self._active_id is None:
            return self._push_idle(frame, voiced)
        return self._push_active(frame)

    def force_flush(self) -> list[SegmenterEvent]:
        """
        Close the active utterance immediately (end of input, backgrounding).

        Accumulated audio is treated as final. Pending onset frames that never
        reached the debounce length are discarded as a transient.
        """
        self._onset.clear()
        if self._active_id is None:
            return []
        return [self._end(EndReason.FLUSH)]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _push_idle(self, frame: AudioFrame, voiced: bool) -> list[SegmenterEvent]:
        if not voiced:
            # Transient onset frames fall back into the pre-roll history
            for pending in self._onset:
                self._preroll.append(pending)
            self._onset.clear()
            self._preroll.append(frame)
            return []

        self._onset.append(frame)
        if len(self._onset) < self._debounce_frames:
            return []

        utterance_id = self._next_id
        self._next_id += 1
        self._active_id = utterance_id
        self._active_preroll = len(self._preroll)
        lead_in = list(self._preroll) + self._onset
        self._preroll.clear()
        self._onset = []
        self._active_frames = []

        log(
            "UTTERANCE_STARTED",
            utterance_id=utterance_id,
            preroll_frames=self._active_preroll,
            onset_ts_ms=lead_in[self._active_preroll].ts_ms,
        )

        events: list[SegmenterEvent] = [UtteranceStarted(utterance_id, self._active_preroll)]
        for f in lead_in:
            events.extend(self._append(f))
        return events

    def _push_active(self, frame: AudioFrame) -> list[SegmenterEvent]:
        events = self._append(frame)
        if events and isinstance(events[-1], UtteranceEnded):
            return events
        if self._vad.silent_run >= self._hangover_frames:
            events.append(self._end(EndReason.SILENCE))
        return events

    def _append(self, frame: AudioFrame) -> list[SegmenterEvent]:
        assert self._active_id is not None
        self._active_frames.append(frame)
        events: list[SegmenterEvent] = [UtteranceAudio(self._active_id, frame)]
        if len(self._active_frames) >= self._max_frames:
            events.append(self._end(EndReason.MAX_DURATION))
        return events

    def _end(self, reason: EndReason) -> UtteranceEnded:
        assert self._active_id is not None
        utterance = Utterance(
            utterance_id=self._active_id,
            frames=tuple(self._active_frames),
            preroll_frames=self._active_preroll,
            end_reason=reason,
        )
        log(
            "UTTERANCE_ENDED",
            utterance_id=utterance.utterance_id,
            reason=reason.value,
            frames=len(utterance.frames),
            duration_s=utterance.duration_s,
        )
        self._active_id = None
        self._active_frames = []
        self._active_preroll = 0
        self._vad.reset()
        return UtteranceEnded(utterance.utterance_id, utterance)
