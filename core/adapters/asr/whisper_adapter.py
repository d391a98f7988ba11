# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false
"""
faster-whisper ASR capability.

This module is deliberately "dumb":
- Accepts PCM16 (16kHz, mono) AudioFrames
- Converts to Whisper input format
- Runs transcription
- Returns text

Must NOT:
- Know about utterance ordering or fan-out
- Perform endpointing / silence detection
- Retry or emit pipeline events
- Decide when the model is loaded

Implementation notes:
- Whisper is not truly streaming; a "partial" is a re-decode of the session
  buffer. Re-decoding is skipped until at least `partial_interval_s` of new
  audio arrived, the last partial is returned in between.
- Whisper is not bitwise-deterministic; the pipeline guarantees ordering,
  not identical transcripts across runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
from faster_whisper import WhisperModel

from adapters.asr.base import ASRCapability
from audio.frames import AudioFrame
from audio.pcm import frames_to_float32
from constants import AUDIO_SAMPLE_RATE_HZ
from errors import DecodeError, LoadError


@dataclass
class WhisperSession:
    """Per-utterance decoder state."""
    model: WhisperModel
    chunks: list[np.ndarray] = field(default_factory=list)
    samples: int = 0
    samples_at_last_decode: int = 0
    last_text: str = ""

    def audio(self) -> np.ndarray:
        if not self.chunks:
            return np.zeros((0,), dtype=np.float32)
        if len(self.chunks) > 1:
            self.chunks = [np.concatenate(self.chunks, axis=0)]
        return self.chunks[0]


class FasterWhisperASR(ASRCapability):
    """
    ASRCapability backed by faster-whisper (CTranslate2).

    One loaded WhisperModel serves every session; sessions only hold audio.
    """

    def __init__(
        self,
        *,
        device: str = "auto",
        compute_type: str = "default",
        language: str | None = "en",
        beam_size: int = 1,
        partial_interval_s: float = 0.5,
    ) -> None:
        self._device = device
        self._compute_type = compute_type
        self._language = language
        self._beam_size = beam_size
        self._partial_interval_samples = int(partial_interval_s * AUDIO_SAMPLE_RATE_HZ)

    # -------------------------------------------------------------------------
    # Model lifecycle
    # -------------------------------------------------------------------------

    def load_model(self, path: str) -> WhisperModel:
        """path is a local model directory or a faster-whisper size name ("base.en")."""
        try:
            return WhisperModel(path, device=self._device, compute_type=self._compute_type)
        except MemoryError:
            raise
        except (RuntimeError, ValueError, OSError) as e:
            raise LoadError(f"cannot load whisper model {path!r}: {e}") from e

    def unload_model(self, handle: Any) -> None:
        # CTranslate2 frees the weights once the last reference is gone
        del handle

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def open_session(self, handle: Any) -> WhisperSession:
        return WhisperSession(model=handle)

    def decode_incremental(self, session: Any, frames: Sequence[AudioFrame]) -> str:
        audio = frames_to_float32(frames)
        samples = session.samples + int(audio.shape[0])

        if samples - session.samples_at_last_decode < self._partial_interval_samples:
            if audio.size:
                session.chunks.append(audio)
                session.samples = samples
            return session.last_text

        # Decode before touching the session so a DecodeError leaves it unchanged
        buffered = np.concatenate([session.audio(), audio], axis=0)
        text = self._transcribe(session.model, buffered)
        session.chunks = [buffered]
        session.samples = samples
        session.samples_at_last_decode = samples
        session.last_text = text
        return text

    def decode_final(self, session: Any) -> str:
        if session.samples == 0:
            return ""
        if session.samples == session.samples_at_last_decode:
            return session.last_text
        text = self._transcribe(session.model, session.audio())
        session.samples_at_last_decode = session.samples
        session.last_text = text
        return text

    def close_session(self, session: Any) -> None:
        session.chunks.clear()

    # -------------------------------------------------------------------------
    # Transcription
    # -------------------------------------------------------------------------

    def _transcribe(self, model: WhisperModel, audio: np.ndarray) -> str:
        """
        Blocking decode of a float32 buffer.

        Notes:
        - No VAD/endpointing applied (vad_filter=False is intentional)
        - temperature=0 for the most stable partials
        """
        try:
            segments_iter, _info = model.transcribe(
                audio,
                language=self._language,
                beam_size=self._beam_size,
                temperature=0.0,
                vad_filter=False,
                condition_on_previous_text=False,
            )
            parts = [str(seg.text).strip() for seg in segments_iter]
        except MemoryError:
            raise
        except (RuntimeError, ValueError) as e:
            raise DecodeError(f"whisper decode failed: {e!r}") from e

        return " ".join(p for p in parts if p).strip()
