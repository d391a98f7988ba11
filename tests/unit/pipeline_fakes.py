# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import asyncio
import threading
import time
from typing import Any, Callable, Optional, Sequence

import numpy as np

from adapters.asr.base import ASRCapability
from adapters.llm.base import LMCapability
from audio.frames import AudioFrame
from audio.pcm import make_frame
from constants import AUDIO_FRAME_MS, AUDIO_SAMPLES_PER_FRAME
from errors import DecodeError, GenerationError
from refinement.cancellation import CancellationToken
from refinement.prompts import Prompt


# ---------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------

class FrameSource:
    """Synthetic 20ms frames: loud sine (voiced) or zeros (silent)."""

    def __init__(self) -> None:
        self.seq = 0

    def _next(self, samples: np.ndarray) -> AudioFrame:
        frame = make_frame(self.seq, samples, self.seq * AUDIO_FRAME_MS)
        self.seq += 1
        return frame

    def voiced(self, n: int = 1, amplitude: float = 0.3) -> list[AudioFrame]:
        t = np.arange(AUDIO_SAMPLES_PER_FRAME, dtype=np.float32) / 16000.0
        tone = (amplitude * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
        return [self._next(tone) for _ in range(n)]

    def silent(self, n: int = 1) -> list[AudioFrame]:
        zeros = np.zeros(AUDIO_SAMPLES_PER_FRAME, dtype=np.float32)
        return [self._next(zeros) for _ in range(n)]

    def seconds_voiced(self, seconds: float) -> list[AudioFrame]:
        return self.voiced(int(seconds * 1000) // AUDIO_FRAME_MS)

    def seconds_silent(self, seconds: float) -> list[AudioFrame]:
        return self.silent(int(seconds * 1000) // AUDIO_FRAME_MS)


# ---------------------------------------------------------------------
# ASR
# ---------------------------------------------------------------------

class FakeASR(ASRCapability):
    """
    One word per 10 frames seen; final text is "utt<first frame seq>".

    decode_failures: number of upcoming decode calls that raise DecodeError.
    """

    def __init__(
        self,
        *,
        load_delay_s: float = 0.0,
        load_error: Optional[BaseException] = None,
        decode_failures: int = 0,
        final_text: Optional[str] = None,
    ) -> None:
        self.load_delay_s = load_delay_s
        self.load_error = load_error
        self.decode_failures = decode_failures
        self.final_text = final_text
        self.loads = 0
        self.unloads = 0
        self.open_sessions = 0
        self.closed_sessions = 0
        self._lock = threading.Lock()

    def load_model(self, path: str) -> Any:
        time.sleep(self.load_delay_s)
        with self._lock:
            self.loads += 1
        if self.load_error is not None:
            raise self.load_error
        return {"path": path}

    def unload_model(self, handle: Any) -> None:
        with self._lock:
            self.unloads += 1

    def open_session(self, handle: Any) -> Any:
        with self._lock:
            self.open_sessions += 1
        return {"frames": 0, "first_seq": None}

    def _maybe_fail(self) -> None:
        with self._lock:
            if self.decode_failures > 0:
                self.decode_failures -= 1
                raise DecodeError("injected decode failure")

    def decode_incremental(self, session: Any, frames: Sequence[AudioFrame]) -> str:
        self._maybe_fail()
        if session["first_seq"] is None and frames:
            session["first_seq"] = frames[0].sequence_num
        session["frames"] += len(frames)
        return " ".join(["word"] * (session["frames"] // 10))

    def decode_final(self, session: Any) -> str:
        self._maybe_fail()
        if self.final_text is not None:
            return self.final_text
        return f"utt{session['first_seq']}"

    def close_session(self, session: Any) -> None:
        with self._lock:
            self.closed_sessions += 1


# ---------------------------------------------------------------------
# LM
# ---------------------------------------------------------------------

class FakeLM(LMCapability):
    """
    Returns "REFINED(<user prompt>)".

    delays: per user-prompt generation time, spent in 5ms "token" steps with
    a cancellation check at each step (unless ignore_cancel).
    """

    def __init__(
        self,
        *,
        delays: Optional[dict[str, float]] = None,
        default_delay_s: float = 0.0,
        generation_failures: int = 0,
        output: Optional[str] = None,
        ignore_cancel: bool = False,
        load_error: Optional[BaseException] = None,
        load_delay_s: float = 0.0,
    ) -> None:
        self.delays = delays or {}
        self.default_delay_s = default_delay_s
        self.generation_failures = generation_failures
        self.output = output
        self.ignore_cancel = ignore_cancel
        self.load_error = load_error
        self.load_delay_s = load_delay_s
        self.loads = 0
        self.unloads = 0
        self.calls = 0
        self.prompts: list[Prompt] = []
        self.finished: list[str] = []
        self._lock = threading.Lock()

    def load_model(self, path: str) -> Any:
        time.sleep(self.load_delay_s)
        with self._lock:
            self.loads += 1
        if self.load_error is not None:
            raise self.load_error
        return {"path": path}

    def unload_model(self, handle: Any) -> None:
        with self._lock:
            self.unloads += 1

    def generate(
        self,
        handle: Any,
        prompt: Prompt,
        token: CancellationToken,
        *,
        max_tokens: int,
    ) -> str:
        with self._lock:
            self.calls += 1
            self.prompts.append(prompt)
            if self.generation_failures > 0:
                self.generation_failures -= 1
                raise GenerationError("injected generation failure")

        deadline = time.monotonic() + self.delays.get(prompt.user, self.default_delay_s)
        while time.monotonic() < deadline:
            if not self.ignore_cancel:
                token.raise_if_cancelled()
            time.sleep(0.005)
        if not self.ignore_cancel:
            token.raise_if_cancelled()

        with self._lock:
            self.finished.append(prompt.user)
        if self.output is not None:
            return self.output
        return f"REFINED({prompt.user})"


# ---------------------------------------------------------------------
# Consumer
# ---------------------------------------------------------------------

class RecordingConsumer:
    def __init__(self) -> None:
        self.outputs: list[Any] = []
        self.notices: list[Any] = []

    def on_output(self, event: Any) -> None:
        self.outputs.append(event)

    def on_notice(self, notice: Any) -> None:
        self.notices.append(notice)

    def of_kind(self, kind: Any) -> list[Any]:
        return [e for e in self.outputs if e.kind is kind]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
