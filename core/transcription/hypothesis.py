"""
Transcription data types.

Hypothesis ordering rules (per utterance):
- sequence_num strictly increases, starting at 1
- at most one is_final=True, and it is always the last one
- a later hypothesis supersedes earlier ones (it is not appended)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from audio.frames import AudioFrame


@dataclass(frozen=True)
class Hypothesis:
    utterance_id: int
    sequence_num: int
    text: str
    is_final: bool


class UtteranceStream:
    """
    Audio of one utterance, handed from the segmenter to ASR while the
    utterance is still being captured.

    The producer calls push() per frame and close() at UtteranceEnded.
    The consumer pulls everything buffered so far with next_batch().

    A stream can be consumed exactly once.
    """

    def __init__(self, utterance_id: int) -> None:
        self.utterance_id = utterance_id
        self._pending: list[AudioFrame] = []
        self._closed = False
        self._claimed = False
        self._wakeup = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, frame: AudioFrame) -> None:
        if self._closed:
            raise RuntimeError(f"utterance {self.utterance_id}: push() after close()")
        self._pending.append(frame)
        self._wakeup.set()

    def close(self) -> None:
        """Mark end of audio. Idempotent."""
        self._closed = True
        self._wakeup.set()

    def claim(self) -> None:
        """Mark the stream as consumed; a second claim raises RuntimeError."""
        if self._claimed:
            raise RuntimeError(f"utterance {self.utterance_id}: stream already consumed")
        self._claimed = True

    async def next_batch(self) -> Optional[list[AudioFrame]]:
        """
        Wait for new frames and return all of them.

        Returns None once the stream is closed and fully drained.
        """
        while not self._pending:
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()

        batch, self._pending = self._pending, []
        return batch
