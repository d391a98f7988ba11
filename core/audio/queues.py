"""
Bounded ingest queue for AudioFrames.

Rules:
- Depth measured in seconds (not frame count)
- enqueue() never blocks and never fails: on overflow the OLDEST frames
  are dropped to keep audio fresh, and the drop is counted as an overrun
- Deterministic, synchronous behavior
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from audio.frames import AudioFrame
from constants import AUDIO_FRAME_DURATION_S


@dataclass
class DropCounters:
    """Drop counters for observability."""
    overrun: int = 0


class AudioFrameQueue:
    """
    Bounded FIFO queue for AudioFrame objects.

    Capacity is max_depth_s worth of frames (at least one frame).
    """

    def __init__(self, *, max_depth_s: float, frame_duration_s: float = AUDIO_FRAME_DURATION_S) -> None:
        if max_depth_s <= 0:
            raise ValueError("max_depth_s must be > 0")

        self._frame_duration_s = frame_duration_s
        self._capacity = max(1, int(round(max_depth_s / frame_duration_s)))
        self._frames: Deque[AudioFrame] = deque()
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, frame: AudioFrame) -> int:
        """
        Enqueue an AudioFrame.

        Returns:
            Number of old frames dropped to make room (0 or 1).
        """
        dropped = 0
        if len(self._frames) >= self._capacity:
            self._frames.popleft()
            self.drops.overrun += 1
            dropped = 1

        self._frames.append(frame)
        return dropped

    def dequeue(self) -> Optional[AudioFrame]:
        """Dequeue the oldest AudioFrame, or None if empty."""
        if not self._frames:
            return None
        return self._frames.popleft()

    def peek(self) -> Optional[AudioFrame]:
        """View the oldest frame without removing it."""
        return self._frames[0] if self._frames else None

    def clear(self) -> None:
        """Drop all queued frames without counting them as overruns."""
        self._frames.clear()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._frames)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return not self._frames

    @property
    def capacity(self) -> int:
        """Maximum number of frames held."""
        return self._capacity

    def depth_seconds(self) -> float:
        """Queue depth in seconds (num_frames x frame duration)."""
        return len(self._frames) * self._frame_duration_s

    def snapshot(self) -> dict[str, float | int]:
        """Lightweight snapshot for logging / metrics."""
        return {
            "frames": len(self._frames),
            "depth_s": self.depth_seconds(),
            "capacity": self._capacity,
            "dropped_overrun": self.drops.overrun,
        }
