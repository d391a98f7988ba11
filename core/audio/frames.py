"""
AudioFrame: the unit of audio moving through the dictation pipeline.

Frames are immutable; segmentation and transcription only ever hold
references to them.
"""

from __future__ import annotations
from dataclasses import dataclass

from constants import AUDIO_SAMPLE_WIDTH_BYTES


@dataclass(frozen=True)
class AudioFrame:
    """
    One fixed-size block of captured audio.

    sequence_num:
        Monotonic counter assigned by the capture source, starting anywhere.

    pcm_bytes:
        PCM16 little-endian mono samples, normally
        constants.AUDIO_BYTES_PER_FRAME_PCM bytes.

    ts_ms:
        Monotonic capture timestamp in milliseconds.
    """
    sequence_num: int
    pcm_bytes: bytes
    ts_ms: int

    def __post_init__(self) -> None:
        if len(self.pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES:
            raise ValueError("pcm_bytes must hold whole PCM16 samples")

    @property
    def num_samples(self) -> int:
        return len(self.pcm_bytes) // AUDIO_SAMPLE_WIDTH_BYTES
