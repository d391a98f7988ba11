"""PCM conversion utilities."""
import numpy as np

from audio.frames import AudioFrame


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed frame upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    return audio_i16.astype(np.float32) / 32768.0


def float32_to_pcm16le(audio_f32: np.ndarray) -> bytes:
    """Inverse of pcm16le_to_float32 (clipped, rounded)."""
    audio_f32 = np.clip(audio_f32, -1.0, 1.0)
    return np.round(audio_f32 * 32767.0).astype("<i2").tobytes()


def frames_to_float32(frames) -> np.ndarray:
    """Concatenate the samples of an iterable of AudioFrames."""
    chunks = [pcm16le_to_float32(f.pcm_bytes) for f in frames]
    if not chunks:
        return np.zeros((0,), dtype=np.float32)
    return np.concatenate(chunks, axis=0)


def rms(audio_f32: np.ndarray) -> float:
    """Root-mean-square energy; 0.0 for empty input."""
    if audio_f32.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(audio_f32 * audio_f32)))


def make_frame(sequence_num: int, audio_f32: np.ndarray, ts_ms: int) -> AudioFrame:
    """Build an AudioFrame from float32 samples."""
    return AudioFrame(
        sequence_num=sequence_num,
        pcm_bytes=float32_to_pcm16le(audio_f32),
        ts_ms=ts_ms,
    )
