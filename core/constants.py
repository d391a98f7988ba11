"""
CONSTANTS-AS-DEFAULTS
---------------------
Single source of truth for behavioral defaults of the dictation pipeline.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Tuning values (VAD thresholds, timeouts) are DEFAULTS only;
  config.PipelineConfig exposes every one of them.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, 20ms frames)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FRAME_MS: Final[int] = 20

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000
AUDIO_BYTES_PER_FRAME_PCM: Final[int] = AUDIO_SAMPLES_PER_FRAME * AUDIO_SAMPLE_WIDTH_BYTES
AUDIO_FRAME_DURATION_S: Final[float] = AUDIO_FRAME_MS / 1000.0

# =============================================================================
# Voice Activity Detection / Segmentation
# =============================================================================

VAD_RMS_THRESHOLD: Final[float] = 0.02
VAD_DEBOUNCE_MS: Final[int] = 60       # sustained speech before UtteranceStarted
VAD_HANGOVER_MS: Final[int] = 500      # trailing silence before UtteranceEnded
PRE_ROLL_MS: Final[int] = 300
MAX_UTTERANCE_S: Final[float] = 30.0

# =============================================================================
# Backpressure
# =============================================================================

INGEST_AUDIO_Q_MAX_S: Final[float] = 2.0

# =============================================================================
# Worker pools / fan-out
# =============================================================================

ASR_WORKERS: Final[int] = 1
LM_WORKERS: Final[int] = 1
ASR_FANOUT: Final[int] = 2

# =============================================================================
# Model lifecycle
# =============================================================================

MEMORY_BUDGET_MB: Final[int] = 4_096
ASR_MODEL_FOOTPRINT_MB: Final[int] = 1_024
LM_MODEL_FOOTPRINT_MB: Final[int] = 2_560

MODEL_ACQUIRE_TIMEOUT_S: Final[float] = 10.0
LM_IDLE_TIMEOUT_S: Final[float] = 120.0
MODEL_POLICY_INTERVAL_S: Final[float] = 1.0

# =============================================================================
# Cancellation
# =============================================================================

CANCEL_ACK_TIMEOUT_MS: Final[int] = 500

# =============================================================================
# Retry Policy
# =============================================================================

# Transient inference failures: one retry, then fall back.
DECODE_MAX_RETRIES: Final[int] = 1
GENERATION_MAX_RETRIES: Final[int] = 1
DECODE_RETRY_DELAY_MS: Final[int] = 100
GENERATION_RETRY_DELAY_MS: Final[int] = 250

# Model loads that run out of memory get one retry after eviction.
LOAD_OOM_MAX_RETRIES: Final[int] = 1

# =============================================================================
# Refinement
# =============================================================================

LM_MAX_TOKENS: Final[int] = 512
DEFAULT_PROCESSING_MODE: Final[str] = "clean"

# Leading characters whisper tends to insert between a voice prefix and content
VOICE_PREFIX_SEPARATORS: Final[str] = ":,.- \t\n"

# Built-in prompt template variables (besides {{transcription}})
TEMPLATE_BUILTIN_VARIABLES: Final[Tuple[str, ...]] = (
    "transcription",
    "language",
    "timestamp",
    "date",
    "time",
)

# =============================================================================
# Helper Functions
# =============================================================================

def frames_to_seconds(num_frames: int) -> float:
    """
    Convert a number of PCM frames to duration in seconds.

    Negative input returns 0.0 instead of propagating an error.
    """
    if num_frames <= 0:
        return 0.0
    return num_frames * AUDIO_FRAME_DURATION_S


def ms_to_frames(duration_ms: int, *, frame_ms: int = AUDIO_FRAME_MS) -> int:
    """
    Convert a duration in milliseconds to whole frames (ceil, minimum 1).

    Used to translate debounce/hangover/pre-roll durations into frame counts.
    """
    if duration_ms <= 0:
        return 0
    return max(1, -(-duration_ms // frame_ms))

