"""
Pipeline configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from constants import (
    ASR_FANOUT,
    ASR_MODEL_FOOTPRINT_MB,
    ASR_WORKERS,
    AUDIO_FRAME_MS,
    CANCEL_ACK_TIMEOUT_MS,
    DEFAULT_PROCESSING_MODE,
    INGEST_AUDIO_Q_MAX_S,
    LM_IDLE_TIMEOUT_S,
    LM_MAX_TOKENS,
    LM_MODEL_FOOTPRINT_MB,
    LM_WORKERS,
    MAX_UTTERANCE_S,
    MEMORY_BUDGET_MB,
    MODEL_ACQUIRE_TIMEOUT_S,
    MODEL_POLICY_INTERVAL_S,
    PRE_ROLL_MS,
    VAD_DEBOUNCE_MS,
    VAD_HANGOVER_MS,
    VAD_RMS_THRESHOLD,
    ms_to_frames,
)
from refinement.modes import ProcessingMode


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable pipeline configuration.

    Constructed once at process startup and passed downward to the
    orchestrator, which hands each component the fields it needs.
    """

    # ------------------------------------------------------------------
    # Segmentation
    # ------------------------------------------------------------------

    vad_rms_threshold: float = VAD_RMS_THRESHOLD
    vad_debounce_ms: int = VAD_DEBOUNCE_MS
    vad_hangover_ms: int = VAD_HANGOVER_MS
    pre_roll_ms: int = PRE_ROLL_MS
    max_utterance_s: float = MAX_UTTERANCE_S
    ingest_queue_max_s: float = INGEST_AUDIO_Q_MAX_S

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    asr_workers: int = ASR_WORKERS
    lm_workers: int = LM_WORKERS
    asr_fanout: int = ASR_FANOUT

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    asr_model_path: str = "base.en"
    lm_model_path: str = ""
    memory_budget_mb: int = MEMORY_BUDGET_MB
    asr_footprint_mb: int = ASR_MODEL_FOOTPRINT_MB
    lm_footprint_mb: int = LM_MODEL_FOOTPRINT_MB
    model_acquire_timeout_s: float = MODEL_ACQUIRE_TIMEOUT_S
    lm_idle_timeout_s: float = LM_IDLE_TIMEOUT_S
    model_policy_interval_s: float = MODEL_POLICY_INTERVAL_S

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    refinement_enabled: bool = True
    processing_mode: str = DEFAULT_PROCESSING_MODE
    latest_wins: bool = True
    cancel_ack_timeout_ms: int = CANCEL_ACK_TIMEOUT_MS
    lm_max_tokens: int = LM_MAX_TOKENS
    lm_base_url: str = "http://localhost:11434/v1"
    language: str = "en"
    vocabulary: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.vad_rms_threshold <= 0:
            raise ValueError("vad_rms_threshold must be > 0")
        if self.vad_debounce_ms <= 0 or self.vad_hangover_ms <= 0:
            raise ValueError("vad_debounce_ms and vad_hangover_ms must be > 0")
        if self.pre_roll_ms < 0:
            raise ValueError("pre_roll_ms must be >= 0")
        if self.max_utterance_s <= 0:
            raise ValueError("max_utterance_s must be > 0")
        lead_in_frames = ms_to_frames(self.pre_roll_ms) + ms_to_frames(self.vad_debounce_ms)
        if int(self.max_utterance_s * 1000) // AUDIO_FRAME_MS < lead_in_frames:
            raise ValueError("max_utterance_s must cover pre_roll_ms + vad_debounce_ms")
        if self.ingest_queue_max_s <= 0:
            raise ValueError("ingest_queue_max_s must be > 0")
        if min(self.asr_workers, self.lm_workers, self.asr_fanout) < 1:
            raise ValueError("worker counts and asr_fanout must be >= 1")
        if self.memory_budget_mb <= 0:
            raise ValueError("memory_budget_mb must be > 0")
        if self.model_policy_interval_s <= 0 or self.lm_idle_timeout_s <= 0:
            raise ValueError("model_policy_interval_s and lm_idle_timeout_s must be > 0")
        if max(self.asr_footprint_mb, self.lm_footprint_mb) > self.memory_budget_mb:
            raise ValueError("a single model footprint cannot exceed memory_budget_mb")
        if self.processing_mode not in {m.value for m in ProcessingMode}:
            raise ValueError(f"unknown processing_mode: {self.processing_mode!r}")
        if self.cancel_ack_timeout_ms <= 0:
            raise ValueError("cancel_ack_timeout_ms must be > 0")

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> PipelineConfig:
        """
        Load configuration from DICTATION_* environment variables.

        Unset variables fall back to constants.py defaults.

        Raises:
            ValueError if a value cannot be parsed or fails validation.
        """
        env = os.environ
        return PipelineConfig(
            vad_rms_threshold=float(env.get("DICTATION_VAD_RMS_THRESHOLD", VAD_RMS_THRESHOLD)),
            vad_debounce_ms=int(env.get("DICTATION_VAD_DEBOUNCE_MS", VAD_DEBOUNCE_MS)),
            vad_hangover_ms=int(env.get("DICTATION_VAD_HANGOVER_MS", VAD_HANGOVER_MS)),
            pre_roll_ms=int(env.get("DICTATION_PRE_ROLL_MS", PRE_ROLL_MS)),
            max_utterance_s=float(env.get("DICTATION_MAX_UTTERANCE_S", MAX_UTTERANCE_S)),
            ingest_queue_max_s=float(env.get("DICTATION_INGEST_QUEUE_MAX_S", INGEST_AUDIO_Q_MAX_S)),

            asr_workers=int(env.get("DICTATION_ASR_WORKERS", ASR_WORKERS)),
            lm_workers=int(env.get("DICTATION_LM_WORKERS", LM_WORKERS)),
            asr_fanout=int(env.get("DICTATION_ASR_FANOUT", ASR_FANOUT)),

            asr_model_path=env.get("DICTATION_ASR_MODEL", "base.en"),
            lm_model_path=env.get("DICTATION_LM_MODEL", ""),
            memory_budget_mb=int(env.get("DICTATION_MEMORY_BUDGET_MB", MEMORY_BUDGET_MB)),
            asr_footprint_mb=int(env.get("DICTATION_ASR_FOOTPRINT_MB", ASR_MODEL_FOOTPRINT_MB)),
            lm_footprint_mb=int(env.get("DICTATION_LM_FOOTPRINT_MB", LM_MODEL_FOOTPRINT_MB)),
            model_acquire_timeout_s=float(
                env.get("DICTATION_MODEL_ACQUIRE_TIMEOUT_S", MODEL_ACQUIRE_TIMEOUT_S)
            ),
            lm_idle_timeout_s=float(env.get("DICTATION_LM_IDLE_TIMEOUT_S", LM_IDLE_TIMEOUT_S)),
            model_policy_interval_s=float(
                env.get("DICTATION_MODEL_POLICY_INTERVAL_S", MODEL_POLICY_INTERVAL_S)
            ),

            refinement_enabled=env.get("DICTATION_REFINEMENT", "1") == "1",
            processing_mode=env.get("DICTATION_MODE", DEFAULT_PROCESSING_MODE),
            latest_wins=env.get("DICTATION_LATEST_WINS", "1") == "1",
            cancel_ack_timeout_ms=int(
                env.get("DICTATION_CANCEL_ACK_TIMEOUT_MS", CANCEL_ACK_TIMEOUT_MS)
            ),
            lm_max_tokens=int(env.get("DICTATION_LM_MAX_TOKENS", LM_MAX_TOKENS)),
            lm_base_url=env.get("DICTATION_LM_BASE_URL", "http://localhost:11434/v1"),
            language=env.get("DICTATION_LANGUAGE", "en"),
            vocabulary=_parse_vocabulary(env.get("DICTATION_VOCABULARY", "")),
        )


def _parse_vocabulary(raw: str) -> dict[str, str]:
    """
    Parse "spoken=written;spoken=written" into a replacement mapping.

    Raises:
        ValueError on an entry without "=" or with an empty spoken form.
    """
    vocabulary: dict[str, str] = {}
    for entry in raw.split(";"):
        if not entry.strip():
            continue
        spoken, sep, written = entry.partition("=")
        if not sep or not spoken.strip():
            raise ValueError(f"invalid DICTATION_VOCABULARY entry: {entry!r}")
        vocabulary[spoken.strip()] = written.strip()
    return vocabulary
