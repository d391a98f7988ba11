"""
Error taxonomy for the dictation pipeline.

Rules:
- Failures are contained per utterance; none of these abort the pipeline.
- LoadError and ModelFatalError disable a model kind and are reported to
  the host as LOAD_ERROR / FATAL notices.
- GenerationCancelled is the expected outcome of cooperative cancellation,
  never a failure.
- Overrun is NOT an exception: dropped audio is reported as a Notice.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ModelUnavailable(PipelineError):
    """A model slot did not become READY within the acquire timeout."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"{kind} model unavailable: {reason}")
        self.kind = kind
        self.reason = reason


class LoadError(PipelineError):
    """
    Model file is corrupt or incompatible.

    The stage stays disabled until ModelLifecycleManager.retry() is called.
    """


class ModelFatalError(PipelineError):
    """Memory could not be found for a model load, even after eviction."""


class DecodeError(PipelineError):
    """Transient ASR inference failure (retried once)."""


class GenerationError(PipelineError):
    """Transient LM inference failure (retried once)."""


class GenerationCancelled(PipelineError):
    """Raised by an LM capability when it observed a cancelled token."""


class TranscriptionFailed(PipelineError):
    """ASR for one utterance failed after retries; it produces no more output."""

    def __init__(self, utterance_id: int, reason: str) -> None:
        super().__init__(f"utterance {utterance_id}: {reason}")
        self.utterance_id = utterance_id
        self.reason = reason
