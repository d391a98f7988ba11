"""
ASR capability contract.

This module defines the *interface only*: no buffering policy, endpointing,
retries or orchestration decisions live here.

Key invariants:
- One loaded model handle may serve several utterances concurrently; each
  utterance gets its own decoder session via open_session().
- decode_incremental() may be called any number of times with new frames;
  the returned text is the full current hypothesis for the session
  (it supersedes earlier partials, it is not a delta).
- decode_final() is called exactly once, after the last frames.
- A call that raises errors.DecodeError leaves the session unchanged, so
  the same call can be retried.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Sequence

from adapters.base import ModelCapability
from audio.frames import AudioFrame


class ASRCapability(ModelCapability):
    """
    Abstract interface for a streaming ASR engine.

    Implementations raise errors.DecodeError for transient inference failures.
    """

    @abstractmethod
    def open_session(self, handle: Any) -> Any:
        """Create per-utterance decoder state on a loaded model."""
        raise NotImplementedError

    @abstractmethod
    def decode_incremental(self, session: Any, frames: Sequence[AudioFrame]) -> str:
        """
        Feed new frames and return the current partial transcript.

        Args:
            session: Value returned by open_session().
            frames: Frames not yet seen by this session, in capture order.
        """
        raise NotImplementedError

    @abstractmethod
    def decode_final(self, session: Any) -> str:
        """Run the final decoding pass over everything fed so far."""
        raise NotImplementedError

    @abstractmethod
    def close_session(self, session: Any) -> None:
        """Release per-utterance decoder state. Must not raise."""
        raise NotImplementedError
