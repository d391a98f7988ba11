"""
Retry policy helpers.

Purpose:
- Centralize retry rules for transient inference failures
- Allow engines to make deterministic retry decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from constants import (
    DECODE_MAX_RETRIES,
    DECODE_RETRY_DELAY_MS,
    GENERATION_MAX_RETRIES,
    GENERATION_RETRY_DELAY_MS,
    LOAD_OOM_MAX_RETRIES,
)


# =============================================================================
# Failure Types
# =============================================================================

class FailureType(str, Enum):
    """
    Failure classification used by retry policy.

    DECODE_ERROR:
        Transient ASR inference failure. One retry, then the utterance
        produces nothing further.

    GENERATION_ERROR:
        Transient LM inference failure. One retry, then the unrefined
        transcript is used.

    LOAD_OUT_OF_MEMORY:
        Model allocation failed. One retry after evicting idle models,
        then the failure is fatal for that model kind.

    LOAD_ERROR:
        Corrupt/incompatible model file. Never retried automatically.

    Notes:
    - Cancellation is NOT a failure type and must never trigger retries.
    """

    DECODE_ERROR = "decode_error"
    GENERATION_ERROR = "generation_error"
    LOAD_OUT_OF_MEMORY = "load_out_of_memory"
    LOAD_ERROR = "load_error"


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    attempt == 0 is the initial attempt; attempt >= 1 is the Nth retry.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def max_attempts(failure: FailureType) -> int:
    """Maximum retry attempts (excluding the initial attempt)."""
    if failure is FailureType.DECODE_ERROR:
        return DECODE_MAX_RETRIES
    if failure is FailureType.GENERATION_ERROR:
        return GENERATION_MAX_RETRIES
    if failure is FailureType.LOAD_OUT_OF_MEMORY:
        return LOAD_OOM_MAX_RETRIES
    return 0


def should_retry(*, failure: FailureType, attempt: RetryAttempt) -> bool:
    """
    Returns True if a retry is allowed.

    attempt = number of retries already performed
    """
    return attempt.attempt < max_attempts(failure)


def get_retry_delay_ms(*, failure: FailureType, attempt: RetryAttempt) -> int:
    """
    Backoff before the next retry: linear in the attempt number.
    """
    if failure is FailureType.DECODE_ERROR:
        return DECODE_RETRY_DELAY_MS * (attempt.attempt + 1)
    if failure is FailureType.GENERATION_ERROR:
        return GENERATION_RETRY_DELAY_MS * (attempt.attempt + 1)
    return 0
