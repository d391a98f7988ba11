"""
LM capability contract.

Purpose:
- Define the interface for local text generation used for correction.
- Keep all orchestration, retries, timing and cancellation POLICY out of
  the adapter.

Rules:
- generate() is blocking; it runs on the LM worker pool.
- Cancellation is cooperative: generate() MUST poll the token at token
  boundaries and raise errors.GenerationCancelled once it is set.
- No retries inside the adapter.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any

from adapters.base import ModelCapability
from refinement.cancellation import CancellationToken
from refinement.prompts import Prompt


class LMCapability(ModelCapability):
    """
    Abstract base class for LM adapters.

    The adapter is a *dumb pipe*: prompt -> engine -> text.
    """

    @abstractmethod
    def generate(
        self,
        handle: Any,
        prompt: Prompt,
        token: CancellationToken,
        *,
        max_tokens: int,
    ) -> str:
        """
        Generate the full completion for prompt.

        Raises:
            errors.GenerationCancelled once token.cancelled is observed.
            errors.GenerationError on transient inference failure.
            MemoryError if the engine ran out of memory mid-generation.
        """
        raise NotImplementedError

