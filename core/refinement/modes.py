"""
Processing mode enumeration.

The mode answers: "what should the LM do with a final transcript?"
RAW bypasses refinement entirely.
"""

from __future__ import annotations

from enum import Enum


class ProcessingMode(str, Enum):
    """
    RAW:        unprocessed ASR output
    CLEAN:      fix punctuation/capitalization, drop filler words
    STRUCTURE:  organize into paragraphs, lists or headings
    PROMPT:     run through a user prompt template
    CODE:       interpret spoken programming syntax
    CUSTOM:     user-defined template pipeline
    """

    RAW = "raw"
    CLEAN = "clean"
    STRUCTURE = "structure"
    PROMPT = "prompt"
    CODE = "code"
    CUSTOM = "custom"

    @property
    def requires_llm(self) -> bool:
        return self is not ProcessingMode.RAW

    @property
    def uses_template(self) -> bool:
        return self in (ProcessingMode.PROMPT, ProcessingMode.CUSTOM)
