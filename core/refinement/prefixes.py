"""
Voice prefix detection.

Saying "code mode: print hello world" switches that utterance to CODE and
strips the prefix. Phrases are matched case-insensitively at the very start
of the transcript, longest first, so "clean this up" wins over "clean".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from constants import VOICE_PREFIX_SEPARATORS
from observability.logger import log
from refinement.modes import ProcessingMode


_PREFIXES: tuple[tuple[str, ProcessingMode], ...] = tuple(sorted(
    (
        ("clean this up", ProcessingMode.CLEAN),
        ("clean mode", ProcessingMode.CLEAN),
        ("clean text", ProcessingMode.CLEAN),
        ("structure mode", ProcessingMode.STRUCTURE),
        ("structured mode", ProcessingMode.STRUCTURE),
        ("structured notes", ProcessingMode.STRUCTURE),
        ("note mode", ProcessingMode.STRUCTURE),
        ("notes mode", ProcessingMode.STRUCTURE),
        ("code mode", ProcessingMode.CODE),
        ("coding mode", ProcessingMode.CODE),
        ("prompt mode", ProcessingMode.PROMPT),
        ("template mode", ProcessingMode.PROMPT),
        ("email mode", ProcessingMode.PROMPT),
        ("custom mode", ProcessingMode.CUSTOM),
        ("raw mode", ProcessingMode.RAW),
        ("dictation mode", ProcessingMode.RAW),
        ("raw text", ProcessingMode.RAW),
    ),
    key=lambda item: len(item[0]),
    reverse=True,
))


@dataclass(frozen=True)
class PrefixMatch:
    mode: ProcessingMode
    stripped_text: str


def detect_prefix(text: str) -> Optional[PrefixMatch]:
    """
    Return the mode switch requested by a spoken prefix, if any.

    A prefix with no content after it is ignored (returns None).
    """
    trimmed = text.strip()
    lowered = trimmed.lower()

    for phrase, mode in _PREFIXES:
        if not lowered.startswith(phrase):
            continue
        rest = trimmed[len(phrase):]
        # "code modest" is not "code mode"
        if rest and rest[0].isalnum():
            continue
        stripped = rest.lstrip(VOICE_PREFIX_SEPARATORS)
        if not stripped:
            return None
        log("VOICE_PREFIX_DETECTED", phrase=phrase, mode=mode.value)
        return PrefixMatch(mode=mode, stripped_text=stripped)

    return None
