"""
Prompt construction for transcript refinement.

- Built-in system prompts per ProcessingMode
- PromptTemplate: user-defined system prompt + user prompt with
  {{variable}} placeholders; {{transcription}} is always available
- build_prompt(): resolve (mode, template) into a concrete Prompt

Templates without a match for their mode fall back to CLEAN.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from constants import TEMPLATE_BUILTIN_VARIABLES
from observability.logger import log
from refinement.modes import ProcessingMode


CLEAN_SYSTEM_PROMPT_V1: str = (
    "You are a text editor. Clean up the following dictated text. "
    "Fix punctuation, capitalization, and remove filler words "
    "(um, uh, like, you know). Preserve the speaker's original "
    "meaning and tone. Do not add or change content. Output only "
    "the cleaned text."
)

STRUCTURE_SYSTEM_PROMPT_V1: str = (
    "You are a note-taking assistant. Organize the following "
    "dictated text into well-structured notes with headings, "
    "bullet points, and paragraphs as appropriate. Preserve all "
    "information. Output only the structured text."
)

CODE_SYSTEM_PROMPT_V1: str = (
    "You are a code transcription assistant. Convert the following "
    "spoken programming instructions into valid source code. Interpret "
    "spoken syntax naturally (e.g., \"open paren\" -> \"(\", \"new line\" -> "
    "line break). Output only the code, no explanations."
)

_BUILTIN_SYSTEM_PROMPTS: dict[ProcessingMode, str] = {
    ProcessingMode.CLEAN: CLEAN_SYSTEM_PROMPT_V1,
    ProcessingMode.STRUCTURE: STRUCTURE_SYSTEM_PROMPT_V1,
    ProcessingMode.CODE: CODE_SYSTEM_PROMPT_V1,
}

_VARIABLE_RE = re.compile(r"\{\{([^}]+)\}\}")


@dataclass(frozen=True)
class Prompt:
    """Fully resolved prompt handed to the LM capability."""
    system: str
    user: str

    def as_messages(self) -> list[dict[str, str]]:
        """Chat-style message list (system message omitted when empty)."""
        messages: list[dict[str, str]] = []
        if self.system:
            messages.append({"role": "system", "content": self.system})
        messages.append({"role": "user", "content": self.user})
        return messages


@dataclass(frozen=True)
class PromptTemplate:
    """
    User-defined prompt template.

    user_prompt_template example:
        "Rewrite this as a {{tone}} email:\\n\\n{{transcription}}"
    """
    name: str
    mode: ProcessingMode
    system_prompt: str
    user_prompt_template: str
    variables: tuple[str, ...] = ()
    values: Mapping[str, str] = field(default_factory=dict)

    def render(
        self,
        transcription: str,
        extra: Optional[Mapping[str, str]] = None,
        *,
        language: str = "en",
    ) -> Prompt:
        """Substitute built-in, template and extra variables in both prompts."""
        values = {**builtin_variables(language=language), **dict(self.values), **dict(extra or {})}
        values["transcription"] = transcription
        return Prompt(
            system=_substitute(self.system_prompt, values),
            user=_substitute(self.user_prompt_template, values),
        )

    def unresolved_variables(self) -> list[str]:
        """Placeholder names that are neither built in nor declared."""
        known = set(TEMPLATE_BUILTIN_VARIABLES) | set(self.variables)
        text = self.system_prompt + " " + self.user_prompt_template
        return sorted({name for name in _VARIABLE_RE.findall(text) if name not in known})


def builtin_variables(now: Optional[datetime] = None, language: str = "en") -> dict[str, str]:
    now = now or datetime.now()
    return {
        "language": language,
        "timestamp": now.strftime("%Y-%m-%d %H:%M"),
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M"),
    }


def _substitute(text: str, values: Mapping[str, str]) -> str:
    # Unknown placeholders are left as-is
    return _VARIABLE_RE.sub(lambda m: values.get(m.group(1), m.group(0)), text)


def build_prompt(
    text: str,
    mode: ProcessingMode,
    template: Optional[PromptTemplate] = None,
    *,
    language: str = "en",
) -> Prompt:
    """
    Resolve the prompt for a final transcript.

    Raises:
        ValueError for RAW mode (nothing to generate).
    """
    if not mode.requires_llm:
        raise ValueError("raw mode does not use the language model")

    if template is not None:
        return template.render(text, language=language)

    system = _BUILTIN_SYSTEM_PROMPTS.get(mode)
    if system is None:
        log("PROMPT_TEMPLATE_MISSING", mode=mode.value, fallback=ProcessingMode.CLEAN.value)
        system = CLEAN_SYSTEM_PROMPT_V1
    return Prompt(system=system, user=text)
