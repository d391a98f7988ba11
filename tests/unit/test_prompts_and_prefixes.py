# pylint: disable=missing-module-docstring,missing-function-docstring

from datetime import datetime

import pytest

from refinement.modes import ProcessingMode
from refinement.prefixes import detect_prefix
from refinement.prompts import (
    CLEAN_SYSTEM_PROMPT_V1,
    CODE_SYSTEM_PROMPT_V1,
    PromptTemplate,
    build_prompt,
    builtin_variables,
)


# ---------------------------------------------------------------------
# Modes / built-in prompts
# ---------------------------------------------------------------------

def test_raw_mode_has_no_prompt():
    assert not ProcessingMode.RAW.requires_llm
    with pytest.raises(ValueError):
        build_prompt("hello", ProcessingMode.RAW)


def test_builtin_prompt_per_mode():
    prompt = build_prompt("print hello", ProcessingMode.CODE)
    assert prompt.system == CODE_SYSTEM_PROMPT_V1
    assert prompt.user == "print hello"
    assert prompt.as_messages()[0] == {"role": "system", "content": CODE_SYSTEM_PROMPT_V1}


def test_template_mode_without_template_falls_back_to_clean():
    prompt = build_prompt("hello", ProcessingMode.PROMPT)
    assert prompt.system == CLEAN_SYSTEM_PROMPT_V1


# ---------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------

def test_template_substitutes_transcription_and_values():
    template = PromptTemplate(
        name="email",
        mode=ProcessingMode.PROMPT,
        system_prompt="Write in {{tone}} tone.",
        user_prompt_template="Rewrite as an email:\n\n{{transcription}}",
        variables=("tone",),
        values={"tone": "formal"},
    )

    prompt = build_prompt("see you monday", ProcessingMode.PROMPT, template)

    assert prompt.system == "Write in formal tone."
    assert prompt.user == "Rewrite as an email:\n\nsee you monday"


def test_unknown_placeholders_are_reported_and_left_alone():
    template = PromptTemplate(
        name="broken",
        mode=ProcessingMode.CUSTOM,
        system_prompt="",
        user_prompt_template="{{transcription}} for {{recipient}}",
    )

    assert template.unresolved_variables() == ["recipient"]
    assert template.render("hi").user == "hi for {{recipient}}"
    # No system message when the system prompt is empty
    assert template.render("hi").as_messages() == [{"role": "user", "content": "hi for {{recipient}}"}]


def test_builtin_variables():
    values = builtin_variables(datetime(2026, 3, 4, 5, 6), language="de")
    assert values == {
        "language": "de",
        "timestamp": "2026-03-04 05:06",
        "date": "2026-03-04",
        "time": "05:06",
    }


def test_template_language_follows_configured_language():
    template = PromptTemplate(
        name="translate",
        mode=ProcessingMode.PROMPT,
        system_prompt="Answer in {{language}}.",
        user_prompt_template="{{transcription}}",
    )

    assert template.render("hi").system == "Answer in en."
    assert template.render("hi", language="de").system == "Answer in de."
    prompt = build_prompt("hi", ProcessingMode.PROMPT, template, language="fr")
    assert prompt.system == "Answer in fr."


# ---------------------------------------------------------------------
# Voice prefixes
# ---------------------------------------------------------------------

def test_prefix_switches_mode_and_is_stripped():
    match = detect_prefix("Code mode: print hello world")
    assert match is not None
    assert match.mode is ProcessingMode.CODE
    assert match.stripped_text == "print hello world"


def test_longest_prefix_wins():
    match = detect_prefix("clean this up, um, the meeting is at noon")
    assert match is not None
    assert match.mode is ProcessingMode.CLEAN
    assert match.stripped_text == "um, the meeting is at noon"


def test_prefix_must_end_at_word_boundary():
    assert detect_prefix("code modes are confusing") is None


def test_prefix_without_content_is_ignored():
    assert detect_prefix("raw mode.") is None
    assert detect_prefix("just some dictation") is None
