# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import time

import pytest

from errors import LoadError
from models.lifecycle import ModelKind, ModelLifecycleManager, ModelSpec
from pipeline_fakes import FakeLM, wait_until
from refinement.cancellation import CancellationToken
from refinement.engine import RefinementEngine, RefinementStatus
from refinement.modes import ProcessingMode
from refinement.prompts import CLEAN_SYSTEM_PROMPT_V1, CODE_SYSTEM_PROMPT_V1, PromptTemplate


def make_engine(lm: FakeLM, **kwargs) -> tuple[RefinementEngine, ModelLifecycleManager]:
    mgr = ModelLifecycleManager(
        [ModelSpec(kind=ModelKind.REFINEMENT, capability=lm, path="lm", footprint_mb=100)],
        memory_budget_mb=1000,
    )
    kwargs.setdefault("cancel_ack_timeout_ms", 200)
    return RefinementEngine(lm, mgr, **kwargs), mgr


async def shutdown(engine: RefinementEngine, mgr: ModelLifecycleManager) -> None:
    engine.close()
    await mgr.stop()


@pytest.mark.asyncio
async def test_refine_completes_with_clean_prompt():
    lm = FakeLM()
    engine, mgr = make_engine(lm)

    result = await engine.refine("um hello there", CancellationToken(), utterance_id=1)

    assert result.status is RefinementStatus.COMPLETED
    assert result.text == "REFINED(um hello there)"
    assert result.refined
    assert lm.prompts[0].system == CLEAN_SYSTEM_PROMPT_V1
    assert mgr.slot(ModelKind.REFINEMENT).in_flight == 0
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_cancel_is_acknowledged_within_bound_and_frees_slot():
    lm = FakeLM(default_delay_s=5.0)
    engine, mgr = make_engine(lm)
    token = CancellationToken()

    task = asyncio.create_task(engine.refine("long text", token, utterance_id=1))
    await wait_until(lambda: lm.calls == 1)

    started = time.monotonic()
    token.cancel()
    result = await task
    elapsed = time.monotonic() - started

    assert result.status is RefinementStatus.CANCELLED
    assert result.text == "long text"
    assert not result.refined
    assert elapsed < 0.5
    await wait_until(lambda: mgr.slot(ModelKind.REFINEMENT).in_flight == 0)

    # The slot serves the next request
    lm.default_delay_s = 0.0
    nxt = await engine.refine("next", CancellationToken(), utterance_id=2)
    assert nxt.status is RefinementStatus.COMPLETED
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_unresponsive_generation_is_detached_after_ack_timeout():
    lm = FakeLM(default_delay_s=0.6, ignore_cancel=True)
    engine, mgr = make_engine(lm, cancel_ack_timeout_ms=100)
    token = CancellationToken()

    task = asyncio.create_task(engine.refine("stuck", token, utterance_id=1))
    await wait_until(lambda: lm.calls == 1)

    started = time.monotonic()
    token.cancel()
    result = await task

    assert result.status is RefinementStatus.CANCELLED
    assert time.monotonic() - started < 0.4
    # Slot stays busy until the worker actually returns
    assert mgr.slot(ModelKind.REFINEMENT).in_flight == 1
    await wait_until(lambda: mgr.slot(ModelKind.REFINEMENT).in_flight == 0)
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_already_cancelled_token_skips_generation():
    lm = FakeLM()
    engine, mgr = make_engine(lm)
    token = CancellationToken()
    token.cancel()

    result = await engine.refine("text", token, utterance_id=1)

    assert result.status is RefinementStatus.CANCELLED
    assert lm.calls == 0
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_generation_error_is_retried_once():
    lm = FakeLM(generation_failures=1)
    engine, mgr = make_engine(lm)

    result = await engine.refine("text", CancellationToken(), utterance_id=1)

    assert result.status is RefinementStatus.COMPLETED
    assert lm.calls == 2
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_repeated_generation_error_falls_back_to_original():
    lm = FakeLM(generation_failures=2)
    engine, mgr = make_engine(lm)

    result = await engine.refine("original words", CancellationToken(), utterance_id=1)

    assert result.status is RefinementStatus.FAILED
    assert result.text == "original words"
    assert result.error
    assert mgr.slot(ModelKind.REFINEMENT).in_flight == 0
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_empty_output_falls_back_to_original():
    lm = FakeLM(output="   ")
    engine, mgr = make_engine(lm)

    result = await engine.refine("keep me", CancellationToken(), utterance_id=1)

    assert result.status is RefinementStatus.FAILED
    assert result.text == "keep me"
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_model_load_failure_falls_back_to_original():
    lm = FakeLM(load_error=LoadError("corrupt model file"))
    engine, mgr = make_engine(lm)

    result = await engine.refine("keep me", CancellationToken(), utterance_id=1)

    assert result.status is RefinementStatus.FAILED
    assert result.text == "keep me"
    await shutdown(engine, mgr)


# ---------------------------------------------------------------------
# Modes and voice prefixes
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_raw_voice_prefix_bypasses_the_model():
    lm = FakeLM()
    engine, mgr = make_engine(lm)

    result = await engine.refine("raw mode: keep it verbatim", CancellationToken(), utterance_id=1)

    assert result.status is RefinementStatus.COMPLETED
    assert result.mode is ProcessingMode.RAW
    assert result.text == "keep it verbatim"
    assert not result.refined
    assert lm.loads == 0
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_code_voice_prefix_switches_prompt():
    lm = FakeLM()
    engine, mgr = make_engine(lm)

    result = await engine.refine("Code mode: print hi", CancellationToken(), utterance_id=1)

    assert result.mode is ProcessingMode.CODE
    assert lm.prompts[0].system == CODE_SYSTEM_PROMPT_V1
    assert lm.prompts[0].user == "print hi"
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_voice_prefixes_can_be_disabled():
    lm = FakeLM()
    engine, mgr = make_engine(lm, voice_prefixes=False, default_mode=ProcessingMode.STRUCTURE)

    result = await engine.refine("raw mode: not a command", CancellationToken(), utterance_id=1)

    assert result.mode is ProcessingMode.STRUCTURE
    assert lm.prompts[0].user == "raw mode: not a command"
    await shutdown(engine, mgr)


@pytest.mark.asyncio
async def test_templates_render_with_engine_language():
    lm = FakeLM()
    template = PromptTemplate(
        name="clean-localized",
        mode=ProcessingMode.CLEAN,
        system_prompt="Clean up this {{language}} dictation.",
        user_prompt_template="{{transcription}}",
    )
    engine, mgr = make_engine(lm, templates={ProcessingMode.CLEAN: template}, language="de")

    result = await engine.refine("hallo welt", CancellationToken(), utterance_id=1)

    assert result.status is RefinementStatus.COMPLETED
    assert lm.prompts[0].system == "Clean up this de dictation."
    assert lm.prompts[0].user == "hallo welt"
    await shutdown(engine, mgr)
