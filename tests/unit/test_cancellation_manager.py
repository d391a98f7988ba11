# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json

import pytest

from errors import GenerationCancelled
from observability import logger
from refinement.cancellation import CancellationManager, CancellationToken


def test_token_is_sticky():
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel()
    assert token.cancelled
    with pytest.raises(GenerationCancelled):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_missing_ack_logs_cancel_timeout(monkeypatch: pytest.MonkeyPatch):
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    mgr = CancellationManager(ack_timeout_ms=20)

    token = mgr.token_for(3)
    assert mgr.request_cancel(3)
    assert token.cancelled

    await asyncio.sleep(0.1)
    types = [json.loads(line)["event_type"] for line in lines]
    assert types == ["CANCEL_REQUESTED", "CANCEL_TIMEOUT"]


@pytest.mark.asyncio
async def test_ack_stops_the_timer(monkeypatch: pytest.MonkeyPatch):
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    mgr = CancellationManager(ack_timeout_ms=20)

    mgr.token_for(1)
    mgr.request_cancel(1)
    mgr.notify_ack(1)

    await asyncio.sleep(0.1)
    types = [json.loads(line)["event_type"] for line in lines]
    assert "CANCEL_TIMEOUT" not in types
    assert mgr.pending() == []


def test_cancel_unknown_utterance_is_a_noop():
    mgr = CancellationManager()
    assert mgr.request_cancel(42) is False
