# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from orchestrator.enums.state import UtteranceState
from orchestrator.ordering import OrderedReleaseBuffer
from orchestrator.state_dataclass import UtteranceRecord


# ---------------------------------------------------------------------
# Ordered release
# ---------------------------------------------------------------------

def test_later_results_wait_for_earlier_ones():
    released: list[tuple[int, str]] = []
    buf: OrderedReleaseBuffer[str] = OrderedReleaseBuffer(lambda k, v: released.append((k, v)))
    buf.reserve(1)
    buf.reserve(2)
    buf.reserve(3)

    # 2 finishes first: held back
    assert buf.resolve(2, "B") == []
    assert released == []

    assert buf.resolve(1, "A") == [1, 2]
    assert released == [(1, "A"), (2, "B")]
    assert buf.pending() == [3]


def test_none_unblocks_without_releasing():
    released: list[int] = []
    buf: OrderedReleaseBuffer[str] = OrderedReleaseBuffer(lambda k, v: released.append(k))
    buf.reserve(1)
    buf.reserve(2)
    buf.resolve(2, "B")
    buf.resolve(1, None)

    assert released == [2]
    assert len(buf) == 0


def test_reservations_must_increase_and_resolve_once():
    buf: OrderedReleaseBuffer[str] = OrderedReleaseBuffer(lambda k, v: None)
    buf.reserve(5)
    with pytest.raises(ValueError):
        buf.reserve(5)
    buf.reserve(6)
    buf.resolve(6, "x")
    with pytest.raises(ValueError):
        buf.resolve(6, "y")
    with pytest.raises(KeyError):
        buf.resolve(9, "z")


# ---------------------------------------------------------------------
# Utterance state machine
# ---------------------------------------------------------------------

def test_happy_path_transitions():
    rec = UtteranceRecord(1)
    assert rec.advance(UtteranceState.TRANSCRIBING) is UtteranceState.CAPTURING
    rec.advance(UtteranceState.REFINING)
    rec.advance(UtteranceState.CANCELLED)
    assert rec.terminal


def test_terminal_states_are_final():
    rec = UtteranceRecord(1)
    rec.advance(UtteranceState.FAILED)
    with pytest.raises(ValueError):
        rec.advance(UtteranceState.TRANSCRIBING)


def test_cannot_skip_transcription():
    rec = UtteranceRecord(1)
    with pytest.raises(ValueError):
        rec.advance(UtteranceState.REFINING)
