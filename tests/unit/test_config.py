# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import PipelineConfig
from constants import ms_to_frames, frames_to_seconds


def test_ms_to_frames_rounds_up():
    assert ms_to_frames(60) == 3
    assert ms_to_frames(500) == 25
    assert ms_to_frames(30) == 2
    assert ms_to_frames(1) == 1
    assert ms_to_frames(0) == 0


def test_frames_to_seconds():
    assert frames_to_seconds(50) == pytest.approx(1.0)
    assert frames_to_seconds(-3) == 0.0


def test_defaults_are_valid():
    cfg = PipelineConfig()
    assert cfg.asr_fanout >= 1
    assert cfg.processing_mode == "clean"
    assert cfg.vocabulary == {}


@pytest.mark.parametrize(
    "overrides",
    [
        {"vad_rms_threshold": 0},
        {"vad_hangover_ms": 0},
        {"asr_fanout": 0},
        {"memory_budget_mb": 1000, "lm_footprint_mb": 2000},
        {"processing_mode": "shouting"},
        {"model_policy_interval_s": 0},
        # Pre-roll + debounce would not fit in one utterance
        {"max_utterance_s": 0.3, "pre_roll_ms": 300, "vad_debounce_ms": 60},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValueError):
        PipelineConfig(**overrides)


def test_load_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DICTATION_VAD_HANGOVER_MS", "300")
    monkeypatch.setenv("DICTATION_ASR_FANOUT", "3")
    monkeypatch.setenv("DICTATION_MODE", "code")
    monkeypatch.setenv("DICTATION_LATEST_WINS", "0")
    monkeypatch.setenv("DICTATION_MODEL_POLICY_INTERVAL_S", "0.25")
    monkeypatch.setenv("DICTATION_VOCABULARY", "pie torch=PyTorch; kubernetes=Kubernetes")

    cfg = PipelineConfig.load_from_env()

    assert cfg.vad_hangover_ms == 300
    assert cfg.asr_fanout == 3
    assert cfg.processing_mode == "code"
    assert cfg.latest_wins is False
    assert cfg.model_policy_interval_s == 0.25
    assert cfg.vocabulary == {"pie torch": "PyTorch", "kubernetes": "Kubernetes"}


def test_load_from_env_rejects_bad_vocabulary(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DICTATION_VOCABULARY", "no separator here")
    with pytest.raises(ValueError):
        PipelineConfig.load_from_env()
