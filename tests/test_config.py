from __future__ import annotations

import pytest

from focusbuddy.config import load_config
from focusbuddy.detectors import DEFAULT_DETECTORS


def test_defaults(monkeypatch, tmp_path):
    for key in (
        "FOCUSBUDDY_TARGET_FPS",
        "FOCUSBUDDY_DETECTORS",
        "FOCUSBUDDY_FACE_TASK_PATH",
        "FOCUSBUDDY_COACH_BASE_URL",
        "FOCUSBUDDY_SERVER_PORT",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("FOCUSBUDDY_STATE_DIR", str(tmp_path))
    cfg = load_config()
    assert cfg.target_fps == 15.0
    assert cfg.detectors == DEFAULT_DETECTORS
    assert cfg.server_port == 8765
    assert cfg.face_task_path.endswith("face_landmarker.task")
    assert cfg.face_task_path.startswith(str(tmp_path))
    assert cfg.coach_base_url is None


def test_overrides(monkeypatch):
    monkeypatch.setenv("FOCUSBUDDY_TARGET_FPS", "30")
    monkeypatch.setenv("FOCUSBUDDY_DETECTORS", "haar, mediapipe-facemesh")
    monkeypatch.setenv("FOCUSBUDDY_SAFE_CONSTRAINTS", "yes")
    monkeypatch.setenv("FOCUSBUDDY_COACH_BASE_URL", "http://coach.local/")
    monkeypatch.setenv("FOCUSBUDDY_LOG_LEVEL", "debug")
    cfg = load_config()
    assert cfg.target_fps == 30.0
    assert cfg.detectors == ("haar", "mediapipe-facemesh")
    assert cfg.safe_constraints is True
    assert cfg.coach_base_url == "http://coach.local"
    assert cfg.log_level == "DEBUG"


@pytest.mark.parametrize(
    "name,value",
    [("FOCUSBUDDY_TARGET_FPS", "fast"), ("FOCUSBUDDY_TARGET_FPS", "0"), ("FOCUSBUDDY_SERVER_PORT", "http")],
)
def test_invalid_numbers_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        load_config()
