from __future__ import annotations

import pytest
from conftest import FakeDetector

from focusbuddy.detectors import (
    FaceObservation,
    Keypoint,
    build_detector,
    load_detector_chain,
    run_detector,
)
from focusbuddy.errors import FrameProcessingError, ModelLoadFailure


def test_chain_returns_first_backend_that_loads():
    tried: list[str] = []

    def factory(name, *, task_path=None):
        tried.append(name)
        if name == "primary":
            raise ModelLoadFailure("model file missing")
        return FakeDetector()

    detector = load_detector_chain(["primary", "secondary", "tertiary"], factory=factory)
    assert isinstance(detector, FakeDetector)
    assert tried == ["primary", "secondary"]


def test_chain_returns_none_when_everything_fails():
    def factory(name, *, task_path=None):
        raise ModelLoadFailure(name)

    assert load_detector_chain(["a", "b"], factory=factory) is None


def test_build_detector_rejects_unknown_and_missing_model():
    with pytest.raises(ModelLoadFailure):
        build_detector("does-not-exist")
    with pytest.raises(ModelLoadFailure):
        build_detector("mediapipe-tasks", task_path=None)


def test_run_detector_wraps_backend_errors():
    detector = FakeDetector()
    detector.fail = True
    with pytest.raises(FrameProcessingError):
        run_detector(detector, object())


def test_face_geometry_helpers():
    face = FaceObservation(keypoints=[Keypoint(10, 5, "left_eye"), Keypoint(30, 25, "right_eye")])
    assert face.bbox() == (10, 5, 30, 25)
    assert face.width == 20
    assert face.named("right_eye").x == 30
    assert face.named("nose") is None
    assert FaceObservation(keypoints=[]).width == 0.0
