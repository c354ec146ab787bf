from __future__ import annotations

from typing import Any

import numpy as np
import pytest

from focusbuddy.camera import CaptureProfile, FrameSource
from focusbuddy.detectors import FaceDetector, FaceObservation, Keypoint


def make_face(cx: float = 32.0, cy: float = 24.0, pupil_dx: float = 0.0, pupils: bool = True) -> FaceObservation:
    """Eyes 20 px apart around (cx, cy), nose below, pupils shifted by pupil_dx."""
    kps = [
        Keypoint(cx - 10, cy, "left_eye"),
        Keypoint(cx + 10, cy, "right_eye"),
        Keypoint(cx, cy + 6, "nose"),
    ]
    if pupils:
        kps.append(Keypoint(cx - 10 + pupil_dx, cy, "left_pupil"))
        kps.append(Keypoint(cx + 10 + pupil_dx, cy, "right_pupil"))
    return FaceObservation(keypoints=kps)


def blank_frame(width: int = 64, height: int = 48) -> np.ndarray:
    return np.zeros((height, width, 3), dtype=np.uint8)


class FakeSource(FrameSource):
    def __init__(self, events: list[str] | None = None, label: str = "source"):
        self.released = 0
        self.reads = 0
        self.events = events if events is not None else []
        self.label = label

    def read(self) -> tuple[bool, Any | None]:
        self.reads += 1
        return True, blank_frame()

    def release(self) -> None:
        self.released += 1
        self.events.append(f"release:{self.label}")


class FakeDetector(FaceDetector):
    name = "fake"

    def __init__(self, faces: list[FaceObservation] | None = None):
        self.faces = faces if faces is not None else [make_face()]
        self.fail = False
        self.closed = False

    def detect(self, frame: Any) -> list[FaceObservation]:
        if self.fail:
            raise RuntimeError("inference blew up")
        return list(self.faces)

    def close(self) -> None:
        self.closed = True


class FakeCamera:
    """Camera opener that hands out a new FakeSource per call."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sources: list[FakeSource] = []
        self.profiles: list[CaptureProfile] = []
        self.events: list[str] = []

    def __call__(self, profile: CaptureProfile) -> FakeSource:
        self.profiles.append(profile)
        self.events.append(f"open:{len(self.profiles)}")
        if self.error is not None:
            raise self.error
        source = FakeSource(self.events, label=str(len(self.profiles)))
        self.sources.append(source)
        return source


@pytest.fixture
def camera() -> FakeCamera:
    return FakeCamera()


@pytest.fixture
def detector() -> FakeDetector:
    return FakeDetector()
