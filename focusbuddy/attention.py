from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Sequence

from .camera import CaptureProfile, FrameSource
from .composite import render_privacy_composite
from .detectors import FaceDetector, FaceObservation, Keypoint, run_detector
from .errors import FrameProcessingError, PermissionDenied
from .timers import DebounceTimer

logger = logging.getLogger(__name__)


class AttentionState(str, Enum):
    INITIALIZING = "initializing"
    PERMISSION_NEEDED = "permission-needed"
    PERMISSION_DENIED = "permission-denied"
    FOCUSED = "focused"
    DISTRACTED = "distracted"
    AWAY = "away"
    ERROR = "error"
    OFF = "off"


CAPTURING_STATES = frozenset({AttentionState.FOCUSED, AttentionState.DISTRACTED, AttentionState.AWAY})
TERMINAL_STATES = frozenset({AttentionState.PERMISSION_DENIED, AttentionState.ERROR})


@dataclass
class ClassifierConfig:
    debounce_seconds: float = 2.0
    pupil_offset_threshold: float = 0.4
    gaze_threshold: float = 0.6
    stillness_pixels: float = 1.5
    stillness_seconds: float = 7.0
    raw_video_fallback_seconds: float = 1.2


def _dist(a: Keypoint, b: Keypoint) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def primary_face(faces: Sequence[FaceObservation]) -> FaceObservation | None:
    if not faces:
        return None
    return max(faces, key=lambda f: f.width)


def classify_observation(
    faces: Sequence[FaceObservation],
    *,
    pupil_offset_threshold: float = 0.4,
    gaze_threshold: float = 0.6,
) -> AttentionState:
    """
    Raw per-frame attention.

    No face -> AWAY. With pupils, either pupil's offset from its eye center
    (in inter-eye units) above the threshold -> DISTRACTED. Without pupils,
    any coarse gaze confidence above the threshold -> DISTRACTED. Anything
    else with a face present is FOCUSED.
    """
    face = primary_face(faces)
    if face is None:
        return AttentionState.AWAY

    left_eye = face.named("left_eye")
    right_eye = face.named("right_eye")
    left_pupil = face.named("left_pupil")
    right_pupil = face.named("right_pupil")

    if left_eye is not None and right_eye is not None and left_pupil is not None and right_pupil is not None:
        eye_width = _dist(left_eye, right_eye)
        if eye_width <= 0:
            return AttentionState.FOCUSED
        left = _dist(left_pupil, left_eye) / eye_width
        right = _dist(right_pupil, right_eye) / eye_width
        if left > pupil_offset_threshold or right > pupil_offset_threshold:
            return AttentionState.DISTRACTED
        return AttentionState.FOCUSED

    if face.gaze and any(v > gaze_threshold for v in face.gaze.values()):
        return AttentionState.DISTRACTED
    return AttentionState.FOCUSED


def stillness_centroid(face: FaceObservation) -> tuple[float, float] | None:
    pts = [kp for kp in (face.named("left_eye"), face.named("right_eye"), face.named("nose")) if kp is not None]
    if not pts:
        pts = list(face.keypoints)
    if not pts:
        return None
    return sum(p.x for p in pts) / len(pts), sum(p.y for p in pts) / len(pts)


class StillnessTracker:
    """
    Edge-triggered "prolonged stillness" detector.

    Movement (centroid displacement above pixel_threshold) re-arms the alert;
    time alone never does.
    """

    def __init__(self, pixel_threshold: float = 1.5, still_seconds: float = 7.0, now: float | None = None):
        self.pixel_threshold = pixel_threshold
        self.still_seconds = still_seconds
        self.last_centroid: tuple[float, float] | None = None
        self.last_movement_ts: float = now if now is not None else time.time()
        self.alerted: bool = False

    def reset(self, now: float | None = None) -> None:
        self.last_centroid = None
        self.last_movement_ts = now if now is not None else time.time()
        self.alerted = False

    def observe(self, centroid: tuple[float, float] | None, now: float | None = None) -> bool:
        """Record a centroid; returns True when it counts as movement."""
        ts = now if now is not None else time.time()
        if centroid is None:
            return False
        prev = self.last_centroid
        self.last_centroid = centroid
        if prev is None:
            return False
        if math.hypot(centroid[0] - prev[0], centroid[1] - prev[1]) > self.pixel_threshold:
            self.last_movement_ts = ts
            self.alerted = False
            return True
        return False

    def check(self, now: float | None = None) -> bool:
        """Returns True exactly once per stillness episode."""
        ts = now if now is not None else time.time()
        if self.alerted:
            return False
        if ts - self.last_movement_ts >= self.still_seconds:
            self.alerted = True
            return True
        return False


@dataclass
class FrameAnalysis:
    frame: Any | None = None
    faces: list[FaceObservation] = field(default_factory=list)
    composite: Any | None = None
    detected: bool = False  # a detector actually ran on this frame
    failed: bool = False  # detector raised; treated as no face


class AttentionClassifier:
    """
    Owns one camera capture and publishes a debounced AttentionState.

    The frame loop calls read_frame() + analyze() (blocking, may run off-loop)
    and then apply() on the loop, or process_frame() for both at once.
    Listeners only ever see debounced values.
    """

    def __init__(
        self,
        *,
        camera_opener: Callable[[CaptureProfile], FrameSource],
        detector_loader: Callable[[], FaceDetector | None],
        config: ClassifierConfig | None = None,
        profile: CaptureProfile | None = None,
    ):
        self.config = config or ClassifierConfig()
        self.profile = profile or CaptureProfile()
        self._camera_opener = camera_opener
        self._detector_loader = detector_loader

        self._state = AttentionState.OFF
        self._active = False
        self._source: FrameSource | None = None
        self._detector: FaceDetector | None = None
        self._detector_loaded = False

        self._debounce = DebounceTimer()
        self._candidate: AttentionState | None = None
        self.stillness = StillnessTracker(self.config.stillness_pixels, self.config.stillness_seconds)

        self.last_composite: Any | None = None
        self.last_frame: Any | None = None
        self.last_draw_ts: float = 0.0
        self.frame_count: int = 0

        self._listeners: list[Callable[[AttentionState], None]] = []
        self._still_listeners: list[Callable[[], None]] = []

    # -- observers ---------------------------------------------------------

    def add_listener(self, callback: Callable[[AttentionState], None]) -> None:
        self._listeners.append(callback)

    def add_still_listener(self, callback: Callable[[], None]) -> None:
        self._still_listeners.append(callback)

    @property
    def state(self) -> AttentionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    @property
    def capturing(self) -> bool:
        return self._source is not None

    @property
    def detector_name(self) -> str | None:
        return self._detector.name if self._detector is not None else None

    @property
    def pending_state(self) -> AttentionState | None:
        return self._candidate if self._debounce.armed else None

    def show_raw_video(self, now: float | None = None) -> bool:
        ts = now if now is not None else time.time()
        return ts - self.last_draw_ts > self.config.raw_video_fallback_seconds

    def _publish(self, state: AttentionState) -> None:
        if state == self._state:
            return
        logger.info("Attention %s -> %s", self._state.value, state.value)
        self._state = state
        for callback in list(self._listeners):
            callback(state)

    # -- lifecycle ---------------------------------------------------------

    def activate(self, now: float | None = None) -> None:
        self._active = True
        self.stillness.reset(now)
        if self._source is None and self._state not in TERMINAL_STATES:
            self._publish(AttentionState.PERMISSION_NEEDED)

    def grant(self, now: float | None = None) -> AttentionState:
        """Acquire the camera. Also the retry path out of permission-denied/error."""
        self._active = True
        self._debounce.cancel()
        self._candidate = None
        self._publish(AttentionState.INITIALIZING)
        self._release_source()
        try:
            self._source = self._camera_opener(self.profile)
        except PermissionDenied as e:
            logger.warning("Camera permission denied: %s", e)
            self._publish(AttentionState.PERMISSION_DENIED)
            return self._state
        except Exception as e:
            logger.error("Camera initialization failed: %s", e)
            self._publish(AttentionState.ERROR)
            return self._state

        self._publish(AttentionState.FOCUSED)
        if not self._detector_loaded:
            self._detector = self._detector_loader()
            self._detector_loaded = True
        self.stillness.reset(now)
        return self._state

    def deactivate(self) -> None:
        """Tear down from any state: camera released, timer cleared, state off."""
        self._active = False
        self._release_source()
        self._debounce.cancel()
        self._candidate = None
        self.last_composite = None
        self.last_frame = None
        self._publish(AttentionState.OFF)

    def set_capture_profile(self, profile: CaptureProfile, now: float | None = None) -> None:
        """Change capture geometry; an open stream is fully released before re-opening."""
        self.profile = profile
        if self._source is None:
            return
        self._release_source()
        try:
            self._source = self._camera_opener(profile)
        except PermissionDenied as e:
            logger.warning("Camera permission denied on re-acquire: %s", e)
            self._debounce.cancel()
            self._publish(AttentionState.PERMISSION_DENIED)
        except Exception as e:
            logger.error("Camera re-acquire failed: %s", e)
            self._debounce.cancel()
            self._publish(AttentionState.ERROR)

    def close(self) -> None:
        self.deactivate()
        if self._detector is not None:
            self._detector.close()
            self._detector = None
        self._detector_loaded = False

    def _release_source(self) -> None:
        source = self._source
        self._source = None
        if source is not None:
            source.release()
            logger.info("Camera released")

    # -- frame loop --------------------------------------------------------

    def read_frame(self) -> Any | None:
        source = self._source
        if source is None:
            return None
        ok, frame = source.read()
        return frame if ok and frame is not None else None

    def analyze(self, frame: Any) -> FrameAnalysis:
        """Detection + composite. No state is touched here."""
        analysis = FrameAnalysis(frame=frame)
        detector = self._detector
        if detector is not None:
            analysis.detected = True
            try:
                analysis.faces = run_detector(detector, frame)
            except FrameProcessingError as e:
                logger.debug("Frame processing failed: %s", e)
                analysis.failed = True
        try:
            analysis.composite = render_privacy_composite(frame, analysis.faces)
        except Exception as e:
            logger.debug("Composite render failed: %s", e)
        return analysis

    def apply(self, analysis: FrameAnalysis, now: float | None = None) -> None:
        ts = now if now is not None else time.time()
        if not self._active:
            return
        self.poll(ts)
        self.frame_count += 1
        if analysis.frame is not None:
            self.last_frame = analysis.frame
        if analysis.composite is not None:
            self.last_composite = analysis.composite
            self.last_draw_ts = ts

        if analysis.detected and self._state in CAPTURING_STATES:
            raw = classify_observation(
                analysis.faces,
                pupil_offset_threshold=self.config.pupil_offset_threshold,
                gaze_threshold=self.config.gaze_threshold,
            )
            self._propose(raw, ts)

        face = primary_face(analysis.faces)
        if face is not None:
            self.stillness.observe(stillness_centroid(face), ts)
        if self.stillness.check(ts):
            logger.info("Prolonged stillness (%.0fs)", self.config.stillness_seconds)
            for callback in list(self._still_listeners):
                callback()

    def process_frame(self, frame: Any, now: float | None = None) -> None:
        self.apply(self.analyze(frame), now)

    def poll(self, now: float | None = None) -> None:
        """Fire the debounce timer if its deadline has passed."""
        self._debounce.poll(now)

    def _propose(self, raw: AttentionState, now: float) -> None:
        if raw == self._state:
            self._debounce.cancel()
            self._candidate = None
            return
        if raw != self._candidate:
            # a new candidate restarts the delay
            self._debounce.cancel()
            self._candidate = raw
        self._debounce.arm(self.config.debounce_seconds, self._publish_candidate, now)

    def _publish_candidate(self) -> None:
        candidate = self._candidate
        self._candidate = None
        if candidate is not None and self._active and self._state in CAPTURING_STATES:
            self._publish(candidate)
