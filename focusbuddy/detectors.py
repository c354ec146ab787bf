from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

from .errors import FrameProcessingError, ModelLoadFailure

logger = logging.getLogger(__name__)

FACE_LANDMARKER_URL = "https://storage.googleapis.com/mediapipe-tasks/face_landmarker/face_landmarker.task"

DEFAULT_DETECTORS = ("mediapipe-tasks", "mediapipe-facemesh", "haar")

# FaceMesh landmark indices (478-point topology with refined irises).
_EYE_A_CORNERS = (33, 133)
_EYE_B_CORNERS = (362, 263)
_IRIS_A_CENTER = 468
_IRIS_B_CENTER = 473
_NOSE_TIP = 1


@dataclass(frozen=True)
class Keypoint:
    x: float  # pixels
    y: float  # pixels
    name: str | None = None


@dataclass
class FaceObservation:
    keypoints: list[Keypoint]
    # Coarse gaze confidences in [0, 1]: "look_out", "look_up", "look_down".
    gaze: dict[str, float] = field(default_factory=dict)

    def named(self, name: str) -> Keypoint | None:
        for kp in self.keypoints:
            if kp.name == name:
                return kp
        return None

    def bbox(self) -> tuple[float, float, float, float] | None:
        """(min_x, min_y, max_x, max_y) over all keypoints."""
        if not self.keypoints:
            return None
        xs = [kp.x for kp in self.keypoints]
        ys = [kp.y for kp in self.keypoints]
        return min(xs), min(ys), max(xs), max(ys)

    @property
    def width(self) -> float:
        box = self.bbox()
        return 0.0 if box is None else box[2] - box[0]


class FaceDetector:
    """
    A landmark backend.
    Must expose:
    - name
    - detect(bgr_frame) -> list[FaceObservation]
    - close() -> None
    """

    name = "base"

    def detect(self, frame: Any) -> list[FaceObservation]:  # pragma: no cover
        raise NotImplementedError

    def close(self) -> None:
        return None


def _midpoint(a: Keypoint, b: Keypoint, name: str) -> Keypoint:
    return Keypoint(x=(a.x + b.x) / 2.0, y=(a.y + b.y) / 2.0, name=name)


def _mesh_keypoints(landmarks: Sequence[Any], w: int, h: int, *, with_pupils: bool) -> list[Keypoint]:
    pts = [Keypoint(x=float(p.x) * w, y=float(p.y) * h) for p in landmarks]
    named = [
        _midpoint(pts[_EYE_A_CORNERS[0]], pts[_EYE_A_CORNERS[1]], "left_eye"),
        _midpoint(pts[_EYE_B_CORNERS[0]], pts[_EYE_B_CORNERS[1]], "right_eye"),
        Keypoint(x=pts[_NOSE_TIP].x, y=pts[_NOSE_TIP].y, name="nose"),
    ]
    if with_pupils and len(pts) > _IRIS_B_CENTER:
        named.append(Keypoint(x=pts[_IRIS_A_CENTER].x, y=pts[_IRIS_A_CENTER].y, name="left_pupil"))
        named.append(Keypoint(x=pts[_IRIS_B_CENTER].x, y=pts[_IRIS_B_CENTER].y, name="right_pupil"))
    return pts + named


class MediaPipeTasksDetector(FaceDetector):
    """
    MediaPipe Tasks FaceLandmarker with blendshapes.

    Gaze comes from the eyeLook* blendshapes; pupils are not reported so the
    classifier relies on the coarse gaze confidences.
    """

    name = "mediapipe-tasks"

    def __init__(self, *, task_path: Path, num_faces: int = 2):
        if not Path(task_path).exists():
            raise ModelLoadFailure(f"face_landmarker.task not found at {task_path}")
        try:
            import cv2  # type: ignore
            import mediapipe as mp  # type: ignore
            from mediapipe.tasks.python import vision  # type: ignore
            from mediapipe.tasks.python.core import base_options as _base_options  # type: ignore

            base = _base_options.BaseOptions(model_asset_path=str(task_path))
            opts = vision.FaceLandmarkerOptions(
                base_options=base,
                output_face_blendshapes=True,
                output_facial_transformation_matrixes=False,
                num_faces=num_faces,
            )
            self._landmarker = vision.FaceLandmarker.create_from_options(opts)
        except Exception as e:
            raise ModelLoadFailure(f"MediaPipe FaceLandmarker init failed: {e}") from e
        self._cv2 = cv2
        self._mp = mp

    def detect(self, frame: Any) -> list[FaceObservation]:
        h, w = frame.shape[:2]
        rgb = self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)
        res = self._landmarker.detect(self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb))
        if not res.face_landmarks:
            return []

        faces: list[FaceObservation] = []
        for i, lms in enumerate(res.face_landmarks):
            gaze: dict[str, float] = {}
            if res.face_blendshapes and i < len(res.face_blendshapes):
                scores = {c.category_name: float(c.score) for c in res.face_blendshapes[i]}
                gaze = {
                    "look_out": max(scores.get("eyeLookOutLeft", 0.0), scores.get("eyeLookOutRight", 0.0)),
                    "look_up": max(scores.get("eyeLookUpLeft", 0.0), scores.get("eyeLookUpRight", 0.0)),
                    "look_down": max(scores.get("eyeLookDownLeft", 0.0), scores.get("eyeLookDownRight", 0.0)),
                }
            faces.append(FaceObservation(keypoints=_mesh_keypoints(lms, w, h, with_pupils=False), gaze=gaze))
        return faces

    def close(self) -> None:
        self._landmarker.close()


class FaceMeshDetector(FaceDetector):
    """Legacy MediaPipe FaceMesh with refined iris landmarks (named pupils)."""

    name = "mediapipe-facemesh"

    def __init__(self, *, max_faces: int = 2):
        try:
            import cv2  # type: ignore
            import mediapipe as mp  # type: ignore

            self._mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=False,
                max_num_faces=max_faces,
                refine_landmarks=True,
                min_detection_confidence=0.5,
                min_tracking_confidence=0.5,
            )
        except Exception as e:
            raise ModelLoadFailure(f"MediaPipe FaceMesh init failed: {e}") from e
        self._cv2 = cv2

    def detect(self, frame: Any) -> list[FaceObservation]:
        h, w = frame.shape[:2]
        rgb = self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)
        res = self._mesh.process(rgb)
        if not res.multi_face_landmarks:
            return []
        return [
            FaceObservation(keypoints=_mesh_keypoints(face.landmark, w, h, with_pupils=True))
            for face in res.multi_face_landmarks
        ]

    def close(self) -> None:
        self._mesh.close()


class HaarCascadeDetector(FaceDetector):
    """
    OpenCV Haar cascades, the last-resort backend.

    Reports the face box corners plus eye centers (when two eyes are found)
    and the box center as "nose". No pupils, no gaze.
    """

    name = "haar"

    def __init__(self, *, scale: float = 0.5):
        try:
            import cv2  # type: ignore
        except ImportError as e:
            raise ModelLoadFailure("OpenCV is required for the Haar backend") from e

        face_path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        eye_path = cv2.data.haarcascades + "haarcascade_eye.xml"
        self._face_cascade = cv2.CascadeClassifier(face_path)
        if self._face_cascade.empty():
            raise ModelLoadFailure(f"Failed to load Haar face cascade at {face_path}")
        self._eye_cascade = cv2.CascadeClassifier(eye_path)
        if self._eye_cascade.empty():
            # Eye cascade isn't strictly required; keep running without it.
            self._eye_cascade = None
        self._cv2 = cv2
        self._scale = scale

    def detect(self, frame: Any) -> list[FaceObservation]:
        cv2 = self._cv2
        h, w = frame.shape[:2]
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        scale = self._scale
        small = cv2.resize(gray, (max(1, int(w * scale)), max(1, int(h * scale))))
        boxes = self._face_cascade.detectMultiScale(
            small,
            scaleFactor=1.1,
            minNeighbors=5,
            minSize=(int(60 * scale), int(60 * scale)),
        )

        faces: list[FaceObservation] = []
        for bx, by, bw, bh in boxes:
            x, y, fw, fh = int(bx / scale), int(by / scale), int(bw / scale), int(bh / scale)
            kps = [
                Keypoint(x=float(x), y=float(y)),
                Keypoint(x=float(x + fw), y=float(y + fh)),
                Keypoint(x=x + fw / 2.0, y=y + fh * 0.6, name="nose"),
            ]
            if self._eye_cascade is not None:
                roi = gray[max(0, y) : min(h, y + int(0.6 * fh)), max(0, x) : min(w, x + fw)]
                eyes = self._eye_cascade.detectMultiScale(roi, scaleFactor=1.1, minNeighbors=5, minSize=(24, 24))
                if len(eyes) >= 2:
                    # two largest, ordered left-to-right in the image
                    pair = sorted(sorted(eyes, key=lambda e: e[2] * e[3], reverse=True)[:2], key=lambda e: e[0])
                    for (ex, ey, ew, eh), name in zip(pair, ("left_eye", "right_eye")):
                        kps.append(Keypoint(x=x + ex + ew / 2.0, y=y + ey + eh / 2.0, name=name))
            faces.append(FaceObservation(keypoints=kps))
        return faces


def build_detector(name: str, *, task_path: Path | None = None) -> FaceDetector:
    if name == MediaPipeTasksDetector.name:
        if task_path is None:
            raise ModelLoadFailure("mediapipe-tasks needs a face_landmarker.task path")
        return MediaPipeTasksDetector(task_path=task_path)
    if name == FaceMeshDetector.name:
        return FaceMeshDetector()
    if name == HaarCascadeDetector.name:
        return HaarCascadeDetector()
    raise ModelLoadFailure(f"Unknown detector backend: {name}")


def load_detector_chain(
    names: Sequence[str] = DEFAULT_DETECTORS,
    *,
    task_path: Path | None = None,
    factory: Callable[..., FaceDetector] = build_detector,
) -> FaceDetector | None:
    """
    Try each backend in order and return the first that initializes.

    Returns None when every backend fails; callers keep the camera running
    and show raw video.
    """
    for name in names:
        try:
            detector = factory(name, task_path=task_path)
        except ModelLoadFailure as e:
            logger.warning("Detector %s unavailable: %s", name, e)
            continue
        logger.info("Using detector backend %s", name)
        return detector
    logger.warning("No face detector available; raw video only")
    return None


def run_detector(detector: FaceDetector, frame: Any) -> list[FaceObservation]:
    """Wrap backend exceptions as FrameProcessingError."""
    try:
        return detector.detect(frame)
    except Exception as e:
        raise FrameProcessingError(str(e)) from e


def ensure_face_landmarker_task(task_path: Path, timeout_seconds: float = 60.0) -> Path:
    """Download face_landmarker.task if it is missing."""
    import requests

    if task_path.exists() and task_path.stat().st_size > 1_000_000:
        return task_path
    task_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading face_landmarker.task to %s", task_path)
    r = requests.get(FACE_LANDMARKER_URL, timeout=timeout_seconds)
    r.raise_for_status()
    task_path.write_bytes(r.content)
    return task_path
