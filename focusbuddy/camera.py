from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any

from .errors import DeviceError, PermissionDenied

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureProfile:
    """
    Requested capture geometry.

    - safe: 640x480, works on nearly every webcam
    - portrait: 720x1280
    - default: 1280x720 landscape
    """

    portrait: bool = False
    safe: bool = False

    @property
    def size(self) -> tuple[int, int]:
        if self.safe:
            return 640, 480
        if self.portrait:
            return 720, 1280
        return 1280, 720


def _device_path_to_index(device: str) -> int | None:
    # "/dev/video0" -> 0
    if device.startswith("/dev/video"):
        try:
            return int(device.replace("/dev/video", ""))
        except ValueError:
            return None
    return None


def _apply_opencv_videoio_env() -> None:
    # The OBSENSOR backend can produce confusing "Camera index out of range"
    # errors for normal V4L2 devices.
    os.environ.setdefault("OPENCV_VIDEOIO_PRIORITY_OBSENSOR", "0")


class FrameSource:
    """
    Minimal interface used by the classifier.
    Must expose:
    - read() -> (ok: bool, frame: ndarray | None)
    - release() -> None
    """

    def read(self) -> tuple[bool, Any | None]:  # pragma: no cover
        raise NotImplementedError

    def release(self) -> None:  # pragma: no cover
        raise NotImplementedError


class Cv2FrameSource(FrameSource):
    def __init__(self, cap: Any):
        self._cap = cap
        self._released = False
        # read() may run in a worker thread while release() runs on the loop
        self._lock = threading.Lock()

    def read(self) -> tuple[bool, Any | None]:
        with self._lock:
            if self._released:
                return False, None
            ok, frame = self._cap.read()
        return ok, frame

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            self._cap.release()


def _check_device_permissions(index: int, device: str | None) -> None:
    path = device or f"/dev/video{index}"
    if os.path.exists(path) and not os.access(path, os.R_OK | os.W_OK):
        raise PermissionDenied(f"No read/write access to {path}")


def open_frame_source(
    index: int = 0,
    device: str | None = None,
    profile: CaptureProfile | None = None,
) -> FrameSource:
    """
    Open the webcam through OpenCV, preferring V4L2 and falling back to the default backend.

    Raises PermissionDenied when the device node is not accessible and DeviceError
    when no frame can be read.
    """
    _apply_opencv_videoio_env()
    profile = profile or CaptureProfile()

    try:
        import cv2  # type: ignore
    except ImportError as e:  # pragma: no cover
        raise DeviceError("OpenCV (cv2) is not installed. Install opencv-python.") from e

    cam_index = index
    if device:
        idx = _device_path_to_index(device)
        if idx is not None:
            cam_index = idx

    _check_device_permissions(cam_index, device)

    cap = cv2.VideoCapture(cam_index, cv2.CAP_V4L2)
    if not cap.isOpened():
        cap.release()
        cap = cv2.VideoCapture(cam_index)
    if not cap.isOpened():
        cap.release()
        raise DeviceError(f"Could not open camera index {cam_index}")

    width, height = profile.size
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    # Warm-up: some devices return empty frames for a moment after opening.
    for _ in range(20):
        ok, frame = cap.read()
        if ok and frame is not None:
            logger.info("Camera opened index=%s requested=%sx%s", cam_index, width, height)
            return Cv2FrameSource(cap)

    cap.release()
    raise DeviceError(f"Camera index {cam_index} opened but produced no frames")
