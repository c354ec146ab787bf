from __future__ import annotations

import math
from typing import Any, Sequence

import cv2
import numpy as np

from .detectors import FaceObservation

FACE_PADDING = 0.35
BLUR_SIGMA = 12.0


def face_box(face: FaceObservation, width: int, height: int) -> tuple[float, float, float, float] | None:
    """Keypoint bounding box clamped to the frame, or None without keypoints."""
    box = face.bbox()
    if box is None:
        return None
    min_x, min_y, max_x, max_y = box
    return max(0.0, min_x), max(0.0, min_y), min(float(width), max_x), min(float(height), max_y)


def sharp_region(
    faces: Sequence[FaceObservation],
    width: int,
    height: int,
    padding: float = FACE_PADDING,
) -> tuple[int, int, int, int] | None:
    """
    (x, y, w, h) of the widest face, padded on each side and clamped to the frame.
    """
    boxes = [b for b in (face_box(f, width, height) for f in faces) if b is not None]
    if not boxes:
        return None
    min_x, min_y, max_x, max_y = max(boxes, key=lambda b: b[2] - b[0])
    bw = max_x - min_x
    bh = max_y - min_y
    sx = max(0, math.floor(min_x - bw * padding))
    sy = max(0, math.floor(min_y - bh * padding))
    sw = min(width - sx, math.floor(bw * (1 + 2 * padding)))
    sh = min(height - sy, math.floor(bh * (1 + 2 * padding)))
    if sw <= 0 or sh <= 0:
        return None
    return sx, sy, sw, sh


def render_privacy_composite(frame: Any, faces: Sequence[FaceObservation]) -> np.ndarray:
    """
    Blur the whole frame and paste the closest face back in sharp.

    Frames without faces come back unmodified (as a copy).
    """
    out = np.ascontiguousarray(frame).copy()
    h, w = out.shape[:2]
    region = sharp_region(faces, w, h)
    if region is None:
        return out
    blurred = cv2.GaussianBlur(out, (0, 0), sigmaX=BLUR_SIGMA)
    sx, sy, sw, sh = region
    blurred[sy : sy + sh, sx : sx + sw] = out[sy : sy + sh, sx : sx + sw]
    return blurred


def encode_jpeg(frame: Any, quality: int = 80) -> bytes | None:
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        return None
    return buf.tobytes()
