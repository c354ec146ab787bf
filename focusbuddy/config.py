from __future__ import annotations

import os
from dataclasses import dataclass

from .detectors import DEFAULT_DETECTORS


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class Config:
    # Local storage (daily log)
    state_dir: str

    # Capture loop
    target_fps: float
    camera_index: int
    camera_device: str | None
    portrait: bool
    safe_constraints: bool

    # Detector fallback chain, tried in order
    detectors: tuple[str, ...]
    face_task_path: str

    # Local control server
    server_host: str
    server_port: int

    # Hosted text generation (optional)
    coach_base_url: str | None
    coach_token: str | None

    # Engagement / timer
    engagement_threshold: float
    focus_minutes: int
    short_break_minutes: int
    long_break_minutes: int
    cycles_until_long_break: int

    log_level: str


def load_config() -> Config:
    state_dir = os.getenv("FOCUSBUDDY_STATE_DIR", os.path.expanduser("~/.focusbuddy"))
    detectors = tuple(
        name.strip()
        for name in os.getenv("FOCUSBUDDY_DETECTORS", ",".join(DEFAULT_DETECTORS)).split(",")
        if name.strip()
    )
    target_fps = _env_float("FOCUSBUDDY_TARGET_FPS", 15.0)
    if target_fps <= 0:
        raise ValueError(f"FOCUSBUDDY_TARGET_FPS must be positive, got {target_fps}")

    return Config(
        state_dir=state_dir,
        target_fps=target_fps,
        camera_index=_env_int("FOCUSBUDDY_CAMERA_INDEX", 0),
        camera_device=os.getenv("FOCUSBUDDY_CAMERA_DEVICE"),
        portrait=_env_bool("FOCUSBUDDY_PORTRAIT", False),
        safe_constraints=_env_bool("FOCUSBUDDY_SAFE_CONSTRAINTS", False),
        detectors=detectors,
        face_task_path=os.getenv(
            "FOCUSBUDDY_FACE_TASK_PATH",
            os.path.join(state_dir, "models", "face_landmarker.task"),
        ),
        server_host=os.getenv("FOCUSBUDDY_SERVER_HOST", "127.0.0.1"),
        server_port=_env_int("FOCUSBUDDY_SERVER_PORT", 8765),
        coach_base_url=(os.getenv("FOCUSBUDDY_COACH_BASE_URL") or "").rstrip("/") or None,
        coach_token=os.getenv("FOCUSBUDDY_COACH_TOKEN"),
        engagement_threshold=_env_float("FOCUSBUDDY_ENGAGEMENT_THRESHOLD", 30.0),
        focus_minutes=_env_int("FOCUSBUDDY_FOCUS_MINUTES", 25),
        short_break_minutes=_env_int("FOCUSBUDDY_SHORT_BREAK_MINUTES", 5),
        long_break_minutes=_env_int("FOCUSBUDDY_LONG_BREAK_MINUTES", 15),
        cycles_until_long_break=_env_int("FOCUSBUDDY_CYCLES_UNTIL_LONG_BREAK", 4),
        log_level=os.getenv("FOCUSBUDDY_LOG_LEVEL", "INFO").upper(),
    )
