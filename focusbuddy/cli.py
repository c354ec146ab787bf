from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path

import typer

from .agent import FocusAgent
from .coach import CoachClient
from .config import load_config
from .detectors import ensure_face_landmarker_task
from .storage import load_progress, progress_to_payload

app = typer.Typer(
    help="FocusBuddy engine commands (run, log, quote).",
    no_args_is_help=True,
)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[focusbuddy] %(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("run")
def run(
    host: str | None = typer.Option(None, "--host", help="Control server bind host."),
    port: int | None = typer.Option(None, "--port", help="Control server bind port."),
    target_fps: float | None = typer.Option(None, "--fps", min=0.5, help="Frame loop rate."),
    camera_index: int | None = typer.Option(None, "--camera-index", help="OpenCV camera index."),
    detectors: str | None = typer.Option(
        None,
        "--detectors",
        help="Comma-separated detector chain, e.g. mediapipe-tasks,haar.",
    ),
    shield: bool = typer.Option(False, "--shield", help="Enable camera tracking and acquire the camera on start."),
    download_task: bool = typer.Option(
        False,
        "--download-task",
        help="Download face_landmarker.task before starting if it is missing.",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level (DEBUG, INFO, ...)."),
) -> None:
    cfg = load_config()
    overrides: dict = {}
    if host is not None:
        overrides["server_host"] = host
    if port is not None:
        overrides["server_port"] = port
    if target_fps is not None:
        overrides["target_fps"] = target_fps
    if camera_index is not None:
        overrides["camera_index"] = camera_index
    if detectors:
        overrides["detectors"] = tuple(d.strip() for d in detectors.split(",") if d.strip())
    if log_level:
        overrides["log_level"] = log_level.upper()
    cfg = replace(cfg, **overrides)
    _setup_logging(cfg.log_level)

    if download_task:
        path = ensure_face_landmarker_task(Path(cfg.face_task_path))
        typer.echo(f"[run] Face landmarker model: {path}")

    agent = FocusAgent(cfg)
    if shield:
        agent.grant_camera()
        typer.echo(f"[run] Camera state: {agent.classifier.state.value}")

    typer.echo(f"[run] Serving on http://{cfg.server_host}:{cfg.server_port}")
    try:
        asyncio.run(agent.run(cfg.server_host, cfg.server_port))
    except KeyboardInterrupt:
        typer.echo("[run] Stopped")


@app.command("log")
def show_log(
    state_dir: Path | None = typer.Option(None, "--state-dir", help="Override FOCUSBUDDY_STATE_DIR."),
) -> None:
    cfg = load_config()
    progress = load_progress(str(state_dir) if state_dir else cfg.state_dir)
    typer.echo(json.dumps(progress_to_payload(progress), indent=2))


@app.command("quote")
def quote() -> None:
    cfg = load_config()
    client = CoachClient(cfg.coach_base_url, cfg.coach_token)
    typer.echo(client.motivational_quote())
