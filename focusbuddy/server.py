from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from . import __version__
from .camera import CaptureProfile
from .models import (
    ActivityEvent,
    AlertPayload,
    CaptureProfileRequest,
    ChallengeResult,
    EngagementRecordPayload,
    ShieldToggle,
    StatusResponse,
    TimerConfigRequest,
    VisibilityEvent,
    WindowFocusEvent,
)
from .session import PRESETS
from .storage import load_progress, progress_to_payload

if TYPE_CHECKING:
    from .agent import FocusAgent


def create_app(agent: FocusAgent) -> FastAPI:
    """Local control surface. Handlers run on the agent's event loop."""
    app = FastAPI(title="FocusBuddy Engine", version=__version__)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "detector": agent.classifier.detector_name}

    @app.get("/status", response_model=StatusResponse)
    async def status() -> StatusResponse:
        return agent.status()

    @app.get("/history", response_model=list[EngagementRecordPayload])
    async def history() -> list[EngagementRecordPayload]:
        return [EngagementRecordPayload(time=r.time, score=r.score) for r in agent.scorer.history]

    @app.get("/alerts", response_model=list[AlertPayload])
    async def alerts() -> list[AlertPayload]:
        return list(agent.alerts)

    @app.get("/summaries")
    async def summaries() -> list[dict[str, Any]]:
        return list(agent.summaries)

    @app.get("/progress")
    async def progress() -> dict[str, Any]:
        return progress_to_payload(load_progress(agent.config.state_dir))

    @app.get("/quote")
    def quote() -> dict[str, str]:
        # blocking HTTP call, served from the threadpool
        return {"text": agent.coach.motivational_quote()}

    # -- activity ----------------------------------------------------------

    @app.post("/activity")
    async def activity(payload: ActivityEvent) -> dict[str, Any]:
        agent.activity.record(payload.kind, agent.clock())
        return {"ok": True, "score": round(agent.scorer.score, 2)}

    @app.post("/visibility")
    async def visibility(payload: VisibilityEvent) -> dict[str, Any]:
        agent.activity.set_visible(payload.visible, agent.clock())
        return {"ok": True, "score": round(agent.scorer.score, 2)}

    @app.post("/focus")
    async def window_focus(payload: WindowFocusEvent) -> dict[str, Any]:
        agent.activity.set_focused(payload.focused)
        return {"ok": True}

    # -- shield ------------------------------------------------------------

    @app.post("/shield", response_model=StatusResponse)
    async def shield(payload: ShieldToggle) -> StatusResponse:
        if payload.enabled:
            agent.enable_shield()
        else:
            agent.disable_shield()
        return agent.status()

    @app.post("/shield/grant", response_model=StatusResponse)
    async def shield_grant() -> StatusResponse:
        agent.grant_camera()
        return agent.status()

    @app.post("/shield/profile", response_model=StatusResponse)
    async def shield_profile(payload: CaptureProfileRequest) -> StatusResponse:
        agent.set_capture_profile(CaptureProfile(portrait=payload.portrait, safe=payload.safe))
        return agent.status()

    # -- timer -------------------------------------------------------------

    @app.post("/timer/start", response_model=StatusResponse)
    async def timer_start() -> StatusResponse:
        agent.controller.start(agent.clock())
        return agent.status()

    @app.post("/timer/pause", response_model=StatusResponse)
    async def timer_pause() -> StatusResponse:
        agent.controller.pause()
        return agent.status()

    @app.post("/timer/toggle", response_model=StatusResponse)
    async def timer_toggle() -> StatusResponse:
        agent.controller.toggle(agent.clock())
        return agent.status()

    @app.post("/timer/reset", response_model=StatusResponse)
    async def timer_reset() -> StatusResponse:
        agent.controller.reset(agent.clock())
        return agent.status()

    @app.put("/timer/config", response_model=StatusResponse)
    async def timer_config(payload: TimerConfigRequest) -> StatusResponse:
        controller = agent.controller
        if payload.focusMinutes is not None:
            controller.set_focus_minutes(payload.focusMinutes)
        if payload.shortBreakMinutes is not None:
            controller.set_short_break_minutes(payload.shortBreakMinutes)
        if payload.longBreakMinutes is not None:
            controller.set_long_break_minutes(payload.longBreakMinutes)
        if payload.cyclesUntilLongBreak is not None:
            controller.set_cycles_until_long_break(payload.cyclesUntilLongBreak)
        return agent.status()

    @app.post("/timer/preset/{name}", response_model=StatusResponse)
    async def timer_preset(name: str) -> StatusResponse:
        if name not in PRESETS:
            raise HTTPException(status_code=404, detail=f"Unknown preset: {name}")
        agent.controller.apply_preset(name)
        return agent.status()

    @app.post("/challenge", response_model=StatusResponse)
    async def challenge(payload: ChallengeResult) -> StatusResponse:
        if not agent.challenge_pending:
            raise HTTPException(status_code=409, detail="No challenge pending")
        agent.resolve_challenge(payload.passed)
        return agent.status()

    @app.post("/engagement/reset", response_model=StatusResponse)
    async def engagement_reset() -> StatusResponse:
        agent.scorer.reset(agent.clock())
        return agent.status()

    # -- preview -----------------------------------------------------------

    @app.get("/stream.mjpg")
    async def stream() -> StreamingResponse:
        return StreamingResponse(
            agent.mjpeg_frames(),
            media_type="multipart/x-mixed-replace; boundary=frame",
        )

    return app
