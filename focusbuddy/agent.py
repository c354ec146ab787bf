from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from .attention import AttentionClassifier, AttentionState, ClassifierConfig
from .camera import CaptureProfile, FrameSource, open_frame_source
from .coach import CoachClient
from .composite import encode_jpeg
from .config import Config
from .detectors import FaceDetector, load_detector_chain
from .engagement import ActivityTracker, EngagementScorer, ScorerConfig
from .models import AlertPayload, SessionSummaryPayload, StatusResponse
from .session import SessionConfig, SessionController
from .storage import record_distraction, record_session
from .summary import SessionSummary, summary_to_payload

logger = logging.getLogger(__name__)


class FocusAgent:
    """
    One engine instance: classifier + scorer + session controller, wired together.

    Two cooperative tasks run on the event loop:
    - the frame loop, paced to target_fps (camera read and detection run in a
      worker thread, results are applied back on the loop)
    - the 1 Hz tick: scorer.tick, scorer.check_penalties, controller.tick
    """

    def __init__(
        self,
        config: Config,
        *,
        camera_opener: Callable[[CaptureProfile], FrameSource] | None = None,
        detector_loader: Callable[[], FaceDetector | None] | None = None,
        coach: CoachClient | None = None,
        clock: Callable[[], float] = time.time,
        persist: bool = True,
    ):
        self.config = config
        self.clock = clock
        self.persist = persist
        self.coach = coach or CoachClient(config.coach_base_url, config.coach_token)
        now = clock()

        self.activity = ActivityTracker(now=now)
        self.classifier = AttentionClassifier(
            camera_opener=camera_opener or self._open_camera,
            detector_loader=detector_loader or self._load_detector,
            config=ClassifierConfig(),
            profile=CaptureProfile(portrait=config.portrait, safe=config.safe_constraints),
        )
        self.scorer = EngagementScorer(
            self.activity,
            ScorerConfig(threshold=config.engagement_threshold),
            now=now,
        )
        self.controller = SessionController(
            SessionConfig(
                focus_minutes=config.focus_minutes,
                short_break_minutes=config.short_break_minutes,
                long_break_minutes=config.long_break_minutes,
                cycles_until_long_break=config.cycles_until_long_break,
                threshold=config.engagement_threshold,
            ),
            history=lambda: self.scorer.history,
            on_session_complete=self._on_session_complete,
            on_distraction=self._on_distraction,
            on_alert=self._on_alert,
            on_summary=self._on_summary,
            now=now,
        )
        self.scorer.on_threshold_breach = self.controller.on_engagement_low
        self.scorer.on_challenge = self._on_challenge
        self.classifier.add_listener(self._on_attention)
        self.classifier.add_still_listener(self.controller.on_stillness)

        self.shield_enabled = False
        self.alerts: deque[AlertPayload] = deque(maxlen=50)
        self.summaries: deque[dict[str, Any]] = deque(maxlen=20)
        self.challenge_pending = False
        self._stopping = False
        self._frame_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    # -- wiring ------------------------------------------------------------

    def _open_camera(self, profile: CaptureProfile) -> FrameSource:
        return open_frame_source(index=self.config.camera_index, device=self.config.camera_device, profile=profile)

    def _load_detector(self) -> FaceDetector | None:
        return load_detector_chain(self.config.detectors, task_path=Path(self.config.face_task_path))

    def _on_attention(self, state: AttentionState) -> None:
        self.scorer.observe_attention(state, tracking=self.shield_enabled)
        self.controller.on_attention_change(state)

    def _on_session_complete(self, minutes: int) -> None:
        if self.persist:
            progress = record_session(self.config.state_dir, minutes)
            logger.info("Session recorded: +%s min, points=%s streak=%s", minutes, progress.points, progress.streak)

    def _on_distraction(self) -> None:
        if self.persist:
            record_distraction(self.config.state_dir)

    def _on_challenge(self, score: float) -> None:
        self.challenge_pending = True
        self.controller.on_engagement_challenge(score)

    def _on_alert(self, message: str, kind: str) -> None:
        if kind == "distraction" and self.coach.base_url:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                message = self.coach.distraction_message(fallback=message)
            else:
                task = loop.create_task(self._coach_distraction_alert(message))
                self._background.add(task)
                task.add_done_callback(self._background.discard)
                return
        self.alerts.append(AlertPayload(message=message, kind=kind, at=self.clock()))

    async def _coach_distraction_alert(self, fallback: str) -> None:
        message = await asyncio.to_thread(self.coach.distraction_message, fallback)
        self.alerts.append(AlertPayload(message=message, kind="distraction", at=self.clock()))

    def _on_summary(self, summary: SessionSummary) -> None:
        payload = summary_to_payload(
            summary=summary,
            focus_minutes=self.controller.config.focus_minutes,
            completed_at=self.clock(),
        )
        self.summaries.append(payload)
        logger.info(
            "Session summary avg=%s below=%s stills=%s",
            payload["averageScore"],
            payload["belowThresholdLabel"],
            payload["stillnessAlerts"],
        )

    # -- shield ------------------------------------------------------------

    def enable_shield(self) -> None:
        now = self.clock()
        self.shield_enabled = True
        self.controller.set_attention_tracking(True)
        self.scorer.start(now)
        self.classifier.activate(now)
        self.scorer.observe_attention(self.classifier.state, tracking=True)

    def disable_shield(self) -> None:
        self.shield_enabled = False
        self.classifier.deactivate()
        self.controller.set_attention_tracking(False)
        self.scorer.set_tracking(False)
        self.scorer.stop()

    def grant_camera(self) -> AttentionState:
        if not self.shield_enabled:
            self.enable_shield()
        return self.classifier.grant(self.clock())

    def resolve_challenge(self, passed: bool) -> None:
        self.challenge_pending = False
        if passed:
            logger.info("Re-engagement challenge passed; engagement reset")
            self.scorer.reset(self.clock())

    def set_capture_profile(self, profile: CaptureProfile) -> None:
        self.classifier.set_capture_profile(profile, self.clock())

    # -- read side ---------------------------------------------------------

    def status(self) -> StatusResponse:
        now = self.clock()
        summary = self.controller.last_summary
        pending = self.classifier.pending_state
        return StatusResponse(
            attention=self.classifier.state.value,
            pendingAttention=pending.value if pending is not None else None,
            shieldEnabled=self.shield_enabled,
            detector=self.classifier.detector_name,
            showRawVideo=self.classifier.show_raw_video(now),
            score=round(self.scorer.score, 2),
            breached=self.scorer.breached,
            mode=self.controller.mode.value,
            remainingSeconds=self.controller.remaining_seconds,
            isActive=self.controller.is_active,
            isPausedByAttention=self.controller.is_paused_by_attention,
            completedCycles=self.controller.completed_cycles,
            stillnessCount=self.controller.stillness_count,
            breakMinutes=self.controller.break_minutes,
            challengePending=self.challenge_pending,
            lastSummary=(
                SessionSummaryPayload(
                    averageScore=summary.average_score,
                    secondsBelowThreshold=summary.seconds_below_threshold,
                    stillnessAlerts=summary.stillness_alerts,
                    samples=summary.samples,
                )
                if summary is not None
                else None
            ),
        )

    def preview_frame(self) -> Any | None:
        """Composite while it is fresh, otherwise the raw camera frame."""
        if self.classifier.show_raw_video(self.clock()):
            return self.classifier.last_frame
        return self.classifier.last_composite

    async def mjpeg_frames(self, interval_seconds: float = 0.05) -> AsyncIterator[bytes]:
        boundary = "frame"
        while not self._stopping:
            frame = self.preview_frame()
            if frame is None:
                await asyncio.sleep(0.1)
                continue
            jpeg = await asyncio.to_thread(encode_jpeg, frame)
            if jpeg is not None:
                yield (
                    f"--{boundary}\r\nContent-Type: image/jpeg\r\nContent-Length: {len(jpeg)}\r\n\r\n".encode()
                    + jpeg
                    + b"\r\n"
                )
            await asyncio.sleep(interval_seconds)

    # -- scheduled tasks ---------------------------------------------------

    def tick(self) -> None:
        now = self.clock()
        self.scorer.tick(now)
        self.scorer.check_penalties(now)
        self.controller.tick(now)

    async def frame_loop(self) -> None:
        period = 1.0 / max(self.config.target_fps, 0.1)
        while not self._stopping:
            start = time.monotonic()
            classifier = self.classifier
            if classifier.active and classifier.capturing:
                try:
                    frame = await asyncio.to_thread(classifier.read_frame)
                    if frame is not None:
                        analysis = await asyncio.to_thread(classifier.analyze, frame)
                        classifier.apply(analysis, self.clock())
                except Exception as e:
                    # transient capture issues; keep the loop alive
                    logger.debug("Frame loop iteration failed: %s", e)
            classifier.poll(self.clock())
            elapsed = time.monotonic() - start
            await asyncio.sleep(max(0.0, period - elapsed))

    async def tick_loop(self) -> None:
        next_tick = time.monotonic() + 1.0
        while not self._stopping:
            await asyncio.sleep(max(0.0, next_tick - time.monotonic()))
            next_tick += 1.0
            self.tick()

    async def run(self, host: str, port: int) -> None:
        import uvicorn

        from .server import create_app

        server = uvicorn.Server(uvicorn.Config(create_app(self), host=host, port=port, log_level="warning"))
        self.start_tasks()
        logger.info("Control server listening on http://%s:%s", host, port)
        try:
            await server.serve()
        finally:
            await self.stop()

    def start_tasks(self) -> None:
        self._stopping = False
        self._frame_task = asyncio.create_task(self.frame_loop())
        self._tick_task = asyncio.create_task(self.tick_loop())

    async def stop(self) -> None:
        """
        Stop both loops, then release the camera and detector.

        The frame loop is not cancelled. It exits on the stop flag once its
        in-flight read or detection returns, and only then is the detector closed.
        """
        self._stopping = True
        if self._tick_task is not None:
            self._tick_task.cancel()
        tasks = [t for t in (self._frame_task, self._tick_task, *self._background) if t is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        self._frame_task = self._tick_task = None
        self.classifier.close()
        logger.info("Agent stopped")
