from __future__ import annotations

import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from .attention import AttentionState
from .engagement import EngagementRecord
from .summary import SessionSummary, compute_session_summary

logger = logging.getLogger(__name__)

DISTRACTION_PROMPTS = (
    "Wake up, stay focused!",
    "Eyes on the goal! You got this.",
    "Let's refocus. Your future self will thank you.",
    "Tiny break? Snap back to focus mode.",
    "Stay sharp, distraction detected!",
    "Deep breath, back to the task.",
    "Keep going, momentum matters!",
)

PRESETS: dict[str, tuple[int, int]] = {
    "classic": (25, 5),
    "extended": (50, 10),
}


class TimerMode(str, Enum):
    POMODORO = "pomodoro"
    SHORT_BREAK = "short-break"


@dataclass(frozen=True)
class SessionLogEntry:
    kind: str  # "focus" | "break"
    duration_minutes: int
    at: float  # epoch seconds


@dataclass
class SessionConfig:
    focus_minutes: int = 25
    short_break_minutes: int = 5
    long_break_minutes: int = 15
    cycles_until_long_break: int = 4
    threshold: float = 30.0
    log_limit: int = 50


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(value)))


class SessionController:
    """
    Focus/break countdown driven by a 1 Hz tick.

    - Counts down only while active and not paused by attention.
    - Completing a focus block reports minutes + an engagement summary and
      switches to a break (long every cycles_until_long_break completions).
    - Completing a break switches back to focus. Sessions chain automatically.
    - Attention transitions into distracted/away pause the countdown; a
      transition back to focused resumes it. Other states never pause.
    - Starting while the last reported state is distracted/away starts paused.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        history: Callable[[], Sequence[EngagementRecord]] | None = None,
        on_session_complete: Callable[[int], None] | None = None,
        on_distraction: Callable[[], None] | None = None,
        on_alert: Callable[[str, str], None] | None = None,
        on_summary: Callable[[SessionSummary], None] | None = None,
        rng: random.Random | None = None,
        now: float | None = None,
    ):
        cfg = config or SessionConfig()
        self.config = SessionConfig(
            focus_minutes=_clamp(cfg.focus_minutes, 1, 180),
            short_break_minutes=_clamp(cfg.short_break_minutes, 1, 60),
            long_break_minutes=_clamp(cfg.long_break_minutes, 5, 90),
            cycles_until_long_break=_clamp(cfg.cycles_until_long_break, 2, 10),
            threshold=cfg.threshold,
            log_limit=cfg.log_limit,
        )
        self._history = history or (lambda: ())
        self.on_session_complete = on_session_complete
        self.on_distraction = on_distraction
        self.on_alert = on_alert
        self.on_summary = on_summary
        self._rng = rng or random.Random()

        self.mode = TimerMode.POMODORO
        self.remaining_seconds = self.config.focus_minutes * 60
        self.is_active = False
        self.is_paused_by_attention = False
        self.completed_cycles = 0
        self.session_log: deque[SessionLogEntry] = deque(maxlen=self.config.log_limit)
        self.stillness_count = 0
        self.last_summary: SessionSummary | None = None

        self._break_is_long = False
        self._session_started_at = now if now is not None else time.time()
        self._attention_tracking = False
        self._last_attention: AttentionState | None = None
        self._distraction_alerted = False

    # -- helpers -----------------------------------------------------------

    def _alert(self, message: str, kind: str) -> None:
        logger.info("Alert (%s): %s", kind, message)
        if self.on_alert is not None:
            self.on_alert(message, kind)

    def _mark_session_start(self, now: float | None) -> None:
        self._session_started_at = now if now is not None else time.time()
        self.stillness_count = 0

    @property
    def break_minutes(self) -> int:
        return self.config.long_break_minutes if self._break_is_long else self.config.short_break_minutes

    @property
    def attention_tracking(self) -> bool:
        return self._attention_tracking

    # -- public controls ---------------------------------------------------

    def start(self, now: float | None = None) -> None:
        if self.is_active:
            return
        self.is_active = True
        self.is_paused_by_attention = False
        self._distraction_alerted = False
        if self.mode == TimerMode.POMODORO:
            self._mark_session_start(now)
        if self._attention_tracking and self._last_attention in (AttentionState.DISTRACTED, AttentionState.AWAY):
            self._pause_for_attention(self._last_attention)

    def pause(self) -> None:
        self.is_active = False
        self.is_paused_by_attention = False

    def toggle(self, now: float | None = None) -> None:
        if self.is_active:
            self.pause()
        else:
            self.start(now)

    def reset(self, now: float | None = None) -> None:
        self.is_active = False
        self.is_paused_by_attention = False
        self.mode = TimerMode.POMODORO
        self._break_is_long = False
        self.remaining_seconds = self.config.focus_minutes * 60
        self._mark_session_start(now)

    # -- configuration -----------------------------------------------------

    def set_focus_minutes(self, minutes: int) -> None:
        self.config.focus_minutes = _clamp(minutes, 1, 180)
        if self.mode == TimerMode.POMODORO and not self.is_active:
            self.remaining_seconds = self.config.focus_minutes * 60

    def set_short_break_minutes(self, minutes: int) -> None:
        self.config.short_break_minutes = _clamp(minutes, 1, 60)
        if self.mode == TimerMode.SHORT_BREAK and not self.is_active and not self._break_is_long:
            self.remaining_seconds = self.config.short_break_minutes * 60

    def set_long_break_minutes(self, minutes: int) -> None:
        self.config.long_break_minutes = _clamp(minutes, 5, 90)
        if self.mode == TimerMode.SHORT_BREAK and not self.is_active and self._break_is_long:
            self.remaining_seconds = self.config.long_break_minutes * 60

    def set_cycles_until_long_break(self, cycles: int) -> None:
        self.config.cycles_until_long_break = _clamp(cycles, 2, 10)

    def apply_preset(self, name: str) -> None:
        if name not in PRESETS:
            raise KeyError(name)
        focus, short = PRESETS[name]
        self.set_focus_minutes(focus)
        self.set_short_break_minutes(short)

    # -- signals -----------------------------------------------------------

    def set_attention_tracking(self, enabled: bool) -> None:
        self._attention_tracking = enabled
        if not enabled:
            self.is_paused_by_attention = False
            self._last_attention = None

    def on_attention_change(self, state: AttentionState) -> None:
        previous = self._last_attention
        self._last_attention = state
        if not self._attention_tracking or state == previous:
            return

        if state in (AttentionState.DISTRACTED, AttentionState.AWAY):
            if self.is_active and not self.is_paused_by_attention:
                self._pause_for_attention(state)
        elif state == AttentionState.FOCUSED:
            if self.is_active and self.is_paused_by_attention:
                self.is_paused_by_attention = False
                self._distraction_alerted = False
                logger.info("Timer resumed: attention focused")

    def _pause_for_attention(self, state: AttentionState) -> None:
        self.is_paused_by_attention = True
        logger.info("Timer paused: attention %s", state.value)
        if self.on_distraction is not None:
            self.on_distraction()
        if not self._distraction_alerted:
            self._distraction_alerted = True
            self._alert(self._rng.choice(DISTRACTION_PROMPTS), "distraction")

    def on_stillness(self) -> None:
        self.stillness_count += 1
        self._alert("You've been very still. Quick stretch and refocus!", "stillness")

    def on_engagement_low(self, score: float) -> None:
        self._alert("Engagement low. Quick reset and refocus!", "engagement")

    def on_engagement_challenge(self, score: float) -> None:
        self._alert("Engagement is slipping. Take the quick challenge to reset it.", "challenge")

    # -- scheduled work ----------------------------------------------------

    def tick(self, now: float | None = None) -> None:
        if not self.is_active or self.is_paused_by_attention:
            return
        if self.remaining_seconds <= 1:
            self.remaining_seconds = 0
            self._complete(now)
            return
        self.remaining_seconds -= 1

    def _complete(self, now: float | None = None) -> None:
        ts = now if now is not None else time.time()
        if self.mode == TimerMode.POMODORO:
            minutes = self.config.focus_minutes
            if self.on_session_complete is not None:
                self.on_session_complete(minutes)

            summary = compute_session_summary(
                self._history(),
                since=self._session_started_at,
                threshold=self.config.threshold,
                stillness_alerts=self.stillness_count,
            )
            if summary is not None:
                self.last_summary = summary
                if self.on_summary is not None:
                    self.on_summary(summary)

            self._break_is_long = (self.completed_cycles + 1) % self.config.cycles_until_long_break == 0
            self.completed_cycles += 1
            self.session_log.append(SessionLogEntry(kind="focus", duration_minutes=minutes, at=ts))
            self.mode = TimerMode.SHORT_BREAK
            self.remaining_seconds = self.break_minutes * 60
            logger.info("Focus block complete (%s min); cycles=%s", minutes, self.completed_cycles)
            self._alert(
                "Long break time! Recharge well."
                if self._break_is_long
                else "Focus session over. Time for a short break!",
                "session",
            )
        else:
            self.session_log.append(SessionLogEntry(kind="break", duration_minutes=self.break_minutes, at=ts))
            self.mode = TimerMode.POMODORO
            self._break_is_long = False
            self.remaining_seconds = self.config.focus_minutes * 60
            self._mark_session_start(ts)
            self._alert("Break's over. Let's get back to it!", "session")
        self.is_active = True
