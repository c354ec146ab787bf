from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

from .attention import AttentionState
from .errors import DecayServiceUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngagementRecord:
    time: float  # epoch seconds
    score: float  # 0-100


@dataclass
class ScorerConfig:
    max_score: float = 100.0
    decay_rate: float = 1.0
    activity_bump: float = 2.0
    camera_bump: float = 10.0
    away_decay_multiplier: float = 4.0
    threshold: float = 30.0
    challenge_threshold: float = 85.0
    camera_hysteresis_seconds: float = 2.0
    key_idle_seconds: float = 2.0
    mouse_idle_seconds: float = 2.0
    scroll_idle_seconds: float = 3.0
    no_move_seconds: float = 7.0
    idle_penalty_after_seconds: float = 13.0
    away_penalty_after_seconds: float = 13.0
    away_penalty: float = 2.0
    hidden_penalty: float = 0.5
    history_limit: int = 100


class ActivityListener(Protocol):
    def handle_activity(self, kind: str, now: float | None = None) -> None: ...

    def handle_visibility(self, visible: bool, now: float | None = None) -> None: ...


class ActivitySource(Protocol):
    def last_key_time(self) -> float: ...

    def last_mouse_time(self) -> float: ...

    def last_scroll_time(self) -> float: ...

    def is_visible(self) -> bool: ...

    def is_focused(self) -> bool: ...

    def subscribe(self, listener: ActivityListener) -> None: ...


class ActivityTracker:
    """
    Last-seen timestamps for keyboard, mouse and scroll input plus window focus/visibility.

    Raw events are forwarded to subscribers as they arrive. Visibility changes
    are forwarded only on transitions.
    """

    def __init__(self, now: float | None = None):
        ts = now if now is not None else time.time()
        self._key_ts = ts
        self._mouse_ts = ts
        self._scroll_ts = ts
        self._visible = True
        self._focused = True
        self._listeners: list[ActivityListener] = []

    def subscribe(self, listener: ActivityListener) -> None:
        self._listeners.append(listener)

    def last_key_time(self) -> float:
        return self._key_ts

    def last_mouse_time(self) -> float:
        return self._mouse_ts

    def last_scroll_time(self) -> float:
        return self._scroll_ts

    def is_visible(self) -> bool:
        return self._visible

    def is_focused(self) -> bool:
        return self._focused

    def record(self, kind: str, now: float | None = None) -> None:
        ts = now if now is not None else time.time()
        if kind == "key":
            self._key_ts = ts
        elif kind == "mouse":
            self._mouse_ts = ts
        elif kind == "scroll":
            self._scroll_ts = ts
        else:
            raise ValueError(f"Unknown activity kind: {kind}")
        for listener in list(self._listeners):
            listener.handle_activity(kind, ts)

    def record_key(self, now: float | None = None) -> None:
        self.record("key", now)

    def record_mouse(self, now: float | None = None) -> None:
        self.record("mouse", now)

    def record_scroll(self, now: float | None = None) -> None:
        self.record("scroll", now)

    def set_focused(self, focused: bool) -> None:
        self._focused = focused

    def set_visible(self, visible: bool, now: float | None = None) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        ts = now if now is not None else time.time()
        for listener in list(self._listeners):
            listener.handle_visibility(visible, ts)


def calculate_idle_penalty(score: float) -> float:
    """Idle breach: -15 points, floored, never below 0."""
    return float(max(0, math.floor(score - 15)))


class EngagementScorer:
    """
    Continuous 0-100 engagement score.

    - tick() runs at 1 Hz and is the only periodic writer.
    - check_penalties() runs at 1 Hz and applies the one-shot idle/away penalties.
    - Activity events can trigger the full reset after a long dead period.
    - A hidden page costs hidden_penalty per hidden transition.
    - Falling from at or above challenge_threshold to below it calls on_challenge.

    Camera-derived state must be stable for camera_hysteresis_seconds before it
    moves the score in either direction; until then the score decays at the base rate.
    """

    def __init__(
        self,
        activity: ActivitySource,
        config: ScorerConfig | None = None,
        *,
        on_threshold_breach: Callable[[float], None] | None = None,
        on_challenge: Callable[[float], None] | None = None,
        idle_penalty: Callable[[float], float] = calculate_idle_penalty,
        now: float | None = None,
    ):
        ts = now if now is not None else time.time()
        self.config = config or ScorerConfig()
        self.activity = activity
        self.on_threshold_breach = on_threshold_breach
        self.on_challenge = on_challenge
        self._idle_penalty = idle_penalty

        self._score = self.config.max_score
        self._history: deque[EngagementRecord] = deque(maxlen=self.config.history_limit)
        self._breached = False

        self._tracking = False
        self._attention: AttentionState | None = None
        self._camera_state = "none"
        self._camera_changed_at = ts

        # start()/reset() count as activity without touching the source
        self._key_stamp = ts
        self._mouse_stamp = ts

        self._no_move = False
        self._idle_penalty_applied = False
        self._away_penalty_applied = False
        self._decay_eligible_since: float | None = None

        activity.subscribe(self)

    # -- read side ---------------------------------------------------------

    @property
    def score(self) -> float:
        return self._score

    @property
    def history(self) -> tuple[EngagementRecord, ...]:
        return tuple(self._history)

    @property
    def breached(self) -> bool:
        return self._breached

    @property
    def tracking(self) -> bool:
        return self._tracking

    @property
    def camera_state(self) -> str:
        return self._camera_state

    def _set_score(self, value: float) -> None:
        previous = self._score
        self._score = min(self.config.max_score, max(0.0, float(value)))
        # downward crossing of the challenge line; resets to max re-arm it
        line = self.config.challenge_threshold
        if previous >= line > self._score:
            logger.info("Engagement dropped below %.0f; re-engagement challenge", line)
            if self.on_challenge is not None:
                self.on_challenge(self._score)

    def _key_time(self) -> float:
        return max(self.activity.last_key_time(), self._key_stamp)

    def _mouse_time(self) -> float:
        return max(self.activity.last_mouse_time(), self._mouse_stamp)

    def _attention_off_screen(self) -> bool:
        return self._tracking and self._attention != AttentionState.FOCUSED

    # -- inputs ------------------------------------------------------------

    def observe_attention(self, state: AttentionState | None, tracking: bool = True) -> None:
        self._attention = state
        self._tracking = tracking

    def set_tracking(self, enabled: bool) -> None:
        self._tracking = enabled
        if not enabled:
            self._attention = None

    def handle_activity(self, kind: str, now: float | None = None) -> None:
        # penalty flags are cleared by check_penalties when an episode ends
        if self._no_move:
            logger.info("Activity after a dead period; engagement reset to max")
            self._no_move = False
            self._score = self.config.max_score
            self._history.clear()
            self._breached = False

    def handle_visibility(self, visible: bool, now: float | None = None) -> None:
        if not visible:
            self._set_score(self._score - self.config.hidden_penalty)

    # -- lifecycle ---------------------------------------------------------

    def _clear_flags(self) -> None:
        self._breached = False
        self._no_move = False
        self._idle_penalty_applied = False
        self._away_penalty_applied = False
        self._decay_eligible_since = None

    def start(self, now: float | None = None) -> None:
        ts = now if now is not None else time.time()
        self._score = self.config.max_score
        self._history.clear()
        self._clear_flags()
        self._key_stamp = ts

    def stop(self) -> None:
        self._score = self.config.max_score
        self._history.clear()

    def reset(self, now: float | None = None) -> None:
        """Positive intervention (e.g. a passed re-engagement challenge)."""
        ts = now if now is not None else time.time()
        self._score = self.config.max_score
        self._history.clear()
        self._clear_flags()
        self._key_stamp = ts
        self._mouse_stamp = ts

    # -- scheduled work ----------------------------------------------------

    def _coarse_camera_state(self) -> str:
        if not self._tracking:
            return "none"
        if self._attention == AttentionState.FOCUSED:
            return "focused"
        if self._attention == AttentionState.AWAY:
            return "away"
        return "distracted"

    def tick(self, now: float | None = None) -> float:
        ts = now if now is not None else time.time()
        cfg = self.config

        camera_state = self._coarse_camera_state()
        if camera_state != self._camera_state:
            self._camera_state = camera_state
            self._camera_changed_at = ts

        key_idle = ts - self._key_time()
        mouse_idle = ts - self._mouse_time()
        scroll_idle = ts - self.activity.last_scroll_time()

        if key_idle > cfg.no_move_seconds and mouse_idle > cfg.no_move_seconds and scroll_idle > cfg.no_move_seconds:
            self._no_move = True

        if self._tracking:
            stable = ts - self._camera_changed_at >= cfg.camera_hysteresis_seconds
            if stable and camera_state == "focused":
                nxt = self._score + cfg.camera_bump
            elif stable:
                nxt = self._score - cfg.decay_rate * cfg.away_decay_multiplier
            else:
                nxt = self._score - cfg.decay_rate
        else:
            no_inputs = (
                key_idle > cfg.key_idle_seconds
                and mouse_idle > cfg.mouse_idle_seconds
                and scroll_idle > cfg.scroll_idle_seconds
                and self.activity.is_focused()
            )
            if no_inputs or self._no_move:
                nxt = self._score - cfg.decay_rate
            else:
                nxt = self._score + cfg.activity_bump
        self._set_score(nxt)

        if self._score < cfg.threshold and not self._breached:
            self._breached = True
            logger.info("Engagement below threshold (%.1f < %.1f)", self._score, cfg.threshold)
            if self.on_threshold_breach is not None:
                self.on_threshold_breach(self._score)

        self._history.append(EngagementRecord(time=ts, score=self._score))
        return self._score

    def check_penalties(self, now: float | None = None) -> None:
        ts = now if now is not None else time.time()
        cfg = self.config
        key_idle = ts - self._key_time()
        mouse_idle = ts - self._mouse_time()

        eligible = (not self._tracking and key_idle > cfg.key_idle_seconds) or self._attention_off_screen()
        if not eligible:
            self._decay_eligible_since = None
            self._idle_penalty_applied = False
        elif self._decay_eligible_since is None:
            self._decay_eligible_since = ts

        if (
            self._decay_eligible_since is not None
            and ts - self._decay_eligible_since >= cfg.idle_penalty_after_seconds
            and not self._idle_penalty_applied
        ):
            try:
                penalized = self._idle_penalty(self._score)
            except DecayServiceUnavailable as e:
                logger.warning("Idle penalty skipped this cycle: %s", e)
            else:
                self._set_score(penalized)
                self._idle_penalty_applied = True
                logger.info("Idle penalty applied; score=%.1f", self._score)

        away = self._tracking and self._attention == AttentionState.AWAY
        if away and mouse_idle >= cfg.away_penalty_after_seconds and not self._away_penalty_applied:
            self._set_score(self._score - cfg.away_penalty)
            self._away_penalty_applied = True
            logger.info("Away penalty applied; score=%.1f", self._score)
        if not away or mouse_idle < cfg.away_penalty_after_seconds:
            self._away_penalty_applied = False
