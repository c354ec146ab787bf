from __future__ import annotations

import pytest

from focusbuddy.attention import AttentionState
from focusbuddy.engagement import ActivityTracker, EngagementScorer, ScorerConfig, calculate_idle_penalty
from focusbuddy.errors import DecayServiceUnavailable


def _scorer(**kwargs) -> tuple[ActivityTracker, EngagementScorer]:
    activity = ActivityTracker(now=0.0)
    config = kwargs.pop("config", None)
    return activity, EngagementScorer(activity, config, now=0.0, **kwargs)


def test_camera_off_without_input_decays_every_tick():
    _, scorer = _scorer()
    scores = [scorer.tick(t) for t in (3.5, 4.5, 5.5)]
    assert scores == [99.0, 98.0, 97.0]


def test_recent_input_bumps_and_clamps_at_max():
    activity, scorer = _scorer()
    for t in (4.0, 5.0, 6.0):
        scorer.tick(t)
    assert scorer.score == 97.0

    activity.record_mouse(6.5)
    assert scorer.tick(7.0) == 99.0
    activity.record_key(7.5)
    assert scorer.tick(8.0) == 100.0


def test_score_never_leaves_range():
    _, scorer = _scorer()
    for t in range(1, 301):
        scorer.tick(float(t))
        scorer.check_penalties(float(t))
        assert 0.0 <= scorer.score <= 100.0
    assert scorer.score == 0.0
    assert all(0.0 <= r.score <= 100.0 for r in scorer.history)
    assert len(scorer.history) == 100


def test_breach_fires_once_until_reset():
    calls: list[float] = []
    _, scorer = _scorer(config=ScorerConfig(threshold=97.0), on_threshold_breach=calls.append)

    for t in range(4, 21):
        scorer.tick(float(t))
    assert calls == [96.0]
    assert scorer.breached

    scorer.reset(20.5)
    assert not scorer.breached
    assert scorer.history == ()
    assert scorer.tick(21.0) == 100.0
    for t in (23.0, 24.0, 25.0, 26.0):
        scorer.tick(t)
    assert calls == [96.0, 96.0]


def test_idle_penalty_applies_once_per_episode():
    applied: list[float] = []

    def penalty(score: float) -> float:
        applied.append(score)
        return calculate_idle_penalty(score)

    activity, scorer = _scorer(idle_penalty=penalty)
    for t in range(1, 41):
        scorer.check_penalties(float(t))
    assert len(applied) == 1
    assert scorer.score == 85.0

    activity.record_key(40.5)
    for t in range(41, 57):
        scorer.check_penalties(float(t))
    assert len(applied) == 2


def test_idle_penalty_is_floored_and_never_negative():
    assert calculate_idle_penalty(40.0) == 25.0
    assert calculate_idle_penalty(20.5) == 5.0
    assert calculate_idle_penalty(15.7) == 0.0
    assert calculate_idle_penalty(10.0) == 0.0


def test_away_penalty_applies_once_per_episode():
    activity, scorer = _scorer(idle_penalty=lambda s: s)
    scorer.observe_attention(AttentionState.AWAY, tracking=True)
    for t in range(1, 31):
        scorer.check_penalties(float(t))
    assert scorer.score == 98.0

    activity.record_mouse(30.5)
    for t in range(31, 51):
        scorer.check_penalties(float(t))
    assert scorer.score == 96.0


def test_unavailable_penalty_is_skipped_and_retried():
    attempts: list[float] = []

    def flaky(score: float) -> float:
        attempts.append(score)
        if len(attempts) == 1:
            raise DecayServiceUnavailable("decay service down")
        return 0.0

    _, scorer = _scorer(idle_penalty=flaky)
    for t in range(1, 17):
        scorer.check_penalties(float(t))
    assert scorer.score == 100.0
    scorer.check_penalties(17.0)
    assert scorer.score == 0.0
    assert len(attempts) == 2


def test_start_resets_score_and_counts_as_activity():
    _, scorer = _scorer()
    for t in range(1, 30):
        scorer.tick(float(t))
    assert scorer.score < 100.0

    scorer.start(30.0)
    assert scorer.score == 100.0
    assert scorer.history == ()
    assert scorer.tick(30.5) >= 100.0


def test_stop_returns_to_idle_max():
    _, scorer = _scorer()
    for t in range(1, 20):
        scorer.tick(float(t))
    scorer.stop()
    assert scorer.score == 100.0
    assert scorer.history == ()


def test_camera_away_decays_four_times_faster_after_hysteresis():
    _, scorer = _scorer()
    scorer.observe_attention(AttentionState.AWAY, tracking=True)
    scores = [scorer.tick(t) for t in (0.5, 1.5, 2.5, 3.5, 4.5)]
    assert scores == [99.0, 98.0, 94.0, 90.0, 86.0]
    assert scorer.camera_state == "away"


def test_camera_focused_bumps_after_hysteresis():
    _, scorer = _scorer()
    scorer.observe_attention(AttentionState.AWAY, tracking=True)
    for t in (0.5, 1.5, 2.5, 3.5):
        scorer.tick(t)
    assert scorer.score == 90.0

    scorer.observe_attention(AttentionState.FOCUSED, tracking=True)
    assert scorer.tick(4.5) == 89.0
    assert scorer.tick(5.5) == 88.0
    assert scorer.tick(6.5) == 98.0
    assert scorer.tick(7.5) == 100.0


def test_hidden_transition_costs_half_a_point():
    activity, scorer = _scorer()
    activity.set_visible(False, 1.0)
    assert scorer.score == 99.5
    activity.set_visible(False, 2.0)
    assert scorer.score == 99.5
    activity.set_visible(True, 3.0)
    activity.set_visible(False, 4.0)
    assert scorer.score == 99.0


def test_activity_after_dead_period_restores_max():
    activity, scorer = _scorer(config=ScorerConfig(threshold=90.0))
    for t in range(1, 21):
        scorer.tick(float(t))
    assert scorer.score == 83.0
    assert scorer.breached

    activity.record_key(20.5)
    assert scorer.score == 100.0
    assert scorer.history == ()
    assert not scorer.breached


def test_unknown_activity_kind_is_rejected():
    activity = ActivityTracker(now=0.0)
    with pytest.raises(ValueError):
        activity.record("wheel", 1.0)


def test_mouse_movement_does_not_repeat_idle_penalty():
    applied: list[float] = []

    def penalty(score: float) -> float:
        applied.append(score)
        return calculate_idle_penalty(score)

    activity, scorer = _scorer(idle_penalty=penalty)
    for t in range(1, 61):
        activity.record_mouse(t - 0.5)
        scorer.check_penalties(float(t))
    assert len(applied) == 1
    assert scorer.score == 85.0


def test_keys_while_away_do_not_repeat_penalties():
    applied: list[float] = []

    def penalty(score: float) -> float:
        applied.append(score)
        return calculate_idle_penalty(score)

    activity, scorer = _scorer(idle_penalty=penalty)
    scorer.observe_attention(AttentionState.AWAY, tracking=True)
    for t in range(1, 41):
        if t in (15, 16, 21):
            activity.record_key(t - 0.5)
        scorer.check_penalties(float(t))
    assert len(applied) == 1
    # away -2 at 13 s, then floor(98 - 15) at 14 s
    assert scorer.score == 83.0


def test_challenge_fires_on_each_downward_crossing():
    challenges: list[float] = []
    _, scorer = _scorer(on_challenge=challenges.append)
    for t in range(3, 20):
        scorer.tick(float(t))
    assert scorer.score == 83.0
    assert challenges == [84.0]

    scorer.reset(20.0)
    for t in range(23, 40):
        scorer.tick(float(t))
    assert challenges == [84.0, 84.0]


def test_challenge_fires_when_a_penalty_crosses_the_line():
    challenges: list[float] = []
    activity, scorer = _scorer(on_challenge=challenges.append)
    for t in range(1, 17):
        scorer.check_penalties(float(t))
    assert scorer.score == 85.0
    assert challenges == []
    activity.set_visible(False, 17.0)
    assert challenges == [84.5]
