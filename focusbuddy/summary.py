from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from .engagement import EngagementRecord


@dataclass
class SessionSummary:
    average_score: int
    seconds_below_threshold: int
    stillness_alerts: int
    samples: int


def compute_session_summary(
    history: Sequence[EngagementRecord],
    *,
    since: float,
    threshold: float,
    stillness_alerts: int,
) -> SessionSummary | None:
    """
    Summarize the engagement samples recorded at or after since (epoch seconds).

    One sample is taken per second, so the number of samples below the
    threshold is the number of seconds spent below it. Returns None when
    there are no samples in range.
    """
    window = [r for r in history if r.time >= since]
    if not window:
        return None
    avg = round(sum(r.score for r in window) / len(window))
    below = sum(1 for r in window if r.score < threshold)
    return SessionSummary(
        average_score=int(avg),
        seconds_below_threshold=below,
        stillness_alerts=stillness_alerts,
        samples=len(window),
    )


def summary_to_payload(
    *,
    summary: SessionSummary,
    focus_minutes: int,
    completed_at: float,
) -> dict[str, Any]:
    return {
        "focusMinutes": focus_minutes,
        "completedAt": completed_at,
        "averageScore": summary.average_score,
        "secondsBelowThreshold": summary.seconds_below_threshold,
        "belowThresholdLabel": f"{summary.seconds_below_threshold // 60}m {summary.seconds_below_threshold % 60}s",
        "stillnessAlerts": summary.stillness_alerts,
        "samples": summary.samples,
    }
