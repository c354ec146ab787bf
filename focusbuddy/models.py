from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ActivityEvent(BaseModel):
    kind: Literal["key", "mouse", "scroll"]


class VisibilityEvent(BaseModel):
    visible: bool


class WindowFocusEvent(BaseModel):
    focused: bool


class ShieldToggle(BaseModel):
    enabled: bool


class CaptureProfileRequest(BaseModel):
    portrait: bool = False
    safe: bool = False


class TimerConfigRequest(BaseModel):
    focusMinutes: int | None = Field(None, ge=1)
    shortBreakMinutes: int | None = Field(None, ge=1)
    longBreakMinutes: int | None = Field(None, ge=1)
    cyclesUntilLongBreak: int | None = Field(None, ge=1)


class EngagementRecordPayload(BaseModel):
    time: float = Field(..., description="Epoch seconds")
    score: float


class SessionSummaryPayload(BaseModel):
    averageScore: int
    secondsBelowThreshold: int
    stillnessAlerts: int
    samples: int


class StatusResponse(BaseModel):
    attention: str
    pendingAttention: str | None = None
    shieldEnabled: bool
    detector: str | None = None
    showRawVideo: bool

    score: float
    breached: bool

    mode: str
    remainingSeconds: int
    isActive: bool
    isPausedByAttention: bool
    completedCycles: int
    stillnessCount: int
    breakMinutes: int
    challengePending: bool = False
    lastSummary: SessionSummaryPayload | None = None


class ChallengeResult(BaseModel):
    passed: bool


class AlertPayload(BaseModel):
    message: str
    kind: str
    at: float
