from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from pathlib import Path


@dataclass
class DailyLog:
    date: str  # YYYY-MM-DD
    focus_minutes: int = 0
    distractions_detected: int = 0


@dataclass
class StoredProgress:
    logs: list[DailyLog] = field(default_factory=list)
    points: int = 0
    streak: int = 0

    def day(self, day: str) -> DailyLog:
        for log in self.logs:
            if log.date == day:
                return log
        log = DailyLog(date=day)
        self.logs.append(log)
        return log


def ensure_dir(path: str) -> Path:
    p = Path(path).expanduser()
    p.mkdir(parents=True, exist_ok=True)
    return p


def log_file(state_dir: str) -> Path:
    return ensure_dir(state_dir) / "daily_log.json"


def level_for(points: int) -> int:
    return points // 100 + 1


def load_progress(state_dir: str) -> StoredProgress:
    p = log_file(state_dir)
    if not p.exists():
        return StoredProgress()
    data = json.loads(p.read_text())
    logs = [
        DailyLog(
            date=str(row["date"]),
            focus_minutes=int(row.get("focusMinutes", 0)),
            distractions_detected=int(row.get("distractionsDetected", 0)),
        )
        for row in data.get("logs", [])
    ]
    return StoredProgress(logs=logs, points=int(data.get("points", 0)), streak=int(data.get("streak", 0)))


def save_progress(state_dir: str, progress: StoredProgress) -> None:
    payload = {
        "points": progress.points,
        "streak": progress.streak,
        "logs": [
            {
                "date": log.date,
                "focusMinutes": log.focus_minutes,
                "distractionsDetected": log.distractions_detected,
            }
            for log in sorted(progress.logs, key=lambda d: d.date)
        ],
    }
    log_file(state_dir).write_text(json.dumps(payload, indent=2, sort_keys=True))


def _update_streak(progress: StoredProgress, today: date) -> None:
    focus_days = sorted(log.date for log in progress.logs if log.focus_minutes > 0)
    last = focus_days[-1] if focus_days else None
    if last == today.isoformat():
        return
    if last == (today - timedelta(days=1)).isoformat():
        progress.streak += 1
    else:
        progress.streak = 1


def record_session(state_dir: str, minutes: int, today: date | None = None) -> StoredProgress:
    """Add a completed focus block: minutes to today's log, one point per minute, streak update."""
    today = today or date.today()
    progress = load_progress(state_dir)
    _update_streak(progress, today)
    progress.day(today.isoformat()).focus_minutes += minutes
    progress.points += minutes
    save_progress(state_dir, progress)
    return progress


def record_distraction(state_dir: str, today: date | None = None) -> StoredProgress:
    today = today or date.today()
    progress = load_progress(state_dir)
    progress.day(today.isoformat()).distractions_detected += 1
    save_progress(state_dir, progress)
    return progress


def progress_to_payload(progress: StoredProgress) -> dict:
    return {
        "points": progress.points,
        "level": level_for(progress.points),
        "streak": progress.streak,
        "logs": [asdict(log) for log in sorted(progress.logs, key=lambda d: d.date)],
    }
