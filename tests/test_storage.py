from __future__ import annotations

import json
from datetime import date

from focusbuddy.storage import level_for, load_progress, progress_to_payload, record_distraction, record_session


def test_empty_state_dir_has_no_progress(tmp_path):
    progress = load_progress(str(tmp_path / "state"))
    assert progress.logs == []
    assert progress.points == 0
    assert progress.streak == 0


def test_record_session_adds_minutes_points_and_streak(tmp_path):
    state = str(tmp_path)
    record_session(state, 25, today=date(2024, 3, 1))
    progress = record_session(state, 25, today=date(2024, 3, 1))
    assert progress.points == 50
    assert progress.streak == 1
    assert progress.day("2024-03-01").focus_minutes == 50

    progress = record_session(state, 50, today=date(2024, 3, 2))
    assert progress.streak == 2

    progress = record_session(state, 25, today=date(2024, 3, 5))
    assert progress.streak == 1
    assert progress.points == 125


def test_record_distraction_counts_per_day(tmp_path):
    state = str(tmp_path)
    record_distraction(state, today=date(2024, 3, 1))
    progress = record_distraction(state, today=date(2024, 3, 1))
    assert progress.day("2024-03-01").distractions_detected == 2
    assert progress.points == 0


def test_log_file_uses_camel_case(tmp_path):
    record_session(str(tmp_path), 25, today=date(2024, 3, 1))
    data = json.loads((tmp_path / "daily_log.json").read_text())
    assert data["logs"][0] == {"date": "2024-03-01", "focusMinutes": 25, "distractionsDetected": 0}
    assert data["points"] == 25


def test_levels_and_payload(tmp_path):
    assert level_for(0) == 1
    assert level_for(99) == 1
    assert level_for(250) == 3
    progress = record_session(str(tmp_path), 120, today=date(2024, 3, 1))
    payload = progress_to_payload(progress)
    assert payload["level"] == 2
    assert payload["logs"][0]["focus_minutes"] == 120


def test_older_logs_with_extra_fields_still_load(tmp_path):
    (tmp_path / "daily_log.json").write_text(
        json.dumps(
            {
                "points": 10,
                "streak": 1,
                "logs": [{"date": "2024-03-01", "focusMinutes": 10, "tasksCompleted": 3, "distractionsDetected": 2}],
            }
        )
    )
    progress = load_progress(str(tmp_path))
    assert progress.logs[0].focus_minutes == 10
    assert progress.logs[0].distractions_detected == 2
    assert "tasks_completed" not in progress_to_payload(progress)["logs"][0]
