from __future__ import annotations

from focusbuddy.timers import DebounceTimer


def test_fires_once_after_deadline():
    fired: list[int] = []
    timer = DebounceTimer()
    assert timer.arm(2.0, lambda: fired.append(1), now=10.0)
    assert timer.deadline == 12.0
    assert not timer.poll(11.9)
    assert timer.poll(12.0)
    assert fired == [1]
    assert not timer.armed
    assert not timer.poll(20.0)
    assert fired == [1]


def test_single_outstanding_timer():
    fired: list[str] = []
    timer = DebounceTimer()
    timer.arm(2.0, lambda: fired.append("first"), now=0.0)
    assert not timer.arm(2.0, lambda: fired.append("second"), now=1.0)
    assert timer.deadline == 2.0
    timer.poll(2.0)
    assert fired == ["first"]


def test_cancel_drops_callback():
    fired: list[int] = []
    timer = DebounceTimer()
    timer.arm(1.0, lambda: fired.append(1), now=0.0)
    timer.cancel()
    assert not timer.poll(5.0)
    assert fired == []


def test_callback_may_rearm():
    timer = DebounceTimer()
    fired: list[float] = []

    def again() -> None:
        fired.append(1.0)
        timer.arm(1.0, lambda: fired.append(2.0), now=5.0)

    timer.arm(1.0, again, now=0.0)
    timer.poll(1.0)
    assert timer.armed
    timer.poll(6.0)
    assert fired == [1.0, 2.0]
