import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_timer import RestTimer


def test_initial_state():
    timer = RestTimer()
    assert timer.remaining == 90
    assert not timer.running
    assert timer.display == "01:30"
    assert timer.progress == 100
    assert timer.presets == (60, 90, 120, 150)


def test_invalid_preset():
    with pytest.raises(ValueError):
        RestTimer(0)
    with pytest.raises(ValueError):
        RestTimer().select_preset(-60)


def test_tick_only_when_running():
    timer = RestTimer(60)
    assert not timer.tick()
    assert timer.remaining == 60
    timer.toggle()
    timer.tick()
    assert timer.remaining == 59
    assert timer.display == "00:59"


def test_select_preset_starts():
    timer = RestTimer()
    timer.select_preset(120)
    assert timer.running
    assert timer.remaining == 120
    for _ in range(30):
        timer.tick()
    assert timer.progress == 75


def test_completion():
    timer = RestTimer(60)
    timer.select_preset(60)
    results = [timer.tick() for _ in range(60)]
    assert results[-1] is True
    assert results.count(True) == 1
    assert timer.remaining == 0
    assert not timer.running
    assert not timer.tick()
    assert not timer.toggle()


def test_toggle_and_reset():
    timer = RestTimer(90)
    assert timer.toggle()
    timer.tick()
    assert not timer.toggle()
    timer.tick()
    assert timer.remaining == 89
    timer.reset()
    assert timer.remaining == 90
    assert not timer.running


def test_run_with_fake_sleep():
    timer = RestTimer(60)
    seen = []
    sleeps = []
    timer.run(on_tick=lambda t: seen.append(t.remaining), sleep=sleeps.append)
    assert len(sleeps) == 60
    assert seen[0] == 59
    assert seen[-1] == 0
    assert timer.remaining == 0
