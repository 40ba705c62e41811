"""Tests for the 60 Hz TimerUnit."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chip8_vm.state import create_initial_state
from chip8_vm.timers import TimerUnit


class TestTimerUnit:
    """Test timer decrement and clamping."""

    def test_tick_decrements_both(self):
        state = create_initial_state()
        state.delay_timer, state.sound_timer = 5, 3
        TimerUnit().tick(state)
        assert state.delay_timer == 4
        assert state.sound_timer == 2

    def test_one_second_of_ticks(self):
        """60 ticks take the delay timer from 60 to 0, where it stays."""
        state = create_initial_state()
        state.delay_timer = 60
        timers = TimerUnit()
        for _ in range(TimerUnit.HZ):
            timers.tick(state)
        assert state.delay_timer == 0
        for _ in range(10):
            timers.tick(state)
        assert state.delay_timer == 0

    def test_timers_independent(self):
        """A zero sound timer stays at zero while the delay timer counts down."""
        state = create_initial_state()
        state.delay_timer = 2
        TimerUnit().tick(state)
        assert state.delay_timer == 1
        assert state.sound_timer == 0

    def test_tick_touches_only_timers(self):
        state = create_initial_state()
        state.delay_timer = 1
        before = state.snapshot()
        TimerUnit().tick(state)
        after = state.snapshot()
        assert after["delay_timer"] == 0
        after["delay_timer"] = before["delay_timer"]
        assert after == before

    def test_sound_active(self):
        state = create_initial_state()
        assert TimerUnit.sound_active(state) is False
        state.sound_timer = 1
        assert TimerUnit.sound_active(state) is True
        TimerUnit().tick(state)
        assert TimerUnit.sound_active(state) is False
