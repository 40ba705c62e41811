"""TimerUnit: 60 Hz delay and sound timers.

The timers count down once per tick regardless of how many instructions
ran in between; the execution loop schedules tick() at HZ.
"""

from .state import Chip8State


class TimerUnit:
    """Decrements the delay and sound timers toward zero."""

    HZ = 60

    def tick(self, state: Chip8State) -> None:
        """Decrement both timers by one, stopping at zero."""
        if state.delay_timer > 0:
            state.delay_timer -= 1
        if state.sound_timer > 0:
            state.sound_timer -= 1

    @staticmethod
    def sound_active(state: Chip8State) -> bool:
        """Whether the host should be playing the tone."""
        return state.sound_timer > 0
