"""Scheduler: Fixed-rate cooperative task multiplexer.

Instruction execution, the 60 Hz timers and display presentation each run
at their own cadence on a single thread. Every task tracks how many times it
has fired since start; run_pending() fires it again for each period of
monotonic time that has elapsed since then. Nothing sleeps inside a task, so
a task that does no work (the CPU waiting on a key) never delays the others.

The clock and sleep functions are injectable so tests can drive simulated
time.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Absorbs float error in elapsed * hz so exact multiples of the period count
_EPSILON = 1e-9

# Shortest wait handed to sleep(); keeps a simulated clock with a large reading
# moving when the remaining time is below its float resolution
_MIN_SLEEP = 1e-6


@dataclass
class ScheduledTask:
    """A callback fired at a fixed rate.

    Attributes:
        name: Task name, used in run_pending() results and logs
        hz: Firing rate in calls per second
        callback: Function called once per period
        fired: Number of periods accounted for since start
    """
    name: str
    hz: float
    callback: Callable[[], None]
    fired: int = 0

    def due(self, elapsed: float) -> int:
        """Number of periods owed at the given elapsed time."""
        return max(0, int(elapsed * self.hz + _EPSILON) - self.fired)

    def next_time(self) -> float:
        """Elapsed time at which the next period starts."""
        return (self.fired + 1) / self.hz


class Scheduler:
    """Runs ScheduledTasks against a monotonic clock.

    Attributes:
        clock: Zero-argument function returning seconds
        max_catchup: Most calls a task may make in one run_pending(); any
            larger backlog (host stall) is dropped rather than replayed
    """

    DEFAULT_MAX_CATCHUP = 64

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_catchup: int = DEFAULT_MAX_CATCHUP
    ):
        self.clock = clock
        self.max_catchup = max_catchup
        self.tasks: List[ScheduledTask] = []
        self._start: Optional[float] = None

    def add(self, name: str, hz: float, callback: Callable[[], None]) -> ScheduledTask:
        """Register a task.

        Raises:
            ValueError: If hz is not positive or the name is taken
        """
        if hz <= 0:
            raise ValueError(f"Task rate must be positive: {name}={hz}")
        if any(task.name == name for task in self.tasks):
            raise ValueError(f"Task already scheduled: {name}")
        task = ScheduledTask(name, hz, callback)
        self.tasks.append(task)
        return task

    def start(self, now: Optional[float] = None) -> None:
        """Reset all tasks and start counting time from now."""
        self._start = self.clock() if now is None else now
        for task in self.tasks:
            task.fired = 0

    def elapsed(self, now: Optional[float] = None) -> float:
        if self._start is None:
            raise RuntimeError("Scheduler not started")
        return (self.clock() if now is None else now) - self._start

    def run_pending(self, now: Optional[float] = None) -> Dict[str, int]:
        """Fire every task that is due.

        Args:
            now: Current clock reading (reads the clock if None)

        Returns:
            Mapping of task name to number of calls made
        """
        elapsed = self.elapsed(now)
        calls = {}
        for task in self.tasks:
            owed = task.due(elapsed)
            count = min(owed, self.max_catchup)
            if owed > count:
                logger.debug("Task %s dropped %d late periods", task.name, owed - count)
            task.fired += owed - count
            for _ in range(count):
                task.fired += 1
                task.callback()
            calls[task.name] = count
        return calls

    def time_until_next(self, now: Optional[float] = None) -> float:
        """Seconds until the soonest task becomes due (0 if one already is)."""
        if not self.tasks:
            return 0.0
        elapsed = self.elapsed(now)
        return max(0.0, min(task.next_time() for task in self.tasks) - elapsed)

    def run(
        self,
        duration: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        stop: Optional[Callable[[], bool]] = None
    ) -> float:
        """Run tasks until duration elapses or stop() returns True.

        Args:
            duration: Seconds to run for (None runs until stopped)
            sleep: Function used to wait for the next due task
            stop: Predicate checked after each round of tasks

        Returns:
            Elapsed seconds when the loop ended
        """
        if duration is None and stop is None:
            raise ValueError("run() needs a duration or a stop predicate")

        self.start()
        while True:
            now = self.clock()
            self.run_pending(now)
            elapsed = self.elapsed(now)
            if stop is not None and stop():
                return elapsed
            if duration is not None and elapsed >= duration - _EPSILON:
                return elapsed
            wait = self.time_until_next(now)
            if duration is not None:
                wait = min(wait, duration - elapsed)
            sleep(max(wait, _MIN_SLEEP))
