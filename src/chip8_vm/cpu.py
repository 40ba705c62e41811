"""Chip8CPU: Execution loop for the CHIP-8 VM.

This module ties the components together:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE
                                                     ^
    TimerUnit (60 Hz) -------------------------------+
    present(framebuffer) <- display refresh

Two ways to drive the machine:
    - step()/run(): synchronous, one instruction at a time with no pacing.
      Tests and tools use these; timers only move when tick_timers() is
      called.
    - run_realtime(): a Scheduler multiplexes instruction execution, the
      60 Hz timers and display presentation against a monotonic clock.

Execution faults never pass silently: the CPU halts, keeps the fault in
``cpu.fault`` and reports it through StepResult.error and RunResult.
"""

import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Tuple, Union

from .decode import decode, fetch_word
from .errors import ExecutionFault
from .registry import Chip8Registry
from .scheduler import Scheduler
from .state import NUM_KEYS, Chip8State, create_initial_state, load_rom
from .timers import TimerUnit

logger = logging.getLogger(__name__)

Framebuffer = Tuple[Tuple[int, ...], ...]


class StopReason(Enum):
    FAULT = "FAULT"
    CYCLE_LIMIT = "CYCLE_LIMIT"
    KEY_WAIT = "KEY_WAIT"
    IDLE_LOOP = "IDLE_LOOP"
    DURATION = "DURATION"
    STOPPED = "STOPPED"


@dataclass
class StepResult:
    """Outcome of one fetch-decode-execute cycle.

    Attributes:
        cycle: Cycle number after the step
        pc: Address the instruction was fetched from
        opcode: Raw instruction word (None if the fetch itself faulted)
        key: Registry key the word decoded to
        mnemonic: Disassembly of the instruction
        pre_state: State snapshot before execution (tracing only)
        post_state: State snapshot after execution (tracing only)
        waiting: True if nothing ran because FX0A is waiting for a key
        error: Fault message if execution faulted
    """
    cycle: int
    pc: int
    opcode: Optional[int] = None
    key: str = ""
    mnemonic: str = ""
    pre_state: Optional[dict] = None
    post_state: Optional[dict] = None
    waiting: bool = False
    error: Optional[str] = None


@dataclass
class RunResult:
    """Outcome of run() or run_realtime().

    Attributes:
        reason: Why execution stopped
        cycles: Instructions executed during this run
        elapsed: Seconds of scheduler time (run_realtime only)
        fault: The fault that halted the CPU, if any
    """
    reason: StopReason
    cycles: int
    elapsed: float = 0.0
    fault: Optional[ExecutionFault] = None

    @property
    def faulted(self) -> bool:
        return self.reason is StopReason.FAULT


class Chip8CPU:
    """CHIP-8 interpreter.

    Attributes:
        registry: Chip8Registry with the instruction primitives
        timers: TimerUnit ticking the delay/sound timers
        state: Current machine state (None until a ROM is loaded)
        fault: Fault that halted execution, if any
        trace: Most recent StepResults (only recorded when tracing)
        instructions_per_second: Instruction rate for run_realtime()
        refresh_hz: Display presentation rate for run_realtime()
        max_cycles: Default instruction limit for run()
    """

    DEFAULT_MAX_CYCLES = 100000
    DEFAULT_INSTRUCTIONS_PER_SECOND = 700
    DEFAULT_REFRESH_HZ = 60
    DEFAULT_TRACE_LIMIT = 1000

    def __init__(
        self,
        instructions_per_second: int = DEFAULT_INSTRUCTIONS_PER_SECOND,
        refresh_hz: int = DEFAULT_REFRESH_HZ,
        max_cycles: int = DEFAULT_MAX_CYCLES,
        seed: Optional[int] = None,
        trace: bool = False,
        trace_limit: int = DEFAULT_TRACE_LIMIT
    ):
        """Initialize the CPU.

        Args:
            instructions_per_second: Instruction rate for run_realtime()
            refresh_hz: Framebuffer presentation rate for run_realtime()
            max_cycles: Default instruction limit for run()
            seed: Seed for the CXNN random source (None for nondeterministic)
            trace: Record StepResults with pre/post snapshots
            trace_limit: Number of trace entries kept
        """
        if instructions_per_second <= 0 or refresh_hz <= 0:
            raise ValueError("instructions_per_second and refresh_hz must be positive")
        self.registry = Chip8Registry(random.Random(seed))
        self.timers = TimerUnit()
        self.state: Optional[Chip8State] = None
        self.fault: Optional[ExecutionFault] = None
        self.instructions_per_second = instructions_per_second
        self.refresh_hz = refresh_hz
        self.max_cycles = max_cycles
        self.tracing = trace
        self.trace: Deque[StepResult] = deque(maxlen=trace_limit)

    # =========================================================================
    # Loading
    # =========================================================================

    def load_rom(self, rom: bytes) -> None:
        """Reset the machine and load a ROM image at 0x200.

        Raises:
            RomTooLarge: If the image does not fit; the previous state is kept
        """
        state = create_initial_state()
        load_rom(state, bytes(rom))
        self.state = state
        self.fault = None
        self.trace.clear()

    def load_rom_file(self, path: Union[str, Path]) -> None:
        """Read a ROM from disk and load it.

        Raises:
            FileNotFoundError: If the path does not exist
            RomTooLarge: If the image does not fit
        """
        rom_path = Path(path)
        if not rom_path.exists():
            raise FileNotFoundError(f"ROM file not found: {path}")
        logger.info("Loading ROM %s", rom_path)
        self.load_rom(rom_path.read_bytes())

    # =========================================================================
    # Execution
    # =========================================================================

    def step(self) -> StepResult:
        """Execute a single instruction cycle: FETCH -> DECODE -> EXECUTE.

        Returns:
            StepResult describing the cycle

        Raises:
            RuntimeError: If no program is loaded or the CPU is halted
        """
        state = self._require_state()
        if state.halted:
            raise RuntimeError("CPU is halted")

        pc = state.pc
        if state.waiting_for_key is not None:
            return StepResult(cycle=state.cycle_count, pc=pc, waiting=True)

        pre_state = state.snapshot() if self.tracing else None
        entry = StepResult(cycle=state.cycle_count, pc=pc, pre_state=pre_state)

        try:
            word = fetch_word(state.memory, pc)
            instr = decode(word)
            entry.opcode = word
            entry.key = instr.key
            entry.mnemonic = instr.mnemonic
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("%03X: %04X  %s", pc, word, entry.mnemonic)
            self.registry.execute(state, instr)
        except ExecutionFault as fault:
            self._halt(fault)
            entry.error = str(fault)

        entry.cycle = state.cycle_count
        if self.tracing:
            entry.post_state = state.snapshot()
            self.trace.append(entry)
        return entry

    def run(self, max_cycles: Optional[int] = None) -> RunResult:
        """Run instructions without wall-clock pacing.

        Stops on a fault, at the cycle limit, when FX0A starts waiting for a
        key (call press_key() and run() again), or on a jump-to-self, the
        usual way CHIP-8 programs end.

        Args:
            max_cycles: Instruction limit for this call (instance default if None)

        Returns:
            RunResult with the stop reason
        """
        state = self._require_state()
        limit = max_cycles if max_cycles is not None else self.max_cycles

        if state.halted:
            return RunResult(StopReason.FAULT, 0, fault=self.fault)

        executed = 0
        while True:
            if state.waiting_for_key is not None:
                return RunResult(StopReason.KEY_WAIT, executed)
            if executed >= limit:
                return RunResult(StopReason.CYCLE_LIMIT, executed)

            entry = self.step()
            if entry.error is not None:
                return RunResult(StopReason.FAULT, executed, fault=self.fault)
            executed += 1
            if entry.key == "OP_JP" and state.pc == entry.pc:
                logger.info("Idle loop at 0x%03X after %d cycles", entry.pc, executed)
                return RunResult(StopReason.IDLE_LOOP, executed)

    def tick_timers(self) -> None:
        """Advance the delay and sound timers by one 60 Hz tick."""
        self.timers.tick(self._require_state())

    def run_realtime(
        self,
        duration: Optional[float] = None,
        present: Optional[Callable[[Framebuffer], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        stop: Optional[Callable[[], bool]] = None
    ) -> RunResult:
        """Run paced by a monotonic clock.

        Instructions run at instructions_per_second, the timers at 60 Hz and
        present() receives a framebuffer snapshot at refresh_hz. While FX0A
        waits for a key the instruction task idles; timers and presentation
        keep firing.

        Args:
            duration: Seconds to run (None runs until a fault or stop())
            present: Display bridge receiving framebuffer snapshots
            clock: Monotonic clock
            sleep: Function used to wait between due tasks
            stop: Host predicate ending the run early

        Returns:
            RunResult with the stop reason and elapsed scheduler time
        """
        state = self._require_state()
        if state.halted:
            return RunResult(StopReason.FAULT, 0, fault=self.fault)

        start_cycles = state.cycle_count
        scheduler = Scheduler(clock=clock)
        scheduler.add("cpu", self.instructions_per_second, self._scheduled_step)
        scheduler.add("timers", TimerUnit.HZ, self.tick_timers)
        if present is not None:
            scheduler.add("display", self.refresh_hz, lambda: self._present(present))

        stopped = []

        def should_stop() -> bool:
            if state.halted:
                return True
            if stop is not None and stop():
                stopped.append(True)
                return True
            return False

        elapsed = scheduler.run(duration, sleep=sleep, stop=should_stop)
        cycles = state.cycle_count - start_cycles

        if state.halted:
            return RunResult(StopReason.FAULT, cycles, elapsed, fault=self.fault)
        if stopped:
            return RunResult(StopReason.STOPPED, cycles, elapsed)
        return RunResult(StopReason.DURATION, cycles, elapsed)

    def _scheduled_step(self) -> None:
        state = self.state
        if state.halted or state.waiting_for_key is not None:
            return
        self.step()

    def _present(self, present: Callable[[Framebuffer], None]) -> None:
        present(self.state.framebuffer())
        self.state.display_dirty = False

    def _halt(self, fault: ExecutionFault) -> None:
        self.state.halted = True
        self.fault = fault
        logger.error("Halted: %s", fault)

    def _require_state(self) -> Chip8State:
        if self.state is None:
            raise RuntimeError("No program loaded")
        return self.state

    # =========================================================================
    # Input
    # =========================================================================

    def set_key(self, key: int, pressed: bool) -> None:
        """Update one key of the hex keypad.

        A press (released -> pressed transition) while FX0A is waiting stores
        the key in the waiting register and resumes execution.

        Raises:
            ValueError: If key is not 0-15
        """
        if not 0 <= key < NUM_KEYS:
            raise ValueError(f"Invalid key: {key}")
        state = self._require_state()
        was_pressed = state.keypad[key]
        state.keypad[key] = pressed

        if pressed and not was_pressed and state.waiting_for_key is not None:
            state.registers[state.waiting_for_key] = key
            state.waiting_for_key = None
            logger.debug("Key %X resumed execution", key)

    def press_key(self, key: int) -> None:
        self.set_key(key, True)

    def release_key(self, key: int) -> None:
        self.set_key(key, False)

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_register(self, reg: int) -> int:
        """Get value of register V{reg} (0-15)."""
        return self._require_state().get_register(reg)

    def dump_registers(self) -> Dict[str, int]:
        """Get all register values keyed V0-VF."""
        return self._require_state().dump_registers()

    def get_pc(self) -> int:
        return self._require_state().pc

    def get_index(self) -> int:
        return self._require_state().index

    def framebuffer(self) -> Framebuffer:
        """Read-only snapshot of the 64x32 display."""
        return self._require_state().framebuffer()

    def sound_active(self) -> bool:
        """Whether the host should be playing the tone."""
        return self.state is not None and TimerUnit.sound_active(self.state)

    def get_cycle_count(self) -> int:
        if self.state is None:
            return 0
        return self.state.cycle_count

    def is_halted(self) -> bool:
        """Check if the CPU is halted (no program counts as halted)."""
        if self.state is None:
            return True
        return self.state.halted

    def is_waiting_for_key(self) -> bool:
        return self.state is not None and self.state.waiting_for_key is not None

    def get_trace(self) -> List[StepResult]:
        return list(self.trace)

    def print_trace(self) -> None:
        """Print execution trace in human-readable format."""
        print("=" * 70)
        print("CHIP-8 EXECUTION TRACE")
        print("=" * 70)

        for entry in self.trace:
            status = "OK" if not entry.error else f"ERROR: {entry.error}"
            opcode = "----" if entry.opcode is None else f"{entry.opcode:04X}"
            print(f"\n[Cycle {entry.cycle}] {status}")
            print(f"  {entry.pc:03X}: {opcode}  {entry.mnemonic}")

            if entry.pre_state and entry.post_state:
                pre_regs = entry.pre_state["registers"]
                post_regs = entry.post_state["registers"]
                changes = [
                    f"V{i:X}: {pre_regs[i]:02X} -> {post_regs[i]:02X}"
                    for i in range(len(pre_regs))
                    if pre_regs[i] != post_regs[i]
                ]
                if entry.pre_state["index"] != entry.post_state["index"]:
                    changes.append(f"I: {entry.pre_state['index']:03X} -> {entry.post_state['index']:03X}")
                if changes:
                    print(f"  Changes: {', '.join(changes)}")
                print(f"  PC: {entry.pre_state['pc']:03X} -> {entry.post_state['pc']:03X}")

        print("\n" + "=" * 70)
        print("FINAL STATE")
        print("=" * 70)
        if self.state:
            print(f"  {self.state}")
            if self.fault:
                print(f"  Fault: {self.fault}")

    def get_summary(self) -> Dict:
        """Get execution summary.

        Returns:
            Dictionary with execution statistics and final state
        """
        state = self.state
        return {
            "cycles": self.get_cycle_count(),
            "halted": self.is_halted(),
            "fault": str(self.fault) if self.fault else None,
            "pc": state.pc if state else 0,
            "index": state.index if state else 0,
            "registers": state.dump_registers() if state else {},
            "stack_depth": len(state.stack) if state else 0,
            "delay_timer": state.delay_timer if state else 0,
            "sound_timer": state.sound_timer if state else 0,
            "waiting_for_key": self.is_waiting_for_key(),
            "trace_length": len(self.trace),
        }
