"""chip8_vm: CHIP-8 virtual machine interpreter.

This package implements the canonical 35-instruction CHIP-8 machine:
4 KB of memory with a built-in hex fontset, sixteen 8-bit registers, a
16-level call stack, 60 Hz delay/sound timers, a 64x32 XOR-drawn
framebuffer and a 16-key hex keypad.

Architecture:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE
               |         |        |        |           |
           [PC-based] [nibbles] [OP_*] [Frozen]   [Chip8State]
                                      Primitives

Modules:
    state: Chip8State dataclass, memory layout and ROM loading
    decode: Pure instruction decoder and disassembler
    registry: Verified instruction primitives (the executor)
    timers: 60 Hz delay/sound timer unit
    scheduler: Monotonic-clock task multiplexer
    cpu: Chip8CPU execution loop
    render: Text rendering of framebuffer snapshots
    errors: Load and execution fault types
"""

__version__ = "0.1.0"

from .state import Chip8State, create_initial_state, load_rom
from .decode import DecodedInstruction, decode, disassemble
from .registry import Chip8Registry
from .timers import TimerUnit
from .scheduler import Scheduler
from .cpu import Chip8CPU, RunResult, StepResult, StopReason
from .errors import (
    Chip8Error, ExecutionFault, InvalidOpcode, OutOfBoundsAccess,
    RomTooLarge, StackOverflow, StackUnderflow,
)

__all__ = [
    "Chip8State", "create_initial_state", "load_rom",
    "DecodedInstruction", "decode", "disassemble",
    "Chip8Registry", "TimerUnit", "Scheduler",
    "Chip8CPU", "RunResult", "StepResult", "StopReason",
    "Chip8Error", "ExecutionFault", "InvalidOpcode", "OutOfBoundsAccess",
    "RomTooLarge", "StackOverflow", "StackUnderflow",
]
