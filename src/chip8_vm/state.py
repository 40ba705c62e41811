"""Chip8State: Mutable machine state for the CHIP-8 VM.

This module defines the single owned state structure that every other
component reads and mutates. There is no ambient/global state: each
Chip8CPU holds its own Chip8State, so any number of VMs can coexist.

State Components:
    - Memory: 4096 bytes (fontset at 0x000-0x04F, program from 0x200)
    - Registers: V0-VF (16 x 8-bit, VF doubles as the flag register)
    - PC / I: 16-bit program counter and index register
    - Stack: up to 16 return addresses
    - Timers: delay and sound, 8-bit, decremented at 60 Hz
    - Display: 64x32 monochrome framebuffer
    - Keypad: 16 hex keys

Memory accessors are bounds-checked and raise OutOfBoundsAccess instead of
touching addresses outside the arena or overwriting the fontset.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import OutOfBoundsAccess, RomTooLarge

logger = logging.getLogger(__name__)


# Memory layout
MEMORY_SIZE = 4096
FONT_START = 0x000
FONT_GLYPH_BYTES = 5
FONT_SIZE = 16 * FONT_GLYPH_BYTES
PROGRAM_START = 0x200
PROGRAM_CAPACITY = MEMORY_SIZE - PROGRAM_START

# Register file
NUM_REGISTERS = 16
FLAG_REGISTER = 0xF
STACK_DEPTH = 16

# Peripherals
DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32
NUM_KEYS = 16

FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])


def _blank_display() -> List[List[int]]:
    return [[0] * DISPLAY_WIDTH for _ in range(DISPLAY_HEIGHT)]


def _fresh_memory() -> bytearray:
    memory = bytearray(MEMORY_SIZE)
    memory[FONT_START:FONT_START + FONT_SIZE] = FONTSET
    return memory


@dataclass
class Chip8State:
    """Complete CHIP-8 machine state.

    Attributes:
        memory: 4096-byte address space with the fontset preloaded
        registers: V0-VF, each an 8-bit unsigned value
        pc: Program counter (address of the next instruction)
        index: Index register I
        stack: Return addresses pushed by CALL, innermost last
        delay_timer: 8-bit countdown timer
        sound_timer: 8-bit countdown timer, tone plays while non-zero
        display: DISPLAY_HEIGHT rows of DISPLAY_WIDTH pixels (0 or 1)
        keypad: Pressed state for each of the 16 hex keys
        waiting_for_key: Register index FX0A is waiting to fill, or None
        display_dirty: Set by CLS/DRW, cleared by whoever presents the frame
        halted: Whether execution has stopped on a fault
        cycle_count: Number of instructions executed
    """
    memory: bytearray = field(default_factory=_fresh_memory)
    registers: List[int] = field(default_factory=lambda: [0] * NUM_REGISTERS)
    pc: int = PROGRAM_START
    index: int = 0
    stack: List[int] = field(default_factory=list)
    delay_timer: int = 0
    sound_timer: int = 0
    display: List[List[int]] = field(default_factory=_blank_display)
    keypad: List[bool] = field(default_factory=lambda: [False] * NUM_KEYS)
    waiting_for_key: Optional[int] = None
    display_dirty: bool = False
    halted: bool = False
    cycle_count: int = 0

    def snapshot(self) -> dict:
        """Create a copy of the CPU-visible state for tracing.

        Returns:
            Dictionary of registers, pc, index, stack and timers. Memory and
            display are excluded; use framebuffer() for the pixels.
        """
        return {
            "registers": list(self.registers),
            "pc": self.pc,
            "index": self.index,
            "stack": list(self.stack),
            "delay_timer": self.delay_timer,
            "sound_timer": self.sound_timer,
            "waiting_for_key": self.waiting_for_key,
            "halted": self.halted,
            "cycle_count": self.cycle_count,
        }

    def validate(self) -> bool:
        """Validate state integrity.

        Checks:
            - Memory is exactly MEMORY_SIZE bytes and the fontset is intact
            - Registers are 16 values in 0-255
            - PC is even-aligned and inside memory
            - Stack depth is within STACK_DEPTH
            - Timers are 8-bit values
            - Display and keypad have the right dimensions

        Returns:
            True if state is valid, False otherwise
        """
        if len(self.memory) != MEMORY_SIZE:
            return False
        if bytes(self.memory[FONT_START:FONT_START + FONT_SIZE]) != FONTSET:
            return False

        if len(self.registers) != NUM_REGISTERS:
            return False
        for value in self.registers:
            if not isinstance(value, int) or not 0 <= value <= 0xFF:
                return False

        if not 0 <= self.pc < MEMORY_SIZE or self.pc % 2:
            return False
        if not 0 <= self.index <= 0xFFFF:
            return False
        if len(self.stack) > STACK_DEPTH:
            return False

        for timer in (self.delay_timer, self.sound_timer):
            if not 0 <= timer <= 0xFF:
                return False

        if len(self.display) != DISPLAY_HEIGHT:
            return False
        if any(len(row) != DISPLAY_WIDTH for row in self.display):
            return False
        if len(self.keypad) != NUM_KEYS:
            return False

        return self.cycle_count >= 0

    def get_register(self, reg: int) -> int:
        """Get value of register V{reg}.

        Raises:
            IndexError: If reg is not 0-15
        """
        if not 0 <= reg < NUM_REGISTERS:
            raise IndexError(f"Invalid register: {reg}")
        return self.registers[reg]

    def set_register(self, reg: int, value: int) -> None:
        """Set register V{reg}, truncating the value to 8 bits.

        Raises:
            IndexError: If reg is not 0-15
        """
        if not 0 <= reg < NUM_REGISTERS:
            raise IndexError(f"Invalid register: {reg}")
        self.registers[reg] = value & 0xFF

    def read_byte(self, address: int) -> int:
        """Read one byte of memory.

        Raises:
            OutOfBoundsAccess: If address is outside [0, MEMORY_SIZE)
        """
        if not 0 <= address < MEMORY_SIZE:
            raise OutOfBoundsAccess(self.pc, None, address, "read")
        return self.memory[address]

    def write_byte(self, address: int, value: int) -> None:
        """Write one byte of memory.

        The fontset region is read-only once initialised.

        Raises:
            OutOfBoundsAccess: If address is outside memory or inside the fontset
        """
        if not 0 <= address < MEMORY_SIZE:
            raise OutOfBoundsAccess(self.pc, None, address, "write")
        if FONT_START <= address < FONT_START + FONT_SIZE:
            raise OutOfBoundsAccess(self.pc, None, address, "write to fontset")
        self.memory[address] = value & 0xFF

    def clear_display(self) -> None:
        for row in self.display:
            for x in range(DISPLAY_WIDTH):
                row[x] = 0
        self.display_dirty = True

    def framebuffer(self) -> Tuple[Tuple[int, ...], ...]:
        """Read-only snapshot of the display, one tuple per row."""
        return tuple(tuple(row) for row in self.display)

    def dump_registers(self) -> Dict[str, int]:
        """Get a copy of all register values keyed V0-VF."""
        return {f"V{i:X}": value for i, value in enumerate(self.registers)}

    def __str__(self) -> str:
        """Human-readable state representation."""
        regs = " ".join(f"V{i:X}={v:02X}" for i, v in enumerate(self.registers))
        status = "HALTED" if self.halted else ("WAIT-KEY" if self.waiting_for_key is not None else "")
        return (f"[Cycle {self.cycle_count}] PC={self.pc:03X} I={self.index:03X} {regs} "
                f"DT={self.delay_timer} ST={self.sound_timer} SP={len(self.stack)} {status}").rstrip()


def create_initial_state() -> Chip8State:
    """Create a power-on state: fontset loaded, everything else zeroed, PC=0x200."""
    return Chip8State()


def load_rom(state: Chip8State, rom: bytes) -> None:
    """Copy ROM bytes into program memory starting at PROGRAM_START.

    Args:
        state: State to load into
        rom: Raw ROM image

    Raises:
        RomTooLarge: If the ROM does not fit; state is left untouched
    """
    if PROGRAM_START + len(rom) > MEMORY_SIZE:
        raise RomTooLarge(len(rom), PROGRAM_CAPACITY)
    state.memory[PROGRAM_START:PROGRAM_START + len(rom)] = rom
    logger.info("Loaded %d byte ROM at 0x%03X", len(rom), PROGRAM_START)
