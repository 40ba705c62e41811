"""Chip8Registry: Verified instruction primitives for the CHIP-8 VM.

This module implements the registry pattern for instruction execution:
each registry key emitted by the decoder maps to exactly one primitive,
and the registry is frozen after construction.

Each primitive has the signature ``(state, instr) -> next_pc``. It mutates
the state in place and returns the address of the next instruction; the
default is ``state.pc + 2``, jumps/calls/returns/skips override it.

Registry Keys (see decode.VALID_KEYS):
    Flow:       OP_CLS OP_RET OP_JP OP_CALL OP_JP_V0
    Skips:      OP_SE_IMM OP_SNE_IMM OP_SE_REG OP_SNE_REG OP_SKP OP_SKNP
    Registers:  OP_LD_IMM OP_ADD_IMM OP_LD_REG OP_RND
    ALU:        OP_OR OP_AND OP_XOR OP_ADD_REG OP_SUB OP_SHR OP_SUBN OP_SHL
    Index/mem:  OP_LD_I OP_ADD_I OP_LD_F OP_LD_B OP_LD_MEM_REGS OP_LD_REGS_MEM
    Timers/io:  OP_LD_VX_DT OP_LD_DT OP_LD_ST OP_LD_VX_K OP_DRW
    Faults:     OP_INVALID

Flag-setting ALU primitives write VF after the result, so an instruction
targeting VF itself leaves the flag there.
"""

import logging
import random
from typing import Callable, Dict, Optional

from .decode import DecodedInstruction, VALID_KEYS
from .errors import ExecutionFault, InvalidOpcode, OutOfBoundsAccess, StackOverflow, StackUnderflow
from .state import (
    Chip8State, DISPLAY_HEIGHT, DISPLAY_WIDTH, FLAG_REGISTER, FONT_GLYPH_BYTES, FONT_SIZE,
    FONT_START, MEMORY_SIZE, NUM_KEYS, STACK_DEPTH,
)

logger = logging.getLogger(__name__)

Primitive = Callable[[Chip8State, DecodedInstruction], int]


class Chip8Registry:
    """Verified registry of CHIP-8 instruction primitives.

    Attributes:
        rng: Random source for OP_RND
        _primitives: Dictionary mapping operation keys to handler functions
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self, rng: Optional[random.Random] = None):
        """Initialize registry with all primitives.

        Args:
            rng: Random source for CXNN (seeded instance for reproducible runs)
        """
        self.rng = rng if rng is not None else random.Random()
        self._primitives: Dict[str, Primitive] = {}
        self._frozen = False
        self._register_all_primitives()
        self.freeze()

    def _register_all_primitives(self) -> None:
        # Flow control
        self.register("OP_CLS", self._op_cls)
        self.register("OP_RET", self._op_ret)
        self.register("OP_JP", self._op_jp)
        self.register("OP_CALL", self._op_call)
        self.register("OP_JP_V0", self._op_jp_v0)

        # Skips
        self.register("OP_SE_IMM", self._op_se_imm)
        self.register("OP_SNE_IMM", self._op_sne_imm)
        self.register("OP_SE_REG", self._op_se_reg)
        self.register("OP_SNE_REG", self._op_sne_reg)
        self.register("OP_SKP", self._op_skp)
        self.register("OP_SKNP", self._op_sknp)

        # Register loads
        self.register("OP_LD_IMM", self._op_ld_imm)
        self.register("OP_ADD_IMM", self._op_add_imm)
        self.register("OP_LD_REG", self._op_ld_reg)
        self.register("OP_RND", self._op_rnd)

        # ALU
        self.register("OP_OR", self._op_or)
        self.register("OP_AND", self._op_and)
        self.register("OP_XOR", self._op_xor)
        self.register("OP_ADD_REG", self._op_add_reg)
        self.register("OP_SUB", self._op_sub)
        self.register("OP_SHR", self._op_shr)
        self.register("OP_SUBN", self._op_subn)
        self.register("OP_SHL", self._op_shl)

        # Index register and memory
        self.register("OP_LD_I", self._op_ld_i)
        self.register("OP_ADD_I", self._op_add_i)
        self.register("OP_LD_F", self._op_ld_f)
        self.register("OP_LD_B", self._op_ld_b)
        self.register("OP_LD_MEM_REGS", self._op_ld_mem_regs)
        self.register("OP_LD_REGS_MEM", self._op_ld_regs_mem)

        # Timers, input, display
        self.register("OP_LD_VX_DT", self._op_ld_vx_dt)
        self.register("OP_LD_DT", self._op_ld_dt)
        self.register("OP_LD_ST", self._op_ld_st)
        self.register("OP_LD_VX_K", self._op_ld_vx_k)
        self.register("OP_DRW", self._op_drw)

        self.register("OP_INVALID", self._op_invalid)

    def register(self, key: str, handler: Primitive) -> None:
        """Register a primitive operation.

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key is unknown to the decoder or already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register primitives: registry is frozen")
        if key not in VALID_KEYS:
            raise ValueError(f"Unknown operation key: {key}")
        if key in self._primitives:
            raise ValueError(f"Primitive already registered: {key}")
        self._primitives[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def get_valid_keys(self) -> set:
        """Get set of all registered operation keys."""
        return set(self._primitives.keys())

    def execute(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """Execute one decoded instruction against the state.

        The state's PC must still point at the instruction being executed.
        On success the PC is advanced and the cycle count incremented.

        Args:
            state: Machine state to mutate
            instr: Decoded instruction

        Returns:
            The new program counter

        Raises:
            ExecutionFault: On invalid opcodes, stack errors or bad addresses;
                the fault carries the instruction's PC and raw opcode
        """
        handler = self._primitives[instr.key]
        pc = state.pc
        try:
            next_pc = handler(state, instr)
            if not 0 <= next_pc < MEMORY_SIZE:
                raise OutOfBoundsAccess(pc, instr.raw, next_pc, "jump to")
        except ExecutionFault as fault:
            if fault.opcode is None:
                fault.opcode = instr.raw
            fault.pc = pc
            raise

        state.pc = next_pc
        state.cycle_count += 1
        return next_pc

    # =========================================================================
    # Flow Control
    # =========================================================================

    def _op_cls(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """00E0 - Clear the display."""
        state.clear_display()
        return state.pc + 2

    def _op_ret(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """00EE - Return from subroutine."""
        if not state.stack:
            raise StackUnderflow(state.pc, instr.raw, "RET with empty stack")
        return state.stack.pop()

    def _op_jp(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """1NNN - Jump to NNN."""
        return instr.nnn

    def _op_call(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """2NNN - Call subroutine at NNN, pushing the post-fetch PC."""
        if len(state.stack) >= STACK_DEPTH:
            raise StackOverflow(state.pc, instr.raw, f"call depth exceeds {STACK_DEPTH}")
        state.stack.append(state.pc + 2)
        return instr.nnn

    def _op_jp_v0(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """BNNN - Jump to NNN + V0."""
        return instr.nnn + state.registers[0]

    # =========================================================================
    # Skips
    # =========================================================================

    @staticmethod
    def _skip_if(state: Chip8State, condition: bool) -> int:
        return state.pc + (4 if condition else 2)

    def _op_se_imm(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """3XNN - Skip next if Vx == NN."""
        return self._skip_if(state, state.registers[instr.x] == instr.nn)

    def _op_sne_imm(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """4XNN - Skip next if Vx != NN."""
        return self._skip_if(state, state.registers[instr.x] != instr.nn)

    def _op_se_reg(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """5XY0 - Skip next if Vx == Vy."""
        return self._skip_if(state, state.registers[instr.x] == state.registers[instr.y])

    def _op_sne_reg(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """9XY0 - Skip next if Vx != Vy."""
        return self._skip_if(state, state.registers[instr.x] != state.registers[instr.y])

    def _op_skp(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """EX9E - Skip next if key Vx is pressed."""
        key = state.registers[instr.x] & (NUM_KEYS - 1)
        return self._skip_if(state, state.keypad[key])

    def _op_sknp(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """EXA1 - Skip next if key Vx is not pressed."""
        key = state.registers[instr.x] & (NUM_KEYS - 1)
        return self._skip_if(state, not state.keypad[key])

    # =========================================================================
    # Register Loads
    # =========================================================================

    def _op_ld_imm(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """6XNN - Vx = NN."""
        state.registers[instr.x] = instr.nn
        return state.pc + 2

    def _op_add_imm(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """7XNN - Vx += NN, no carry flag."""
        state.registers[instr.x] = (state.registers[instr.x] + instr.nn) & 0xFF
        return state.pc + 2

    def _op_ld_reg(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY0 - Vx = Vy."""
        state.registers[instr.x] = state.registers[instr.y]
        return state.pc + 2

    def _op_rnd(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """CXNN - Vx = random byte AND NN."""
        state.registers[instr.x] = self.rng.randint(0, 0xFF) & instr.nn
        return state.pc + 2

    # =========================================================================
    # ALU
    # =========================================================================

    def _op_or(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY1 - Vx |= Vy."""
        state.registers[instr.x] |= state.registers[instr.y]
        return state.pc + 2

    def _op_and(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY2 - Vx &= Vy."""
        state.registers[instr.x] &= state.registers[instr.y]
        return state.pc + 2

    def _op_xor(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY3 - Vx ^= Vy."""
        state.registers[instr.x] ^= state.registers[instr.y]
        return state.pc + 2

    def _op_add_reg(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY4 - Vx += Vy, VF = carry."""
        total = state.registers[instr.x] + state.registers[instr.y]
        state.registers[instr.x] = total & 0xFF
        state.registers[FLAG_REGISTER] = 1 if total > 0xFF else 0
        return state.pc + 2

    def _op_sub(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY5 - Vx -= Vy, VF = 1 when there is no borrow."""
        vx, vy = state.registers[instr.x], state.registers[instr.y]
        state.registers[instr.x] = (vx - vy) & 0xFF
        state.registers[FLAG_REGISTER] = 1 if vx >= vy else 0
        return state.pc + 2

    def _op_shr(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY6 - Vx >>= 1, VF = bit shifted out."""
        vx = state.registers[instr.x]
        state.registers[instr.x] = vx >> 1
        state.registers[FLAG_REGISTER] = vx & 0x01
        return state.pc + 2

    def _op_subn(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XY7 - Vx = Vy - Vx, VF = 1 when there is no borrow."""
        vx, vy = state.registers[instr.x], state.registers[instr.y]
        state.registers[instr.x] = (vy - vx) & 0xFF
        state.registers[FLAG_REGISTER] = 1 if vy >= vx else 0
        return state.pc + 2

    def _op_shl(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """8XYE - Vx <<= 1, VF = bit shifted out."""
        vx = state.registers[instr.x]
        state.registers[instr.x] = (vx << 1) & 0xFF
        state.registers[FLAG_REGISTER] = (vx >> 7) & 0x01
        return state.pc + 2

    # =========================================================================
    # Index Register and Memory
    # =========================================================================

    def _op_ld_i(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """ANNN - I = NNN."""
        state.index = instr.nnn
        return state.pc + 2

    def _op_add_i(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX1E - I += Vx (16-bit wrap)."""
        state.index = (state.index + state.registers[instr.x]) & 0xFFFF
        return state.pc + 2

    def _op_ld_f(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX29 - I = address of the font glyph for digit Vx."""
        state.index = FONT_START + FONT_GLYPH_BYTES * state.registers[instr.x]
        return state.pc + 2

    def _op_ld_b(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX33 - Store BCD of Vx at I, I+1, I+2."""
        value = state.registers[instr.x]
        # Fault before the first write
        self._check_range(state, state.index, 3, write=True)
        state.write_byte(state.index, value // 100)
        state.write_byte(state.index + 1, (value // 10) % 10)
        state.write_byte(state.index + 2, value % 10)
        return state.pc + 2

    def _op_ld_mem_regs(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX55 - Store V0..Vx at I..I+x. I is left unchanged."""
        self._check_range(state, state.index, instr.x + 1, write=True)
        for offset in range(instr.x + 1):
            state.write_byte(state.index + offset, state.registers[offset])
        return state.pc + 2

    def _op_ld_regs_mem(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX65 - Load V0..Vx from I..I+x. I is left unchanged."""
        self._check_range(state, state.index, instr.x + 1, write=False)
        for offset in range(instr.x + 1):
            state.registers[offset] = state.read_byte(state.index + offset)
        return state.pc + 2

    # =========================================================================
    # Timers, Input, Display
    # =========================================================================

    def _op_ld_vx_dt(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX07 - Vx = delay timer."""
        state.registers[instr.x] = state.delay_timer
        return state.pc + 2

    def _op_ld_dt(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX15 - delay timer = Vx."""
        state.delay_timer = state.registers[instr.x]
        return state.pc + 2

    def _op_ld_st(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX18 - sound timer = Vx."""
        state.sound_timer = state.registers[instr.x]
        return state.pc + 2

    def _op_ld_vx_k(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """FX0A - Suspend until a key is pressed, then store it in Vx.

        The PC moves past this instruction immediately; the execution loop
        refuses to run anything while ``waiting_for_key`` is set, and the
        key press handler fills Vx and clears the wait.
        """
        state.waiting_for_key = instr.x
        return state.pc + 2

    def _op_drw(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """DXYN - XOR an N-byte sprite from memory[I] at (Vx, Vy).

        The origin wraps around the screen; pixels past the right or bottom
        edge are clipped. VF is set when any lit pixel is turned off.
        """
        x0 = state.registers[instr.x] % DISPLAY_WIDTH
        y0 = state.registers[instr.y] % DISPLAY_HEIGHT
        self._check_range(state, state.index, instr.n, write=False)
        sprite = state.memory[state.index:state.index + instr.n]

        collision = 0
        for row, bits in enumerate(sprite):
            y = y0 + row
            if y >= DISPLAY_HEIGHT:
                break
            line = state.display[y]
            for col in range(8):
                x = x0 + col
                if x >= DISPLAY_WIDTH:
                    break
                if bits & (0x80 >> col):
                    if line[x]:
                        collision = 1
                    line[x] ^= 1

        state.registers[FLAG_REGISTER] = collision
        state.display_dirty = True
        return state.pc + 2

    def _op_invalid(self, state: Chip8State, instr: DecodedInstruction) -> int:
        """Unrecognised instruction word: fatal."""
        raise InvalidOpcode(state.pc, instr.raw)

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def _check_range(state: Chip8State, start: int, length: int, write: bool) -> None:
        """Fault unless every address in [start, start+length) is accessible."""
        if length <= 0:
            return
        if start + length > MEMORY_SIZE:
            bad = start if start >= MEMORY_SIZE else MEMORY_SIZE
            raise OutOfBoundsAccess(state.pc, None, bad, "write" if write else "read")
        if write and start < FONT_START + FONT_SIZE:
            raise OutOfBoundsAccess(state.pc, None, start, "write to fontset")
