"""Decode: Bit-level CHIP-8 instruction decoder.

Architecture:
    16-bit word -> decode() -> DecodedInstruction(key, operands) -> Registry -> Execute

The decoder is pure and total. Every 16-bit value decodes to a
DecodedInstruction; words that are not part of the canonical instruction
set resolve to the OP_INVALID key and are rejected by the executor.

Operand fields follow the conventional nibble split:

    +------+------+------+------+
    | op   |  X   |  Y   |  N   |
    +------+------+------+------+
                  |     NN      |
           |        NNN         |
"""

from dataclasses import dataclass
from typing import Dict, Set, Tuple

from .errors import OutOfBoundsAccess


# Closed set of operation keys the registry implements
VALID_KEYS: Set[str] = {
    "OP_CLS", "OP_RET", "OP_JP", "OP_CALL",
    "OP_SE_IMM", "OP_SNE_IMM", "OP_SE_REG", "OP_SNE_REG",
    "OP_LD_IMM", "OP_ADD_IMM",
    "OP_LD_REG", "OP_OR", "OP_AND", "OP_XOR",
    "OP_ADD_REG", "OP_SUB", "OP_SHR", "OP_SUBN", "OP_SHL",
    "OP_LD_I", "OP_JP_V0", "OP_RND", "OP_DRW",
    "OP_SKP", "OP_SKNP",
    "OP_LD_VX_DT", "OP_LD_VX_K", "OP_LD_DT", "OP_LD_ST",
    "OP_ADD_I", "OP_LD_F", "OP_LD_B", "OP_LD_MEM_REGS", "OP_LD_REGS_MEM",
    "OP_INVALID",
}

# Opcode classes whose key depends only on the top nibble
_CLASS_KEYS: Dict[int, str] = {
    0x1: "OP_JP",
    0x2: "OP_CALL",
    0x3: "OP_SE_IMM",
    0x4: "OP_SNE_IMM",
    0x6: "OP_LD_IMM",
    0x7: "OP_ADD_IMM",
    0xA: "OP_LD_I",
    0xB: "OP_JP_V0",
    0xC: "OP_RND",
    0xD: "OP_DRW",
}

# 8XYN arithmetic/logic group, keyed by N
_ALU_KEYS: Dict[int, str] = {
    0x0: "OP_LD_REG",
    0x1: "OP_OR",
    0x2: "OP_AND",
    0x3: "OP_XOR",
    0x4: "OP_ADD_REG",
    0x5: "OP_SUB",
    0x6: "OP_SHR",
    0x7: "OP_SUBN",
    0xE: "OP_SHL",
}

# EXNN key group
_KEY_KEYS: Dict[int, str] = {
    0x9E: "OP_SKP",
    0xA1: "OP_SKNP",
}

# FXNN misc group
_MISC_KEYS: Dict[int, str] = {
    0x07: "OP_LD_VX_DT",
    0x0A: "OP_LD_VX_K",
    0x15: "OP_LD_DT",
    0x18: "OP_LD_ST",
    0x1E: "OP_ADD_I",
    0x29: "OP_LD_F",
    0x33: "OP_LD_B",
    0x55: "OP_LD_MEM_REGS",
    0x65: "OP_LD_REGS_MEM",
}


@dataclass(frozen=True)
class DecodedInstruction:
    """Decoded CHIP-8 instruction with extracted operands.

    Attributes:
        raw: Original 16-bit instruction word
        opcode: Top nibble (opcode class 0-F)
        x: Bits 8-11, usually a register index
        y: Bits 4-7, usually a register index
        n: Bits 0-3, 4-bit immediate
        nn: Bits 0-7, 8-bit immediate
        nnn: Bits 0-11, 12-bit address
    """
    raw: int
    opcode: int
    x: int
    y: int
    n: int
    nn: int
    nnn: int

    @property
    def key(self) -> str:
        """Registry key for this instruction, OP_INVALID if unrecognised."""
        return resolve_key(self)

    @property
    def valid(self) -> bool:
        return self.key != "OP_INVALID"

    @property
    def mnemonic(self) -> str:
        """Conventional assembly rendering, e.g. ``DRW V0, V1, 5``."""
        return _format_mnemonic(self)

    def __str__(self) -> str:
        return f"{self.raw:04X}  {self.mnemonic}"


def decode(word: int) -> DecodedInstruction:
    """Decode a 16-bit instruction word into its operand fields.

    Args:
        word: Instruction word (only the low 16 bits are used)

    Returns:
        DecodedInstruction; never fails
    """
    word &= 0xFFFF
    return DecodedInstruction(
        raw=word,
        opcode=(word & 0xF000) >> 12,
        x=(word & 0x0F00) >> 8,
        y=(word & 0x00F0) >> 4,
        n=word & 0x000F,
        nn=word & 0x00FF,
        nnn=word & 0x0FFF,
    )


def resolve_key(instr: DecodedInstruction) -> str:
    """Map a decoded instruction onto the closed set of registry keys."""
    op = instr.opcode

    if op in _CLASS_KEYS:
        return _CLASS_KEYS[op]

    if op == 0x0:
        if instr.raw == 0x00E0:
            return "OP_CLS"
        if instr.raw == 0x00EE:
            return "OP_RET"
        return "OP_INVALID"

    if op in (0x5, 0x9):
        if instr.n != 0:
            return "OP_INVALID"
        return "OP_SE_REG" if op == 0x5 else "OP_SNE_REG"

    if op == 0x8:
        return _ALU_KEYS.get(instr.n, "OP_INVALID")

    if op == 0xE:
        return _KEY_KEYS.get(instr.nn, "OP_INVALID")

    if op == 0xF:
        return _MISC_KEYS.get(instr.nn, "OP_INVALID")

    return "OP_INVALID"


def fetch_word(memory, pc: int) -> int:
    """Read the big-endian instruction word at pc.

    Raises:
        OutOfBoundsAccess: If either byte lies outside memory
    """
    if not 0 <= pc < len(memory) - 1:
        raise OutOfBoundsAccess(pc, None, pc, "fetch")
    return (memory[pc] << 8) | memory[pc + 1]


def disassemble(data: bytes, origin: int = 0x200) -> Tuple[str, ...]:
    """Disassemble a ROM image into one line per instruction word.

    A trailing odd byte is rendered as a raw data byte.
    """
    lines = []
    for offset in range(0, len(data) - 1, 2):
        instr = decode((data[offset] << 8) | data[offset + 1])
        lines.append(f"{origin + offset:03X}: {instr}")
    if len(data) % 2:
        lines.append(f"{origin + len(data) - 1:03X}: {data[-1]:02X}    DB 0x{data[-1]:02X}")
    return tuple(lines)


def _format_mnemonic(instr: DecodedInstruction) -> str:
    key = instr.key
    x, y = f"V{instr.x:X}", f"V{instr.y:X}"
    nn, nnn = f"0x{instr.nn:02X}", f"0x{instr.nnn:03X}"

    formats = {
        "OP_CLS": "CLS",
        "OP_RET": "RET",
        "OP_JP": f"JP {nnn}",
        "OP_CALL": f"CALL {nnn}",
        "OP_SE_IMM": f"SE {x}, {nn}",
        "OP_SNE_IMM": f"SNE {x}, {nn}",
        "OP_SE_REG": f"SE {x}, {y}",
        "OP_SNE_REG": f"SNE {x}, {y}",
        "OP_LD_IMM": f"LD {x}, {nn}",
        "OP_ADD_IMM": f"ADD {x}, {nn}",
        "OP_LD_REG": f"LD {x}, {y}",
        "OP_OR": f"OR {x}, {y}",
        "OP_AND": f"AND {x}, {y}",
        "OP_XOR": f"XOR {x}, {y}",
        "OP_ADD_REG": f"ADD {x}, {y}",
        "OP_SUB": f"SUB {x}, {y}",
        "OP_SHR": f"SHR {x}",
        "OP_SUBN": f"SUBN {x}, {y}",
        "OP_SHL": f"SHL {x}",
        "OP_LD_I": f"LD I, {nnn}",
        "OP_JP_V0": f"JP V0, {nnn}",
        "OP_RND": f"RND {x}, {nn}",
        "OP_DRW": f"DRW {x}, {y}, {instr.n}",
        "OP_SKP": f"SKP {x}",
        "OP_SKNP": f"SKNP {x}",
        "OP_LD_VX_DT": f"LD {x}, DT",
        "OP_LD_VX_K": f"LD {x}, K",
        "OP_LD_DT": f"LD DT, {x}",
        "OP_LD_ST": f"LD ST, {x}",
        "OP_ADD_I": f"ADD I, {x}",
        "OP_LD_F": f"LD F, {x}",
        "OP_LD_B": f"LD B, {x}",
        "OP_LD_MEM_REGS": f"LD [I], {x}",
        "OP_LD_REGS_MEM": f"LD {x}, [I]",
    }
    return formats.get(key, f"DW 0x{instr.raw:04X}")
