"""Error types raised by the CHIP-8 VM.

Load-time errors (RomTooLarge) are recoverable: the load is aborted and the
VM is left as it was. Execution-time errors derive from ExecutionFault and
are fatal: the execution loop halts and reports the faulting PC and opcode.
"""

from typing import Optional


class Chip8Error(Exception):
    """Base class for all CHIP-8 VM errors."""


class RomTooLarge(Chip8Error):
    """ROM image does not fit between the program start and end of memory."""

    def __init__(self, size: int, capacity: int):
        self.size = size
        self.capacity = capacity
        super().__init__(f"ROM is {size} bytes, only {capacity} bytes available")


class ExecutionFault(Chip8Error):
    """Fatal fault raised while executing an instruction.

    Attributes:
        pc: Address of the faulting instruction
        opcode: Raw 16-bit instruction word, or None if not yet known
    """

    reason = "execution fault"

    def __init__(self, pc: int, opcode: Optional[int], detail: str = ""):
        self.pc = pc
        self.opcode = opcode
        self.detail = detail
        super().__init__(pc, opcode, detail)

    def __str__(self) -> str:
        opcode = "????" if self.opcode is None else f"{self.opcode:04X}"
        message = f"{self.reason} at PC=0x{self.pc:03X} (opcode {opcode})"
        if self.detail:
            message += f": {self.detail}"
        return message


class InvalidOpcode(ExecutionFault):
    reason = "invalid opcode"


class StackOverflow(ExecutionFault):
    reason = "stack overflow"


class StackUnderflow(ExecutionFault):
    reason = "stack underflow"


class OutOfBoundsAccess(ExecutionFault):
    """Memory or PC access outside the 4096-byte address space.

    Attributes:
        address: The offending address
    """

    reason = "out of bounds access"

    def __init__(self, pc: int, opcode: Optional[int], address: int, access: str = "access"):
        self.address = address
        super().__init__(pc, opcode, f"{access} 0x{address:X}")
