"""ProgramImage: the fixed MIPS32 loop that exercises delay-slot hooks.

The image is a four-instruction little-endian loop whose counter decrement
sits in the branch delay slot:

    100000:  02 00 04 24   li    $a0, 2
    100004:  00 00 00 00   nop                  ; loop top
    100008:  fe ff 80 14   bnez  $a0, 100004
    10000c:  ff ff 84 24   addiu $a0, $a0, -1   ; delay slot

The delay slot executes on every pass, taken or not, so the loop top is
retired loop_count + 1 times and the counter ends one below zero.
"""

import struct
from dataclasses import dataclass
from typing import List


BASE_ADDRESS = 0x100000
REFERENCE_LOOP_COUNT = 2
INSTRUCTION_SIZE = 4

REFERENCE_CODE = bytes([
    0x02, 0x00, 0x04, 0x24,  # li    $a0, 2
    0x00, 0x00, 0x00, 0x00,  # nop
    0xFE, 0xFF, 0x80, 0x14,  # bnez  $a0, loop
    0xFF, 0xFF, 0x84, 0x24,  # addiu $a0, $a0, -1
])

# MIPS32 encoding fields
_OP_BNE = 0x05
_OP_ADDIU = 0x09
_REG_ZERO = 0
_REG_A0 = 4

MAX_LOOP_COUNT = 0x7FFF


def _itype(opcode: int, rs: int, rt: int, imm: int) -> bytes:
    word = (opcode << 26) | (rs << 21) | (rt << 16) | (imm & 0xFFFF)
    return struct.pack("<I", word)


def _nop() -> bytes:
    return struct.pack("<I", 0)


@dataclass(frozen=True)
class ProgramImage:
    """Immutable machine-code image plus the addresses the observer needs.

    Attributes:
        code: Little-endian MIPS32 machine code
        base: Load address of the first instruction
        loop_count: Initial value of the loop counter ($a0)
    """
    code: bytes
    base: int = BASE_ADDRESS
    loop_count: int = REFERENCE_LOOP_COUNT

    @classmethod
    def reference(cls, base: int = BASE_ADDRESS) -> "ProgramImage":
        """The hand-assembled reference image (loop count 2)."""
        return cls(code=REFERENCE_CODE, base=base, loop_count=REFERENCE_LOOP_COUNT)

    @classmethod
    def build(cls, loop_count: int = REFERENCE_LOOP_COUNT, base: int = BASE_ADDRESS) -> "ProgramImage":
        """Encode the delay-slot loop for an arbitrary counter value.

        Args:
            loop_count: Initial counter value, 0..0x7FFF (positive 16-bit immediate)
            base: Load address, must be instruction aligned

        Returns:
            ProgramImage with freshly encoded machine code

        Raises:
            ValueError: If loop_count or base is out of range
        """
        if not 0 <= loop_count <= MAX_LOOP_COUNT:
            raise ValueError(f"loop_count must be in 0..{MAX_LOOP_COUNT}, got {loop_count}")
        if base < 0 or base % INSTRUCTION_SIZE:
            raise ValueError(f"base must be a non-negative multiple of {INSTRUCTION_SIZE}: {base:#x}")

        # Branch offset is counted in words from the delay slot back to the loop top.
        code = b"".join([
            _itype(_OP_ADDIU, _REG_ZERO, _REG_A0, loop_count),
            _nop(),
            _itype(_OP_BNE, _REG_A0, _REG_ZERO, -2),
            _itype(_OP_ADDIU, _REG_A0, _REG_A0, -1),
        ])
        return cls(code=code, base=base, loop_count=loop_count)

    @property
    def size(self) -> int:
        return len(self.code)

    @property
    def end_address(self) -> int:
        """First address past the image; execution halts here."""
        return self.base + self.size

    @property
    def loop_top(self) -> int:
        return self.base + 1 * INSTRUCTION_SIZE

    @property
    def branch_address(self) -> int:
        return self.base + 2 * INSTRUCTION_SIZE

    @property
    def delay_slot(self) -> int:
        """Address of the delay-slot decrement, the witness address."""
        return self.base + 3 * INSTRUCTION_SIZE

    @property
    def expected_iterations(self) -> int:
        return self.loop_count + 1

    @property
    def expected_final_counter(self) -> int:
        """Unsigned 32-bit $a0 after the final, not-taken pass."""
        return (self.loop_count - self.expected_iterations) & 0xFFFFFFFF

    def expected_trace(self) -> List[int]:
        """Addresses in retirement order for a fully hooked run."""
        trace = [self.base]
        for _ in range(self.expected_iterations):
            trace.extend([self.loop_top, self.branch_address, self.delay_slot])
        return trace

    def addresses(self) -> List[int]:
        return list(range(self.base, self.end_address, INSTRUCTION_SIZE))

    def listing(self) -> List[str]:
        """Annotated disassembly, one line per instruction."""
        mnemonics = [
            f"li      $a0, {self.loop_count}",
            "nop",
            f"bnez    $a0, {self.loop_top:#x}",
            "addiu   $a0, $a0, -1",
        ]
        lines = []
        for i, text in enumerate(mnemonics):
            address = self.base + i * INSTRUCTION_SIZE
            raw = self.code[i * INSTRUCTION_SIZE:(i + 1) * INSTRUCTION_SIZE]
            lines.append(f"{address:x}:  {raw.hex(' ')}  {text}")
        return lines
