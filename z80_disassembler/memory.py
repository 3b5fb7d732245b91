"""
Z80 Disassembler — 64K Address Space with Attribute Map

The Z80 sees a flat 16-bit address space. Everything here wraps at
0x10000: loading past 0xFFFF continues at 0x0000, and reading a word at
0xFFFF takes its high byte from 0x0000.

Alongside the bytes, every address carries an attribute bitmask that the
analysis builds up:
  ASSIGNED    byte was loaded from the binary image
  CODE        byte belongs to a decoded instruction
  CODE_FIRST  byte is the first byte of a decoded instruction
  DATA        byte is referenced as data

Attributes are only ever OR'd in. Nothing clears them during a run.
"""

import logging
from dataclasses import replace
from enum import IntFlag
from pathlib import Path

from .config import ADDRESS_MASK, MAX_MEM_SIZE
from .opcodes import (RELATIVE_TYPES, WORD_TYPES, Opcode, OpcodeTableError,
                      ValueType, lookup_opcode)

log = logging.getLogger(__name__)


class MemAttribute(IntFlag):
    UNUSED = 0
    ASSIGNED = 1
    CODE = 2
    CODE_FIRST = 4
    DATA = 8


def _signed8(value: int) -> int:
    return value - 256 if value >= 128 else value


class Memory:
    """64K byte ring plus per-address attribute bitmap.

    One instance per analysis run. Create it, load one or more images,
    then hand it to the decoder and the subroutine walker.
    """

    def __init__(self):
        self._mem = bytearray(MAX_MEM_SIZE)
        self._attr = [MemAttribute.UNUSED] * MAX_MEM_SIZE

    # --- Core read ---

    def read8(self, addr: int) -> int:
        """Read 8-bit value from address (wraps)."""
        return self._mem[addr & ADDRESS_MASK]

    def read16(self, addr: int) -> int:
        """Read 16-bit value (little-endian, Z80 native byte order)."""
        lo = self.read8(addr)
        hi = self.read8(addr + 1)
        return (hi << 8) | lo

    # --- Bulk load ---

    def load_binary(self, origin: int, data: bytes):
        """Copy data into memory starting at origin and mark it ASSIGNED.

        Wraps past 0xFFFF. A later load over the same addresses wins.
        """
        for i, byte in enumerate(data):
            addr = (origin + i) & ADDRESS_MASK
            self._mem[addr] = byte
            self._attr[addr] |= MemAttribute.ASSIGNED
        log.debug("Loaded %d bytes at 0x%04X", len(data), origin & ADDRESS_MASK)

    def read_bin_file(self, origin: int, path) -> int:
        """Load a flat binary file at origin. Returns the number of bytes."""
        data = Path(path).read_bytes()
        if len(data) > MAX_MEM_SIZE:
            log.warning("%s is %d bytes, only the last 64K stay visible", path, len(data))
        self.load_binary(origin, data)
        log.info("Loaded %s (%d bytes) at 0x%04X", path, len(data), origin & ADDRESS_MASK)
        return len(data)

    # --- Attributes ---

    def add_attribute_at(self, addr: int, length: int, attr: MemAttribute):
        """OR attr into length consecutive addresses starting at addr."""
        for i in range(length):
            self._attr[(addr + i) & ADDRESS_MASK] |= attr

    def get_attribute_at(self, addr: int) -> MemAttribute:
        return self._attr[addr & ADDRESS_MASK]

    def is_assigned(self, addr: int) -> bool:
        return bool(self._attr[addr & ADDRESS_MASK] & MemAttribute.ASSIGNED)

    # --- Decoding ---

    def get_opcode_at(self, addr: int) -> Opcode:
        """Decode the instruction at addr and resolve its operand.

        Returns a fresh Opcode; the shared table entry is left untouched.
        Word operands are little-endian. Immediate bytes are signed,
        port bytes unsigned. Relative operands become absolute targets
        (addr + 2 + displacement).

        Raises:
            OpcodeTableError: the entry has a value type this decoder
                does not know how to resolve.
        """
        addr &= ADDRESS_MASK
        opcode = replace(lookup_opcode(self, addr))

        if opcode.displacement_offset is not None:
            opcode.displacement = _signed8(self.read8(addr + opcode.displacement_offset))

        value_type = opcode.value_type
        value_addr = addr + opcode.value_offset
        if value_type is ValueType.NONE:
            pass
        elif value_type in WORD_TYPES:
            opcode.value = self.read16(value_addr)
        elif value_type in RELATIVE_TYPES:
            opcode.value = (_signed8(self.read8(value_addr)) + addr + 2) & ADDRESS_MASK
        elif value_type is ValueType.NUMBER_BYTE:
            opcode.value = _signed8(self.read8(value_addr))
        elif value_type is ValueType.PORT_LBL:
            opcode.value = self.read8(value_addr)
        else:
            raise OpcodeTableError(
                f"Unknown value type {value_type!r} for opcode '{opcode.name}' at 0x{addr:04X}")
        return opcode

    # --- Hex dump ---

    def hexdump(self, start: int, length: int = 256) -> str:
        """Produce a hex dump of memory for debugging."""
        lines = []
        for offset in range(0, length, 16):
            addr = (start + offset) & ADDRESS_MASK
            row = [self._mem[(addr + i) & ADDRESS_MASK] for i in range(16)]
            hex_bytes = ' '.join(f'{b:02X}' for b in row)
            ascii_bytes = ''.join(chr(b) if 0x20 <= b < 0x7F else '.' for b in row)
            lines.append(f'{addr:04X}  {hex_bytes}  {ascii_bytes}')
        return '\n'.join(lines)
