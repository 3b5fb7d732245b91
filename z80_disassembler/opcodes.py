"""
Z80 Disassembler — Opcode Tables / Decoder

Maps opcode bytes to Opcode descriptors: text template, operand value
type, instruction length, control-flow flags and the registers the
instruction reads and writes.

Opcode pages:
  (none)    Unprefixed, 252 opcodes
  CB        Rotates, shifts, BIT/RES/SET
  ED        Extended: 16-bit ADC/SBC, IN/OUT (C), block ops, IM, RETN/RETI
  DD / FD   IX / IY forms of the unprefixed page (HL -> IX, H -> IXH,
            (HL) -> (IX+d))
  DD CB     IX indexed bit operations: DD CB d op
  FD CB     IY indexed bit operations: FD CB d op

The tables are generated from the x/y/z bit fields of the opcode byte:
  x = bits 7-6, y = bits 5-3, z = bits 2-0, p = y >> 1, q = y & 1

Template placeholders:
  #nn   16-bit value          #n   8-bit value or relative target
  #d    index displacement, rendered as +5 / -3

lookup_opcode() only walks the prefixes and returns the table entry.
Operand values are resolved by Memory.get_opcode_at().
"""

from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Dict, FrozenSet, Iterable, Optional

from .regs import Register


class OpcodeTableError(AssertionError):
    """Raised when an opcode table entry cannot be resolved.

    Signals a defect in the tables, not bad input: every byte sequence
    decodes to some entry, so this never depends on the binary.
    """
    pass


class ValueType(Enum):
    """How the bytes following the opcode are interpreted."""
    NONE = 'NONE'                              # no operand
    CODE_LBL = 'CODE_LBL'                      # JP target (word)
    CODE_SUB = 'CODE_SUB'                      # CALL target (word)
    DATA_LBL = 'DATA_LBL'                      # memory address, LD A,(nn) (word)
    NUMBER_WORD = 'NUMBER_WORD'                # 16-bit immediate
    CODE_RELATIVE_LBL = 'CODE_RELATIVE_LBL'    # JR displacement (byte)
    CODE_RELATIVE_LOOP = 'CODE_RELATIVE_LOOP'  # DJNZ displacement (byte)
    NUMBER_BYTE = 'NUMBER_BYTE'                # 8-bit immediate, signed
    PORT_LBL = 'PORT_LBL'                      # IN/OUT port, unsigned


WORD_TYPES = frozenset({ValueType.CODE_LBL, ValueType.CODE_SUB,
                        ValueType.DATA_LBL, ValueType.NUMBER_WORD})
RELATIVE_TYPES = frozenset({ValueType.CODE_RELATIVE_LBL, ValueType.CODE_RELATIVE_LOOP})
BYTE_TYPES = RELATIVE_TYPES | {ValueType.NUMBER_BYTE, ValueType.PORT_LBL}


class OpcodeFlag(IntFlag):
    NONE = 0
    BRANCH_ADDRESS = 0x01   # has a code target (JP, JR, DJNZ, CALL, RST)
    CONDITIONAL = 0x02      # may fall through
    STOP = 0x04             # never falls through (JP, JR, RET, JP (HL))
    CALL = 0x08             # CALL, CALL cc, RST
    RETURN = 0x10           # RET, RET cc, RETI, RETN
    INVALID = 0x20          # not a defined instruction


@dataclass
class Opcode:
    """One decoded (or template) instruction."""
    code: int                  # final opcode byte
    name: str                  # text template, e.g. "LD A,#n"
    value_type: ValueType = ValueType.NONE
    length: int = 1            # total bytes including prefixes
    flags: OpcodeFlag = OpcodeFlag.NONE
    reads: FrozenSet[Register] = frozenset()
    writes: FrozenSet[Register] = frozenset()
    prefix: bytes = b''
    value_offset: int = 1      # bytes from opcode address to the value
    displacement_offset: Optional[int] = None
    fixed_target: Optional[int] = None   # RST vector
    value: Optional[int] = None          # resolved operand
    displacement: Optional[int] = None   # resolved (IX+d) offset

    @property
    def mnemonic(self) -> str:
        return self.name.split()[0]

    @property
    def is_invalid(self) -> bool:
        return bool(self.flags & OpcodeFlag.INVALID)

    @property
    def target(self) -> Optional[int]:
        """Absolute code target for jumps, calls and RST, else None."""
        if not self.flags & OpcodeFlag.BRANCH_ADDRESS:
            return None
        if self.fixed_target is not None:
            return self.fixed_target
        if self.value is None:
            return None
        return self.value & 0xFFFF

    def disassemble(self) -> str:
        """Render the template with the resolved operand values."""
        text = self.name
        if self.displacement is not None:
            text = text.replace('#d', f'{self.displacement:+d}')
        if self.value is not None:
            if self.value_type in WORD_TYPES or self.value_type in RELATIVE_TYPES:
                text = text.replace('#nn', f'0x{self.value & 0xFFFF:04X}')
                text = text.replace('#n', f'0x{self.value & 0xFFFF:04X}')
            else:
                text = text.replace('#n', f'0x{self.value & 0xFF:02X}')
        return text

    def __str__(self):
        return f"{self.disassemble():20s} ({self.length}B, {self.value_type.value})"


# ──────────────────────────────────────────────
# Operand name tables
# ──────────────────────────────────────────────

R8 = ('B', 'C', 'D', 'E', 'H', 'L', '(HL)', 'A')
RP = ('BC', 'DE', 'HL', 'SP')
RP2 = ('BC', 'DE', 'HL', 'AF')
CC = ('NZ', 'Z', 'NC', 'C', 'PO', 'PE', 'P', 'M')
ALU = ('ADD A,', 'ADC A,', 'SUB ', 'SBC A,', 'AND ', 'XOR ', 'OR ', 'CP ')
ROT = ('RLC', 'RRC', 'RL', 'RR', 'SLA', 'SRA', 'SLL', 'SRL')
ROT_A = ('RLCA', 'RRCA', 'RLA', 'RRA', 'DAA', 'CPL', 'SCF', 'CCF')

BLOCK_OPS = {
    (4, 0): 'LDI', (5, 0): 'LDD', (6, 0): 'LDIR', (7, 0): 'LDDR',
    (4, 1): 'CPI', (5, 1): 'CPD', (6, 1): 'CPIR', (7, 1): 'CPDR',
    (4, 2): 'INI', (5, 2): 'IND', (6, 2): 'INIR', (7, 2): 'INDR',
    (4, 3): 'OUTI', (5, 3): 'OUTD', (6, 3): 'OTIR', (7, 3): 'OTDR',
}

INDEX_PREFIX = {'IX': 0xDD, 'IY': 0xFD}
PREFIX_INDEX = {0xDD: 'IX', 0xFD: 'IY'}

_PAIRS = {
    'AF': (Register.A, Register.F),
    'BC': (Register.B, Register.C),
    'DE': (Register.D, Register.E),
    'HL': (Register.H, Register.L),
    'IX': (Register.IXH, Register.IXL),
    'IY': (Register.IYH, Register.IYL),
    'SP': (),
}

_F = ('F',)


def _regs(names: Iterable[str]) -> FrozenSet[Register]:
    """Register set from names like 'A', 'HL', 'IXH'."""
    out = set()
    for name in names:
        if name in _PAIRS:
            out.update(_PAIRS[name])
        else:
            out.add(Register[name])
    return frozenset(out)


def _value_size(value_type: ValueType) -> int:
    if value_type in WORD_TYPES:
        return 2
    if value_type in BYTE_TYPES:
        return 1
    return 0


def _make(code: int, name: str, prefix: bytes = b'', reads=(), writes=(),
          value_type: ValueType = ValueType.NONE,
          flags: OpcodeFlag = OpcodeFlag.NONE,
          fixed_target: Optional[int] = None) -> Opcode:
    """Build a table entry, deriving length and offsets from the template."""
    head = len(prefix) + 1
    displacement_offset = None
    if '#d' in name:
        displacement_offset = head
        head += 1
    return Opcode(
        code=code, name=name, value_type=value_type,
        length=head + _value_size(value_type), flags=flags,
        reads=_regs(reads), writes=_regs(writes), prefix=prefix,
        value_offset=head, displacement_offset=displacement_offset,
        fixed_target=fixed_target,
    )


def _invalid(code: int, prefix: bytes = b'') -> Opcode:
    data = ','.join(f'0x{b:02X}' for b in prefix + bytes([code]))
    return Opcode(code=code, name=f'DEFB {data}', length=len(prefix) + 1,
                  flags=OpcodeFlag.INVALID, prefix=prefix)


# ──────────────────────────────────────────────
# Unprefixed page, and its DD/FD variants
# ──────────────────────────────────────────────

def _main_entry(code: int, hl: str = 'HL') -> Optional[Opcode]:
    """Entry for an unprefixed opcode, or its IX/IY form when hl is 'IX'/'IY'.

    Returns None for the prefix bytes themselves, and for index forms of
    opcodes that do not involve HL (the prefix has no effect on those).
    """
    x, y, z = code >> 6, (code >> 3) & 7, code & 7
    p, q = y >> 1, y & 1
    indexed = hl != 'HL'
    prefix = bytes([INDEX_PREFIX[hl]]) if indexed else b''
    mem = f'({hl}#d)' if indexed else '(HL)'

    def r8(n, plain=False):
        # (HL) reads the address pair; H/L become IXH/IXL unless the
        # same instruction already uses (IX+d)
        if n == 6:
            return mem, (hl,)
        name = R8[n]
        if indexed and not plain and n in (4, 5):
            name = hl + name
        return name, (name,)

    def pair(name):
        return hl if name == 'HL' else name

    def op(name, reads=(), writes=(), value_type=ValueType.NONE,
           flags=OpcodeFlag.NONE, fixed_target=None):
        return _make(code, name, prefix, reads, writes, value_type, flags, fixed_target)

    entry = None
    if x == 0:
        if z == 0:
            if y == 0:
                entry = op('NOP')
            elif y == 1:
                entry = op("EX AF,AF'")
            elif y == 2:
                entry = op('DJNZ #n', ('B',), ('B',), ValueType.CODE_RELATIVE_LOOP,
                           OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CONDITIONAL)
            elif y == 3:
                entry = op('JR #n', value_type=ValueType.CODE_RELATIVE_LBL,
                           flags=OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.STOP)
            else:
                entry = op(f'JR {CC[y - 4]},#n', _F, (), ValueType.CODE_RELATIVE_LBL,
                           OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CONDITIONAL)
        elif z == 1:
            rr = pair(RP[p])
            if q == 0:
                entry = op(f'LD {rr},#nn', (), (rr,), ValueType.NUMBER_WORD)
            else:
                entry = op(f'ADD {hl},{rr}', (hl, rr), (hl, 'F'))
        elif z == 2:
            if q == 0:
                entry = (op('LD (BC),A', ('BC', 'A')),
                         op('LD (DE),A', ('DE', 'A')),
                         op(f'LD (#nn),{hl}', (hl,), (), ValueType.DATA_LBL),
                         op('LD (#nn),A', ('A',), (), ValueType.DATA_LBL))[p]
            else:
                entry = (op('LD A,(BC)', ('BC',), ('A',)),
                         op('LD A,(DE)', ('DE',), ('A',)),
                         op(f'LD {hl},(#nn)', (), (hl,), ValueType.DATA_LBL),
                         op('LD A,(#nn)', (), ('A',), ValueType.DATA_LBL))[p]
        elif z == 3:
            rr = pair(RP[p])
            entry = op(f"{'INC' if q == 0 else 'DEC'} {rr}", (rr,), (rr,))
        elif z in (4, 5):
            text, regs = r8(y)
            written = regs if y != 6 else ()
            entry = op(f"{'INC' if z == 4 else 'DEC'} {text}", regs, written + _F)
        elif z == 6:
            text, regs = r8(y)
            if y == 6:
                entry = op(f'LD {text},#n', regs, (), ValueType.NUMBER_BYTE)
            else:
                entry = op(f'LD {text},#n', (), regs, ValueType.NUMBER_BYTE)
        else:
            reads = (('A',), ('A',), ('A', 'F'), ('A', 'F'), ('A', 'F'), ('A',), (), _F)[y]
            writes = ('A', 'F') if y < 6 else _F
            entry = op(ROT_A[y], reads, writes)

    elif x == 1:
        if code == 0x76:
            entry = op('HALT')
        else:
            plain = y == 6 or z == 6
            dst, dregs = r8(y, plain)
            src, sregs = r8(z, plain)
            if y == 6:
                entry = op(f'LD {dst},{src}', sregs + dregs)
            else:
                entry = op(f'LD {dst},{src}', sregs, dregs)

    elif x == 2:
        text, regs = r8(z)
        entry = _alu_entry(op, y, text, regs, self_operand=(z == 7))

    else:
        if z == 0:
            entry = op(f'RET {CC[y]}', _F, (), flags=OpcodeFlag.RETURN | OpcodeFlag.CONDITIONAL)
        elif z == 1:
            if q == 0:
                rr = pair(RP2[p])
                entry = op(f'POP {rr}', (), (rr,))
            elif p == 0:
                entry = op('RET', flags=OpcodeFlag.RETURN | OpcodeFlag.STOP)
            elif p == 1:
                entry = op('EXX')
            elif p == 2:
                entry = op(f'JP ({hl})', (hl,), (), flags=OpcodeFlag.STOP)
            else:
                entry = op(f'LD SP,{hl}', (hl,))
        elif z == 2:
            entry = op(f'JP {CC[y]},#nn', _F, (), ValueType.CODE_LBL,
                       OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CONDITIONAL)
        elif z == 3:
            if y == 0:
                entry = op('JP #nn', value_type=ValueType.CODE_LBL,
                           flags=OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.STOP)
            elif y == 1:
                return None     # CB prefix
            elif y == 2:
                entry = op('OUT (#n),A', ('A',), (), ValueType.PORT_LBL)
            elif y == 3:
                entry = op('IN A,(#n)', ('A',), ('A',), ValueType.PORT_LBL)
            elif y == 4:
                entry = op(f'EX (SP),{hl}', (hl,), (hl,))
            elif y == 5:
                entry = op('EX DE,HL')
            elif y == 6:
                entry = op('DI')
            else:
                entry = op('EI')
        elif z == 4:
            entry = op(f'CALL {CC[y]},#nn', _F, (), ValueType.CODE_SUB,
                       OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CALL | OpcodeFlag.CONDITIONAL)
        elif z == 5:
            if q == 0:
                rr = pair(RP2[p])
                entry = op(f'PUSH {rr}', (rr,))
            elif p == 0:
                entry = op('CALL #nn', value_type=ValueType.CODE_SUB,
                           flags=OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CALL)
            else:
                return None     # DD, ED, FD prefixes
        elif z == 6:
            entry = _alu_entry(op, y, '#n', (), value_type=ValueType.NUMBER_BYTE)
        else:
            entry = op(f'RST 0x{y * 8:02X}', flags=OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CALL,
                       fixed_target=y * 8)

    if indexed and hl not in entry.name:
        return None
    return entry


def _alu_entry(op, y: int, text: str, regs, self_operand: bool = False,
               value_type: ValueType = ValueType.NONE) -> Opcode:
    """ADD/ADC/SUB/SBC/AND/XOR/OR/CP with operand text."""
    reads = ('A',) + tuple(regs)
    if self_operand and y in (2, 5):
        reads = ()          # SUB A / XOR A: result does not depend on A
    if y in (1, 3):
        reads += _F
    writes = _F if y == 7 else ('A', 'F')
    return op(f'{ALU[y]}{text}', reads, writes, value_type)


# ──────────────────────────────────────────────
# CB page and DD CB / FD CB indexed bit operations
# ──────────────────────────────────────────────

def _cb_entry(code: int) -> Opcode:
    x, y, z = code >> 6, (code >> 3) & 7, code & 7
    text = R8[z]
    regs = ('HL',) if z == 6 else (text,)
    written = regs if z != 6 else ()
    prefix = b'\xCB'
    if x == 0:
        reads = regs + _F if y in (2, 3) else regs
        return _make(code, f'{ROT[y]} {text}', prefix, reads, written + _F)
    if x == 1:
        return _make(code, f'BIT {y},{text}', prefix, regs, _F)
    name = 'RES' if x == 2 else 'SET'
    return _make(code, f'{name} {y},{text}', prefix, regs, written)


def _index_cb_entry(code: int, hl: str) -> Opcode:
    """DD CB d op / FD CB d op. The displacement precedes the opcode byte."""
    x, y, z = code >> 6, (code >> 3) & 7, code & 7
    prefix = bytes([INDEX_PREFIX[hl], 0xCB])
    mem = f'({hl}#d)'
    # z != 6 forms also copy the result into a register (undocumented)
    copy = () if z == 6 else (R8[z],)
    suffix = '' if z == 6 else f',{R8[z]}'
    if x == 0:
        reads = (hl,) + _F if y in (2, 3) else (hl,)
        name, reads, writes = f'{ROT[y]} {mem}{suffix}', reads, copy + _F
    elif x == 1:
        name, reads, writes = f'BIT {y},{mem}', (hl,), _F
    else:
        op_name = 'RES' if x == 2 else 'SET'
        name, reads, writes = f'{op_name} {y},{mem}{suffix}', (hl,), copy
    entry = Opcode(code=code, name=name, length=4, reads=_regs(reads),
                   writes=_regs(writes), prefix=prefix, value_offset=4,
                   displacement_offset=2)
    return entry


# ──────────────────────────────────────────────
# ED page
# ──────────────────────────────────────────────

def _ed_entry(code: int) -> Opcode:
    x, y, z = code >> 6, (code >> 3) & 7, code & 7
    p, q = y >> 1, y & 1
    prefix = b'\xED'

    def op(name, reads=(), writes=(), value_type=ValueType.NONE, flags=OpcodeFlag.NONE):
        return _make(code, name, prefix, reads, writes, value_type, flags)

    if x == 1:
        if z == 0:
            if y == 6:
                return op('IN F,(C)', ('BC',), _F)
            return op(f'IN {R8[y]},(C)', ('BC',), (R8[y], 'F'))
        if z == 1:
            if y == 6:
                return op('OUT (C),0', ('BC',))
            return op(f'OUT (C),{R8[y]}', ('BC', R8[y]))
        if z == 2:
            name = 'SBC' if q == 0 else 'ADC'
            return op(f'{name} HL,{RP[p]}', ('HL', RP[p], 'F'), ('HL', 'F'))
        if z == 3:
            if q == 0:
                return op(f'LD (#nn),{RP[p]}', (RP[p],), (), ValueType.DATA_LBL)
            return op(f'LD {RP[p]},(#nn)', (), (RP[p],), ValueType.DATA_LBL)
        if z == 4 and y == 0:
            return op('NEG', ('A',), ('A', 'F'))
        if z == 5 and y in (0, 1):
            return op('RETN' if y == 0 else 'RETI',
                      flags=OpcodeFlag.RETURN | OpcodeFlag.STOP)
        if z == 6 and y in (0, 2, 3):
            return op(f'IM {max(0, y - 1)}')
        if z == 7 and y < 6:
            return (op('LD I,A', ('A',)),
                    op('LD R,A', ('A',)),
                    op('LD A,I', (), ('A', 'F')),
                    op('LD A,R', (), ('A', 'F')),
                    op('RRD', ('A', 'HL'), ('A', 'F')),
                    op('RLD', ('A', 'HL'), ('A', 'F')))[y]
    elif x == 2 and z <= 3 and y >= 4:
        name = BLOCK_OPS[(y, z)]
        if z == 0:
            return op(name, ('BC', 'DE', 'HL'), ('BC', 'DE', 'HL', 'F'))
        if z == 1:
            return op(name, ('A', 'BC', 'HL'), ('BC', 'HL', 'F'))
        return op(name, ('BC', 'HL'), ('B', 'HL', 'F'))
    return _invalid(code, prefix)


# ──────────────────────────────────────────────
# Built tables
# ──────────────────────────────────────────────

MAIN_OPCODES: Dict[int, Opcode] = {
    code: entry for code, entry in ((c, _main_entry(c)) for c in range(256))
    if entry is not None
}

CB_OPCODES: Dict[int, Opcode] = {code: _cb_entry(code) for code in range(256)}

ED_OPCODES: Dict[int, Opcode] = {code: _ed_entry(code) for code in range(256)}

# Unmodified opcodes map to a 1-byte INVALID entry for the prefix itself,
# decoding then resumes at the following byte.
INDEX_OPCODES: Dict[str, Dict[int, Opcode]] = {
    hl: {code: _main_entry(code, hl) or _invalid(INDEX_PREFIX[hl]) for code in range(256)}
    for hl in INDEX_PREFIX
}

INDEX_CB_OPCODES: Dict[str, Dict[int, Opcode]] = {
    hl: {code: _index_cb_entry(code, hl) for code in range(256)}
    for hl in INDEX_PREFIX
}


def lookup_opcode(memory, address: int) -> Opcode:
    """Return the table entry for the instruction at address.

    memory needs a read8(address) that wraps. The returned entry is the
    shared template; it carries no resolved value.
    """
    code = memory.read8(address)
    if code == 0xCB:
        return CB_OPCODES[memory.read8(address + 1)]
    if code == 0xED:
        return ED_OPCODES[memory.read8(address + 1)]
    if code in PREFIX_INDEX:
        hl = PREFIX_INDEX[code]
        code2 = memory.read8(address + 1)
        if code2 == 0xCB:
            return INDEX_CB_OPCODES[hl][memory.read8(address + 3)]
        return INDEX_OPCODES[hl][code2]
    return MAIN_OPCODES[code]
