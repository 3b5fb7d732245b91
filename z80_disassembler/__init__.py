"""
Z80 Static Disassembler Core
============================
Decodes Z80 machine code from a raw binary image and works out, per
subroutine, which registers are inputs (read before written) and which
are merely used.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌───────────┐    ┌─────────────┐
    │  Binary  │───>│  Memory  │───>│  Opcodes  │───>│  Analyzer   │
    │  image   │    │ (64K +   │    │ (decode + │    │ (path walk, │
    │          │    │  attrs)  │    │  effects) │    │  RegState)  │
    └──────────┘    └──────────┘    └───────────┘    └─────────────┘

    - memory.py:   byte ring, attribute bitmap, get_opcode_at()
    - opcodes.py:  unprefixed/CB/ED/DD/FD/DDCB/FDCB tables, operand kinds
    - regs.py:     per-path register slots, EX/EXX, clone, merge
    - analyzer.py: traces every path of a subroutine, merges the results
    - config.py:   limits and log format
"""

__version__ = "0.1.0"

from .config import AnalyzerConfig
from .memory import MemAttribute, Memory
from .opcodes import Opcode, OpcodeFlag, OpcodeTableError, ValueType, lookup_opcode
from .regs import Register, RegisterState, StackItem
from .analyzer import SubroutineAnalyzer, SubroutineInfo

__all__ = [
    'AnalyzerConfig',
    'MemAttribute', 'Memory',
    'Opcode', 'OpcodeFlag', 'OpcodeTableError', 'ValueType', 'lookup_opcode',
    'Register', 'RegisterState', 'StackItem',
    'SubroutineAnalyzer', 'SubroutineInfo',
]
