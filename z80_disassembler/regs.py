"""
Z80 Disassembler — Register Usage State

Tracks, per traced control-flow path, which Z80 registers a subroutine
has touched and which it read before writing them (its input registers).

Register model:
  A  F         accumulator and flags
  B C D E H L  general purpose, paired as BC, DE, HL
  A' F'        alternate accumulator/flags   (EX AF,AF')
  B'..L'       alternate general registers   (EXX)
  IXL IXH      halves of index register IX
  IYL IYH      halves of index register IY

Each register has a slot. A slot is FRESH while it still holds a value
the subroutine was entered with, and remembers which register that entry
value came from (its origin). Once the subroutine reads or writes the
register the slot becomes USED and stays USED for the rest of the path.

EX AF,AF', EXX and EX DE,HL move slots around instead of using them,
so after EXX the slot of B is FRESH with origin B'. Reading B at that
point reads the caller's B', and B' is what gets reported as input.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable, List, NamedTuple, Optional, Set


class Register(IntEnum):
    """Z80 registers tracked by the analysis (index into the slot table)."""
    A = 0
    F = 1
    B = 2
    C = 3
    D = 4
    E = 5
    H = 6
    L = 7
    A2 = 8
    F2 = 9
    B2 = 10
    C2 = 11
    D2 = 12
    E2 = 13
    H2 = 14
    L2 = 15
    IXL = 16
    IXH = 17
    IYL = 18
    IYH = 19


REGS_MAX = len(Register)

REG_NAMES = (
    'A', 'F', 'B', 'C', 'D', 'E', 'H', 'L',
    "A'", "F'", "B'", "C'", "D'", "E'", "H'", "L'",
    'IXL', 'IXH', 'IYL', 'IYH',
)

# Distance between a primary register and its alternate (B -> B')
_BANK_OFFSET = Register.B2 - Register.B


class SlotState(Enum):
    FRESH = 'FRESH'
    USED = 'USED'


@dataclass(frozen=True)
class Slot:
    """Content of one register slot."""
    state: SlotState
    origin: Optional[Register] = None   # entry register, FRESH only

    @classmethod
    def fresh(cls, origin: Register) -> 'Slot':
        return cls(SlotState.FRESH, Register(origin))

    def __str__(self) -> str:
        if self.state is SlotState.USED:
            return '-'
        return REG_NAMES[self.origin]


USED = Slot(SlotState.USED)

# Slot contents of an untouched state, indexed by register
_IDENTITY = tuple(Slot.fresh(r) for r in Register)


class StackItem(NamedTuple):
    """One entry of the simulated stack.

    CALL/RST push the return address with returns=True and remember how
    many addresses the path had visited at that point (frame), so that
    returning can forget the callee's addresses. PUSH stores its own
    address with returns=False.
    """
    value: int
    returns: bool = False
    frame: int = 0


class RegisterState:
    """Register usage along one traced path.

    Usage:
        state = RegisterState()
        if not state.is_used(Register.B):      # read of B before any write
            state.input_regs.add(Register.B)
        state.use(Register.B)
        state.use(Register.C)                  # plain write
        state.input_regs                       # {Register.B}
        state.used_regs()                      # {Register.B, Register.C}
    """

    __slots__ = ('slots', 'input_regs', 'used_addresses', 'stack')

    def __init__(self):
        self.slots: List[Slot] = list(_IDENTITY)
        self.input_regs: Set[Register] = set()   # read before written
        self.used_addresses: List[int] = []      # opcode addresses on this path
        self.stack: List[StackItem] = []         # simulated CALL/PUSH stack

    # --- Slot queries ---

    def is_used(self, r: Register) -> bool:
        """True if the slot of r no longer holds r's own entry value."""
        return self.slots[r] != _IDENTITY[r]

    def is_fresh(self, r: Register) -> bool:
        """True if r still holds some entry value (possibly swapped in)."""
        return self.slots[r].state is SlotState.FRESH

    def origin(self, r: Register) -> Optional[Register]:
        """Register whose entry value r currently holds, None once used."""
        return self.slots[r].origin

    def use(self, r: Register):
        """Mark r as used. Idempotent."""
        self.slots[r] = USED

    def used_regs(self) -> Set[Register]:
        """All registers touched (read, written or swapped) so far."""
        return {r for r in Register if self.slots[r] != _IDENTITY[r]}

    # --- Bank exchanges ---

    def exchange_af(self):
        """EX AF,AF': swap A/F with A'/F'."""
        s = self.slots
        s[Register.A], s[Register.A2] = s[Register.A2], s[Register.A]
        s[Register.F], s[Register.F2] = s[Register.F2], s[Register.F]

    def exx(self):
        """EXX: swap BC, DE, HL with BC', DE', HL'."""
        s = self.slots
        for r in range(Register.B, Register.L + 1):
            s[r], s[r + _BANK_OFFSET] = s[r + _BANK_OFFSET], s[r]

    def exchange_de_hl(self):
        """EX DE,HL: swap DE with HL (primary bank only)."""
        s = self.slots
        s[Register.D], s[Register.H] = s[Register.H], s[Register.D]
        s[Register.E], s[Register.L] = s[Register.L], s[Register.E]

    # --- Path forking / joining ---

    def clone(self) -> 'RegisterState':
        """Independent copy including input regs, visited addresses and stack."""
        other = RegisterState()
        other.slots = list(self.slots)
        other.input_regs = set(self.input_regs)
        other.used_addresses = list(self.used_addresses)
        other.stack = list(self.stack)
        return other

    def merge(self, other: 'RegisterState'):
        """Mark every register used in other as used here.

        A slot both states agree on is kept, so merging a state with
        itself changes nothing. Only slots are joined. input_regs,
        used_addresses and stack stay as they are; reconciling those is
        up to the caller.
        """
        for r in Register:
            theirs = other.slots[r]
            if theirs != _IDENTITY[r] and theirs != self.slots[r]:
                self.slots[r] = USED

    # --- Display ---

    @staticmethod
    def reg_name(r: Register) -> str:
        """Register display name, e.g. Register.H2 -> "H'"."""
        return REG_NAMES[r]

    @staticmethod
    def names(regs: Iterable[Register]) -> List[str]:
        """Display names in register order."""
        return [REG_NAMES[r] for r in sorted(regs)]

    def display(self) -> str:
        """One-line summary for debug logs."""
        slots = ' '.join(f'{REG_NAMES[r]}={self.slots[r]}' for r in Register
                         if self.slots[r] != _IDENTITY[r])
        inputs = ','.join(self.names(self.input_regs))
        return f"[{slots or 'untouched'}] in={{{inputs}}} depth={len(self.stack)}"

    def __eq__(self, other) -> bool:
        if not isinstance(other, RegisterState):
            return NotImplemented
        return (self.slots == other.slots
                and self.input_regs == other.input_regs
                and self.used_addresses == other.used_addresses
                and self.stack == other.stack)

    __hash__ = None

    def __repr__(self) -> str:
        return f"RegisterState({self.display()})"
