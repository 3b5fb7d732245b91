"""
Z80 Disassembler — Subroutine Register Analysis
================================================
Traces every control-flow path of a subroutine and reports which
registers it reads before writing them (its inputs) and which it touches.

Traversal:
  - depth first over a work list of (address, RegisterState) pairs
  - conditional jump/call/return: the clone falls through, the original
    takes the branch
  - CALL/RST: the callee is traced inline with a return item on the
    simulated stack; a call into unloaded memory is opaque
  - a path ends on an address it already visited (loop), on unloaded
    memory, on JP (HL)/(IX)/(IY), on RET with an empty stack (subroutine
    exit) and on RET through a pushed value
  - finished paths are merged into one summary state

Usage:
    memory = Memory()
    memory.read_bin_file(0x0000, "rom.bin")
    info = SubroutineAnalyzer(memory).analyze_subroutine(0x0038)
    print(info.input_names)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .config import ADDRESS_MASK, AnalyzerConfig
from .memory import MemAttribute, Memory
from .opcodes import Opcode, OpcodeFlag
from .regs import Register, RegisterState, StackItem

log = logging.getLogger(__name__)

# Instructions that move slots instead of using them
_EXCHANGES = {
    "EX AF,AF'": RegisterState.exchange_af,
    'EXX': RegisterState.exx,
    'EX DE,HL': RegisterState.exchange_de_hl,
}


@dataclass
class SubroutineInfo:
    """Result of analysing one subroutine."""
    address: int
    input_regs: Set[Register] = field(default_factory=set)
    used_regs: Set[Register] = field(default_factory=set)
    exits: List[int] = field(default_factory=list)    # returning instructions
    calls: List[int] = field(default_factory=list)    # CALL/RST targets
    paths: int = 0
    steps: int = 0
    truncated: bool = False

    @property
    def input_names(self) -> List[str]:
        return RegisterState.names(self.input_regs)

    @property
    def used_names(self) -> List[str]:
        return RegisterState.names(self.used_regs)

    def to_dict(self) -> dict:
        return {
            'address': f'0x{self.address:04X}',
            'inputs': self.input_names,
            'used': self.used_names,
            'exits': [f'0x{a:04X}' for a in self.exits],
            'calls': [f'0x{a:04X}' for a in self.calls],
            'paths': self.paths,
            'steps': self.steps,
            'truncated': self.truncated,
        }


@dataclass
class _Run:
    """Bookkeeping for one analyze_subroutine() call."""
    info: SubroutineInfo
    summary: RegisterState = field(default_factory=RegisterState)
    work: List[Tuple[int, RegisterState]] = field(default_factory=list)
    seen: Set[tuple] = field(default_factory=set)
    exits: Set[int] = field(default_factory=set)
    calls: Set[int] = field(default_factory=set)


class SubroutineAnalyzer:
    """Register input/usage analysis over a loaded Memory."""

    def __init__(self, memory: Memory, config: Optional[AnalyzerConfig] = None):
        self.memory = memory
        self.config = config or AnalyzerConfig()

    def analyze_subroutines(self, addresses: Iterable[int]) -> Dict[int, SubroutineInfo]:
        return {addr & ADDRESS_MASK: self.analyze_subroutine(addr) for addr in addresses}

    def analyze_subroutine(self, address: int) -> SubroutineInfo:
        address &= ADDRESS_MASK
        run = _Run(info=SubroutineInfo(address=address))
        run.work.append((address, RegisterState()))
        log.debug("Subroutine 0x%04X: start", address)

        while run.work and not run.info.truncated:
            if run.info.paths >= self.config.max_paths:
                self._truncate(run, f"path budget ({self.config.max_paths}) reached")
                break
            addr, state = run.work.pop()
            self._trace(addr, state, run)

        # Budget hit: unfinished forks still count towards the summary
        for _, pending in run.work:
            self._finish_path(pending, run)

        info = run.info
        info.used_regs = run.summary.used_regs()
        info.exits = sorted(run.exits)
        info.calls = sorted(run.calls)
        log.info("Subroutine 0x%04X: in={%s} used={%s} paths=%d steps=%d%s",
                 address, ','.join(info.input_names), ','.join(info.used_names),
                 info.paths, info.steps, ' (truncated)' if info.truncated else '')
        return info

    # ══════════════════════════════════════════════════════════════
    # Path tracing
    # ══════════════════════════════════════════════════════════════

    def _trace(self, addr: int, state: RegisterState, run: _Run):
        """Follow one path until it ends, queueing forks on run.work."""
        mem = self.memory
        cfg = self.config

        while True:
            addr &= ADDRESS_MASK
            if run.info.steps >= cfg.max_steps:
                self._truncate(run, f"step budget ({cfg.max_steps}) reached at 0x{addr:04X}")
                break
            if addr in state.used_addresses:
                log.debug("0x%04X: already on this path, loop ends", addr)
                break
            if not mem.is_assigned(addr):
                log.debug("0x%04X: not loaded, path ends", addr)
                break
            if cfg.prune_duplicates:
                key = (addr, tuple(state.slots), tuple(state.stack))
                if key in run.seen:
                    log.debug("0x%04X: same state seen before, path dropped", addr)
                    break
                run.seen.add(key)

            opcode = mem.get_opcode_at(addr)
            run.info.steps += 1
            mem.add_attribute_at(addr, opcode.length, MemAttribute.CODE)
            mem.add_attribute_at(addr, 1, MemAttribute.CODE_FIRST)
            state.used_addresses.append(addr)

            if opcode.is_invalid:
                log.debug("0x%04X: invalid sequence %s skipped", addr, opcode.disassemble())
            self._apply_effects(opcode, state)

            next_addr = (addr + opcode.length) & ADDRESS_MASK
            flags = opcode.flags
            opaque_call = False
            if flags & OpcodeFlag.CALL:
                run.calls.add(opcode.target)
                opaque_call = not cfg.follow_calls or not mem.is_assigned(opcode.target)

            # An opaque CALL cc continues at next_addr either way, no fork
            if flags & OpcodeFlag.CONDITIONAL and not opaque_call:
                run.work.append((next_addr, state.clone()))

            if flags & OpcodeFlag.CALL:
                target = opcode.target
                if opaque_call:
                    log.debug("0x%04X: call to 0x%04X not followed", addr, target)
                    addr = next_addr
                    continue
                state.stack.append(StackItem(next_addr, returns=True,
                                             frame=len(state.used_addresses)))
                addr = target

            elif flags & OpcodeFlag.RETURN:
                if not state.stack:
                    run.exits.add(addr)
                    break
                top = state.stack[-1]
                if not top.returns:
                    log.debug("0x%04X: return through pushed value, path ends", addr)
                    break
                state.stack.pop()
                # Forget the callee so the same helper can be traced again
                del state.used_addresses[top.frame:]
                addr = top.value

            elif flags & OpcodeFlag.BRANCH_ADDRESS:
                addr = opcode.target

            elif flags & OpcodeFlag.STOP:
                log.debug("0x%04X: %s, target unknown, path ends", addr, opcode.disassemble())
                break

            else:
                if opcode.mnemonic == 'PUSH':
                    state.stack.append(StackItem(addr))
                elif opcode.mnemonic == 'POP' and state.stack:
                    state.stack.pop()
                addr = next_addr

        self._finish_path(state, run)

    @staticmethod
    def _apply_effects(opcode: Opcode, state: RegisterState):
        """Fold the instruction's register reads and writes into state."""
        exchange = _EXCHANGES.get(opcode.name)
        if exchange is not None:
            exchange(state)
            return
        for r in opcode.reads:
            if state.is_fresh(r):
                state.input_regs.add(state.origin(r))
        for r in opcode.reads | opcode.writes:
            state.use(r)

    @staticmethod
    def _finish_path(state: RegisterState, run: _Run):
        run.summary.merge(state)
        run.info.input_regs |= state.input_regs
        run.info.paths += 1
        log.debug("Path %d done: %s", run.info.paths, state.display())

    @staticmethod
    def _truncate(run: _Run, reason: str):
        if not run.info.truncated:
            log.warning("Subroutine 0x%04X: %s, result is partial", run.info.address, reason)
        run.info.truncated = True
