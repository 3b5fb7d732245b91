"""
RegisterState Tests for the Z80 disassembler core.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from z80_disassembler.regs import Register as R, RegisterState, StackItem


# ─── Slot basics ───────────────────────────

class TestSlots:
    def test_fresh_state_untouched(self):
        state = RegisterState()
        assert not any(state.is_used(r) for r in R)
        assert state.used_regs() == set()
        assert state.input_regs == set()

    def test_use_is_idempotent(self):
        state = RegisterState()
        state.use(R.C)
        state.use(R.C)
        assert state.is_used(R.C)
        assert not state.is_fresh(R.C)
        assert state.origin(R.C) is None
        assert state.used_regs() == {R.C}

    def test_fresh_origin_is_itself(self):
        state = RegisterState()
        assert state.is_fresh(R.H)
        assert state.origin(R.H) == R.H


# ─── Exchanges ─────────────────────────────

class TestExchanges:
    """EX AF,AF' / EXX / EX DE,HL move slots without using them."""

    def test_exchange_af(self):
        state = RegisterState()
        state.exchange_af()
        assert state.used_regs() == {R.A, R.F, R.A2, R.F2}
        assert state.is_fresh(R.A)
        assert state.origin(R.A) == R.A2
        assert state.origin(R.F2) == R.F

    def test_exchange_af_twice_restores(self):
        state = RegisterState()
        state.exchange_af()
        state.exchange_af()
        assert state.used_regs() == set()

    def test_exx_swaps_general_banks(self):
        state = RegisterState()
        state.exx()
        expected = {R.B, R.C, R.D, R.E, R.H, R.L, R.B2, R.C2, R.D2, R.E2, R.H2, R.L2}
        assert state.used_regs() == expected
        assert state.origin(R.B) == R.B2
        assert state.origin(R.L2) == R.L
        assert not state.is_used(R.A)

    def test_exx_twice_restores(self):
        state = RegisterState()
        state.exx()
        state.exx()
        assert state.used_regs() == set()

    def test_exx_carries_used_slot(self):
        state = RegisterState()
        state.use(R.B)
        state.exx()
        assert state.is_fresh(R.B)          # now holds B'
        assert not state.is_fresh(R.B2)     # the used slot moved here

    def test_exchange_de_hl(self):
        state = RegisterState()
        state.exchange_de_hl()
        assert state.used_regs() == {R.D, R.E, R.H, R.L}
        assert state.origin(R.D) == R.H
        assert state.origin(R.L) == R.E


# ─── Clone / merge ─────────────────────────

class TestCloneMerge:
    def test_clone_is_independent(self):
        state = RegisterState()
        state.use(R.A)
        state.input_regs.add(R.A)
        state.used_addresses.append(0x1000)
        state.stack.append(StackItem(0x1003, returns=True, frame=1))

        copy = state.clone()
        assert copy == state
        copy.use(R.B)
        copy.input_regs.add(R.B)
        copy.used_addresses.append(0x1001)
        copy.stack.pop()

        assert not state.is_used(R.B)
        assert state.input_regs == {R.A}
        assert state.used_addresses == [0x1000]
        assert state.stack == [StackItem(0x1003, returns=True, frame=1)]
        assert copy != state

    def test_merge_marks_used(self):
        a, b = RegisterState(), RegisterState()
        a.use(R.A)
        b.use(R.C)
        a.merge(b)
        assert a.used_regs() == {R.A, R.C}
        assert b.used_regs() == {R.C}

    def test_merge_leaves_path_data_alone(self):
        a, b = RegisterState(), RegisterState()
        b.input_regs.add(R.C)
        b.used_addresses.append(0x2000)
        b.stack.append(StackItem(0x2003))
        a.merge(b)
        assert a.input_regs == set()
        assert a.used_addresses == []
        assert a.stack == []

    def test_merge_untouched_is_noop(self):
        a = RegisterState()
        a.use(R.E)
        a.merge(RegisterState())
        assert a.used_regs() == {R.E}

    def test_merge_is_idempotent(self):
        a, b = RegisterState(), RegisterState()
        b.use(R.D)
        a.merge(b)
        once = a.clone()
        a.merge(b)
        assert a == once

    def test_merge_with_itself_changes_nothing(self):
        for exchange in (RegisterState.exx, RegisterState.exchange_af):
            a = RegisterState()
            exchange(a)
            a.use(R.D)
            before = a.clone()
            a.merge(a)
            assert a == before
            assert a.is_fresh(R.B) == before.is_fresh(R.B)
            assert a.origin(R.A) == before.origin(R.A)

    def test_merge_with_equal_clone_keeps_origins(self):
        a = RegisterState()
        a.exx()
        a.merge(a.clone())
        assert a.origin(R.B) == R.B2
        assert a.origin(R.H2) == R.H

    def test_merge_is_commutative(self):
        a, b = RegisterState(), RegisterState()
        a.exx()
        b.exchange_af()
        b.use(R.C)
        ab = a.clone()
        ab.merge(b)
        ba = b.clone()
        ba.merge(a)
        assert ab.used_regs() == ba.used_regs()
        assert R.C in ab.used_regs() and R.A2 in ab.used_regs() and R.L2 in ab.used_regs()

    def test_merge_swapped_slots_become_used(self):
        a, b = RegisterState(), RegisterState()
        b.exx()
        a.merge(b)
        assert not a.is_fresh(R.B)
        assert not a.is_fresh(R.B2)
        assert a.is_fresh(R.A)


# ─── Display ───────────────────────────────

class TestDisplay:
    def test_names_in_register_order(self):
        assert RegisterState.names({R.B2, R.IXH, R.A}) == ['A', "B'", 'IXH']

    def test_reg_name(self):
        assert RegisterState.reg_name(R.H2) == "H'"

    def test_display(self):
        state = RegisterState()
        assert 'untouched' in state.display()
        state.exchange_af()
        state.input_regs.add(R.A2)
        text = state.display()
        assert "A=A'" in text
        assert "in={A'}" in text
