"""Sale phase state machine tests."""

import pytest

from mintvault.errors import PhaseClosedForOperation
from mintvault.hardening import ValidationError
from mintvault.phase import SalePhase, SalePhaseMachine


class TestSalePhase:
    """Phase values and coercion."""

    def test_wire_values(self):
        assert [p.value for p in SalePhase] == [0, 1, 2]
        assert [p.name for p in SalePhase] == ["CLOSED", "ALLOWLIST", "PUBLIC"]

    @pytest.mark.parametrize("value,expected", [
        (0, SalePhase.CLOSED),
        (2, SalePhase.PUBLIC),
        ("allowlist", SalePhase.ALLOWLIST),
        (" Public ", SalePhase.PUBLIC),
        (SalePhase.CLOSED, SalePhase.CLOSED),
    ])
    def test_coerce_accepts(self, value, expected):
        assert SalePhase.coerce(value) is expected

    @pytest.mark.parametrize("value", [3, -1, "open", True, None, 1.0])
    def test_coerce_rejects(self, value):
        with pytest.raises(ValidationError) as exc:
            SalePhase.coerce(value)
        assert exc.value.field == "phase"


class TestSalePhaseMachine:
    """Transitions and gating."""

    def test_starts_closed(self):
        machine = SalePhaseMachine()
        assert machine.current is SalePhase.CLOSED
        assert machine.is_open(SalePhase.CLOSED)

    def test_any_transition_is_allowed(self):
        machine = SalePhaseMachine()
        for target in (SalePhase.PUBLIC, SalePhase.ALLOWLIST, SalePhase.CLOSED, SalePhase.PUBLIC):
            machine.transition(target)
            assert machine.current is target

    def test_require_raises_with_phases(self):
        machine = SalePhaseMachine()
        with pytest.raises(PhaseClosedForOperation) as exc:
            machine.require(SalePhase.PUBLIC)
        assert exc.value.details == {"required": "PUBLIC", "current": "CLOSED"}

        machine.transition(SalePhase.PUBLIC)
        machine.require(SalePhase.PUBLIC)

    def test_invalid_target_leaves_phase_unchanged(self):
        machine = SalePhaseMachine(SalePhase.ALLOWLIST)
        with pytest.raises(ValidationError):
            machine.transition(7)
        assert machine.current is SalePhase.ALLOWLIST
        assert machine.history() == []

    def test_history_records_transitions(self):
        machine = SalePhaseMachine()
        machine.transition("allowlist", actor="0xadmin", at=100)
        machine.transition(2, actor="0xadmin", at=200)
        history = machine.history()
        assert [t.to_dict() for t in history] == [
            {"from": "CLOSED", "to": "ALLOWLIST", "actor": "0xadmin", "at": 100},
            {"from": "ALLOWLIST", "to": "PUBLIC", "actor": "0xadmin", "at": 200},
        ]

    def test_history_is_bounded(self):
        machine = SalePhaseMachine()
        for i in range(SalePhaseMachine.HISTORY_LIMIT + 10):
            machine.transition(i % 3)
        assert len(machine.history()) == SalePhaseMachine.HISTORY_LIMIT
