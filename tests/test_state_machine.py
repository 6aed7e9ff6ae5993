"""
Tests for transition tables, state machines and the single-flight guard
"""

from enum import Enum

import pytest

from docgov_core.audit_engine import AUDIT_TERMINAL, AUDIT_TRANSITIONS, AuditState
from docgov_core.errors import BusyError, EngineKind, IllegalTransitionError
from docgov_core.replacement_engine import (
    REPLACEMENT_TERMINAL,
    REPLACEMENT_TRANSITIONS,
    ReplacementState,
)
from docgov_core.state_machine import (
    OperationGuard,
    StateMachine,
    validate_transition_table,
)


class Light(str, Enum):
    OFF = "off"
    ON = "on"
    DONE = "done"
    BROKEN = "broken"


def light_table():
    return {
        Light.OFF: frozenset({Light.ON}),
        Light.ON: frozenset({Light.DONE, Light.BROKEN}),
        Light.DONE: frozenset({Light.OFF}),
        Light.BROKEN: frozenset({Light.OFF}),
    }


def make_machine(table=None):
    return StateMachine(
        "light", Light, table or light_table(), Light.OFF, frozenset({Light.DONE, Light.BROKEN})
    )


class TestTransitionTables:
    """Static validation of transition tables."""

    def test_engine_tables_are_valid(self):
        """Test both engine transition tables validate."""
        assert validate_transition_table(AuditState, AUDIT_TRANSITIONS, AuditState.IDLE, AUDIT_TERMINAL) == []
        assert validate_transition_table(
            ReplacementState, REPLACEMENT_TRANSITIONS, ReplacementState.IDLE, REPLACEMENT_TERMINAL
        ) == []

    def test_replacement_has_no_cancelled_state(self):
        """Test the replacement engine has no cancelled state."""
        assert "cancelled" not in {s.value for s in ReplacementState}

    def test_missing_entry_rejected(self):
        """Test a table missing a state is rejected."""
        table = light_table()
        del table[Light.BROKEN]

        with pytest.raises(ValueError, match="no transition entry"):
            make_machine(table)

    def test_unknown_target_rejected(self):
        """Test a transition to an unknown state is rejected."""
        table = light_table()
        table[Light.ON] = frozenset({Light.DONE, AuditState.ERROR})

        with pytest.raises(ValueError, match="Unknown target"):
            make_machine(table)

    def test_terminal_must_return_to_initial(self):
        """Test terminal states must lead back to idle."""
        table = light_table()
        table[Light.DONE] = frozenset({Light.ON})

        with pytest.raises(ValueError, match="must lead back"):
            make_machine(table)

    def test_unreachable_state_rejected(self):
        """Test unreachable states are rejected."""
        table = light_table()
        table[Light.ON] = frozenset({Light.DONE})

        with pytest.raises(ValueError, match="unreachable"):
            make_machine(table)


class TestStateMachine:
    """Tests for StateMachine."""

    def test_starts_idle(self):
        """Test a machine starts in its initial state."""
        machine = make_machine()

        assert machine.state is Light.OFF
        assert machine.is_idle
        assert machine.last_terminal is None

    def test_legal_transition(self):
        """Test a legal transition is applied and recorded."""
        machine = make_machine()

        change = machine.transition(Light.ON, "switch")

        assert machine.state is Light.ON
        assert change.previous is Light.OFF
        assert change.current is Light.ON
        assert change.to_dict()["detail"] == "switch"

    def test_illegal_transition_raises(self):
        """Test an illegal transition raises."""
        machine = make_machine()

        with pytest.raises(IllegalTransitionError):
            machine.transition(Light.DONE)
        assert machine.state is Light.OFF
        assert machine.history == []

    def test_finish_returns_to_initial(self):
        """Test finish passes through the terminal state back to idle."""
        machine = make_machine()
        machine.transition(Light.ON)

        machine.finish(Light.BROKEN, "fuse")

        assert machine.is_idle
        assert machine.last_terminal is Light.BROKEN
        assert [c.current for c in machine.history] == [Light.ON, Light.BROKEN, Light.OFF]

    def test_finish_requires_terminal(self):
        """Test finish only accepts terminal states."""
        machine = make_machine()

        with pytest.raises(IllegalTransitionError):
            machine.finish(Light.ON)

    def test_listeners_in_order_and_removable(self):
        """Test listeners run in order and can be removed."""
        machine = make_machine()
        seen = []
        remove = machine.add_listener(lambda c: seen.append(c.current))

        machine.transition(Light.ON)
        remove()
        machine.transition(Light.DONE)

        assert seen == [Light.ON]

    def test_broken_listener_does_not_stop_transition(self):
        """Test a failing listener does not block the transition."""
        machine = make_machine()
        seen = []

        def broken(change):
            raise RuntimeError("listener bug")

        machine.add_listener(broken)
        machine.add_listener(lambda c: seen.append(c.current))
        machine.transition(Light.ON)

        assert machine.state is Light.ON
        assert seen == [Light.ON]


class TestOperationGuard:
    """Tests for OperationGuard."""

    def test_acquire_release(self):
        """Test acquiring and releasing the guard."""
        guard = OperationGuard(EngineKind.REPLACEMENT)

        token = guard.acquire()
        assert guard.busy
        assert guard.token == token

        guard.release(token)
        assert not guard.busy

    def test_second_acquire_raises_busy(self):
        """Test a second acquire raises BusyError."""
        guard = OperationGuard(EngineKind.AUDIT)
        guard.acquire()

        with pytest.raises(BusyError) as exc_info:
            guard.acquire()
        assert exc_info.value.kind is EngineKind.AUDIT

    def test_foreign_token_rejected(self):
        """Test releasing with a foreign token is rejected."""
        guard = OperationGuard(EngineKind.AUDIT)
        other = OperationGuard(EngineKind.AUDIT)
        guard.acquire()
        foreign = other.acquire()

        with pytest.raises(RuntimeError):
            guard.release(foreign)
        assert guard.busy

    def test_hold_releases_on_error(self):
        """Test hold releases the guard when the body raises."""
        guard = OperationGuard(EngineKind.AUDIT)

        with pytest.raises(ValueError):
            with guard.hold():
                assert guard.busy
                raise ValueError("inside")

        assert not guard.busy

    def test_guards_are_independent(self):
        """Test guards for different engines do not interact."""
        audit = OperationGuard(EngineKind.AUDIT)
        replacement = OperationGuard(EngineKind.REPLACEMENT)

        audit.acquire()
        replacement.acquire()

        assert audit.busy and replacement.busy
