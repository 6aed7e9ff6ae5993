"""
State Machine Scaffolding

Both engines are driven by a statically declared transition table. Tables are
validated when the StateMachine is constructed, so a table naming an unknown
state or leaving a state without an entry fails immediately instead of
surfacing as an inconsistent run later.

OperationGuard enforces one in-flight run per engine kind through an explicit
acquire/release token.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Generic, Iterator, List, Mapping, Optional, TypeVar
import uuid

from .errors import BusyError, EngineKind, IllegalTransitionError

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


@dataclass(frozen=True)
class StateChange(Generic[S]):
    """A single transition, delivered to listeners in order."""
    machine: str
    previous: S
    current: S
    detail: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, str]:
        return {
            "machine": self.machine,
            "previous": self.previous.value,
            "current": self.current.value,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }


StateListener = Callable[[StateChange], None]


def validate_transition_table(
    states: type,
    table: Mapping[S, FrozenSet[S]],
    initial: S,
    terminal: FrozenSet[S],
) -> List[str]:
    """
    Check a transition table for structural errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    members = set(states)

    for state in members:
        if state not in table:
            errors.append(f"State '{state.value}' has no transition entry")

    for source, targets in table.items():
        if source not in members:
            errors.append(f"Unknown source state '{source}'")
            continue
        for target in targets:
            if target not in members:
                errors.append(f"Unknown target state '{target}' from '{source.value}'")

    if initial not in members:
        errors.append(f"Initial state '{initial}' is not a member of {states.__name__}")

    for state in terminal:
        if table.get(state) != frozenset({initial}):
            errors.append(f"Terminal state '{state.value}' must lead back to '{initial.value}' only")

    reachable = {initial}
    frontier = [initial]
    while frontier:
        current = frontier.pop()
        for target in table.get(current, ()):
            if target not in reachable:
                reachable.add(target)
                frontier.append(target)
    for state in members - reachable:
        errors.append(f"State '{state.value}' is unreachable from '{initial.value}'")

    return errors


class StateMachine(Generic[S]):
    """
    Tagged-state machine over an Enum with a fixed transition table.

    Example:
        machine = StateMachine("audit", AuditState, AUDIT_TRANSITIONS,
                               AuditState.IDLE, AUDIT_TERMINAL)
        machine.transition(AuditState.VALIDATING)
    """

    def __init__(
        self,
        name: str,
        states: type,
        table: Mapping[S, FrozenSet[S]],
        initial: S,
        terminal: FrozenSet[S],
    ):
        errors = validate_transition_table(states, table, initial, terminal)
        if errors:
            raise ValueError(f"Invalid transition table for '{name}': {'; '.join(errors)}")

        self.name = name
        self._table = {state: frozenset(targets) for state, targets in table.items()}
        self._initial = initial
        self._terminal = frozenset(terminal)
        self._state = initial
        self._last_terminal: Optional[S] = None
        self._listeners: List[StateListener] = []
        self.history: List[StateChange] = []

    @property
    def state(self) -> S:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state == self._initial

    @property
    def last_terminal(self) -> Optional[S]:
        """Terminal state reached by the most recent run."""
        return self._last_terminal

    def can_transition(self, target: S) -> bool:
        return target in self._table[self._state]

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def transition(self, target: S, detail: str = "") -> StateChange:
        """Move to ``target`` or raise IllegalTransitionError."""
        if not self.can_transition(target):
            raise IllegalTransitionError(
                f"{self.name}: illegal transition {self._state.value} -> {target.value}"
            )

        change = StateChange(machine=self.name, previous=self._state, current=target, detail=detail)
        self._state = target
        if target in self._terminal:
            self._last_terminal = target
        self.history.append(change)

        logger.debug(f"{self.name}: {change.previous.value} -> {target.value} {detail}".rstrip())
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                # Listener failures are logged, never raised
                logger.warning(f"{self.name}: state listener failed: {e}")
        return change

    def finish(self, terminal: S, detail: str = "") -> None:
        """Enter a terminal state, then return to the initial state."""
        if terminal not in self._terminal:
            raise IllegalTransitionError(f"{self.name}: '{terminal.value}' is not terminal")
        self.transition(terminal, detail)
        self.transition(self._initial)


# =============================================================================
# Single-flight Guard
# =============================================================================

@dataclass(frozen=True)
class OperationToken:
    """Proof of ownership of an engine's in-flight slot."""
    kind: EngineKind
    token_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OperationGuard:
    """
    Mutual exclusion for one engine kind.

    ``acquire()`` never waits: a second caller gets BusyError immediately,
    with no queueing.
    """

    def __init__(self, kind: EngineKind):
        self.kind = kind
        self._token: Optional[OperationToken] = None

    @property
    def busy(self) -> bool:
        return self._token is not None

    @property
    def token(self) -> Optional[OperationToken]:
        return self._token

    def acquire(self) -> OperationToken:
        if self._token is not None:
            raise BusyError(self.kind)
        self._token = OperationToken(kind=self.kind)
        logger.debug(f"{self.kind.value} guard acquired ({self._token.token_id})")
        return self._token

    def release(self, token: OperationToken) -> None:
        if self._token is None or token.token_id != self._token.token_id:
            raise RuntimeError(f"{self.kind.value} guard released with a foreign token")
        logger.debug(f"{self.kind.value} guard released ({token.token_id})")
        self._token = None

    @contextmanager
    def hold(self) -> Iterator[OperationToken]:
        token = self.acquire()
        try:
            yield token
        finally:
            self.release(token)
