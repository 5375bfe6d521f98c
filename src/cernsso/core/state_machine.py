"""
cernsso State Machine Base

Table-driven state machine with invariant checking and a transition
record for diagnosing negotiations that fail halfway.

Subclasses supply the initial state, the transition table and, when the
trace should carry more than state names, a description of each step.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import attrs
import structlog
from returns.result import Failure, Result, Success

from cernsso.core.exceptions import InvariantViolation

logger = structlog.get_logger()


S = TypeVar("S", bound=Enum)  # State type
C = TypeVar("C")  # Context type


@attrs.define(frozen=True, slots=True)
class Transition(Generic[S]):
    """Immutable record of a state transition."""

    from_state: S
    to_state: S
    event_type: str
    at: datetime
    details: Dict[str, Any] = attrs.Factory(dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "from_state": self.from_state.name,
            "to_state": self.to_state.name,
            "event_type": self.event_type,
            "at": self.at.isoformat(),
            "details": self.details,
        }


# (state, context) -> holds
InvariantFn = Callable[[Any, Any], bool]

# (next_state, context_updater)
TransitionEntry = Tuple[Any, Callable[[Any, Any], Any]]


@attrs.define
class StateMachineBase(ABC, Generic[S, C]):
    """
    Base state machine with invariant hooks.

    Usage:
        class MyStateMachine(StateMachineBase[MyState, MyContext]):
            def initial_state(self) -> MyState:
                return MyState.INITIAL

            def transition_table(self) -> Dict[Tuple[MyState, type], TransitionEntry]:
                return {
                    (MyState.INITIAL, StartEvent): (MyState.STARTED, self._handle_start),
                }

        machine = MyStateMachine(context=MyContext())
    """

    _context: C = attrs.field(alias="context")
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="logger")
    _state: Optional[S] = attrs.field(default=None, init=False)
    _table: Dict[Tuple[S, type], TransitionEntry] = attrs.field(factory=dict, init=False)
    _invariants: Dict[str, InvariantFn] = attrs.field(factory=dict, init=False)
    _history: List[Transition[S]] = attrs.field(factory=list, init=False)

    def __attrs_post_init__(self) -> None:
        self._state = self.initial_state()
        self._table = self.transition_table()

    @abstractmethod
    def initial_state(self) -> S:
        ...

    @abstractmethod
    def transition_table(self) -> Dict[Tuple[S, type], TransitionEntry]:
        """
        Map (current_state, event_type) to (next_state, context_updater).

        The context updater computes the new context from the event and
        the current context without side effects.
        """
        ...

    def describe(self, event: Any, context: C) -> Dict[str, Any]:
        """Details recorded with the transition into context."""
        return {}

    @property
    def state(self) -> S:
        return self._state

    @property
    def context(self) -> C:
        return self._context

    def add_invariant(self, name: str, invariant: InvariantFn) -> None:
        """Register a (state, context) predicate checked before every commit."""
        self._invariants[name] = invariant

    def process_event(self, event: Any) -> Result[S, str]:
        """
        Process an event and transition to the next state.

        Returns:
            Success(new_state) if the transition was committed
            Failure(error_message) if the event is not accepted in this state

        Raises:
            InvariantViolation: If an invariant fails for the new state
        """
        event_type = type(event).__name__
        entry = self._table.get((self._state, type(event)))
        if entry is None:
            self._logger.warning(
                "invalid_transition",
                current_state=self._state.name,
                event_type=event_type,
            )
            return Failure(f"No transition for state {self._state.name} with event {event_type}")

        next_state, update = entry
        new_context = update(event, self._context)

        for name, invariant in self._invariants.items():
            if not invariant(next_state, new_context):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self._state.name,
                    to_state=next_state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated")

        self._history.append(
            Transition(
                from_state=self._state,
                to_state=next_state,
                event_type=event_type,
                at=datetime.now(timezone.utc),
                details=self.describe(event, new_context),
            )
        )
        self._logger.info(
            "state_transition",
            from_state=self._state.name,
            to_state=next_state.name,
            event_type=event_type,
        )

        self._state = next_state
        self._context = new_context
        return Success(next_state)

    def get_trace(self) -> List[Transition[S]]:
        """Copy of the transition history."""
        return list(self._history)
