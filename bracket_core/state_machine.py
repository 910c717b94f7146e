from enum import Enum
from datetime import datetime, timedelta
from typing import Optional, Callable, List, Tuple
from dataclasses import dataclass


class TournamentStatus(str, Enum):
    DRAFT = "draft"
    UPCOMING = "upcoming"
    REGISTRATION_OPEN = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class BracketState(str, Enum):
    SEEDED = "seeded"
    ROUND_IN_PROGRESS = "round_in_progress"
    ROUND_COMPLETE = "round_complete"
    AWAITING_THIRD_PLACE = "awaiting_third_place"
    FINAL_PENDING = "final_pending"
    COMPLETED = "completed"


class TransitionError(Exception):
    code = "illegal_transition"

    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        return {
            "error": self.reason,
            "code": self.code,
            "from_state": self.from_state,
            "to_state": self.to_state,
        }


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str
    guard: Optional[Callable] = None


class StateMachine:
    """
    Action driven state machine over a closed status enum.

    Subclasses provide STATES (the enum) and TRANSITIONS. A transition with a
    guard only fires when the guard accepts the supplied context.
    """

    STATES = None
    TRANSITIONS: List[Transition] = []

    def __init__(self, initial_state=None):
        self._state = initial_state if initial_state is not None else self.default_state()
        self._history: List[tuple] = []

    @classmethod
    def default_state(cls):
        return list(cls.STATES)[0]

    @property
    def state(self):
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return [t.action for t in self.TRANSITIONS if t.from_state == self._state]

    @property
    def is_terminal(self) -> bool:
        return not self.allowed_actions

    def can_transition(self, action: str) -> bool:
        return any(t.from_state == self._state and t.action == action for t in self.TRANSITIONS)

    def transition(self, action: str, guard_context: dict = None):
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and not t.guard(guard_context or {}):
                    raise TransitionError(
                        self._state.value,
                        t.to_state.value,
                        f"Guard condition failed for action '{action}'"
                    )

                old_state = self._state
                self._state = t.to_state
                self._history.append((old_state, action, self._state))
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    def get_history(self) -> List[tuple]:
        return self._history.copy()

    @classmethod
    def from_state_string(cls, state_str: str) -> "StateMachine":
        try:
            state = cls.STATES(state_str)
        except ValueError:
            raise TransitionError(
                str(state_str), "unknown", f"Unknown {cls.STATES.__name__} '{state_str}'"
            )
        return cls(initial_state=state)


def bracket_complete_guard(context: dict) -> bool:
    return bool(context.get("bracket_complete"))


_OPEN_TOURNAMENT_STATES = (
    TournamentStatus.DRAFT,
    TournamentStatus.UPCOMING,
    TournamentStatus.REGISTRATION_OPEN,
    TournamentStatus.REGISTRATION_CLOSED,
    TournamentStatus.ONGOING,
)


class TournamentStateMachine(StateMachine):
    STATES = TournamentStatus
    TRANSITIONS = [
        Transition(TournamentStatus.DRAFT, TournamentStatus.UPCOMING, "publish"),
        Transition(TournamentStatus.UPCOMING, TournamentStatus.REGISTRATION_OPEN, "open_registration"),
        Transition(TournamentStatus.REGISTRATION_OPEN, TournamentStatus.REGISTRATION_CLOSED, "close_registration"),
        Transition(TournamentStatus.REGISTRATION_CLOSED, TournamentStatus.REGISTRATION_OPEN, "reopen_registration"),
        Transition(TournamentStatus.REGISTRATION_CLOSED, TournamentStatus.ONGOING, "start"),
        Transition(TournamentStatus.ONGOING, TournamentStatus.COMPLETED, "complete", bracket_complete_guard),
    ] + [
        Transition(state, TournamentStatus.CANCELLED, "cancel") for state in _OPEN_TOURNAMENT_STATES
    ]

    # Bracket generation is accepted only once registration has been closed.
    BRACKET_STATES = (TournamentStatus.REGISTRATION_CLOSED, TournamentStatus.ONGOING)

    @property
    def can_generate_bracket(self) -> bool:
        return self._state in self.BRACKET_STATES


class MatchStateMachine(StateMachine):
    STATES = MatchStatus
    TRANSITIONS = [
        Transition(MatchStatus.SCHEDULED, MatchStatus.IN_PROGRESS, "start"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.COMPLETED, "complete"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.CANCELLED, "cancel"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.RESCHEDULED, "reschedule"),
        Transition(MatchStatus.IN_PROGRESS, MatchStatus.COMPLETED, "complete"),
        Transition(MatchStatus.IN_PROGRESS, MatchStatus.CANCELLED, "cancel"),
        Transition(MatchStatus.IN_PROGRESS, MatchStatus.RESCHEDULED, "reschedule"),
        Transition(MatchStatus.RESCHEDULED, MatchStatus.IN_PROGRESS, "start"),
        Transition(MatchStatus.RESCHEDULED, MatchStatus.COMPLETED, "complete"),
        Transition(MatchStatus.RESCHEDULED, MatchStatus.CANCELLED, "cancel"),
        Transition(MatchStatus.RESCHEDULED, MatchStatus.RESCHEDULED, "reschedule"),
        Transition(MatchStatus.CANCELLED, MatchStatus.SCHEDULED, "restore"),
    ]


BRACKET_TRANSITIONS = {
    BracketState.SEEDED: {
        BracketState.ROUND_IN_PROGRESS,
        BracketState.ROUND_COMPLETE,
        BracketState.FINAL_PENDING,
        # two-player brackets start in their final
        BracketState.COMPLETED,
    },
    BracketState.ROUND_IN_PROGRESS: {
        BracketState.ROUND_COMPLETE,
        BracketState.FINAL_PENDING,
    },
    BracketState.ROUND_COMPLETE: {
        BracketState.ROUND_IN_PROGRESS,
        BracketState.FINAL_PENDING,
    },
    BracketState.FINAL_PENDING: {
        BracketState.AWAITING_THIRD_PLACE,
        BracketState.COMPLETED,
    },
    BracketState.AWAITING_THIRD_PLACE: {
        BracketState.COMPLETED,
    },
    BracketState.COMPLETED: set(),
}


def check_bracket_transition(from_state: BracketState, to_state: BracketState) -> BracketState:
    """Validate a derived bracket state change; staying put is always legal."""
    if from_state == to_state or to_state in BRACKET_TRANSITIONS[from_state]:
        return to_state
    raise TransitionError(from_state.value, to_state.value)


# Registration window automation

EARLY_FINALIZE_WINDOW = timedelta(hours=24)


class WindowAction(str, Enum):
    NONE = "none"
    FINALIZE = "finalize"
    CANCEL = "cancel"


def registration_window_action(
    registrations: list,
    capacity: int,
    registration_end: datetime,
    now: datetime,
) -> Tuple[WindowAction, list]:
    """
    Decide what to do with a tournament whose registration window is open.

    Only paid registrations count. Returns the action and, for FINALIZE, the
    registrations that keep their slot (earliest paid first, up to capacity).
    """
    paid = sorted(
        (r for r in registrations if r.payment_status == "paid"),
        key=lambda r: r.registration_date,
    )
    remaining = registration_end - now

    if len(paid) >= capacity and (now > registration_end or remaining <= EARLY_FINALIZE_WINDOW):
        return WindowAction.FINALIZE, paid[:capacity]
    if now > registration_end:
        return WindowAction.CANCEL, []
    return WindowAction.NONE, []
