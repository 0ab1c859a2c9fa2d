from enum import Enum
from typing import Optional, Callable, List
from dataclasses import dataclass


class RoomState(str, Enum):
    UNINITIALIZED = "uninitialized"
    OPEN = "open"
    FULL = "full"
    RESOLVED = "resolved"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: RoomState
    to_state: RoomState
    action: str
    guard: Optional[Callable] = None


def at_capacity_guard(context: dict) -> bool:
    players = context.get("players", [])
    capacity = context.get("capacity")
    return capacity is not None and len(players) >= capacity


class RoomStateMachine:
    # Candidates for the same (state, action) are tried in order; the first
    # whose guard passes wins.
    TRANSITIONS = [
        Transition(RoomState.UNINITIALIZED, RoomState.FULL, "create", guard=at_capacity_guard),
        Transition(RoomState.UNINITIALIZED, RoomState.OPEN, "create"),
        Transition(RoomState.OPEN, RoomState.FULL, "join", guard=at_capacity_guard),
        Transition(RoomState.OPEN, RoomState.OPEN, "join"),
        Transition(RoomState.OPEN, RoomState.RESOLVED, "end_game"),
        Transition(RoomState.FULL, RoomState.RESOLVED, "end_game"),
    ]

    ALLOWED_ACTIONS = {
        RoomState.UNINITIALIZED: ["create"],
        RoomState.OPEN: ["join", "end_game", "view"],
        RoomState.FULL: ["end_game", "view"],
        RoomState.RESOLVED: ["view"],
    }

    def __init__(self, initial_state: RoomState = RoomState.UNINITIALIZED):
        self._state = initial_state
        self._history: List[tuple] = []

    @property
    def state(self) -> RoomState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state == RoomState.RESOLVED

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def can_transition(self, action: str) -> bool:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return True
        return False

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str, guard_context: dict = None) -> RoomState:
        candidates = [
            t for t in self.TRANSITIONS
            if t.from_state == self._state and t.action == action
        ]

        for t in candidates:
            if t.guard and not t.guard(guard_context or {}):
                continue

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
    def from_state_string(cls, state_str: str) -> "RoomStateMachine":
        try:
            state = RoomState(state_str)
        except ValueError:
            raise TransitionError(str(state_str), "unknown", f"Unknown room state '{state_str}'")
        return cls(initial_state=state)
