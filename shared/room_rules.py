"""
Transition rules of the room program.

These functions are the single definition of what each instruction requires
and what it writes. The in-memory ledger executes them as its program, and
the lifecycle service runs the same checks before submitting so that doomed
transitions fail fast.

Account data is plain dicts: registry accounts carry ``total_rooms`` and
``authority``; room accounts carry ``room_id``, ``creator``,
``staking_amount``, ``players``, ``capacity``, ``state``, ``creation_time``
and ``winner``.
"""
from enum import Enum
from typing import Optional

from .state_machine import RoomStateMachine, RoomState, TransitionError


class RejectionCode(str, Enum):
    ALREADY_INITIALIZED = "already_initialized"
    REGISTRY_NOT_FOUND = "registry_not_found"
    STALE_COUNTER = "stale_counter"
    ROOM_NOT_FOUND = "room_not_found"
    ROOM_NOT_OPEN = "room_not_open"
    ALREADY_JOINED = "already_joined"
    ALREADY_RESOLVED = "already_resolved"
    WINNER_NOT_A_PARTICIPANT = "winner_not_a_participant"
    INVALID_INSTRUCTION = "invalid_instruction"


class RuleViolation(Exception):
    def __init__(self, code: RejectionCode, message: str = None):
        self.code = RejectionCode(code)
        self.message = message or self.code.value.replace("_", " ")
        super().__init__(self.message)


def check_initialize(registry: Optional[dict]):
    if registry is not None:
        raise RuleViolation(RejectionCode.ALREADY_INITIALIZED, "Registry is already initialized")


def initial_registry(authority: str) -> dict:
    return {"total_rooms": 0, "authority": authority}


def check_create_room(registry: Optional[dict], room: Optional[dict], expected_total_rooms: int):
    if registry is None:
        raise RuleViolation(RejectionCode.REGISTRY_NOT_FOUND, "Registry has not been initialized")
    if registry["total_rooms"] != expected_total_rooms:
        raise RuleViolation(
            RejectionCode.STALE_COUNTER,
            f"Room counter moved from {expected_total_rooms} to {registry['total_rooms']}"
        )
    if room is not None:
        raise RuleViolation(
            RejectionCode.STALE_COUNTER,
            f"Room {expected_total_rooms + 1} already exists"
        )


def new_room(
    room_id: int,
    creator: str,
    staking_amount: int,
    capacity: int,
    creator_joins: bool,
    creation_time: int
) -> dict:
    players = [creator] if creator_joins else []
    sm = RoomStateMachine()
    state = sm.transition("create", {"players": players, "capacity": capacity})
    return {
        "room_id": room_id,
        "creator": creator,
        "staking_amount": staking_amount,
        "players": players,
        "capacity": capacity,
        "state": state.value,
        "creation_time": creation_time,
        "winner": None,
    }


def advance_registry(registry: dict) -> dict:
    updated = dict(registry)
    updated["total_rooms"] = registry["total_rooms"] + 1
    return updated


def _room_machine(room: dict) -> RoomStateMachine:
    try:
        return RoomStateMachine.from_state_string(room["state"])
    except TransitionError as e:
        raise RuleViolation(RejectionCode.INVALID_INSTRUCTION, str(e))


def check_join(room: Optional[dict], player: str):
    if room is None:
        raise RuleViolation(RejectionCode.ROOM_NOT_FOUND, "Room not found")
    sm = _room_machine(room)
    if not sm.can_perform("join"):
        raise RuleViolation(
            RejectionCode.ROOM_NOT_OPEN,
            f"Room {room['room_id']} is {sm.state.value}, not accepting players"
        )
    if player in room["players"]:
        raise RuleViolation(
            RejectionCode.ALREADY_JOINED,
            f"Player {player} already joined room {room['room_id']}"
        )


def apply_join(room: dict, player: str) -> dict:
    check_join(room, player)
    players = list(room["players"]) + [player]
    sm = _room_machine(room)
    state = sm.transition("join", {"players": players, "capacity": room["capacity"]})

    updated = dict(room)
    updated["players"] = players
    updated["state"] = state.value
    return updated


def check_end_game(room: Optional[dict], winner: str):
    if room is None:
        raise RuleViolation(RejectionCode.ROOM_NOT_FOUND, "Room not found")
    sm = _room_machine(room)
    if sm.state == RoomState.RESOLVED:
        raise RuleViolation(
            RejectionCode.ALREADY_RESOLVED,
            f"Room {room['room_id']} is already resolved"
        )
    if winner not in room["players"]:
        raise RuleViolation(
            RejectionCode.WINNER_NOT_A_PARTICIPANT,
            f"{winner} is not a participant of room {room['room_id']}"
        )


def apply_end_game(room: dict, winner: str) -> dict:
    check_end_game(room, winner)
    sm = _room_machine(room)
    state = sm.transition("end_game")

    updated = dict(room)
    updated["winner"] = winner
    updated["state"] = state.value
    return updated
