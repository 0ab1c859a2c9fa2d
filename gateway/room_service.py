import time
import random
import logging
from typing import Callable, Optional, Sequence

from shared import room_rules
from shared.addressing import AddressDeriver, MAX_ROOM_ID, is_valid_identity
from shared.events import (
    registry_initialized_event,
    room_created_event,
    player_joined_event,
    room_full_event,
    room_resolved_event,
)
from shared.pubsub import EventPublisher
from shared.room_rules import RejectionCode, RuleViolation
from shared.state_machine import RoomState
from .exceptions import (
    PRECONDITION_ERRORS,
    ValidationError,
    RoomNotFound,
    RegistryNotFound,
    ConflictRetryExhausted,
    LedgerUnavailable,
    OutcomeUnknown,
    TransitionFailed,
)
from .ledger_client import (
    LedgerClient,
    LedgerError,
    TransitionRequest,
    TransitionRejected,
    Unconfirmed,
    deadline_after,
)
from .models import RegistryState, RoomRecord, OperationResult

logger = logging.getLogger(__name__)


def parse_room_id(value) -> int:
    """Accept a positive integer or its decimal string form."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid room id: {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdecimal()):
            raise ValidationError(f"Invalid room id: {value!r}")
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError(f"Invalid room id: {value!r}")
    if value < 1 or value > MAX_ROOM_ID:
        raise ValidationError(f"Room id must be between 1 and {MAX_ROOM_ID}, got {value}")
    return value


def parse_amount(value) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid staking amount: {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdecimal()):
            raise ValidationError(f"Invalid staking amount: {value!r}")
        value = int(value)
    if not isinstance(value, int) or value < 0 or value > MAX_ROOM_ID:
        raise ValidationError(f"Staking amount must be an unsigned 64-bit integer, got {value!r}")
    return value


def require_identity(value, field_name: str) -> str:
    if not is_valid_identity(value):
        raise ValidationError(f"{field_name} must be a base58 public key, got {value!r}")
    return value


class RoomLifecycleService:
    """
    Room lifecycle on top of a ledger:
    - Initialize the global registry
    - Create rooms, numbering them from the registry counter
    - Join rooms until capacity
    - Resolve rooms with a winner
    - Fetch room snapshots

    Holds no mutable state between calls. Every operation derives its
    addresses, reads what it needs, checks the room rules locally, submits a
    transition and returns a plain-data result.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        deriver: AddressDeriver,
        authority: str,
        capacity: int = 2,
        creator_joins: bool = True,
        default_staking_amount: int = 0,
        create_max_attempts: int = 10,
        conflict_backoff: float = 0.02,
        operation_timeout: float = None,
        publisher: EventPublisher = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep
    ):
        if capacity < 1:
            raise ValueError("Room capacity must be at least 1")
        if create_max_attempts < 1:
            raise ValueError("create_max_attempts must be at least 1")
        self.ledger = ledger
        self.deriver = deriver
        self.authority = require_identity(authority, "authority")
        self.capacity = capacity
        self.creator_joins = creator_joins
        self.default_staking_amount = parse_amount(default_staking_amount)
        self.create_max_attempts = create_max_attempts
        self.conflict_backoff = conflict_backoff
        self.operation_timeout = operation_timeout
        self.publisher = publisher
        self._clock = clock
        self._sleep = sleep

    # ==================== Operations ====================

    def initialize(self, timeout: float = None) -> OperationResult:
        """Create the registry with a zero room counter."""
        deadline = self._deadline(timeout)
        registry_address = self.deriver.registry_address()

        self._check(room_rules.check_initialize, self._read(registry_address))

        request = TransitionRequest(
            "initialize",
            {"registry": registry_address},
            {"authority": self.authority},
        )
        tx_id = self._submit_or_raise(request, [self.authority], deadline, None)

        logger.info(f"Initialized registry {registry_address} ({tx_id})")
        self._publish(registry_initialized_event(registry_address, self.authority, tx_id))
        return OperationResult(tx_id=tx_id, address=registry_address)

    def create_room(self, creator: str, staking_amount: int = None, timeout: float = None) -> OperationResult:
        """
        Create the next room.

        The room id is the registry counter plus one. When a concurrent
        creation commits first the ledger rejects this one as stale; the
        counter is re-read and the creation resubmitted, up to
        ``create_max_attempts`` times.
        """
        creator = require_identity(creator, "creator")
        if staking_amount is None:
            staking_amount = self.default_staking_amount
        staking_amount = parse_amount(staking_amount)
        deadline = self._deadline(timeout)
        registry_address = self.deriver.registry_address()

        for attempt in range(1, self.create_max_attempts + 1):
            if attempt > 1 and deadline is not None and self.ledger.now() >= deadline:
                raise ConflictRetryExhausted(attempt - 1)

            registry = self._load_registry(registry_address)
            room_id = registry.total_rooms + 1
            room_address = self.deriver.room_address(room_id)

            request = TransitionRequest(
                "create_room",
                {"registry": registry_address, "room": room_address},
                {
                    "expected_total_rooms": registry.total_rooms,
                    "room_id": room_id,
                    "creator": creator,
                    "staking_amount": staking_amount,
                    "capacity": self.capacity,
                    "creator_joins": self.creator_joins,
                    "creation_time": int(self._clock()),
                },
            )

            try:
                tx_id = self._submit(request, [creator], deadline, room_id=room_id)
            except TransitionRejected as e:
                if e.code != RejectionCode.STALE_COUNTER.value:
                    raise self._rejection_error(e.code, e.message, room_id) from e
                logger.warning(
                    f"Room {room_id} was taken by a concurrent creation "
                    f"(attempt {attempt}/{self.create_max_attempts}), re-reading counter"
                )
                self._sleep(random.uniform(0, self.conflict_backoff * attempt))
                continue

            logger.info(f"Created room {room_id} at {room_address} for {creator} ({tx_id})")
            self._publish(room_created_event(room_id, creator, staking_amount, tx_id))
            return OperationResult(
                tx_id=tx_id,
                address=room_address,
                room_id=room_id,
                details={"attempts": attempt},
            )

        raise ConflictRetryExhausted(self.create_max_attempts)

    def join_room(self, room_id, player: str, timeout: float = None) -> OperationResult:
        """Add a player to an open room; the room becomes full at capacity."""
        room_id = parse_room_id(room_id)
        player = require_identity(player, "player")
        deadline = self._deadline(timeout)
        room_address = self.deriver.room_address(room_id)

        room = self._read(room_address)
        self._check(room_rules.check_join, room, player, room_id=room_id)

        request = TransitionRequest(
            "join_room",
            {"room": room_address},
            {"room_id": room_id, "player": player},
        )
        tx_id = self._submit_or_raise(request, [player], deadline, room_id)

        after = self._reread_room(room_address, room_rules.apply_join, room, player)
        logger.info(f"{player} joined room {room_id} ({len(after['players'])}/{after['capacity']})")

        self._publish(player_joined_event(room_id, player, len(after["players"]), tx_id))
        if after["state"] == RoomState.FULL.value:
            self._publish(room_full_event(room_id, after["players"]))

        return OperationResult(
            tx_id=tx_id,
            address=room_address,
            room_id=room_id,
            details={"players": after["players"], "state": after["state"]},
        )

    def end_game(self, room_id, winner: str, timeout: float = None) -> OperationResult:
        """Resolve a room with a winner taken from its players. Resolution is final."""
        room_id = parse_room_id(room_id)
        winner = require_identity(winner, "winner")
        deadline = self._deadline(timeout)
        room_address = self.deriver.room_address(room_id)

        room = self._read(room_address)
        self._check(room_rules.check_end_game, room, winner, room_id=room_id)

        request = TransitionRequest(
            "end_game",
            {"room": room_address},
            {"room_id": room_id, "winner": winner},
        )
        tx_id = self._submit_or_raise(request, [self.authority], deadline, room_id)

        logger.info(f"Room {room_id} resolved, winner {winner} ({tx_id})")
        self._publish(room_resolved_event(room_id, winner, room["staking_amount"], tx_id))
        return OperationResult(
            tx_id=tx_id,
            address=room_address,
            room_id=room_id,
            details={"winner": winner, "state": RoomState.RESOLVED.value},
        )

    def fetch_room(self, room_id) -> RoomRecord:
        room_id = parse_room_id(room_id)
        room_address = self.deriver.room_address(room_id)

        data = self._read(room_address)
        if data is None:
            raise RoomNotFound(room_id)
        return RoomRecord.from_account(room_address, data)

    def fetch_registry(self) -> RegistryState:
        return self._load_registry(self.deriver.registry_address())

    # ==================== Helpers ====================

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        if timeout is None:
            timeout = self.operation_timeout
        return deadline_after(timeout, clock=self.ledger.now)

    def _read(self, address: str) -> Optional[dict]:
        try:
            account = self.ledger.read(address)
        except LedgerError as e:
            raise LedgerUnavailable(f"Could not read {address}: {e.message}") from e
        return account.data if account is not None else None

    def _load_registry(self, registry_address: str) -> RegistryState:
        data = self._read(registry_address)
        if data is None:
            raise RegistryNotFound()
        return RegistryState.from_account(registry_address, data)

    def _reread_room(self, room_address: str, rule: Callable, room: dict, *args) -> dict:
        """Fresh room state after a commit, falling back to the locally applied rule."""
        try:
            account = self.ledger.read(room_address)
        except LedgerError as e:
            logger.warning(f"Re-read of {room_address} failed ({e.message}), projecting locally")
            account = None
        if account is not None:
            return account.data
        return rule(room, *args)

    def _check(self, rule: Callable, *args, room_id: int = None):
        try:
            rule(*args)
        except RuleViolation as e:
            raise self._rejection_error(e.code.value, e.message, room_id) from e

    def _rejection_error(self, code: str, message: str, room_id: Optional[int]):
        try:
            code = RejectionCode(code)
        except ValueError:
            return TransitionFailed(code, message)

        if code == RejectionCode.ROOM_NOT_FOUND:
            return RoomNotFound(room_id)
        error_class = PRECONDITION_ERRORS.get(code)
        if error_class is None:
            return TransitionFailed(code.value, message)
        return error_class(message)

    def _submit(
        self,
        request: TransitionRequest,
        signers: Sequence[str],
        deadline: Optional[float],
        room_id: int = None
    ) -> str:
        """Submit through the ledger client, translating transport outcomes. Rejections pass through."""
        try:
            return self.ledger.submit(request, signers, deadline)
        except TransitionRejected:
            raise
        except Unconfirmed as e:
            if not e.submitted:
                raise LedgerUnavailable(f"{request.instruction} not sent: {e.message}") from e
            logger.error(
                f"{request.instruction} for room {room_id} has unknown outcome "
                f"(tx {e.tx_id}): {e.message}"
            )
            raise OutcomeUnknown(
                f"{request.instruction} may or may not have committed; re-read before retrying",
                tx_id=e.tx_id
            ) from e
        except LedgerError as e:
            raise LedgerUnavailable(f"{request.instruction} failed: {e.message}") from e

    def _submit_or_raise(
        self,
        request: TransitionRequest,
        signers: Sequence[str],
        deadline: Optional[float],
        room_id: int
    ) -> str:
        try:
            return self._submit(request, signers, deadline, room_id=room_id)
        except TransitionRejected as e:
            raise self._rejection_error(e.code, e.message, room_id) from e

    def _publish(self, event):
        if self.publisher is not None:
            self.publisher.publish(event)
