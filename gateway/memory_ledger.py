import copy
import uuid
import logging
import threading
from collections import deque
from typing import Optional, Dict, List, Sequence

from shared.addressing import AddressDeriver
from shared import room_rules
from shared.room_rules import RejectionCode, RuleViolation
from .ledger_client import (
    LedgerClient,
    LedgerError,
    AccountState,
    TransitionRequest,
    TransitionRejected,
    Unconfirmed,
    TxStatus,
)

logger = logging.getLogger(__name__)


class InMemoryLedger(LedgerClient):
    """
    Process-local ledger that runs the room program.

    Every transition is executed under one lock and either writes all of its
    accounts or none. Faults can be queued with ``inject`` to exercise the
    retry and ambiguity handling of callers.
    """

    def __init__(self, deriver: AddressDeriver, **kwargs):
        kwargs.setdefault("sleep", lambda seconds: None)
        super().__init__(**kwargs)
        self.deriver = deriver
        self._accounts: Dict[str, dict] = {}
        self._committed: Dict[str, int] = {}
        self._failed: Dict[str, TransitionRejected] = {}
        self._faults = deque()
        self._lock = threading.Lock()
        self._slot = 0
        self.commit_log: List[dict] = []
        self.instructions = {
            "initialize": self._initialize,
            "create_room": self._create_room,
            "join_room": self._join_room,
            "end_game": self._end_game,
        }

    def inject(self, error: LedgerError, commit: bool = False):
        """
        Make the next send fail with ``error``.

        With ``commit=True`` the transition is applied first and the caller
        still receives ``error``, as when finality times out after the ledger
        committed.
        """
        with self._lock:
            self._faults.append((error, commit))

    def read(self, address: str) -> Optional[AccountState]:
        with self._lock:
            data = self._accounts.get(address)
            if data is None:
                return None
            return AccountState(address=address, data=copy.deepcopy(data), slot=self._slot)

    def accounts(self) -> Dict[str, dict]:
        with self._lock:
            return copy.deepcopy(self._accounts)

    def _send(self, request: TransitionRequest, signers: Sequence[str]) -> str:
        tx_id = uuid.uuid4().hex

        with self._lock:
            fault = self._faults.popleft() if self._faults else None
            if fault is not None and not fault[1]:
                raise fault[0]

            try:
                writes = self._execute(request)
            except RuleViolation as e:
                rejection = TransitionRejected(e.code.value, e.message, tx_id=tx_id)
                self._failed[tx_id] = rejection
                if fault is None:
                    raise rejection
                writes = None

            if writes is not None:
                self._slot += 1
                slot = self._slot
                self._accounts.update(writes)
                self._committed[tx_id] = slot
                self.commit_log.append({
                    "tx_id": tx_id,
                    "slot": slot,
                    "instruction": request.instruction,
                    "signers": list(signers),
                    "accounts": sorted(writes),
                })

        if fault is not None:
            error = fault[0]
            if isinstance(error, Unconfirmed) and error.tx_id is None:
                error.tx_id = tx_id
            raise error

        logger.debug(f"Committed {request.instruction} as {tx_id} at slot {slot}")
        return tx_id

    def _status(self, tx_id: str) -> TxStatus:
        with self._lock:
            if tx_id in self._committed:
                return TxStatus.FINALIZED
            if tx_id in self._failed:
                raise self._failed[tx_id]
        return TxStatus.UNKNOWN

    # ==================== Room program ====================

    def _execute(self, request: TransitionRequest) -> Dict[str, dict]:
        handler = self.instructions.get(request.instruction)
        if handler is None:
            raise RuleViolation(RejectionCode.INVALID_INSTRUCTION, f"Unknown instruction '{request.instruction}'")
        try:
            return handler(request.accounts, request.args)
        except KeyError as e:
            raise RuleViolation(RejectionCode.INVALID_INSTRUCTION, f"Missing account or argument {e}")

    def _expect_address(self, actual: str, expected: str, code: RejectionCode):
        if actual != expected:
            raise RuleViolation(code, f"Account {actual} does not match derived address {expected}")

    def _initialize(self, accounts: dict, args: dict) -> Dict[str, dict]:
        registry_address = accounts["registry"]
        self._expect_address(registry_address, self.deriver.registry_address(), RejectionCode.INVALID_INSTRUCTION)

        room_rules.check_initialize(self._accounts.get(registry_address))
        return {registry_address: room_rules.initial_registry(args["authority"])}

    def _create_room(self, accounts: dict, args: dict) -> Dict[str, dict]:
        registry_address = accounts["registry"]
        room_address = accounts["room"]
        self._expect_address(registry_address, self.deriver.registry_address(), RejectionCode.INVALID_INSTRUCTION)

        registry = self._accounts.get(registry_address)
        room_rules.check_create_room(registry, self._accounts.get(room_address), args["expected_total_rooms"])

        # Seeds are checked against the live counter, as a PDA constraint would be.
        room_id = registry["total_rooms"] + 1
        self._expect_address(room_address, self.deriver.room_address(room_id), RejectionCode.STALE_COUNTER)

        room = room_rules.new_room(
            room_id=room_id,
            creator=args["creator"],
            staking_amount=args["staking_amount"],
            capacity=args["capacity"],
            creator_joins=args["creator_joins"],
            creation_time=args["creation_time"],
        )
        return {
            registry_address: room_rules.advance_registry(registry),
            room_address: room,
        }

    def _join_room(self, accounts: dict, args: dict) -> Dict[str, dict]:
        room_address = accounts["room"]
        room = self._accounts.get(room_address)
        return {room_address: room_rules.apply_join(room, args["player"])}

    def _end_game(self, accounts: dict, args: dict) -> Dict[str, dict]:
        room_address = accounts["room"]
        room = self._accounts.get(room_address)
        return {room_address: room_rules.apply_end_game(room, args["winner"])}
