"""
Ledger client abstraction.

A LedgerClient reads committed account state and submits state transitions,
waiting for finality. It owns transport and retry only; the business rules
live in the room program and the lifecycle service.
"""
import time
import random
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Sequence, Callable

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for ledger transport failures."""

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class TransitionRejected(LedgerError):
    """The program refused the transition; its preconditions did not hold."""

    def __init__(self, code: str, message: str = None, tx_id: str = None):
        self.code = code
        self.tx_id = tx_id
        super().__init__(message or f"Transition rejected: {code}")


class Unconfirmed(LedgerError):
    """
    Finality was not observed.

    ``submitted`` is False only when the request provably never reached the
    ledger (for example the connection was refused). Otherwise the
    transition may or may not have committed.
    """

    def __init__(self, message: str = None, tx_id: str = None, submitted: bool = True):
        self.tx_id = tx_id
        self.submitted = submitted
        super().__init__(message or "Transition not confirmed")


class Throttled(LedgerError):
    """The ledger endpoint rate-limited the request; nothing was applied."""

    def __init__(self, message: str = None, retry_after: float = None):
        self.retry_after = retry_after
        super().__init__(message or "Ledger endpoint throttled the request")


class TxStatus(str, Enum):
    FINALIZED = "finalized"
    PENDING = "pending"
    UNKNOWN = "unknown"


@dataclass
class AccountState:
    address: str
    data: dict
    slot: int = 0


@dataclass
class TransitionRequest:
    instruction: str
    accounts: Dict[str, str]
    args: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "instruction": self.instruction,
            "accounts": dict(self.accounts),
            "args": dict(self.args),
        }


def deadline_after(seconds: Optional[float], clock: Callable[[], float] = time.monotonic) -> Optional[float]:
    """Convert a relative timeout into an absolute deadline on ``clock``."""
    if seconds is None:
        return None
    return clock() + seconds


class LedgerClient(ABC):
    """
    Base class for ledger transports.

    Subclasses implement ``read``, ``_send`` and ``_status``. ``submit``
    layers the retry policy on top: throttling and unconfirmed sends are
    retried with bounded exponential backoff, rejections never are.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        backoff_base: float = 0.2,
        backoff_max: float = 5.0,
        jitter: float = 0.1,
        poll_interval: float = 0.5,
        finality_timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.jitter = jitter
        self.poll_interval = poll_interval
        self.finality_timeout = finality_timeout
        self._sleep = sleep
        self._clock = clock

    @abstractmethod
    def read(self, address: str) -> Optional[AccountState]:
        """Return the latest finalized state of ``address``, or None if no account exists."""

    @abstractmethod
    def _send(self, request: TransitionRequest, signers: Sequence[str]) -> str:
        """Hand the transition to the ledger and return its transaction id."""

    @abstractmethod
    def _status(self, tx_id: str) -> TxStatus:
        """Report a transaction's status. Raises TransitionRejected if it failed on-chain."""

    def ping(self) -> bool:
        return True

    def now(self) -> float:
        """Current time on the clock deadlines are measured against."""
        return self._clock()

    def backoff_delay(self, attempt: int, error: LedgerError = None) -> float:
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        delay *= 1 + random.uniform(0, self.jitter)
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, retry_after)
        return delay

    def wait_for_finality(self, tx_id: str, deadline: Optional[float] = None):
        if deadline is None:
            deadline = self._clock() + self.finality_timeout

        while True:
            try:
                if self._status(tx_id) == TxStatus.FINALIZED:
                    return
            except (Unconfirmed, Throttled) as e:
                logger.debug(f"Status check for {tx_id} failed: {e.message}")

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise Unconfirmed(f"Transaction {tx_id} not finalized before deadline", tx_id=tx_id)
            self._sleep(min(self.poll_interval, remaining))

    def _finalized(self, tx_id: str) -> bool:
        """Check an earlier, unconfirmed attempt. Failures and transport errors count as not finalized."""
        try:
            return self._status(tx_id) == TxStatus.FINALIZED
        except LedgerError:
            return False

    def submit(
        self,
        request: TransitionRequest,
        signers: Sequence[str] = (),
        deadline: Optional[float] = None
    ) -> str:
        pending: List[str] = []
        maybe_committed = False
        last_error: LedgerError = None

        for attempt in range(1, self.max_attempts + 1):
            for tx_id in pending:
                if self._finalized(tx_id):
                    logger.info(f"{request.instruction} finalized late as {tx_id}")
                    return tx_id

            try:
                tx_id = self._send(request, signers)
                self.wait_for_finality(tx_id, deadline)
                logger.debug(f"{request.instruction} finalized as {tx_id}")
                return tx_id
            except TransitionRejected as e:
                if maybe_committed:
                    raise Unconfirmed(
                        f"{request.instruction} rejected ({e.code}) after an earlier attempt may have committed",
                        tx_id=pending[-1] if pending else None
                    ) from e
                raise
            except Unconfirmed as e:
                if e.tx_id:
                    pending.append(e.tx_id)
                maybe_committed = maybe_committed or e.submitted
                last_error = e
            except Throttled as e:
                last_error = e

            if attempt == self.max_attempts:
                break

            delay = self.backoff_delay(attempt, last_error)
            if deadline is not None and self._clock() + delay >= deadline:
                logger.warning(f"{request.instruction}: deadline leaves no room for retry {attempt + 1}")
                break

            logger.warning(
                f"{request.instruction} attempt {attempt}/{self.max_attempts} failed "
                f"({last_error.message}), retrying in {delay:.2f}s"
            )
            self._sleep(delay)

        for tx_id in pending:
            if self._finalized(tx_id):
                return tx_id

        if maybe_committed:
            raise Unconfirmed(
                f"{request.instruction} outcome unknown after {attempt} attempt(s)",
                tx_id=pending[-1] if pending else None
            ) from last_error
        raise last_error
