"""
Failure taxonomy of the room gateway.

Every failure an operation can produce is one of these classes. The HTTP
layer renders them uniformly from ``code`` and ``http_status``.
"""
from shared.room_rules import RejectionCode


class RoomGatewayError(Exception):
    """Base class for all room gateway failures."""
    code = "error"
    http_status = 500

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


# ============ Validation ============

class ValidationError(RoomGatewayError):
    """Malformed input, rejected before any ledger I/O."""
    code = "validation_error"
    http_status = 400


# ============ Preconditions ============

class PreconditionError(RoomGatewayError):
    """The ledger state does not allow the operation; retrying will not help."""
    http_status = 409


class AlreadyInitialized(PreconditionError):
    code = "already_initialized"

    def __init__(self, message: str = None):
        super().__init__(message or "Registry is already initialized")


class RegistryNotFound(PreconditionError):
    code = "registry_not_found"

    def __init__(self, message: str = None):
        super().__init__(message or "Registry has not been initialized")


class RoomNotFound(PreconditionError):
    code = "room_not_found"
    http_status = 404

    def __init__(self, room_id: int = None, message: str = None):
        self.room_id = room_id
        super().__init__(message or f"Room {room_id} not found")


class RoomNotOpen(PreconditionError):
    code = "room_not_open"


class AlreadyJoined(PreconditionError):
    code = "already_joined"


class AlreadyResolved(PreconditionError):
    code = "already_resolved"


class WinnerNotAParticipant(PreconditionError):
    code = "winner_not_a_participant"
    http_status = 400


# ============ Ledger outcomes ============

class ConflictRetryExhausted(RoomGatewayError):
    """Room creation kept losing the counter race."""
    code = "conflict_retry_exhausted"
    http_status = 409

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Room creation conflicted {attempts} times, giving up")


class TransitionFailed(RoomGatewayError):
    """The ledger rejected the transition for a reason outside the room rules."""
    code = "transition_rejected"
    http_status = 422

    def __init__(self, rejection_code: str, message: str = None):
        self.rejection_code = rejection_code
        super().__init__(message or f"Transition rejected: {rejection_code}")


class LedgerUnavailable(RoomGatewayError):
    """The ledger could not be reached or kept throttling; nothing was applied."""
    code = "ledger_unavailable"
    http_status = 503


class OutcomeUnknown(RoomGatewayError):
    """
    The transition may or may not have committed.

    Callers should re-read the affected room before retrying.
    """
    code = "outcome_unknown"
    http_status = 504

    def __init__(self, message: str = None, tx_id: str = None):
        self.tx_id = tx_id
        super().__init__(message or "Transition outcome unknown")

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["txId"] = self.tx_id
        return payload


PRECONDITION_ERRORS = {
    RejectionCode.ALREADY_INITIALIZED: AlreadyInitialized,
    RejectionCode.REGISTRY_NOT_FOUND: RegistryNotFound,
    RejectionCode.ROOM_NOT_OPEN: RoomNotOpen,
    RejectionCode.ALREADY_JOINED: AlreadyJoined,
    RejectionCode.ALREADY_RESOLVED: AlreadyResolved,
    RejectionCode.WINNER_NOT_A_PARTICIPANT: WinnerNotAParticipant,
}
