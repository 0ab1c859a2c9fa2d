"""
Wire layout of the room program.

Instructions and accounts follow the Anchor conventions: an 8-byte
discriminator (first bytes of ``sha256("global:<ix>")`` or
``sha256("account:<Type>")``) followed by Borsh-encoded fields. Account
data decodes into the same plain dicts the room rules operate on.
"""
import hashlib
import struct

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from shared.addressing import AddressDeriver, AddressKind, to_pubkey
from shared.room_rules import RejectionCode
from shared.state_machine import RoomState
from .ledger_client import LedgerError, TransitionRequest

DISCRIMINATOR_LENGTH = 8

# Borsh enum variant order of the on-chain RoomState
ROOM_STATES = [RoomState.OPEN, RoomState.FULL, RoomState.RESOLVED]

# #[error_code] enum of the program, numbered from Anchor's custom base
PROGRAM_ERRORS = {
    6000: RejectionCode.ALREADY_INITIALIZED,
    6001: RejectionCode.REGISTRY_NOT_FOUND,
    6002: RejectionCode.STALE_COUNTER,
    6003: RejectionCode.ROOM_NOT_FOUND,
    6004: RejectionCode.ROOM_NOT_OPEN,
    6005: RejectionCode.ALREADY_JOINED,
    6006: RejectionCode.ALREADY_RESOLVED,
    6007: RejectionCode.WINNER_NOT_A_PARTICIPANT,
}

ACCOUNT_IN_USE = 0
INSTRUCTION_FALLBACK_NOT_FOUND = 101
INSTRUCTION_DID_NOT_DESERIALIZE = 102
CONSTRAINT_SEEDS = 2006
ACCOUNT_NOT_INITIALIZED = 3012

# Framework and system errors whose meaning depends on the instruction
FRAMEWORK_ERRORS = {
    ACCOUNT_IN_USE: {
        "initialize": RejectionCode.ALREADY_INITIALIZED,
        "create_room": RejectionCode.STALE_COUNTER,
    },
    CONSTRAINT_SEEDS: {
        "create_room": RejectionCode.STALE_COUNTER,
    },
    ACCOUNT_NOT_INITIALIZED: {
        "create_room": RejectionCode.REGISTRY_NOT_FOUND,
        "join_room": RejectionCode.ROOM_NOT_FOUND,
        "end_game": RejectionCode.ROOM_NOT_FOUND,
    },
}


def discriminator(namespace: str, name: str) -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:DISCRIMINATOR_LENGTH]


REGISTRY_DISCRIMINATOR = discriminator("account", "GlobalState")
ROOM_DISCRIMINATOR = discriminator("account", "Room")


def rejection_code(instruction: str, error_code: int) -> str:
    """Translate a custom instruction error into a rejection code string."""
    if error_code in PROGRAM_ERRORS:
        return PROGRAM_ERRORS[error_code].value
    if error_code in (INSTRUCTION_FALLBACK_NOT_FOUND, INSTRUCTION_DID_NOT_DESERIALIZE):
        return RejectionCode.INVALID_INSTRUCTION.value
    by_instruction = FRAMEWORK_ERRORS.get(error_code, {})
    if instruction in by_instruction:
        return by_instruction[instruction].value
    return f"program_error_{error_code}"


# ==================== Accounts ====================

class _Reader:

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, fmt: str):
        size = struct.calcsize(fmt)
        try:
            value = struct.unpack_from(fmt, self.data, self.offset)[0]
        except struct.error as e:
            raise LedgerError(f"Truncated account data at byte {self.offset}") from e
        self.offset += size
        return value

    def pubkey(self) -> Pubkey:
        end = self.offset + 32
        if end > len(self.data):
            raise LedgerError(f"Truncated account data at byte {self.offset}")
        key = Pubkey.from_bytes(self.data[self.offset:end])
        self.offset = end
        return key


def decode_account(data: bytes) -> dict:
    """Decode a registry or room account into its dict form."""
    data = bytes(data)
    kind = data[:DISCRIMINATOR_LENGTH]
    reader = _Reader(data)
    reader.offset = DISCRIMINATOR_LENGTH

    if kind == REGISTRY_DISCRIMINATOR:
        return {
            "total_rooms": reader.take("<Q"),
            "authority": str(reader.pubkey()),
        }

    if kind == ROOM_DISCRIMINATOR:
        room = {
            "room_id": reader.take("<Q"),
            "creator": str(reader.pubkey()),
            "staking_amount": reader.take("<Q"),
        }
        room["players"] = [str(reader.pubkey()) for _ in range(reader.take("<I"))]
        room["capacity"] = reader.take("<I")

        variant = reader.take("<B")
        if variant >= len(ROOM_STATES):
            raise LedgerError(f"Unknown room state variant {variant}")
        room["state"] = ROOM_STATES[variant].value
        room["creation_time"] = reader.take("<q")

        winner = reader.pubkey()
        room["winner"] = None if winner == Pubkey.default() else str(winner)
        return room

    raise LedgerError(f"Unknown account discriminator {kind.hex()}")


# ==================== Instructions ====================

def _meta(address, signer: bool = False, writable: bool = False) -> AccountMeta:
    pubkey = address if isinstance(address, Pubkey) else to_pubkey(address)
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=writable)


def _user_meta(address: str, payer: Pubkey) -> AccountMeta:
    pubkey = to_pubkey(address)
    if pubkey == payer:
        return _meta(pubkey, signer=True, writable=True)
    return _meta(pubkey)


def build_instruction(request: TransitionRequest, deriver: AddressDeriver, payer: Pubkey) -> Instruction:
    """Encode a transition as a program instruction paid for and signed by ``payer``."""
    accounts = request.accounts
    args = request.args
    system = _meta(SYSTEM_PROGRAM_ID)

    try:
        if request.instruction == "initialize":
            _, bump = deriver.find(AddressKind.REGISTRY)
            data = struct.pack("<B", bump)
            metas = [
                _meta(accounts["registry"], writable=True),
                _meta(payer, signer=True, writable=True),
                system,
            ]
        elif request.instruction == "create_room":
            data = struct.pack(
                "<QQQI?q",
                args["room_id"],
                args["expected_total_rooms"],
                args["staking_amount"],
                args["capacity"],
                args["creator_joins"],
                args["creation_time"],
            )
            metas = [
                _meta(accounts["room"], writable=True),
                _meta(accounts["registry"], writable=True),
                _user_meta(args["creator"], payer),
                _meta(payer, signer=True, writable=True),
                system,
            ]
        elif request.instruction == "join_room":
            data = struct.pack("<Q", args["room_id"])
            metas = [
                _meta(accounts["room"], writable=True),
                _user_meta(args["player"], payer),
                _meta(payer, signer=True, writable=True),
                system,
            ]
        elif request.instruction == "end_game":
            data = struct.pack("<Q", args["room_id"]) + bytes(to_pubkey(args["winner"]))
            metas = [
                _meta(accounts["room"], writable=True),
                _user_meta(args["winner"], payer),
                _meta(payer, signer=True, writable=True),
                system,
            ]
        else:
            raise LedgerError(f"Unknown instruction '{request.instruction}'")
    except (KeyError, ValueError, struct.error) as e:
        raise LedgerError(f"Cannot encode {request.instruction}: {e}") from e

    return Instruction(
        program_id=deriver.program,
        data=discriminator("global", request.instruction) + data,
        accounts=metas,
    )
