from enum import Enum
from typing import Sequence, Tuple

import base58
from solders.pubkey import Pubkey


ADDRESS_LENGTH = 32
MAX_ROOM_ID = 2 ** 64 - 1


class AddressKind(str, Enum):
    REGISTRY = "registry"
    ROOM = "room"


SEEDS = {
    AddressKind.REGISTRY: b"global-state",
    AddressKind.ROOM: b"room",
}


def is_valid_identity(value) -> bool:
    """True if value is a base58 string decoding to a 32-byte public key."""
    if not isinstance(value, str) or not value:
        return False
    try:
        raw = base58.b58decode(value)
    except ValueError:
        return False
    return len(raw) == ADDRESS_LENGTH


def to_pubkey(value: str) -> Pubkey:
    if not is_valid_identity(value):
        raise ValueError(f"Invalid public key: {value!r}")
    return Pubkey.from_string(value)


def encode_room_id(room_id: int) -> bytes:
    if isinstance(room_id, bool) or not isinstance(room_id, int):
        raise ValueError(f"Room id must be an integer, got {room_id!r}")
    if room_id < 0 or room_id > MAX_ROOM_ID:
        raise ValueError(f"Room id {room_id} does not fit in an unsigned 64-bit integer")
    return room_id.to_bytes(8, "little")


class AddressDeriver:
    """
    Maps logical entities to the program-derived addresses of their accounts.

    Registry: seeds ``[b"global-state"]``. Room: seeds ``[b"room", u64 LE id]``.
    Addresses are found with the same bump search the program uses, so they
    match the accounts it creates.
    """

    def __init__(self, program_id: str):
        self.program = to_pubkey(program_id)
        self.program_id = program_id

    def seeds(self, kind: AddressKind, key_parts: Sequence = ()) -> list:
        kind = AddressKind(kind)
        seeds = [SEEDS[kind]]

        if kind == AddressKind.REGISTRY:
            if key_parts:
                raise ValueError("Registry address takes no key parts")
        elif kind == AddressKind.ROOM:
            if len(key_parts) != 1:
                raise ValueError(f"Room address takes exactly one key part, got {len(key_parts)}")
            seeds.append(encode_room_id(key_parts[0]))
        return seeds

    def find(self, kind: AddressKind, key_parts: Sequence = ()) -> Tuple[str, int]:
        """Return the address and its bump seed."""
        address, bump = Pubkey.find_program_address(self.seeds(kind, key_parts), self.program)
        return str(address), bump

    def derive(self, kind: AddressKind, key_parts: Sequence = ()) -> str:
        return self.find(kind, key_parts)[0]

    def registry_address(self) -> str:
        return self.derive(AddressKind.REGISTRY)

    def room_address(self, room_id: int) -> str:
        return self.derive(AddressKind.ROOM, (room_id,))
