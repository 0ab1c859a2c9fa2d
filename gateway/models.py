from dataclasses import dataclass, field
from typing import List, Optional

from shared.state_machine import RoomState


@dataclass
class RegistryState:
    address: str
    total_rooms: int
    authority: Optional[str] = None

    @classmethod
    def from_account(cls, address: str, data: dict) -> "RegistryState":
        return cls(
            address=address,
            total_rooms=int(data["total_rooms"]),
            authority=data.get("authority"),
        )

    def to_dict(self):
        return {
            'address': self.address,
            'totalRooms': str(self.total_rooms),
            'authority': self.authority,
        }


@dataclass
class RoomRecord:
    address: str
    room_id: int
    creator: str
    staking_amount: int
    players: List[str]
    capacity: int
    state: RoomState
    creation_time: int
    winner: Optional[str] = None

    @classmethod
    def from_account(cls, address: str, data: dict) -> "RoomRecord":
        return cls(
            address=address,
            room_id=int(data["room_id"]),
            creator=data["creator"],
            staking_amount=int(data["staking_amount"]),
            players=list(data["players"]),
            capacity=int(data["capacity"]),
            state=RoomState(data["state"]),
            creation_time=int(data["creation_time"]),
            winner=data.get("winner"),
        )

    def to_dict(self):
        # Integers are rendered as strings so 64-bit values survive JSON clients
        return {
            'creator': self.creator,
            'stakingAmount': str(self.staking_amount),
            'players': list(self.players),
            'state': self.state.value,
            'creationTime': str(self.creation_time),
            'winner': self.winner,
            'roomId': str(self.room_id),
            'capacity': self.capacity,
            'address': self.address,
        }


@dataclass
class OperationResult:
    """Confirmation returned by the mutating operations."""
    tx_id: str
    address: str
    room_id: Optional[int] = None
    details: dict = field(default_factory=dict)
