from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
import json


class EventType(str, Enum):
    # Registry lifecycle
    REGISTRY_INITIALIZED = "registry.initialized"

    # Room lifecycle
    ROOM_CREATED = "room.created"
    PLAYER_JOINED = "room.player_joined"
    ROOM_FULL = "room.full"
    ROOM_RESOLVED = "room.resolved"


@dataclass
class Event:
    type: EventType
    room_id: int = None
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "room_id": self.room_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            room_id=data.get("room_id"),
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def registry_initialized_event(registry_address: str, authority: str, tx_id: str) -> Event:
    return Event(
        type=EventType.REGISTRY_INITIALIZED,
        data={
            "registry": registry_address,
            "authority": authority,
            "tx_id": tx_id
        }
    )


def room_created_event(room_id: int, creator: str, staking_amount: int, tx_id: str) -> Event:
    return Event(
        type=EventType.ROOM_CREATED,
        room_id=room_id,
        data={
            "creator": creator,
            "staking_amount": staking_amount,
            "tx_id": tx_id
        }
    )


def player_joined_event(room_id: int, player: str, players_count: int, tx_id: str) -> Event:
    return Event(
        type=EventType.PLAYER_JOINED,
        room_id=room_id,
        data={
            "player": player,
            "players_count": players_count,
            "tx_id": tx_id
        }
    )


def room_full_event(room_id: int, players: list) -> Event:
    return Event(
        type=EventType.ROOM_FULL,
        room_id=room_id,
        data={"players": players}
    )


def room_resolved_event(room_id: int, winner: str, staking_amount: int, tx_id: str) -> Event:
    return Event(
        type=EventType.ROOM_RESOLVED,
        room_id=room_id,
        data={
            "winner": winner,
            "staking_amount": staking_amount,
            "tx_id": tx_id
        }
    )
