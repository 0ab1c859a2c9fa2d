"""
Unit tests for lifecycle events and the Redis publisher.
"""
import json

import pytest
import redis

from shared.events import (
    Event,
    EventType,
    registry_initialized_event,
    room_created_event,
    player_joined_event,
    room_full_event,
    room_resolved_event,
)
from shared.pubsub import EventPublisher, GLOBAL_CHANNEL, EVENT_LOG_LIMIT


class TestEvent:

    def test_timestamp_default(self):
        event = Event(type=EventType.ROOM_FULL, room_id=1)
        assert event.timestamp.endswith("Z")
        assert event.data == {}

    def test_json_round_trip(self):
        event = room_created_event(3, "creator", 100, "tx")
        restored = Event.from_json(event.to_json())

        assert restored.type == EventType.ROOM_CREATED
        assert restored.room_id == 3
        assert restored.data == {"creator": "creator", "staking_amount": 100, "tx_id": "tx"}
        assert restored.timestamp == event.timestamp

    def test_unknown_type_kept_as_string(self):
        event = Event.from_dict({"type": "room.archived", "room_id": 1})
        assert event.type == "room.archived"
        assert event.to_dict()["type"] == "room.archived"


class TestEventFactories:

    def test_registry_event_has_no_room(self):
        event = registry_initialized_event("reg", "auth", "tx")
        assert event.room_id is None
        assert event.data["authority"] == "auth"

    def test_player_joined(self):
        event = player_joined_event(2, "bob", 2, "tx")
        assert event.to_dict()["type"] == "room.player_joined"
        assert event.data["players_count"] == 2

    def test_room_full(self):
        assert room_full_event(2, ["a", "b"]).data == {"players": ["a", "b"]}

    def test_room_resolved(self):
        event = room_resolved_event(2, "bob", 50, "tx")
        assert event.type == EventType.ROOM_RESOLVED
        assert event.data["winner"] == "bob"


class TestEventPublisher:

    def test_publish_room_event(self, mock_redis):
        publisher = EventPublisher(redis_client=mock_redis)
        event = room_created_event(7, "creator", 0, "tx")

        assert publisher.publish(event) is True

        payload = event.to_json()
        mock_redis.publish.assert_any_call("room:7:events", payload)
        mock_redis.publish.assert_any_call(GLOBAL_CHANNEL, payload)
        mock_redis.lpush.assert_called_once_with("room:7:event_log", payload)
        mock_redis.ltrim.assert_called_once_with("room:7:event_log", 0, EVENT_LOG_LIMIT - 1)

    def test_publish_registry_event_only_global(self, mock_redis):
        publisher = EventPublisher(redis_client=mock_redis)
        publisher.publish(registry_initialized_event("reg", "auth", "tx"))

        assert mock_redis.publish.call_count == 1
        assert mock_redis.publish.call_args.args[0] == GLOBAL_CHANNEL
        mock_redis.lpush.assert_not_called()

    def test_publish_failure_returns_false(self, mock_redis):
        mock_redis.publish.side_effect = redis.exceptions.ConnectionError("down")
        publisher = EventPublisher(redis_client=mock_redis)
        assert publisher.publish(room_full_event(1, [])) is False

    def test_get_recent_events(self, mock_redis):
        stored = room_resolved_event(4, "bob", 10, "tx")
        mock_redis.lrange.return_value = [stored.to_json()]
        publisher = EventPublisher(redis_client=mock_redis)

        events = publisher.get_recent_events(4, count=10)

        mock_redis.lrange.assert_called_once_with("room:4:event_log", 0, 9)
        assert events[0].type == EventType.ROOM_RESOLVED
        assert events[0].data["winner"] == "bob"

    @pytest.mark.parametrize("side_effect,expected", [
        (None, True),
        (redis.exceptions.ConnectionError("down"), False),
    ])
    def test_ping(self, mock_redis, side_effect, expected):
        mock_redis.ping.side_effect = side_effect
        assert EventPublisher(redis_client=mock_redis).ping() is expected

    def test_from_url(self, mocker):
        from_url = mocker.patch("shared.pubsub.redis.from_url")
        EventPublisher(redis_url="redis://cache:6379/2")

        assert from_url.call_args.args[0] == "redis://cache:6379/2"
        assert from_url.call_args.kwargs["decode_responses"] is True
        assert json.loads(json.dumps(from_url.call_args.kwargs)) == from_url.call_args.kwargs
