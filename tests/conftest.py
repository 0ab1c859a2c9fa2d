"""
Pytest configuration and fixtures for room gateway tests.
"""
import os
import sys
import hashlib
import struct
import pytest
import base58

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from gateway.app import create_app
from gateway.memory_ledger import InMemoryLedger
from gateway.program_layout import REGISTRY_DISCRIMINATOR, ROOM_DISCRIMINATOR
from gateway.room_service import RoomLifecycleService
from shared.addressing import AddressDeriver


PROGRAM_ID = '2gs8GZp9xk1okTQrd1TuzaTycmtVaRffnXu8MQSfmeLW'


def identity_for(label: str) -> str:
    """Deterministic 32-byte base58 public key for a test participant."""
    return base58.b58encode(hashlib.sha256(label.encode()).digest()).decode('ascii')


@pytest.fixture
def make_identity():
    return identity_for


@pytest.fixture
def alice():
    return identity_for('alice')


@pytest.fixture
def bob():
    return identity_for('bob')


@pytest.fixture
def carol():
    return identity_for('carol')


@pytest.fixture
def dave():
    return identity_for('dave')


@pytest.fixture
def authority():
    return identity_for('authority')


@pytest.fixture
def deriver():
    return AddressDeriver(PROGRAM_ID)


@pytest.fixture
def ledger(deriver):
    """In-memory ledger with instant, non-sleeping retries."""
    return InMemoryLedger(deriver, max_attempts=4, backoff_base=0.0, jitter=0.0)


@pytest.fixture
def service(ledger, deriver, authority):
    """Lifecycle service over a fresh ledger with two-player rooms."""
    return RoomLifecycleService(
        ledger=ledger,
        deriver=deriver,
        authority=authority,
        capacity=2,
        creator_joins=True,
        create_max_attempts=50,
        sleep=lambda seconds: None,
        clock=lambda: 1700000000,
    )


@pytest.fixture
def initialized_service(service):
    service.initialize()
    return service


@pytest.fixture
def app():
    """Create application for testing, with a fresh in-memory ledger."""
    return create_app('testing')


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def mock_redis(mocker):
    """Mock Redis client for event publishing."""
    mock = mocker.MagicMock()
    mock.ping.return_value = True
    mock.lrange.return_value = []
    return mock


def encode_registry(total_rooms: int, authority: str) -> bytes:
    """Registry account bytes as the room program stores them."""
    return (
        REGISTRY_DISCRIMINATOR
        + struct.pack("<Q", total_rooms)
        + base58.b58decode(authority)
        + struct.pack("<B", 255)
    )


def encode_room(room_id, creator, players, capacity=2, state=0, staking_amount=0,
                creation_time=1700000000, winner=None) -> bytes:
    """Room account bytes; ``state`` is the enum variant index."""
    data = ROOM_DISCRIMINATOR + struct.pack("<Q", room_id) + base58.b58decode(creator)
    data += struct.pack("<QI", staking_amount, len(players))
    for player in players:
        data += base58.b58decode(player)
    data += struct.pack("<IBq", capacity, state, creation_time)
    data += base58.b58decode(winner) if winner else bytes(32)
    return data + struct.pack("<B", 254)


@pytest.fixture
def registry_account():
    return encode_registry


@pytest.fixture
def room_account():
    return encode_room
