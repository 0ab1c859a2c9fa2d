import os
import logging
from flask import Flask, jsonify

from shared.addressing import AddressDeriver
from shared.pubsub import EventPublisher
from .config import config
from .exceptions import RoomGatewayError
from .ledger_client import LedgerClient
from .memory_ledger import InMemoryLedger
from .rpc_ledger import RpcLedgerClient, load_keypair
from .room_service import RoomLifecycleService

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the room gateway."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )

    # Constructed once per process and shared by all requests
    deriver = AddressDeriver(app.config['LEDGER_PROGRAM_ID'])
    ledger = build_ledger(app.config, deriver)
    publisher = build_publisher(app.config)

    authority = app.config['LEDGER_AUTHORITY']
    if isinstance(ledger, RpcLedgerClient):
        # Registry and resolution transitions are signed by the fee payer
        authority = ledger.authority

    app.ledger = ledger
    app.publisher = publisher
    app.rooms = RoomLifecycleService(
        ledger=ledger,
        deriver=deriver,
        authority=authority,
        capacity=app.config['ROOM_CAPACITY'],
        creator_joins=app.config['CREATOR_JOINS'],
        default_staking_amount=app.config['DEFAULT_STAKING_AMOUNT'],
        create_max_attempts=app.config['CREATE_ROOM_MAX_ATTEMPTS'],
        operation_timeout=app.config['OPERATION_TIMEOUT'],
        publisher=publisher,
    )

    register_error_handlers(app)
    register_health_routes(app)

    from .routes import rooms
    app.register_blueprint(rooms.bp)

    logger.info(
        f"Room gateway ready ({config_name}, ledger={app.config['LEDGER_BACKEND']}, "
        f"program={app.config['LEDGER_PROGRAM_ID']})"
    )
    return app


def build_ledger(settings, deriver: AddressDeriver) -> LedgerClient:
    retry_settings = dict(
        max_attempts=settings['LEDGER_MAX_ATTEMPTS'],
        backoff_base=settings['LEDGER_BACKOFF_BASE'],
        backoff_max=settings['LEDGER_BACKOFF_MAX'],
        poll_interval=settings['LEDGER_POLL_INTERVAL'],
        finality_timeout=settings['LEDGER_FINALITY_TIMEOUT'],
    )

    backend = settings['LEDGER_BACKEND']
    if backend == 'memory':
        return InMemoryLedger(deriver, **retry_settings)
    if backend == 'rpc':
        return RpcLedgerClient(
            rpc_url=settings['LEDGER_RPC_URL'],
            program_id=settings['LEDGER_PROGRAM_ID'],
            payer=load_keypair(settings['LEDGER_KEYPAIR']),
            commitment=settings['LEDGER_COMMITMENT'],
            request_timeout=settings['LEDGER_REQUEST_TIMEOUT'],
            **retry_settings
        )
    raise ValueError(f"Unknown LEDGER_BACKEND: {backend}")


def build_publisher(settings):
    redis_url = settings.get('REDIS_URL')
    if not redis_url:
        return None
    return EventPublisher(redis_url=redis_url)


def register_error_handlers(app: Flask):

    @app.errorhandler(RoomGatewayError)
    def handle_gateway_error(error: RoomGatewayError):
        return jsonify(error.to_dict()), error.http_status


def register_health_routes(app: Flask):

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        ledger_ok = app.ledger.ping()
        events_ok = app.publisher.ping() if app.publisher else None

        status = 'healthy' if ledger_ok else 'unhealthy'
        code = 200 if ledger_ok else 503

        return jsonify({
            'status': status,
            'ledger': 'connected' if ledger_ok else 'disconnected',
            'events': 'disabled' if events_ok is None else ('connected' if events_ok else 'disconnected')
        }), code
