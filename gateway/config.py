import os
import hashlib

import base58

# Deterministic key for local development; production sets LEDGER_AUTHORITY
DEV_AUTHORITY = base58.b58encode(hashlib.sha256(b"room-gateway-dev-authority").digest()).decode("ascii")


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Ledger
    LEDGER_BACKEND = os.getenv('LEDGER_BACKEND', 'memory')
    LEDGER_RPC_URL = os.getenv('LEDGER_RPC_URL', 'http://localhost:8899')
    LEDGER_PROGRAM_ID = os.getenv('LEDGER_PROGRAM_ID', '2gs8GZp9xk1okTQrd1TuzaTycmtVaRffnXu8MQSfmeLW')
    # Authority recorded by the in-memory ledger; the rpc backend uses the keypair's public key
    LEDGER_AUTHORITY = os.getenv('LEDGER_AUTHORITY', DEV_AUTHORITY)
    # Fee payer for the rpc backend: keypair JSON file or base58 secret. Unset generates one.
    LEDGER_KEYPAIR = os.getenv('LEDGER_KEYPAIR', '')
    LEDGER_COMMITMENT = os.getenv('LEDGER_COMMITMENT', 'finalized')
    LEDGER_REQUEST_TIMEOUT = float(os.getenv('LEDGER_REQUEST_TIMEOUT', '10'))
    LEDGER_MAX_ATTEMPTS = int(os.getenv('LEDGER_MAX_ATTEMPTS', '5'))
    LEDGER_BACKOFF_BASE = float(os.getenv('LEDGER_BACKOFF_BASE', '0.2'))
    LEDGER_BACKOFF_MAX = float(os.getenv('LEDGER_BACKOFF_MAX', '5'))
    LEDGER_POLL_INTERVAL = float(os.getenv('LEDGER_POLL_INTERVAL', '0.5'))
    LEDGER_FINALITY_TIMEOUT = float(os.getenv('LEDGER_FINALITY_TIMEOUT', '30'))

    # Room lifecycle
    CREATE_ROOM_MAX_ATTEMPTS = int(os.getenv('CREATE_ROOM_MAX_ATTEMPTS', '10'))
    ROOM_CAPACITY = int(os.getenv('ROOM_CAPACITY', '2'))
    CREATOR_JOINS = os.getenv('CREATOR_JOINS', 'true').lower() == 'true'
    DEFAULT_STAKING_AMOUNT = int(os.getenv('DEFAULT_STAKING_AMOUNT', '0'))
    OPERATION_TIMEOUT = float(os.getenv('OPERATION_TIMEOUT', '60'))

    # Redis (empty disables event publishing)
    REDIS_URL = os.getenv('REDIS_URL', '')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    DEBUG = False
    LEDGER_BACKEND = os.getenv('LEDGER_BACKEND', 'rpc')


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    LEDGER_BACKEND = 'memory'
    LEDGER_BACKOFF_BASE = 0.0
    CREATE_ROOM_MAX_ATTEMPTS = 50
    OPERATION_TIMEOUT = None
    REDIS_URL = ''


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
