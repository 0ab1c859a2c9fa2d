#!/usr/bin/env python3
"""
Entry point for the Room Gateway.

Usage:
    python run.py                    # Run the gateway

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 3000)
    LEDGER_BACKEND: memory or rpc (default: memory)
    LEDGER_RPC_URL: JSON-RPC endpoint when LEDGER_BACKEND=rpc
    REDIS_URL: Redis for lifecycle events (unset disables them)
"""
import os


def run_gateway():
    """Run the room gateway service."""
    from gateway.app import create_app

    app = create_app()
    port = int(os.getenv('PORT', 3000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting Room Gateway on port {port}...")
    # Threaded: each request is an independent unit of work against the ledger
    app.run(host='0.0.0.0', port=port, debug=debug, threaded=True)


if __name__ == '__main__':
    run_gateway()
