#!/usr/bin/env python3
"""
Escrow Ledger Entry Point

Starts the FastAPI server with the identity registry and campaign ledger.
"""

import sys

from escrow_ledger.config import get_config
from escrow_ledger.logging_config import setup_logging
from escrow_ledger.api import run_server


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, fmt=config.log_format, log_file=config.log_file)

    print("Starting Escrow Ledger...")
    print(f"Administrator: {config.admin_holder}")
    print(f"Storage: {config.database_url}")
    print(f"Amounts parsed in {config.currency}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False  # Set to True for development
        )
    except KeyboardInterrupt:
        print("\nShutting down Escrow Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
