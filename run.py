#!/usr/bin/env python3
"""
Account Ledger Service Entry Point

Starts the FastAPI server with the account ledger.
"""

import sys

from account_ledger.api import run_server
from account_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Account Ledger Service...")
    print(f"💾 Storage backend: {config.storage_backend}")
    print("💰 All balances use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=config.api_reload
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Account Ledger Service...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
