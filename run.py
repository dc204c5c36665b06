#!/usr/bin/env python3
"""
BBSE Bank Entry Point

Starts the FastAPI server with a freshly deployed (or reattached) bank and
credit ledger. Host, port, storage and clock come from BBSE_* environment
variables.
"""

import sys

from bbse_bank.api import run_server
from bbse_bank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting BBSE Bank...")
    print(f"📈 Yearly return rate: {config.yearly_return_rate}%")
    print("🔒 Audit trail active")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down BBSE Bank...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
