#!/usr/bin/env python3
"""
TransactChain Entry Point

Starts the FastAPI server with the ledger core.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from transactchain.api import run_server
from transactchain.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting TransactChain ledger...")
    print(f"Storage backend: {config.storage_backend}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down TransactChain...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
