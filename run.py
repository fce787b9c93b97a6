#!/usr/bin/env python3
"""
Installment Book Entry Point

Starts the FastAPI server for the collection back office.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from installment_book.api import run_server
from installment_book.config import get_config
from installment_book.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("📒 Starting Installment Book...")
    print(f"💾 Storage: {config.storage_backend} ({config.database_path})")
    print(f"🔒 Audit trail {'active' if config.enable_audit_logging else 'disabled'}")
    print("💰 All amounts use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False  # Set to True for development
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Installment Book...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
