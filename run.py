#!/usr/bin/env python3
"""
Cooperative Banking Entry Point

Starts the FastAPI server with the cooperative banking core.
"""

import sys

import uvicorn

from coop_banking.config import get_config
from coop_banking.logging_config import setup_logging


def run_server(host: str, port: int, workers: int = 1, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "coop_banking.api:app",
        host=host,
        port=port,
        workers=workers,
        reload=debug,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )

    print("🏦 Starting Cooperative Banking Core...")
    print(f"💾 Storage backend: {config.storage_backend}")
    print(f"🔒 Audit trail {'active' if config.enable_audit_logging else 'disabled'}")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, workers=config.api_workers)
    except KeyboardInterrupt:
        print("\n👋 Shutting down Cooperative Banking Core...")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
