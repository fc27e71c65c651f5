#!/usr/bin/env python3
"""
SACCO Ledger Entry Point

Starts the FastAPI server with the configured storage backend.
"""

import sys

import uvicorn

from sacco_ledger.api import create_app
from sacco_ledger.config import get_config
from sacco_ledger.logging_config import setup_logging


def main():
    config = get_config()
    logger = setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )
    logger.info(f"Starting SACCO ledger API on {config.api_host}:{config.api_port}")

    try:
        uvicorn.run(
            create_app(),
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        logger.info("Shutting down SACCO ledger API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
