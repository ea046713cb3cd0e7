#!/usr/bin/env python
"""Main entry point for the Eaiser MCP server."""
import argparse
import logging
import os
import sys
from pathlib import Path

from eaiser.config import config
from eaiser.models.db_models import init_db
from eaiser.observability import configure_logging
from eaiser.server.mcp_server import EaiserMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Eaiser MCP Server")
    parser.add_argument(
        "--base-dir",
        help="Directory holding the database, PDFs, images and settings file",
        type=str,
        default=os.environ.get("EAISER_BASE_DIR")
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("EAISER_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("EAISER_LOG_LEVEL", "INFO")
    )
    parser.add_argument(
        "--disable-scripts",
        help="Refuse to run script notes",
        action="store_true",
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.base_dir:
        config.base_dir = Path(args.base_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.disable_scripts:
        config.scripts_enabled = False


def main(argv=None):
    """Run the Eaiser MCP server."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except Exception as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db(config.get_db_url())
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        logger.info("Starting Eaiser MCP server")
        server = EaiserMcpServer(config, engine=engine)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
