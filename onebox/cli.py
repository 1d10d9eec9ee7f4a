"""
Command line entry point.

Loads ``.env`` into the process environment (account tuples are read from
there), configures logging and serves the API with uvicorn.
"""

import argparse
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

from onebox.config import EnvironmentType, get_settings
from onebox.utils import configure_logging

logger = logging.getLogger("onebox")


def parse_arguments(argv=None):
    """Parse command line arguments; unset options fall back to settings."""
    parser = argparse.ArgumentParser(description="Run the email onebox service")
    parser.add_argument("--host", type=str, default=None, help="Host to bind the server to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL setting)"
    )
    parser.add_argument(
        "--env",
        type=str,
        choices=[env.value for env in EnvironmentType],
        default=None,
        help="Environment to run in"
    )
    parser.add_argument("--env-file", type=str, default=".env", help="Dotenv file to load")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_arguments(argv)

    load_dotenv(args.env_file)
    if args.env:
        os.environ["ENVIRONMENT"] = args.env
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level

    settings = get_settings()
    log_file = os.path.join(settings.LOG_DIR, "onebox.log") if settings.LOG_DIR else None
    configure_logging(settings.LOG_LEVEL, log_file)

    host = args.host or settings.HOST
    port = args.port or settings.PORT
    logger.info(f"Starting email onebox on {host}:{port} ({settings.ENVIRONMENT.value})")

    try:
        uvicorn.run(
            "api.main:create_application",
            factory=True,
            host=host,
            port=port,
            reload=args.reload,
            log_level=settings.LOG_LEVEL.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.critical(f"Server failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
