"""Command-line entry point: ``python -m callscribe`` or ``callscribe``."""

import argparse
import os
import sys

import uvicorn
from dotenv import load_dotenv

from .app import create_app
from .config import DEFAULT_CONFIG_PATH, load_config, validate_production_config
from .logging_config import configure_logging, get_logger

logger = get_logger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="callscribe", description="Call event ingestion and summary service")
    parser.add_argument("--config", default=os.getenv("CALLSCRIBE_CONFIG", DEFAULT_CONFIG_PATH))
    parser.add_argument("--host", default=os.getenv("CALLSCRIBE_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("CALLSCRIBE_PORT", "8080")))
    args = parser.parse_args(argv)

    load_dotenv()
    config = load_config(args.config)
    configure_logging(log_level=config.logging.level)

    errors, warnings = validate_production_config(config)
    if errors:
        logger.error("Configuration validation failed", errors=errors, warnings=warnings)
        return 1
    if warnings:
        logger.warning("Configuration warnings", warnings=warnings)
    logger.info("Configuration validation passed", config_path=args.config)

    uvicorn.run(create_app(config), host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
