"""Logging configuration for the planner server.

The server speaks MCP over stdio, so every log line goes to stderr and stdout
stays reserved for the protocol.
"""

import logging
import sys

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_level: str = "INFO", stream=None) -> None:
    """Configure the root logger.

    Sets up:
    - Root logger with the requested level
    - kat_planner logger at the same level
    - A single stderr handler with the structured format

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream (defaults to sys.stderr)
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    level = level_map.get(log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(handler)

    logging.getLogger("kat_planner").setLevel(level)

    # The MCP SDK logs every request at INFO
    if level > logging.DEBUG:
        logging.getLogger("mcp").setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={log_level.upper()}")
