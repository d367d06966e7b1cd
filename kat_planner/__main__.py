"""Command-line bootstrap for the kat-planner MCP server.

Usage:
    kat-planner
    kat-planner --session-file ./sessions.json --log-level DEBUG
    python -m kat_planner --config planner.yaml
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import yaml
from dotenv import load_dotenv

from kat_planner import __version__
from kat_planner.config import load_config
from kat_planner.server import run_server
from kat_planner.telemetry.config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kat-planner",
        description="Interactive planning workflow server (MCP over stdio)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (environment variables override it)",
    )
    parser.add_argument(
        "--session-file",
        type=Path,
        default=None,
        help="Path of the JSON session file (default: ~/.kat-planner-sessions.json)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Log level (logs go to stderr)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"kat-planner: invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    if args.session_file is not None:
        config = replace(config, session_file=args.session_file.expanduser())
    if args.log_level is not None:
        config = replace(config, log_level=args.log_level)

    setup_logging(config.log_level)
    run_server(config)


if __name__ == "__main__":
    main()
