#!/usr/bin/env python3
"""
TouchPPP - Hayes modem emulator for PPP over TCP

Lets a device that can only dial a modem reach a PPP server over TCP.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from touchppp.config import DEFAULT_IP, load_config, parse_address
from touchppp.logging_config import level_for_verbosity, setup_logging
from touchppp.metrics import Metrics
from touchppp.server import serve

logger = logging.getLogger(__name__)


def _get_version():
    """Get version from importlib.metadata, falling back to pyproject.toml."""
    try:
        from importlib.metadata import version as pkg_version
        return pkg_version("touchppp")
    except Exception:
        pass
    try:
        import re
        pyproject = Path(__file__).parent / "pyproject.toml"
        text = pyproject.read_text()
        match = re.search(r'^version\s*=\s*"([^"]+)"', text, re.MULTILINE)
        if match:
            return match.group(1)
    except Exception:
        pass
    return "unknown"


__version__ = _get_version()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="touchppp",
        description="TouchPPP - Hayes modem emulator that dials a PPP server over TCP",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-l", "--listen", metavar="[HOST:]PORT",
        help=f"Address to listen on for the device ({DEFAULT_IP} if only a port is given)",
    )
    backend = parser.add_mutually_exclusive_group()
    backend.add_argument("-c", "--connect", metavar="HOST:PORT", help="PPP server to dial")
    backend.add_argument("-e", "--exec", metavar="COMMAND", help="PPP program to run instead, e.g. '/usr/sbin/pppd notty'")
    parser.add_argument("--config", help="Path to YAML configuration file")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v, -vv, -vvv)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log critical errors")
    parser.add_argument("--debug", action="store_true", help="Show log output on console")
    return parser


def main_loop(args: argparse.Namespace) -> int:
    """
    Load configuration, set up logging and run the listener.

    Returns:
        Process exit status.
    """
    # Handle SIGTERM (from systemd stop) the same as SIGINT
    def _handle_sigterm(signum, frame):
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _handle_sigterm)

    config = load_config(args.config)
    config = config.with_overrides(
        listen=parse_address(args.listen, default_host=DEFAULT_IP) if args.listen else None,
        backend=parse_address(args.connect) if args.connect else None,
        exec_command=args.exec,
        log_level=level_for_verbosity(args.verbose, args.quiet),
    )
    if args.connect:
        config = config.with_overrides(exec_command="")

    log_target = config.log_target if args.config else "console"
    setup_logging(log_target=log_target, level=config.log_level, console=args.debug)
    logger.info(f"TouchPPP v{__version__} starting...")

    metrics = Metrics(
        url=config.metrics_url,
        user=config.metrics_user,
        api_key=config.metrics_api_key,
        push_interval=config.metrics_push_interval,
    )

    try:
        asyncio.run(serve(config, metrics=metrics))
    except KeyboardInterrupt:
        logger.info("TouchPPP shutting down.")
    except OSError as e:
        logger.critical(f"Cannot listen on {config.listen}: {e}")
        return 1
    finally:
        metrics.stop()
    return 0


def cli(argv: Optional[List[str]] = None):
    """CLI entry point for the touchppp console script."""
    args = build_parser().parse_args(argv)
    try:
        status = main_loop(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"touchppp: {e}", file=sys.stderr)
        status = 2
    sys.exit(status)


if __name__ == "__main__":
    cli()
