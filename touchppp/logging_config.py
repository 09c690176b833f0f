"""Logging configuration for TouchPPP."""

import logging
import logging.handlers
import sys
from typing import Optional

# -q picks the first entry; -v, -vv and -vvv pick WARNING, INFO and DEBUG.
VERBOSITY_LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]

# Shown in the peer field of records not tied to a device connection.
NO_PEER = "-"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s <%(peer)s>: %(message)s"
SYSLOG_FORMAT = "touchppp[%(process)d]: [%(levelname)s] <%(peer)s> %(message)s"


class PeerFilter(logging.Filter):
    """Give every record a ``peer`` attribute so the formats can show it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "peer"):
            record.peer = NO_PEER
        return True


class PeerAdapter(logging.LoggerAdapter):
    """
    Logger for one device connection.

    Records carry the device address in their ``peer`` attribute, so every
    line of a session can be picked out of a shared log.
    """

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("peer", self.extra["peer"])
        return msg, kwargs


def peer_logger(name: str, peer: str) -> PeerAdapter:
    """Return the logger ``name`` tagged with a device address."""
    return PeerAdapter(logging.getLogger(name), {"peer": peer or NO_PEER})


def level_for_verbosity(verbose: int, quiet: bool = False) -> Optional[str]:
    """
    Map -v/-q flags to a log level name.

    Returns None when neither flag was given, so the configured level is kept.
    """
    if quiet:
        return VERBOSITY_LEVELS[0]
    if not verbose:
        return None
    return VERBOSITY_LEVELS[min(verbose + 1, len(VERBOSITY_LEVELS) - 1)]


def _add_handler(root_logger: logging.Logger, handler: logging.Handler, fmt: str, level: int) -> None:
    handler.setLevel(level)
    handler.addFilter(PeerFilter())
    handler.setFormatter(logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)


def setup_logging(log_target: str = "syslog", level: str = "INFO", console: bool = False) -> None:
    """
    Configure logging to syslog or file, and optionally console.

    Every line names the device it concerns (``<ip:port>``), or ``<->`` for
    listener-wide messages. The asyncio logger is held at WARNING unless
    DEBUG is asked for, since it reports every dropped device socket.

    Args:
        log_target: "syslog" for system syslog, "console" for stdout only, or a
            file path for file logging.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        console: If True, also log to console (stdout).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    logging.getLogger("asyncio").setLevel(logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING)

    if log_target == "syslog":
        handler = logging.handlers.SysLogHandler(
            address="/dev/log", facility=logging.handlers.SysLogHandler.LOG_DAEMON
        )
        _add_handler(root_logger, handler, SYSLOG_FORMAT, log_level)
    elif log_target == "console":
        console = True
    else:
        _add_handler(root_logger, logging.FileHandler(log_target), LOG_FORMAT, log_level)

    if console:
        _add_handler(root_logger, logging.StreamHandler(sys.stdout), LOG_FORMAT, log_level)

    logging.info(f"Logging initialized: level={level}, target={log_target}")
