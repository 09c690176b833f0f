"""Configuration loading and dataclasses for TouchPPP."""

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_IP = "127.0.0.1"
DEFAULT_LISTEN_PORT = 1122
DEFAULT_BACKEND_PORT = 2323

# "direct" dials on ATD<number>. "webtv" follows the two-step WebTV dial.
DIAL_MODE_DIRECT = "direct"
DIAL_MODE_WEBTV = "webtv"
DIAL_MODES = (DIAL_MODE_DIRECT, DIAL_MODE_WEBTV)

_HOST_PORT = re.compile(r"^(?:\[(?P<ipv6>[0-9A-Fa-f:.]+)\]|(?P<host>[A-Za-z0-9._-]+)):(?P<port>\d{1,5})$")


@dataclass(frozen=True)
class Address:
    """A TCP host and port."""
    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def _check_port(port: int, text: str) -> int:
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in address: {text!r}")
    return port


def parse_address(text: str, default_host: Optional[str] = None) -> Address:
    """
    Parse a HOST:PORT string.

    Args:
        text: Address such as "ppp.example.net:2323" or "[::1]:2323".
        default_host: If given, a bare port ("6400") is accepted and bound to
            this host.

    Returns:
        Parsed Address.

    Raises:
        ValueError: If the text is not a valid address.
    """
    text = str(text).strip()
    if default_host is not None and text.isdigit():
        return Address(default_host, _check_port(int(text), text))

    match = _HOST_PORT.match(text)
    if not match:
        raise ValueError(f"Invalid address (expected HOST:PORT): {text!r}")
    host = match.group("ipv6") or match.group("host")
    return Address(host, _check_port(int(match.group("port")), text))


def try_parse_address(text: str) -> Optional[Address]:
    """Parse a HOST:PORT string, returning None if it is not one."""
    try:
        return parse_address(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class ModemConfig:
    """Process-wide settings. Read-only once the listener is started."""
    listen: Address = Address(DEFAULT_IP, DEFAULT_LISTEN_PORT)
    backend: Address = Address(DEFAULT_IP, DEFAULT_BACKEND_PORT)
    exec_command: str = ""
    connect_timeout: float = 10.0
    idle_timeout: float = 0
    max_line_length: int = 255
    read_chunk: int = 4096
    max_sessions: int = 0
    echo: bool = True
    verbose: bool = True
    identity: str = "TouchPPP"
    connect_rate: int = 0
    carrier_rate: int = 0
    escape_detection: bool = True
    dial_mode: str = DIAL_MODE_DIRECT
    wince_delay: float = 1.0
    phonebook: Dict[str, Address] = field(default_factory=dict)
    log_target: str = "syslog"
    log_level: str = "INFO"
    debug_modem: bool = False
    metrics_url: str = ""
    metrics_user: str = ""
    metrics_api_key: str = ""
    metrics_push_interval: int = 60

    def __post_init__(self):
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.idle_timeout < 0:
            raise ValueError("idle_timeout must not be negative")
        if self.max_line_length <= 0:
            raise ValueError("max_line_length must be positive")
        if self.read_chunk <= 0:
            raise ValueError("read_chunk must be positive")
        if self.dial_mode not in DIAL_MODES:
            raise ValueError(f"dial_mode must be one of: {', '.join(DIAL_MODES)}")
        if self.wince_delay < 0:
            raise ValueError("wince_delay must not be negative")
        if self.max_sessions < 0:
            raise ValueError("max_sessions must not be negative")

    def with_overrides(self, **overrides: Any) -> "ModemConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


def _normalize_number(number: Any) -> str:
    """Reduce a phone number to its digits so "555-1212" matches "5551212"."""
    return re.sub(r"[^0-9*#]", "", str(number))


def _parse_phonebook(data: Optional[Dict[Any, Any]]) -> Dict[str, Address]:
    """Parse the number -> HOST:PORT phonebook from YAML data."""
    phonebook = {}
    for number, target in (data or {}).items():
        key = _normalize_number(number)
        if not key:
            raise ValueError(f"Phonebook entry has no digits: {number!r}")
        phonebook[key] = parse_address(target)
    return phonebook


def _parse_modem_config(data: dict) -> ModemConfig:
    """Parse the modem section from YAML data."""
    defaults = ModemConfig()
    return ModemConfig(
        listen=parse_address(data["listen"], default_host=DEFAULT_IP) if "listen" in data else defaults.listen,
        backend=parse_address(data["connect"]) if "connect" in data else defaults.backend,
        exec_command=data.get("exec", "") or "",
        connect_timeout=float(data.get("connect_timeout", defaults.connect_timeout)),
        idle_timeout=float(data.get("idle_timeout", defaults.idle_timeout)),
        max_line_length=int(data.get("max_line_length", defaults.max_line_length)),
        read_chunk=int(data.get("read_chunk", defaults.read_chunk)),
        max_sessions=int(data.get("max_sessions", defaults.max_sessions)),
        echo=bool(data.get("echo", defaults.echo)),
        verbose=bool(data.get("verbose", defaults.verbose)),
        identity=str(data.get("identity", defaults.identity)),
        connect_rate=int(data.get("connect_rate", defaults.connect_rate)),
        carrier_rate=int(data.get("carrier_rate", defaults.carrier_rate)),
        escape_detection=bool(data.get("escape_detection", defaults.escape_detection)),
        dial_mode=str(data.get("dial_mode", defaults.dial_mode)).lower(),
        wince_delay=float(data.get("wince_delay", defaults.wince_delay)),
        phonebook=_parse_phonebook(data.get("phonebook")),
        log_target=data.get("log_target", defaults.log_target),
        log_level=data.get("log_level", defaults.log_level),
        debug_modem=bool(data.get("debug_modem", defaults.debug_modem)),
        metrics_url=data.get("metrics_url", ""),
        metrics_user=data.get("metrics_user", ""),
        metrics_api_key=data.get("metrics_api_key", ""),
        metrics_push_interval=int(data.get("metrics_push_interval", defaults.metrics_push_interval)),
    )


def lookup_number(config: ModemConfig, number: str) -> Optional[Address]:
    """Find a dialed number in the phonebook."""
    key = _normalize_number(number)
    if not key:
        return None
    return config.phonebook.get(key)


def load_config(config_path: Optional[str] = None) -> ModemConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML config file, or None for built-in defaults.

    Returns:
        ModemConfig with the file's settings applied over the defaults.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        yaml.YAMLError: If config file is invalid YAML.
        ValueError: If a setting is invalid.
    """
    if config_path is None:
        return ModemConfig()

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    config = _parse_modem_config(data.get("modem") or {})
    logger.info(f"Loaded config from {config_path} with {len(config.phonebook)} phonebook entries")
    return config
