"""Backend connections: a TCP PPP service or a locally spawned PPP program."""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Optional

from .config import Address, ModemConfig, lookup_number, try_parse_address
from .exceptions import BackendConnectError, ConnectFailure

logger = logging.getLogger(__name__)


@dataclass
class BackendLink:
    """An open backend: the stream pair the relay copies to and from."""
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    peer: str
    process: Optional[asyncio.subprocess.Process] = None
    closed: bool = False

    async def close(self) -> None:
        """Close the link. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        logger.debug(f"Closing backend {self.peer}")

        self.writer.close()
        if self.process is None:
            try:
                await self.writer.wait_closed()
            except OSError as e:
                logger.debug(f"Backend {self.peer} close error: {e}")
            return

        if self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.process.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning(f"PPP program {self.peer} ignored SIGTERM, killing it")
                self.process.kill()
                await self.process.wait()


class TcpConnector:
    """
    Opens TCP connections to the PPP service.

    The dial target picks the address: a HOST:PORT target is used as given,
    a phonebook number maps to its entry, and anything else goes to the
    default backend.
    """

    def __init__(self, config: ModemConfig):
        self.config = config

    def resolve(self, target: str) -> Address:
        """Work out which address a dial target refers to."""
        address = try_parse_address(target)
        if address is not None:
            return address
        address = lookup_number(self.config, target)
        if address is not None:
            return address
        return self.config.backend

    async def connect(self, target: str, timeout: Optional[float] = None) -> BackendLink:
        """
        Make a single connection attempt.

        Args:
            target: Dial target from the device (address, number, or empty).
            timeout: Seconds to wait; defaults to the configured connect timeout.

        Returns:
            BackendLink for the connected socket.

        Raises:
            BackendConnectError: On refusal, timeout, or any other socket error.
        """
        address = self.resolve(target)
        timeout = timeout or self.config.connect_timeout
        logger.info(f"Connecting to PPP backend {address} (timeout {timeout}s)")

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(address.host, address.port),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise BackendConnectError(ConnectFailure.TIMEOUT, str(address), f"no answer within {timeout}s")
        except ConnectionRefusedError as e:
            raise BackendConnectError(ConnectFailure.REFUSED, str(address), str(e))
        except OSError as e:
            raise BackendConnectError(ConnectFailure.OTHER, str(address), str(e))

        logger.info(f"Connected to PPP backend {address}")
        return BackendLink(reader=reader, writer=writer, peer=str(address))


class ExecConnector:
    """Spawns a local PPP program and talks to it over stdin/stdout."""

    def __init__(self, config: ModemConfig):
        self.config = config
        self.argv = shlex.split(config.exec_command)
        if not self.argv:
            raise ValueError("exec command is empty")

    async def connect(self, target: str, timeout: Optional[float] = None) -> BackendLink:
        """
        Launch the PPP program. The dial target is ignored.

        Raises:
            BackendConnectError: If the program cannot be started.
        """
        command = self.config.exec_command
        logger.info(f"Launching PPP program: {command}")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BackendConnectError(ConnectFailure.OTHER, command, str(e))

        logger.info(f"PPP program started (pid {process.pid})")
        return BackendLink(
            reader=process.stdout,
            writer=process.stdin,
            peer=f"{self.argv[0]}[{process.pid}]",
            process=process,
        )


def create_connector(config: ModemConfig):
    """Pick the connector for the configured backend."""
    if config.exec_command:
        return ExecConnector(config)
    return TcpConnector(config)
