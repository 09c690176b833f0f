"""Accept loop: one ModemSession per device connection."""

import asyncio
import logging
from typing import Optional, Set

from .backend import create_connector
from .config import ModemConfig
from .session import ModemSession

logger = logging.getLogger(__name__)


class ModemServer:
    """
    Listens for device connections and runs a ModemSession for each.

    Sessions are independent tasks sharing only the read-only config.
    """

    def __init__(self, config: ModemConfig, metrics=None):
        self.config = config
        self.metrics = metrics
        self.connector = create_connector(config)
        self.sessions: Set[asyncio.Task] = set()
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def port(self) -> int:
        """Bound port (useful when listening on port 0)."""
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Bind the listening socket. Raises OSError if the address is unavailable."""
        listen = self.config.listen
        self._server = await asyncio.start_server(self._accept, listen.host, listen.port)
        logger.info(f"Listening on {listen}")
        if self.config.exec_command:
            logger.info(f"Dial target: PPP program '{self.config.exec_command}'")
        else:
            logger.info(f"Default PPP backend: {self.config.backend}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        """Stop accepting and end every active session."""
        if self._server is not None:
            self._server.close()
        for task in list(self.sessions):
            task.cancel()
        await asyncio.gather(*self.sessions, return_exceptions=True)
        if self._server is not None:
            await self._server.wait_closed()

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        max_sessions = self.config.max_sessions
        if max_sessions and len(self.sessions) >= max_sessions:
            logger.warning(f"Rejecting {peer}: {max_sessions} sessions already active")
            writer.close()
            return

        if self.metrics:
            self.metrics.record_session()

        session = ModemSession(reader, writer, self.config, self.connector, metrics=self.metrics)
        task = asyncio.current_task()
        self.sessions.add(task)
        try:
            await session.run()
        except Exception:
            session.log.exception("Session failed")
        finally:
            self.sessions.discard(task)


async def serve(config: ModemConfig, metrics=None) -> None:
    """Run the listener until cancelled."""
    server = ModemServer(config, metrics=metrics)
    await server.start()
    try:
        await server.serve_forever()
    finally:
        await server.close()
