"""Transparent byte relay between the device and the PPP backend."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .backend import BackendLink
from .exceptions import RelayIOError
from .logging_config import peer_logger

DEVICE = "device"
BACKEND = "backend"


class TerminationReason(Enum):
    """Why an online session stopped relaying."""
    DEVICE_CLOSED = "device_closed"
    BACKEND_CLOSED = "backend_closed"
    DEVICE_ERROR = "device_error"
    BACKEND_ERROR = "backend_error"
    ESCAPE = "escape"
    IDLE_TIMEOUT = "idle_timeout"


_CLOSED = {DEVICE: TerminationReason.DEVICE_CLOSED, BACKEND: TerminationReason.BACKEND_CLOSED}
_ERROR = {DEVICE: TerminationReason.DEVICE_ERROR, BACKEND: TerminationReason.BACKEND_ERROR}


@dataclass
class RelayResult:
    """Outcome of a relay run."""
    reason: Optional[TerminationReason] = None
    to_backend: int = 0
    to_device: int = 0

    @property
    def device_alive(self) -> bool:
        """False if the device link itself went away."""
        return self.reason not in (TerminationReason.DEVICE_CLOSED, TerminationReason.DEVICE_ERROR)


class EscapeDetector:
    """
    Spots a device trying to get back to command mode while online.

    Watches device->backend traffic for the ``+++`` escape or for a complete
    AT command line. Any byte outside the printable range breaks the current
    candidate, so PPP frames do not trigger it.
    """

    MAX_CANDIDATE = 50

    def __init__(self):
        self._candidate = bytearray()

    def reset(self) -> None:
        self._candidate.clear()

    def feed(self, data: bytes) -> bool:
        """Scan a chunk of device data. Returns True if an escape was seen."""
        for byte in data:
            if not 0x0A <= byte < 0x7A:
                self._candidate.clear()
                continue

            self._candidate.append(byte)
            candidate = bytes(self._candidate)
            if len(candidate) > self.MAX_CANDIDATE or (
                len(candidate) >= 2 and not candidate.startswith((b"AT", b"++"))
            ):
                self._candidate.clear()
            elif b"+++" in candidate:
                self._candidate.clear()
                return True
            elif len(candidate) >= 4 and byte in (0x0A, 0x0D):
                self._candidate.clear()
                if candidate.startswith(b"AT"):
                    return True
        return False


class Relay:
    """
    Copies bytes both ways between the device and a backend link.

    Each direction runs in its own task so a stall on one never holds up the
    other. The first direction to finish (EOF, error, escape) or the idle
    watchdog ends the relay; the remaining tasks are cancelled.
    """

    def __init__(
        self,
        device_reader: asyncio.StreamReader,
        device_writer: asyncio.StreamWriter,
        backend: BackendLink,
        chunk_size: int = 4096,
        idle_timeout: float = 0,
        escape_detector: Optional[EscapeDetector] = None,
        trace: bool = False,
        label: str = "",
    ):
        self.device_reader = device_reader
        self.device_writer = device_writer
        self.backend = backend
        self.chunk_size = chunk_size
        self.idle_timeout = idle_timeout
        self.escape_detector = escape_detector
        self.trace = trace
        self.label = label
        self.log = peer_logger(__name__, label)
        self.result = RelayResult()
        self._last_activity = 0.0

    async def run(self) -> RelayResult:
        """Relay until the first termination event and report it."""
        loop = asyncio.get_running_loop()
        self._last_activity = loop.time()

        tasks = [
            asyncio.create_task(self._pump(self.device_reader, self.backend.writer, DEVICE, BACKEND)),
            asyncio.create_task(self._pump(self.backend.reader, self.device_writer, BACKEND, DEVICE)),
        ]
        if self.idle_timeout:
            tasks.append(asyncio.create_task(self._idle_watch()))

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            # Keep task order so a simultaneous finish reports the device side first.
            finished = [task for task in tasks if task in done]
            self.result.reason = self._outcome(finished[0])
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        self.log.info(
            f"Relay ended ({self.result.reason.value}): "
            f"{self.result.to_backend} bytes to backend, {self.result.to_device} bytes to device"
        )
        return self.result

    def _outcome(self, task: "asyncio.Task") -> TerminationReason:
        error = task.exception()
        if isinstance(error, RelayIOError):
            self.log.info(f"Relay stopped: {error}")
            return _ERROR[error.side]
        if error is not None:
            raise error
        return task.result()

    async def _pump(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        source: str,
        sink: str,
    ) -> TerminationReason:
        loop = asyncio.get_running_loop()
        detector = self.escape_detector if source == DEVICE else None

        while True:
            try:
                data = await reader.read(self.chunk_size)
            except OSError as e:
                raise RelayIOError(source, e)

            if not data:
                self.log.info(f"{source.capitalize()} closed the connection")
                return _CLOSED[source]

            if detector is not None and detector.feed(data):
                self.log.info("Device asked for command mode while online")
                return TerminationReason.ESCAPE

            if self.trace:
                self.log.debug(f"{source}->{sink}: {len(data)} bytes: {data[:80].hex()}")

            try:
                writer.write(data)
                await writer.drain()
            except OSError as e:
                raise RelayIOError(sink, e)

            if sink == BACKEND:
                self.result.to_backend += len(data)
            else:
                self.result.to_device += len(data)
            self._last_activity = loop.time()

    async def _idle_watch(self) -> TerminationReason:
        loop = asyncio.get_running_loop()
        while True:
            remaining = self._last_activity + self.idle_timeout - loop.time()
            if remaining <= 0:
                self.log.warning(f"No traffic for {self.idle_timeout}s, hanging up")
                return TerminationReason.IDLE_TIMEOUT
            await asyncio.sleep(remaining)
