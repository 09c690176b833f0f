"""
Modem emulation for one device connection.

A ModemSession reads AT commands from the device, dials the PPP backend when
asked, relays data while online and reports the hangup with NO CARRIER.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .backend import BackendLink
from .config import DIAL_MODE_WEBTV, ModemConfig
from .exceptions import BackendConnectError, ParseError
from .logging_config import peer_logger
from .parser import (
    CR,
    LF,
    Command,
    LineBuffer,
    dial_target,
    is_command_line,
    is_command_text,
    parse_command_line,
    parse_register,
)
from .relay import EscapeDetector, Relay
from .responses import ResultCode, format_info, format_result

# Power-on S-register values of a typical Hayes-compatible modem.
DEFAULT_REGISTERS = {0: 0, 1: 0, 2: 43, 3: 13, 4: 10, 5: 8, 6: 2, 8: 2, 10: 14, 12: 50}

# WebTV boxes only offer 56k when ATI3 reports this firmware string.
WEBTV_K56_IDENTITY = "V69420_WEBTV-K56_DLP"
WEBTV_CARRIER_RATE = 33600
WEBTV_K56_CARRIER_RATE = 56000
WEBTV_CONNECT_RATE = 115200
# Signup numbers that a real WebTV network never answered at 56k.
WEBTV_SIGNUP_NUMBERS = ("18006138199", "18004653537")


class ModemState(Enum):
    COMMAND = "command"
    DIALING = "dialing"
    ONLINE = "online"
    HANGING_UP = "hanging_up"


@dataclass
class ModemSettings:
    """Per-session settings changed by AT commands and restored by ATZ."""
    echo: bool = True
    verbose: bool = True
    quiet: bool = False
    connect_timeout: float = 10.0
    registers: Dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: ModemConfig) -> "ModemSettings":
        registers = dict(DEFAULT_REGISTERS)
        registers[7] = max(1, min(255, round(config.connect_timeout)))
        return cls(
            echo=config.echo,
            verbose=config.verbose,
            connect_timeout=config.connect_timeout,
            registers=registers,
        )


def _flag(command: Command) -> bool:
    """Decode the 0/1 argument of E, V and Q."""
    if command.argument not in ("", "0", "1"):
        raise ParseError(f"Bad argument for {command.verb}", line=command.verb + command.argument)
    return command.argument == "1"


class ModemSession:
    """
    One emulated modem attached to one device connection.

    The session owns both the device streams and, while a call is up, the
    backend link. It is the only writer to either.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: ModemConfig,
        connector,
        metrics=None,
    ):
        self.reader = reader
        self.writer = writer
        self.config = config
        self.connector = connector
        self.metrics = metrics
        self.state = ModemState.COMMAND
        self.settings = ModemSettings.from_config(config)
        self.lines = LineBuffer(config.max_line_length)
        self.backend: Optional[BackendLink] = None
        self.device_closed = False

        # WebTV dialing state. Unlike the settings, ATZ keeps these.
        self.webtv = config.dial_mode == DIAL_MODE_WEBTV
        self.wince = False
        self.k56_modem = False
        self.k56_connect = False
        self.pending_target: Optional[str] = None

        peer = writer.get_extra_info("peername")
        self.peer = f"{peer[0]}:{peer[1]}" if isinstance(peer, tuple) else str(peer)
        self.log = peer_logger(__name__, self.peer)

    async def run(self) -> None:
        """Serve the device until it disconnects."""
        self.log.info("Device connected")
        try:
            while not self.device_closed:
                data = await self.reader.read(self.config.read_chunk)
                if not data:
                    self.log.info("Device closed the connection")
                    break
                if self.config.debug_modem:
                    self.log.debug(f"Device->Modem: {data[:80]!r}")
                await self.handle_input(data)
        except OSError as e:
            self.log.error(f"Device I/O error: {e}")
        finally:
            await self.close()
            self.log.info("Session ended")

    async def handle_input(self, data: bytes) -> None:
        """Process bytes received in command mode."""
        if not is_command_text(data):
            # Usually PPP frames from a device that has not yet seen NO CARRIER.
            self.log.debug(f"Dropping {len(data)} bytes of non-command input")
            self.lines.reset()
            return

        if self.settings.echo:
            await self._write(data)

        for item in self.lines.feed(data):
            if isinstance(item, ParseError):
                self.log.warning(str(item))
                await self.send_result(ResultCode.ERROR)
                continue

            if not is_command_line(item):
                self.log.debug(f"Ignoring non-command input: {item!r}")
                continue

            dialed = await self.execute_line(item)
            if self.device_closed:
                return
            if dialed:
                # Anything typed after the dial line belonged to the old call.
                self.lines.reset()
                return

    async def execute_line(self, line: str) -> bool:
        """
        Run every command on one AT command line.

        Returns:
            True if the line dialed (the call has finished when this returns).
        """
        self.log.debug(f"Command: {line.strip()}")
        try:
            commands = parse_command_line(line)
        except ParseError as e:
            self.log.info(str(e))
            await self.send_result(ResultCode.ERROR)
            return False

        for command in commands:
            if command.verb == "D":
                target = dial_target(command.argument)
                if self._hold_dial(target):
                    break
                if not target:
                    target = self.pending_target or ""
                self.pending_target = None
                await self.dial(target)
                return True
            try:
                info = await self.apply(command)
            except ParseError as e:
                self.log.info(str(e))
                await self.send_result(ResultCode.ERROR)
                return False
            for text in info:
                await self._write(format_info(text, self.settings.verbose))

        await self.send_result(ResultCode.OK)
        return False

    async def apply(self, command: Command) -> List[str]:
        """
        Apply a non-dial command.

        Returns:
            Information lines to send before the final OK.

        Raises:
            ParseError: If the command's argument is invalid.
        """
        verb = command.verb
        if verb == "E":
            self.settings.echo = _flag(command)
        elif verb == "V":
            self.settings.verbose = _flag(command)
        elif verb == "Q":
            self.settings.quiet = _flag(command)
        elif verb in ("Z", "&F"):
            self.log.info("Restoring default modem settings")
            self.settings = ModemSettings.from_config(self.config)
        elif verb == "I":
            if self.webtv and command.argument == "3":
                self.log.info("Reporting 56k firmware, 56k carrier enabled")
                self.k56_modem = True
                self.k56_connect = True
                return [WEBTV_K56_IDENTITY]
            return [self.config.identity]
        elif verb == "S":
            register, value = parse_register(command.argument)
            if value is None:
                return [f"{self.settings.registers.get(register, 0):03d}"]
            if register == 7:
                if value == 0:
                    raise ParseError("S7 connect timeout must be 1-255 seconds", line="S" + command.argument)
                self.settings.connect_timeout = float(value)
            elif register == 51 and value == 31:
                self._disable_k56("S51=31")
            self.settings.registers[register] = value
        elif verb == "H":
            await self.hangup()
        elif verb == "F" and command.argument == "0" and self.webtv:
            # Windows CE's Unimodem sends F0 in its init string; WebTV OS never does.
            self.log.info("Unimodem init string seen, answering dials with RING/CONNECT")
            self.wince = True
        elif verb == "+" and command.argument.upper().replace(" ", "") == "MS=11,1":
            self._disable_k56("+MS=11,1")
        else:
            self.log.debug(f"Acknowledging {verb}{command.argument}")
        return []

    def _disable_k56(self, reason: str) -> None:
        if self.webtv and self.k56_connect:
            self.log.info(f"56k off ({reason}), next call connects at {WEBTV_CARRIER_RATE}")
        self.k56_connect = False

    def _hold_dial(self, target: str) -> bool:
        """
        Decide whether a dial command only stores its number.

        WebTV OS dials in two steps: ``ATDT<number>`` expects a plain OK, then
        a bare ``ATD`` asks for the data connection. Windows CE's Unimodem
        dials in one step like any other modem.

        Returns:
            True if the number was stored and the line should end with OK.
        """
        if not self.webtv or not target:
            return False
        if "".join(ch for ch in target if ch.isdigit()) in WEBTV_SIGNUP_NUMBERS:
            self._disable_k56(f"signup number {target}")
        if self.wince:
            return False
        self.log.info(f"Holding number {target} until the data mode request")
        self.pending_target = target
        return True

    async def hangup(self) -> None:
        """Drop the backend if one is open. On hook already, this does nothing."""
        if self.backend is None:
            self.log.debug("Hangup requested while on hook")
            return
        self.state = ModemState.HANGING_UP
        await self._close_backend()
        self.state = ModemState.COMMAND

    async def dial(self, target: str) -> None:
        """
        Dial the backend and, if it answers, stay online until the call ends.

        Any key pressed by the device while dialing aborts the attempt.
        """
        self.log.info(f"Dialing {target or '(default backend)'}")
        self.state = ModemState.DIALING

        connect_task = asyncio.create_task(self.connector.connect(target, self.settings.connect_timeout))
        abort_task = asyncio.create_task(self._watch_while_dialing())
        try:
            await asyncio.wait([connect_task, abort_task], return_when=asyncio.FIRST_COMPLETED)
        finally:
            connect_task.cancel()
            abort_task.cancel()
            await asyncio.gather(connect_task, abort_task, return_exceptions=True)
            if not connect_task.cancelled() and connect_task.exception() is None:
                self.backend = connect_task.result()

        device_event = None
        if not abort_task.cancelled():
            device_event = "closed" if abort_task.exception() is not None else abort_task.result()

        if device_event == "closed":
            self.log.info("Device closed the connection while dialing")
            self.device_closed = True
            await self._close_backend()
            return

        if device_event == "abort":
            self.log.info("Dial aborted by the device")
            await self._close_backend()
            self._record_dial("aborted")
            await self._end_dial()
            return

        error = connect_task.exception()
        if error is not None:
            if not isinstance(error, BackendConnectError):
                raise error
            self.log.warning(str(error))
            self._record_dial(error.reason.value)
            await self._end_dial()
            return

        self._record_dial("connected")
        await self.go_online()

    async def _end_dial(self) -> None:
        self.state = ModemState.COMMAND
        await self.send_result(ResultCode.NO_CARRIER)

    async def _watch_while_dialing(self) -> str:
        """Wait for the device to press a key ("abort") or disconnect ("closed")."""
        while True:
            data = await self.reader.read(self.config.read_chunk)
            if not data:
                return "closed"
            if any(byte not in (CR, LF) for byte in data):
                return "abort"

    async def go_online(self) -> None:
        """Report CONNECT, relay until the call ends, then report NO CARRIER."""
        self.state = ModemState.ONLINE
        await self._send_connect()
        self.log.info(f"Online with {self.backend.peer}")

        started = time.monotonic()
        relay = Relay(
            self.reader,
            self.writer,
            self.backend,
            chunk_size=self.config.read_chunk,
            idle_timeout=self.config.idle_timeout,
            escape_detector=EscapeDetector() if self.config.escape_detection else None,
            trace=self.config.debug_modem,
            label=self.peer,
        )
        result = await relay.run()

        self.state = ModemState.HANGING_UP
        await self._close_backend()
        if self.metrics:
            self.metrics.record_call_end(
                result.reason.value, time.monotonic() - started, result.to_backend, result.to_device
            )

        if not result.device_alive:
            self.device_closed = True
            return

        self.state = ModemState.COMMAND
        await self.send_result(ResultCode.NO_CARRIER)

    async def _send_connect(self) -> None:
        if self.wince:
            # Unimodem waits for the far end to ring and answer.
            for code in (ResultCode.RING, ResultCode.CONNECT):
                await asyncio.sleep(self.config.wince_delay)
                await self.send_result(code)
            await asyncio.sleep(self.config.wince_delay)
            return

        if self.webtv:
            k56 = self.k56_modem and self.k56_connect
            await self.send_result(ResultCode.CARRIER, rate=WEBTV_K56_CARRIER_RATE if k56 else WEBTV_CARRIER_RATE)
            await self.send_result(ResultCode.COMPRESSION)
            await self.send_result(ResultCode.CONNECT, rate=WEBTV_CONNECT_RATE)
            return

        if self.config.carrier_rate:
            await self.send_result(ResultCode.CARRIER, rate=self.config.carrier_rate)
            await self.send_result(ResultCode.COMPRESSION)
        await self.send_result(ResultCode.CONNECT, rate=self.config.connect_rate or None)

    async def send_result(self, code: ResultCode, rate: Optional[int] = None) -> None:
        """Write a result code to the device unless quiet mode is on."""
        if self.settings.quiet:
            return
        self.log.debug(f"Result: {code.text}")
        await self._write(format_result(code, self.settings.verbose, rate))

    async def _write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    def _record_dial(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_dial(result)

    async def _close_backend(self) -> None:
        if self.backend is not None:
            await self.backend.close()
            self.backend = None

    async def close(self) -> None:
        """Release the backend link and the device connection."""
        await self._close_backend()
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            self.log.debug(f"Device close error: {e}")
