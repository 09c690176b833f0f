"""AT command line decoding."""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

from .exceptions import ParseError

CR = 0x0D
LF = 0x0A
BS = 0x08
DEL = 0x7F

DEFAULT_MAX_LINE_LENGTH = 255

# Single-letter Hayes commands that take an optional numeric argument.
BASIC_COMMANDS = frozenset("ABCEFHILMNOPQTVWXYZ")
# Prefixes of the two-character extended command sets (&F, \N, %C ...).
EXTENDED_PREFIXES = frozenset("&\\%")

_DIGITS = re.compile(r"\d*")
_REGISTER = re.compile(r"(\d+)(?:=(\d*)|(\?))")


@dataclass
class Command:
    """One command from an AT command line, e.g. verb 'E' with argument '0'."""
    verb: str
    argument: str = ""


class LineBuffer:
    """
    Bounded accumulator for command-mode input.

    Bytes are collected until CR or LF. A line that grows past ``max_length``
    produces a single ParseError, the buffer is reset, and input is discarded
    up to the next line terminator.
    """

    def __init__(self, max_length: int = DEFAULT_MAX_LINE_LENGTH):
        if max_length <= 0:
            raise ValueError("max_length must be positive")
        self.max_length = max_length
        self._buf = bytearray()
        self._discarding = False

    def __len__(self) -> int:
        return len(self._buf)

    def reset(self) -> None:
        """Drop any partial line."""
        self._buf.clear()
        self._discarding = False

    def feed(self, data: bytes) -> Iterator[Union[str, ParseError]]:
        """
        Add received bytes and yield each completed line.

        Args:
            data: Raw bytes from the device.

        Yields:
            The text of each complete, non-empty line, or a ParseError for a
            line that overflowed the buffer.
        """
        for byte in data:
            if byte in (CR, LF):
                if self._discarding:
                    self._discarding = False
                elif self._buf:
                    line = self._buf.decode("ascii")
                    self._buf.clear()
                    yield line
                continue

            if self._discarding:
                continue

            if byte in (BS, DEL):
                if self._buf:
                    del self._buf[-1]
                continue

            # Line noise and 8-bit data never belong to a command.
            if byte < 0x20 or byte > 0x7E:
                continue

            if len(self._buf) >= self.max_length:
                head = self._buf[:16].decode("ascii")
                self.reset()
                self._discarding = True
                yield ParseError(f"Command line longer than {self.max_length} characters", line=head)
                continue

            self._buf.append(byte)


def is_command_text(data: bytes) -> bool:
    """
    True if a received chunk looks like typed command input.

    Printable ASCII, line terminators and backspace qualify. A chunk holding
    anything else (PPP frames from a device that has not noticed the hangup,
    8-bit line noise) is not command input.
    """
    return all(0x20 <= byte <= 0x7E or byte in (CR, LF, BS, DEL) for byte in data)


def is_command_line(line: str) -> bool:
    """True if the line starts with the AT prefix (any case)."""
    return line.lstrip().upper().startswith("AT")


def parse_command_line(line: str) -> List[Command]:
    """
    Split an AT command line into its commands.

    ``ATE0V1DT5551212`` becomes E/0, V/1 and D/T5551212. Dial and ``+``
    extended commands consume the rest of the line. ``Z`` must be the last
    command on the line.

    Args:
        line: Text of one command line, without terminator.

    Returns:
        The commands in the order they appear. ``AT`` alone gives an empty list.

    Raises:
        ParseError: If the line does not start with AT or contains a command
            that is not recognized.
    """
    text = line.strip()
    if not text.upper().startswith("AT"):
        raise ParseError("Missing AT prefix", line=line)

    body = text[2:]
    upper = body.upper()
    commands: List[Command] = []
    i = 0
    while i < len(body):
        ch = upper[i]
        if ch == " ":
            i += 1
            continue

        if commands and commands[-1].verb == "Z":
            raise ParseError("Reset must be the last command on the line", line=line)

        if ch == "D":
            commands.append(Command("D", body[i + 1:].strip()))
            break

        if ch == "+":
            commands.append(Command("+", body[i + 1:].strip()))
            break

        if ch == "S":
            match = _REGISTER.match(upper, i + 1)
            if not match:
                raise ParseError("Malformed S-register command", line=line)
            commands.append(Command("S", match.group(0)))
            i = match.end()
            continue

        if ch in EXTENDED_PREFIXES:
            if i + 1 >= len(body) or not upper[i + 1].isalpha():
                raise ParseError(f"Incomplete {ch} command", line=line)
            match = _DIGITS.match(upper, i + 2)
            commands.append(Command(ch + upper[i + 1], match.group(0)))
            i = match.end()
            continue

        if ch in BASIC_COMMANDS:
            match = _DIGITS.match(upper, i + 1)
            commands.append(Command(ch, match.group(0)))
            i = match.end()
            continue

        raise ParseError(f"Unrecognized command {body[i]!r}", line=line)

    return commands


def parse_register(argument: str) -> Tuple[int, Optional[int]]:
    """
    Decode the argument of an S command.

    Returns:
        (register number, new value) for ``7=30``, or (register, None) for a
        ``7?`` query. ``7=`` sets the register to 0.
    """
    match = _REGISTER.fullmatch(argument)
    if not match:
        raise ParseError("Malformed S-register command", line=f"S{argument}")
    register = int(match.group(1))
    if match.group(3):
        return register, None
    value = int(match.group(2) or 0)
    if not 0 <= value <= 255:
        raise ParseError(f"S{register} value out of range", line=f"S{argument}")
    return register, value


def dial_target(argument: str) -> str:
    """
    Extract the number or address from a dial argument.

    Strips the tone/pulse modifier and the trailing ';' (return to command
    mode) that some dialers append.
    """
    target = argument.strip()
    if target[:1].upper() in ("T", "P"):
        target = target[1:]
    return target.rstrip(";").strip()
