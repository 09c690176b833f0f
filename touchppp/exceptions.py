"""Exceptions raised inside a modem session."""

from enum import Enum
from typing import Optional


class TouchPPPError(Exception):
    """Base class for TouchPPP errors."""


class ParseError(TouchPPPError):
    """
    A command line could not be decoded.

    The device is answered with ERROR and the session carries on.
    """

    def __init__(self, message: str, line: Optional[str] = None) -> None:
        self.line = line
        super().__init__(message)

    def __str__(self) -> str:
        if self.line is not None:
            return f"{super().__str__()} | Line: {self.line!r}"
        return super().__str__()


class ConnectFailure(Enum):
    """Why a backend connect attempt failed."""
    REFUSED = "refused"
    TIMEOUT = "timeout"
    OTHER = "other"


class BackendConnectError(TouchPPPError):
    """The backend could not be reached. Reported to the device as NO CARRIER."""

    def __init__(self, reason: ConnectFailure, target: str, detail: str = "") -> None:
        self.reason = reason
        self.target = target
        self.detail = detail
        message = f"Connect to {target} failed ({reason.value})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class RelayIOError(TouchPPPError):
    """One side of an online session faulted while relaying."""

    def __init__(self, side: str, cause: BaseException) -> None:
        self.side = side
        self.cause = cause
        super().__init__(f"{side} I/O error: {cause}")
