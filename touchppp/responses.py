"""Hayes result codes and their framing on the device link."""

from enum import Enum
from typing import Optional

CRLF = b"\r\n"

# Numeric codes for CONNECT/CARRIER lines that carry a rate.
CONNECT_RATE_CODES = {
    1200: 5,
    2400: 10,
    4800: 11,
    9600: 12,
    19200: 16,
    38400: 17,
    57600: 18,
    115200: 19,
    230400: 20,
}

CARRIER_RATE_CODES = {
    300: 40,
    1200: 46,
    2400: 47,
    4800: 48,
    9600: 50,
    14400: 52,
    19200: 54,
    28800: 58,
    31200: 78,
    33600: 79,
    56000: 162,
}


class ResultCode(Enum):
    """Result codes a modem sends to its DTE: (numeric code, verbose text)."""
    OK = (0, "OK")
    CONNECT = (1, "CONNECT")
    RING = (2, "RING")
    NO_CARRIER = (3, "NO CARRIER")
    ERROR = (4, "ERROR")
    CARRIER = (40, "CARRIER")
    COMPRESSION = (67, "COMPRESSION: V.42 bis")

    @property
    def number(self) -> int:
        return self.value[0]

    @property
    def text(self) -> str:
        return self.value[1]


def format_result(code: ResultCode, verbose: bool = True, rate: Optional[int] = None) -> bytes:
    """
    Frame a result code the way a Hayes modem does.

    Verbose results are wrapped as ``CR LF text CR LF``; numeric results are
    the code digits followed by a single CR.

    Args:
        code: Result code to send.
        verbose: Verbose (ATV1) or numeric (ATV0) form.
        rate: Optional line rate appended to CONNECT/CARRIER.

    Returns:
        Bytes ready to write to the device.
    """
    text = code.text
    number = code.number
    if rate and code in (ResultCode.CONNECT, ResultCode.CARRIER):
        text = f"{text} {rate}"
        table = CONNECT_RATE_CODES if code is ResultCode.CONNECT else CARRIER_RATE_CODES
        number = table.get(rate, number)

    if verbose:
        return CRLF + text.encode("ascii") + CRLF
    return str(number).encode("ascii") + b"\r"


def format_info(text: str, verbose: bool = True) -> bytes:
    """Frame an information line (ATI output, S-register queries)."""
    if verbose:
        return CRLF + text.encode("ascii", errors="replace") + CRLF
    return text.encode("ascii", errors="replace") + CRLF
