"""Tests for result code framing."""

from touchppp.responses import ResultCode, format_info, format_result


class TestFormatResult:
    """Tests for format_result."""

    def test_verbose(self):
        assert format_result(ResultCode.OK) == b"\r\nOK\r\n"
        assert format_result(ResultCode.NO_CARRIER) == b"\r\nNO CARRIER\r\n"

    def test_numeric(self):
        assert format_result(ResultCode.OK, verbose=False) == b"0\r"
        assert format_result(ResultCode.CONNECT, verbose=False) == b"1\r"
        assert format_result(ResultCode.NO_CARRIER, verbose=False) == b"3\r"
        assert format_result(ResultCode.ERROR, verbose=False) == b"4\r"

    def test_connect_with_rate(self):
        assert format_result(ResultCode.CONNECT, rate=115200) == b"\r\nCONNECT 115200\r\n"
        assert format_result(ResultCode.CONNECT, verbose=False, rate=115200) == b"19\r"

    def test_carrier_with_rate(self):
        assert format_result(ResultCode.CARRIER, rate=33600) == b"\r\nCARRIER 33600\r\n"
        assert format_result(ResultCode.CARRIER, verbose=False, rate=56000) == b"162\r"

    def test_unknown_rate_keeps_base_code(self):
        assert format_result(ResultCode.CONNECT, verbose=False, rate=12345) == b"1\r"

    def test_rate_ignored_for_other_codes(self):
        assert format_result(ResultCode.OK, rate=9600) == b"\r\nOK\r\n"


class TestFormatInfo:
    """Tests for information lines."""

    def test_verbose(self):
        assert format_info("TouchPPP") == b"\r\nTouchPPP\r\n"

    def test_numeric(self):
        assert format_info("007", verbose=False) == b"007\r\n"
