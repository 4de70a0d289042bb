"""Tests for machine response classification."""

import pytest

from gcode_cli.core.response import (
    ACK_CONNECTION_CLOSED,
    AckResponse,
    Acknowledgement,
    CONNECTION_CLOSED_MESSAGE,
    classify_response,
)


class TestClassifyResponse:
    """Tests for classify_response()."""

    @pytest.mark.parametrize("line", [b"ok\n", b"OK\n", b"ok T:210.0 /210.0\n", b"Ok"])
    def test_ok(self, line):
        """Lines starting with 'ok' in any case acknowledge the block."""
        ack = classify_response(line)

        assert ack.kind is AckResponse.OK
        assert ack.is_ok
        assert ack.is_terminal

    @pytest.mark.parametrize(
        "line, message",
        [
            (b"error: limit switch\n", "error: limit switch"),
            (b"ERROR:22\r\n", "ERROR:22"),
            (b"ALARM:1\n", "ALARM:1"),
            (b"alarm lock\n", "alarm lock"),
        ],
    )
    def test_error(self, line, message):
        """Lines starting with 'error' or 'alarm' are errors."""
        ack = classify_response(line)

        assert ack.kind is AckResponse.ERROR
        assert ack.is_error
        assert ack.is_terminal
        assert ack.message == message

    @pytest.mark.parametrize("line", [b"Temp:200\n", b"echo:busy\n", b"[MSG:Reset]\n", b"o\n"])
    def test_message(self, line):
        """Anything else is informational."""
        ack = classify_response(line)

        assert ack.kind is AckResponse.MESSAGE
        assert not ack.is_terminal
        assert ack.message == line.decode().rstrip()

    def test_empty_means_connection_closed(self):
        """An empty line is reported as a closed connection."""
        ack = classify_response(b"")

        assert ack == ACK_CONNECTION_CLOSED
        assert ack.is_error
        assert ack.message == CONNECTION_CLOSED_MESSAGE

    def test_memoryview_input(self):
        """Views into a reader buffer are accepted."""
        data = bytearray(b"xxok\n")

        assert classify_response(memoryview(data)[2:]).is_ok

    def test_str_input(self):
        """Text lines are accepted too."""
        assert classify_response("error: bad").message == "error: bad"

    def test_acknowledgement_is_immutable(self):
        """Acknowledgements are frozen value objects."""
        ack = Acknowledgement(AckResponse.MESSAGE, "Temp:200")

        with pytest.raises(AttributeError):
            ack.message = "changed"  # type: ignore[misc]

        assert ack == Acknowledgement(AckResponse.MESSAGE, "Temp:200")
