"""
Machine Connection - Base class for transports to a machine.

This module provides the MachineConnection base class which defines the
interface used by the streamer:

- write_blocks(): send a batch of blocks in one write
- discard_pending_input(): drain chatter until the line is quiet
- response_lines: line reader over the machine's responses

Subclasses implement the raw byte operations for serial lines, TCP sockets
and stdin/stdout passthrough. open_connection() picks the right one from a
connection descriptor string.
"""

import os
import select
from collections.abc import Callable, Sequence
from typing import BinaryIO, TextIO

from gcode_cli.core.line_reader import BufferedLineReader
from gcode_cli.core.logging import get_logger, log_gcode_recv, log_gcode_sent
from gcode_cli.core.utils import IoFailure, OpenFailure

logger = get_logger()

DEFAULT_RESPONSE_BUFFER_SIZE = 1 << 16  # bytes
DISCARD_CHUNK_SIZE = 128  # bytes
PASSTHROUGH_DESCRIPTOR = "-"

EchoSink = BinaryIO | TextIO | Callable[[bytes], object]


class MachineConnection:
    """
    Base class for a bidirectional byte channel to a machine.

    Subclasses must implement fileno(), _readinto(), _write() and close().
    """

    def __init__(self, response_buffer_size: int = DEFAULT_RESPONSE_BUFFER_SIZE):
        """
        Initialize the connection.

        Args:
            response_buffer_size: Size of the buffer for reading response lines.
        """
        # Responses are not commented code; keep everything after ';'.
        self._reader = BufferedLineReader(
            self._readinto, response_buffer_size, remove_comments=False
        )

    @property
    def response_lines(self) -> BufferedLineReader:
        """Line reader returning responses from the machine."""
        return self._reader

    def describe(self) -> str:
        """Human readable description of the connection."""
        return self.__class__.__name__

    def fileno(self) -> int:
        """File descriptor to wait on for incoming data."""
        raise NotImplementedError

    def close(self) -> None:
        """Close the connection."""
        raise NotImplementedError

    def _readinto(self, buffer: memoryview) -> int:
        """Read available bytes into buffer, blocking until at least one arrives."""
        raise NotImplementedError

    def _write(self, data: memoryview) -> int:
        """Write some of data, returning the number of bytes written."""
        raise NotImplementedError

    def _wait_readable(self, timeout: float) -> bool:
        """Wait up to timeout seconds for input to become readable."""
        readable, _, _ = select.select([self.fileno()], [], [], timeout)
        return bool(readable)

    def discard_pending_input(self, timeout: float, echo_sink: EchoSink | None = None) -> int:
        """
        Discard input until there is silence on the wire for timeout seconds.

        Helps to get into a clean initial state as many machines produce
        some chatter on connect, and reveals unbalanced acknowledgements
        at the end of a run.

        Args:
            timeout: Seconds of silence to wait for.
            echo_sink: Optional writable (or callable) receiving discarded bytes.

        Returns:
            Number of bytes discarded.

        Raises:
            IoFailure: If reading from the machine fails.
        """
        total_bytes = 0
        chunk = bytearray(DISCARD_CHUNK_SIZE)
        view = memoryview(chunk)
        try:
            while self._wait_readable(timeout):
                r = self._readinto(view)
                if not r:
                    # Peer closed; nothing more will arrive.
                    break
                total_bytes += r
                log_gcode_recv(bytes(view[:r]))
                if echo_sink is not None:
                    _echo_discarded(echo_sink, bytes(view[:r]))
        except OSError as e:
            raise IoFailure(f"Reading from {self.describe()} failed: {e}") from e

        if total_bytes:
            logger.debug(f"Discarded {total_bytes} bytes of pending input")
        return total_bytes

    def write_blocks(self, blocks: Sequence[bytes | memoryview]) -> None:
        """
        Write all provided blocks to the machine in one go.

        Blocks are assembled into one buffer to avoid many small writes to
        machines with tiny receive queues.

        Args:
            blocks: Framed blocks, each ending in a newline.

        Raises:
            IoFailure: If the write fails.
        """
        data = b"".join(blocks)
        view = memoryview(data)
        try:
            while view:
                written = self._write(view)
                view = view[written:]
        except OSError as e:
            raise IoFailure(f"Writing to {self.describe()} failed: {e}") from e

        log_gcode_sent(data)
        logger.verbose(f"Raw data sent: {data!r}")

    def __enter__(self) -> "MachineConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _echo_discarded(sink: EchoSink, data: bytes) -> None:
    if callable(sink):
        sink(data)
        return
    try:
        sink.write(data)  # type: ignore[arg-type]
    except TypeError:
        sink.write(data.decode("utf-8", errors="replace"))  # type: ignore[arg-type]
    sink.flush()


def open_connection(
    descriptor: str,
    response_buffer_size: int = DEFAULT_RESPONSE_BUFFER_SIZE,
) -> MachineConnection:
    """
    Open a connection to a machine.

    Supported descriptors:
      - "-": write to stdout, read responses from stdin
      - "<path>[,b<baud>][,[+|-]crtscts]": serial device
      - "<host>[:<port>]": TCP connection (default port 8888)

    Args:
        descriptor: The connection descriptor string.
        response_buffer_size: Size of the buffer for response lines.

    Returns:
        The opened connection.

    Raises:
        OpenFailure: If the machine cannot be reached.
        ConfigFailure: If serial parameters are invalid.
    """
    # Imported here; the concrete connections import this module.
    from gcode_cli.device.network_connection import NetworkConnection
    from gcode_cli.device.serial_connection import SerialConnection
    from gcode_cli.device.stdio_connection import StdioConnection

    if not descriptor:
        raise OpenFailure("Empty connection descriptor")

    if descriptor == PASSTHROUGH_DESCRIPTOR:
        logger.debug("Using stdin/stdout passthrough connection")
        return StdioConnection(response_buffer_size=response_buffer_size)

    path = descriptor.split(",", 1)[0]
    if os.path.exists(path):
        try:
            return SerialConnection.open(descriptor, response_buffer_size=response_buffer_size)
        except OpenFailure as e:
            logger.debug(f"Opening '{path}' as serial line failed ({e}), trying TCP endpoint")
    else:
        logger.debug(f"'{path}' is not a device, trying TCP endpoint")

    try:
        return NetworkConnection.open(descriptor, response_buffer_size=response_buffer_size)
    except OpenFailure as e:
        raise OpenFailure(f"Not a tty and can't connect as TCP endpoint: {e}") from e
