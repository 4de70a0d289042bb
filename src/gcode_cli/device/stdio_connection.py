"""
Stdio Connection - Passthrough on a pair of file descriptors.

Blocks are written to stdout and responses read from stdin. Useful for
debugging, or for wiring up a machine with tools like socat.
"""

import os
import sys

from gcode_cli.device.connection import DEFAULT_RESPONSE_BUFFER_SIZE, MachineConnection
from gcode_cli.core.logging import get_logger

logger = get_logger()


class StdioConnection(MachineConnection):
    """Connection writing to one file descriptor and reading from another."""

    def __init__(
        self,
        input_fd: int | None = None,
        output_fd: int | None = None,
        response_buffer_size: int = DEFAULT_RESPONSE_BUFFER_SIZE,
        close_fds: bool = False,
    ):
        """
        Initialize the passthrough connection.

        Args:
            input_fd: Descriptor to read responses from (default: stdin).
            output_fd: Descriptor to write blocks to (default: stdout).
            response_buffer_size: Size of the buffer for response lines.
            close_fds: Close both descriptors on close().
        """
        self.input_fd = input_fd if input_fd is not None else sys.stdin.fileno()
        self.output_fd = output_fd if output_fd is not None else sys.stdout.fileno()
        self.close_fds = close_fds
        self._closed = False
        super().__init__(response_buffer_size=response_buffer_size)

    def describe(self) -> str:
        return f"passthrough (fd {self.output_fd} -> machine -> fd {self.input_fd})"

    def fileno(self) -> int:
        return self.input_fd

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.close_fds:
            for fd in {self.input_fd, self.output_fd}:
                os.close(fd)
            logger.debug("Passthrough descriptors closed")

    def _readinto(self, buffer: memoryview) -> int:
        return os.readv(self.input_fd, [buffer])

    def _write(self, data: memoryview) -> int:
        return os.write(self.output_fd, data)
