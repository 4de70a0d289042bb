"""
Network Connection - TCP stream to a machine.

For machines receiving G-code over TCP (e.g. BeagleG), the descriptor is
"host[:port]" with port 8888 if omitted.
"""

import socket

from gcode_cli.device.connection import DEFAULT_RESPONSE_BUFFER_SIZE, MachineConnection
from gcode_cli.core.logging import get_logger
from gcode_cli.core.utils import OpenFailure, split_host_port

logger = get_logger()

DEFAULT_TCP_PORT = 8888
CONNECTION_TIMEOUT = 10.0  # seconds


class NetworkConnection(MachineConnection):
    """Connection to a machine over a TCP socket."""

    def __init__(
        self,
        sock: socket.socket,
        response_buffer_size: int = DEFAULT_RESPONSE_BUFFER_SIZE,
    ):
        """
        Wrap a connected stream socket.

        Args:
            sock: A connected, blocking socket.
            response_buffer_size: Size of the buffer for response lines.
        """
        self.socket = sock
        super().__init__(response_buffer_size=response_buffer_size)

    @classmethod
    def open(
        cls,
        address: str,
        response_buffer_size: int = DEFAULT_RESPONSE_BUFFER_SIZE,
    ) -> "NetworkConnection":
        """
        Connect to "host[:port]".

        Raises:
            OpenFailure: If the address can't be resolved or connected.
            ConfigFailure: If the port is not a number.
        """
        host, port = split_host_port(address, DEFAULT_TCP_PORT)

        logger.debug(f"Connecting to {host}:{port}...")
        try:
            sock = socket.create_connection((host, port), timeout=CONNECTION_TIMEOUT)
        except OSError as e:
            raise OpenFailure(f"'{host}' (port {port}): {e}") from e

        # Acknowledgement reads block indefinitely once connected.
        sock.settimeout(None)
        # Blocks are small; don't let Nagle hold them back.
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        logger.info(f"TCP connection established to {host}:{port}")
        return cls(sock, response_buffer_size=response_buffer_size)

    def describe(self) -> str:
        try:
            peer = self.socket.getpeername()
        except OSError:
            return "closed socket"
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return f"socket {peer or self.socket.fileno()}"

    def fileno(self) -> int:
        return self.socket.fileno()

    def close(self) -> None:
        if self.socket.fileno() != -1:
            self.socket.close()
            logger.debug("Socket closed")

    def _readinto(self, buffer: memoryview) -> int:
        return self.socket.recv_into(buffer)

    def _write(self, data: memoryview) -> int:
        return self.socket.send(data)
