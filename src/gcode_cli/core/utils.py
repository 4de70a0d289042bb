"""
Utility functions and exceptions for GCode CLI.

This module provides the exception taxonomy shared by the connection and
streaming layers, plus a few small helpers for descriptor parsing and timing.
"""

import time


class GCodeCliError(Exception):
    """Base class for all errors raised by gcode-cli."""

    pass


class OpenFailure(GCodeCliError):
    """Raised when the machine connection cannot be opened."""

    pass


class ConfigFailure(GCodeCliError):
    """Raised on an unsupported baud rate or a malformed connection parameter."""

    pass


class IoFailure(GCodeCliError):
    """Raised when reading from or writing to the machine fails mid-session."""

    pass


class ProtocolError(GCodeCliError):
    """
    Raised when the machine reports an error or alarm, or the connection
    closes while an acknowledgement is pending.
    """

    def __init__(self, message: str, line_no: int | None = None):
        super().__init__(message)
        self.line_no = line_no


class UserAbort(GCodeCliError):
    """Raised when the operator declines to continue after a protocol error."""

    pass


def has_prefix_ignore_case(data: bytes | str, prefix: bytes | str) -> bool:
    """
    Check for a case-insensitive prefix.

    Args:
        data: The text to inspect.
        prefix: The prefix to look for, same type as data.

    Returns:
        True if data starts with prefix, ignoring ASCII case.
    """
    return data[: len(prefix)].lower() == prefix.lower()


def split_host_port(address: str, default_port: int) -> tuple[str, int]:
    """
    Split a "host[:port]" string.

    Args:
        address: Host name or IP, optionally followed by ":port".
        default_port: Port to use when none is given.

    Returns:
        Tuple of (host, port).

    Raises:
        ConfigFailure: If the port is not a number.
    """
    host, sep, port = address.partition(":")
    if not sep:
        return host, default_port
    try:
        return host, int(port)
    except ValueError as e:
        raise ConfigFailure(f"Invalid port '{port}' in '{address}'") from e


def get_time_ms() -> int:
    """Monotonic time in milliseconds."""
    return int(time.monotonic() * 1000)


def format_duration(duration_ms: int) -> str:
    """Format milliseconds as seconds with millisecond precision, e.g. '3.042'."""
    return f"{duration_ms // 1000}.{duration_ms % 1000:03d}"
