"""
Machine response classification.

Machines acknowledge every block with a line starting with 'ok', or report a
problem with a line starting with 'error' or 'alarm'. Anything else (e.g.
temperature reports) is an informational message preceding the final
acknowledgement of the same block.
"""

from dataclasses import dataclass
from enum import Enum

from gcode_cli.core.utils import has_prefix_ignore_case

CONNECTION_CLOSED_MESSAGE = "Nothing received from machine: Connection closed"

OK_PREFIXES = (b"ok",)
ERROR_PREFIXES = (b"error", b"alarm")


class AckResponse(Enum):
    """Classification of one response line."""

    OK = "ok"
    ERROR = "error"
    MESSAGE = "message"


@dataclass(frozen=True)
class Acknowledgement:
    """
    A classified machine response.

    Attributes:
        kind: The classification of the line.
        message: Response text without trailing whitespace; empty for OK.
    """

    kind: AckResponse
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        """True if this response completes the pending block."""
        return self.kind is not AckResponse.MESSAGE

    @property
    def is_ok(self) -> bool:
        return self.kind is AckResponse.OK

    @property
    def is_error(self) -> bool:
        return self.kind is AckResponse.ERROR


ACK_OK = Acknowledgement(AckResponse.OK)
ACK_CONNECTION_CLOSED = Acknowledgement(AckResponse.ERROR, CONNECTION_CLOSED_MESSAGE)


def classify_response(line: bytes | memoryview | str) -> Acknowledgement:
    """
    Classify a single response line.

    Args:
        line: One line received from the machine. An empty line means the
            connection was closed while waiting for a response.

    Returns:
        The Acknowledgement for this line.
    """
    if isinstance(line, str):
        line = line.encode("utf-8")
    data = bytes(line)
    if not data:
        return ACK_CONNECTION_CLOSED

    if any(has_prefix_ignore_case(data, prefix) for prefix in OK_PREFIXES):
        return ACK_OK

    message = data.decode("utf-8", errors="replace").rstrip()
    if any(has_prefix_ignore_case(data, prefix) for prefix in ERROR_PREFIXES):
        return Acknowledgement(AckResponse.ERROR, message)

    return Acknowledgement(AckResponse.MESSAGE, message)
