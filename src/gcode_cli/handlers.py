"""
Extensible handlers for machine response processing.

These handlers provide hooks for processing the responses the streamer
collects for each block. The default EchoResponseHandler prints the
communication the way an operator wants to see it; other implementations can
record results or trigger external actions.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from gcode_cli.core.logging import echo
from gcode_cli.core.response import Acknowledgement


class ResponseHandler(ABC):
    """
    Abstract base class for handling machine responses.

    Extend this class to implement custom processing of the responses
    to each streamed block.
    """

    def on_message(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        """
        Called for each informational line received while a block is pending.

        Args:
            line_no: 1-based number of the block in the stream.
            block: The block text without its newline.
            ack: The MESSAGE acknowledgement.
        """
        pass

    @abstractmethod
    def on_complete(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        """
        Called once per block with its terminal (OK or ERROR) response.

        Args:
            line_no: 1-based number of the block in the stream.
            block: The block text without its newline.
            ack: The terminal acknowledgement.
        """
        pass


class EchoResponseHandler(ResponseHandler):
    """
    Print requests together with their responses.

    The request is printed at most once, right before the first response
    worth showing. Routine 'ok' handshakes are shown only with show_requests;
    informational messages with show_messages or show_requests; errors
    whenever show_errors is set.
    """

    def __init__(
        self,
        show_requests: bool = True,
        show_messages: bool = True,
        show_errors: bool = True,
        flow_control: bool = True,
    ):
        """
        Initialize the echo handler.

        Args:
            show_requests: Echo every block with its 'ok'.
            show_messages: Echo non-handshake messages.
            show_errors: Echo error responses.
            flow_control: Whether responses are read at all; without it the
                block is echoed without '<< OK'.
        """
        self.show_requests = show_requests
        self.show_messages = show_messages
        self.show_errors = show_errors
        self.flow_control = flow_control
        self._printed_line_no: int | None = None

    def _echo_request(self, line_no: int, block: str, suffix: str = "") -> None:
        if self._printed_line_no == line_no:
            if suffix:
                echo(suffix.strip())
            return
        self._printed_line_no = line_no
        echo(f"{line_no:6d}\t{block}{suffix}")

    def on_message(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        if not (self.show_requests or self.show_messages):
            return
        self._echo_request(line_no, block)
        echo(ack.message, highlight=True)

    def on_complete(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        if ack.is_ok:
            if self.show_requests:
                self._echo_request(line_no, block, " << OK" if self.flow_control else "")
            return

        if self.show_errors:
            self._echo_request(line_no, block)
            echo(ack.message, highlight=True)


class RecordingResponseHandler(ResponseHandler):
    """
    Keep every response per block in memory.

    Attributes:
        results: Mapping of line number to the list of acknowledgements
            received for that block, terminal one last.
    """

    def __init__(self):
        self.results: dict[int, list[Acknowledgement]] = {}

    def on_message(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        self.results.setdefault(line_no, []).append(ack)

    def on_complete(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        self.results.setdefault(line_no, []).append(ack)


class MultiResponseHandler(ResponseHandler):
    """Fan responses out to several handlers in order."""

    def __init__(self, *handlers: ResponseHandler):
        self.handlers = list(handlers)

    def on_message(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        for handler in self.handlers:
            handler.on_message(line_no, block, ack)

    def on_complete(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        for handler in self.handlers:
            handler.on_complete(line_no, block, ack)


# Type alias for callback-based handlers (alternative to class-based)
ResponseCallback = Callable[[int, str, Acknowledgement], None]


class CallbackResponseHandler(ResponseHandler):
    """
    Response handler that uses callback functions.

    This provides a simpler alternative to subclassing for simple use cases.
    """

    def __init__(
        self,
        on_complete: ResponseCallback | None = None,
        on_message: ResponseCallback | None = None,
    ):
        """
        Initialize with optional callback functions.

        Args:
            on_complete: Callback for the terminal response of each block.
            on_message: Callback for informational lines.
        """
        self._on_complete = on_complete
        self._on_message = on_message

    def on_message(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        if self._on_message:
            self._on_message(line_no, block, ack)

    def on_complete(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        if self._on_complete:
            self._on_complete(line_no, block, ack)
