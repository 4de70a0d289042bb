"""
GCode Streamer - Flow-controlled transmission of blocks to a machine.

This module provides the GCodeStreamer class which reads blocks from a
BufferedLineReader and sends them to a MachineConnection, pacing the
transmission by the machine's 'ok' acknowledgements.

Up to pipeline_depth blocks are written in one batch; the responses are then
consumed in send order. The machine is assumed to answer every block exactly
once, in order. Each block's response may be preceded by any number of
informational lines.
"""

from dataclasses import dataclass, field

from gcode_cli.core.escalation import ErrorPolicy, default_error_policy
from gcode_cli.core.line_reader import BufferedLineReader
from gcode_cli.core.logging import get_logger, log_gcode_recv
from gcode_cli.core.response import ACK_OK, Acknowledgement, classify_response
from gcode_cli.core.utils import IoFailure, format_duration, get_time_ms
from gcode_cli.device.connection import EchoSink, MachineConnection
from gcode_cli.handlers import EchoResponseHandler, ResponseHandler

logger = get_logger()

DEFAULT_SETTLE_TIMEOUT = 2.5  # seconds


@dataclass
class StreamSession:
    """
    State of one streaming run.

    Attributes:
        pipeline_depth: Number of blocks sent before checking acknowledgements.
        dry_run: Nothing is written to or read from the machine.
        use_flow_control: Wait for an acknowledgement for each block.
        blocks_sent: Number of non-empty blocks streamed.
        blocks_acknowledged: Number of blocks answered with 'ok'.
        errors: Number of blocks answered with an error.
        messages: Number of informational lines received.
        writes: Number of batched writes issued.
        chatter_discarded: Bytes discarded before streaming.
        trailing_discarded: Bytes discarded after streaming.
    """

    pipeline_depth: int = 1
    dry_run: bool = False
    use_flow_control: bool = True
    blocks_sent: int = 0
    blocks_acknowledged: int = 0
    errors: int = 0
    messages: int = 0
    writes: int = 0
    chatter_discarded: int = 0
    trailing_discarded: int = 0
    start_time_ms: int = field(default_factory=get_time_ms)
    end_time_ms: int | None = None

    @property
    def elapsed_ms(self) -> int:
        end = self.end_time_ms if self.end_time_ms is not None else get_time_ms()
        return end - self.start_time_ms

    def summary(self) -> str:
        return (
            f"Sent total of {self.blocks_sent} non-empty lines in "
            f"{format_duration(self.elapsed_ms)}s"
        )


class GCodeStreamer:
    """
    Streams blocks to a machine with 'ok' flow control.

    Unlike strict request-response, up to pipeline_depth blocks are in
    flight at once. Careful: low memory machines might drop data with a
    deep pipeline.
    """

    def __init__(
        self,
        connection: MachineConnection | None,
        pipeline_depth: int = 1,
        use_flow_control: bool = True,
        dry_run: bool = False,
        settle_timeout: float = DEFAULT_SETTLE_TIMEOUT,
        error_policy: ErrorPolicy | None = None,
        response_handler: ResponseHandler | None = None,
        chatter_sink: EchoSink | None = None,
        trailing_sink: EchoSink | None = None,
    ):
        """
        Initialize the streamer.

        Args:
            connection: The machine connection. May be None for a dry run.
            pipeline_depth: Number of blocks sent at once before checking
                the returning acknowledgements (>= 1).
            use_flow_control: Wait for 'ok' after each block. Forced off
                in a dry run.
            dry_run: Read and echo blocks but don't send anything.
            settle_timeout: Seconds of silence to wait for before and after
                streaming, to discard machine chatter.
            error_policy: Decides what happens on machine errors. Defaults
                to interactive on a terminal, abort otherwise.
            response_handler: Receives every response. Defaults to echo.
            chatter_sink: Optional sink for chatter discarded before streaming.
            trailing_sink: Optional sink for responses discarded after streaming.

        Raises:
            ValueError: If pipeline_depth is less than 1, or no connection is
                given for a real run.
        """
        if pipeline_depth < 1:
            raise ValueError(f"Invalid pipeline depth {pipeline_depth}")
        if connection is None and not dry_run:
            raise ValueError("A connection is required unless dry_run is set")

        self.connection = connection
        self.pipeline_depth = pipeline_depth
        self.dry_run = dry_run
        # In a dry-run, we also will not read anything.
        self.use_flow_control = use_flow_control and not dry_run
        self.settle_timeout = settle_timeout
        self.error_policy = error_policy if error_policy is not None else default_error_policy()
        self.response_handler = (
            response_handler
            if response_handler is not None
            else EchoResponseHandler(flow_control=self.use_flow_control)
        )
        self.chatter_sink = chatter_sink
        self.trailing_sink = trailing_sink
        self.session: StreamSession | None = None

    def read_acknowledgement(self) -> Acknowledgement:
        """
        Read and classify one response line from the machine.

        Returns:
            OK without reading when flow control is off; otherwise the
            classified line, or a connection-closed error at end of stream.

        Raises:
            IoFailure: If reading from the machine fails.
        """
        if not self.use_flow_control:
            return ACK_OK  # Don't read, always assume 'ok'.

        assert self.connection is not None
        try:
            line = self.connection.response_lines.read_line()
        except OSError as e:
            raise IoFailure(f"Reading from {self.connection.describe()} failed: {e}") from e
        if line:
            log_gcode_recv(bytes(line))
        return classify_response(line)

    def acknowledge(self, line_no: int, block: str) -> Acknowledgement:
        """
        Wait for the terminal response to one block.

        Informational lines are passed to the response handler as they
        arrive. On an error the error policy is consulted; it either
        returns (continue with the next block) or raises.

        Args:
            line_no: 1-based number of the block in the stream.
            block: The block text without its newline.

        Returns:
            The terminal acknowledgement.
        """
        while True:
            ack = self.read_acknowledgement()
            if not ack.is_terminal:
                if self.session:
                    self.session.messages += 1
                self.response_handler.on_message(line_no, block, ack)
                continue

            self.response_handler.on_complete(line_no, block, ack)
            if ack.is_ok:
                if self.session:
                    self.session.blocks_acknowledged += 1
            else:
                if self.session:
                    self.session.errors += 1
                self.error_policy.on_error(line_no, block, ack)
            return ack

    def stream(self, reader: BufferedLineReader) -> StreamSession:
        """
        Stream all blocks from reader to the machine.

        Args:
            reader: Reader over the G-code input.

        Returns:
            The finished session with its counters.

        Raises:
            IoFailure: If writing to or reading from the machine fails.
            ProtocolError: If the error policy stops on a machine error.
            UserAbort: If the operator stops after a machine error.
        """
        session = StreamSession(
            pipeline_depth=self.pipeline_depth,
            dry_run=self.dry_run,
            use_flow_control=self.use_flow_control,
        )
        self.session = session

        # Ignore initial chatter until there is some silence on the wire, so
        # we only get responses to our requests. Even without flow control
        # the machine might just reset on connect.
        if self.connection is not None and not self.dry_run:
            session.chatter_discarded = self.connection.discard_pending_input(
                self.settle_timeout, self.chatter_sink
            )

        session.start_time_ms = get_time_ms()
        while not reader.is_eof():
            lines = reader.read_next_lines(self.pipeline_depth)
            if not lines:
                continue

            if not self.dry_run:
                assert self.connection is not None
                self.connection.write_blocks(lines)
                session.writes += 1

            # All lines went out at once; now look at the responses for each
            # block in send order.
            for request in lines:
                session.blocks_sent += 1
                block = bytes(request[:-1]).decode("utf-8", errors="replace")
                self.acknowledge(session.blocks_sent, block)

        session.end_time_ms = get_time_ms()

        # We don't expect anything afterwards, but an imbalance of sent
        # blocks and acknowledgements would show up now.
        if self.connection is not None and not self.dry_run:
            logger.info("Discarding remaining machine responses.")
            session.trailing_discarded = self.connection.discard_pending_input(
                self.settle_timeout, self.trailing_sink
            )
            if session.trailing_discarded:
                logger.warning(
                    f"Discarded {session.trailing_discarded} bytes of unexpected "
                    "responses after the last block"
                )

        logger.debug(
            f"{session.blocks_acknowledged} acknowledged, {session.errors} errors, "
            f"{session.messages} messages in {session.writes} writes"
        )
        return session
