"""Tests for the flow-controlled streamer."""

import io
import math

import pytest

from gcode_cli.core.escalation import AbortErrorPolicy, ContinueErrorPolicy, ErrorPolicy
from gcode_cli.core.line_reader import BufferedLineReader
from gcode_cli.core.response import AckResponse, CONNECTION_CLOSED_MESSAGE
from gcode_cli.core.streamer import GCodeStreamer, StreamSession
from gcode_cli.core.utils import IoFailure, ProtocolError, UserAbort
from gcode_cli.device.connection import MachineConnection
from gcode_cli.handlers import RecordingResponseHandler


class FakeMachine(MachineConnection):
    """In-memory machine with canned responses that records every write."""

    def __init__(self, responses: bytes = b"", chatter: int = 0, trailing: int = 0):
        self._responses = io.BytesIO(responses)
        self.writes: list[bytes] = []
        self.discard_calls: list[float] = []
        self._discards = [chatter, trailing]
        self.closed = False
        super().__init__(response_buffer_size=256)

    def fileno(self) -> int:
        return -1

    def close(self) -> None:
        self.closed = True

    def _readinto(self, buffer) -> int:
        data = self._responses.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def _write(self, data) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def discard_pending_input(self, timeout, echo_sink=None) -> int:
        self.discard_calls.append(timeout)
        return self._discards.pop(0) if self._discards else 0

    @property
    def sent(self) -> bytes:
        return b"".join(self.writes)


class DroppedLinkMachine(FakeMachine):
    """Machine whose link resets as soon as a response is awaited."""

    def _readinto(self, buffer) -> int:
        raise ConnectionResetError(104, "Connection reset by peer")


def reader_for(data: bytes) -> BufferedLineReader:
    return BufferedLineReader.from_file(io.BytesIO(data), buffer_size=256)


def program(count: int) -> bytes:
    return b"".join(b"G1 X%d\n" % i for i in range(count))


class TestConstruction:
    """Tests for GCodeStreamer construction."""

    def test_invalid_pipeline_depth(self):
        """Depth must be at least one."""
        with pytest.raises(ValueError):
            GCodeStreamer(FakeMachine(), pipeline_depth=0, error_policy=AbortErrorPolicy())

    def test_connection_required(self):
        """Only a dry run may go without a connection."""
        with pytest.raises(ValueError):
            GCodeStreamer(None, error_policy=AbortErrorPolicy())

    def test_dry_run_disables_flow_control(self):
        """Nothing can be read during a dry run."""
        streamer = GCodeStreamer(None, dry_run=True, error_policy=AbortErrorPolicy())

        assert streamer.use_flow_control is False


class TestStreaming:
    """Tests for stream()."""

    def make_streamer(self, machine, **kwargs) -> GCodeStreamer:
        kwargs.setdefault("error_policy", AbortErrorPolicy())
        kwargs.setdefault("response_handler", RecordingResponseHandler())
        kwargs.setdefault("settle_timeout", 0.01)
        return GCodeStreamer(machine, **kwargs)

    @pytest.mark.parametrize("blocks, depth", [(1, 1), (5, 1), (5, 2), (6, 3), (7, 4), (3, 8)])
    def test_write_count(self, blocks, depth):
        """K blocks at depth N take ceil(K/N) writes."""
        machine = FakeMachine(b"ok\n" * blocks)
        streamer = self.make_streamer(machine, pipeline_depth=depth)

        session = streamer.stream(reader_for(program(blocks)))

        assert len(machine.writes) == math.ceil(blocks / depth)
        assert session.writes == len(machine.writes)
        assert session.blocks_sent == blocks
        assert session.blocks_acknowledged == blocks
        assert machine.sent == program(blocks)

    def test_batches_preserve_order(self):
        """Each write carries the next blocks in input order."""
        machine = FakeMachine(b"ok\n" * 5)
        streamer = self.make_streamer(machine, pipeline_depth=2)

        streamer.stream(reader_for(program(5)))

        assert machine.writes == [
            b"G1 X0\nG1 X1\n",
            b"G1 X2\nG1 X3\n",
            b"G1 X4\n",
        ]

    def test_cleaned_blocks_are_sent(self):
        """Comments and blank lines never reach the machine."""
        machine = FakeMachine(b"ok\nok\n")
        streamer = self.make_streamer(machine)

        session = streamer.stream(reader_for(b"G1 X10 ; comment\n   \nG1 Y5\r\n"))

        assert machine.sent == b"G1 X10\nG1 Y5\n"
        assert session.blocks_sent == 2

    def test_message_before_ok(self):
        """Informational lines are attributed to the pending block."""
        machine = FakeMachine(b"ok\nTemp:200\nok\n")
        recorder = RecordingResponseHandler()
        streamer = self.make_streamer(machine, pipeline_depth=2, response_handler=recorder)

        session = streamer.stream(reader_for(b"M105\nM105\n"))

        assert [ack.kind for ack in recorder.results[1]] == [AckResponse.OK]
        assert [ack.kind for ack in recorder.results[2]] == [
            AckResponse.MESSAGE,
            AckResponse.OK,
        ]
        assert recorder.results[2][0].message == "Temp:200"
        assert session.blocks_acknowledged == 2
        assert session.messages == 1
        assert len(machine.writes) == 1

    def test_error_aborts_non_interactive_run(self):
        """An error stops the run and nothing more is sent."""
        machine = FakeMachine(b"ok\nerror: limit switch\nok\n")
        recorder = RecordingResponseHandler()
        streamer = self.make_streamer(machine, response_handler=recorder)

        with pytest.raises(ProtocolError) as exc_info:
            streamer.stream(reader_for(program(3)))

        assert str(exc_info.value) == "error: limit switch"
        assert exc_info.value.line_no == 2
        assert recorder.results[2][-1].kind is AckResponse.ERROR
        assert machine.sent == b"G1 X0\nG1 X1\n"
        assert streamer.session.errors == 1

    def test_error_policy_may_continue(self):
        """A policy that returns lets the stream go on."""
        machine = FakeMachine(b"ok\nALARM:1\nok\n")
        streamer = self.make_streamer(machine, error_policy=ContinueErrorPolicy())

        session = streamer.stream(reader_for(program(3)))

        assert session.blocks_sent == 3
        assert session.blocks_acknowledged == 2
        assert session.errors == 1
        assert machine.sent == program(3)

    def test_error_policy_receives_block(self):
        """The policy is told which block failed and why."""
        calls = []

        class RecordingPolicy(ErrorPolicy):
            def on_error(self, line_no, block, ack):
                calls.append((line_no, block, ack.message))

        machine = FakeMachine(b"error:20\n")
        streamer = self.make_streamer(machine, error_policy=RecordingPolicy())

        streamer.stream(reader_for(b"G5 X1 ; unsupported\n"))

        assert calls == [(1, "G5 X1", "error:20")]

    def test_user_abort_propagates(self):
        """A policy raising UserAbort stops the run."""

        class DecliningPolicy(ErrorPolicy):
            def on_error(self, line_no, block, ack):
                raise UserAbort("no")

        machine = FakeMachine(b"error\n")
        streamer = self.make_streamer(machine, error_policy=DecliningPolicy())

        with pytest.raises(UserAbort):
            streamer.stream(reader_for(program(2)))
        assert machine.sent == b"G1 X0\n"

    def test_read_failure_is_io_failure(self):
        """A broken link while waiting for 'ok' is reported as a machine I/O error."""
        machine = DroppedLinkMachine()
        streamer = self.make_streamer(machine)

        with pytest.raises(IoFailure, match="Connection reset by peer") as exc_info:
            streamer.stream(reader_for(program(2)))

        assert isinstance(exc_info.value.__cause__, ConnectionResetError)
        assert machine.sent == b"G1 X0\n"

    def test_connection_closed_while_waiting(self):
        """Running out of responses is an error for the pending block."""
        machine = FakeMachine(b"ok\n")
        streamer = self.make_streamer(machine)

        with pytest.raises(ProtocolError, match=CONNECTION_CLOSED_MESSAGE):
            streamer.stream(reader_for(program(2)))

    def test_without_flow_control(self):
        """Without flow control nothing is read back."""
        machine = FakeMachine(b"")
        recorder = RecordingResponseHandler()
        streamer = self.make_streamer(
            machine, use_flow_control=False, pipeline_depth=2, response_handler=recorder
        )

        session = streamer.stream(reader_for(program(3)))

        assert machine.sent == program(3)
        assert session.blocks_acknowledged == 3
        assert all(acks[0].is_ok for acks in recorder.results.values())

    def test_dry_run(self):
        """A dry run reads and counts the input but touches no connection."""
        recorder = RecordingResponseHandler()
        streamer = self.make_streamer(None, dry_run=True, response_handler=recorder)

        session = streamer.stream(reader_for(b"G28\n\n; c\nG1 X1\n"))

        assert session.blocks_sent == 2
        assert session.writes == 0
        assert session.dry_run
        assert sorted(recorder.results) == [1, 2]

    def test_dry_run_with_connection_sends_nothing(self):
        """A connection passed to a dry run stays untouched."""
        machine = FakeMachine(b"")
        streamer = self.make_streamer(machine, dry_run=True)

        streamer.stream(reader_for(program(4)))

        assert machine.writes == []
        assert machine.discard_calls == []

    def test_settle_before_and_after(self):
        """Chatter is discarded before streaming and leftovers after."""
        machine = FakeMachine(b"ok\n", chatter=42, trailing=3)
        streamer = self.make_streamer(machine, settle_timeout=0.3)

        session = streamer.stream(reader_for(program(1)))

        assert machine.discard_calls == [0.3, 0.3]
        assert session.chatter_discarded == 42
        assert session.trailing_discarded == 3

    def test_empty_input(self):
        """An empty file sends nothing."""
        machine = FakeMachine(b"")
        streamer = self.make_streamer(machine)

        session = streamer.stream(reader_for(b"; nothing here\n\n"))

        assert machine.writes == []
        assert session.blocks_sent == 0


class TestStreamSession:
    """Tests for StreamSession reporting."""

    def test_summary(self):
        """The summary reports the block count and duration."""
        session = StreamSession(blocks_sent=12, start_time_ms=1000, end_time_ms=4042)

        assert session.elapsed_ms == 3042
        assert session.summary() == "Sent total of 12 non-empty lines in 3.042s"
