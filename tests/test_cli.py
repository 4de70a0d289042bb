"""Tests for the command-line interface."""

import socket
import struct
import threading

import pytest
import yaml
from click.testing import CliRunner

from gcode_cli.cli import main

PROGRAM = b"; test part\nG28\n\nG1 X10 Y10 ; move\nM2\n"


@pytest.fixture
def gcode_file(tmp_path):
    path = tmp_path / "part.gcode"
    path.write_bytes(PROGRAM)
    return path


@pytest.fixture
def runner():
    return CliRunner()


class FakeMachineServer:
    """Loopback TCP server answering each received block."""

    def __init__(self, respond, greeting: bytes = b""):
        self.respond = respond
        self.greeting = greeting
        self.received: list[bytes] = []
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(1)
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.listener.getsockname()[1]}"

    def _serve(self):
        conn, _ = self.listener.accept()
        with conn:
            if self.greeting:
                conn.sendall(self.greeting)
            pending = b""
            while True:
                data = conn.recv(1024)
                if not data:
                    break
                pending += data
                while b"\n" in pending:
                    block, pending = pending.split(b"\n", 1)
                    self.received.append(block)
                    response = self.respond(len(self.received), block)
                    if response is None:
                        # Abortive close: the client sees a connection reset.
                        conn.setsockopt(
                            socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0)
                        )
                        return
                    conn.sendall(response)

    def close(self):
        self.thread.join(timeout=5)
        self.listener.close()


class TestDryRun:
    """Tests for runs that don't talk to a machine."""

    def test_dry_run_flag(self, runner, gcode_file):
        """Blocks are echoed but not acknowledged."""
        result = runner.invoke(main, [str(gcode_file), "-n"])

        assert result.exit_code == 0
        assert "     1\tG28" in result.output
        assert "     2\tG1 X10 Y10" in result.output
        assert "     3\tM2" in result.output
        assert "<< OK" not in result.output
        assert "test part" not in result.output

    def test_dev_null_is_dry_run(self, runner, gcode_file):
        """Sending to /dev/null never opens it."""
        result = runner.invoke(main, [str(gcode_file), "/dev/null"])

        assert result.exit_code == 0
        assert "     3\tM2" in result.output

    def test_keep_comments(self, runner, gcode_file):
        """Comments are sent along on request."""
        result = runner.invoke(main, [str(gcode_file), "-n", "-c"])

        assert result.exit_code == 0
        assert "     1\t; test part" in result.output
        assert "G1 X10 Y10 ; move" in result.output

    def test_quiet_dry_run(self, runner, gcode_file):
        """Quiet mode hides the regular echo."""
        result = runner.invoke(main, [str(gcode_file), "-n", "-q"])

        assert result.exit_code == 0
        assert "G28" not in result.output

    def test_stdin(self, runner):
        """'-' reads the program from stdin."""
        result = runner.invoke(main, ["-", "-n"], input=b"G0 X1\nG0 X2\n")

        assert result.exit_code == 0
        assert "     2\tG0 X2" in result.output


class TestStreaming:
    """Tests streaming to a loopback TCP machine."""

    def test_all_blocks_acknowledged(self, runner, gcode_file):
        """Every block is sent and shown with its 'ok'."""
        server = FakeMachineServer(lambda line_no, block: b"ok\n")
        try:
            result = runner.invoke(main, [str(gcode_file), server.address, "-s", "50", "-b", "2"])
        finally:
            server.close()

        assert result.exit_code == 0, result.output
        assert server.received == [b"G28", b"G1 X10 Y10", b"M2"]
        assert "     1\tG28 << OK" in result.output
        assert "     3\tM2 << OK" in result.output

    def test_chatter_echoed_to_stderr(self, runner, gcode_file, recwarn):
        """Start-up chatter is passed through to stderr as raw bytes."""
        server = FakeMachineServer(
            lambda line_no, block: b"ok\n", greeting=b"Grbl 1.1h ['$' for help]\n"
        )
        try:
            result = runner.invoke(main, [str(gcode_file), server.address, "-s", "100"])
        finally:
            server.close()

        assert result.exit_code == 0, result.output
        assert "Grbl 1.1h" in result.output
        assert not [w for w in recwarn if issubclass(w.category, DeprecationWarning)]

    def test_error_stops_run(self, runner, gcode_file):
        """A machine error in a non-interactive run fails the command."""

        def respond(line_no, block):
            return b"error: limit switch\n" if line_no == 2 else b"ok\n"

        server = FakeMachineServer(respond)
        try:
            result = runner.invoke(main, [str(gcode_file), server.address, "-s", "50"])
        finally:
            server.close()

        assert result.exit_code == 1
        assert server.received == [b"G28", b"G1 X10 Y10"]
        assert "error: limit switch" in result.output

    def test_link_reset_is_machine_error(self, runner, gcode_file, caplog):
        """A dropped link is blamed on the machine, not on the input file."""
        server = FakeMachineServer(lambda line_no, block: None)
        try:
            result = runner.invoke(main, [str(gcode_file), server.address, "-s", "50"])
        finally:
            server.close()

        assert result.exit_code == 1
        assert server.received == [b"G28"]
        assert "Reading from" in caplog.text
        assert "Reading input" not in caplog.text

    def test_unreachable_machine(self, runner, gcode_file):
        """A connection that can't be opened fails the command."""
        result = runner.invoke(main, [str(gcode_file), "127.0.0.1:1"])

        assert result.exit_code == 1


class TestUsage:
    """Tests for argument handling."""

    def test_missing_filename(self, runner):
        """A G-code file is required."""
        result = runner.invoke(main, [])

        assert result.exit_code == 2
        assert "Expected filename" in result.output

    def test_unreadable_file(self, runner, tmp_path):
        """A missing input file is a usage error."""
        result = runner.invoke(main, [str(tmp_path / "missing.gcode"), "-n"])

        assert result.exit_code == 2

    def test_invalid_buffer(self, runner, gcode_file):
        """The pipeline depth must be at least 1."""
        result = runner.invoke(main, [str(gcode_file), "-n", "-b", "0"])

        assert result.exit_code == 2

    def test_generate_config(self, runner, tmp_path):
        """A config file with the effective settings is written."""
        config_path = tmp_path / "config.yaml"

        result = runner.invoke(
            main, ["--generate-config", "--config", str(config_path), "-b", "4"]
        )

        assert result.exit_code == 0
        with open(config_path) as f:
            saved = yaml.safe_load(f)
        assert saved["streaming"]["pipeline-depth"] == 4

    def test_config_file_is_used(self, runner, gcode_file, tmp_path):
        """Settings from the config file apply."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("streaming:\n  dry-run: true\n")

        result = runner.invoke(main, [str(gcode_file), "--config", str(config_path)])

        assert result.exit_code == 0
        assert "     3\tM2" in result.output
