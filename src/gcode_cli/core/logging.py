"""
Unified logging setup for GCode CLI.

This module provides centralized logging configuration with:
- Custom VERBOSE logging level (level 9, more verbose than DEBUG)
- verbose() method added to the standard Logger class
- A 'gcode' logger recording all machine traffic to an optional file
- A 'gcode.echo' logger printing the request/response echo to stderr

Usage:
    from gcode_cli.core.logging import setup_logging, get_logger

    # In your CLI or main entry point:
    setup_logging(verbosity_level=2, quiet=False)  # VERBOSE level

    # Use verbose logging anywhere:
    logger = get_logger(__name__)
    logger.verbose("This is a verbose message")
"""

import logging
import sys
from pathlib import Path
from typing import Any, TextIO

import click

# Define custom VERBOSE level (9 is between DEBUG (10) and NOTSET (0))
# Lower numbers = more verbose logging enabled
VERBOSE = 9
logging.addLevelName(VERBOSE, "VERBOSE")

GCODE_LOGGER_ID = "gcode"
ECHO_LOGGER_ID = "gcode.echo"

DATE_FMT = "%Y-%m-%d %H:%M:%S"
LOG_FMT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
COMM_LOG_FMT = "%(asctime)s - %(source)s: %(message)s"
ECHO_FMT = "%(message)s"


class VerboseLogger(logging.Logger):
    def verbose(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        """
        Log a message with severity 'VERBOSE'.

        VERBOSE is a custom level that is more verbose than DEBUG.
        It's useful for raw byte dumps that would clutter DEBUG output.

        Args:
            self: The logger instance (injected via method binding).
            message: The log message.
            *args: Arguments for message formatting.
            **kwargs: Additional keyword arguments passed to log().
        """
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, message, args, **kwargs)


class EchoFormatter(logging.Formatter):
    """
    Formatter for the communication echo.

    Records flagged with extra={"highlight": True} (non-ok machine responses)
    are shown in reverse video when colorize is enabled.
    """

    def __init__(self, colorize: bool = False):
        super().__init__(ECHO_FMT)
        self.colorize = colorize

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if self.colorize and getattr(record, "highlight", False):
            return click.style(message, reverse=True)
        return message


def setup_logging(
    verbosity_level: int = 0,
    quiet: bool = False,
    gcode_log_file: str | None = None,
    echo_stream: TextIO | None = None,
    colorize: bool | None = None,
) -> None:
    """
    Configure logging based on verbosity settings.

    This is the unified logging setup location used throughout the application.
    All logging configuration should happen here.

    Args:
        verbosity_level: Verbosity counter from CLI (e.g., from Click's count=True).
            - 0: INFO level (default)
            - 1: DEBUG level (-v flag)
            - 2+: VERBOSE level (-vv or more flags)
        quiet: If True, set log level to ERROR (takes precedence over verbosity_level).
        gcode_log_file: Optional path to a file to log all machine communication.
            If provided, a separate logger named 'gcode' is configured to write
            messages only to this file (propagate=False).
        echo_stream: Stream for the communication echo (default: stderr).
        colorize: Highlight unusual machine responses. Defaults to whether the
            echo stream is a terminal.
    """
    # Determine the appropriate log level
    if quiet:
        level = logging.ERROR
    elif verbosity_level >= 2:
        level = VERBOSE
    elif verbosity_level == 1:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.setLoggerClass(VerboseLogger)

    # Configure basic logging with consistent format
    logging.basicConfig(level=level, format=LOG_FMT, datefmt=DATE_FMT)

    setup_file_logger(gcode_log_file, GCODE_LOGGER_ID)
    setup_echo_logger(echo_stream, colorize)


def setup_file_logger(log_file: str | None, logger_id: str) -> None:
    file_logger = logging.getLogger(logger_id)

    # Already configured
    if file_logger.handlers and \
        any(isinstance(h, logging.FileHandler) for h in file_logger.handlers):
        return

    try:
        fh: logging.Handler = logging.NullHandler()
        if log_file:
            # Ensure log file path exists
            log_path = Path(log_file)
            if log_path.parent:
                log_path.parent.mkdir(parents=True, exist_ok=True)

            fh = logging.FileHandler(str(log_path), encoding="utf-8", mode="a")
            fh.setFormatter(logging.Formatter(COMM_LOG_FMT, datefmt=DATE_FMT))
            fh.setLevel(logging.INFO)

        file_logger.addHandler(fh)
        file_logger.setLevel(logging.INFO)

        # Do not propagate to root logger - only write to file
        file_logger.propagate = False

    except OSError as e:
        logging.getLogger(__name__).error(
            f"Failed to set up log file '{log_file}' for logger '{logger_id}': {e}"
        )


def setup_echo_logger(stream: TextIO | None = None, colorize: bool | None = None) -> None:
    """
    Route the communication echo to a stream.

    The echo is not filtered by the root log level; what gets echoed is
    decided by the response handler.

    Args:
        stream: Target stream (default: stderr).
        colorize: Highlight unusual responses; defaults to stream.isatty().
    """
    stream = stream if stream is not None else sys.stderr
    if colorize is None:
        colorize = hasattr(stream, "isatty") and stream.isatty()

    echo_logger = logging.getLogger(ECHO_LOGGER_ID)
    for handler in list(echo_logger.handlers):
        echo_logger.removeHandler(handler)

    sh = logging.StreamHandler(stream)
    sh.setFormatter(EchoFormatter(colorize=colorize))
    echo_logger.addHandler(sh)
    echo_logger.setLevel(logging.INFO)
    echo_logger.propagate = False


def get_logger(name: str | None = None) -> VerboseLogger:
    """
    Get a logger instance, ensuring it is a VerboseLogger.

    This function is a wrapper around logging.getLogger that ensures the
    returned logger is an instance of VerboseLogger, even if it was
    created before setup_logging() was called.

    Args:
        name: The name of the logger to get. Defaults to the calling module.

    Returns:
        An instance of VerboseLogger.
    """
    if name is None:
        # Get the name of the calling module
        import inspect

        frame = inspect.stack()[1]
        module = inspect.getmodule(frame[0])
        name = module.__name__ if module else "__main__"

    logger = logging.getLogger(name)

    # If the logger is not a VerboseLogger, it was created before
    # setLoggerClass was called. We need to replace it.
    if not isinstance(logger, VerboseLogger):
        logger.__class__ = VerboseLogger

    return logger  # type: ignore


def get_gcode_logger() -> logging.Logger:
    return logging.getLogger(GCODE_LOGGER_ID)


def get_echo_logger() -> logging.Logger:
    return logging.getLogger(ECHO_LOGGER_ID)


def log_gcode_communication(content: str | bytes, sent: bool = True) -> None:
    if isinstance(content, (bytes, bytearray, memoryview)):
        content = bytes(content).decode("utf-8", errors="replace")
    get_gcode_logger().info(content.rstrip(), extra={"source": "Sent" if sent else "Recv"})


def log_gcode_sent(command: str | bytes) -> None:
    log_gcode_communication(command, sent=True)


def log_gcode_recv(response: str | bytes) -> None:
    log_gcode_communication(response, sent=False)


def echo(message: str, highlight: bool = False) -> None:
    """Write one line of communication echo."""
    get_echo_logger().info(message, extra={"highlight": highlight})
