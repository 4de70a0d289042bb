"""
Error escalation policies.

When the machine reports an error (or the connection drops while a block is
waiting for its acknowledgement), the streamer asks an ErrorPolicy what to do.
The policy returns to resume at the next block, or raises to stop the run.
"""

import sys
from abc import ABC, abstractmethod

import click

from gcode_cli.core.logging import get_logger
from gcode_cli.core.response import Acknowledgement
from gcode_cli.core.utils import ProtocolError, UserAbort

logger = get_logger()

CONTINUE_PROMPT = "[ Didn't get OK. Continue? ]"


class ErrorPolicy(ABC):
    """Decides whether streaming continues after a machine error."""

    @abstractmethod
    def on_error(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        """
        Called when a block was answered with an error.

        Args:
            line_no: 1-based number of the block in the stream.
            block: The block text without its newline.
            ack: The error acknowledgement.

        Raises:
            ProtocolError: To stop the run because of the error.
            UserAbort: If the operator chose to stop.
        """
        pass


class AbortErrorPolicy(ErrorPolicy):
    """Non-interactive sessions: every error is fatal."""

    def on_error(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        logger.error(
            "Received error. Non-interactive session does not allow for "
            "user feedback. Bailing out."
        )
        raise ProtocolError(ack.message, line_no=line_no)


class ContinueErrorPolicy(ErrorPolicy):
    """Log the error and keep streaming."""

    def on_error(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        logger.warning(f"Ignoring error on block {line_no} '{block}': {ack.message}")


class InteractiveErrorPolicy(ErrorPolicy):
    """Ask the operator on the terminal whether to continue."""

    def on_error(self, line_no: int, block: str, ack: Acknowledgement) -> None:
        try:
            resume = click.confirm(
                click.style(CONTINUE_PROMPT, fg="black", bg="red"),
                default=True,
                err=True,
            )
        except click.Abort as e:
            raise UserAbort(f"Stopped by user at block {line_no}") from e

        if not resume:
            raise UserAbort(f"Stopped by user at block {line_no}")
        logger.info(f"Resuming after error on block {line_no}")


def default_error_policy() -> ErrorPolicy:
    """Interactive when stdin is a terminal, otherwise abort on error."""
    if sys.stdin is not None and sys.stdin.isatty():
        return InteractiveErrorPolicy()
    return AbortErrorPolicy()
