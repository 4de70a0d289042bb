"""
Core package - Contains core utilities and infrastructure.

This package provides:
- Utils: Exception taxonomy and small helpers
- LineReader: Buffered framing of byte streams into G-code blocks
- Response: Classification of machine responses
- Escalation: Policies deciding what happens on machine errors
- Config: Configuration loading and management
- Logging: Logging utilities

The streamer lives in gcode_cli.core.streamer; it depends on the device
package and is not imported here.
"""

from .utils import (
    ConfigFailure,
    GCodeCliError,
    IoFailure,
    OpenFailure,
    ProtocolError,
    UserAbort,
)
from .line_reader import BufferedLineReader, LineTooLongError
from .response import AckResponse, Acknowledgement, classify_response
from .escalation import (
    AbortErrorPolicy,
    ContinueErrorPolicy,
    ErrorPolicy,
    InteractiveErrorPolicy,
    default_error_policy,
)
from .config import Config

__all__ = [
    "ConfigFailure",
    "GCodeCliError",
    "IoFailure",
    "OpenFailure",
    "ProtocolError",
    "UserAbort",
    "BufferedLineReader",
    "LineTooLongError",
    "AckResponse",
    "Acknowledgement",
    "classify_response",
    "AbortErrorPolicy",
    "ContinueErrorPolicy",
    "ErrorPolicy",
    "InteractiveErrorPolicy",
    "default_error_policy",
    "Config",
]
