"""GCode CLI - Stream G-code files to CNC machines, 3D printers and lasers."""

__version__ = "0.1.0"

from .core import (
    BufferedLineReader,
    Config,
    ConfigFailure,
    GCodeCliError,
    IoFailure,
    OpenFailure,
    ProtocolError,
    UserAbort,
)
from .core.streamer import GCodeStreamer, StreamSession
from .device import MachineConnection, open_connection
from .handlers import EchoResponseHandler, ResponseHandler

__all__ = [
    "BufferedLineReader",
    "Config",
    "ConfigFailure",
    "GCodeCliError",
    "IoFailure",
    "OpenFailure",
    "ProtocolError",
    "UserAbort",
    "GCodeStreamer",
    "StreamSession",
    "MachineConnection",
    "open_connection",
    "EchoResponseHandler",
    "ResponseHandler",
    "__version__",
]
