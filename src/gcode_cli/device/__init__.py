"""
Device package - Contains connection implementations for machines.

This package provides:
- MachineConnection: Base class for transports to a machine
- SerialConnection: Raw serial line (pyserial)
- NetworkConnection: TCP stream
- StdioConnection: stdin/stdout passthrough
- open_connection: Pick and open a connection from a descriptor string
"""

from .connection import MachineConnection, open_connection
from .network_connection import NetworkConnection
from .serial_connection import SUPPORTED_BAUD_RATES, SerialConnection, SerialSettings
from .stdio_connection import StdioConnection

__all__ = [
    "MachineConnection",
    "open_connection",
    "NetworkConnection",
    "SerialConnection",
    "SerialSettings",
    "SUPPORTED_BAUD_RATES",
    "StdioConnection",
]
