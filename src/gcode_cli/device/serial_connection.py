"""
Serial Connection - Raw serial line to a machine.

The descriptor is a device path followed by optional comma separated
parameters:

    /dev/ttyACM0
    /dev/ttyACM0,b115200
    /dev/ttyACM0,b115200,-crtscts

'b<number>' sets the bit-rate, '+crtscts'/'-crtscts' (or plain 'crtscts')
enable or disable RTS/CTS hardware flow control. Defaults are 115200 bps
with hardware flow control.

The line is opened through pyserial in raw mode: 8N1, modem control lines
ignored, no canonical processing, no echo, no signal characters, no
input/output translation, and reads blocking until at least one byte is
available.
"""

from dataclasses import dataclass

import serial

from gcode_cli.device.connection import DEFAULT_RESPONSE_BUFFER_SIZE, MachineConnection
from gcode_cli.core.logging import get_logger
from gcode_cli.core.utils import ConfigFailure, OpenFailure

logger = get_logger()

DEFAULT_BAUD_RATE = 115200

# Speeds below 1200 exist but are not really used these days.
SUPPORTED_BAUD_RATES: tuple[int, ...] = tuple(
    sorted(rate for rate in serial.Serial.BAUDRATES if rate >= 1200)
)

FLAG_CRTSCTS = "crtscts"


@dataclass
class SerialSettings:
    """Serial line parameters parsed from a connection descriptor."""

    path: str
    baud_rate: int = DEFAULT_BAUD_RATE
    crtscts: bool = True


def validate_baud_rate(baud_rate: int) -> int:
    """
    Check a bit-rate against the table of supported speeds.

    Raises:
        ConfigFailure: If the speed is negative or not supported.
    """
    if baud_rate < 0:
        raise ConfigFailure(f"Invalid speed {baud_rate}")
    if baud_rate not in SUPPORTED_BAUD_RATES:
        valid = ", ".join(str(rate) for rate in SUPPORTED_BAUD_RATES)
        raise ConfigFailure(f"Invalid speed '{baud_rate}'; valid speeds are [{valid}]")
    return baud_rate


def parse_serial_descriptor(descriptor: str) -> SerialSettings:
    """
    Parse "<path>[,b<baud>][,[+|-]<flag>]..." into SerialSettings.

    Args:
        descriptor: The serial connection descriptor.

    Returns:
        The parsed settings.

    Raises:
        ConfigFailure: On a malformed bit-rate, unsupported speed or unknown flag.
    """
    path, _, parameters = descriptor.partition(",")
    settings = SerialSettings(path=path)

    for param in parameters.split(","):
        param = param.strip()
        if not param:
            continue

        if param[0] in "bB":
            try:
                speed = int(param[1:])
            except ValueError as e:
                raise ConfigFailure(f"Invalid speed parameter '{param}'") from e
            settings.baud_rate = validate_baud_rate(speed)
            continue

        # Flags can be with optional positive or negative prefix.
        flag_positive = True
        if param[0] == "+":
            param = param[1:]
        elif param[0] == "-":
            flag_positive = False
            param = param[1:]

        if param == FLAG_CRTSCTS:
            settings.crtscts = flag_positive
        else:
            raise ConfigFailure(f"Unknown option {param}")

    return settings


class SerialConnection(MachineConnection):
    """Connection to a machine on a serial line."""

    def __init__(
        self,
        port: serial.Serial,
        response_buffer_size: int = DEFAULT_RESPONSE_BUFFER_SIZE,
    ):
        """
        Wrap an open serial port.

        Args:
            port: An open pyserial port, configured with timeout=None.
            response_buffer_size: Size of the buffer for response lines.
        """
        self.serial = port
        super().__init__(response_buffer_size=response_buffer_size)

    @classmethod
    def open(
        cls,
        descriptor: str,
        response_buffer_size: int = DEFAULT_RESPONSE_BUFFER_SIZE,
    ) -> "SerialConnection":
        """
        Open and configure a serial device from its descriptor.

        Raises:
            ConfigFailure: If the descriptor parameters are invalid.
            OpenFailure: If the device cannot be opened or configured.
        """
        settings = parse_serial_descriptor(descriptor)
        logger.debug(
            f"Opening {settings.path} at {settings.baud_rate} bps, "
            f"crtscts={'on' if settings.crtscts else 'off'}"
        )
        try:
            port = serial.Serial(
                port=settings.path,
                baudrate=settings.baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                rtscts=settings.crtscts,
                xonxoff=False,
                timeout=None,
                exclusive=True,
            )
        except (serial.SerialException, ValueError, OSError) as e:
            raise OpenFailure(f"Failed to open serial device {settings.path}: {e}") from e

        logger.info(f"Serial port opened: {settings.path} @ {settings.baud_rate} bps")
        return cls(port, response_buffer_size=response_buffer_size)

    def describe(self) -> str:
        return f"serial device {self.serial.port}"

    def fileno(self) -> int:
        return self.serial.fileno()

    def close(self) -> None:
        if self.serial.is_open:
            self.serial.close()
            logger.debug("Serial connection closed")

    def _readinto(self, buffer: memoryview) -> int:
        try:
            # Blocks for the first byte, then takes whatever else is waiting.
            size = max(1, min(len(buffer), self.serial.in_waiting))
            data = self.serial.read(size)
        except serial.SerialException as e:
            raise OSError(str(e)) from e
        buffer[: len(data)] = data
        return len(data)

    def _write(self, data: memoryview) -> int:
        try:
            written = self.serial.write(data)
        except serial.SerialException as e:
            raise OSError(str(e)) from e
        return written if written is not None else len(data)
