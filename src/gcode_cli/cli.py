"""
Command-line interface for GCode CLI.

This module provides the CLI using Click, supporting configuration via:
1. Environment variables (highest precedence)
2. CLI arguments
3. Config file
4. Default values (lowest precedence)
"""

import sys
from pathlib import Path
from typing import Any, BinaryIO

import click

from gcode_cli.core.config import (
    Config,
    DEFAULT_CONFIG_PATH,
    ENV_CONFIG_FILE,
    ENV_PIPELINE_DEPTH,
    ENV_SETTLE_TIMEOUT,
)
from gcode_cli.core.escalation import default_error_policy
from gcode_cli.core.line_reader import BufferedLineReader, LineTooLongError
from gcode_cli.core.logging import GCODE_LOGGER_ID, get_logger, setup_file_logger, setup_logging
from gcode_cli.core.streamer import GCodeStreamer
from gcode_cli.core.utils import GCodeCliError
from gcode_cli.device import MachineConnection, open_connection
from gcode_cli.handlers import EchoResponseHandler


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("gcode_file", type=click.File("rb"), required=False)
@click.argument("connection", required=False)
@click.option(
    "-s", "--settle",
    "settle_timeout",
    type=click.IntRange(min=0),
    default=None,
    help=f"Wait this many milliseconds for init chatter from the machine to subside. "
         f"[default: 2500] [env: {ENV_SETTLE_TIMEOUT}]",
)
@click.option(
    "-b", "--buffer",
    "pipeline_depth",
    type=click.IntRange(min=1),
    default=None,
    help=f"Number of blocks sent out buffered before checking the returning "
         f"'ok' acknowledgements. Careful, low memory machines might drop data. "
         f"[default: 1] [env: {ENV_PIPELINE_DEPTH}]",
)
@click.option(
    "-c", "--keep-comments",
    is_flag=True,
    default=False,
    help="Include semicolon end-of-line comments (they are stripped by default).",
)
@click.option(
    "-n", "--dry-run",
    is_flag=True,
    default=False,
    help="Read the G-code but don't actually send anything.",
)
@click.option(
    "-q", "--quiet",
    count=True,
    help="Don't output diagnostic messages or echo regular communication. "
         "Apply twice to even suppress non-handshake communication.",
)
@click.option(
    "-F", "--no-flow-control",
    is_flag=True,
    default=False,
    help="Disable waiting for 'ok' acknowledge flow-control.",
)
@click.option(
    "--hide-errors",
    is_flag=True,
    default=False,
    help="Don't echo error responses from the machine.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=False, path_type=Path),
    envvar=ENV_CONFIG_FILE,
    default=None,
    help=f"Path to configuration file. [default: {DEFAULT_CONFIG_PATH}] [env: {ENV_CONFIG_FILE}]",
)
@click.option(
    "--gcode-log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Log all communication with the machine to this file.",
)
@click.option(
    "-v", "--verbose",
    count=True,
    help="Enable verbose logging (-v debug, -vv raw data).",
)
@click.option(
    "--generate-config",
    is_flag=True,
    default=False,
    help="Generate a default configuration file and exit.",
)
@click.version_option(package_name="gcode-cli")
def main(
    gcode_file: BinaryIO | None,
    connection: str | None,
    settle_timeout: int | None,
    pipeline_depth: int | None,
    keep_comments: bool,
    dry_run: bool,
    quiet: int,
    no_flow_control: bool,
    hide_errors: bool,
    config_file: Path | None,
    gcode_log_file: str | None,
    verbose: int,
    generate_config: bool,
) -> None:
    """
    Stream a G-code file to a machine with 'ok' flow control.

    GCODE_FILE is a filename or '-' for stdin.

    CONNECTION is a path to a tty device, a host:port or '-'.
    [default: /dev/ttyACM0,b115200] [env: GCODE_CLI_CONNECTION]

    \b
    * Serial connection
      A device path with optional bit-rate and flow control settings
      separated by comma; default is 'b115200,+crtscts'.
          /dev/ttyACM0
          /dev/ttyACM0,b115200
          /dev/ttyACM0,b115200,-crtscts
    * TCP connection
      For machines receiving G-code via TCP, host[:port] (default port 8888).
          localhost:4444
    * stdin/stdout
      '-' writes to stdout and reads responses from stdin; useful for
      debugging or wiring up with e.g. socat.
    """
    # Set up logging first
    setup_logging(verbosity_level=verbose, quiet=quiet > 0)
    logger = get_logger(__name__)

    # Build CLI args dict for config loading
    cli_args: dict[str, Any] = {
        "connection": connection,
        "settle_timeout": settle_timeout,
        "pipeline_depth": pipeline_depth,
        "gcode_log_file": gcode_log_file,
    }
    if keep_comments:
        cli_args["remove_comments"] = False
    if dry_run:
        cli_args["dry_run"] = True
    if no_flow_control:
        cli_args["flow_control"] = False
    if quiet >= 1:
        cli_args["show_requests"] = False
    if quiet >= 2:
        cli_args["show_messages"] = False
    if hide_errors:
        cli_args["show_errors"] = False

    try:
        config = Config.load(config_file=config_file, cli_args=cli_args)
    except GCodeCliError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    # Handle --generate-config
    if generate_config:
        target_path = config_file if config_file else DEFAULT_CONFIG_PATH
        try:
            config.save(target_path)
            click.echo(f"Configuration file generated: {target_path}")
        except OSError as e:
            click.echo(f"Error generating config file: {e}", err=True)
            sys.exit(1)
        return

    if gcode_file is None:
        raise click.UsageError("Expected filename")

    setup_file_logger(config.gcode_log_file, GCODE_LOGGER_ID)

    sys.exit(run(config, gcode_file))


def run(config: Config, gcode_file: BinaryIO) -> int:
    """
    Stream one file according to config.

    Args:
        config: The loaded configuration.
        gcode_file: Binary input stream with the G-code.

    Returns:
        Process exit code.
    """
    logger = get_logger(__name__)
    descriptor = config.connection.descriptor
    dry_run = config.is_dry_run
    filename = getattr(gcode_file, "name", "-")
    if filename == "<stdin>":
        filename = "-"

    machine: MachineConnection | None = None
    if not dry_run:
        try:
            machine = open_connection(descriptor, config.connection.response_buffer_size)
        except GCodeCliError as e:
            logger.error(f"Failed to connect to machine {descriptor}: {e}")
            return 1

    stderr = sys.stderr.buffer
    use_flow_control = config.streaming.flow_control and not dry_run
    streamer = GCodeStreamer(
        machine,
        pipeline_depth=config.streaming.pipeline_depth,
        use_flow_control=use_flow_control,
        dry_run=dry_run,
        settle_timeout=config.connection.settle_timeout / 1000,
        error_policy=default_error_policy(),
        response_handler=EchoResponseHandler(
            show_requests=config.output.show_requests,
            show_messages=config.output.show_messages,
            show_errors=config.output.show_errors,
            flow_control=use_flow_control,
        ),
        chatter_sink=stderr if config.output.show_requests else None,
        trailing_sink=stderr if config.output.show_messages else None,
    )
    reader = BufferedLineReader.from_file(
        gcode_file,
        buffer_size=config.streaming.input_buffer_size,
        remove_comments=config.streaming.remove_comments,
    )

    try:
        logger.info(
            f"---- Sending file '{filename}' to '{descriptor}'"
            f"{' (Dry-run)' if dry_run else ''} -----"
        )
        session = streamer.stream(reader)
    except (GCodeCliError, LineTooLongError) as e:
        logger.error(f"Streaming '{filename}' stopped: {e}")
        return 1
    except OSError as e:
        logger.error(f"Reading input {filename} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    finally:
        if machine is not None:
            machine.close()

    logger.info(f"---- Finished file '{filename}' -----")
    logger.info(session.summary())
    return 0


if __name__ == "__main__":
    main()
