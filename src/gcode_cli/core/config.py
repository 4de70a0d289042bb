"""Configuration management for GCode CLI.

Handles configuration loading with the following precedence (highest to lowest):
1. Environment variables
2. CLI arguments
3. Config file
4. Default values
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gcode_cli.core.logging import get_logger
from gcode_cli.core.utils import ConfigFailure

logger = get_logger()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "gcode-cli" / "config.yaml"
DEFAULT_CONNECTION = "/dev/ttyACM0,b115200"
DRY_RUN_CONNECTION = "/dev/null"

# Environment variable names
ENV_CONFIG_FILE = "GCODE_CLI_CONFIG"
ENV_CONNECTION = "GCODE_CLI_CONNECTION"
ENV_SETTLE_TIMEOUT = "GCODE_CLI_SETTLE_TIMEOUT"
ENV_PIPELINE_DEPTH = "GCODE_CLI_PIPELINE_DEPTH"
ENV_FLOW_CONTROL = "GCODE_CLI_FLOW_CONTROL"
ENV_DRY_RUN = "GCODE_CLI_DRY_RUN"
ENV_GCODE_LOG_FILE = "GCODE_CLI_LOG_FILE"

TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class ConnectionConfig:
    """Machine connection settings."""

    descriptor: str = DEFAULT_CONNECTION
    settle_timeout: float = 2500.0  # ms
    response_buffer_size: int = 1 << 16  # bytes


@dataclass
class StreamingConfig:
    """Streaming behavior settings."""

    pipeline_depth: int = 1
    remove_comments: bool = True
    flow_control: bool = True
    dry_run: bool = False
    input_buffer_size: int = 1 << 20  # bytes


@dataclass
class OutputConfig:
    """Communication echo settings."""

    show_requests: bool = True
    show_messages: bool = True
    show_errors: bool = True


@dataclass
class Config:
    """Main configuration container."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    gcode_log_file: str | None = None

    @property
    def is_dry_run(self) -> bool:
        """Dry run requested, or the machine is /dev/null."""
        return self.streaming.dry_run or self.connection.descriptor == DRY_RUN_CONNECTION

    @classmethod
    def load(
        cls,
        config_file: Path | str | None = None,
        cli_args: dict[str, Any] | None = None,
    ) -> "Config":
        """Load configuration from all sources with proper precedence.

        Precedence (highest to lowest):
        1. Environment variables
        2. CLI arguments
        3. Config file
        4. Default values

        Args:
            config_file: Path to configuration file. If None, uses default or env var.
            cli_args: Dictionary of CLI arguments.

        Returns:
            Loaded and merged configuration.

        Raises:
            ConfigFailure: If a value is invalid after loading all sources.
        """
        config = cls()

        # Determine config file path
        if config_file is None:
            config_file = os.environ.get(ENV_CONFIG_FILE, str(DEFAULT_CONFIG_PATH))

        config_path = Path(config_file).expanduser()

        # Load from config file if it exists
        if config_path.exists():
            config = cls._load_from_file(config_path)

        # Override with CLI arguments
        if cli_args:
            config = cls._apply_cli_args(config, cli_args)

        # Override with environment variables (highest precedence)
        config = cls._apply_env_vars(config)

        config._validate()
        return config

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load configuration from YAML file.

        Keys may be written with hyphens or underscores.

        Args:
            path: Path to the YAML config file.

        Returns:
            Configuration loaded from file.
        """
        config = cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")
            return config

        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {path}: expected a mapping")
            return config

        data = _normalize_keys(data)

        try:
            connection_data = data.get("connection") or {}
            if "descriptor" in connection_data:
                config.connection.descriptor = str(connection_data["descriptor"])
            if "settle_timeout" in connection_data:
                config.connection.settle_timeout = float(connection_data["settle_timeout"])
            if "response_buffer_size" in connection_data:
                config.connection.response_buffer_size = int(
                    connection_data["response_buffer_size"]
                )

            streaming_data = data.get("streaming") or {}
            if "pipeline_depth" in streaming_data:
                config.streaming.pipeline_depth = int(streaming_data["pipeline_depth"])
            if "remove_comments" in streaming_data:
                config.streaming.remove_comments = bool(streaming_data["remove_comments"])
            if "flow_control" in streaming_data:
                config.streaming.flow_control = bool(streaming_data["flow_control"])
            if "dry_run" in streaming_data:
                config.streaming.dry_run = bool(streaming_data["dry_run"])
            if "input_buffer_size" in streaming_data:
                config.streaming.input_buffer_size = int(streaming_data["input_buffer_size"])

            output_data = data.get("output") or {}
            if "show_requests" in output_data:
                config.output.show_requests = bool(output_data["show_requests"])
            if "show_messages" in output_data:
                config.output.show_messages = bool(output_data["show_messages"])
            if "show_errors" in output_data:
                config.output.show_errors = bool(output_data["show_errors"])
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigFailure(f"Invalid value in config file {path}: {e}") from e

        if "gcode_log_file" in data:
            config.gcode_log_file = str(data["gcode_log_file"])

        return config

    @classmethod
    def _apply_cli_args(cls, config: "Config", cli_args: dict[str, Any]) -> "Config":
        """Apply CLI arguments to configuration.

        Args:
            config: Existing configuration to modify.
            cli_args: Dictionary of CLI arguments.

        Returns:
            Modified configuration.
        """
        if cli_args.get("connection") is not None:
            config.connection.descriptor = str(cli_args["connection"])

        if cli_args.get("settle_timeout") is not None:
            config.connection.settle_timeout = float(cli_args["settle_timeout"])

        if cli_args.get("pipeline_depth") is not None:
            config.streaming.pipeline_depth = int(cli_args["pipeline_depth"])

        if cli_args.get("remove_comments") is not None:
            config.streaming.remove_comments = bool(cli_args["remove_comments"])

        if cli_args.get("flow_control") is not None:
            config.streaming.flow_control = bool(cli_args["flow_control"])

        if cli_args.get("dry_run") is not None:
            config.streaming.dry_run = bool(cli_args["dry_run"])

        if cli_args.get("show_requests") is not None:
            config.output.show_requests = bool(cli_args["show_requests"])

        if cli_args.get("show_messages") is not None:
            config.output.show_messages = bool(cli_args["show_messages"])

        if cli_args.get("show_errors") is not None:
            config.output.show_errors = bool(cli_args["show_errors"])

        if cli_args.get("gcode_log_file") is not None:
            config.gcode_log_file = str(cli_args["gcode_log_file"])

        return config

    @classmethod
    def _apply_env_vars(cls, config: "Config") -> "Config":
        """Apply environment variables to configuration.

        Args:
            config: Existing configuration to modify.

        Returns:
            Modified configuration.

        Raises:
            ConfigFailure: If a numeric variable can't be parsed.
        """
        try:
            if ENV_CONNECTION in os.environ:
                config.connection.descriptor = os.environ[ENV_CONNECTION]

            if ENV_SETTLE_TIMEOUT in os.environ:
                config.connection.settle_timeout = float(os.environ[ENV_SETTLE_TIMEOUT])

            if ENV_PIPELINE_DEPTH in os.environ:
                config.streaming.pipeline_depth = int(os.environ[ENV_PIPELINE_DEPTH])
        except ValueError as e:
            raise ConfigFailure(f"Invalid environment variable value: {e}") from e

        if ENV_FLOW_CONTROL in os.environ:
            value = os.environ[ENV_FLOW_CONTROL].lower()
            config.streaming.flow_control = value in TRUE_VALUES

        if ENV_DRY_RUN in os.environ:
            value = os.environ[ENV_DRY_RUN].lower()
            config.streaming.dry_run = value in TRUE_VALUES

        if ENV_GCODE_LOG_FILE in os.environ:
            config.gcode_log_file = os.environ[ENV_GCODE_LOG_FILE]

        return config

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigFailure: If a value is out of range.
        """
        if self.streaming.pipeline_depth < 1:
            raise ConfigFailure(
                f"Invalid block buffer count {self.streaming.pipeline_depth}; must be >= 1"
            )
        if self.connection.settle_timeout < 0:
            raise ConfigFailure(
                f"Invalid startup squash timeout {self.connection.settle_timeout}"
            )
        if self.streaming.input_buffer_size < 2:
            raise ConfigFailure(
                f"Invalid input buffer size {self.streaming.input_buffer_size}"
            )
        if self.connection.response_buffer_size < 2:
            raise ConfigFailure(
                f"Invalid response buffer size {self.connection.response_buffer_size}"
            )
        if not self.connection.descriptor:
            raise ConfigFailure("Connection descriptor must not be empty")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        result: dict[str, Any] = {
            "connection": {
                "descriptor": self.connection.descriptor,
                "settle_timeout": self.connection.settle_timeout,
                "response_buffer_size": self.connection.response_buffer_size,
            },
            "streaming": {
                "pipeline_depth": self.streaming.pipeline_depth,
                "remove_comments": self.streaming.remove_comments,
                "flow_control": self.streaming.flow_control,
                "dry_run": self.streaming.dry_run,
                "input_buffer_size": self.streaming.input_buffer_size,
            },
            "output": {
                "show_requests": self.output.show_requests,
                "show_messages": self.output.show_messages,
                "show_errors": self.output.show_errors,
            },
        }
        if self.gcode_log_file is not None:
            result["gcode_log_file"] = self.gcode_log_file
        return result

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            path: Path to save to. If None, uses default config path.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        save_path = Path(path).expanduser()
        save_path.parent.mkdir(parents=True, exist_ok=True)

        # Convert to YAML-friendly format with hyphenated keys
        data = _hyphenate_keys(self.to_dict())

        with open(save_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively turn 'settle-timeout' style keys into 'settle_timeout'."""
    return {
        str(key).replace("-", "_"): _normalize_keys(value) if isinstance(value, dict) else value
        for key, value in data.items()
    }


def _hyphenate_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key.replace("_", "-"): _hyphenate_keys(value) if isinstance(value, dict) else value
        for key, value in data.items()
    }
