"""Shared pytest fixtures."""

import pytest

from gcode_cli.core import config


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep the user's environment and config file out of the tests."""
    for name in (
        config.ENV_CONFIG_FILE,
        config.ENV_CONNECTION,
        config.ENV_SETTLE_TIMEOUT,
        config.ENV_PIPELINE_DEPTH,
        config.ENV_FLOW_CONTROL,
        config.ENV_DRY_RUN,
        config.ENV_GCODE_LOG_FILE,
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "DEFAULT_CONFIG_PATH", tmp_path / "no-such-config.yaml")
