# SPDX-License-Identifier: GPL-3.0-only
# Copyright (C) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Configuration Tests

Tests for configuration loading, layering and validation.
Run with: pytest tests/test_config.py -v
"""

import pytest
import tempfile
from pathlib import Path

from pydantic import ValidationError


def test_config_loads_defaults():
    """Test configuration loads with default values."""
    from bedrock_manager.config import Config

    config = Config()

    assert config.server.name == "Default Minecraft Server"
    assert config.server.port_ipv4 == 19132
    assert config.ui.port == 3000
    assert config.ui.max_upload_mb == 100
    assert config.updates.interval_minutes == 60
    assert config.process.restart_grace_seconds == 3.0
    assert config.logging.level == "INFO"


def test_config_from_yaml():
    """Test configuration loads from YAML file."""
    from bedrock_manager.config import load_config

    yaml_content = """
server:
  name: Test Server
  world_name: Survival

updates:
  auto_update_enabled: false
  interval_minutes: 15

logging:
  level: debug
"""

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.yaml"
        path.write_text(yaml_content)

        config = load_config(str(path), environ={})

        assert config.server.name == "Test Server"
        assert config.server.world_name == "Survival"
        assert config.updates.auto_update_enabled is False
        assert config.updates.interval_minutes == 15
        assert config.logging.level == "DEBUG"


def test_relative_paths_resolve_against_config_file():
    """Relative directories are anchored at the config file's directory."""
    from bedrock_manager.config import load_config

    with tempfile.TemporaryDirectory() as tmp:
        base = Path(tmp).resolve()
        path = base / "config.yaml"
        path.write_text("paths:\n  server_directory: ./srv\n")

        config = load_config(str(path), environ={})

        assert config.paths.server_directory == base / "srv"
        assert config.paths.temp_directory.is_absolute()
        assert config.ui.upload_directory.is_absolute()


def test_layer_precedence():
    """CLI beats environment beats file beats defaults."""
    from bedrock_manager.config import load_config

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.yaml"
        path.write_text(
            "server:\n  world_name: FromFile\n  name: FileName\n"
            "logging:\n  level: WARNING\n"
        )

        config = load_config(
            str(path),
            overrides={"server": {"world_name": "FromCli"}},
            environ={"BEDROCK_MANAGER_LOG_LEVEL": "error", "MC_UPDATE_WEBHOOK": "http://hook"},
        )

        assert config.server.world_name == "FromCli"
        assert config.server.name == "FileName"
        assert config.logging.level == "ERROR"
        assert config.updates.webhook_url == "http://hook"
        # Untouched fields keep their defaults
        assert config.ui.port == 3000


def test_cli_layer_from_arguments():
    """Only the flags given on the command line become overrides."""
    from bedrock_manager.config import cli_layer, parse_args

    args = parse_args(["--world-name", "Creative", "--no-auto-update", "--log-level", "debug"])
    layer = cli_layer(args)

    assert layer == {
        "server": {"world_name": "Creative"},
        "updates": {"auto_update_enabled": False},
        "logging": {"level": "DEBUG"},
    }


def test_invalid_layer_is_rejected():
    """Each layer is validated on its own."""
    from bedrock_manager.config import validate_layer

    with pytest.raises(ValidationError):
        validate_layer({"ui": {"port": 0}}, "test")


def test_unknown_keys_are_ignored():
    """Unknown sections and keys are dropped with a warning."""
    from bedrock_manager.config import validate_layer

    layer = validate_layer({"bogus": {"a": 1}, "server": {"name": "X", "colour": "red"}}, "test")

    assert layer == {"server": {"name": "X"}}


def test_broken_file_falls_back_to_defaults():
    """An unparseable config file is logged and defaults are used."""
    from bedrock_manager.config import load_config

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.yaml"
        path.write_text("server: [not, a, mapping\n")

        config = load_config(str(path), environ={})

        assert config.server.name == "Default Minecraft Server"


def test_overlapping_roots_rejected():
    """The managed directories must be disjoint."""
    from bedrock_manager.config import load_config

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.yaml"
        path.write_text(
            "paths:\n"
            "  server_directory: ./data\n"
            "  backup_directory: ./data/backups\n"
        )

        with pytest.raises(ValidationError):
            load_config(str(path), environ={})


def test_state_directory_outside_roots():
    """The version marker must not live inside a managed root."""
    from bedrock_manager.config import load_config

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.yaml"
        path.write_text(
            "paths:\n"
            "  server_directory: ./srv\n"
            "  state_directory: ./srv/state\n"
        )

        with pytest.raises(ValidationError):
            load_config(str(path), environ={})


def test_save_config_round_trip():
    """Saved configuration loads back to the same values."""
    from bedrock_manager.config import load_config, save_config

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.yaml"
        path.write_text("updates:\n  interval_minutes: 5\n")
        config = load_config(str(path), environ={})
        config.updates.auto_update_enabled = False

        save_config(config, path)
        reloaded = load_config(str(path), environ={})

        assert reloaded.updates.interval_minutes == 5
        assert reloaded.updates.auto_update_enabled is False
        assert reloaded.paths.server_directory == config.paths.server_directory
        assert "./server_data" in path.read_text()


def test_logging_level_normalised():
    """Log levels are upper-cased; FATAL is accepted."""
    from bedrock_manager.config import LoggingConfig

    assert LoggingConfig(level="fatal").level == "FATAL"
    assert LoggingConfig(level="Warning").level == "WARNING"
