# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Configuration Module

Loads service configuration in layers: built-in defaults, then the YAML
config file, then environment variables, then command-line overrides.
Each layer is validated on its own and merged field by field.
"""

import argparse
import logging
import logging.handlers
import os
import platform
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "./config.yaml"
CONFIG_ENV_VAR = "BEDROCK_MANAGER_CONFIG"
WEBHOOK_ENV_VAR = "MC_UPDATE_WEBHOOK"
LOG_LEVEL_ENV_VAR = "BEDROCK_MANAGER_LOG_LEVEL"

DOWNLOAD_API_URL = "https://net-secondary.web.minecraft-services.net/api/v1.0/download/links"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "FATAL")


def _is_windows() -> bool:
    return platform.system() == "Windows"


def _default_download_type() -> str:
    return "serverBedrockWindows" if _is_windows() else "serverBedrockLinux"


def _default_executable() -> str:
    return "bedrock_server.exe" if _is_windows() else "bedrock_server"


class ServerConfig(BaseModel):
    """Dedicated server settings."""
    name: str = Field(default="Default Minecraft Server", description="Display name of the server")
    port_ipv4: int = Field(default=19132, ge=1, le=65535, description="IPv4 game port")
    port_ipv6: int = Field(default=19133, ge=1, le=65535, description="IPv6 game port")
    world_name: str = Field(default="Bedrock level", description="Default world (level-name)")
    auto_start: bool = Field(default=False, description="Start the server when the manager starts")


class PathsConfig(BaseModel):
    """Filesystem roots owned by the manager."""
    server_directory: Path = Field(default=Path("./server_data/default_server"), description="Active installation")
    temp_directory: Path = Field(default=Path("./server_data/temp/default_server"), description="Download/extraction staging root")
    backup_directory: Path = Field(default=Path("./server_data/backup/default_server"), description="Snapshot root")
    state_directory: Path = Field(default=Path("./server_data/state"), description="Version marker location")

    def resolved(self, base_dir: Path) -> "PathsConfig":
        """Return a copy with every relative path anchored at base_dir."""
        def _resolve(p: Path) -> Path:
            p = Path(p).expanduser()
            if not p.is_absolute():
                p = base_dir / p
            return p.resolve()

        return PathsConfig(
            server_directory=_resolve(self.server_directory),
            temp_directory=_resolve(self.temp_directory),
            backup_directory=_resolve(self.backup_directory),
            state_directory=_resolve(self.state_directory),
        )

    def managed_roots(self) -> List[Path]:
        return [self.server_directory, self.temp_directory, self.backup_directory]


class UpdatesConfig(BaseModel):
    """Release checking and download settings."""
    auto_update_enabled: bool = Field(default=True, description="Run the periodic update check")
    interval_minutes: int = Field(default=60, ge=0, description="Minutes between checks (0 disables)")
    download_api_url: str = Field(default=DOWNLOAD_API_URL, description="Upstream download links endpoint")
    download_type: str = Field(default_factory=_default_download_type, description="downloadType to pick from the links list")
    webhook_url: Optional[str] = Field(default=None, description="Webhook for update notifications")
    request_timeout: int = Field(default=30, ge=1, description="Metadata/webhook request timeout in seconds")
    download_timeout: int = Field(default=600, ge=1, description="Archive download timeout in seconds")


class ProcessConfig(BaseModel):
    """Supervised process settings."""
    user: Optional[str] = Field(default="minecraft", description="Owner applied to installs and snapshots (null disables chown)")
    group: Optional[str] = Field(default="minecraft", description="Group applied to installs and snapshots")
    executable: str = Field(default_factory=_default_executable, description="Server binary name inside the install")
    restart_grace_seconds: float = Field(default=3.0, ge=0.0, description="Pause between stop and start on restart")


class UIConfig(BaseModel):
    """HTTP interface settings."""
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    upload_directory: Path = Field(default=Path("./temp_uploads"), description="Where uploaded packs are staged")
    max_upload_mb: int = Field(default=100, ge=1, description="Maximum pack upload size in MB")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR, FATAL)")
    file: Optional[Path] = Field(default=None, description="Log file path (null = console only)")
    max_size_mb: int = Field(default=10, ge=1, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=0, description="Number of rotated log files")

    @field_validator("level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return (value or "INFO").upper()


SECTION_MODELS: Dict[str, type] = {
    "server": ServerConfig,
    "paths": PathsConfig,
    "updates": UpdatesConfig,
    "process": ProcessConfig,
    "ui": UIConfig,
    "logging": LoggingConfig,
}


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a in b.parents or b in a.parents


class Config(BaseModel):
    """Main configuration container."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    updates: UpdatesConfig = Field(default_factory=UpdatesConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _check_roots_disjoint(self) -> "Config":
        roots = [Path(p).resolve() for p in self.paths.managed_roots()]
        for i, a in enumerate(roots):
            for b in roots[i + 1:]:
                if _overlaps(a, b):
                    raise ValueError(f"Managed directories must not overlap: {a} / {b}")
        state = Path(self.paths.state_directory).resolve()
        for root in roots:
            if state == root or root in state.parents:
                raise ValueError(f"State directory {state} must not be inside managed root {root}")
        return self


# =============================================================================
# LAYERING
# =============================================================================

def validate_layer(layer: Dict[str, Any], source: str) -> Dict[str, Dict[str, Any]]:
    """Validate one configuration layer section by section.

    Only the fields the layer actually sets are kept, so later merging
    never lets a layer's defaults mask an earlier layer's values.

    Raises:
        ValueError: If a section fails validation.
    """
    validated: Dict[str, Dict[str, Any]] = {}
    for section, values in (layer or {}).items():
        model = SECTION_MODELS.get(section)
        if model is None:
            logger.warning("Ignoring unknown config section '%s' from %s", section, source)
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' from {source} must be a mapping")
        unknown = set(values) - set(model.model_fields)
        for key in sorted(unknown):
            logger.warning("Ignoring unknown config key '%s.%s' from %s", section, key, source)
        known = {k: v for k, v in values.items() if k in model.model_fields}
        parsed = model(**known)
        validated[section] = {k: getattr(parsed, k) for k in known}
    return validated


def merge_layers(*layers: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Merge validated layers; later layers win field by field."""
    merged: Dict[str, Dict[str, Any]] = {}
    for layer in layers:
        for section, values in layer.items():
            merged.setdefault(section, {}).update(values)
    return merged


def env_layer(environ: Optional[Dict[str, str]] = None) -> Dict[str, Dict[str, Any]]:
    """Collect overrides from environment variables."""
    environ = os.environ if environ is None else environ
    layer: Dict[str, Dict[str, Any]] = {}
    if environ.get(WEBHOOK_ENV_VAR):
        layer.setdefault("updates", {})["webhook_url"] = environ[WEBHOOK_ENV_VAR]
    if environ.get(LOG_LEVEL_ENV_VAR):
        layer.setdefault("logging", {})["level"] = environ[LOG_LEVEL_ENV_VAR]
    return layer


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bedrock-manager",
        description="Install, update and supervise a Minecraft Bedrock dedicated server.",
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--server-name")
    parser.add_argument("--server-directory")
    parser.add_argument("--temp-directory")
    parser.add_argument("--backup-directory")
    parser.add_argument("--world-name")
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS)
    parser.add_argument("--auto-start", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--auto-update", action=argparse.BooleanOptionalAction, default=None)
    return parser


def cli_layer(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    """Turn parsed command-line arguments into a config layer."""
    mapping = {
        "server_name": ("server", "name"),
        "server_directory": ("paths", "server_directory"),
        "temp_directory": ("paths", "temp_directory"),
        "backup_directory": ("paths", "backup_directory"),
        "world_name": ("server", "world_name"),
        "log_level": ("logging", "level"),
        "auto_start": ("server", "auto_start"),
        "auto_update": ("updates", "auto_update_enabled"),
    }
    layer: Dict[str, Dict[str, Any]] = {}
    for attr, (section, key) in mapping.items():
        value = getattr(args, attr, None)
        if value is not None:
            layer.setdefault(section, {})[key] = value
            logger.debug("CLI override: %s.%s = %s", section, key, value)
    return layer


def _read_file_layer(config_path: Path) -> Dict[str, Any]:
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("top-level YAML value must be a mapping")
    return data


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Config:
    """
    Load configuration from defaults, YAML file, environment and overrides.

    Args:
        path: Path to config file. If None, uses BEDROCK_MANAGER_CONFIG env
              var or defaults to ./config.yaml
        overrides: Command-line layer (see cli_layer)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Config with every directory resolved to an absolute path
    """
    environ = os.environ if environ is None else environ
    if path is None:
        path = environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)

    config_path = Path(path)
    base_dir = Path.cwd()
    file_layer: Dict[str, Dict[str, Any]] = {}

    if config_path.exists():
        logger.info("Loading configuration from: %s", config_path)
        base_dir = config_path.resolve().parent
        try:
            file_layer = validate_layer(_read_file_layer(config_path), str(config_path))
        except Exception as e:
            logger.warning("Failed to load config file: %s. Using defaults.", e)
            file_layer = {}
    else:
        logger.info("Config file not found at %s. Using defaults.", config_path)

    merged = merge_layers(
        file_layer,
        validate_layer(env_layer(environ), "environment"),
        validate_layer(overrides or {}, "command line"),
    )

    sections = {
        section: SECTION_MODELS[section](**values)
        for section, values in merged.items()
    }
    sections["paths"] = sections.get("paths", PathsConfig()).resolved(base_dir)
    ui = sections.get("ui", UIConfig())
    if not ui.upload_directory.is_absolute():
        ui = ui.model_copy(update={"upload_directory": (base_dir / ui.upload_directory).resolve()})
    sections["ui"] = ui

    # Overlapping directories are a hard error, not a fallback to defaults
    return Config(**sections)


def save_config(config: Config, path: Path) -> None:
    """Write configuration back to YAML.

    Paths inside the config file's directory are stored relative to it.
    """
    path = Path(path)
    base_dir = path.resolve().parent

    def _portable(p: Optional[Path]) -> Optional[str]:
        if p is None:
            return None
        p = Path(p)
        try:
            return f"./{p.relative_to(base_dir).as_posix()}"
        except ValueError:
            return str(p)

    data = config.model_dump(mode="json")
    for key in ("server_directory", "temp_directory", "backup_directory", "state_directory"):
        data["paths"][key] = _portable(getattr(config.paths, key))
    data["ui"]["upload_directory"] = _portable(config.ui.upload_directory)
    data["logging"]["file"] = _portable(config.logging.file)

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    logger.info("Wrote configuration to %s", path)


def setup_logging(config: LoggingConfig) -> None:
    """
    Configure logging based on configuration.

    Args:
        config: Logging configuration settings
    """
    level_name = config.level.upper()
    if level_name not in LOG_LEVELS and level_name != "CRITICAL":
        print(f"Warning: Invalid log level {config.level}. Defaulting to INFO.", file=sys.stderr)
        level_name = "INFO"
    level = logging.getLevelName(level_name)

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if config.file:
        try:
            config.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.handlers.RotatingFileHandler(
                config.file,
                maxBytes=config.max_size_mb * 1024 * 1024,
                backupCount=config.backup_count,
            ))
        except Exception as e:
            # If file logging fails, continue with console-only logging
            print(f"Warning: Could not setup file logging: {e}", file=sys.stderr)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    logging.getLogger("uvicorn").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)

    if config.file:
        logger.info("Logging configured: level=%s, file=%s", level_name, config.file)
    else:
        logger.info("Logging configured: level=%s (console only)", level_name)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_arg_parser().parse_args(argv)


def set_log_level(level_name: str) -> None:
    """Change the root log level at runtime (settings update)."""
    level_name = (level_name or "INFO").upper()
    if level_name not in LOG_LEVELS and level_name != "CRITICAL":
        logger.warning("Invalid log level %s. Keeping current level.", level_name)
        return
    level = logging.getLevelName(level_name)
    logging.getLogger().setLevel(level)
    logging.getLogger("uvicorn").setLevel(level)
    logger.info("Log level set to %s", level_name)
