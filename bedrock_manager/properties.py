# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
server.properties access and world discovery.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .errors import FilesystemError

logger = logging.getLogger(__name__)

PROPERTIES_FILE = "server.properties"
WORLDS_DIR = "worlds"
WORLD_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_ -]+$")


def parse_properties(text: str) -> Dict[str, str]:
    """Parse key=value lines. Blank lines and # comments are ignored."""
    properties: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        if key:
            properties[key] = value.strip()
    return properties


def read_properties(server_dir: Optional[Path]) -> Dict[str, str]:
    """Read server.properties; a missing file yields an empty mapping."""
    if server_dir is None:
        logger.warning("Server directory not set. Returning empty properties.")
        return {}
    path = Path(server_dir) / PROPERTIES_FILE
    if not path.exists():
        logger.warning("server.properties not found at %s. Returning empty config.", path)
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Failed to read {path}: {e}") from e
    logger.info("Read server.properties from %s", path)
    return parse_properties(text)


def write_properties(server_dir: Optional[Path], properties: Mapping[str, object]) -> None:
    """Replace server.properties with the given mapping.

    Raises:
        ValueError: If a key is empty, starts with '#', or contains '=' or a
            line break, or if a value has a line break or surrounding whitespace.
        FilesystemError: If the server directory is missing or unwritable.
    """
    if server_dir is None or not Path(server_dir).is_dir():
        logger.error("Server directory not set or missing. Cannot write server.properties.")
        raise FilesystemError("Server directory not configured.")

    lines = []
    for key, value in properties.items():
        key = str(key)
        if not key.strip() or key.strip().startswith("#") or "=" in key or "\n" in key or "\r" in key:
            raise ValueError(f"Invalid server property key: {key!r}")
        if isinstance(value, bool):
            value = "true" if value else "false"
        text = str(value)
        if "\n" in text or "\r" in text or text != text.strip():
            raise ValueError(f"Invalid value for server property {key!r}")
        lines.append(f"{key.strip()}={text}\n")

    path = Path(server_dir) / PROPERTIES_FILE
    try:
        path.write_text("".join(lines), encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Failed to write {path}: {e}") from e
    logger.info("Wrote server.properties to %s", path)


def list_worlds(server_dir: Optional[Path]) -> List[str]:
    """Names of the world directories, sorted."""
    if server_dir is None:
        logger.warning("Server directory not set. Cannot list worlds.")
        return []
    worlds_path = Path(server_dir) / WORLDS_DIR
    if not worlds_path.is_dir():
        logger.warning("Worlds directory not found at %s. Returning empty world list.", worlds_path)
        return []
    names = sorted(entry.name for entry in worlds_path.iterdir() if entry.is_dir())
    logger.debug("Listed worlds: %s", ", ".join(names))
    return names


def validate_world_name(name: str) -> bool:
    """World names are plain directory names: no dots or separators."""
    if not name:
        return False
    if "." in name or "/" in name or "\\" in name:
        return False
    return bool(WORLD_NAME_PATTERN.match(name))


def world_path(server_dir: Path, world_name: str) -> Path:
    return Path(server_dir) / WORLDS_DIR / world_name
