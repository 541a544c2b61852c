# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Backup & Restore

Snapshots the whole active installation before an update, copies the
user-owned parts (worlds, packs, config files) into the freshly swapped
install, and can reinstate a snapshot wholesale when an update fails
after the swap.

Snapshots are directories under the backup root named after the UTC
time they were taken (2026-10-19T08-30-00_123Z). They are never pruned
automatically.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from . import fs_ops
from .errors import FilesystemError
from .fs_ops import ManagedRoots

logger = logging.getLogger(__name__)

WORLD_DIRECTORIES = ("worlds",)
PACK_DIRECTORIES = (
    "behavior_packs",
    "resource_packs",
    "development_behavior_packs",
    "development_resource_packs",
)
CONFIG_FILES = ("server.properties", "permissions.json", "allowlist.json", "whitelist.json")
SNAPSHOT_NAME_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})_(\d{3})Z(?:-\d+)?$")


@dataclass
class SnapshotInfo:
    """A snapshot directory on disk."""
    name: str
    path: Path
    size_bytes: int
    created_at: datetime


def snapshot_name(now: Optional[datetime] = None) -> str:
    """ISO-8601 timestamp with ':' and '.' made filesystem-safe."""
    now = now or datetime.now(timezone.utc)
    iso = now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return iso.replace(":", "-").replace(".", "_")


def parse_snapshot_name(name: str) -> Optional[datetime]:
    """Inverse of snapshot_name; a trailing collision suffix is ignored."""
    match = SNAPSHOT_NAME_PATTERN.match(name)
    if not match:
        return None
    date, hh, mm, ss, ms = match.groups()
    return datetime.strptime(f"{date}T{hh}:{mm}:{ss}.{ms}", "%Y-%m-%dT%H:%M:%S.%f").replace(tzinfo=timezone.utc)


def _snapshot_time(entry: Path) -> datetime:
    created = parse_snapshot_name(entry.name)
    if created is None:
        created = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
    return created


class BackupManager:
    """Creates, restores and lists installation snapshots."""

    def __init__(
        self,
        roots: ManagedRoots,
        owner: Optional[str] = None,
        group: Optional[str] = None,
        directories: tuple = WORLD_DIRECTORIES + PACK_DIRECTORIES,
        config_files: tuple = CONFIG_FILES,
    ):
        self.roots = roots
        self.owner = owner
        self.group = group
        self.directories = directories
        self.config_files = config_files

    @property
    def server_dir(self) -> Path:
        return self.roots.server_directory

    @property
    def backup_dir(self) -> Path:
        return self.roots.backup_directory

    async def backup(self) -> Optional[Path]:
        """Copy the active install into a new snapshot.

        Returns:
            The snapshot path, or None when there is no install to back up.

        Raises:
            FilesystemError: If the copy fails (the partial snapshot is removed).
        """
        if not self.server_dir.exists():
            logger.info("Server directory not found. Skipping backup.")
            return None

        snapshot = self.backup_dir / snapshot_name()
        suffix = 1
        while snapshot.exists():
            snapshot = self.backup_dir / f"{snapshot_name()}-{suffix}"
            suffix += 1
        snapshot.mkdir(parents=True)
        logger.info("Creating backup in %s", snapshot)

        try:
            await asyncio.to_thread(fs_ops.copy_tree, self.server_dir, snapshot)
            await fs_ops.change_ownership(snapshot, self.owner, self.group, self.roots)
        except Exception as e:
            logger.error("Error during backup: %s", e)
            if snapshot.exists():
                await asyncio.to_thread(fs_ops.remove_tree, snapshot, self.roots)
            raise

        logger.info("Backup complete in %s", snapshot)
        return snapshot

    async def restore(self, snapshot: Path, target: Path) -> List[str]:
        """Copy user data from a snapshot into a freshly installed tree.

        Each item is handled on its own; a missing item is logged and
        skipped. Only the configured paths are overwritten.

        Returns:
            Names of the items that were restored.
        """
        logger.info("Copying existing data from %s to %s", snapshot, target)
        restored: List[str] = []

        for name in self.directories:
            src = snapshot / name
            if not src.is_dir():
                logger.warning("Backup directory not found (this is okay if not used): %s", src)
                continue
            logger.info("Copying directory: %s", name)
            await asyncio.to_thread(fs_ops.copy_tree, src, target / name)
            restored.append(name)

        for name in self.config_files:
            src = snapshot / name
            if not src.is_file():
                logger.warning("Backup config file not found: %s", src)
                continue
            logger.info("Copying config file: %s", name)
            await asyncio.to_thread(fs_ops.copy_file, src, target / name)
            restored.append(name)

        logger.info("Finished copying existing data.")
        return restored

    async def rollback(self, snapshot: Path, retired_dir: Path) -> None:
        """Reinstate a snapshot as the active install.

        The current (broken) install is moved to retired_dir, which must
        sit inside the temp root, then removed.
        """
        if not snapshot.is_dir():
            raise FilesystemError(f"Snapshot {snapshot} does not exist")
        logger.warning("Rolling back %s to snapshot %s", self.server_dir, snapshot)

        if self.server_dir.exists():
            self.roots.check_removable(retired_dir)
            await asyncio.to_thread(fs_ops.move_dir, self.server_dir, retired_dir)
        await asyncio.to_thread(fs_ops.copy_tree, snapshot, self.server_dir)
        if retired_dir.exists():
            await asyncio.to_thread(fs_ops.remove_tree, retired_dir, self.roots)
        logger.info("Rollback to snapshot %s complete", snapshot.name)

    def list_snapshots(self) -> List[SnapshotInfo]:
        """List snapshots with size and creation time, newest first.

        The time comes from the snapshot name, or the directory mtime for
        names this manager did not produce.
        """
        if not self.backup_dir.exists():
            return []
        snapshots = [
            SnapshotInfo(
                name=entry.name,
                path=entry,
                size_bytes=fs_ops.dir_size(entry),
                created_at=_snapshot_time(entry),
            )
            for entry in self.backup_dir.iterdir()
            if entry.is_dir()
        ]
        snapshots.sort(key=lambda s: (s.created_at, s.name), reverse=True)
        return snapshots
