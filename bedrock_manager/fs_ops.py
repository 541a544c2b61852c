# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Filesystem Helpers

Guarded delete/ownership operations over the three managed roots
(server, temp, backup) plus the copy helpers the update pipeline uses.
Every destructive call checks its target against the roots first.
"""

import asyncio
import errno
import logging
import os
import platform
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import FilesystemError, RestrictedPathError

logger = logging.getLogger(__name__)


def is_windows() -> bool:
    return platform.system() == "Windows"


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


class ManagedRoots:
    """The directories the manager is allowed to delete inside or chown."""

    def __init__(self, server_directory: Path, temp_directory: Path, backup_directory: Path):
        self.server_directory = Path(server_directory).resolve()
        self.temp_directory = Path(temp_directory).resolve()
        self.backup_directory = Path(backup_directory).resolve()

    @property
    def roots(self) -> List[Path]:
        return [self.server_directory, self.temp_directory, self.backup_directory]

    def ensure_exist(self) -> None:
        for root in self.roots:
            if not root.exists():
                root.mkdir(parents=True, exist_ok=True)
                logger.info("Created directory: %s", root)

    def check_removable(self, path: Path) -> Path:
        """Return the resolved path if it is strictly inside a managed root.

        Raises:
            RestrictedPathError: If the path is a root itself or outside all roots.
        """
        target = Path(path).resolve()
        for root in self.roots:
            if root in target.parents:
                return target
        if target in self.roots:
            logger.error("Refusing to delete managed root: %s", target)
            raise RestrictedPathError(f"Refusing to delete managed root {target}")
        logger.error("Delete attempted on restricted path: %s", target)
        raise RestrictedPathError(f"Path {target} is outside the managed directories")

    def check_ownership_target(self, path: Path) -> Path:
        """Ownership may only change on the server or backup trees (roots included)."""
        target = Path(path).resolve()
        for root in (self.server_directory, self.backup_directory):
            if _is_within(target, root):
                return target
        logger.error(
            "changeOwnership attempted on restricted path: %s. "
            "Expected to be within configured server or backup directories.",
            target,
        )
        raise RestrictedPathError(f"Invalid path for ownership change: {target}")


def _remove_tree_external(path: Path) -> None:
    if is_windows():
        cmd = ["cmd", "/c", "rmdir", "/s", "/q", str(path)]
    else:
        cmd = ["rm", "-rf", str(path)]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise FilesystemError(f"Failed to remove directory {path}: {e}") from e
    if result.returncode != 0:
        raise FilesystemError(
            f"Failed to remove directory {path}: exit {result.returncode} {result.stderr.strip()}"
        )


def remove_tree(path: Path, roots: ManagedRoots) -> None:
    """Recursively delete a directory strictly inside one of the managed roots.

    Uses shutil.rmtree and falls back to ``rm -rf`` / ``rmdir /s /q``.
    A missing path is not an error.
    """
    target = roots.check_removable(path)
    if not target.exists() and not target.is_symlink():
        return
    if target.is_file() or target.is_symlink():
        target.unlink()
        return
    try:
        shutil.rmtree(target)
    except OSError as e:
        logger.warning("shutil.rmtree failed for %s (%s); retrying with system command", target, e)
        _remove_tree_external(target)
    logger.debug("Removed %s", target)


def copy_tree(src: Path, dest: Path) -> None:
    """Copy a directory tree, merging into dest if it already exists."""
    try:
        shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        raise FilesystemError(f"Failed to copy {src} to {dest}: {e}") from e


def copy_file(src: Path, dest: Path) -> None:
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)
    except OSError as e:
        raise FilesystemError(f"Failed to copy {src} to {dest}: {e}") from e


def move_dir(src: Path, dest: Path) -> None:
    """Rename src to dest; falls back to a copying move across filesystems."""
    try:
        os.replace(src, dest)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise FilesystemError(f"Failed to move {src} to {dest}: {e}") from e
        logger.warning("%s and %s are on different filesystems; copying instead of renaming", src, dest)
        try:
            shutil.move(str(src), str(dest))
        except (OSError, shutil.Error) as move_error:
            raise FilesystemError(f"Failed to move {src} to {dest}: {move_error}") from move_error


def dir_size(path: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
    return total


async def change_ownership(
    path: Path,
    user: Optional[str],
    group: Optional[str],
    roots: ManagedRoots,
) -> None:
    """Recursively chown a tree (POSIX only; a no-op on Windows).

    Raises:
        RestrictedPathError: If path is outside the server/backup roots.
        FilesystemError: If chown fails.
    """
    if is_windows():
        logger.info("Skipping ownership change on Windows.")
        return
    if not user:
        logger.debug("No owner configured; skipping ownership change for %s", path)
        return

    target = roots.check_ownership_target(path)
    owner = f"{user}:{group}" if group else user
    logger.info("Changing ownership of %s to %s", target, owner)
    try:
        proc = await asyncio.create_subprocess_exec(
            "chown", "-R", owner, str(target),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
    except OSError as e:
        raise FilesystemError(f"Failed to start chown for {target}: {e}") from e

    if stdout:
        logger.debug("chown stdout: %s", stdout.decode().strip())
    if proc.returncode != 0:
        message = stderr.decode().strip()
        logger.error("chown stderr: %s", message)
        raise FilesystemError(f"chown failed with code {proc.returncode} for {target}: {message}")
    logger.info("Changed ownership of %s to %s", target, owner)
