# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Update Orchestrator

Keeps the dedicated server on the latest upstream build.

Update flow:
  1. Resolve the latest version from the download-links API
  2. Compare with the persisted last-installed version
  3. Stop the server
  4. Snapshot the current installation
  5. Download and extract the new build into temp/<version>
  6. Swap temp/<version> into place with a rename
  7. Copy worlds, packs and config files back from the snapshot
  8. Fix ownership (POSIX), record the new version
  9. Start the server

Any failure from step 3 on ends in the failure handler: if the swap had
already happened the snapshot is reinstated, and the server is started
again either way. Only one run may be in flight at a time; a second
request while one is running is rejected.
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from . import fs_ops
from .backup import BackupManager, snapshot_name
from .cancellation import CancellationToken
from .downloader import extract_archive, fetch_archive
from .errors import FilesystemError, UpdateInProgressError
from .fs_ops import ManagedRoots
from .notifier import WebhookNotifier
from .resolver import VersionResolver, parse_version
from .schemas import OperationResult
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

LAST_VERSION_FILE = "last_version.txt"


# =============================================================================
# DATA MODELS
# =============================================================================

class UpdateStage(str, Enum):
    """Where the current (or last) run is in the pipeline."""
    IDLE = "idle"
    CHECKING_VERSION = "checking_version"
    UP_TO_DATE = "up_to_date"
    STOPPING = "stopping"
    BACKING_UP = "backing_up"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    SWAPPING = "swapping"
    RESTORING = "restoring"
    CHANGING_OWNERSHIP = "changing_ownership"
    STARTING = "starting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UpdateStatus:
    """Current update status."""
    installed_version: Optional[str] = None
    latest_version: Optional[str] = None
    stage: UpdateStage = UpdateStage.IDLE
    update_in_progress: bool = False
    last_check: Optional[str] = None
    last_message: Optional[str] = None


class VersionStore:
    """Single-line marker holding the last successfully installed version."""

    def __init__(self, state_dir: Path, filename: str = LAST_VERSION_FILE):
        self.path = Path(state_dir) / filename

    def read(self) -> Optional[str]:
        try:
            if not self.path.exists():
                logger.info("No previous version file found.")
                return None
            version = self.path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.error("Error reading version from file: %s", e)
            return None
        logger.debug("Retrieved stored version: %s", version)
        return version or None

    def write(self, version: str) -> None:
        """Replace the marker atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".last_version.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(version)
            os.replace(tmp, self.path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise FilesystemError(f"Failed to store version marker: {e}") from e
        logger.info("Stored latest version: %s", version)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class UpdateOrchestrator:
    """Runs the check-and-install pipeline and the periodic scheduler.

    Usage:
        orchestrator = UpdateOrchestrator(roots, resolver, supervisor, backups, store)
        result = await orchestrator.check_and_install()
        print(result.success, result.message)
    """

    def __init__(
        self,
        roots: ManagedRoots,
        resolver: VersionResolver,
        supervisor: ProcessSupervisor,
        backups: BackupManager,
        version_store: VersionStore,
        notifier: Optional[WebhookNotifier] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
        download_timeout: int = 600,
    ):
        self.roots = roots
        self.resolver = resolver
        self.supervisor = supervisor
        self.backups = backups
        self.version_store = version_store
        self.notifier = notifier or WebhookNotifier(None)
        self.owner = owner
        self.group = group
        self.download_timeout = download_timeout

        self._status = UpdateStatus(installed_version=version_store.read())
        self._update_lock = asyncio.Lock()
        self._token: Optional[CancellationToken] = None
        self._check_task: Optional[asyncio.Task] = None

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @property
    def status(self) -> UpdateStatus:
        return self._status

    @property
    def in_progress(self) -> bool:
        return self._update_lock.locked()

    @property
    def server_dir(self) -> Path:
        return self.roots.server_directory

    @property
    def temp_dir(self) -> Path:
        return self.roots.temp_directory

    async def check_and_install(self) -> OperationResult:
        """Install the latest server build if it differs from the stored one.

        Never raises: every outcome is reported as an OperationResult.
        """
        try:
            self._ensure_idle()
        except UpdateInProgressError as e:
            logger.warning("%s Rejecting.", e)
            return OperationResult.fail(str(e))

        async with self._update_lock:
            self._status.update_in_progress = True
            try:
                result = await self._run()
            finally:
                self._status.update_in_progress = False
                self._token = None
            self._status.last_message = result.message
            return result

    def _ensure_idle(self) -> None:
        if self._update_lock.locked():
            raise UpdateInProgressError("Update already in progress.")

    def cancel(self) -> None:
        """Stop an in-flight download/extraction at the next chunk or entry."""
        if self._token is not None:
            self._token.cancel()

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def _run(self) -> OperationResult:
        logger.info("Checking for new Minecraft Bedrock server releases...")
        self._status.stage = UpdateStage.CHECKING_VERSION
        self._status.last_check = datetime.now(timezone.utc).isoformat()

        try:
            release = await self.resolver.resolve()
        except Exception as e:
            logger.error("Update check failed: %s", e)
            self._status.stage = UpdateStage.FAILED
            return OperationResult.fail(f"Update check failed: {e}")

        if release is None:
            logger.warning("Failed to retrieve the latest version or download URL. Aborting update check.")
            self._status.stage = UpdateStage.FAILED
            return OperationResult.fail("Failed to retrieve latest version information from API.")

        version = release.version
        self._status.latest_version = version
        stored = self.version_store.read()
        if stored is not None and stored == version:
            logger.info("No new version found. Server is up to date.")
            self._status.stage = UpdateStage.UP_TO_DATE
            return OperationResult.ok("Server is already up to date.")

        if stored is not None and parse_version(version) < parse_version(stored):
            logger.warning("Upstream version %s is older than installed %s; installing anyway.", version, stored)
        logger.info("New version found: %s. Current version: %s", version, stored or "None")

        self._token = CancellationToken(operation=f"update to {version}")
        snapshot: Optional[Path] = None
        swapped = False
        committed = False

        try:
            await self.notifier.send(
                f"New Minecraft Bedrock Server version {version} is available! Server going down for update..."
            )

            self._status.stage = UpdateStage.STOPPING
            await self.supervisor.stop()

            self._status.stage = UpdateStage.BACKING_UP
            snapshot = await self.backups.backup()
            if snapshot:
                logger.info("Server backed up to: %s", snapshot)

            staging = self.temp_dir / version
            if staging.exists():
                logger.info(
                    "Version %s already exists in temporary directory: %s. Skipping download and extraction.",
                    version, staging,
                )
            else:
                await self._fetch_and_extract(release.download_url, version, staging)

            self._status.stage = UpdateStage.SWAPPING
            await self._swap(staging)
            swapped = True

            self._status.stage = UpdateStage.RESTORING
            if snapshot:
                await self.backups.restore(snapshot, self.server_dir)
                logger.info("Copied existing data from backup to new server directory.")

            self._status.stage = UpdateStage.CHANGING_OWNERSHIP
            await fs_ops.change_ownership(self.server_dir, self.owner, self.group, self.roots)

            self.version_store.write(version)
            committed = True
            self._status.installed_version = version
            logger.info("Successfully installed/updated to version %s", version)

            await self.notifier.send(
                f"Minecraft Bedrock Server updated to version {version}! Server restarting..."
            )

            self._status.stage = UpdateStage.STARTING
            await self.supervisor.start()

            self._status.stage = UpdateStage.DONE
            logger.info("Update process complete. Server should be starting.")
            return OperationResult.ok(f"Server updated to version {version}.")

        except Exception as e:
            # A failed swap that could not put the old install back also needs the snapshot
            install_lost = swapped or not self.server_dir.exists()
            return await self._handle_failure(e, snapshot if install_lost and not committed else None)

    async def _fetch_and_extract(self, url: str, version: str, staging: Path) -> None:
        """Download and unpack into staging.

        Work happens in <version>.partial and is renamed to <version> only
        once extraction finishes, so an existing staging directory always
        holds a complete build.
        """
        partial = self.temp_dir / f"{version}.partial"
        archive = self.temp_dir / f"bedrock-server-{version}.zip"
        if partial.exists():
            await asyncio.to_thread(fs_ops.remove_tree, partial, self.roots)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        self._status.stage = UpdateStage.FETCHING
        logger.info("Downloading server files from %s to %s", url, archive)
        await fetch_archive(url, archive, timeout=self.download_timeout, token=self._token)
        logger.info("Download complete.")

        self._status.stage = UpdateStage.EXTRACTING
        try:
            logger.info("Extracting files to %s", partial)
            await extract_archive(archive, partial, token=self._token)
        except BaseException:
            if partial.exists():
                await asyncio.to_thread(fs_ops.remove_tree, partial, self.roots)
            raise
        finally:
            archive.unlink(missing_ok=True)

        await asyncio.to_thread(fs_ops.move_dir, partial, staging)
        logger.info("Extraction complete.")

    async def _swap(self, staging: Path) -> None:
        """Replace the active install with staging using renames.

        If staging cannot be moved into place the previous install is
        renamed back before the error propagates.
        """
        if not staging.is_dir():
            raise FilesystemError(f"Temporary installation path {staging} not found after extraction.")

        retired = self.temp_dir / f".retired-{snapshot_name()}"
        if self.server_dir.exists():
            logger.info("Removing existing server directory: %s", self.server_dir)
            self.roots.check_removable(retired)
            await asyncio.to_thread(fs_ops.move_dir, self.server_dir, retired)

        logger.info("Moving new server files from %s to %s", staging, self.server_dir)
        try:
            await asyncio.to_thread(fs_ops.move_dir, staging, self.server_dir)
        except BaseException:
            if retired.exists() and not self.server_dir.exists():
                logger.warning("Moving previous server files back from %s", retired)
                await asyncio.to_thread(fs_ops.move_dir, retired, self.server_dir)
            raise

        if retired.exists():
            try:
                await asyncio.to_thread(fs_ops.remove_tree, retired, self.roots)
            except FilesystemError as e:
                logger.warning("Could not remove previous server files at %s: %s", retired, e)
        logger.info("Successfully moved new server files to %s.", self.server_dir)

    async def _handle_failure(self, error: Exception, rollback_snapshot: Optional[Path]) -> OperationResult:
        """Put the service back: reinstate the snapshot if needed, then start."""
        self._status.stage = UpdateStage.FAILED
        logger.error("Error during installation: %s", error)

        if rollback_snapshot is not None:
            retired = self.temp_dir / f".failed-{snapshot_name()}"
            try:
                await self.backups.rollback(rollback_snapshot, retired)
            except Exception as rollback_error:
                logger.error("Rollback from %s failed: %s", rollback_snapshot, rollback_error)

        if self.server_dir.exists():
            await self._remove_retired()

        try:
            await self.supervisor.start()
            logger.info("Attempted to restart server after failed update.")
        except Exception as start_error:
            logger.error("Failed to restart server after update error: %s", start_error)

        return OperationResult.fail(f"Error during installation: {error}")

    async def _remove_retired(self) -> None:
        """Delete previous installs left in temp by an interrupted swap."""
        if not self.temp_dir.is_dir():
            return
        for entry in self.temp_dir.iterdir():
            if entry.is_dir() and entry.name.startswith(".retired-"):
                try:
                    await asyncio.to_thread(fs_ops.remove_tree, entry, self.roots)
                    logger.info("Removed leftover server files %s", entry)
                except FilesystemError as e:
                    logger.warning("Could not remove leftover server files %s: %s", entry, e)

    # =========================================================================
    # BACKGROUND TASKS
    # =========================================================================

    def start_scheduler(self, interval_minutes: int, enabled: bool = True) -> None:
        """(Re)start the periodic check. Checks never overlap."""
        self.stop_scheduler_nowait()
        if not enabled or interval_minutes <= 0:
            logger.info("Auto-update is disabled or interval is invalid. Scheduler not started.")
            return
        logger.info("Starting auto-update scheduler to run every %d minutes.", interval_minutes)
        self._check_task = asyncio.create_task(self._periodic_check(interval_minutes * 60))

    def stop_scheduler_nowait(self) -> None:
        if self._check_task is not None:
            self._check_task.cancel()
            self._check_task = None
            logger.info("Cleared existing auto-update scheduler.")

    async def stop_scheduler(self) -> None:
        """Cancel the scheduler and any in-flight fetch/extract."""
        self.cancel()
        task = self._check_task
        self._check_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Auto-update scheduler stopped")
        if self._update_lock.locked():
            # Wait for the cancelled run to reach its failure handler
            async with self._update_lock:
                pass

    async def _periodic_check(self, interval_seconds: float) -> None:
        """Run a check now, then every interval, each awaited before sleeping."""
        while True:
            logger.info("Auto-update check initiated by scheduler.")
            if self.in_progress:
                logger.info("Update already in progress. Skipping scheduled check.")
            else:
                # Shielded: rescheduling must not abort a run mid-swap
                result = await asyncio.shield(self.check_and_install())
                if not result.success:
                    logger.error("Auto-update failed: %s", result.message)
            await asyncio.sleep(interval_seconds)
