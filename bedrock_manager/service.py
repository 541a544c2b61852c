# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Service

The single long-lived object the HTTP layer talks to. It is built once
from a Config and owns the supervisor, the update orchestrator and the
pack installer for one server installation.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from . import properties
from .backup import BackupManager
from .config import Config, save_config, set_log_level
from .fs_ops import ManagedRoots
from .notifier import WebhookNotifier
from .packs import PackInstaller
from .resolver import VersionResolver
from .schemas import OperationResult, SettingsUpdateRequest
from .supervisor import ProcessSupervisor
from .updater import UpdateOrchestrator, VersionStore

logger = logging.getLogger(__name__)


class ServerService:
    """Wires the components together for one installation.

    Usage:
        service = ServerService(load_config())
        await service.startup()
        result = await service.check_and_install()
        await service.shutdown()
    """

    def __init__(self, config: Config, config_path: Optional[Path] = None):
        self.config = config
        self.config_path = Path(config_path) if config_path else None

        paths = config.paths
        self.roots = ManagedRoots(paths.server_directory, paths.temp_directory, paths.backup_directory)
        self.supervisor = ProcessSupervisor(
            server_dir=self.roots.server_directory,
            executable=config.process.executable,
            restart_grace_seconds=config.process.restart_grace_seconds,
        )
        self.backups = BackupManager(self.roots, owner=config.process.user, group=config.process.group)
        self.resolver = VersionResolver(
            api_url=config.updates.download_api_url,
            download_type=config.updates.download_type,
            timeout=config.updates.request_timeout,
        )
        self.notifier = WebhookNotifier(config.updates.webhook_url, timeout=config.updates.request_timeout)
        self.version_store = VersionStore(paths.state_directory)
        self.orchestrator = UpdateOrchestrator(
            roots=self.roots,
            resolver=self.resolver,
            supervisor=self.supervisor,
            backups=self.backups,
            version_store=self.version_store,
            notifier=self.notifier,
            owner=config.process.user,
            group=config.process.group,
            download_timeout=config.updates.download_timeout,
        )
        self.packs = PackInstaller(self.roots)

    @property
    def server_dir(self) -> Path:
        return self.roots.server_directory

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def startup(self) -> None:
        self.roots.ensure_exist()
        if self.config.server.auto_start:
            try:
                await self.supervisor.start()
            except Exception as e:
                logger.error("Auto-start failed: %s", e)
        self.start_scheduler()

    async def shutdown(self) -> None:
        await self.orchestrator.stop_scheduler()

    def start_scheduler(self) -> None:
        updates = self.config.updates
        self.orchestrator.start_scheduler(updates.interval_minutes, enabled=updates.auto_update_enabled)

    # =========================================================================
    # PROCESS CONTROL
    # =========================================================================

    async def start(self) -> None:
        await self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()

    async def restart(self) -> None:
        await self.supervisor.restart()

    async def is_running(self) -> bool:
        return await self.supervisor.is_running()

    async def check_and_install(self) -> OperationResult:
        return await self.orchestrator.check_and_install()

    # =========================================================================
    # PROPERTIES & WORLDS
    # =========================================================================

    def read_properties(self) -> Dict[str, str]:
        return properties.read_properties(self.server_dir)

    def write_properties(self, values: Mapping[str, object]) -> None:
        properties.write_properties(self.server_dir, values)

    def list_worlds(self) -> List[str]:
        return properties.list_worlds(self.server_dir)

    async def activate_world(self, world_name: str) -> bool:
        """Point level-name at an existing world and restart if it changed."""
        try:
            if not properties.validate_world_name(world_name):
                logger.error("Invalid world name: %s", world_name)
                return False
            if not properties.world_path(self.server_dir, world_name).is_dir():
                logger.error("World directory %s does not exist. Cannot activate.", world_name)
                return False

            current = self.read_properties()
            if current.get("level-name") == world_name:
                logger.info("World '%s' is already active.", world_name)
                return True

            current["level-name"] = world_name
            self.write_properties(current)
            logger.info("Activated world '%s'. Restarting server.", world_name)
            await self.supervisor.restart()
            return True
        except Exception as e:
            logger.error("Error activating world %s: %s", world_name, e)
            return False

    # =========================================================================
    # PACKS & SETTINGS
    # =========================================================================

    async def upload_pack(
        self,
        archive_path: Path,
        original_filename: str,
        pack_type: Optional[str],
        world_name: str,
    ) -> OperationResult:
        return await self.packs.upload_pack(archive_path, original_filename, pack_type, world_name)

    async def update_settings(self, request: SettingsUpdateRequest) -> None:
        """Apply runtime-editable settings, persist them and reschedule."""
        updates = self.config.updates
        if request.auto_update_enabled is not None:
            updates.auto_update_enabled = request.auto_update_enabled
        if request.auto_update_interval_minutes is not None:
            updates.interval_minutes = request.auto_update_interval_minutes
        if request.log_level is not None:
            self.config.logging.level = request.log_level
            set_log_level(request.log_level)

        if self.config_path is not None:
            await asyncio.to_thread(save_config, self.config, self.config_path)
        self.start_scheduler()
        logger.info(
            "Settings updated: auto_update=%s interval=%d log_level=%s",
            updates.auto_update_enabled, updates.interval_minutes, self.config.logging.level,
        )
