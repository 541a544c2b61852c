# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Process Supervisor

Owns the single dedicated-server process: starts it detached from the
manager's process group, stops it with a graceful termination request
and probes liveness by pid.

POSIX uses signals (SIGTERM to stop, signal 0 to probe). Windows uses
taskkill/tasklist against the pid. Callers only see start/stop/restart/
is_running.
"""

import asyncio
import logging
import os
import signal
import subprocess
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import ProcessError
from .fs_ops import is_windows

logger = logging.getLogger(__name__)

RESTART_GRACE_SECONDS = 3.0


class ProcessState(str, Enum):
    """Lifecycle of the supervised process."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


class ProcessSupervisor:
    """Tracks and controls the dedicated server process.

    Usage:
        supervisor = ProcessSupervisor(Path("/srv/bedrock"), "bedrock_server")
        await supervisor.start()
        if await supervisor.is_running():
            await supervisor.restart()
    """

    def __init__(
        self,
        server_dir: Path,
        executable: str,
        restart_grace_seconds: float = RESTART_GRACE_SECONDS,
    ):
        self.server_dir = Path(server_dir)
        self.executable = executable
        self.restart_grace_seconds = restart_grace_seconds
        self.pid: Optional[int] = None
        self._process: Optional[subprocess.Popen] = None
        self._started_once = False

    @property
    def executable_path(self) -> Path:
        return self.server_dir / self.executable

    @property
    def state(self) -> ProcessState:
        if self.pid is not None:
            return ProcessState.RUNNING
        return ProcessState.STOPPED if self._started_once else ProcessState.NOT_STARTED

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def start(self) -> None:
        """Launch the server unless it is already running.

        A missing executable is the normal state before the first install:
        it is logged and start returns without error.

        Raises:
            ProcessError: If the executable exists but cannot be launched.
        """
        if self.pid is not None:
            logger.info("Server process already has a PID: %d. Checking if it's running.", self.pid)
            if await self.is_running():
                logger.info("Server is already running with PID %d.", self.pid)
                return
            logger.info("Stale PID found. Clearing.")
            self.pid = None
            self._process = None

        exe = self.executable_path
        if not exe.exists():
            logger.warning("Server executable not found at %s. Cannot start server. Run update/install first.", exe)
            return

        logger.info("Starting Minecraft server from %s", exe)
        try:
            self._process = self._spawn(exe)
        except OSError as e:
            logger.error("Error starting server: %s", e)
            self._process = None
            raise ProcessError(f"Failed to start {exe}: {e}") from e

        self.pid = self._process.pid
        self._started_once = True
        logger.info("Server process started with PID: %d.", self.pid)

    async def stop(self) -> None:
        """Ask the server to terminate. Does not wait for it to exit.

        The tracked pid is cleared whether or not the request succeeded.
        """
        if self.pid is None:
            logger.info("Server process PID not found. Server may already be stopped.")
            return

        pid = self.pid
        try:
            logger.info("Attempting to stop Minecraft server process with PID: %d.", pid)
            self._terminate(pid)
            logger.info("Termination request sent to PID: %d.", pid)
        except (OSError, ProcessError) as e:
            logger.error("Error stopping server with PID %d (process might not exist): %s", pid, e)
        finally:
            self.pid = None
            self._process = None

    async def restart(self) -> None:
        """Stop, wait for sockets/locks to be released, start again."""
        logger.info("Restarting Minecraft server.")
        await self.stop()
        await asyncio.sleep(self.restart_grace_seconds)
        await self.start()
        logger.info("Minecraft server restart command executed.")

    async def is_running(self) -> bool:
        """Probe the tracked pid. Any probe failure counts as not running."""
        if self.pid is None:
            logger.debug("No PID found for server. Assuming not running.")
            return False

        pid = self.pid
        # Reap our own child first so a zombie is not reported as alive
        if self._process is not None and self._process.pid == pid and self._process.poll() is not None:
            logger.info("Process with PID %d has exited with code %s.", pid, self._process.returncode)
            self.pid = None
            self._process = None
            return False

        try:
            alive = self._probe(pid)
        except ProcessLookupError:
            logger.info("Process with PID %d not found (ESRCH).", pid)
            alive = False
        except (OSError, ProcessError) as e:
            logger.error("Error checking process PID %d: %s", pid, e)
            alive = False

        if alive:
            logger.debug("Process with PID %d is running.", pid)
            return True
        self.pid = None
        self._process = None
        return False

    # =========================================================================
    # PLATFORM PRIMITIVES
    # =========================================================================

    def _spawn(self, exe: Path) -> subprocess.Popen:
        kwargs = {
            "cwd": str(self.server_dir),
            "stdin": subprocess.DEVNULL,
        }
        if is_windows():
            kwargs["creationflags"] = (
                subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS
            )
        else:
            # New session: the server survives the manager exiting
            kwargs["start_new_session"] = True
        return subprocess.Popen([str(exe)], **kwargs)

    def _terminate(self, pid: int) -> None:
        if is_windows():
            result = subprocess.run(
                ["taskkill", "/PID", str(pid)],
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                raise ProcessError(f"taskkill failed: {result.stderr.strip() or result.stdout.strip()}")
            return
        os.kill(pid, signal.SIGTERM)

    def _probe(self, pid: int) -> bool:
        if is_windows():
            result = subprocess.run(
                ["tasklist", "/FI", f"PID eq {pid}", "/NH", "/FO", "CSV"],
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                raise ProcessError(f"tasklist failed: {result.stderr.strip()}")
            if f'"{pid}"' not in result.stdout:
                raise ProcessLookupError(pid)
            return True
        os.kill(pid, 0)
        return True
