# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Error Types

Every failure raised inside the service derives from ManagerError so the
orchestrator and pack installer can turn it into an OperationResult.
"""


class ManagerError(Exception):
    """Base class for all service errors."""
    pass


class NetworkError(ManagerError):
    """Transport failure talking to the download API, a mirror or a webhook."""
    pass


class ParseError(ManagerError):
    """Malformed remote metadata, manifest or registry JSON."""
    pass


class FilesystemError(ManagerError):
    """Missing path, permission problem or failed copy/move/delete."""
    pass


class RestrictedPathError(FilesystemError):
    """A destructive operation targeted a path outside the managed roots.

    Never retried: the operation that raised it is aborted.
    """
    pass


class ProcessError(ManagerError):
    """The server process could not be started, signalled or probed."""
    pass


class UpdateInProgressError(ManagerError):
    """Raised when a second update run is requested while one is in flight."""
    pass
