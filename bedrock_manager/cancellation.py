# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Cancellation

Thread-safe cancellation flag for the two long blocking steps of an
update: streaming the server archive and unpacking it. Extraction runs
in a worker thread, so the flag must be readable outside the event loop.
"""

import logging
import threading
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class CancellationError(Exception):
    """Raised when a cancellation token detects cancellation."""
    pass


@dataclass
class CancellationToken:
    """
    Token signalling that an in-flight fetch/extract should stop.

    Thread-safe: Can be checked from both async and sync contexts.
    """
    operation: str
    created_at: float = field(default_factory=time.time)
    _cancelled: bool = field(default=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def cancel(self) -> None:
        """Mark this operation as cancelled."""
        with self._lock:
            if not self._cancelled:
                self._cancelled = True
                logger.info("Cancellation requested for: %s", self.operation)

    def is_cancelled(self) -> bool:
        """Check if cancellation was requested (thread-safe)."""
        with self._lock:
            return self._cancelled

    def check_cancelled(self) -> None:
        """
        Raise CancellationError if cancelled.

        Call between chunks/entries to abort early.
        """
        if self.is_cancelled():
            raise CancellationError(f"{self.operation} was cancelled")
