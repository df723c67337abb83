# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Host package database access.

The package database is one system-wide resource: at most one install
transaction at a time, and no build while a transaction is open. All
access goes through the scoped acquisitions below, which release on every
exit path.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

logger = logging.getLogger("pacforge.lock")


class TransactionLock:
    """
    Exclusive access to the host package database.

    Args:
        lock_file: Host lock file; while it exists another process owns
            the database and acquisition waits for it to disappear
        poll_interval: Seconds between checks of ``lock_file``
    """

    def __init__(self, lock_file: Optional[Path] = None, poll_interval: float = 1.0):
        self.lock_file = Path(lock_file) if lock_file else None
        self.poll_interval = poll_interval
        self._lock = asyncio.Lock()
        self.active: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def _wait_for_host(self):
        if self.lock_file is None:
            return
        announced = False
        while self.lock_file.exists():
            if not announced:
                logger.warning(f"Waiting for {self.lock_file} to be released")
                announced = True
            await asyncio.sleep(self.poll_interval)

    @asynccontextmanager
    async def _acquire(self, purpose: str) -> AsyncIterator[None]:
        async with self._lock:
            await self._wait_for_host()
            self.active = purpose
            logger.debug(f"Package database acquired for {purpose}")
            try:
                yield
            finally:
                self.active = None
                logger.debug(f"Package database released after {purpose}")

    def transaction(self, label: str):
        """Scope of one install/remove transaction."""
        return self._acquire(f"transaction {label}")

    def build(self, label: str):
        """Scope of one build; excludes concurrent transactions."""
        return self._acquire(f"build {label}")
