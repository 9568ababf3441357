# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Background renewal of snapshot and timestamp metadata"""

import logging
import threading
from datetime import timedelta
from typing import Optional

from regtuf.exceptions import ConfigurationError, RepositoryError
from regtuf.repository import MetadataManager

logger = logging.getLogger(__name__)


class RefreshService:
    """Runs ``MetadataManager.auto_refresh()`` periodically on a thread.

    The interval must be shorter than the timestamp expiry window, or
    timestamps would expire between two runs.

    Args:
        manager: The repository to keep fresh.
        interval: Time between two refreshes. Default is one hour.

    Raises:
        ConfigurationError: ``interval`` is not shorter than the timestamp
            expiry window.
    """

    def __init__(
        self,
        manager: MetadataManager,
        interval: timedelta = timedelta(hours=1),
    ):
        if interval <= timedelta(0):
            raise ConfigurationError("Refresh interval must be positive")
        if interval >= manager.config.timestamp_expiry:
            raise ConfigurationError(
                f"Refresh interval {interval} must be shorter than the "
                f"timestamp expiry {manager.config.timestamp_expiry}"
            )
        self.manager = manager
        self.interval = interval
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Initialize the repository if needed and start refreshing."""
        if self.running:
            return

        if not self.manager.is_initialized():
            logger.info("Repository not initialized, initializing")
            self.manager.initialize()

        self._stopped.clear()
        self._thread = threading.Thread(
            target=self._run, name="regtuf-refresh", daemon=True
        )
        self._thread.start()
        logger.info("Refresh service started, interval %s", self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Refresh service stopped")

    def refresh_once(self) -> bool:
        """Run one refresh. Errors are logged, not raised."""
        try:
            return self.manager.auto_refresh()
        except RepositoryError as e:
            logger.warning("Auto refresh failed: %s", e)
            return False

    def _run(self) -> None:
        while not self._stopped.wait(self.interval.total_seconds()):
            self.refresh_once()
