from __future__ import annotations

import threading

from loguru import logger

from free_llm_router.services.catalog_sync_service import SyncCoordinator


class SyncScheduler:
    """Background thread that syncs the catalog on a fixed interval."""

    def __init__(self, coordinator: SyncCoordinator, interval_seconds: float):
        self._coordinator = coordinator
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="catalog-sync", daemon=True)
        self._thread.start()
        logger.info("Catalog sync scheduled every {}s", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            result = self._coordinator.run()
            if result.error:
                logger.error("Scheduled sync failed: {}", result.error)
            if self._stop.wait(self._interval):
                break
