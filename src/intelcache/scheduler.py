from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .config import REFRESH_INTERVAL_S, RETRY_INTERVAL_S
from .core.interfaces import PlatformSource
from .manager import MultiPlatformCacheManager

log = logging.getLogger(__name__)


@dataclass
class SchedulerStats:
    cycles: int = 0
    failed_cycles: int = 0
    last_cycle_at: Optional[float] = None
    last_ok: bool = False


class RefreshScheduler:
    """
    Background refresh loop.

    Runs one cycle as soon as it starts, then every `retry_interval` until a
    cycle succeeds for every platform, then every `refresh_interval`. A
    failing cycle drops it back to the retry cadence.
    """

    def __init__(
        self,
        manager: MultiPlatformCacheManager,
        platforms: Sequence[PlatformSource] | Callable[[], Sequence[PlatformSource]],
        *,
        refresh_interval: float = REFRESH_INTERVAL_S,
        retry_interval: float = RETRY_INTERVAL_S,
    ) -> None:
        self.manager = manager
        self._platforms = platforms
        self.refresh_interval = float(refresh_interval)
        self.retry_interval = float(retry_interval)
        self.stats = SchedulerStats()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _current_platforms(self) -> Sequence[PlatformSource]:
        # a callable lets settings changes show up without a restart
        if callable(self._platforms):
            return self._platforms()
        return self._platforms

    @property
    def current_interval(self) -> float:
        return self.refresh_interval if self.stats.last_ok else self.retry_interval

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, force: bool = False) -> bool:
        was_ok = self.stats.last_ok
        try:
            ok = self.manager.refresh_all(self._current_platforms(), force=force)
        except Exception:
            log.exception("refresh cycle failed")
            ok = False

        self.stats.cycles += 1
        self.stats.last_cycle_at = time.time()
        if not ok:
            self.stats.failed_cycles += 1
        self.stats.last_ok = ok

        if ok and not was_ok:
            log.info(
                "all caches populated, refreshing every %d minutes",
                self.refresh_interval // 60,
            )
        elif was_ok and not ok:
            log.warning(
                "refresh failed, retrying every %d minutes",
                self.retry_interval // 60,
            )
        return ok

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            interval = self.current_interval
            log.debug("next cache refresh in %ds", interval)
            if self._stop.wait(interval):
                break

    def start(self) -> None:
        if self.is_running:
            log.warning("refresh scheduler already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="intelcache-refresh", daemon=True
        )
        self._thread.start()
        log.info("refresh scheduler started")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        log.info("refresh scheduler stopped")
