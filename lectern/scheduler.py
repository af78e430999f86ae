"""Periodic scan scheduling for Lectern.

Runs a scan cycle every `interval_seconds` on a background thread. At most one
cycle runs at a time: a cycle requested while another is running is skipped,
and manual triggers that arrive mid-cycle collapse into one follow-up cycle.
"""

from __future__ import annotations

from threading import Event, Lock, Thread
from typing import Optional

from .config import LecternConfig
from .extractor import ContentExtractor
from .logging_config import get_logger
from .scanner import scan_library

logger = get_logger(__name__)


class ScanScheduler:
    def __init__(self, config: LecternConfig, extractor: Optional[ContentExtractor] = None):
        self.config = config
        self.extractor = extractor
        self._cycle_lock = Lock()
        self._trigger = Event()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_cycle(self) -> Optional[dict]:
        """Run one scan cycle now. Returns None if a cycle is already in progress."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Scan already in progress, skipping")
            return None

        try:
            stats = scan_library(self.config)
            logger.info(
                f"✓ Scan complete: {stats['added']} added, {stats['updated']} updated, "
                f"{stats['deleted']} deleted, {stats['errors']} errors"
            )

            batch_size = self.config.extraction.batch_size
            if self.extractor is not None and batch_size > 0:
                stats["extraction"] = self.extractor.extract_pending(limit=batch_size)
            return stats
        finally:
            self._cycle_lock.release()

    def trigger_scan(self) -> None:
        """Request a cycle as soon as possible."""
        self._trigger.set()

    def _loop(self) -> None:
        interval = self.config.scanner.interval_seconds
        while True:
            # Cleared before the cycle so a trigger arriving during it is kept.
            self._trigger.clear()
            if self._stop_event.is_set():
                break
            try:
                self.run_cycle()
            except Exception as exc:
                logger.error(f"✗ Scan cycle failed: {exc}", exc_info=True)

            self._trigger.wait(timeout=interval)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, daemon=True, name="LecternScanner")
        self._thread.start()
        logger.info(
            f"Scan scheduler started (every {self.config.scanner.interval_seconds}s)"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop. A cycle in progress finishes first."""
        self._stop_event.set()
        self._trigger.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Scan scheduler stopped")
