"""On-demand content extraction for Lectern.

Items flagged `scan_pending` are extracted the first time they are read: the
driver for their format counts pages and derives a cover, then the item is
marked extracted. Extractions run on a bounded pool of worker threads fed by a
bounded queue. A single-flight table guarantees at most one extraction per item
at a time: concurrent first reads of one item wait on the same future.
"""

from __future__ import annotations

import queue
from concurrent.futures import Future, TimeoutError as FutureTimeoutError, wait
from threading import Event, Lock, Thread
from typing import Dict, List, NamedTuple, Optional

from sqlmodel import Session

from .config import LecternConfig
from .database import get_engine
from .drivers import open_driver
from .errors import ExtractionError, ItemNotFoundError, LecternError, PageExtractionError
from .imaging import Page, RenderOptions, make_cover
from .logging_config import get_logger
from .models import CatalogItem
from .repository import Repository
from .utils import short_path

logger = get_logger(__name__)


class ExtractionJob(NamedTuple):
    item_id: str
    future: Future


def _detached(session: Session, item: CatalogItem) -> CatalogItem:
    session.refresh(item)
    session.expunge(item)
    return item


class ContentExtractor:
    """Extraction pool plus the read operations exposed to callers."""

    def __init__(self, config: LecternConfig, workers: Optional[int] = None):
        self.config = config
        self.timeout = config.extraction.timeout_seconds or None
        self._queue: "queue.Queue[ExtractionJob]" = queue.Queue(
            maxsize=config.extraction.queue_size
        )
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = Lock()
        self._stop_event = Event()
        self._workers: List[Thread] = []

        for index in range(workers or config.extraction.workers):
            worker = Thread(
                target=self._process_queue,
                daemon=True,
                name=f"LecternExtractor-{index}",
            )
            worker.start()
            self._workers.append(worker)

    # --- Pool ---

    def _process_queue(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self._queue.get(timeout=1.0)
            except queue.Empty:
                continue

            try:
                result = self._extract(job.item_id)
            except Exception as exc:
                self._finish(job, exc=exc)
            else:
                self._finish(job, result=result)
            finally:
                self._queue.task_done()

    def _finish(self, job: ExtractionJob, result=None, exc: Optional[BaseException] = None) -> None:
        with self._inflight_lock:
            self._inflight.pop(job.item_id, None)
        if exc is not None:
            job.future.set_exception(exc)
        else:
            job.future.set_result(result)

    def submit(self, item_id: str) -> Future:
        """Queue an extraction, or join the one already in flight for this item."""
        with self._inflight_lock:
            future = self._inflight.get(item_id)
            if future is not None:
                return future
            future = Future()
            self._inflight[item_id] = future

        self._queue.put(ExtractionJob(item_id, future))
        return future

    def close(self, timeout: float = 5.0) -> None:
        """Stop the workers. Queued jobs that were not started are abandoned."""
        self._stop_event.set()
        for worker in self._workers:
            worker.join(timeout=timeout)

    # --- Extraction ---

    def _derive_cover(self, driver, item: CatalogItem) -> Optional[bytes]:
        covers = self.config.covers
        try:
            raw = driver.cover_image()
            if not raw:
                return None
            return make_cover(raw, covers.width, covers.height, covers.quality)
        except PageExtractionError as exc:
            logger.warning(f"✗ {short_path(item.path)} - No cover: {exc}")
            return None

    def _extract(self, item_id: str) -> CatalogItem:
        with Session(get_engine()) as session:
            repo = Repository(session)
            item = repo.get_item(item_id)
            if item is None:
                raise ItemNotFoundError(f"No catalog item {item_id}")
            if not item.scan_pending:
                return _detached(session, item)

            path = item.path
            try:
                with open_driver(item.format, path) as driver:
                    total_pages = driver.page_count()
                    cover = self._derive_cover(driver, item)
            except ExtractionError as exc:
                logger.error(f"✗ {short_path(path)} - Extraction failed: {exc}")
                raise

            if not repo.mark_extracted(item, total_pages):
                repo.rollback()
                logger.info(f"[~] {short_path(path)} changed during extraction, left pending")
                return _detached(session, item)

            if cover is None:
                repo.delete_cover(item_id)
            else:
                repo.set_cover(item_id, cover)
            repo.commit()

            pages = "?" if total_pages is None else total_pages
            logger.debug(f"✓ {short_path(path)} ({pages} pages)")
            return _detached(session, item)

    def ensure_extracted(self, item_id: str) -> CatalogItem:
        """Extract the item if it is pending and return its fresh state."""
        future = self.submit(item_id)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            raise ExtractionError(f"Extraction of {item_id} timed out") from None

    def extract_pending(self, limit: Optional[int] = None) -> dict:
        """Extract up to `limit` pending items through the pool."""
        with Session(get_engine()) as session:
            pending_ids = [item.id for item in Repository(session).find_pending(limit)]

        futures = [self.submit(item_id) for item_id in pending_ids]
        wait(futures, timeout=self.timeout)

        stats = {"extracted": 0, "failed": 0}
        for future in futures:
            if future.done() and future.exception() is None:
                stats["extracted"] += 1
            else:
                stats["failed"] += 1

        if pending_ids:
            logger.info(
                f"Extraction batch: {stats['extracted']} extracted, {stats['failed']} failed"
            )
        return stats

    # --- Read operations ---

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        with Session(get_engine()) as session:
            item = Repository(session).get_item(item_id)
            if item is None:
                return None
            session.expunge(item)
            return item

    def _readable_item(self, item_id: str) -> CatalogItem:
        item = self.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(f"No catalog item {item_id}")
        if item.scan_pending:
            item = self.ensure_extracted(item_id)
        return item

    def get_page(
        self,
        item_id: str,
        index: int,
        options: Optional[RenderOptions] = None,
    ) -> Page:
        """Return page `index` (0-based) of an item, extracting it first if pending.

        Raises ItemNotFoundError, ExtractionError or PageExtractionError.
        """
        item = self._readable_item(item_id)
        with open_driver(item.format, item.path) as driver:
            return driver.page(index, options or RenderOptions())

    def get_cover(self, item_id: str) -> Optional[bytes]:
        item = self.get_item(item_id)
        if item is None:
            return None
        if item.scan_pending:
            try:
                self.ensure_extracted(item_id)
            except LecternError as exc:
                logger.warning(f"Cover unavailable for {item_id}: {exc}")
                return None

        with Session(get_engine()) as session:
            return Repository(session).get_cover(item_id)

    def get_metadata(self, item_id: str) -> dict:
        item = self._readable_item(item_id)
        with open_driver(item.format, item.path) as driver:
            return driver.metadata()
