"""Periodic sweep over due links, processed in batches by a worker pool."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from libs.core.models import Link, utcnow
from libs.db import Database, LinkRepo

logger = logging.getLogger(__name__)


class LinkProcessor(Protocol):
    async def process_link(self, link: Link) -> bool:
        ...


class ParallelScheduler:
    """Ticker-driven sweep of all due links.

    A sweep snapshots its start time and pages through links not checked
    since then, in (last_checked NULLS FIRST, id) order, continuing from the
    last row of the previous page. Links processed by this sweep leave the
    due set, so no link is visited twice and none is skipped.
    """

    def __init__(
        self,
        checker: LinkProcessor,
        database: Database,
        interval: float,
        batch_size: int = 100,
        workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.checker = checker
        self.database = database
        self.interval = interval
        self.batch_size = max(1, batch_size)
        self.workers = max(1, workers)
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._tick(), name="link-scheduler")
            logger.info(
                "Scheduler started: interval=%ss batch_size=%d workers=%d",
                self.interval,
                self.batch_size,
                self.workers,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Scheduler stopped")

    async def _tick(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.run_sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Sweep failed")
            # Fixed cadence; a sweep longer than the interval delays the next one
            await asyncio.sleep(max(0.0, self.interval - (loop.time() - started)))

    async def run_sweep(self) -> int:
        """Process every link due at sweep start; returns the number processed."""
        sweep_started = self._clock()
        cursor = None
        processed = 0
        batch_number = 0
        while True:
            async with self.database.session() as session:
                batch = await LinkRepo(session).find_due(
                    self.batch_size, checked_before=sweep_started, after=cursor
                )
            if not batch:
                break
            batch_number += 1
            logger.debug("Processing batch %d with %d links", batch_number, len(batch))
            await self._process_batch(batch, batch_number)
            processed += len(batch)
            last = batch[-1]
            cursor = (last.last_checked, last.id)
            if len(batch) < self.batch_size:
                break
        logger.info("Sweep finished: %d links in %d batches", processed, batch_number)
        return processed

    async def _process_batch(self, batch: List[Link], batch_number: int) -> None:
        queue: asyncio.Queue[Optional[Link]] = asyncio.Queue(maxsize=self.workers)
        workers = [
            asyncio.create_task(self._worker(queue, worker_id, batch_number))
            for worker_id in range(1, min(self.workers, len(batch)) + 1)
        ]
        try:
            for link in batch:
                await queue.put(link)
            for _ in workers:
                await queue.put(None)
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _worker(
        self, queue: "asyncio.Queue[Optional[Link]]", worker_id: int, batch_number: int
    ) -> None:
        while True:
            link = await queue.get()
            if link is None:
                return
            try:
                await self.checker.process_link(link)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Worker %d failed on link %s (%s) in batch %d",
                    worker_id,
                    link.id,
                    link.url,
                    batch_number,
                )


__all__ = ["ParallelScheduler", "LinkProcessor"]
