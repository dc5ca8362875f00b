"""Debounced file-change reindexing.

A single consumer task drains an asyncio queue of changed paths. After the first
path arrives it keeps collecting until the queue stays quiet for `window`
seconds, then hands the union of collected paths to the reindex callback in
one call. N notifications inside one quiet window therefore cost exactly one
reindex.

Usage::

    reindexer = DebouncedReindexer(engine.index_sources)
    reindexer.start()
    reindexer.notify("/home/me/.config/mnemo/journal/2024-05-01.jsonl")
    ...
    await reindexer.stop()   # flushes anything still pending

Failure handling:
    - `IndexBusyError` puts the batch back on the queue for the next window.
    - Any other failure is logged and the batch is dropped; the worker keeps
      running.
"""

import asyncio
import logging

from mnemo.core import config
from mnemo.core.errors import IndexBusyError


logger = logging.getLogger(__name__)


_STOP = object()


class DebouncedReindexer:
    """Coalesces path notifications into batched reindex calls."""

    def __init__(self, reindex, window=config.DEBOUNCE_SECONDS):
        self._reindex = reindex
        self.window = float(window)
        self._queue = None
        self._task = None
        self.batches = 0

    @property
    def running(self):
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the worker task on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._worker(), name="mnemo-reindexer")
        logger.info("Debounced reindexer started (window=%.2fs)", self.window)

    def notify(self, path):
        if not self.running:
            raise RuntimeError("reindexer not running")
        self._queue.put_nowait(path)
        logger.debug("Queued %s for reindex", path)

    async def stop(self):
        """Flush pending paths and stop the worker."""
        if not self.running:
            return
        self._queue.put_nowait(_STOP)
        await self._task
        self._task = None
        logger.info("Debounced reindexer stopped")

    async def _worker(self):
        while True:
            first = await self._queue.get()
            if first is _STOP:
                return

            pending = {first}
            stopping = False
            while True:
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=self.window)
                except asyncio.TimeoutError:
                    break
                if item is _STOP:
                    stopping = True
                    break
                pending.add(item)

            await self._flush(sorted(pending), requeue=not stopping)
            if stopping:
                return

    async def _flush(self, paths, requeue=True):
        self.batches += 1
        try:
            await self._reindex(paths)
            logger.info("Reindexed %d changed source(s)", len(paths))
        except IndexBusyError:
            if requeue:
                logger.info("Index busy; retrying %d path(s) after the next window", len(paths))
                for path in paths:
                    self._queue.put_nowait(path)
            else:
                logger.warning("Index busy at shutdown; %d path(s) left for the next update", len(paths))
        except Exception:
            logger.exception("Reindex failed for %d path(s)", len(paths))
