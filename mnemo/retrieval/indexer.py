"""Incremental index builder shared by the memory and conversation indexes.

Architectural role:
    Owns one vector store plus its `IndexState` file and keeps them in sync with
    a source set (`MemorySources` or `TranscriptSources`). The engine creates one
    `IncrementalIndexer` per index and delegates every build operation to it.

Source set contract:
    - `discover()` -> list of current source paths.
    - `parse(path)` -> list of records exposing `id`, `embedding_text()` and
      `to_metadata()`; may raise `SourceParseError`.
    - `owns(path)` -> whether a path belongs to this index.

Pass semantics:
    - `update()` skips sources whose fingerprint is unchanged, reprocesses the
      rest, and drops bookkeeping for sources that disappeared. With no state
      or no usable index it performs a full rebuild instead.
    - `rebuild()` fills a brand-new store and swaps it in only after it has
      been written, so queries keep the previous index meanwhile.
    - `index_source(path)` is the targeted variant used for file-change events.
    - State is persisted only after a pass completes.

Concurrency:
    One build pass at a time per indexer; a second concurrent call raises
    `IndexBusyError`. Embedding and store calls run in worker threads.

Vectors of removed or shrunk sources stay in the store until the next rebuild.
"""

import asyncio
import logging
import os
import time
from contextlib import contextmanager

from mnemo.core import config
from mnemo.core.errors import CollaboratorUnavailable, IndexBusyError, SourceParseError
from mnemo.memory.index_state import IndexState, fingerprint, load_state, save_state
from mnemo.memory.vector_store import VectorStore


logger = logging.getLogger(__name__)


class IncrementalIndexer:
    """Fingerprint-gated builder for one vector index."""

    def __init__(self, sources, gateway, store_dir_name, state_file_name, index_dir=config.get_index_dir):
        self.sources = sources
        self.gateway = gateway
        self.store_dir_name = store_dir_name
        self.state_file_name = state_file_name
        self._index_dir = index_dir
        self._store = None
        self._store_dir = None
        self._busy = False

    @property
    def name(self):
        return self.sources.name

    @property
    def store_dir(self):
        return os.path.join(self._index_dir(), self.store_dir_name)

    @property
    def state_path(self):
        return os.path.join(self._index_dir(), self.state_file_name)

    @property
    def busy(self):
        return self._busy

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    async def get_store(self):
        """Return the store for the current index directory.

        The store is memoised per resolved directory; a changed state root
        opens (and loads) the store found under the new directory.
        """
        directory = self.store_dir
        if self._store is not None and self._store_dir == directory:
            return self._store

        dimension = await asyncio.to_thread(lambda: self.gateway.dimension)
        store = VectorStore(directory, dimension)
        if store.load():
            logger.info("Loaded %s index from %s (%d items)", self.name, directory, store.count())

        self._store = store
        self._store_dir = directory
        return store

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self):
        if self._busy:
            raise IndexBusyError(f"{self.name} index build already in progress")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _parse(self, path):
        try:
            return self.sources.parse(path)
        except SourceParseError as exc:
            logger.warning("Skipping %s: %s", exc.source, exc.reason)
            return None

    async def _embed_and_upsert(self, store, records):
        if not records:
            return
        ids = [r.id for r in records]
        texts = [r.embedding_text() for r in records]
        metadatas = [r.to_metadata() for r in records]

        vectors = await asyncio.to_thread(self.gateway.embed_batch, texts)
        await asyncio.to_thread(store.upsert_items, ids, vectors, metadatas)

    def _save_state(self, state):
        state.touch()
        try:
            save_state(self.state_path, state)
        except OSError as exc:
            logger.exception("Failed to persist %s index state", self.name)
            raise CollaboratorUnavailable(f"index state write failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def rebuild(self):
        """Reprocess every source into a fresh store.

        Returns:
            `{"item_count": int}`.
        """
        with self._exclusive():
            result = await self._rebuild()
        return {"item_count": result["item_count"]}

    async def _rebuild(self):
        logger.info("Starting full %s index rebuild", self.name)
        started = time.perf_counter()

        dimension = await asyncio.to_thread(lambda: self.gateway.dimension)
        directory = self.store_dir
        fresh = VectorStore(directory, dimension)
        fresh.create_index(persist=False)

        state = IndexState()
        records = []
        for path in self.sources.discover():
            current = fingerprint(path)
            if current is None:
                continue
            parsed = self._parse(path)
            if parsed is None:
                continue
            records.extend(parsed)
            state.record(path, current, [r.id for r in parsed])

        await self._embed_and_upsert(fresh, records)
        await asyncio.to_thread(fresh.save)

        self._store = fresh
        self._store_dir = directory
        self._save_state(state)

        logger.info(
            "Full %s rebuild complete in %.0f ms (%d items from %d sources)",
            self.name,
            (time.perf_counter() - started) * 1000,
            state.item_count(),
            len(state.sources),
        )
        return {"item_count": state.item_count(), "files_updated": len(state.sources)}

    async def update(self):
        """Reprocess only new or changed sources.

        Returns:
            `{"item_count", "files_updated", "skipped"}` where `item_count`
            counts item ids over all tracked sources.
        """
        with self._exclusive():
            store = await self.get_store()
            state = load_state(self.state_path)

            if state is None or not store.is_index_created():
                logger.info("No usable %s index; doing full rebuild", self.name)
                result = await self._rebuild()
                return {"item_count": result["item_count"], "files_updated": result["files_updated"], "skipped": 0}

            logger.info("Starting incremental %s update", self.name)
            started = time.perf_counter()

            working = state.copy()
            live = set()
            files_updated = 0
            skipped = 0

            for path in self.sources.discover():
                current = fingerprint(path)
                if current is None:
                    continue
                live.add(path)

                if working.is_unchanged(path, current):
                    skipped += 1
                    continue

                records = self._parse(path)
                if records is None:
                    continue

                await self._embed_and_upsert(store, records)
                working.record(path, current, [r.id for r in records])
                files_updated += 1

            for path in working.prune(live):
                logger.info("Source %s disappeared; dropped from %s bookkeeping", path, self.name)

            if files_updated:
                await asyncio.to_thread(store.save)
            self._save_state(working)

            logger.info(
                "Incremental %s update complete in %.0f ms (%d updated, %d skipped)",
                self.name,
                (time.perf_counter() - started) * 1000,
                files_updated,
                skipped,
            )
            return {"item_count": working.item_count(), "files_updated": files_updated, "skipped": skipped}

    async def index_source(self, path):
        """Targeted update of one source.

        Returns:
            `{"item_count", "files_updated", "skipped"}` for this index.

        Edge cases:
            - A path that no longer exists is dropped from bookkeeping.
            - An unchanged source is skipped without embedding.
            - With no state or no usable index this is a full rebuild, as in
              `update()`; the source is picked up by discovery.
        """
        with self._exclusive():
            store = await self.get_store()
            state = load_state(self.state_path)

            if state is None or not store.is_index_created():
                logger.info("No usable %s index; doing full rebuild for %s", self.name, path)
                result = await self._rebuild()
                return {"item_count": result["item_count"], "files_updated": result["files_updated"], "skipped": 0}

            working = state.copy()
            current = fingerprint(path)

            if current is None:
                if working.forget(path) is not None:
                    logger.info("Source %s removed; dropped from %s bookkeeping", path, self.name)
                    self._save_state(working)
                return {"item_count": working.item_count(), "files_updated": 0, "skipped": 0}

            if working.is_unchanged(path, current):
                return {"item_count": working.item_count(), "files_updated": 0, "skipped": 1}

            records = self._parse(path)
            if records is None:
                return {"item_count": working.item_count(), "files_updated": 0, "skipped": 0}

            await self._embed_and_upsert(store, records)
            await asyncio.to_thread(store.save)
            working.record(path, current, [r.id for r in records])
            self._save_state(working)

            logger.info("Indexed %s into %s (%d items)", path, self.name, len(records))
            return {"item_count": working.item_count(), "files_updated": 1, "skipped": 0}
