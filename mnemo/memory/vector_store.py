"""FAISS-backed vector store with string ids and JSON metadata.

Purpose:
- Persist embedded records for one index (memory or conversations).
- Support upsert by stable string id, top-k inner-product search and listing.

Storage layout (one directory per store)::

    <directory>/index.faiss    IndexIDMap2(IndexFlatIP(dimension))
    <directory>/items.json     {"dimension", "next_key", "items": {id: {"key", "metadata"}}}

String ids are mapped to int64 FAISS keys. Upserting an existing id removes the
old vector and re-adds under the same key, so the store never holds two vectors
for one id.

Index lifecycle:
- `load()` reads both artifacts and checks them against each other (`ntotal`
  equals item count, dimension matches). An inconsistent pair is left unloaded
  and `is_index_created()` stays `False`, which makes the indexer rebuild.
- `save()` writes both artifacts to temporary files and swaps them in with
  `os.replace`.

Failure modes:
- Read failures are logged and treated as "no index".
- Write failures raise `CollaboratorUnavailable`.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field

import faiss
import numpy as np

from mnemo.core.errors import CollaboratorUnavailable


logger = logging.getLogger(__name__)


INDEX_FILE = "index.faiss"
ITEMS_FILE = "items.json"


@dataclass
class StoredItem:
    id: str
    metadata: dict = field(default_factory=dict)


def _new_faiss_index(dimension):
    return faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))


class VectorStore:
    """Exact nearest-neighbour store for one index directory."""

    def __init__(self, directory, dimension):
        self.directory = directory
        self.dimension = int(dimension)
        self._index = None
        self._items = {}
        self._keys = {}
        self._next_key = 0
        self._lock = threading.RLock()

    @property
    def index_path(self):
        return os.path.join(self.directory, INDEX_FILE)

    @property
    def items_path(self):
        return os.path.join(self.directory, ITEMS_FILE)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_index_created(self):
        return self._index is not None

    def create_index(self, persist=True):
        """Start a new empty index, optionally writing it to disk immediately."""
        with self._lock:
            self._index = _new_faiss_index(self.dimension)
            self._items = {}
            self._keys = {}
            self._next_key = 0
            if persist:
                self.save()

    def load(self):
        """Load index and metadata from disk.

        Returns:
            `True` when a consistent index was loaded, else `False`.
        """
        if not (os.path.exists(self.index_path) and os.path.exists(self.items_path)):
            return False

        try:
            index = faiss.read_index(self.index_path)
            with open(self.items_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except Exception:
            logger.exception("Failed to load vector store from %s", self.directory)
            return False

        if not isinstance(payload, dict) or not isinstance(payload.get("items", {}), dict):
            logger.warning("Vector store sidecar %s is malformed", self.items_path)
            return False
        items = payload.get("items", {})

        if index.d != self.dimension:
            logger.warning(
                "Vector store dimension mismatch in %s (index=%s, expected=%s)",
                self.directory,
                index.d,
                self.dimension,
            )
            return False

        if index.ntotal != len(items):
            logger.warning(
                "Vector store %s is inconsistent (vectors=%s, items=%s)",
                self.directory,
                index.ntotal,
                len(items),
            )
            return False

        try:
            keys = {int(entry["key"]): item_id for item_id, entry in items.items()}
            next_key = int(payload.get("next_key", len(items)))
        except (KeyError, TypeError, ValueError):
            logger.warning("Vector store sidecar %s has malformed entries", self.items_path)
            return False

        with self._lock:
            self._index = index
            self._items = items
            self._keys = keys
            self._next_key = next_key
        return True

    def save(self):
        """Atomically persist index and metadata."""
        with self._lock:
            if self._index is None:
                return

            payload = {
                "dimension": self.dimension,
                "next_key": self._next_key,
                "items": self._items,
            }

            index_tmp = self.index_path + ".tmp"
            items_tmp = self.items_path + ".tmp"

            try:
                os.makedirs(self.directory, exist_ok=True)
                faiss.write_index(self._index, index_tmp)

                with open(items_tmp, "w", encoding="utf-8") as f:
                    json.dump(payload, f, ensure_ascii=False)

                os.replace(index_tmp, self.index_path)
                os.replace(items_tmp, self.items_path)
            except (OSError, RuntimeError) as exc:
                logger.exception("Failed to persist vector store %s", self.directory)
                raise CollaboratorUnavailable(f"vector store write failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_item(self, item_id, vector, metadata):
        self.upsert_items([item_id], np.asarray(vector, dtype="float32").reshape(1, -1), [metadata])

    def upsert_items(self, item_ids, vectors, metadatas):
        """Insert or overwrite several items in one FAISS call.

        Args:
            item_ids: Sequence of string ids.
            vectors: `(n, dimension)` float32 matrix, rows aligned with ids.
            metadatas: Sequence of flat metadata dicts aligned with ids.
        """
        if not item_ids:
            return

        vectors = np.ascontiguousarray(vectors, dtype="float32")
        if vectors.shape != (len(item_ids), self.dimension):
            raise ValueError(
                f"expected vectors of shape ({len(item_ids)}, {self.dimension}), got {vectors.shape}"
            )

        with self._lock:
            if self._index is None:
                self.create_index(persist=False)

            # Duplicate ids inside one batch: last occurrence wins.
            latest = {}
            for pos, item_id in enumerate(item_ids):
                latest[item_id] = pos
            positions = sorted(latest.values())

            stale_keys = [
                int(self._items[item_ids[pos]]["key"])
                for pos in positions
                if item_ids[pos] in self._items
            ]
            if stale_keys:
                self._index.remove_ids(np.array(stale_keys, dtype="int64"))

            keys = []
            for pos in positions:
                item_id = item_ids[pos]
                existing = self._items.get(item_id)
                if existing is not None:
                    key = int(existing["key"])
                else:
                    key = self._next_key
                    self._next_key += 1
                keys.append(key)
                self._items[item_id] = {"key": key, "metadata": dict(metadatas[pos])}
                self._keys[key] = item_id

            self._index.add_with_ids(vectors[positions], np.array(keys, dtype="int64"))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self):
        with self._lock:
            return len(self._items)

    def list_items(self):
        with self._lock:
            return [StoredItem(id=item_id, metadata=entry["metadata"]) for item_id, entry in self._items.items()]

    def query_items(self, vector, k):
        """Return up to `k` `(StoredItem, score)` pairs, highest inner product first."""
        with self._lock:
            if self._index is None or self._index.ntotal == 0 or k <= 0:
                return []

            query = np.ascontiguousarray(np.asarray(vector, dtype="float32").reshape(1, -1))
            scores, keys = self._index.search(query, min(int(k), self._index.ntotal))

            results = []
            for score, key in zip(scores[0], keys[0]):
                if key < 0:
                    continue
                item_id = self._keys.get(int(key))
                if item_id is None:
                    continue
                entry = self._items[item_id]
                results.append((StoredItem(id=item_id, metadata=entry["metadata"]), float(score)))

            return results
