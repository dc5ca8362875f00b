"""Host-facing orchestration for the memory engine.

Architectural role:
    `MemoryEngine` is the single context object the CLI and HTTP adapters talk
    to. It owns the embedding gateway and one `IncrementalIndexer` per index:

    - memory index: journal partitions + entity documents (`.index/vectors`)
    - conversation index: transcript exchanges (`.index/conversations`)

    Every host operation is an `async` method; blocking model and FAISS work is
    pushed to worker threads by the layers below.

Control-flow model:
    - Search: query -> gateway -> store (oversampled) -> ranking -> top-K.
    - Build: source set -> records -> gateway (batched) -> store upsert, gated
      by per-source fingerprints.
    - File change: `index_single_source(path)` routes the path to the index
      that owns it; `index_sources(paths)` is the batched form used by
      `DebouncedReindexer`.

Error handling strategy:
    - `CollaboratorUnavailable` propagates to the adapter, which maps it to an
      exit code or HTTP status.
    - `IndexBusyError` is raised when a build pass is already running.
    - A path owned by no index is logged and ignored.

Side effects:
    Writes vector data and state files under the index directory and journal
    partitions under the journal directory.
"""

import asyncio
import logging
import os

from mnemo.core import config
from mnemo.core.errors import IndexBusyError
from mnemo.memory import journal
from mnemo.memory.embedding_model import EmbeddingGateway
from mnemo.memory.index_state import load_state
from mnemo.retrieval import retriever
from mnemo.retrieval.indexer import IncrementalIndexer
from mnemo.retrieval.sources import MemorySources
from mnemo.retrieval.transcripts import TranscriptSources, expand_conversation


logger = logging.getLogger(__name__)


MEMORY_STORE_DIR = "vectors"
MEMORY_STATE_FILE = "memory-state.json"
CONVERSATION_STORE_DIR = "conversations"
CONVERSATION_STATE_FILE = "conversations-state.json"


class MemoryEngine:
    """Explicit context for embedding, indexing and retrieval.

    Args:
        gateway: Embedding gateway; defaults to a lazily loaded
            `EmbeddingGateway`.
        memory_sources: Source set for the memory index.
        transcript_sources: Source set for the conversation index.
        index_dir: Callable returning the index directory.
    """

    def __init__(self, gateway=None, memory_sources=None, transcript_sources=None, index_dir=config.get_index_dir):
        self.gateway = gateway or EmbeddingGateway()
        self.memory = IncrementalIndexer(
            memory_sources or MemorySources(),
            self.gateway,
            MEMORY_STORE_DIR,
            MEMORY_STATE_FILE,
            index_dir=index_dir,
        )
        self.conversations = IncrementalIndexer(
            transcript_sources or TranscriptSources(),
            self.gateway,
            CONVERSATION_STORE_DIR,
            CONVERSATION_STATE_FILE,
            index_dir=index_dir,
        )

    # =========================================================
    # SEARCH
    # =========================================================

    async def search(self, query, limit=config.DEFAULT_SEARCH_LIMIT, type=None, since=None):
        """Search journal entries and entity sections.

        Args:
            query: Natural-language query.
            limit: Maximum results.
            type: Optional `journal` or `entity-section` filter.
            since: Optional ISO-8601 floor on item timestamps.

        Returns:
            `SearchResponse`.
        """
        return await retriever.retrieve_memory(
            self.memory,
            self.gateway,
            query,
            limit=limit,
            type_filter=type,
            since=since,
        )

    async def search_conversations(self, query, limit=config.DEFAULT_SEARCH_LIMIT, project_only=False, current_context=None):
        """Search past exchanges, boosting those from `current_context`."""
        return await retriever.retrieve_conversations(
            self.conversations,
            self.gateway,
            query,
            limit=limit,
            project_only=project_only,
            current_context=current_context,
        )

    # =========================================================
    # BUILD
    # =========================================================

    async def rebuild_index(self):
        return await self.memory.rebuild()

    async def update_index(self):
        return await self.memory.update()

    async def rebuild_conversation_index(self):
        return await self.conversations.rebuild()

    async def update_conversation_index(self):
        return await self.conversations.update()

    def _owner(self, path):
        for indexer in (self.memory, self.conversations):
            if indexer.sources.owns(path):
                return indexer
        return None

    async def index_single_source(self, path):
        """Reindex one changed source in the index that owns it.

        Returns:
            The owning indexer's result dict with an added `"index"` key, or
            `None` when no index owns `path`.
        """
        path = os.path.abspath(os.path.expanduser(path))
        indexer = self._owner(path)
        if indexer is None:
            logger.info("Ignoring %s: not a memory or transcript source", path)
            return None

        result = await indexer.index_source(path)
        return {"index": indexer.name, **result}

    async def index_sources(self, paths):
        """Reindex a batch of changed sources; returns one result per owned path."""
        results = []
        for path in paths:
            result = await self.index_single_source(path)
            if result is not None:
                results.append(result)
        return results

    # =========================================================
    # JOURNAL / CONVERSATIONS
    # =========================================================

    async def log_journal(self, topic, content, metadata=None):
        """Append a journal entry and index its partition.

        Returns:
            The written entry dict.
        """
        path, entry = await asyncio.to_thread(journal.log_journal, topic, content, metadata)
        try:
            await self.index_single_source(path)
        except IndexBusyError:
            logger.info("Index busy; %s will be picked up by the next update", path)
        return entry

    async def get_recent_journal(self, count=10, topic=None):
        return await asyncio.to_thread(journal.get_recent_journal, count, topic)

    async def expand_conversation(self, session_path, message_uuid, context_messages=10):
        return await asyncio.to_thread(expand_conversation, session_path, message_uuid, context_messages)

    async def stats(self):
        """Return item counts and last update times of both indexes."""
        payload = {}
        for indexer in (self.memory, self.conversations):
            store = await indexer.get_store()
            state = load_state(indexer.state_path)
            payload[indexer.name] = {
                "item_count": store.count(),
                "index_created": store.is_index_created(),
                "directory": indexer.store_dir,
                "last_update": state.last_update if state else None,
            }
        return payload
