"""Query-side adapters over the incremental indexes.

Architectural role:
    Turns a query string into a ranked `SearchResponse` for `mnemo.core.engine`:
    embed the query, oversample the store, hand the hits to
    `mnemo.retrieval.ranking.rank`.

Retrieval model:
    - Candidates fetched: `limit * OVERSAMPLE_FACTOR` (factor never below 3),
      so filters and reweighting still leave `limit` results in most cases.
    - Ranking and filters are delegated to `rank(...)`; order is preserved.

Edge cases:
    - Blank query returns an empty response without embedding.
    - Missing or empty index returns an empty response with a rebuild hint.
"""

import asyncio
import logging
from datetime import datetime, timezone

from mnemo.core import config
from mnemo.memory.records import TYPE_CONVERSATION_EXCHANGE, parse_timestamp
from mnemo.retrieval.ranking import EMPTY_INDEX_HINT, SearchResponse, rank


logger = logging.getLogger(__name__)


def _as_datetime(value):
    if value is None or isinstance(value, datetime):
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    return parsed


async def search_index(
    indexer,
    gateway,
    query,
    limit=config.DEFAULT_SEARCH_LIMIT,
    type_filter=None,
    since=None,
    current_context=None,
    restrict_to_context=False,
    now=None,
):
    """Embed `query`, oversample `indexer`'s store and rerank.

    Args:
        indexer: `IncrementalIndexer` owning the store to query.
        gateway: Embedding gateway.
        query: Natural-language query.
        limit: Maximum results.
        type_filter: Optional record type.
        since: Optional ISO string or datetime floor.
        current_context: Optional project path for the context boost.
        restrict_to_context: Drop candidates outside `current_context`.
        now: Optional aware datetime, defaults to the current time.

    Returns:
        `SearchResponse`.

    Raises:
        ValueError: `since` cannot be parsed.
        CollaboratorUnavailable: Embedding or store failure.
    """
    since = _as_datetime(since)

    if not query or not query.strip() or limit <= 0:
        return SearchResponse()

    store = await indexer.get_store()
    if not store.is_index_created() or store.count() == 0:
        logger.info("%s index is empty", indexer.name)
        return SearchResponse(hint=EMPTY_INDEX_HINT)

    vector = await asyncio.to_thread(gateway.embed, query, True)
    hits = await asyncio.to_thread(store.query_items, vector, limit * config.OVERSAMPLE_FACTOR)

    results = rank(
        hits,
        limit,
        now or datetime.now(timezone.utc),
        type_filter=type_filter,
        since=since,
        current_context=current_context,
        restrict_to_context=restrict_to_context,
    )
    logger.debug("Query on %s index returned %d/%d candidates", indexer.name, len(results), len(hits))
    return SearchResponse(results=results)


async def retrieve_memory(indexer, gateway, query, limit=config.DEFAULT_SEARCH_LIMIT, type_filter=None, since=None, now=None):
    """Search journal entries and entity sections."""
    return await search_index(indexer, gateway, query, limit=limit, type_filter=type_filter, since=since, now=now)


async def retrieve_conversations(
    indexer,
    gateway,
    query,
    limit=config.DEFAULT_SEARCH_LIMIT,
    project_only=False,
    current_context=None,
    now=None,
):
    """Search past conversation exchanges with a boost for the current project."""
    return await search_index(
        indexer,
        gateway,
        query,
        limit=limit,
        type_filter=TYPE_CONVERSATION_EXCHANGE,
        current_context=current_context,
        restrict_to_context=project_only,
        now=now,
    )
