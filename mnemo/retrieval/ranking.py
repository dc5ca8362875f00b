"""Recency- and context-aware reranking of nearest-neighbour candidates.

Scoring formula:
    adjusted = raw_similarity * time_weight(age_days) * context_boost

    time_weight buckets (age in days):
        < 7     -> 1.0
        < 30    -> 0.9
        < 90    -> 0.7
        < 365   -> 0.5
        else    -> 0.3
    Undated candidates and timestamps in the future weigh 1.0.

    context_boost is `CONTEXT_BOOST` (1.5) when the candidate's context equals
    the caller's current context, else 1.0. Memory items carry no context.

Pipeline:
    1. Decode store hits into typed records (unknown types are skipped).
    2. Drop candidates failing the type filter or older than `since`.
    3. Score, optionally restrict to the current context.
    4. Stable sort by adjusted score, truncate to `limit`.

Determinism:
    Pure given `now`; ties keep the store's similarity order.
"""

import logging
from dataclasses import dataclass, field

from mnemo.memory.records import parse_timestamp, record_from_metadata


logger = logging.getLogger(__name__)


CONTEXT_BOOST = 1.5
EMPTY_INDEX_HINT = "Index is empty. Run a rebuild to index your memory sources."

# (upper bound in days, weight), checked in order.
TIME_WEIGHT_BUCKETS = (
    (7, 1.0),
    (30, 0.9),
    (90, 0.7),
    (365, 0.5),
)
OLDEST_WEIGHT = 0.3


@dataclass
class SearchResult:
    record: object
    score: float
    adjusted_score: float

    def to_dict(self):
        return {
            "id": self.record.id,
            "type": self.record.type,
            "score": self.score,
            "adjusted_score": self.adjusted_score,
            **self.record.to_metadata(),
        }


@dataclass
class SearchResponse:
    results: list = field(default_factory=list)
    hint: str | None = None

    def to_dict(self):
        payload = {"results": [r.to_dict() for r in self.results]}
        if self.hint:
            payload["hint"] = self.hint
        return payload


def time_weight(age_days):
    """Map an age in days to its recency weight; `None` or negative -> 1.0."""
    if age_days is None or age_days < 0:
        return 1.0
    for bound, weight in TIME_WEIGHT_BUCKETS:
        if age_days < bound:
            return weight
    return OLDEST_WEIGHT


def context_boost(candidate_context, current_context):
    if current_context and candidate_context == current_context:
        return CONTEXT_BOOST
    return 1.0


def rank(
    hits,
    limit,
    now,
    type_filter=None,
    since=None,
    current_context=None,
    restrict_to_context=False,
):
    """Rerank raw store hits.

    Args:
        hits: `[(StoredItem, raw_score)]` as returned by `VectorStore.query_items`.
        limit: Maximum number of results.
        now: Aware UTC datetime used for age computation.
        type_filter: Optional record type to keep.
        since: Optional aware datetime; dated candidates older than it are dropped.
        current_context: Optional context (project path) for the boost.
        restrict_to_context: Keep only candidates matching `current_context`.
            Ignored when no current context is given.

    Returns:
        List of `SearchResult`, highest adjusted score first.
    """
    scored = []

    for stored, raw in hits:
        record = record_from_metadata(stored.id, stored.metadata)
        if record is None:
            logger.warning("Skipping stored item %s with unknown type %r", stored.id, stored.metadata.get("type"))
            continue

        if type_filter and record.type != type_filter:
            continue

        timestamp = parse_timestamp(record.timestamp)
        if since is not None and timestamp is not None and timestamp < since:
            continue

        if restrict_to_context and current_context and record.context != current_context:
            continue

        age = (now - timestamp).total_seconds() / 86400.0 if timestamp else None
        adjusted = raw * time_weight(age) * context_boost(record.context, current_context)
        scored.append(SearchResult(record=record, score=raw, adjusted_score=adjusted))

    scored.sort(key=lambda r: r.adjusted_score, reverse=True)
    return scored[:max(0, int(limit))]
