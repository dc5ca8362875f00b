"""Tests for recency and context aware reranking."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mnemo.memory.records import ConversationExchange, MemoryItem
from mnemo.memory.vector_store import StoredItem
from mnemo.retrieval.ranking import CONTEXT_BOOST, context_boost, rank, time_weight


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def iso(days_ago: float) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z")


def exchange_hit(item_id: str, raw: float, days_ago: float, project_path: str):
    exchange = ConversationExchange(
        id=item_id,
        user_prompt=f"prompt {item_id}",
        assistant_summary="summary",
        project=project_path.rsplit("/", 1)[-1],
        project_path=project_path,
        timestamp=iso(days_ago),
        session_id="s",
        session_path="/logs/s.jsonl",
        message_uuid=item_id,
    )
    return StoredItem(id=item_id, metadata=exchange.to_metadata()), raw


def memory_hit(item_id: str, raw: float, timestamp: str | None, type_: str = "journal"):
    item = MemoryItem(id=item_id, type=type_, content=f"content {item_id}", source="/j.jsonl", timestamp=timestamp)
    return StoredItem(id=item_id, metadata=item.to_metadata()), raw


class TestTimeWeight:
    @pytest.mark.parametrize(
        "age, weight",
        [(0, 1.0), (6.9, 1.0), (7, 0.9), (29, 0.9), (30, 0.7), (89, 0.7), (90, 0.5), (364, 0.5), (365, 0.3), (4000, 0.3)],
    )
    def test_buckets(self, age: float, weight: float) -> None:
        assert time_weight(age) == weight

    def test_undated_and_future_weigh_fully(self) -> None:
        assert time_weight(None) == 1.0
        assert time_weight(-3) == 1.0

    def test_monotonic_in_age(self) -> None:
        ages = [0, 5, 10, 45, 120, 400, 2000]
        weights = [time_weight(a) for a in ages]

        assert weights == sorted(weights, reverse=True)


class TestContextBoost:
    def test_match_only(self) -> None:
        assert context_boost("/repo", "/repo") == CONTEXT_BOOST
        assert context_boost("/other", "/repo") == 1.0
        assert context_boost(None, None) == 1.0


class TestRank:
    def test_recent_matching_exchange_outranks_stronger_old_one(self) -> None:
        hits = [
            exchange_hit("A", 0.80, 200, "/work/other"),
            exchange_hit("B", 0.75, 2, "/work/repo"),
        ]

        results = rank(hits, 5, NOW, current_context="/work/repo")

        assert [r.record.id for r in results] == ["B", "A"]
        assert results[0].adjusted_score == pytest.approx(1.125)
        assert results[1].adjusted_score == pytest.approx(0.40)
        assert results[0].score == pytest.approx(0.75)

    def test_context_boost_breaks_equal_scores(self) -> None:
        hits = [
            exchange_hit("other", 0.6, 3, "/work/other"),
            exchange_hit("mine", 0.6, 3, "/work/repo"),
        ]

        results = rank(hits, 5, NOW, current_context="/work/repo")

        assert results[0].record.id == "mine"
        assert results[0].adjusted_score > results[1].adjusted_score

    def test_restrict_to_context(self) -> None:
        hits = [exchange_hit("A", 0.9, 1, "/work/other"), exchange_hit("B", 0.2, 1, "/work/repo")]

        results = rank(hits, 5, NOW, current_context="/work/repo", restrict_to_context=True)

        assert [r.record.id for r in results] == ["B"]

    def test_restrict_without_context_is_ignored(self) -> None:
        hits = [exchange_hit("A", 0.9, 1, "/work/other")]

        assert len(rank(hits, 5, NOW, restrict_to_context=True)) == 1

    def test_since_drops_older_but_keeps_undated(self) -> None:
        hits = [
            memory_hit("old", 0.9, iso(40)),
            memory_hit("new", 0.5, iso(1)),
            memory_hit("undated", 0.4, None),
        ]

        results = rank(hits, 5, NOW, since=NOW - timedelta(days=10))

        assert [r.record.id for r in results] == ["new", "undated"]

    def test_type_filter(self) -> None:
        hits = [memory_hit("j", 0.9, iso(1)), memory_hit("e", 0.8, iso(1), type_="entity-section")]

        results = rank(hits, 5, NOW, type_filter="entity-section")

        assert [r.record.id for r in results] == ["e"]

    def test_unknown_types_are_skipped(self) -> None:
        hits = [(StoredItem(id="x", metadata={"type": "mystery"}), 0.99), memory_hit("j", 0.1, None)]

        assert [r.record.id for r in rank(hits, 5, NOW)] == ["j"]

    def test_ties_keep_store_order_and_limit_truncates(self) -> None:
        hits = [memory_hit(f"m{i}", 0.5, None) for i in range(6)]

        results = rank(hits, 3, NOW)

        assert [r.record.id for r in results] == ["m0", "m1", "m2"]
