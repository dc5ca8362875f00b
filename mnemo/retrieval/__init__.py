"""Retrieval package.

Scope:
    - `sources` / `transcripts`: raw files to indexable records.
    - `indexer`: fingerprint-gated incremental index builds.
    - `ranking` / `retriever`: recency and context aware search.
    - `reindex_queue`: debounced file-change reindexing.
"""
