"""Memory subsystem package.

Architectural role:
    Groups the persistence-facing building blocks of the engine:
    - `records`: indexed record types and their metadata codec.
    - `embedding_model`: sentence-transformers embedding gateway.
    - `vector_store`: FAISS index plus JSON metadata sidecar.
    - `index_state`: per-source fingerprints for incremental indexing.
    - `journal`: append-only journal partitions.
"""
