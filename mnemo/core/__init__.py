"""Core package.

Composition:
    - `config`: environment-driven paths, tunables and logging setup.
    - `errors`: shared exception types.
    - `engine`: `MemoryEngine`, the context object behind every host operation.
"""
