"""Host adapter package.

Architectural role:
- Exposes `MemoryEngine` operations over a command line (`cli`) and HTTP
  (`http_api`).
- Performs argument/request validation and response shaping only.
"""
