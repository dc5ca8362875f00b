"""Embedding gateway for the memory subsystem.

Architectural role:
    Wraps a `SentenceTransformer` model behind the two calls the indexer and
    retriever need: `embed(text)` and `embed_batch(texts)`. The engine owns one
    gateway instance and passes it to the layers that embed; there is no module
    level model handle.

Design intent:
    - Load the model lazily on first use and reuse it afterwards.
    - Decide CPU vs CUDA once, with a conservative free-VRAM gate.
    - Return L2-normalised float32 vectors so FAISS inner product equals cosine.
    - Convert any model failure into `CollaboratorUnavailable`.

Determinism:
    Deterministic for a fixed model, runtime and input text, which is what keeps
    incremental re-indexing idempotent.
"""

import logging
import os
import threading

import faiss
import numpy as np

from mnemo.core import config
from mnemo.core.errors import CollaboratorUnavailable


logger = logging.getLogger(__name__)


def has_enough_vram(min_required_mb: int = config.MIN_FREE_VRAM_MB) -> bool:
    """Return whether enough free GPU memory is available for embeddings.

    Args:
        min_required_mb: Minimum required free VRAM in megabytes.

    Returns:
        `True` when CUDA is available and free VRAM exceeds the threshold.
    """
    import torch

    if not torch.cuda.is_available():
        return False

    free_mem, _total_mem = torch.cuda.mem_get_info()
    free_mb = free_mem / 1024 / 1024

    logger.info("Free VRAM: %.0f MB", free_mb)

    return free_mb > min_required_mb


def _uses_e5_prefixes(model_name):
    return "e5" in model_name.lower()


class EmbeddingGateway:
    """Lazily loaded sentence-transformers model producing normalised vectors.

    Usage::

        gateway = EmbeddingGateway()
        vec = gateway.embed("what did we decide about caching?", is_query=True)
        mat = gateway.embed_batch(["first passage", "second passage"])
    """

    def __init__(self, model_name: str = config.EMBED_MODEL, batch_size: int = config.EMBED_BATCH_SIZE):
        self.model_name = model_name
        self.batch_size = max(1, batch_size)
        self._model = None
        self._dimension = None
        self._lock = threading.Lock()

    def _load(self):
        if self._model is not None:
            return self._model

        with self._lock:
            if self._model is not None:
                return self._model

            logger.info("Loading embedding model %s", self.model_name)

            use_gpu = False
            try:
                use_gpu = has_enough_vram()
            except Exception:
                logger.debug("CUDA probe failed; using CPU", exc_info=True)
                use_gpu = False

            if not use_gpu:
                os.environ["CUDA_VISIBLE_DEVICES"] = ""

            device = "cuda" if use_gpu else "cpu"

            try:
                from sentence_transformers import SentenceTransformer

                model = SentenceTransformer(self.model_name, device=device)
            except Exception as exc:
                logger.exception("Failed to load embedding model %s", self.model_name)
                raise CollaboratorUnavailable(f"embedding model unavailable: {exc}") from exc

            self._dimension = int(model.get_sentence_embedding_dimension())
            self._model = model
            logger.info("Embedding model loaded on %s (dim=%d)", device.upper(), self._dimension)
            return self._model

    @property
    def dimension(self) -> int:
        self._load()
        return self._dimension

    def _prefixed(self, texts, is_query):
        if not _uses_e5_prefixes(self.model_name):
            return list(texts)
        prefix = "query: " if is_query else "passage: "
        return [prefix + t for t in texts]

    def _encode(self, texts):
        model = self._load()
        try:
            vecs = model.encode(texts, batch_size=self.batch_size, show_progress_bar=False)
        except Exception as exc:
            logger.exception("Embedding failed for %d text(s)", len(texts))
            raise CollaboratorUnavailable(f"embedding failed: {exc}") from exc

        vecs = np.array(vecs).astype("float32")
        if vecs.ndim == 1:
            vecs = vecs.reshape(1, -1)
        faiss.normalize_L2(vecs)
        return vecs

    def embed(self, text: str, is_query: bool = False) -> np.ndarray:
        """Embed one text into a normalised 1D float32 vector."""
        return self._encode(self._prefixed([str(text or "")], is_query))[0]

    def embed_batch(self, texts) -> np.ndarray:
        """Embed many texts, preserving order.

        Returns:
            `(len(texts), dimension)` float32 matrix; an empty matrix for empty
            input without loading the model.
        """
        texts = [str(t or "") for t in texts]
        if not texts:
            return np.zeros((0, self._dimension or 0), dtype="float32")

        chunks = []
        for start in range(0, len(texts), self.batch_size):
            batch = self._prefixed(texts[start:start + self.batch_size], False)
            chunks.append(self._encode(batch))

        return np.vstack(chunks)
