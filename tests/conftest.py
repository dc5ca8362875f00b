from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path

import numpy as np
import pytest

from mnemo.core.engine import MemoryEngine


class FakeGateway:
    """Deterministic stand-in for the sentence-transformers gateway.

    Each distinct text maps to a fixed unit vector seeded from its hash, so
    identical texts score 1.0 against each other and unrelated texts score low.
    """

    dimension = 32

    def __init__(self) -> None:
        self.batch_calls = 0
        self.query_calls = 0
        self.embedded: list[str] = []

    def vector(self, text: str) -> np.ndarray:
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        vec = np.random.default_rng(seed).standard_normal(self.dimension).astype("float32")
        return vec / np.linalg.norm(vec)

    def embed(self, text, is_query=False):
        self.query_calls += 1
        return self.vector(text)

    def embed_batch(self, texts):
        texts = list(texts)
        self.batch_calls += 1
        self.embedded.extend(texts)
        if not texts:
            return np.zeros((0, self.dimension), dtype="float32")
        return np.vstack([self.vector(t) for t in texts])


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def mnemo_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the state root and transcripts dir at a temp tree."""

    root = tmp_path / "mnemo"
    (root / "journal").mkdir(parents=True)
    (root / "entities").mkdir(parents=True)
    transcripts = tmp_path / "projects"
    transcripts.mkdir()

    monkeypatch.setenv("MNEMO_ROOT", str(root))
    monkeypatch.setenv("MNEMO_TRANSCRIPTS_DIR", str(transcripts))
    return root


@pytest.fixture
def transcripts_dir(mnemo_root: Path) -> Path:
    return mnemo_root.parent / "projects"


@pytest.fixture
def engine(mnemo_root: Path, gateway: FakeGateway) -> MemoryEngine:
    return MemoryEngine(gateway=gateway)


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    yield
    package_logger = logging.getLogger("mnemo")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()


def write_jsonl(path: Path, records: list) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def journal_entry(topic: str, content: str, timestamp: str = "2024-05-01T10:00:00Z") -> dict:
    return {"timestamp": timestamp, "topic": topic, "content": content}


def user(text, uuid=None, **extra) -> dict:
    record = {"type": "user", "message": {"role": "user", "content": text}, **extra}
    if uuid:
        record["uuid"] = uuid
    return record


def assistant(content, uuid=None) -> dict:
    record = {"type": "assistant", "message": {"role": "assistant", "content": content}}
    if uuid:
        record["uuid"] = uuid
    return record
