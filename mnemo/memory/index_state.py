"""Per-source bookkeeping for incremental indexing.

An `IndexState` maps each processed source path to the fingerprint it had when
it was last indexed and the ids of the records derived from it. The indexer
works on a copy during a pass and persists it only after the pass succeeds, so
a failed pass leaves the previous state on disk untouched.

State file format::

    {
      "sources": {"<path>": {"fingerprint": "<size>-<mtime_ns>", "item_ids": [...]}},
      "last_update": "<ISO-8601>"
    }
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field

from mnemo.memory.records import utc_now_iso


logger = logging.getLogger(__name__)


def fingerprint(path):
    """Return a cheap change token for `path`, or `None` if it cannot be stat'ed."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    return f"{st.st_size}-{st.st_mtime_ns}"


@dataclass
class SourceRecord:
    fingerprint: str
    item_ids: list = field(default_factory=list)


@dataclass
class IndexState:
    sources: dict = field(default_factory=dict)
    last_update: str = ""

    def is_unchanged(self, path, current_fingerprint):
        record = self.sources.get(path)
        return record is not None and record.fingerprint == current_fingerprint

    def record(self, path, current_fingerprint, item_ids):
        self.sources[path] = SourceRecord(fingerprint=current_fingerprint, item_ids=list(item_ids))

    def forget(self, path):
        return self.sources.pop(path, None)

    def prune(self, live_paths):
        """Drop bookkeeping for sources not in `live_paths`; return dropped paths."""
        dropped = [path for path in self.sources if path not in live_paths]
        for path in dropped:
            del self.sources[path]
        return dropped

    def item_count(self):
        return sum(len(record.item_ids) for record in self.sources.values())

    def copy(self):
        return copy.deepcopy(self)

    def touch(self):
        self.last_update = utc_now_iso()

    def to_dict(self):
        return {
            "sources": {
                path: {"fingerprint": record.fingerprint, "item_ids": list(record.item_ids)}
                for path, record in self.sources.items()
            },
            "last_update": self.last_update,
        }

    @classmethod
    def from_dict(cls, data):
        sources = {}
        for path, entry in (data.get("sources") or {}).items():
            if not isinstance(entry, dict) or "fingerprint" not in entry:
                continue
            sources[path] = SourceRecord(
                fingerprint=str(entry["fingerprint"]),
                item_ids=[str(i) for i in entry.get("item_ids", [])],
            )
        return cls(sources=sources, last_update=str(data.get("last_update", "")))


def load_state(path):
    """Load persisted state.

    Returns:
        `IndexState`, or `None` when no state file exists or it is corrupt
        (callers then perform a full rebuild).
    """
    if not os.path.exists(path):
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        logger.exception("Failed to load index state from %s", path)
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring malformed index state in %s", path)
        return None

    return IndexState.from_dict(data)


def save_state(path, state):
    """Persist state atomically via temporary file replacement."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(state.to_dict(), f, indent=2, ensure_ascii=False)
    os.replace(tmp, path)
