"""Append-only journal partitions.

Each day gets one `journal/<YYYY-MM-DD>.jsonl` file; each line is one entry::

    {"timestamp": "...Z", "topic": "decision", "content": "...", "metadata": {...}}

Writing only appends, so the positional ids the source reader derives for
earlier lines never change. Indexing the new entry is the engine's job.
"""

import json
import logging
import os
from datetime import datetime, timezone

from mnemo.core import config


logger = logging.getLogger(__name__)


DEFAULT_METADATA = {"source": "mnemo"}


def partition_path(journal_dir, when):
    return os.path.join(journal_dir, f"{when.strftime('%Y-%m-%d')}.jsonl")


def log_journal(topic, content, metadata=None, journal_dir=None, now=None):
    """Append one entry to today's partition.

    Args:
        topic: Short category label.
        content: Entry text.
        metadata: Optional dict stored alongside the entry.
        journal_dir: Override for the journal directory.
        now: Optional aware datetime used for the timestamp and partition.

    Returns:
        `(partition_path, entry)`.

    Raises:
        ValueError: `topic` or `content` is blank.
    """
    if not topic or not str(topic).strip():
        raise ValueError("topic must not be empty")
    if not content or not str(content).strip():
        raise ValueError("content must not be empty")

    journal_dir = journal_dir or config.get_journal_dir()
    now = now or datetime.now(timezone.utc)

    entry = {
        "timestamp": now.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "topic": str(topic).strip(),
        "content": str(content).strip(),
        "metadata": dict(metadata) if metadata else dict(DEFAULT_METADATA),
    }

    os.makedirs(journal_dir, exist_ok=True)
    path = partition_path(journal_dir, now.astimezone(timezone.utc))
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")

    logger.info("Journal entry appended to %s (topic=%s)", path, entry["topic"])
    return path, entry


def get_recent_journal(count=10, topic=None, journal_dir=None):
    """Return the newest journal entries, newest first.

    Partitions are read newest file first and lines bottom up. Malformed lines
    are skipped; a missing journal directory yields `[]`.
    """
    journal_dir = journal_dir or config.get_journal_dir()
    if count <= 0 or not os.path.isdir(journal_dir):
        return []

    files = sorted((f for f in os.listdir(journal_dir) if f.endswith(".jsonl")), reverse=True)

    entries = []
    for name in files:
        try:
            with open(os.path.join(journal_dir, name), "r", encoding="utf-8") as f:
                lines = [line for line in f.read().splitlines() if line.strip()]
        except OSError:
            logger.exception("Failed to read journal partition %s", name)
            continue

        for line in reversed(lines):
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(entry, dict):
                continue
            if topic and entry.get("topic") != topic:
                continue
            entries.append(entry)
            if len(entries) >= count:
                return entries

    return entries
