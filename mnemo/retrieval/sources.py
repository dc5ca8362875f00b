"""Source readers for the memory index (journal partitions and entity documents).

Architectural role:
    Converts raw files under the state root into `MemoryItem` records for the
    incremental indexer. Nothing here embeds or writes; readers only decide what
    text becomes searchable and under which stable id.

Sources:
    - Journal: `journal/<YYYY-MM-DD>.jsonl`, one JSON record per line with
      `topic`, `content`, `timestamp`. Each record becomes one item
      `journal-<file>-<line>`, embedded as `"[<topic>] <content>"`.
    - Entities: `entities/<kind>/<name>.md`. Each document is split on `## `
      headings into an optional preamble item (`<kind>-<name>-preamble`) and
      one item per non-empty section (`<kind>-<name>-<heading index>`).

Determinism:
    Ids depend only on file names and positional/heading indexes, so re-reading
    unchanged content yields the same ids and re-indexing is a no-op upsert.

Failure modes:
    - Missing source directory raises `ConfigurationError` from discovery.
    - An unreadable file raises `SourceParseError`; malformed journal lines are
      skipped individually.
"""

import json
import logging
import os
import re
from datetime import datetime, timezone

from mnemo.core import config
from mnemo.core.errors import ConfigurationError, SourceParseError
from mnemo.memory.records import MemoryItem, TYPE_ENTITY_SECTION, TYPE_JOURNAL


logger = logging.getLogger(__name__)


JOURNAL_SUFFIX = ".jsonl"
ENTITY_SUFFIX = ".md"
PREAMBLE = "preamble"

_HEADING_SPLIT = re.compile(r"^## ", re.MULTILINE)


def _bounded(text, limit=config.MAX_ITEM_CHARS):
    return text if len(text) <= limit else text[:limit].rstrip()


def _read_text(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceParseError(path, f"unreadable: {exc}") from exc


# =========================================================
# JOURNAL
# =========================================================

def discover_journal_sources(journal_dir):
    """Return sorted journal partition paths.

    Raises:
        ConfigurationError: `journal_dir` does not exist.
    """
    if not os.path.isdir(journal_dir):
        raise ConfigurationError(f"journal directory not found: {journal_dir}")

    return sorted(
        os.path.join(journal_dir, name)
        for name in os.listdir(journal_dir)
        if name.endswith(JOURNAL_SUFFIX) and os.path.isfile(os.path.join(journal_dir, name))
    )


def journal_entry_text(entry):
    topic = entry.get("topic")
    content = str(entry.get("content", "")).strip()
    if topic:
        return f"[{topic}] {content}"
    return content


def read_journal_partition(path):
    """Parse one journal partition into items.

    Args:
        path: Path of a `.jsonl` partition.

    Returns:
        List of `MemoryItem`, one per well-formed record with non-empty content.

    Edge cases:
        - Blank lines are ignored and do not consume an index.
        - Malformed lines are skipped but keep their index, so ids of later
          lines do not shift when an earlier line is repaired.
    """
    file_name = os.path.basename(path)
    lines = [line for line in _read_text(path).splitlines() if line.strip()]

    items = []
    for i, line in enumerate(lines):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed journal line %s:%d", file_name, i)
            continue

        if not isinstance(entry, dict):
            continue

        text = journal_entry_text(entry)
        if not text:
            continue

        timestamp = entry.get("timestamp")
        items.append(MemoryItem(
            id=f"journal-{file_name}-{i}",
            type=TYPE_JOURNAL,
            content=_bounded(text),
            source=path,
            timestamp=str(timestamp) if timestamp else None,
        ))

    return items


# =========================================================
# ENTITIES
# =========================================================

def discover_entity_sources(entities_dir):
    """Return sorted `<kind>/<name>.md` paths under `entities_dir`.

    Raises:
        ConfigurationError: `entities_dir` does not exist.
    """
    if not os.path.isdir(entities_dir):
        raise ConfigurationError(f"entities directory not found: {entities_dir}")

    paths = []
    for kind in sorted(os.listdir(entities_dir)):
        kind_dir = os.path.join(entities_dir, kind)
        if kind.startswith(".") or not os.path.isdir(kind_dir):
            continue
        for name in sorted(os.listdir(kind_dir)):
            if name.endswith(ENTITY_SUFFIX) and os.path.isfile(os.path.join(kind_dir, name)):
                paths.append(os.path.join(kind_dir, name))
    return paths


def split_sections(text):
    """Split a document on second-level headings.

    Returns:
        `(preamble, sections)` where `preamble` is the stripped text before the
        first heading and `sections` is a list of `(heading, body)` tuples in
        document order, bodies stripped. Empty bodies are kept here; callers
        decide whether to index them.
    """
    parts = _HEADING_SPLIT.split(text)
    preamble = parts[0].strip()

    sections = []
    for part in parts[1:]:
        first_line, _, rest = part.partition("\n")
        sections.append((first_line.strip(), rest.strip()))

    return preamble, sections


def _mtime_iso(path):
    try:
        mtime = os.path.getmtime(path)
    except OSError:
        return None
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def read_entity_document(path):
    """Parse one entity document into a preamble item plus section items."""
    text = _read_text(path)
    kind = os.path.basename(os.path.dirname(path))
    name = os.path.splitext(os.path.basename(path))[0]
    timestamp = _mtime_iso(path)

    preamble, sections = split_sections(text)
    items = []

    if preamble:
        items.append(MemoryItem(
            id=f"{kind}-{name}-{PREAMBLE}",
            type=TYPE_ENTITY_SECTION,
            content=_bounded(preamble),
            source=path,
            timestamp=timestamp,
            entity=name,
            entity_kind=kind,
        ))

    for i, (heading, body) in enumerate(sections, start=1):
        if not body:
            continue
        items.append(MemoryItem(
            id=f"{kind}-{name}-{i}",
            type=TYPE_ENTITY_SECTION,
            content=_bounded(f"## {heading}\n\n{body}"),
            source=path,
            section=heading,
            timestamp=timestamp,
            entity=name,
            entity_kind=kind,
        ))

    return items


# =========================================================
# SOURCE SET
# =========================================================

def _is_journal_partition(path, journal_dir):
    return path.endswith(JOURNAL_SUFFIX) and os.path.dirname(os.path.abspath(path)) == os.path.abspath(journal_dir)


def _is_entity_document(path, entities_dir):
    # entities/<kind>/<name>.md only, same depth discovery walks
    path = os.path.abspath(path)
    kind = os.path.basename(os.path.dirname(path))
    return (
        path.endswith(ENTITY_SUFFIX)
        and not kind.startswith(".")
        and os.path.dirname(os.path.dirname(path)) == os.path.abspath(entities_dir)
    )


class MemorySources:
    """Journal + entity sources feeding the memory index.

    Directory getters are called on every use so configuration changes are
    picked up without rebuilding the object.
    """

    name = "memory"

    def __init__(self, journal_dir=config.get_journal_dir, entities_dir=config.get_entities_dir):
        self._journal_dir = journal_dir
        self._entities_dir = entities_dir

    def discover(self):
        """Return all current source paths. A missing directory contributes none."""
        paths = []
        for label, discover, directory in (
            ("journal", discover_journal_sources, self._journal_dir()),
            ("entities", discover_entity_sources, self._entities_dir()),
        ):
            try:
                paths.extend(discover(directory))
            except ConfigurationError:
                logger.info("No %s directory at %s; nothing to index there", label, directory)
        return paths

    def owns(self, path):
        """Whether `path` is a source `discover()` would list."""
        return _is_journal_partition(path, self._journal_dir()) or _is_entity_document(path, self._entities_dir())

    def parse(self, path):
        if _is_journal_partition(path, self._journal_dir()):
            return read_journal_partition(path)
        return read_entity_document(path)
