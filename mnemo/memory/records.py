"""Indexed record types and their vector-store metadata encoding.

Architectural role:
    Defines the two record families stored in vector indexes and the tagged-union
    codec used at the vector store boundary:

    - `MemoryItem` (`journal`, `entity-section`) produced by source readers.
    - `ConversationExchange` (`conversation-exchange`) produced by the transcript
      extractor.

    Records are flattened to plain JSON dicts only by `to_metadata()`; the store
    never interprets them. `record_from_metadata` dispatches on the `type` tag to
    rebuild the typed record for ranking and display.

Determinism:
    Pure data transformations; no I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone


TYPE_JOURNAL = "journal"
TYPE_ENTITY_SECTION = "entity-section"
TYPE_CONVERSATION_EXCHANGE = "conversation-exchange"

MEMORY_ITEM_TYPES = (TYPE_JOURNAL, TYPE_ENTITY_SECTION)
RECORD_TYPES = (TYPE_JOURNAL, TYPE_ENTITY_SECTION, TYPE_CONVERSATION_EXCHANGE)


def parse_timestamp(value):
    """Parse an ISO-8601 string into an aware UTC datetime.

    Args:
        value: ISO string (a trailing `Z` is accepted) or `None`.

    Returns:
        Aware `datetime` in UTC, or `None` for empty/unparseable input.
        Naive timestamps are interpreted as UTC.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class MemoryItem:
    """One embeddable unit derived from a journal partition or entity document.

    Attributes:
        id: Stable id derived from source file name and positional/heading index.
        type: `journal` or `entity-section`.
        content: Bounded text that is embedded.
        source: Path of the originating file.
        section: Heading label for entity sections; `None` for preambles/journal.
        timestamp: Optional ISO-8601 timestamp.
        entity: Entity name (document stem) for entity sections.
        entity_kind: Entity subdirectory (`people`, `projects`, ...).
    """

    id: str
    type: str
    content: str
    source: str
    section: str | None = None
    timestamp: str | None = None
    entity: str | None = None
    entity_kind: str | None = None

    @property
    def context(self):
        return None

    def embedding_text(self):
        return self.content

    def to_metadata(self):
        meta = {
            "type": self.type,
            "content": self.content,
            "source": self.source,
        }
        if self.section:
            meta["section"] = self.section
        if self.timestamp:
            meta["timestamp"] = self.timestamp
        if self.entity:
            meta["entity"] = self.entity
        if self.entity_kind:
            meta["entity_kind"] = self.entity_kind
        return meta


@dataclass(frozen=True)
class ConversationExchange:
    """One reconstructed user prompt + first assistant reply from a transcript."""

    id: str
    user_prompt: str
    assistant_summary: str
    project: str
    project_path: str
    timestamp: str
    session_id: str
    session_path: str
    message_uuid: str
    branch: str | None = None
    type: str = field(default=TYPE_CONVERSATION_EXCHANGE, init=False)

    @property
    def context(self):
        return self.project_path

    def embedding_text(self):
        branch = f" ({self.branch})" if self.branch else ""
        return f"{self.project}{branch}: {self.user_prompt}"

    def to_metadata(self):
        return {
            "type": self.type,
            "user_prompt": self.user_prompt,
            "assistant_summary": self.assistant_summary,
            "project": self.project,
            "project_path": self.project_path,
            "branch": self.branch or "",
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "session_path": self.session_path,
            "message_uuid": self.message_uuid,
        }


def record_from_metadata(item_id, metadata):
    """Decode a stored metadata dict back into its typed record.

    Args:
        item_id: Store id of the item.
        metadata: Flat metadata dict as written by `to_metadata()`.

    Returns:
        `MemoryItem`, `ConversationExchange`, or `None` when the `type` tag is
        unknown or required fields are missing.
    """
    if not isinstance(metadata, dict):
        return None

    record_type = metadata.get("type")

    if record_type == TYPE_CONVERSATION_EXCHANGE:
        try:
            return ConversationExchange(
                id=item_id,
                user_prompt=str(metadata["user_prompt"]),
                assistant_summary=str(metadata.get("assistant_summary", "")),
                project=str(metadata.get("project", "")),
                project_path=str(metadata.get("project_path", "")),
                branch=metadata.get("branch") or None,
                timestamp=str(metadata.get("timestamp", "")),
                session_id=str(metadata.get("session_id", "")),
                session_path=str(metadata.get("session_path", "")),
                message_uuid=str(metadata.get("message_uuid", "")),
            )
        except KeyError:
            return None

    if record_type in MEMORY_ITEM_TYPES:
        try:
            return MemoryItem(
                id=item_id,
                type=record_type,
                content=str(metadata["content"]),
                source=str(metadata.get("source", "")),
                section=metadata.get("section"),
                timestamp=metadata.get("timestamp"),
                entity=metadata.get("entity"),
                entity_kind=metadata.get("entity_kind"),
            )
        except KeyError:
            return None

    return None
