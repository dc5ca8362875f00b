"""Transcript parsing: noisy agent session logs to clean conversation exchanges.

Architectural role:
    Feeds the conversation index. A transcript is a `.jsonl` log where each line
    is one record (user prompt, tool result, assistant reply, snapshot...). The
    extractor pairs each genuine user prompt with the first assistant text that
    follows it and drops everything else.

Pairing rules:
    - At most one pending user turn is held; a newer genuine prompt overwrites an
      unanswered one.
    - Tool results never touch the pending turn.
    - Context envelopes are unwrapped to their `User message:` payload before
      noise checks run.
    - The first assistant record after a pending turn closes it, whether or not
      that record has text. Only a record with text emits an exchange.

Failure modes:
    - Malformed lines and wrongly shaped records are skipped one by one.
    - An unreadable log file yields no exchanges and is logged.
"""

import json
import logging
import os

from mnemo.core import config
from mnemo.core.errors import ConfigurationError
from mnemo.memory.records import ConversationExchange, utc_now_iso


logger = logging.getLogger(__name__)


TRANSCRIPT_SUFFIX = ".jsonl"
AGENT_PREFIX = "agent-"

TOOL_BLOCK_TYPES = ("tool_result", "tool_use")

ENVELOPE_HEADER = "# Agent Context"
ENVELOPE_MARKER = "\nUser message: "

CONTINUATION_MARKER = "This session is being continued from a previous conversation"
COMMAND_OUTPUT_TAGS = ("<local-command-stdout>", "<local-command-caveat>", "<command-name>")
INJECTED_PREFIXES = (
    "<system-reminder>",
    "<current_time>",
    "<context_status>",
    "<state_files>",
    "## Current State Files",
    "Base directory for this skill:",
)


# =========================================================
# RECORD HELPERS
# =========================================================

def record_role(record):
    role = record.get("type")
    if role in ("user", "assistant"):
        return role
    message = record.get("message")
    if isinstance(message, dict) and message.get("role") in ("user", "assistant"):
        return message["role"]
    return role


def record_content(record):
    message = record.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, (str, list)) and content:
        return content
    return None


def is_tool_result(content):
    if not isinstance(content, list):
        return False
    for block in content:
        if not isinstance(block, dict):
            continue
        if block.get("type") in TOOL_BLOCK_TYPES or "tool_use_id" in block:
            return True
    return False


def first_text(content):
    """Return the first text block of `content`, or the string itself."""
    if isinstance(content, str):
        return content
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
            if block["text"]:
                return block["text"]
    return ""


def unwrap_envelope(text):
    """Extract the user payload of a synthetic context envelope.

    Returns:
        The payload after `User message:` for an envelope, `""` for an envelope
        with no payload, and `text` unchanged when it is not an envelope.
    """
    if not (text.startswith(ENVELOPE_HEADER) or ENVELOPE_MARKER in text):
        return text
    _, marker, payload = text.partition(ENVELOPE_MARKER)
    if not marker:
        return ""
    return payload.strip()


def is_noise(text):
    if text.startswith(CONTINUATION_MARKER):
        return True
    if any(tag in text for tag in COMMAND_OUTPUT_TAGS):
        return True
    if text.startswith(INJECTED_PREFIXES):
        return True
    return len(text.strip()) < config.MIN_USER_PROMPT_CHARS


def user_prompt_text(content):
    """Return the genuine prompt carried by a user record, or `""`."""
    if is_tool_result(content):
        return ""
    text = unwrap_envelope(first_text(content))
    if not text or is_noise(text):
        return ""
    return text


def decode_project_path(encoded):
    """Turn an encoded project directory name back into a path.

    `-Users-me-repo` becomes `/Users/me/repo`. Hyphens inside real directory
    names cannot be told apart, so records prefer their own `cwd`.
    """
    if encoded.startswith("-"):
        encoded = "/" + encoded[1:]
    return encoded.replace("-", "/")


def project_name(project_path):
    return os.path.basename(project_path.rstrip("/\\")) or project_path


def _session_stem(session_path):
    return os.path.splitext(os.path.basename(session_path))[0]


# =========================================================
# EXTRACTION
# =========================================================

def iter_records(lines):
    """Yield `(line_index, record)` for every line that decodes to a JSON object."""
    for i, line in enumerate(lines):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(record, dict):
            yield i, record


def extract_exchanges(records, session_path, project_path=""):
    """Pair user prompts with assistant replies.

    Args:
        records: Iterable of `(index, record)` pairs, as from `iter_records`.
        session_path: Path of the originating log, stored on each exchange.
        project_path: Fallback project path when records carry no `cwd`.

    Returns:
        List of `ConversationExchange` in log order.
    """
    exchanges = []
    pending = None
    default_session = _session_stem(session_path)

    for index, record in records:
        role = record_role(record)
        content = record_content(record)
        if content is None:
            continue

        if role == "user":
            if is_tool_result(content):
                continue
            text = user_prompt_text(content)
            if text:
                pending = (index, record, text)

        elif role == "assistant" and pending is not None:
            user_index, user_record, text = pending
            pending = None

            summary = first_text(content)[:config.MAX_ASSISTANT_SUMMARY_CHARS]
            if not summary:
                continue

            session_id = str(user_record.get("sessionId") or default_session)
            uuid = user_record.get("uuid")
            turn_id = str(uuid) if uuid else str(user_index)
            path = str(user_record.get("cwd") or project_path)

            exchanges.append(ConversationExchange(
                id=f"conv-{session_id}-{turn_id}",
                user_prompt=text[:config.MAX_USER_PROMPT_CHARS],
                assistant_summary=summary,
                project=project_name(path),
                project_path=path,
                branch=user_record.get("gitBranch") or None,
                timestamp=str(user_record.get("timestamp") or utc_now_iso()),
                session_id=session_id,
                session_path=session_path,
                message_uuid=str(uuid or ""),
            ))

    return exchanges


def _read_lines(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read().splitlines()
    except (OSError, UnicodeDecodeError):
        logger.exception("Failed to read transcript %s", path)
        return []


def parse_transcript_file(path, project_path=None):
    """Extract exchanges from one transcript log on disk."""
    if project_path is None:
        project_path = decode_project_path(os.path.basename(os.path.dirname(path)))
    return extract_exchanges(iter_records(_read_lines(path)), path, project_path)


def scan_transcript_files(transcripts_dir):
    """Return sorted session log paths under `<transcripts_dir>/<project>/`.

    Raises:
        ConfigurationError: `transcripts_dir` does not exist.
    """
    if not os.path.isdir(transcripts_dir):
        raise ConfigurationError(f"transcripts directory not found: {transcripts_dir}")

    paths = []
    for project_dir in sorted(os.listdir(transcripts_dir)):
        if project_dir.startswith("."):
            continue
        full = os.path.join(transcripts_dir, project_dir)
        if not os.path.isdir(full):
            continue
        for name in sorted(os.listdir(full)):
            if not name.endswith(TRANSCRIPT_SUFFIX) or name.startswith(AGENT_PREFIX):
                continue
            paths.append(os.path.join(full, name))
    return paths


# =========================================================
# EXPANSION
# =========================================================

def expand_conversation(session_path, message_uuid, context_messages=10):
    """Return the cleaned messages surrounding one turn of a session.

    Args:
        session_path: Transcript log path, as stored on an exchange.
        message_uuid: Turn identifier to centre the window on.
        context_messages: Window size.

    Returns:
        `{"messages": [{"role", "content", "timestamp"}], "project", "branch"}`.
        The window starts `context_messages // 2` messages before the target;
        when the target is unknown the last `context_messages` are returned.

    Raises:
        FileNotFoundError: `session_path` does not exist.
    """
    if not os.path.exists(session_path):
        raise FileNotFoundError(f"Session file not found: {session_path}")

    messages = []
    project = ""
    branch = None

    for _index, record in iter_records(_read_lines(session_path)):
        role = record_role(record)
        content = record_content(record)
        if content is None:
            continue

        if role == "user":
            text = user_prompt_text(content)
            if not text:
                continue
            if not project and record.get("cwd"):
                project = project_name(str(record["cwd"]))
            if branch is None and record.get("gitBranch"):
                branch = record["gitBranch"]
        elif role == "assistant":
            text = first_text(content)[:config.MAX_ASSISTANT_SUMMARY_CHARS]
            if not text:
                continue
        else:
            continue

        messages.append({
            "role": role,
            "content": text,
            "timestamp": record.get("timestamp"),
            "uuid": record.get("uuid"),
        })

    context_messages = max(1, int(context_messages))
    target = next((i for i, m in enumerate(messages) if m["uuid"] == message_uuid), None)

    if target is None:
        window = messages[-context_messages:]
    else:
        start = max(0, target - context_messages // 2)
        window = messages[start:start + context_messages]

    return {
        "messages": [{k: v for k, v in m.items() if k != "uuid"} for m in window],
        "project": project,
        "branch": branch,
    }


# =========================================================
# SOURCE SET
# =========================================================

class TranscriptSources:
    """Session logs feeding the conversation index."""

    name = "conversations"

    def __init__(self, transcripts_dir=config.get_transcripts_dir):
        self._transcripts_dir = transcripts_dir

    def discover(self):
        directory = self._transcripts_dir()
        try:
            return scan_transcript_files(directory)
        except ConfigurationError:
            logger.info("No transcripts directory at %s; nothing to index there", directory)
            return []

    def owns(self, path):
        if not path.endswith(TRANSCRIPT_SUFFIX) or os.path.basename(path).startswith(AGENT_PREFIX):
            return False
        root = os.path.abspath(self._transcripts_dir())
        parent = os.path.dirname(os.path.dirname(os.path.abspath(path)))
        return parent == root

    def parse(self, path):
        return parse_transcript_file(path)
