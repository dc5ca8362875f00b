"""
Command-line adapter for the mnemo memory engine.

Architectural role:
- Exposes every host operation of `mnemo.core.engine.MemoryEngine` as a
  subcommand.
- Owns nothing but argument parsing and output rendering.

Subcommands:
- `search QUERY`            memory index search (journal + entities)
- `conversations QUERY`     conversation search, boosted for the current project
- `expand SESSION UUID`     messages around one past exchange
- `rebuild` / `update`      full or incremental index passes
- `index-source PATH...`    targeted reindex of changed files
- `journal add|recent`      append to or read the journal
- `stats`                   item counts of both indexes

Error handling strategy:
- `MnemoError` subclasses and missing files print a one-line message to
  stderr and exit with code 1.
- Invalid arguments (e.g. an unparseable `--since`) exit with code 2.

Response formatting:
- Human-readable text by default, `--json` for machine consumers.
"""

from dotenv import load_dotenv

load_dotenv()

import argparse
import asyncio
import json
import logging
import os
import sys

from mnemo.core import config
from mnemo.core.engine import MemoryEngine
from mnemo.core.errors import MnemoError
from mnemo.memory.records import TYPE_CONVERSATION_EXCHANGE, MEMORY_ITEM_TYPES


logger = logging.getLogger(__name__)


# =========================================================
# UTF-8 SAFE OUTPUT
# Best-effort stdout encoding normalization for interactive terminals.
# =========================================================

if hasattr(sys.stdout, "reconfigure"):
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="ignore")
    except Exception:
        pass


# =========================================================
# RENDERING
# =========================================================

def _print_json(payload):
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _shorten(text, limit=200):
    text = " ".join(str(text).split())
    return text if len(text) <= limit else text[:limit - 3] + "..."


def render_response(response, as_json=False):
    """Print a `SearchResponse` as text or JSON."""
    if as_json:
        _print_json(response.to_dict())
        return

    if response.hint:
        print(response.hint)
        return

    if not response.results:
        print("No results.")
        return

    for n, result in enumerate(response.results, start=1):
        record = result.record
        print(f"{n}. [{record.type}] score={result.adjusted_score:.3f} (raw {result.score:.3f})")

        if record.type == TYPE_CONVERSATION_EXCHANGE:
            branch = f" ({record.branch})" if record.branch else ""
            print(f"   {record.project}{branch} @ {record.timestamp}")
            print(f"   Q: {_shorten(record.user_prompt)}")
            print(f"   A: {_shorten(record.assistant_summary)}")
            print(f"   session: {record.session_path} uuid: {record.message_uuid}")
        else:
            label = record.section or record.entity or os.path.basename(record.source)
            when = f" @ {record.timestamp}" if record.timestamp else ""
            print(f"   {label}{when}")
            print(f"   {_shorten(record.content)}")
        print()


def _render_dict(payload, as_json):
    if as_json:
        _print_json(payload)
        return
    for key, value in payload.items():
        print(f"{key}: {value}")


# =========================================================
# COMMANDS
# =========================================================

async def _cmd_search(engine, args):
    response = await engine.search(args.query, limit=args.limit, type=args.type, since=args.since)
    render_response(response, args.json)


async def _cmd_conversations(engine, args):
    response = await engine.search_conversations(
        args.query,
        limit=args.limit,
        project_only=args.project_only,
        current_context=args.context,
    )
    render_response(response, args.json)


async def _cmd_expand(engine, args):
    payload = await engine.expand_conversation(args.session, args.uuid, args.context_messages)
    if args.json:
        _print_json(payload)
        return

    branch = f" ({payload['branch']})" if payload["branch"] else ""
    print(f"Project: {payload['project'] or '?'}{branch}\n")
    for message in payload["messages"]:
        print(f"[{message['role']}] {message['content']}\n")


def _targets(args):
    if args.all:
        return ("memory", "conversations")
    if args.conversations:
        return ("conversations",)
    return ("memory",)


async def _cmd_rebuild(engine, args):
    payload = {}
    for target in _targets(args):
        if target == "memory":
            payload[target] = await engine.rebuild_index()
        else:
            payload[target] = await engine.rebuild_conversation_index()
    _render_dict(payload, args.json)


async def _cmd_update(engine, args):
    payload = {}
    for target in _targets(args):
        if target == "memory":
            payload[target] = await engine.update_index()
        else:
            payload[target] = await engine.update_conversation_index()
    _render_dict(payload, args.json)


async def _cmd_index_source(engine, args):
    results = await engine.index_sources(args.paths)
    if args.json:
        _print_json(results)
        return
    if not results:
        print("No indexed source matched.")
    for result in results:
        print(f"{result['index']}: {result['files_updated']} updated, {result['item_count']} items")


async def _cmd_journal(engine, args):
    if args.journal_command == "add":
        metadata = {"source": "cli"}
        entry = await engine.log_journal(args.topic, args.content, metadata)
        if args.json:
            _print_json(entry)
        else:
            print(f"Logged [{entry['topic']}] at {entry['timestamp']}")
        return

    entries = await engine.get_recent_journal(args.count, args.topic)
    if args.json:
        _print_json(entries)
        return
    if not entries:
        print("Journal is empty.")
    for entry in entries:
        print(f"{entry.get('timestamp', '?')} [{entry.get('topic', '')}] {_shorten(entry.get('content', ''))}")


async def _cmd_stats(engine, args):
    payload = await engine.stats()
    if args.json:
        _print_json(payload)
        return
    for name, info in payload.items():
        print(f"{name}: {info['item_count']} items (last update: {info['last_update'] or 'never'})")


COMMANDS = {
    "search": _cmd_search,
    "conversations": _cmd_conversations,
    "expand": _cmd_expand,
    "rebuild": _cmd_rebuild,
    "update": _cmd_update,
    "index-source": _cmd_index_source,
    "journal": _cmd_journal,
    "stats": _cmd_stats,
}


# =========================================================
# PARSER
# =========================================================

def build_parser():
    parser = argparse.ArgumentParser(prog="mnemo", description="Personal memory index and search.")
    parser.add_argument("--json", action="store_true", help="print machine-readable JSON")
    parser.add_argument("--log-level", default=None, help="override MNEMO_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("search", help="search journal entries and entity notes")
    p.add_argument("query")
    p.add_argument("--limit", type=int, default=config.DEFAULT_SEARCH_LIMIT)
    p.add_argument("--type", choices=MEMORY_ITEM_TYPES, default=None)
    p.add_argument("--since", default=None, help="ISO-8601 lower bound on timestamps")

    p = sub.add_parser("conversations", help="search past conversation exchanges")
    p.add_argument("query")
    p.add_argument("--limit", type=int, default=config.DEFAULT_SEARCH_LIMIT)
    p.add_argument("--context", default=os.getcwd(), help="current project path (default: cwd)")
    p.add_argument("--project-only", action="store_true", help="only return exchanges from --context")

    p = sub.add_parser("expand", help="show messages around a past exchange")
    p.add_argument("session", help="transcript path of the exchange")
    p.add_argument("uuid", help="message uuid of the exchange")
    p.add_argument("--context-messages", type=int, default=10)

    for name, help_text in (("rebuild", "rebuild an index from scratch"), ("update", "index new or changed sources")):
        p = sub.add_parser(name, help=help_text)
        group = p.add_mutually_exclusive_group()
        group.add_argument("--conversations", action="store_true", help="target the conversation index")
        group.add_argument("--all", action="store_true", help="target both indexes")

    p = sub.add_parser("index-source", help="reindex specific changed files")
    p.add_argument("paths", nargs="+")

    p = sub.add_parser("journal", help="write or read journal entries")
    journal_sub = p.add_subparsers(dest="journal_command", required=True)
    add = journal_sub.add_parser("add", help="append an entry")
    add.add_argument("topic")
    add.add_argument("content")
    recent = journal_sub.add_parser("recent", help="list recent entries")
    recent.add_argument("--count", type=int, default=10)
    recent.add_argument("--topic", default=None)

    sub.add_parser("stats", help="show index sizes")
    return parser


# =========================================================
# MAIN
# =========================================================

def main(argv=None, engine=None):
    """
    Parse arguments, run one command, return the process exit code.

    Error handling strategy:
    - Engine failures are logged to the state-root log file and summarized on
      stderr.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    config.configure_logging(args.log_level)
    engine = engine or MemoryEngine()

    try:
        asyncio.run(COMMANDS[args.command](engine, args))
    except ValueError as exc:
        print(f"mnemo: {exc}", file=sys.stderr)
        return 2
    except (MnemoError, FileNotFoundError) as exc:
        logger.exception("Command %s failed", args.command)
        print(f"mnemo: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
