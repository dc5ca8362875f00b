"""Tests for the transcript exchange extractor and conversation expansion."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import assistant, user, write_jsonl
from mnemo.retrieval.transcripts import (
    TranscriptSources,
    decode_project_path,
    expand_conversation,
    extract_exchanges,
    parse_transcript_file,
    scan_transcript_files,
    unwrap_envelope,
)


SESSION = "/logs/-Users-me-repo/abc123.jsonl"


def run(records, project_path="/Users/me/repo"):
    return extract_exchanges(list(enumerate(records)), SESSION, project_path)


# =============================================================================
# Pairing
# =============================================================================


class TestPairing:
    def test_tool_result_between_prompt_and_reply_is_ignored(self) -> None:
        records = [
            user("Fix the bug", uuid="u1", sessionId="s1"),
            user([{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]),
            assistant([{"type": "text", "text": "Fixed it by adding a mutex"}]),
        ]

        exchanges = run(records)

        assert len(exchanges) == 1
        assert exchanges[0].user_prompt == "Fix the bug"
        assert exchanges[0].assistant_summary == "Fixed it by adding a mutex"
        assert exchanges[0].id == "conv-s1-u1"

    def test_newer_prompt_overwrites_unanswered_one(self) -> None:
        records = [
            user("First question nobody answered"),
            user("Second question that gets answered"),
            assistant("Here is the answer"),
        ]

        exchanges = run(records)

        assert [e.user_prompt for e in exchanges] == ["Second question that gets answered"]

    def test_assistant_without_text_closes_pending_turn(self) -> None:
        records = [
            user("Explain the cache layer"),
            assistant([{"type": "tool_use", "id": "t1", "name": "Read", "input": {}}]),
            assistant("A late text reply"),
        ]

        assert run(records) == []

    def test_assistant_without_pending_turn_emits_nothing(self) -> None:
        assert run([assistant("Unprompted remark")]) == []

    def test_role_falls_back_to_message_role(self) -> None:
        records = [
            {"message": {"role": "user", "content": "What is the deploy target?"}, "uuid": "u9"},
            {"message": {"role": "assistant", "content": "Fly.io in two regions"}},
        ]

        assert len(run(records)) == 1

    def test_prompt_and_summary_are_truncated(self) -> None:
        records = [user("q" * 1500), assistant("a" * 800)]

        exchange = run(records)[0]

        assert len(exchange.user_prompt) == 1000
        assert len(exchange.assistant_summary) == 500


# =============================================================================
# Noise and envelopes
# =============================================================================


class TestNoise:
    @pytest.mark.parametrize(
        "text",
        [
            "<local-command-stdout>ls output</local-command-stdout>",
            "This session is being continued from a previous conversation that ran out",
            "<system-reminder>be nice</system-reminder>",
            "<current_time>noon</current_time>",
            "## Current State Files\nfoo",
            "Base directory for this skill: /x",
            "ok thanks",
        ],
    )
    def test_noise_is_not_paired(self, text: str) -> None:
        assert run([user(text), assistant("Some reply text")]) == []

    def test_noise_does_not_clear_pending(self) -> None:
        records = [
            user("Why does the build fail on CI?"),
            user("<command-name>/clear</command-name>"),
            assistant("Because the cache key changed"),
        ]

        assert [e.user_prompt for e in run(records)] == ["Why does the build fail on CI?"]

    def test_envelope_is_unwrapped(self) -> None:
        text = "# Agent Context\nToday: Monday\nUser message: How do I rotate the API keys?"

        exchanges = run([user(text), assistant("Use the rotate command")])

        assert exchanges[0].user_prompt == "How do I rotate the API keys?"

    def test_envelope_without_payload_is_discarded(self) -> None:
        assert unwrap_envelope("# Agent Context\nnothing else here") == ""
        assert run([user("# Agent Context\nnothing else here"), assistant("reply")]) == []

    def test_unwrapped_payload_is_still_noise_checked(self) -> None:
        text = "# Agent Context\nUser message: hi"

        assert run([user(text), assistant("Hello there")]) == []


# =============================================================================
# Record fields
# =============================================================================


class TestFields:
    def test_context_fields_come_from_user_record(self) -> None:
        records = [
            user(
                "Add retries to the uploader",
                uuid="u1",
                sessionId="s1",
                cwd="/work/uploader",
                gitBranch="feat/retry",
                timestamp="2024-05-01T10:00:00Z",
            ),
            assistant("Added exponential backoff"),
        ]

        exchange = run(records)[0]

        assert exchange.project_path == "/work/uploader"
        assert exchange.project == "uploader"
        assert exchange.branch == "feat/retry"
        assert exchange.timestamp == "2024-05-01T10:00:00Z"
        assert exchange.session_path == SESSION
        assert exchange.embedding_text() == "uploader (feat/retry): Add retries to the uploader"

    def test_defaults_without_ids_or_cwd(self) -> None:
        exchange = run([user("Summarize the design doc"), assistant("It proposes two indexes")])[0]

        assert exchange.session_id == "abc123"
        assert exchange.id == "conv-abc123-0"
        assert exchange.message_uuid == ""
        assert exchange.project_path == "/Users/me/repo"
        assert exchange.branch is None
        assert exchange.embedding_text() == "repo: Summarize the design doc"

    def test_decode_project_path(self) -> None:
        assert decode_project_path("-Users-me-repo") == "/Users/me/repo"


# =============================================================================
# Files
# =============================================================================


class TestFiles:
    def test_malformed_lines_are_skipped(self, tmp_path: Path) -> None:
        path = write_jsonl(
            tmp_path / "-home-dev-app" / "sess.jsonl",
            [
                "{not json",
                '"a bare string"',
                user("Where are the migrations kept?", uuid="u1"),
                assistant("Under db/migrations"),
            ],
        )

        exchanges = parse_transcript_file(str(path))

        assert len(exchanges) == 1
        assert exchanges[0].project_path == "/home/dev/app"
        assert exchanges[0].session_id == "sess"

    def test_scan_skips_agent_files_and_dot_dirs(self, transcripts_dir: Path) -> None:
        keep = write_jsonl(transcripts_dir / "-a-b" / "main.jsonl", [])
        write_jsonl(transcripts_dir / "-a-b" / "agent-123.jsonl", [])
        write_jsonl(transcripts_dir / ".cache" / "x.jsonl", [])
        (transcripts_dir / "stray.jsonl").write_text("", encoding="utf-8")

        assert scan_transcript_files(str(transcripts_dir)) == [str(keep)]

    def test_source_set_ownership(self, transcripts_dir: Path) -> None:
        sources = TranscriptSources()

        assert sources.owns(str(transcripts_dir / "-a-b" / "main.jsonl"))
        assert not sources.owns(str(transcripts_dir / "-a-b" / "agent-1.jsonl"))
        assert not sources.owns(str(transcripts_dir / "main.jsonl"))

    def test_missing_transcripts_dir_discovers_nothing(self, tmp_path: Path) -> None:
        sources = TranscriptSources(lambda: str(tmp_path / "absent"))

        assert sources.discover() == []


# =============================================================================
# Expansion
# =============================================================================


class TestExpand:
    def _session(self, tmp_path: Path) -> Path:
        records = []
        for i in range(8):
            records.append(user(f"Question number {i} about caching", uuid=f"u{i}", cwd="/w/proj", gitBranch="main"))
            records.append(assistant(f"Answer number {i}", uuid=f"a{i}"))
        return write_jsonl(tmp_path / "-w-proj" / "s.jsonl", records)

    def test_window_centres_on_target(self, tmp_path: Path) -> None:
        path = self._session(tmp_path)

        result = expand_conversation(str(path), "u4", context_messages=4)

        assert result["project"] == "proj"
        assert result["branch"] == "main"
        assert [m["content"] for m in result["messages"]] == [
            "Question number 3 about caching",
            "Answer number 3",
            "Question number 4 about caching",
            "Answer number 4",
        ]
        assert "uuid" not in result["messages"][0]

    def test_unknown_uuid_returns_tail(self, tmp_path: Path) -> None:
        path = self._session(tmp_path)

        result = expand_conversation(str(path), "missing", context_messages=2)

        assert [m["content"] for m in result["messages"]] == ["Question number 7 about caching", "Answer number 7"]

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            expand_conversation(str(tmp_path / "nope.jsonl"), "u1")
