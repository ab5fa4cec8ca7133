import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

from backend.parsers import log_parser
from backend.parsers.sessions import SessionNotFoundError, parse_session, scan_sessions


def _line(kind: str, ts: str, text: str = "hi", **extra) -> dict:
    role = "assistant" if kind == "assistant" else "user"
    return {
        "type": kind,
        "uuid": f"{kind}-{ts}",
        "timestamp": ts,
        "message": {"role": role, "content": text},
        **extra,
    }


class SessionParserTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)

    def _write_jsonl(self, relative_path: str, lines: list) -> Path:
        path = self.root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            "\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines),
            encoding="utf-8",
        )
        return path

    def test_scan_lists_top_level_transcripts_only(self) -> None:
        self._write_jsonl("b.jsonl", [])
        self._write_jsonl("a.jsonl", [])
        self._write_jsonl("a/subagents/agent-1.jsonl", [])
        (self.root / "notes.txt").write_text("x", encoding="utf-8")

        self.assertEqual(scan_sessions(self.root), ["a", "b"])

    def test_main_and_subagents_are_combined(self) -> None:
        self._write_jsonl(
            "S1.jsonl",
            [
                _line("user", "2026-02-16T10:00:00Z", slug="brave-blue-otter", teamName="core", agentName="lead"),
                _line("assistant", "2026-02-16T10:05:00Z"),
            ],
        )
        self._write_jsonl(
            "S1/subagents/agent-aa482f75504208258.jsonl",
            [
                _line("assistant", "2026-02-16T09:58:00Z", agentId="aa482f75504208258", slug="sub-slug"),
                _line("assistant", "2026-02-16T10:10:00Z", agentId="aa482f75504208258"),
            ],
        )
        self._write_jsonl("S1/subagents/agent-noid.jsonl", [_line("assistant", "2026-02-16T10:01:00Z")])

        parsed = parse_session(self.root, "S1")

        self.assertEqual(parsed.session_id, "S1")
        self.assertEqual(parsed.slug, "brave-blue-otter")
        self.assertEqual(parsed.team_name, "core")
        self.assertEqual(parsed.agent_name, "lead")
        self.assertEqual(len(parsed.main_messages), 2)
        self.assertEqual(
            sorted(a.agent_id for a in parsed.sub_agents),
            ["aa482f75504208258", "agent-noid"],
        )
        by_id = {a.agent_id: a for a in parsed.sub_agents}
        self.assertEqual(by_id["aa482f75504208258"].slug, "sub-slug")
        self.assertEqual(by_id["agent-noid"].slug, "")
        self.assertEqual(parsed.started_at, datetime(2026, 2, 16, 9, 58, tzinfo=timezone.utc))
        self.assertEqual(parsed.ended_at, datetime(2026, 2, 16, 10, 10, tzinfo=timezone.utc))

    def test_slug_falls_back_to_session_prefix(self) -> None:
        session_id = "0f9c1e2d-aaaa-bbbb-cccc-1234567890ab"
        self._write_jsonl(f"{session_id}.jsonl", [_line("user", "2026-02-16T10:00:00Z")])
        self._write_jsonl(
            f"{session_id}/subagents/agent-x.jsonl",
            [_line("assistant", "2026-02-16T10:00:01Z", slug="only-in-subagent")],
        )

        parsed = parse_session(self.root, session_id)

        self.assertEqual(parsed.slug, "session-0f9c1e2d")

    def test_missing_subagent_dir_and_unknown_timestamps(self) -> None:
        self._write_jsonl("S2.jsonl", [_line("user", "")])

        parsed = parse_session(self.root, "S2")

        self.assertEqual(parsed.sub_agents, [])
        self.assertIsNone(parsed.started_at)
        self.assertIsNone(parsed.ended_at)

    def test_missing_main_file_raises(self) -> None:
        with self.assertRaises(SessionNotFoundError):
            parse_session(self.root, "missing")

    def test_unreadable_subagent_is_skipped(self) -> None:
        self._write_jsonl("S3.jsonl", [_line("user", "2026-02-16T10:00:00Z")])
        self._write_jsonl("S3/subagents/agent-ok.jsonl", [_line("assistant", "2026-02-16T10:00:01Z")])
        self._write_jsonl("S3/subagents/agent-huge.jsonl", [_line("assistant", "2026-02-16T10:00:02Z", text="x" * 400)])

        with patch.object(log_parser, "MAX_LINE_BYTES", 300):
            with self.assertLogs("agent_observer.parser", level="WARNING") as logs:
                parsed = parse_session(self.root, "S3")

        self.assertEqual([a.agent_id for a in parsed.sub_agents], ["agent-ok"])
        self.assertTrue(any("agent-huge.jsonl" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
