import io
import json
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from backend.parsers import log_parser
from backend.parsers.log_parser import LogLineTooLongError, parse_log


def _stream(*records) -> io.BytesIO:
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    return io.BytesIO("\n".join(lines).encode("utf-8"))


def _assistant(content, **extra) -> dict:
    record = {
        "type": "assistant",
        "uuid": extra.pop("uuid", "a-1"),
        "timestamp": extra.pop("timestamp", "2026-02-16T10:00:00.000Z"),
        "message": {"role": "assistant", "content": content},
    }
    if "usage" in extra:
        record["message"]["usage"] = extra.pop("usage")
    record.update(extra)
    return record


def _user(content, **extra) -> dict:
    record = {
        "type": "user",
        "uuid": extra.pop("uuid", "u-1"),
        "timestamp": extra.pop("timestamp", "2026-02-16T10:00:01.000Z"),
        "message": {"role": "user", "content": content},
    }
    record.update(extra)
    return record


class LogParserTests(unittest.TestCase):
    def test_tool_result_on_later_line_is_correlated(self) -> None:
        messages = parse_log(
            _stream(
                _user("fix bug", uuid="u-0", timestamp="2026-02-16T09:59:59Z"),
                _assistant(
                    [
                        {"type": "text", "text": "working on it"},
                        {"type": "tool_use", "id": "T1", "name": "Bash", "input": {"command": "ls"}},
                        {"type": "tool_use", "id": "T2", "name": "Read", "input": {}},
                    ]
                ),
                _user([{"type": "tool_result", "tool_use_id": "T1", "content": "ok"}]),
            )
        )

        self.assertEqual([m.role for m in messages], ["user", "assistant", "user"])
        assistant = messages[1]
        self.assertEqual(assistant.content, "working on it")
        self.assertEqual(assistant.tool_calls[0].id, "T1")
        self.assertEqual(assistant.tool_calls[0].name, "Bash")
        self.assertEqual(assistant.tool_calls[0].input, {"command": "ls"})
        self.assertEqual(assistant.tool_calls[0].result, "ok")
        self.assertEqual(assistant.tool_calls[1].result, "")
        self.assertEqual(messages[2].tool_results, {"T1": "ok"})
        self.assertEqual(messages[2].content, "")

    def test_text_and_thinking_blocks_are_joined(self) -> None:
        messages = parse_log(
            _stream(
                _assistant(
                    [
                        {"type": "thinking", "thinking": "first"},
                        {"type": "text", "text": "one"},
                        {"type": "thinking", "thinking": "second"},
                        {"type": "text", "text": "two"},
                    ],
                    usage={
                        "input_tokens": 10,
                        "output_tokens": 20,
                        "cache_creation_input_tokens": 3,
                        "cache_read_input_tokens": 4,
                    },
                )
            )
        )

        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0].content, "one\ntwo")
        self.assertEqual(messages[0].thinking, "first\n\nsecond")
        usage = messages[0].token_usage
        self.assertIsNotNone(usage)
        assert usage is not None
        self.assertEqual(
            (usage.input_tokens, usage.output_tokens, usage.cache_creation, usage.cache_read),
            (10, 20, 3, 4),
        )

    def test_assistant_plain_string_content(self) -> None:
        messages = parse_log(_stream(_assistant("just text")))
        self.assertEqual(messages[0].content, "just text")
        self.assertIsNone(messages[0].token_usage)

    def test_malformed_line_does_not_stop_later_lines(self) -> None:
        with self.assertLogs("agent_observer.parser", level="WARNING") as logs:
            messages = parse_log(
                _stream(
                    _user("before", uuid="u-1"),
                    "{not json",
                    {"type": "user", "message": "not an object"},
                    _user("after", uuid="u-2"),
                )
            )

        self.assertEqual([m.content for m in messages], ["before", "after"])
        self.assertTrue(any("Malformed JSON at line 2" in line for line in logs.output))

    def test_non_conversation_records_are_ignored(self) -> None:
        messages = parse_log(
            _stream(
                {"type": "progress", "data": {}},
                {"type": "file-history-snapshot", "snapshot": {}},
                {"type": "queue-operation", "operation": "enqueue"},
                {"type": "user"},
                _user("hello"),
            )
        )
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0].content, "hello")

    def test_record_metadata_is_carried(self) -> None:
        messages = parse_log(
            _stream(
                _assistant(
                    "hi",
                    uuid="a-9",
                    parentUuid="u-8",
                    agentId="agent-x",
                    isSidechain=True,
                    slug="purring-orbiting-fountain",
                    teamName="agents-reverse-eng",
                    agentName="devops-agent",
                ),
                _user("root", parentUuid=None),
            )
        )

        first = messages[0]
        self.assertEqual(first.uuid, "a-9")
        self.assertEqual(first.parent_uuid, "u-8")
        self.assertEqual(first.agent_id, "agent-x")
        self.assertTrue(first.is_sidechain)
        self.assertEqual(first.slug, "purring-orbiting-fountain")
        self.assertEqual(first.team_name, "agents-reverse-eng")
        self.assertEqual(first.agent_name, "devops-agent")
        self.assertEqual(first.timestamp, datetime(2026, 2, 16, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(messages[1].parent_uuid, "")

    def test_tool_result_fragment_list_and_fallback(self) -> None:
        weird = {"nested": "x" * 600}
        messages = parse_log(
            _stream(
                _assistant(
                    [
                        {"type": "tool_use", "id": "T1", "name": "Grep", "input": {}},
                        {"type": "tool_use", "id": "T2", "name": "Bash", "input": {}},
                    ]
                ),
                _user(
                    [
                        {
                            "type": "tool_result",
                            "tool_use_id": "T1",
                            "content": [{"type": "text", "text": "line a"}, {"type": "text", "text": "line b"}],
                        },
                        {"type": "tool_result", "tool_use_id": "T2", "content": weird},
                        {"type": "tool_result", "content": "no id"},
                    ]
                ),
            )
        )

        calls = messages[0].tool_calls
        self.assertEqual(calls[0].result, "line a\nline b")
        self.assertTrue(calls[1].result.endswith("..."))
        self.assertEqual(len(calls[1].result), 503)
        self.assertEqual(set(messages[1].tool_results), {"T1", "T2"})

    def test_structured_result_fallback_is_compact_json(self) -> None:
        messages = parse_log(
            _stream(
                _assistant([{"type": "tool_use", "id": "T1", "name": "Task", "input": {}}]),
                _user([{"type": "tool_result", "tool_use_id": "T1", "content": {"status": "done", "ids": [1, 2]}}]),
            )
        )

        self.assertEqual(messages[0].tool_calls[0].result, '{"status":"done","ids":[1,2]}')

    def test_unparsable_timestamp_is_unknown(self) -> None:
        with self.assertLogs("agent_observer.parser", level="WARNING"):
            messages = parse_log(_stream(_user("hello", timestamp="yesterday")))
        self.assertEqual(len(messages), 1)
        self.assertIsNone(messages[0].timestamp)

    def test_line_over_ceiling_is_fatal(self) -> None:
        long_line = json.dumps(_user("x" * 200))
        with patch.object(log_parser, "MAX_LINE_BYTES", 64):
            with self.assertRaises(LogLineTooLongError):
                parse_log(_stream(long_line))

    def test_results_are_not_shared_between_streams(self) -> None:
        first = parse_log(_stream(_assistant([{"type": "tool_use", "id": "T1", "name": "Bash", "input": {}}])))
        parse_log(_stream(_user([{"type": "tool_result", "tool_use_id": "T1", "content": "ok"}])))
        self.assertEqual(first[0].tool_calls[0].result, "")


if __name__ == "__main__":
    unittest.main()
