import unittest
from datetime import datetime, timezone

import aiosqlite

from backend.db.sqlite_migrations import run_migrations
from backend.db.store import Store

TS = datetime(2026, 2, 16, 10, 0, tzinfo=timezone.utc)


def _message(message_id: str, conversation_id: str = "C1", content: str = "hi") -> dict:
    return {
        "id": message_id,
        "conversation_id": conversation_id,
        "team_id": "T1",
        "agent_id": None,
        "role": "user",
        "content": content,
        "raw_thoughts": None,
        "created_at": TS,
    }


class StoreReplaceConversationTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = Store(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_replace_is_idempotent(self) -> None:
        rows = [_message("m1"), _message("m2")]

        await self.store.replace_conversation("C1", rows, [])
        result = await self.store.replace_conversation("C1", rows, [])

        self.assertEqual(result, {"messages": 2, "traces": 0})
        self.assertEqual(await self.store.messages.count_by_conversation("C1"), 2)

    async def test_other_conversations_are_untouched(self) -> None:
        await self.store.replace_conversation("C2", [_message("other", conversation_id="C2")], [])

        await self.store.replace_conversation("C1", [_message("m1")], [])
        await self.store.replace_conversation("C1", [], [])

        self.assertEqual(await self.store.messages.count_by_conversation("C1"), 0)
        self.assertEqual(await self.store.messages.count_by_conversation("C2"), 1)

    async def test_failed_batch_falls_back_to_rows(self) -> None:
        # A row colliding with another conversation's id fails on its own.
        await self.store.replace_conversation("C2", [_message("taken", conversation_id="C2")], [])
        rows = [_message("m1"), _message("taken"), _message("m3"), _message("m4")]

        with self.assertLogs("agent_observer.db", level="WARNING") as logs:
            result = await self.store.replace_conversation("C1", rows, [], batch_size=2)

        self.assertEqual(result["messages"], 3)
        stored = await self.store.messages.list_by_conversation("C1")
        self.assertEqual(sorted(m["id"] for m in stored), ["m1", "m3", "m4"])
        self.assertTrue(any("batch 0-2" in line for line in logs.output))
        self.assertTrue(any("Failed to insert message taken" in line for line in logs.output))

    async def test_traces_are_replaced_and_span_can_be_ended(self) -> None:
        trace = {
            "id": "tr1",
            "team_id": "T1",
            "agent_id": "A1",
            "conversation_id": "C1",
            "parent_span_id": None,
            "span_name": "tool.Bash",
            "attributes": {"tool_name": "Bash"},
            "start_time": TS,
            "end_time": None,
        }

        result = await self.store.replace_conversation("C1", [], [trace])
        self.assertEqual(result["traces"], 1)

        self.assertTrue(await self.store.traces.end_span("tr1", datetime(2026, 2, 16, 10, 0, 3, tzinfo=timezone.utc)))
        self.assertFalse(await self.store.traces.end_span("missing", TS))
        stored = await self.store.traces.get_by_id("tr1")
        self.assertEqual(stored["end_time"], "2026-02-16T10:00:03.000Z")


if __name__ == "__main__":
    unittest.main()
