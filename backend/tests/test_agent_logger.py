import unittest

import requests

from backend.agent_logger import AgentLogger, AgentLoggerError


class _FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = b"x" if payload is not None else b""

    def json(self) -> dict:
        return self._payload or {}


class _FakeSession:
    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method, url, json=None, timeout=None):
        self.calls.append((method, url, json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class AgentLoggerTests(unittest.TestCase):
    def test_log_message_posts_payload(self) -> None:
        session = _FakeSession([_FakeResponse(201, {"id": "m1"})])
        client = AgentLogger("http://observer:8080/", session=session)

        result = client.log_message("C1", "T1", "agent", "hello", agent_id="A1")

        self.assertEqual(result, {"id": "m1"})
        method, url, payload = session.calls[0]
        self.assertEqual((method, url), ("POST", "http://observer:8080/internal/log_message"))
        self.assertEqual(
            payload,
            {"conversation_id": "C1", "team_id": "T1", "role": "agent", "content": "hello", "agent_id": "A1"},
        )

    def test_span_context_starts_and_ends(self) -> None:
        session = _FakeSession([_FakeResponse(201, {"id": "tr-1"}), _FakeResponse(200, {"status": "ok"})])
        client = AgentLogger("http://observer:8080", session=session)

        with client.span("T1", "A1", "C1", "tool.search", attributes={"q": "x"}) as span_id:
            self.assertEqual(span_id, "tr-1")

        self.assertEqual(session.calls[0][2]["span_name"], "tool.search")
        self.assertTrue(session.calls[0][2]["start_time"].endswith("Z"))
        self.assertEqual(session.calls[1][0], "PATCH")
        self.assertEqual(session.calls[1][1], "http://observer:8080/internal/traces/tr-1/end")

    def test_error_status_raises(self) -> None:
        session = _FakeSession([_FakeResponse(404, text="Trace not found")])
        client = AgentLogger("http://observer:8080", session=session)

        with self.assertRaises(AgentLoggerError) as ctx:
            client.end_span("missing")
        self.assertIn("404", str(ctx.exception))

    def test_transport_error_is_wrapped(self) -> None:
        session = _FakeSession([requests.ConnectionError("refused")])
        client = AgentLogger("http://observer:8080", session=session)

        with self.assertRaises(AgentLoggerError):
            client.log_message("C1", "T1", "user", "hi")


if __name__ == "__main__":
    unittest.main()
