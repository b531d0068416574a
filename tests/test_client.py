import asyncio
import base64
import json
import unittest

import httpx

from opencode_bridge.client import OpenCodeClient, parse_event_payload
from opencode_bridge.errors import MalformedEventError, NetworkError
from opencode_bridge.types import TextPart

_SERVER = "http://opencode.test"


def _make_client(handler, *, password: str | None = None) -> OpenCodeClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenCodeClient(server_url=_SERVER + "/", password=password, http_client=http_client)


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


class ParseEventPayloadTests(unittest.TestCase):
    def test_object_is_returned(self) -> None:
        self.assertEqual({"type": "text"}, parse_event_payload('{"type": "text"}'))

    def test_invalid_json_raises_malformed(self) -> None:
        with self.assertRaises(MalformedEventError):
            parse_event_payload("{not json")

    def test_non_object_raises_malformed(self) -> None:
        with self.assertRaises(MalformedEventError):
            parse_event_payload("[1, 2]")


class OpenCodeClientRequestTests(unittest.TestCase):
    def test_check_health(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"healthy": True, "version": "0.9.1"})

        client = _make_client(handler)
        health = asyncio.run(client.check_health())

        self.assertTrue(health.healthy)
        self.assertEqual("0.9.1", health.version)
        self.assertEqual(f"{_SERVER}/global/health", str(seen[0].url))
        self.assertNotIn("authorization", seen[0].headers)

    def test_check_health_non_success_raises_network_error(self) -> None:
        client = _make_client(lambda request: httpx.Response(503))
        with self.assertRaises(NetworkError) as ctx:
            asyncio.run(client.check_health())
        self.assertEqual(503, ctx.exception.status_code)

    def test_transport_failure_raises_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _make_client(handler)
        with self.assertRaises(NetworkError) as ctx:
            asyncio.run(client.check_health())
        self.assertIsNone(ctx.exception.status_code)
        self.assertFalse(asyncio.run(client.is_server_running()))

    def test_basic_auth_header_when_password_set(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "ses_1"})

        client = _make_client(handler, password="s3cret")
        asyncio.run(client.create_session())

        expected = "Basic " + base64.b64encode(b"opencode:s3cret").decode()
        self.assertEqual(expected, seen[0].headers["authorization"])

    def test_create_session_passes_directory_hint(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "ses_1", "title": "New session", "time": {"created": 1, "updated": 2}})

        client = _make_client(handler)
        session = asyncio.run(client.create_session(directory="/work/repo"))

        self.assertEqual("ses_1", session.id)
        self.assertEqual("New session", session.title)
        self.assertEqual(1, session.created_at)
        self.assertEqual("POST", seen[0].method)
        self.assertEqual("/session", seen[0].url.path)
        self.assertEqual("/work/repo", seen[0].url.params["directory"])

    def test_create_session_failure(self) -> None:
        client = _make_client(lambda request: httpx.Response(500))
        with self.assertRaises(NetworkError):
            asyncio.run(client.create_session())

    def test_get_session(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual("/session/ses_7", request.url.path)
            return httpx.Response(200, json={"id": "ses_7", "summary": {"additions": 3, "deletions": 1, "files": 2}})

        session = asyncio.run(_make_client(handler).get_session("ses_7"))
        self.assertEqual(3, session.additions)
        self.assertEqual(2, session.files)

    def test_list_sessions_accepts_bare_list_and_wrapped(self) -> None:
        bodies = [
            [{"id": "a"}, {"id": "b"}],
            {"sessions": [{"id": "c"}]},
            {},
        ]
        expected = [["a", "b"], ["c"], []]
        for body, ids in zip(bodies, expected):
            with self.subTest(body=body):
                client = _make_client(lambda request, body=body: httpx.Response(200, json=body))
                sessions = asyncio.run(client.list_sessions())
                self.assertEqual(ids, [s.id for s in sessions])

    def test_abort_treats_not_found_as_success(self) -> None:
        client = _make_client(lambda request: httpx.Response(404))
        asyncio.run(client.abort_session("ses_1"))

    def test_abort_other_failure_raises(self) -> None:
        client = _make_client(lambda request: httpx.Response(500))
        with self.assertRaises(NetworkError) as ctx:
            asyncio.run(client.abort_session("ses_1"))
        self.assertEqual(500, ctx.exception.status_code)


class SendMessageTests(unittest.TestCase):
    def test_lines_are_split_across_chunks_and_trailing_fragment_flushed(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                content=_chunks(b'{"type":"text",', b'"content":"Hi"}\n{"type"', b':"done"}\r\n', b"partial"),
            )

        client = _make_client(handler)
        lines: list[str] = []
        asyncio.run(client.send_message("ses_1", [TextPart("hello")], lines.append))

        self.assertEqual(['{"type":"text","content":"Hi"}', '{"type":"done"}', "partial"], lines)
        self.assertEqual("/session/ses_1/message", seen[0].url.path)
        self.assertEqual({"parts": [{"type": "text", "text": "hello"}]}, json.loads(seen[0].content))

    def test_blank_lines_are_delivered_in_order(self) -> None:
        client = _make_client(lambda request: httpx.Response(200, content=b"a\n\nb\n"))
        lines: list[str] = []
        asyncio.run(client.send_message("ses_1", [{"type": "text", "text": "x"}], lines.append))
        self.assertEqual(["a", "", "b"], lines)

    def test_whitespace_only_trailing_fragment_is_not_flushed(self) -> None:
        client = _make_client(lambda request: httpx.Response(200, content=b"a\n  "))
        lines: list[str] = []
        asyncio.run(client.send_message("ses_1", [TextPart("x")], lines.append))
        self.assertEqual(["a"], lines)

    def test_non_success_status_raises(self) -> None:
        client = _make_client(lambda request: httpx.Response(400, content=b"bad request"))
        lines: list[str] = []
        with self.assertRaises(NetworkError) as ctx:
            asyncio.run(client.send_message("ses_1", [TextPart("x")], lines.append))
        self.assertEqual(400, ctx.exception.status_code)
        self.assertEqual([], lines)

    def test_no_content_raises(self) -> None:
        client = _make_client(lambda request: httpx.Response(204))
        with self.assertRaises(NetworkError):
            asyncio.run(client.send_message("ses_1", [TextPart("x")], lambda line: None))

    def test_transport_failure_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _make_client(handler)
        with self.assertRaises(NetworkError):
            asyncio.run(client.send_message("ses_1", [TextPart("x")], lambda line: None))


class PushSubscriptionTests(unittest.TestCase):
    _SSE_BODY = (
        b": keep-alive\n"
        b'data: {"type":"text","text":"a","sessionId":"ses_1"}\n\n'
        b"data: not json\n\n"
        b'data: {"type":\ndata: "done"}\n\n'
        b"retry: 60000\n\n"
    )

    def _sse_handler(self, seen: list[httpx.Request]):
        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self._SSE_BODY)

        return handler

    def test_events_fan_out_to_all_subscribers_and_malformed_are_dropped(self) -> None:
        seen: list[httpx.Request] = []
        client = _make_client(self._sse_handler(seen), password="pw")
        first: list[dict] = []
        second: list[dict] = []

        async def scenario() -> None:
            unsubscribe_first = client.subscribe_events(first.append)
            unsubscribe_second = client.subscribe_events(second.append)
            self.assertTrue(client.events.is_open)
            await asyncio.sleep(0.05)
            unsubscribe_first()
            self.assertTrue(client.events.is_open)
            unsubscribe_second()
            self.assertFalse(client.events.is_open)

        asyncio.run(scenario())

        expected = [{"type": "text", "text": "a", "sessionId": "ses_1"}, {"type": "done"}]
        self.assertEqual(expected, first)
        self.assertEqual(expected, second)
        self.assertEqual(1, len(seen))
        self.assertEqual("/global/event", seen[0].url.path)
        self.assertTrue(seen[0].headers["authorization"].startswith("Basic "))

    def test_failing_subscriber_does_not_stop_others(self) -> None:
        client = _make_client(self._sse_handler([]))
        received: list[dict] = []

        def broken(event: dict) -> None:
            raise RuntimeError("listener bug")

        async def scenario() -> None:
            client.subscribe_events(broken)
            client.subscribe_events(received.append)
            await asyncio.sleep(0.05)
            client.disconnect()

        asyncio.run(scenario())
        self.assertEqual(2, len(received))

    def test_disconnect_clears_subscribers_and_is_idempotent(self) -> None:
        client = _make_client(self._sse_handler([]))

        async def scenario() -> None:
            client.subscribe_events(lambda event: None)
            client.subscribe_events(lambda event: None)
            self.assertEqual(2, client.events.subscriber_count)
            client.disconnect()
            client.disconnect()
            self.assertEqual(0, client.events.subscriber_count)
            self.assertFalse(client.events.is_open)
            await client.aclose()
            await client.aclose()

        asyncio.run(scenario())

    def test_dropped_stream_reconnects_after_server_retry_delay(self) -> None:
        connections: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            connections.append(request)
            body = f'retry: 10\ndata: {{"n": {len(connections)}}}\n\n'.encode()
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

        client = _make_client(handler)
        received: list[dict] = []

        async def scenario() -> None:
            client.subscribe_events(received.append)
            await asyncio.sleep(0.2)
            client.disconnect()

        asyncio.run(scenario())

        self.assertGreaterEqual(len(connections), 2)
        self.assertTrue(all(r.url.path == "/global/event" for r in connections))
        self.assertEqual([{"n": 1}, {"n": 2}], received[:2])

    def test_refused_stream_ends_connection(self) -> None:
        client = _make_client(lambda request: httpx.Response(401))
        received: list[dict] = []

        async def scenario() -> None:
            client.subscribe_events(received.append)
            await asyncio.sleep(0.05)
            self.assertFalse(client.events.is_open)

        asyncio.run(scenario())
        self.assertEqual([], received)


if __name__ == "__main__":
    unittest.main()
