from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import Callable, Sequence
from typing import Any

import httpx
from loguru import logger

from opencode_bridge.constants import (
    DEFAULT_EVENT_RETRY_SECONDS,
    DEFAULT_OPENCODE_SERVER_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    OPENCODE_BASIC_AUTH_USERNAME,
    OPENCODE_EVENT_ENDPOINT,
    OPENCODE_HEALTH_ENDPOINT,
    OPENCODE_SESSION_ENDPOINT,
)
from opencode_bridge.errors import MalformedEventError, NetworkError
from opencode_bridge.types import HealthInfo, OpenCodeSession, TextPart

EventHandler = Callable[[dict[str, Any]], None]
LineHandler = Callable[[str], None]


def parse_event_payload(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as ex:
        raise MalformedEventError(f"invalid JSON: {ex}") from ex
    if not isinstance(data, dict):
        raise MalformedEventError(f"expected a JSON object, got {type(data).__name__}")
    return data


class PushConnection:
    """One shared server-sent-events connection, reference-counted by subscribers.

    The first subscriber opens the stream; removing the last one closes it.
    A dropped stream is reopened after the server-advised retry delay, the way
    a browser EventSource behaves. A non-200 response ends the connection.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        connect_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retry_seconds: float = DEFAULT_EVENT_RETRY_SECONDS,
    ):
        self._http_client = http_client
        self._url = url
        self._headers = {"Accept": "text/event-stream", **(headers or {})}
        self._timeout = httpx.Timeout(connect_timeout, read=None)
        self._retry_seconds = retry_seconds
        self._handlers: dict[EventHandler, None] = {}
        self._task: asyncio.Task | None = None

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    @property
    def is_open(self) -> bool:
        return self._task is not None

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers[handler] = None
        if self._task is None:
            logger.debug(f"Opening push connection: {self._url}")
            self._task = asyncio.create_task(self._run())

        def unsubscribe() -> None:
            self._handlers.pop(handler, None)
            if not self._handlers:
                self.close()

        return unsubscribe

    def close(self) -> None:
        self._handlers.clear()
        if self._task is not None:
            logger.debug(f"Closing push connection: {self._url}")
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        try:
            while True:
                try:
                    await self._read_stream()
                    logger.debug(f"Push connection ended; reconnecting in {self._retry_seconds:.1f}s")
                except httpx.HTTPError as ex:
                    logger.warning(
                        f"Push connection failed ({type(ex).__name__}); "
                        f"reconnecting in {self._retry_seconds:.1f}s"
                    )
                await asyncio.sleep(self._retry_seconds)
        except NetworkError as ex:
            logger.error(f"Push connection refused: {ex}")
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    async def _read_stream(self) -> None:
        async with self._http_client.stream(
            "GET", self._url, headers=self._headers, timeout=self._timeout
        ) as response:
            if response.status_code != 200:
                raise NetworkError(
                    f"Event stream returned {response.status_code}",
                    response.status_code,
                )
            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if not line:
                    if data_lines:
                        self._dispatch("\n".join(data_lines))
                        data_lines = []
                    continue
                if line.startswith(":"):
                    continue
                name, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if name == "data":
                    data_lines.append(value)
                elif name == "retry" and value.isdigit():
                    self._retry_seconds = int(value) / 1000

    def _dispatch(self, raw: str) -> None:
        try:
            event = parse_event_payload(raw)
        except MalformedEventError as ex:
            logger.debug(f"Dropping malformed push event: {ex}")
            return
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Push event handler failed for event type={event.get('type')!r}")


class OpenCodeClient:
    def __init__(
        self,
        server_url: str | None = None,
        password: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        self._server_url = (server_url or DEFAULT_OPENCODE_SERVER_URL).rstrip("/")
        self._password = password
        self._request_timeout = request_timeout
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=request_timeout)
        self._closed = False
        self._events = PushConnection(
            self._http,
            self._url(OPENCODE_EVENT_ENDPOINT),
            headers=self._auth_headers(),
            connect_timeout=request_timeout,
        )

    @property
    def server_url(self) -> str:
        return self._server_url

    @property
    def events(self) -> PushConnection:
        return self._events

    def _url(self, path: str) -> str:
        return f"{self._server_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        if not self._password:
            return {}
        credentials = base64.b64encode(
            f"{OPENCODE_BASIC_AUTH_USERNAME}:{self._password}".encode()
        ).decode("ascii")
        return {"Authorization": f"Basic {credentials}"}

    async def _request(self, method: str, path: str, *, action: str, **kwargs: Any) -> httpx.Response:
        logger.debug(f"OpenCode request: {method} {path}")
        try:
            return await self._http.request(method, self._url(path), headers=self._auth_headers(), **kwargs)
        except httpx.HTTPError as ex:
            raise NetworkError(f"Failed to {action}: {ex}") from ex

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if not response.is_success:
            raise NetworkError(f"Failed to {action}: {response.status_code}", response.status_code)

    async def check_health(self) -> HealthInfo:
        response = await self._request("GET", OPENCODE_HEALTH_ENDPOINT, action="check health")
        self._raise_for_status(response, "check health")
        return HealthInfo.from_dict(response.json())

    async def is_server_running(self) -> bool:
        try:
            await self.check_health()
        except NetworkError as ex:
            logger.debug(f"OpenCode server not reachable at {self._server_url}: {ex}")
            return False
        return True

    async def create_session(self, directory: str | None = None) -> OpenCodeSession:
        params = {"directory": directory} if directory else None
        response = await self._request("POST", OPENCODE_SESSION_ENDPOINT, action="create session", params=params, json={})
        self._raise_for_status(response, "create session")
        session = OpenCodeSession.from_dict(response.json())
        logger.debug(f"Created OpenCode session {session.id}")
        return session

    async def get_session(self, session_id: str) -> OpenCodeSession:
        response = await self._request("GET", f"{OPENCODE_SESSION_ENDPOINT}/{session_id}", action="get session")
        self._raise_for_status(response, "get session")
        return OpenCodeSession.from_dict(response.json())

    async def list_sessions(self) -> list[OpenCodeSession]:
        response = await self._request("GET", OPENCODE_SESSION_ENDPOINT, action="list sessions")
        self._raise_for_status(response, "list sessions")
        data = response.json()
        if isinstance(data, dict):
            data = data.get("sessions") or []
        return [OpenCodeSession.from_dict(item) for item in data if isinstance(item, dict)]

    async def send_message(
        self,
        session_id: str,
        parts: Sequence[TextPart | dict[str, Any]],
        on_line: LineHandler,
    ) -> None:
        """Post a prompt and feed each line of the streamed reply to ``on_line``.

        Lines arrive in network order, split on ``\\n``; a non-empty trailing
        fragment is flushed when the stream ends.
        """
        path = f"{OPENCODE_SESSION_ENDPOINT}/{session_id}/message"
        body = {"parts": [p.to_dict() if isinstance(p, TextPart) else p for p in parts]}
        logger.debug(f"OpenCode request: POST {path} parts={len(body['parts'])}")
        line_count = 0
        try:
            async with self._http.stream(
                "POST",
                self._url(path),
                json=body,
                headers=self._auth_headers(),
                timeout=httpx.Timeout(self._request_timeout, read=None),
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise NetworkError(f"Failed to send message: {response.status_code}", response.status_code)
                if response.status_code == httpx.codes.NO_CONTENT:
                    raise NetworkError("Failed to send message: no response body", response.status_code)

                buffer = ""
                async for text in response.aiter_text():
                    buffer += text
                    *lines, buffer = buffer.split("\n")
                    for line in lines:
                        line_count += 1
                        on_line(line.removesuffix("\r"))
                if buffer.strip():
                    line_count += 1
                    on_line(buffer.removesuffix("\r"))
        except httpx.HTTPError as ex:
            raise NetworkError(f"Failed to send message: {ex}") from ex
        logger.debug(f"OpenCode response stream finished: session={session_id}, lines={line_count}")

    async def abort_session(self, session_id: str) -> None:
        response = await self._request("POST", f"{OPENCODE_SESSION_ENDPOINT}/{session_id}/abort", action="abort session")
        if response.status_code == httpx.codes.NOT_FOUND:
            logger.debug(f"Abort: session {session_id} not found, treating as already ended")
            return
        self._raise_for_status(response, "abort session")

    def subscribe_events(self, on_event: EventHandler) -> Callable[[], None]:
        return self._events.subscribe(on_event)

    def disconnect(self) -> None:
        self._events.close()

    async def aclose(self) -> None:
        self.disconnect()
        if self._closed:
            return
        self._closed = True
        if self._owns_http_client:
            await self._http.aclose()
