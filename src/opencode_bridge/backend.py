from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from opencode_bridge.client import OpenCodeClient
from opencode_bridge.constants import DEFAULT_RESPONSE_TIMEOUT_MS
from opencode_bridge.errors import (
    BackendDisposedError,
    NetworkError,
    ResponseTimeoutError,
    SendInProgressError,
    SessionAlreadyStartedError,
)
from opencode_bridge.messages import (
    AgentMessage,
    ModelOutput,
    PermissionResponse,
    Status,
    StatusMessage,
)
from opencode_bridge.normalizer import EventNormalizer
from opencode_bridge.types import TextPart

AgentMessageHandler = Callable[[AgentMessage], None]

_SESSION_ID_KEYS = ("sessionId", "sessionID", "session_id")


@dataclass
class StartSessionResult:
    session_id: str


def event_session_id(event: dict[str, Any]) -> str | None:
    for key in _SESSION_ID_KEYS:
        value = event.get(key)
        if value:
            return str(value)
    properties = event.get("properties")
    if isinstance(properties, dict):
        for key in _SESSION_ID_KEYS:
            value = properties.get(key)
            if value:
                return str(value)
    return None


class OpenCodeBackend:
    """Drive one remote OpenCode session and publish canonical messages.

    Listeners are plain callables invoked synchronously, in registration order,
    for every message. Only one prompt may be in flight at a time; a second
    ``send`` before the first returns raises ``SendInProgressError``.
    """

    def __init__(
        self,
        *,
        server_url: str | None = None,
        password: str | None = None,
        cwd: str | None = None,
        client: OpenCodeClient | None = None,
        normalizer: EventNormalizer | None = None,
        response_timeout_ms: int = DEFAULT_RESPONSE_TIMEOUT_MS,
    ):
        self._client = client or OpenCodeClient(server_url=server_url, password=password)
        self._normalizer = normalizer or EventNormalizer()
        self._cwd = cwd
        self._response_timeout_ms = response_timeout_ms
        self._listeners: dict[AgentMessageHandler, None] = {}
        self._current_session_id: str | None = None
        self._pending_response: asyncio.Future[None] | None = None
        self._event_unsubscribe: Callable[[], None] | None = None
        self._disposed = False
        self._log = logger

    @property
    def session_id(self) -> str | None:
        return self._current_session_id

    @property
    def client(self) -> OpenCodeClient:
        return self._client

    @property
    def response_timeout_ms(self) -> int:
        return self._response_timeout_ms

    @property
    def is_busy(self) -> bool:
        return self._pending_response is not None and not self._pending_response.done()

    async def start(self, initial_prompt: str | None = None) -> StartSessionResult:
        self._ensure_not_disposed()
        if self._current_session_id is not None:
            raise SessionAlreadyStartedError(f"Session already started: {self._current_session_id}")

        session = await self._client.create_session(directory=self._cwd)
        self._current_session_id = session.id
        self._log = logger.bind(session=session.id)
        self._event_unsubscribe = self._client.subscribe_events(self._handle_push_event)
        self._log.info(f"OpenCode session started: {session.id}")

        self._emit_status("running")

        if initial_prompt:
            await self.send(session.id, initial_prompt)

        return StartSessionResult(session_id=session.id)

    async def send(self, session_id: str, prompt: str) -> None:
        self._ensure_not_disposed()
        if self.is_busy:
            raise SendInProgressError("A prompt is already in flight for this backend")

        pending: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending_response = pending
        self._emit_status("running")

        try:
            await self._client.send_message(session_id, [TextPart(prompt)], self._handle_stream_line)
        except NetworkError as ex:
            self._log.error(f"Prompt send failed for session {session_id}: {ex}")
            self._emit_status("error", detail=str(ex))
            raise
        finally:
            self._resolve_pending(pending)

        self._emit_status("idle")

    async def cancel(self, session_id: str) -> None:
        await self._client.abort_session(session_id)
        self._log.info(f"Abort requested for session {session_id}")
        self._emit_status("idle")

    async def wait_for_completion(self, timeout_ms: int | None = None) -> None:
        pending = self._pending_response
        if pending is None or pending.done():
            return

        if timeout_ms is None:
            timeout_ms = self._response_timeout_ms
        try:
            await asyncio.wait_for(asyncio.shield(pending), timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise ResponseTimeoutError(f"Response timeout after {timeout_ms} ms") from None

    async def respond_to_permission(self, request_id: str, approved: bool) -> None:
        self._emit(PermissionResponse(id=request_id, approved=approved))

    def add_listener(self, handler: AgentMessageHandler) -> None:
        self._listeners[handler] = None

    def remove_listener(self, handler: AgentMessageHandler) -> None:
        self._listeners.pop(handler, None)

    async def dispose(self) -> None:
        if self._event_unsubscribe is not None:
            self._event_unsubscribe()
            self._event_unsubscribe = None
        if not self._disposed:
            self._disposed = True
            await self._client.aclose()
            if self._pending_response is not None:
                self._resolve_pending(self._pending_response)
            self._log.info(f"OpenCode backend disposed (session={self._current_session_id})")
        self._emit_status("stopped")
        self._listeners.clear()

    def _ensure_not_disposed(self) -> None:
        if self._disposed:
            raise BackendDisposedError("Backend has been disposed")

    def _resolve_pending(self, pending: asyncio.Future[None]) -> None:
        if not pending.done():
            pending.set_result(None)
        if self._pending_response is pending:
            self._pending_response = None

    def _emit_status(self, status: Status, detail: str | None = None) -> None:
        self._emit(StatusMessage(status=status, detail=detail))

    def _emit(self, message: AgentMessage) -> None:
        for handler in list(self._listeners):
            handler(message)

    def _handle_stream_line(self, line: str) -> None:
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            if line.strip():
                self._emit(ModelOutput(text_delta=line))
            return

        # Valid JSON that is not an object (42, [1], null) carries no event type.
        if not isinstance(data, dict):
            self._log.debug(f"Dropping non-object stream line: {line[:80]!r}")
            return
        self._process(data)

    def _handle_push_event(self, event: dict[str, Any]) -> None:
        event_session = event_session_id(event)
        if event_session is not None and event_session != self._current_session_id:
            return
        self._process(event)

    def _process(self, record: dict[str, Any]) -> None:
        message = self._normalizer.normalize(record)
        if message is None:
            self._log.debug(f"Dropping unrecognized record type={record.get('type')!r}")
            return
        self._emit(message)
