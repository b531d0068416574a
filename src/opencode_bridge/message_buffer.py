from __future__ import annotations

import json
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count
from typing import Literal, Protocol

from opencode_bridge.messages import (
    AgentMessage,
    FsEdit,
    ModelOutput,
    PermissionRequest,
    PermissionResponse,
    StatusMessage,
    TerminalOutput,
    ToolCall,
    ToolResult,
)

MessageKind = Literal["user", "assistant", "system", "tool", "result", "status", "terminal"]

_MAX_RESULT_PREVIEW_CHARS = 500


@dataclass
class BufferedMessage:
    id: int
    timestamp: float
    content: str
    kind: MessageKind


class MessageBuffer:
    """Bounded display log. Streaming text coalesces into the last entry."""

    def __init__(self, max_messages: int = 1000):
        self._messages: deque[BufferedMessage] = deque(maxlen=max(1, max_messages))
        self._ids = count(1)
        self._callbacks: dict[Callable[[list[BufferedMessage]], None], None] = {}

    def add_message(self, content: str, kind: MessageKind) -> BufferedMessage:
        message = BufferedMessage(id=next(self._ids), timestamp=time.time(), content=content, kind=kind)
        self._messages.append(message)
        self._notify()
        return message

    def update_last_message(self, delta: str, kind: MessageKind) -> BufferedMessage:
        if self._messages and self._messages[-1].kind == kind:
            last = self._messages[-1]
            last.content += delta
            self._notify()
            return last
        return self.add_message(delta, kind)

    def get_messages(self) -> list[BufferedMessage]:
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()
        self._notify()

    def on_update(self, callback: Callable[[list[BufferedMessage]], None]) -> Callable[[], None]:
        self._callbacks[callback] = None

        def unsubscribe() -> None:
            self._callbacks.pop(callback, None)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.get_messages()
        for callback in list(self._callbacks):
            callback(snapshot)


def _preview(value: object) -> str:
    try:
        text = json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = str(value)
    if len(text) > _MAX_RESULT_PREVIEW_CHARS:
        text = text[:_MAX_RESULT_PREVIEW_CHARS] + "..."
    return text


def format_agent_message(message: AgentMessage) -> tuple[str, MessageKind] | None:
    """Render a canonical message as a display line, or None if it shows nothing."""
    if isinstance(message, ModelOutput):
        return (message.text_delta, "assistant") if message.text_delta else None
    if isinstance(message, ToolCall):
        return f"[Tool: {message.tool_name}]", "tool"
    if isinstance(message, ToolResult):
        return f"[Result: {_preview(message.result)}]", "result"
    if isinstance(message, StatusMessage):
        if message.detail:
            return f"[Status: {message.status}] {message.detail}", "status"
        return f"[Status: {message.status}]", "status"
    if isinstance(message, FsEdit):
        target = message.path or "?"
        return f"[Edit: {target}] {message.description}".rstrip(), "tool"
    if isinstance(message, TerminalOutput):
        return (message.data, "terminal") if message.data else None
    if isinstance(message, PermissionRequest):
        return f"[Permission: {message.id}] {message.reason}".rstrip(), "system"
    if isinstance(message, PermissionResponse):
        verdict = "approved" if message.approved else "denied"
        return f"[Permission {message.id} {verdict}]", "system"
    return None


class _ListenerHost(Protocol):
    def add_listener(self, handler: Callable[[AgentMessage], None]) -> None: ...


def attach_message_buffer(backend: _ListenerHost, buffer: MessageBuffer) -> Callable[[AgentMessage], None]:
    """Feed every backend message into ``buffer``; returns the registered listener."""

    def listener(message: AgentMessage) -> None:
        formatted = format_agent_message(message)
        if formatted is None:
            return
        content, kind = formatted
        if kind in ("assistant", "terminal"):
            buffer.update_last_message(content, kind)
        else:
            buffer.add_message(content, kind)

    backend.add_listener(listener)
    return listener
