from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from opencode_bridge.messages import (
    AgentMessage,
    FsEdit,
    ModelOutput,
    PermissionRequest,
    StatusMessage,
    TerminalOutput,
    ToolCall,
    ToolResult,
)

IdFactory = Callable[[], str]
_Builder = Callable[[dict[str, Any], IdFactory], AgentMessage | None]


def default_id_factory() -> str:
    return uuid4().hex


def normalize_discriminator(value: object) -> str:
    """Fold spelling variants: ``Tool-Call`` and ``tool_call`` are the same key."""
    if not isinstance(value, str):
        return ""
    return value.strip().lower().replace("-", "_")


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _optional_text(value: Any) -> str | None:
    return None if value is None else _as_text(value)


def _tool_name(record: dict[str, Any]) -> str:
    return _as_text(_first(record, "name", "toolName")) or "unknown"


def _build_model_output(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    return ModelOutput(text_delta=_as_text(_first(record, "content", "text", "delta")))


def _build_tool_call(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    args = _first(record, "arguments", "args")
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            args = {"raw": args}
    if not isinstance(args, dict):
        args = {} if args is None else {"value": args}
    return ToolCall(
        tool_name=_tool_name(record),
        args=args,
        call_id=_as_text(_first(record, "id", "callId")) or new_id(),
    )


def _build_tool_result(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    return ToolResult(
        tool_name=_tool_name(record),
        result=_first(record, "result", "output"),
        call_id=_as_text(_first(record, "id", "callId")),
    )


def _build_fs_edit(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    return FsEdit(
        description=_as_text(_first(record, "description", "summary")),
        diff=_optional_text(record.get("diff")),
        path=_optional_text(record.get("path")),
    )


def _build_terminal_output(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    return TerminalOutput(data=_as_text(_first(record, "output", "data")))


def _build_permission_request(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    payload = record.get("payload")
    return PermissionRequest(
        id=_as_text(_first(record, "id")) or new_id(),
        reason=_as_text(_first(record, "reason", "message")),
        payload=dict(record) if payload is None else payload,
    )


def _build_error(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    detail = _as_text(_first(record, "message", "error")) or "Unknown error"
    return StatusMessage(status="error", detail=detail)


def _build_done(record: dict[str, Any], new_id: IdFactory) -> AgentMessage:
    return StatusMessage(status="idle")


def _build_fallback(record: dict[str, Any], new_id: IdFactory) -> AgentMessage | None:
    text = _as_text(_first(record, "text", "content"))
    if not text:
        return None
    return ModelOutput(text_delta=text)


# Discriminator (already folded by normalize_discriminator) -> builder.
EVENT_BUILDERS: dict[str, _Builder] = {
    "text": _build_model_output,
    "token": _build_model_output,
    "content": _build_model_output,
    "tool_call": _build_tool_call,
    "tool_result": _build_tool_result,
    "file_edit": _build_fs_edit,
    "fs_edit": _build_fs_edit,
    "terminal": _build_terminal_output,
    "terminal_output": _build_terminal_output,
    "permission_request": _build_permission_request,
    "error": _build_error,
    "done": _build_done,
    "complete": _build_done,
    "finished": _build_done,
}


class EventNormalizer:
    """Map a loosely-typed server record onto one canonical message.

    The id factory only supplies fallback correlation ids; injecting it keeps
    ``normalize`` deterministic under test.
    """

    def __init__(self, id_factory: IdFactory | None = None):
        self._id_factory = id_factory or default_id_factory

    def normalize(self, record: dict[str, Any]) -> AgentMessage | None:
        key = normalize_discriminator(record.get("type"))
        builder = EVENT_BUILDERS.get(key, _build_fallback)
        return builder(record, self._id_factory)
