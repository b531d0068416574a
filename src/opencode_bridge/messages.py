"""Canonical messages emitted by agent backends.

Every unit of backend output is exactly one of the dataclasses below. The
``type`` class attribute is the discriminator listeners switch on.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Literal, Union

Status = Literal["running", "idle", "error", "stopped"]


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class _Message:
    type: ClassVar[str]

    def to_dict(self) -> dict[str, Any]:
        """Wire form: the ``type`` discriminator plus camelCase field names (``textDelta``, ``callId``)."""
        data: dict[str, Any] = {"type": self.type}
        for field in fields(self):
            data[_camel_case(field.name)] = getattr(self, field.name)
        return data


@dataclass(frozen=True)
class StatusMessage(_Message):
    type: ClassVar[str] = "status"

    status: Status
    detail: str | None = None


@dataclass(frozen=True)
class ModelOutput(_Message):
    type: ClassVar[str] = "model-output"

    text_delta: str


@dataclass(frozen=True)
class ToolCall(_Message):
    type: ClassVar[str] = "tool-call"

    tool_name: str
    args: dict[str, Any]
    call_id: str


@dataclass(frozen=True)
class ToolResult(_Message):
    type: ClassVar[str] = "tool-result"

    tool_name: str
    result: Any
    call_id: str = ""


@dataclass(frozen=True)
class PermissionRequest(_Message):
    type: ClassVar[str] = "permission-request"

    id: str
    reason: str
    payload: Any


@dataclass(frozen=True)
class PermissionResponse(_Message):
    type: ClassVar[str] = "permission-response"

    id: str
    approved: bool


@dataclass(frozen=True)
class FsEdit(_Message):
    type: ClassVar[str] = "fs-edit"

    description: str
    diff: str | None = None
    path: str | None = None


@dataclass(frozen=True)
class TerminalOutput(_Message):
    type: ClassVar[str] = "terminal-output"

    data: str


AgentMessage = Union[
    StatusMessage,
    ModelOutput,
    ToolCall,
    ToolResult,
    PermissionRequest,
    PermissionResponse,
    FsEdit,
    TerminalOutput,
]
