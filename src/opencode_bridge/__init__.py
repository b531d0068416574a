from opencode_bridge.agent_backend import AgentBackend, AgentRegistry, agent_registry, create_backend, register_opencode_agent
from opencode_bridge.backend import OpenCodeBackend, StartSessionResult
from opencode_bridge.client import OpenCodeClient, PushConnection
from opencode_bridge.errors import (
    BackendDisposedError,
    BackendError,
    MalformedEventError,
    NetworkError,
    ResponseTimeoutError,
    SendInProgressError,
    SessionAlreadyStartedError,
)
from opencode_bridge.factory import OpenCodeBackendResult, create_opencode_backend
from opencode_bridge.message_buffer import MessageBuffer, attach_message_buffer, format_agent_message
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
from opencode_bridge.normalizer import EventNormalizer

__all__ = [
    "AgentBackend",
    "AgentMessage",
    "AgentRegistry",
    "BackendDisposedError",
    "BackendError",
    "EventNormalizer",
    "FsEdit",
    "MalformedEventError",
    "MessageBuffer",
    "ModelOutput",
    "NetworkError",
    "OpenCodeBackend",
    "OpenCodeBackendResult",
    "OpenCodeClient",
    "PermissionRequest",
    "PermissionResponse",
    "PushConnection",
    "ResponseTimeoutError",
    "SendInProgressError",
    "SessionAlreadyStartedError",
    "StartSessionResult",
    "StatusMessage",
    "TerminalOutput",
    "ToolCall",
    "ToolResult",
    "agent_registry",
    "attach_message_buffer",
    "create_backend",
    "create_opencode_backend",
    "format_agent_message",
    "register_opencode_agent",
]
