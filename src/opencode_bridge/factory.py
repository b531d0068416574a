from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from opencode_bridge.app_config import resolve_runtime_env
from opencode_bridge.backend import OpenCodeBackend
from opencode_bridge.client import OpenCodeClient
from opencode_bridge.constants import (
    DEFAULT_OPENCODE_SERVER_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RESPONSE_TIMEOUT_MS,
)


@dataclass
class OpenCodeBackendResult:
    backend: OpenCodeBackend
    server_url: str


def resolve_server_url(server_url: str | None = None) -> str:
    return server_url or resolve_runtime_env().server_url or DEFAULT_OPENCODE_SERVER_URL


def resolve_server_password(password: str | None = None) -> str | None:
    return password or resolve_runtime_env().server_password


def create_opencode_backend(
    *,
    server_url: str | None = None,
    password: str | None = None,
    cwd: str | None = None,
    response_timeout_ms: int = DEFAULT_RESPONSE_TIMEOUT_MS,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> OpenCodeBackendResult:
    """Build a backend; explicit options win over environment, then defaults."""
    resolved_url = resolve_server_url(server_url)
    resolved_password = resolve_server_password(password)

    logger.debug(
        f"Creating OpenCode backend: server_url={resolved_url}, cwd={cwd}, "
        f"has_password={resolved_password is not None}"
    )

    client = OpenCodeClient(
        server_url=resolved_url,
        password=resolved_password,
        request_timeout=request_timeout,
    )
    backend = OpenCodeBackend(
        client=client,
        cwd=cwd,
        response_timeout_ms=response_timeout_ms,
    )
    return OpenCodeBackendResult(backend=backend, server_url=resolved_url)
