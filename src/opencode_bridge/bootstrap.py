from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_delay, wait_exponential

from opencode_bridge.app_config import AppConfig, RuntimeEnv
from opencode_bridge.backend import OpenCodeBackend
from opencode_bridge.client import OpenCodeClient
from opencode_bridge.errors import NetworkError
from opencode_bridge.factory import create_opencode_backend
from opencode_bridge.logging_config import setup_logging
from opencode_bridge.message_buffer import MessageBuffer, attach_message_buffer


@dataclass
class AppRuntime:
    backend: OpenCodeBackend
    server_url: str
    message_buffer: MessageBuffer
    log_descriptions: list[str]


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"OpenCode server not ready ({reason}). Retrying in {wait:.1f}s (attempt {attempt})...")


async def wait_for_server(client: OpenCodeClient, wait_seconds: float) -> bool:
    """Poll the health endpoint for up to ``wait_seconds``; 0 means check once."""
    if wait_seconds <= 0:
        return await client.is_server_running()
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(NetworkError),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            stop=stop_after_delay(wait_seconds),
            before_sleep=_on_retry,
            reraise=True,
        ):
            with attempt:
                await client.check_health()
    except NetworkError as ex:
        logger.debug(f"Gave up waiting for OpenCode server after {wait_seconds:.0f}s: {ex}")
        return False
    return True


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    result = create_opencode_backend(
        server_url=app.server_url,
        password=env.server_password,
        cwd=app.working_directory,
        response_timeout_ms=app.response_timeout_ms,
        request_timeout=app.request_timeout_seconds,
    )
    backend = result.backend
    message_buffer = MessageBuffer(max_messages=app.message_buffer_size)
    attach_message_buffer(backend, message_buffer)

    return AppRuntime(
        backend=backend,
        server_url=result.server_url,
        message_buffer=message_buffer,
        log_descriptions=log_descriptions,
    )
