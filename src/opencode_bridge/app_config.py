from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from opencode_bridge.constants import (
    DEFAULT_OPENCODE_SERVER_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RESPONSE_TIMEOUT_MS,
    OPENCODE_SERVER_PASSWORD_ENV,
    OPENCODE_SERVER_URL_ENV,
)


@dataclass
class RuntimeEnv:
    server_url: str | None
    server_password: str | None


@dataclass
class AppConfig:
    server_url: str
    working_directory: str
    response_timeout_ms: int
    request_timeout_seconds: float
    server_wait_seconds: float
    message_buffer_size: int
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict, env: RuntimeEnv | None = None) -> AppConfig:
    """Merge config.json values with the environment; the environment wins."""
    env_url = env.server_url if env else None
    return AppConfig(
        server_url=(env_url or config.get("ServerUrl") or DEFAULT_OPENCODE_SERVER_URL).rstrip("/"),
        working_directory=str(config.get("WorkingDirectory") or Path.cwd()),
        response_timeout_ms=int(config.get("ResponseTimeoutMs", DEFAULT_RESPONSE_TIMEOUT_MS)),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", DEFAULT_REQUEST_TIMEOUT_SECONDS)),
        server_wait_seconds=max(0.0, float(config.get("ServerWaitSeconds", 0))),
        message_buffer_size=int(config.get("MessageBufferSize", 1000)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        server_url=os.environ.get(OPENCODE_SERVER_URL_ENV) or None,
        server_password=os.environ.get(OPENCODE_SERVER_PASSWORD_ENV) or None,
    )
