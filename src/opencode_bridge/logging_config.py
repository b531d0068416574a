import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

# Records logged outside a session (logger not bound with session=...) show this.
NO_SESSION = "-"

_SOURCE = "{name}:{function}:{line}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    """stderr only; stdout carries the streamed assistant output."""

    def __init__(self, show_session: bool = True):
        self._show_session = show_session

    def register(self, level: str) -> None:
        session = " <magenta>[{extra[session]}]</magenta>" if self._show_session else ""
        logger.add(
            sys.stderr,
            level=level,
            format=f"<level>{{level:<8}}</level>{session} | <cyan>{_SOURCE}</cyan> - <level>{{message}}</level>",
        )

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(self, path: str = "opencode-bridge.log", rotation: str = "10 MB", retention: int = 3):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[session]} | " + _SOURCE + " - {message}",
            rotation=self._rotation,
            retention=self._retention,
        )

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {level})"


class JsonLinesLogConsumer:
    """One JSON object per record, for replaying a session's traffic offline."""

    def __init__(self, path: str = "opencode-bridge.jsonl", rotation: str = "50 MB"):
        self._path = path
        self._rotation = rotation

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(self._path, level=level, serialize=True, rotation=self._rotation)

    def describe(self, level: str) -> str:
        return f"jsonl ({self._path}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
    "jsonl": JsonLinesLogConsumer,
}

# Console stays at WARNING so it does not interleave with streamed output.
_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file", "path": "opencode-bridge.log"},
]


def _build_consumer(config: dict[str, Any]) -> LogConsumer | str:
    """Return the consumer, or a reason it was skipped."""
    sink_type = str(config.get("type", "")).lower()
    cls = _CONSUMER_TYPES.get(sink_type)
    if cls is None:
        return f"Unknown log consumer type: {sink_type!r}"
    options = {k: v for k, v in config.items() if k not in ("type", "level")}
    try:
        return cls(**options)
    except TypeError as ex:
        return f"Bad options for {sink_type!r} log consumer: {ex}"


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all loguru sinks with ``consumers``. Returns a description of each one registered.

    Skipped entries are reported once the remaining sinks are in place.
    """
    logger.remove()
    logger.configure(extra={"session": NO_SESSION})

    if consumers is None:
        consumers = _DEFAULT_CONSUMERS

    descriptions: list[str] = []
    skipped: list[str] = []

    for config in consumers:
        consumer = _build_consumer(config)
        if isinstance(consumer, str):
            skipped.append(consumer)
            continue
        sink_level = str(config.get("level", level)).upper()
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    for reason in skipped:
        logger.warning(reason)

    return descriptions
