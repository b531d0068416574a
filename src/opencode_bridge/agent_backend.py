from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from opencode_bridge.messages import AgentMessage


@runtime_checkable
class AgentBackend(Protocol):
    async def start(self, initial_prompt: str | None = None) -> Any:
        """Create a remote session and begin streaming its events.

        Returns an object carrying the new ``session_id``.
        """
        ...

    async def send(self, session_id: str, prompt: str) -> None:
        """Send one prompt and return once its response stream has finished."""
        ...

    async def cancel(self, session_id: str) -> None: ...

    async def wait_for_completion(self, timeout_ms: int | None = None) -> None: ...

    async def respond_to_permission(self, request_id: str, approved: bool) -> None: ...

    def add_listener(self, handler: Callable[[AgentMessage], None]) -> None: ...

    def remove_listener(self, handler: Callable[[AgentMessage], None]) -> None: ...

    async def dispose(self) -> None: ...


BackendFactory = Callable[..., AgentBackend]


class AgentRegistry:
    def __init__(self) -> None:
        self._factories: dict[str, BackendFactory] = {}

    def register(self, name: str, factory: BackendFactory) -> None:
        key = name.strip().lower()
        self._factories[key] = factory
        logger.debug(f"Registered agent backend: {key}")

    def names(self) -> list[str]:
        return sorted(self._factories)

    def create(self, name: str, **options: Any) -> AgentBackend:
        factory = self._factories.get(name.strip().lower())
        if factory is None:
            supported = ", ".join(repr(n) for n in self.names()) or "none"
            raise ValueError(f"Unknown agent backend: {name!r}. Supported: {supported}")
        return factory(**options)


agent_registry = AgentRegistry()


def register_opencode_agent(registry: AgentRegistry | None = None) -> None:
    from opencode_bridge.factory import create_opencode_backend

    (registry or agent_registry).register("opencode", lambda **opts: create_opencode_backend(**opts).backend)


def create_backend(name: str, **options: Any) -> AgentBackend:
    """Factory: create an AgentBackend by name, registering built-ins on first use."""
    if "opencode" not in agent_registry.names():
        register_opencode_agent()
    return agent_registry.create(name, **options)
