from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_session: Callable[[], Awaitable[None]],
        on_sessions: Callable[[], Awaitable[None]],
        on_history: Callable[[str], Awaitable[None]],
        on_abort: Callable[[], Awaitable[None]],
        on_permission: Callable[[str, bool], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_session = on_session
        self._on_sessions = on_sessions
        self._on_history = on_history
        self._on_abort = on_abort
        self._on_permission = on_permission
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, argument = trimmed.partition(" ")
        argument = argument.strip()

        if command == "/help":
            await self._on_help()
            return True
        if command == "/session":
            await self._on_session()
            return True
        if command == "/sessions":
            await self._on_sessions()
            return True
        if command == "/history":
            await self._on_history(argument)
            return True
        if command == "/abort":
            await self._on_abort()
            return True
        if command in ("/allow", "/deny") and argument:
            await self._on_permission(argument, command == "/allow")
            return True

        self._on_unknown(trimmed)
        return True
