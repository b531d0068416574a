from __future__ import annotations

from datetime import UTC, datetime

from opencode_bridge.message_buffer import BufferedMessage
from opencode_bridge.types import OpenCodeSession


def _format_millis(value: int | None) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000, UTC).isoformat(timespec="seconds")


class SessionController:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_session_list_entry(self, session: OpenCodeSession, *, active_session_id: str | None) -> str:
        marker = "*" if session.id == active_session_id else " "
        title = session.title or session.slug or session.id
        short_id = self.short_id(session.id)
        return (
            f"{self._line_prefix}{marker} {title} [{short_id}] (id={session.id}) "
            f"(created={_format_millis(session.created_at)}, updated={_format_millis(session.updated_at)}, "
            f"files={session.files}, +{session.additions}/-{session.deletions})"
        )

    def format_history_lines(self, messages: list[BufferedMessage], *, limit: int = 20) -> list[str]:
        if not messages:
            return [f"{self._line_prefix}No messages yet."]
        tail = messages[-limit:] if limit > 0 else messages
        lines = [f"{self._line_prefix}Last {len(tail)} of {len(messages)} messages:"]
        for message in tail:
            first_line, _, rest = message.content.partition("\n")
            suffix = " ..." if rest else ""
            lines.append(f"{self._line_prefix}- ({message.kind}) {first_line}{suffix}")
        return lines
