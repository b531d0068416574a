from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class HealthInfo:
    healthy: bool
    version: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthInfo:
        return cls(
            healthy=bool(data.get("healthy", True)),
            version=data.get("version"),
        )


@dataclass
class OpenCodeSession:
    id: str
    slug: str | None = None
    version: str | None = None
    project_id: str | None = None
    directory: str | None = None
    title: str | None = None
    created_at: int | None = None
    updated_at: int | None = None
    additions: int = 0
    deletions: int = 0
    files: int = 0
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OpenCodeSession:
        """Build a session from the server's JSON, tolerating missing fields."""
        times = data.get("time") or {}
        summary = data.get("summary") or {}
        return cls(
            id=str(data["id"]),
            slug=data.get("slug"),
            version=data.get("version"),
            project_id=data.get("projectID"),
            directory=data.get("directory"),
            title=data.get("title"),
            created_at=times.get("created"),
            updated_at=times.get("updated"),
            additions=int(summary.get("additions", 0) or 0),
            deletions=int(summary.get("deletions", 0) or 0),
            files=int(summary.get("files", 0) or 0),
            raw=data,
        )


@dataclass
class TextPart:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}
