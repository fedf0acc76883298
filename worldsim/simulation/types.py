from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class GroundTruth:
    """One user-supplied text file treated as factual input."""

    file_path: Path
    content: str  # raw file text, unmodified
    date: date  # inferred from the filename


@dataclass(slots=True)
class Snapshot:
    """Serialized world state produced by one simulation step.

    The content is opaque markdown; nothing here validates it.
    """

    week: int
    date: str  # ISO-8601 timestamp of the simulated week
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "week": int(self.week),
            "date": self.date,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            week=int(data.get("week", 0) or 0),
            date=str(data.get("date") or ""),
            content=str(data.get("content") or ""),
        )

    def parsed_date(self) -> datetime | None:
        try:
            return datetime.fromisoformat(self.date)
        except ValueError:
            return None


@dataclass(slots=True)
class ExpertRequest:
    """A domain expert the narrator asked to consult."""

    domain: str
    profile: str
    query: str


@dataclass(slots=True)
class ExpertResponse:
    domain: str
    response: str


@dataclass(slots=True)
class WeekResult:
    """Output of one simulated week."""

    snapshot: Snapshot
    report: str
    date: datetime
    experts: list[ExpertResponse] = field(default_factory=list)
