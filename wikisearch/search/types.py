from __future__ import annotations

"""Value types shared by the search executor, filters and API layer."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from wikisearch.entities.provider import EntityRef


@dataclass(frozen=True)
class SearchContext:
    """Explicit request context: who is searching and for which action."""
    actor_id: int | None = None
    role: str = "guest"
    action: str = "view"


@dataclass(frozen=True)
class ScoredResult:
    """Entity reference with the relevance score attached for one query."""
    ref: EntityRef
    score: float | None
    name: str
    updated_at: datetime | None = None
    # Row order within its per-type query and the value a ``sort_by`` strategy exposed.
    position: int = field(default=0, compare=False)
    sort_value: Any = field(default=None, compare=False)
    row: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class SearchPage:
    """One page of merged, ranked results."""
    results: list[ScoredResult]
    total: int
    page: int
    per_page: int

    @property
    def count(self) -> int:
        return len(self.results)

    @property
    def has_more(self) -> bool:
        return self.total > self.page * self.per_page
