from __future__ import annotations

"""Search query language: parse free-text search strings and serialize them back."""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from wikisearch.entities.provider import ENTITY_TYPES

_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("exacts", re.compile(r'"(.*?)"')),
    ("tags", re.compile(r"\[(.*?)\]")),
    ("filters", re.compile(r"\{(.*?)\}")),
)

TypeSelection = str | Sequence[str]


def resolve_entity_types(
    filters: Mapping[str, str],
    default_types: TypeSelection = "all",
) -> tuple[str, ...]:
    """Resolve which entity types a query targets, dropping unknown tokens."""
    type_filter = filters.get("type", "")
    if type_filter:
        requested: Iterable[str] = type_filter.split("|")
    elif isinstance(default_types, str):
        requested = ENTITY_TYPES if default_types == "all" else default_types.split("|")
    else:
        requested = default_types
    resolved: list[str] = []
    for token in requested:
        token = token.strip()
        if token in ENTITY_TYPES and token not in resolved:
            resolved.append(token)
    return tuple(resolved)


@dataclass(frozen=True)
class SearchOptions:
    """Structured form of a search string."""
    searches: tuple[str, ...] = ()
    exacts: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    filters: Mapping[str, str] = field(default_factory=dict)
    entity_types: tuple[str, ...] = ENTITY_TYPES

    def __post_init__(self) -> None:
        object.__setattr__(self, "searches", tuple(self.searches))
        object.__setattr__(self, "exacts", tuple(self.exacts))
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "filters", MappingProxyType(dict(self.filters)))
        object.__setattr__(self, "entity_types", tuple(self.entity_types))

    @classmethod
    def from_string(cls, search: str, default_types: TypeSelection = "all") -> "SearchOptions":
        """Decode a search string such as ``cat "dog" [tag=good] {is_tree}``."""
        remaining = search or ""
        extracted: dict[str, list[str]] = {}
        for term_type, pattern in _PATTERNS:
            extracted[term_type] = pattern.findall(remaining)
            remaining = pattern.sub("", remaining)

        filters: dict[str, str] = {}
        for raw_filter in extracted["filters"]:
            key, _, value = raw_filter.partition(":")
            filters[key] = value

        return cls(
            searches=tuple(token for token in remaining.split() if token),
            exacts=tuple(extracted["exacts"]),
            tags=tuple(extracted["tags"]),
            filters=filters,
            entity_types=resolve_entity_types(filters, default_types),
        )

    @classmethod
    def from_form(
        cls,
        search: str | None = None,
        types: Sequence[str] | None = None,
        filters: Mapping[str, str | None] | None = None,
        exacts: Sequence[str] | None = None,
        tags: Sequence[str] | None = None,
    ) -> "SearchOptions":
        """Build options from the advanced search form fields."""
        resolved_filters: dict[str, str] = {}
        for key, value in (filters or {}).items():
            if not value:
                continue
            resolved_filters[key] = "" if value == "true" else value
        if types and len(types) < len(ENTITY_TYPES):
            resolved_filters["type"] = "|".join(types)
        return cls(
            searches=tuple(token for token in (search or "").split(" ") if token),
            exacts=tuple(value for value in exacts or [] if value),
            tags=tuple(value for value in tags or [] if value),
            filters=resolved_filters,
            entity_types=resolve_entity_types(resolved_filters, "all"),
        )

    @classmethod
    def for_entities(cls, term: str, types: Sequence[str] | None = None) -> "SearchOptions":
        """Options for the entity picker: the term restricted to the given types."""
        selected = list(types) if types else list(ENTITY_TYPES)
        return cls.from_string(f"{term or ''} {{type:{'|'.join(selected)}}}")

    def to_string(self) -> str:
        """Encode these options back into a search string."""
        parts = list(self.searches)
        parts.extend(f'"{term}"' for term in self.exacts)
        parts.extend(f"[{term}]" for term in self.tags)
        for key, value in self.filters.items():
            parts.append(f"{{{key}:{value}}}" if value else f"{{{key}}}")
        return " ".join(parts)

    def is_empty(self) -> bool:
        return not (self.searches or self.exacts or self.tags or self.filters)

    def __str__(self) -> str:
        return self.to_string()
