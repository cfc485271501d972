from __future__ import annotations

"""Entity type descriptors and polymorphic entity references."""

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import Table

from wikisearch.entities.schema import books, bookshelves, chapters, pages

ENTITY_TYPES: tuple[str, ...] = ("page", "chapter", "book", "bookshelf")


class UnknownEntityTypeError(KeyError):
    """Raised when a type token does not name a searchable entity."""
    pass


@dataclass(frozen=True)
class EntityType:
    """Storage accessor and search weighting for one entity type."""
    token: str
    morph_class: str
    table: Table
    text_field: str
    search_factor: float

    @property
    def text_column(self):
        return self.table.c[self.text_field]


@dataclass(frozen=True)
class EntityRef:
    """Tagged reference to a single entity: its type token and row id."""
    kind: str
    id: int


DEFAULT_ENTITY_TYPES: dict[str, EntityType] = {
    "page": EntityType("page", "Page", pages, "text", 1.5),
    "chapter": EntityType("chapter", "Chapter", chapters, "description", 1.3),
    "book": EntityType("book", "Book", books, "description", 2.0),
    "bookshelf": EntityType("bookshelf", "Bookshelf", bookshelves, "description", 3.0),
}


class EntityProvider:
    """Lookup table from type tokens to their storage accessors."""
    def __init__(self, entity_types: dict[str, EntityType] | None = None) -> None:
        self._types = dict(entity_types or DEFAULT_ENTITY_TYPES)
        self._by_morph = {entity.morph_class: entity for entity in self._types.values()}

    def get(self, token: str) -> EntityType:
        try:
            return self._types[token]
        except KeyError as exc:
            raise UnknownEntityTypeError(token) from exc

    def all(self) -> list[EntityType]:
        return list(self._types.values())

    def morph_classes(self, tokens: Iterable[str]) -> list[str]:
        """Map type tokens to the discriminators stored in polymorphic columns."""
        return [self.get(token).morph_class for token in tokens if token in self._types]

    def from_morph_class(self, morph_class: str) -> EntityType:
        try:
            return self._by_morph[morph_class]
        except KeyError as exc:
            raise UnknownEntityTypeError(morph_class) from exc
