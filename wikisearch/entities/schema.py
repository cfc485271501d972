from __future__ import annotations

"""Relational schema for wiki entities and the search term index."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

metadata = MetaData()


def _entity_columns() -> list[Column]:
    """Columns shared by every searchable entity table."""
    return [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False),
        Column("restricted", Boolean, nullable=False, default=False),
        Column("created_at", DateTime(timezone=True), nullable=True),
        Column("updated_at", DateTime(timezone=True), nullable=True),
        Column("created_by", Integer, nullable=True),
        Column("updated_by", Integer, nullable=True),
    ]


bookshelves = Table(
    "bookshelves",
    metadata,
    *_entity_columns(),
    Column("description", Text, nullable=False, default=""),
)

books = Table(
    "books",
    metadata,
    *_entity_columns(),
    Column("description", Text, nullable=False, default=""),
)

chapters = Table(
    "chapters",
    metadata,
    *_entity_columns(),
    Column("book_id", Integer, nullable=False, index=True),
    Column("description", Text, nullable=False, default=""),
)

pages = Table(
    "pages",
    metadata,
    *_entity_columns(),
    Column("book_id", Integer, nullable=False, index=True),
    Column("chapter_id", Integer, nullable=True, index=True),
    Column("text", Text, nullable=False, default=""),
)

tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", Integer, nullable=False),
    Column("name", String(191), nullable=False),
    Column("value", String(191), nullable=False, default=""),
    Index("ix_tags_entity", "entity_type", "entity_id"),
)

views = Table(
    "views",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("viewable_type", String(32), nullable=False),
    Column("viewable_id", Integer, nullable=False),
    Column("views", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    Index("ix_views_viewable", "viewable_type", "viewable_id"),
)

comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", Integer, nullable=False),
    Column("text", Text, nullable=False, default=""),
    Column("created_by", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_comments_entity", "entity_type", "entity_id"),
)

entity_permissions = Table(
    "entity_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", Integer, nullable=False),
    Column("role", String(64), nullable=False),
    Column("action", String(32), nullable=False),
    Index("ix_entity_permissions_entity", "entity_type", "entity_id"),
)

# No uniqueness across (term, entity_type, entity_id); duplicates are summed at query time.
search_terms = Table(
    "search_terms",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("term", String(180), nullable=False, index=True),
    Column("score", Float, nullable=False),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", Integer, nullable=False),
    Index("ix_search_terms_entity", "entity_type", "entity_id"),
)


def create_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)
