from __future__ import annotations

"""Entity lifecycle operations that keep the search index in step."""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.engine import Engine

from wikisearch.entities.provider import EntityProvider, EntityRef
from wikisearch.entities.schema import comments, entity_permissions, tags, views
from wikisearch.search.indexer import TermIndexer

logger = logging.getLogger(__name__)


class EntityNotFoundError(LookupError):
    """Raised when an entity reference does not resolve to a stored row."""
    pass


class EntityRepository:
    """Create, update and delete wiki entities, re-indexing them as they change."""
    def __init__(self, engine: Engine, provider: EntityProvider, indexer: TermIndexer) -> None:
        self._engine = engine
        self._provider = provider
        self._indexer = indexer

    def create(self, entity_type: str, actor_id: int | None = None, **values: Any) -> EntityRef:
        entity = self._provider.get(entity_type)
        now = datetime.now(timezone.utc)
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        values.setdefault("created_by", actor_id)
        values.setdefault("updated_by", actor_id)
        values.setdefault(entity.text_field, "")
        with self._engine.begin() as conn:
            result = conn.execute(insert(entity.table).values(**values))
            entity_id = int(result.inserted_primary_key[0])
        ref = EntityRef(kind=entity.token, id=entity_id)
        self._indexer.index_entity_by_id(ref)
        logger.info("entity_created", extra={"entity_type": ref.kind, "entity_id": ref.id})
        return ref

    def update(self, ref: EntityRef, actor_id: int | None = None, **values: Any) -> None:
        entity = self._provider.get(ref.kind)
        values.setdefault("updated_at", datetime.now(timezone.utc))
        values.setdefault("updated_by", actor_id)
        with self._engine.begin() as conn:
            result = conn.execute(
                update(entity.table).where(entity.table.c.id == ref.id).values(**values)
            )
        if result.rowcount == 0:
            raise EntityNotFoundError(f"{ref.kind} {ref.id} not found")
        self._indexer.index_entity_by_id(ref)

    def delete(self, ref: EntityRef) -> None:
        """Delete an entity together with its terms, tags, views, comments and grants."""
        entity = self._provider.get(ref.kind)
        morph_class = entity.morph_class
        with self._engine.begin() as conn:
            conn.execute(delete(entity.table).where(entity.table.c.id == ref.id))
            for table, type_col, id_col in (
                (tags, tags.c.entity_type, tags.c.entity_id),
                (comments, comments.c.entity_type, comments.c.entity_id),
                (views, views.c.viewable_type, views.c.viewable_id),
                (
                    entity_permissions,
                    entity_permissions.c.entity_type,
                    entity_permissions.c.entity_id,
                ),
            ):
                conn.execute(delete(table).where(and_(type_col == morph_class, id_col == ref.id)))
            self._indexer.delete_entity_terms(ref, conn)
        logger.info("entity_deleted", extra={"entity_type": ref.kind, "entity_id": ref.id})

    def get(self, ref: EntityRef) -> dict[str, Any]:
        entity = self._provider.get(ref.kind)
        with self._engine.connect() as conn:
            row = conn.execute(
                select(entity.table).where(entity.table.c.id == ref.id)
            ).mappings().first()
        if row is None:
            raise EntityNotFoundError(f"{ref.kind} {ref.id} not found")
        return dict(row)

    def get_many(self, refs: Iterable[EntityRef]) -> list[tuple[EntityRef, dict[str, Any]]]:
        """Load rows for the given references, keeping their order and skipping missing ones."""
        found: list[tuple[EntityRef, dict[str, Any]]] = []
        for ref in refs:
            try:
                found.append((ref, self.get(ref)))
            except EntityNotFoundError:
                continue
        return found

    def add_tag(self, ref: EntityRef, name: str, value: str = "") -> None:
        morph_class = self._provider.get(ref.kind).morph_class
        with self._engine.begin() as conn:
            conn.execute(
                insert(tags).values(
                    entity_type=morph_class, entity_id=ref.id, name=name, value=value
                )
            )

    def add_comment(
        self,
        ref: EntityRef,
        text: str,
        actor_id: int | None = None,
        created_at: datetime | None = None,
    ) -> None:
        morph_class = self._provider.get(ref.kind).morph_class
        with self._engine.begin() as conn:
            conn.execute(
                insert(comments).values(
                    entity_type=morph_class,
                    entity_id=ref.id,
                    text=text,
                    created_by=actor_id,
                    created_at=created_at or datetime.now(timezone.utc),
                )
            )

    def grant(self, ref: EntityRef, role: str, action: str = "view") -> None:
        """Allow a role to perform an action on a restricted entity."""
        morph_class = self._provider.get(ref.kind).morph_class
        with self._engine.begin() as conn:
            conn.execute(
                insert(entity_permissions).values(
                    entity_type=morph_class, entity_id=ref.id, role=role, action=action
                )
            )
