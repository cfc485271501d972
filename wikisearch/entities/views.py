from __future__ import annotations

"""Per-user view counts and popularity listings."""

from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import and_, delete, desc, func, select, update
from sqlalchemy.engine import Engine

from wikisearch.entities.permissions import PermissionService
from wikisearch.entities.provider import EntityProvider, EntityRef
from wikisearch.entities.schema import views
from wikisearch.search.types import SearchContext


class ViewService:
    """Track how often each user opens an entity."""
    def __init__(
        self,
        engine: Engine,
        provider: EntityProvider,
        permissions: PermissionService,
    ) -> None:
        self._engine = engine
        self._provider = provider
        self._permissions = permissions

    def add(self, ref: EntityRef, actor_id: int | None) -> int:
        """Increment the actor's view count for an entity and return the new count."""
        if actor_id is None:
            return 0
        morph_class = self._provider.get(ref.kind).morph_class
        now = datetime.now(timezone.utc)
        match = and_(
            views.c.viewable_type == morph_class,
            views.c.viewable_id == ref.id,
            views.c.user_id == actor_id,
        )
        with self._engine.begin() as conn:
            current = conn.execute(select(views.c.id, views.c.views).where(match)).first()
            if current is None:
                conn.execute(
                    views.insert().values(
                        user_id=actor_id,
                        viewable_type=morph_class,
                        viewable_id=ref.id,
                        views=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return 1
            conn.execute(
                update(views)
                .where(views.c.id == current.id)
                .values(views=views.c.views + 1, updated_at=now)
            )
            return current.views + 1

    def popular(
        self,
        count: int,
        page: int,
        entity_types: Sequence[str] | None,
        context: SearchContext,
    ) -> list[EntityRef]:
        """Most viewed entities across all users, restricted to what the actor may see."""
        view_count = func.sum(views.c.views).label("view_count")
        stmt = (
            select(views.c.viewable_type, views.c.viewable_id, view_count)
            .group_by(views.c.viewable_type, views.c.viewable_id)
            .order_by(desc("view_count"), views.c.viewable_type, views.c.viewable_id)
        )
        if entity_types:
            stmt = stmt.where(views.c.viewable_type.in_(self._provider.morph_classes(entity_types)))
        stmt = self._permissions.filter_relation(
            stmt, views.c.viewable_type, views.c.viewable_id, context
        )
        stmt = stmt.offset(max(0, page) * count).limit(count)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [self._ref(row.viewable_type, row.viewable_id) for row in rows]

    def recently_viewed(
        self, count: int, page: int, context: SearchContext
    ) -> list[EntityRef]:
        """Entities the current actor viewed most recently."""
        if context.actor_id is None:
            return []
        stmt = select(views.c.viewable_type, views.c.viewable_id).where(
            views.c.user_id == context.actor_id
        )
        stmt = self._permissions.filter_relation(
            stmt, views.c.viewable_type, views.c.viewable_id, context
        )
        stmt = stmt.order_by(views.c.updated_at.desc(), views.c.id.desc())
        stmt = stmt.offset(max(0, page) * count).limit(count)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [self._ref(row.viewable_type, row.viewable_id) for row in rows]

    def reset_all(self) -> None:
        with self._engine.begin() as conn:
            conn.execute(delete(views))

    def _ref(self, morph_class: str, entity_id: int) -> EntityRef:
        return EntityRef(kind=self._provider.from_morph_class(morph_class).token, id=entity_id)
