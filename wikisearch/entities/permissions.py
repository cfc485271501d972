from __future__ import annotations

"""Row-level visibility rules applied to every search and view query."""

from typing import Protocol

from sqlalchemy import Select, and_, exists, false, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from wikisearch.entities.provider import EntityProvider, EntityType
from wikisearch.entities.schema import entity_permissions
from wikisearch.search.types import SearchContext

ROLE_ACTIONS: dict[str, frozenset[str]] = {
    "guest": frozenset({"view"}),
    "reader": frozenset({"view"}),
    "editor": frozenset({"view", "create", "update"}),
    "admin": frozenset({"view", "create", "update", "delete"}),
}


class PermissionService(Protocol):
    def restrict(self, stmt: Select, entity: EntityType, context: SearchContext) -> Select:
        ...

    def filter_relation(
        self, stmt: Select, type_column, id_column, context: SearchContext
    ) -> Select:
        ...


class RolePermissionService:
    """Role based visibility with per-entity overrides for restricted rows.

    Unrestricted rows are visible when the actor's role allows the action.
    Restricted rows are only visible through an ``entity_permissions`` grant
    for the actor's role and the action. Admins see everything.
    """
    def __init__(
        self,
        provider: EntityProvider,
        role_actions: dict[str, frozenset[str]] | None = None,
    ) -> None:
        self._provider = provider
        self._role_actions = role_actions or ROLE_ACTIONS

    def allows(self, role: str, action: str) -> bool:
        return action in self._role_actions.get(role, frozenset())

    def visibility_clause(
        self, entity: EntityType, id_column, context: SearchContext
    ) -> ColumnElement[bool]:
        """Visibility of rows of ``entity`` identified by ``id_column``."""
        if context.role == "admin":
            return true()
        granted = exists().where(
            and_(
                entity_permissions.c.entity_type == entity.morph_class,
                entity_permissions.c.entity_id == id_column,
                entity_permissions.c.role == context.role,
                entity_permissions.c.action == context.action,
            )
        )
        restricted = entity.table.c.restricted
        if id_column is not entity.table.c.id:
            restricted = (
                select(entity.table.c.restricted)
                .where(entity.table.c.id == id_column)
                .scalar_subquery()
            )
        if not self.allows(context.role, context.action):
            return granted
        return or_(restricted.is_(False), granted)

    def restrict(self, stmt: Select, entity: EntityType, context: SearchContext) -> Select:
        """Narrow an entity query to rows the actor may access."""
        return stmt.where(self.visibility_clause(entity, entity.table.c.id, context))

    def filter_relation(
        self, stmt: Select, type_column, id_column, context: SearchContext
    ) -> Select:
        """Narrow a query over a polymorphic relation (views, comments) by entity visibility."""
        if context.role == "admin":
            return stmt
        branches = [
            and_(
                type_column == entity.morph_class,
                self.visibility_clause(entity, id_column, context),
            )
            for entity in self._provider.all()
        ]
        if not branches:
            return stmt.where(false())
        return stmt.where(or_(*branches))
