from __future__ import annotations

"""Named search filters (``{key:value}`` clauses) and sort strategies."""

import logging
from datetime import date, datetime, time, timezone
from typing import Callable, Mapping

from sqlalchemy import Select, and_, exists, false, func, select

from wikisearch.entities.provider import EntityType
from wikisearch.entities.schema import comments, views
from wikisearch.search.types import SearchContext

logger = logging.getLogger(__name__)

FilterFn = Callable[[Select, EntityType, str, SearchContext], Select]
SortFn = Callable[[Select, EntityType], Select]


def parse_date(value: str) -> datetime | None:
    """Parse an ISO date or datetime; ``None`` when the value is not a date."""
    value = value.strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(value), time.min)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    # Stored datetimes are UTC and the sqlite binding drops tzinfo.
    return parsed.astimezone(timezone.utc)


def resolve_user_id(value: str, context: SearchContext) -> int | None | bool:
    """Resolve ``me`` or a numeric id; ``False`` means the value is ignored."""
    if value == "me":
        return context.actor_id
    if value.strip().isdigit():
        return int(value)
    return False


def _date_filter(column_name: str, after: bool) -> FilterFn:
    def apply(stmt: Select, entity: EntityType, value: str, context: SearchContext) -> Select:
        parsed = parse_date(value)
        if parsed is None:
            logger.debug("search_filter_skipped", extra={"column": column_name, "value": value})
            return stmt
        column = entity.table.c[column_name]
        return stmt.where(column >= parsed if after else column < parsed)

    return apply


def _user_filter(column_name: str) -> FilterFn:
    def apply(stmt: Select, entity: EntityType, value: str, context: SearchContext) -> Select:
        user_id = resolve_user_id(value, context)
        if user_id is False:
            return stmt
        if user_id is None:
            return stmt.where(false())
        return stmt.where(entity.table.c[column_name] == user_id)

    return apply


def filter_in_name(stmt: Select, entity: EntityType, value: str, context: SearchContext) -> Select:
    return stmt.where(entity.table.c.name.contains(value, autoescape=True))


def filter_in_body(stmt: Select, entity: EntityType, value: str, context: SearchContext) -> Select:
    return stmt.where(entity.text_column.contains(value, autoescape=True))


def filter_is_restricted(
    stmt: Select, entity: EntityType, value: str, context: SearchContext
) -> Select:
    return stmt.where(entity.table.c.restricted.is_(True))


def _viewed_by_actor(entity: EntityType, context: SearchContext):
    return exists().where(
        and_(
            views.c.viewable_type == entity.morph_class,
            views.c.viewable_id == entity.table.c.id,
            views.c.user_id == context.actor_id,
        )
    )


def filter_viewed_by_me(
    stmt: Select, entity: EntityType, value: str, context: SearchContext
) -> Select:
    if context.actor_id is None:
        return stmt.where(false())
    return stmt.where(_viewed_by_actor(entity, context))


def filter_not_viewed_by_me(
    stmt: Select, entity: EntityType, value: str, context: SearchContext
) -> Select:
    if context.actor_id is None:
        return stmt.where(false())
    return stmt.where(~_viewed_by_actor(entity, context))


def sort_by_last_commented(stmt: Select, entity: EntityType) -> Select:
    """Order by each entity's most recent comment; uncommented entities drop out.

    The comment time is exposed as ``sort_value`` so merged results keep this order.
    """
    latest = (
        select(
            comments.c.entity_id,
            func.max(comments.c.created_at).label("last_commented"),
        )
        .where(comments.c.entity_type == entity.morph_class)
        .group_by(comments.c.entity_id)
        .subquery("latest_comments")
    )
    return (
        stmt.add_columns(latest.c.last_commented.label("sort_value"))
        .join(latest, entity.table.c.id == latest.c.entity_id)
        .order_by(latest.c.last_commented.desc())
    )


SORTS: dict[str, SortFn] = {
    "last_commented": sort_by_last_commented,
}


class FilterRegistry:
    """Dispatch ``{key:value}`` filters to their query-building functions."""
    def __init__(
        self,
        filters: Mapping[str, FilterFn] | None = None,
        sorts: Mapping[str, SortFn] | None = None,
    ) -> None:
        self._filters: dict[str, FilterFn] = dict(DEFAULT_FILTERS if filters is None else filters)
        self._sorts: dict[str, SortFn] = dict(SORTS if sorts is None else sorts)
        self._filters.setdefault("sort_by", self._apply_sort)

    def register(self, key: str, fn: FilterFn) -> None:
        self._filters[key] = fn

    def register_sort(self, name: str, fn: SortFn) -> None:
        self._sorts[name] = fn

    def keys(self) -> list[str]:
        return sorted(self._filters)

    def has_sort(self, name: str) -> bool:
        return name in self._sorts

    def apply(
        self,
        stmt: Select,
        entity: EntityType,
        filters: Mapping[str, str],
        context: SearchContext,
    ) -> Select:
        """Apply every known filter in order; unknown keys are ignored."""
        for key, value in filters.items():
            fn = self._filters.get(key)
            if fn is None:
                continue
            stmt = fn(stmt, entity, value, context)
        return stmt

    def _apply_sort(
        self, stmt: Select, entity: EntityType, value: str, context: SearchContext
    ) -> Select:
        sort = self._sorts.get(value)
        if sort is None:
            return stmt
        return sort(stmt, entity)


DEFAULT_FILTERS: dict[str, FilterFn] = {
    "updated_after": _date_filter("updated_at", after=True),
    "updated_before": _date_filter("updated_at", after=False),
    "created_after": _date_filter("created_at", after=True),
    "created_before": _date_filter("created_at", after=False),
    "created_by": _user_filter("created_by"),
    "updated_by": _user_filter("updated_by"),
    "in_name": filter_in_name,
    "in_title": filter_in_name,
    "in_body": filter_in_body,
    "is_restricted": filter_is_restricted,
    "viewed_by_me": filter_viewed_by_me,
    "not_viewed_by_me": filter_not_viewed_by_me,
}
