from __future__ import annotations

"""Scored, permission-restricted search across wiki entity types."""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import Float, Select, and_, exists, func, literal, or_, select, true
from sqlalchemy.engine import Engine

from wikisearch.entities.permissions import PermissionService
from wikisearch.entities.provider import ENTITY_TYPES, EntityProvider, EntityRef, EntityType
from wikisearch.entities.repository import EntityNotFoundError
from wikisearch.entities.schema import search_terms, tags
from wikisearch.search.filters import FilterRegistry
from wikisearch.search.options import SearchOptions
from wikisearch.search.pagination import paginate
from wikisearch.search.tags import parse_tag_expression
from wikisearch.search.types import ScoredResult, SearchContext, SearchPage

logger = logging.getLogger(__name__)

SCOPED_SEARCH_LIMIT = 20
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _timestamp(value: datetime | None) -> float:
    value = value or _EPOCH
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _type_rank(result: ScoredResult) -> int:
    kind = result.ref.kind
    return ENTITY_TYPES.index(kind) if kind in ENTITY_TYPES else len(ENTITY_TYPES)


def _order_value(value: Any) -> float:
    if isinstance(value, datetime):
        return _timestamp(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return float("-inf")


def _sort_key(result: ScoredResult) -> tuple[float, float, int, int]:
    """Score desc, then most recently updated, then type order, then id."""
    return (-(result.score or 0.0), -_timestamp(result.updated_at), _type_rank(result), result.ref.id)


def _directed_sort_key(result: ScoredResult) -> tuple[float, float, int, int, int]:
    """Score desc, then the strategy's sort value desc, then the database row order."""
    return (
        -(result.score or 0.0),
        -_order_value(result.sort_value),
        result.position,
        _type_rank(result),
        result.ref.id,
    )


def rank_results(results: Iterable[ScoredResult], directed: bool = False) -> list[ScoredResult]:
    """Merge per-type results; ``directed`` keeps the order a ``sort_by`` strategy chose."""
    return sorted(results, key=_directed_sort_key if directed else _sort_key)


class SearchService:
    """Build and run one scored query per entity type, then merge the results."""
    def __init__(
        self,
        engine: Engine,
        provider: EntityProvider,
        permissions: PermissionService,
        filters: FilterRegistry | None = None,
        scoped_limit: int = SCOPED_SEARCH_LIMIT,
    ) -> None:
        self._engine = engine
        self._provider = provider
        self._permissions = permissions
        self._filters = filters or FilterRegistry()
        self.scoped_limit = scoped_limit

    def build_entity_query(
        self,
        options: SearchOptions,
        entity_type: str,
        context: SearchContext,
    ) -> Select:
        """Compose the filtered, scored and permission-restricted query for one type."""
        entity = self._provider.get(entity_type)
        table = entity.table

        if options.searches:
            scores = (
                select(
                    search_terms.c.entity_id,
                    func.sum(search_terms.c.score).label("score"),
                )
                .where(search_terms.c.entity_type == entity.morph_class)
                .where(
                    or_(
                        *[
                            search_terms.c.term.startswith(term, autoescape=True)
                            for term in options.searches
                        ]
                    )
                )
                .group_by(search_terms.c.entity_type, search_terms.c.entity_id)
                .subquery("s")
            )
            stmt = (
                select(table, scores.c.score)
                .join(scores, table.c.id == scores.c.entity_id)
                .order_by(scores.c.score.desc())
            )
        else:
            stmt = select(table, literal(None, type_=Float).label("score"))

        if options.exacts:
            stmt = stmt.where(
                and_(
                    *[
                        or_(
                            table.c.name.contains(phrase, autoescape=True),
                            entity.text_column.contains(phrase, autoescape=True),
                        )
                        for phrase in options.exacts
                    ]
                )
            )

        for expression in options.tags:
            stmt = self._apply_tag_search(stmt, entity, expression)

        stmt = self._filters.apply(stmt, entity, options.filters, context)

        return self._permissions.restrict(stmt, entity, context)

    def search_entities(
        self,
        options: SearchOptions,
        context: SearchContext,
        page: int = 1,
        per_page: int = 20,
    ) -> SearchPage:
        """Search every resolved target type and return one page of the merged ranking."""
        results = self.search_all(options, context)
        result_page = paginate(results, page, per_page)
        logger.info(
            "search_complete",
            extra={
                "entity_types": list(options.entity_types),
                "total": result_page.total,
                "page": result_page.page,
                "has_more": result_page.has_more,
            },
        )
        return result_page

    def search_all(self, options: SearchOptions, context: SearchContext) -> list[ScoredResult]:
        """Merged results for every target type, ranked by descending score."""
        results: list[ScoredResult] = []
        for entity_type in options.entity_types:
            stmt = self.build_entity_query(options, entity_type, context)
            results.extend(self._execute(stmt, self._provider.get(entity_type)))
        return rank_results(results, self._is_directed(options))

    def search_book(
        self, book_id: int, options: SearchOptions, context: SearchContext
    ) -> list[ScoredResult]:
        """Search pages and chapters of a single book."""
        scoped = self._scope_types(options, ("page", "chapter"))
        return self._search_scoped(scoped, context, "book_id", book_id)

    def search_chapter(
        self, chapter_id: int, options: SearchOptions, context: SearchContext
    ) -> list[ScoredResult]:
        """Search pages of a single chapter."""
        scoped = self._scope_types(options, ("page",))
        return self._search_scoped(scoped, context, "chapter_id", chapter_id)

    def _search_scoped(
        self,
        options: SearchOptions,
        context: SearchContext,
        column_name: str,
        parent_id: int,
    ) -> list[ScoredResult]:
        results: list[ScoredResult] = []
        for entity_type in options.entity_types:
            entity = self._provider.get(entity_type)
            if column_name not in entity.table.c:
                continue
            stmt = self.build_entity_query(options, entity_type, context)
            stmt = stmt.where(entity.table.c[column_name] == parent_id)
            results.extend(self._execute(stmt, entity))
        return rank_results(results, self._is_directed(options))[: self.scoped_limit]

    def search_siblings(self, ref: EntityRef, context: SearchContext) -> list[ScoredResult]:
        """Visible entities that sit at the same level of the hierarchy as ``ref``.

        Pages in a chapter list the chapter's pages. Pages directly in a book and
        chapters list the book's chapters and direct pages. Books and shelves list
        every visible book or shelf. The entity itself is included.
        """
        entity = self._provider.get(ref.kind)
        stmt = self._permissions.restrict(
            select(entity.table).where(entity.table.c.id == ref.id), entity, context
        )
        with self._engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        if row is None:
            raise EntityNotFoundError(f"{ref.kind} {ref.id} not found")

        if ref.kind == "page" and row["chapter_id"] is not None:
            levels = [("page", entity.table.c.chapter_id == row["chapter_id"])]
        elif ref.kind in ("page", "chapter"):
            pages = self._provider.get("page").table
            chapters = self._provider.get("chapter").table
            levels = [
                ("chapter", chapters.c.book_id == row["book_id"]),
                ("page", and_(pages.c.book_id == row["book_id"], pages.c.chapter_id.is_(None))),
            ]
        else:
            levels = [(ref.kind, true())]

        results: list[ScoredResult] = []
        for kind, condition in levels:
            sibling = self._provider.get(kind)
            sibling_stmt = select(sibling.table).where(condition).order_by(sibling.table.c.id)
            results.extend(
                self._execute(self._permissions.restrict(sibling_stmt, sibling, context), sibling)
            )
        return results

    @staticmethod
    def _scope_types(options: SearchOptions, allowed: Sequence[str]) -> SearchOptions:
        if options.filters.get("type"):
            entity_types = tuple(t for t in options.entity_types if t in allowed)
        else:
            entity_types = tuple(allowed)
        return SearchOptions(
            searches=options.searches,
            exacts=options.exacts,
            tags=options.tags,
            filters=options.filters,
            entity_types=entity_types,
        )

    def _apply_tag_search(self, stmt: Select, entity: EntityType, expression: str) -> Select:
        predicate = parse_tag_expression(expression)
        return stmt.where(
            exists().where(
                and_(
                    tags.c.entity_type == entity.morph_class,
                    tags.c.entity_id == entity.table.c.id,
                    predicate.clause(tags),
                )
            )
        )

    def _execute(self, stmt: Select, entity: EntityType) -> list[ScoredResult]:
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [self._to_result(entity, row, position) for position, row in enumerate(rows)]

    def _is_directed(self, options: SearchOptions) -> bool:
        return self._filters.has_sort(options.filters.get("sort_by", ""))

    @staticmethod
    def _to_result(entity: EntityType, row: Any, position: int = 0) -> ScoredResult:
        data = dict(row)
        score = data.get("score")
        return ScoredResult(
            ref=EntityRef(kind=entity.token, id=int(data["id"])),
            score=float(score) if score is not None else None,
            name=data.get("name") or "",
            updated_at=data.get("updated_at"),
            position=position,
            sort_value=data.get("sort_value"),
            row=data,
        )
