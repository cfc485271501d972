from __future__ import annotations

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from wikisearch.app.settings import settings
from wikisearch.entities.permissions import RolePermissionService
from wikisearch.entities.provider import EntityProvider
from wikisearch.entities.repository import EntityRepository
from wikisearch.entities.schema import create_schema
from wikisearch.entities.views import ViewService
from wikisearch.search.executor import SearchService
from wikisearch.search.filters import FilterRegistry
from wikisearch.search.indexer import TermIndexer


@lru_cache
def get_engine() -> Engine:
    uri = settings.database_uri
    connect_args = {"check_same_thread": False} if uri.startswith("sqlite") else {}
    engine = create_engine(uri, connect_args=connect_args)
    create_schema(engine)
    return engine


@lru_cache
def get_entity_provider() -> EntityProvider:
    return EntityProvider()


@lru_cache
def get_permission_service() -> RolePermissionService:
    return RolePermissionService(get_entity_provider())


@lru_cache
def get_indexer() -> TermIndexer:
    return TermIndexer(
        get_engine(),
        get_entity_provider(),
        insert_batch_size=settings.index_insert_batch,
        select_chunk_size=settings.index_select_chunk,
    )


@lru_cache
def get_search_service() -> SearchService:
    return SearchService(
        get_engine(),
        get_entity_provider(),
        get_permission_service(),
        FilterRegistry(),
        scoped_limit=settings.scoped_search_limit,
    )


@lru_cache
def get_view_service() -> ViewService:
    return ViewService(get_engine(), get_entity_provider(), get_permission_service())


@lru_cache
def get_entity_repository() -> EntityRepository:
    return EntityRepository(get_engine(), get_entity_provider(), get_indexer())


def reset_service_cache() -> None:
    for factory in (
        get_engine,
        get_entity_provider,
        get_permission_service,
        get_indexer,
        get_search_service,
        get_view_service,
        get_entity_repository,
    ):
        factory.cache_clear()
