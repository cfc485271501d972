from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("WIKI_ALLOW_ANONYMOUS", "true")
os.environ.setdefault("WIKI_METRICS_ENABLED", "true")
os.environ.pop("WIKI_API_KEYS", None)
os.environ.pop("WIKI_API_KEY_MAP", None)

from wikisearch.entities.permissions import RolePermissionService  # noqa: E402
from wikisearch.entities.provider import EntityProvider  # noqa: E402
from wikisearch.entities.repository import EntityRepository  # noqa: E402
from wikisearch.entities.schema import create_schema  # noqa: E402
from wikisearch.entities.views import ViewService  # noqa: E402
from wikisearch.search.executor import SearchService  # noqa: E402
from wikisearch.search.indexer import TermIndexer  # noqa: E402
from wikisearch.search.types import SearchContext  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'wiki.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def provider() -> EntityProvider:
    return EntityProvider()


@pytest.fixture
def permissions(provider) -> RolePermissionService:
    return RolePermissionService(provider)


@pytest.fixture
def indexer(engine, provider) -> TermIndexer:
    return TermIndexer(engine, provider)


@pytest.fixture
def repository(engine, provider, indexer) -> EntityRepository:
    return EntityRepository(engine, provider, indexer)


@pytest.fixture
def search_service(engine, provider, permissions) -> SearchService:
    return SearchService(engine, provider, permissions)


@pytest.fixture
def view_service(engine, provider, permissions) -> ViewService:
    return ViewService(engine, provider, permissions)


@pytest.fixture
def reader() -> SearchContext:
    return SearchContext(actor_id=7, role="reader", action="view")


@pytest.fixture
def admin() -> SearchContext:
    return SearchContext(actor_id=1, role="admin", action="view")
