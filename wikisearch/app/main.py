from __future__ import annotations

"""FastAPI application exposing the wiki search endpoints."""

import logging
import time
import uuid
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, HTTPException, Request

from wikisearch.app.dependencies import (
    get_entity_repository,
    get_indexer,
    get_search_service,
    get_view_service,
)
from wikisearch.app.metrics import (
    REINDEX_DURATION,
    metrics_middleware,
    metrics_response,
    observe_search,
)
from wikisearch.app.schemas import (
    AdvancedSearchRequest,
    EntityListResponse,
    ReindexResponse,
    SearchResponse,
    SearchResultItem,
)
from wikisearch.app.security import AuthContext, require_api_key, require_roles
from wikisearch.app.settings import settings
from wikisearch.entities.permissions import ROLE_ACTIONS
from wikisearch.entities.provider import EntityRef, UnknownEntityTypeError
from wikisearch.entities.repository import EntityNotFoundError
from wikisearch.search.options import SearchOptions
from wikisearch.search.pagination import resolve_page_number
from wikisearch.search.types import ScoredResult, SearchPage

logger = logging.getLogger(__name__)

app = FastAPI(title="Wiki Search", version="0.1.0")


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _entity_url(result: ScoredResult) -> str:
    return f"{settings.base_url}/{result.ref.kind}s/{result.ref.id}"


def _to_item(result: ScoredResult) -> SearchResultItem:
    return SearchResultItem(
        entity_type=result.ref.kind,
        id=result.ref.id,
        name=result.name,
        score=result.score,
        updated_at=result.updated_at,
        url=_entity_url(result),
    )


def _next_page_url(search_term: str, page: SearchPage) -> str | None:
    if not page.has_more:
        return None
    query = urlencode({"term": search_term, "page": page.page + 1})
    return f"{settings.base_url}/search?{query}"


def _search_response(options: SearchOptions, page: SearchPage) -> SearchResponse:
    search_term = options.to_string()
    return SearchResponse(
        search_term=search_term,
        results=[_to_item(result) for result in page.results],
        total=page.total,
        count=page.count,
        has_more=page.has_more,
        page=page.page,
        next_page_url=_next_page_url(search_term, page),
    )


def _split_types(raw: str | None, default: tuple[str, ...]) -> list[str]:
    if not raw:
        return list(default)
    return [value.strip() for value in raw.split(",") if value.strip()]


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.get("/search", response_model=SearchResponse)
def search(
    http_request: Request,
    term: str = "",
    page: str | None = None,
    auth: AuthContext = Depends(require_api_key),
) -> SearchResponse:
    """Search every entity type with a free-text query string."""
    options = SearchOptions.from_string(term, "all")
    page_number = resolve_page_number(page)
    result_page = get_search_service().search_entities(
        options,
        auth.search_context("view"),
        page=page_number,
        per_page=settings.search_page_size,
    )
    observe_search("all", result_page.total)
    logger.info(
        "search_request",
        extra={
            "request_id": getattr(http_request.state, "request_id", None),
            "term_length": len(term),
            "page": page_number,
            "total": result_page.total,
        },
    )
    return _search_response(options, result_page)


@app.post("/search", response_model=SearchResponse)
def advanced_search(
    request: AdvancedSearchRequest,
    auth: AuthContext = Depends(require_api_key),
) -> SearchResponse:
    """Search using the fields of the advanced search form."""
    options = SearchOptions.from_form(
        search=request.search,
        types=request.types,
        filters=request.filters,
        exacts=request.exact,
        tags=request.tags,
    )
    result_page = get_search_service().search_entities(
        options,
        auth.search_context("view"),
        page=request.page,
        per_page=settings.search_page_size,
    )
    observe_search("advanced", result_page.total)
    return _search_response(options, result_page)


@app.get("/search/book/{book_id}", response_model=EntityListResponse)
def search_book(
    book_id: int,
    term: str = "",
    auth: AuthContext = Depends(require_api_key),
) -> EntityListResponse:
    """Search the pages and chapters of one book."""
    options = SearchOptions.from_string(term, ["page", "chapter"])
    results = get_search_service().search_book(book_id, options, auth.search_context("view"))
    observe_search("book", len(results))
    return EntityListResponse(results=[_to_item(result) for result in results], count=len(results))


@app.get("/search/chapter/{chapter_id}", response_model=EntityListResponse)
def search_chapter(
    chapter_id: int,
    term: str = "",
    auth: AuthContext = Depends(require_api_key),
) -> EntityListResponse:
    """Search the pages of one chapter."""
    options = SearchOptions.from_string(term, ["page"])
    results = get_search_service().search_chapter(
        chapter_id, options, auth.search_context("view")
    )
    observe_search("chapter", len(results))
    return EntityListResponse(results=[_to_item(result) for result in results], count=len(results))


@app.get("/search/siblings", response_model=EntityListResponse)
def search_siblings(
    entity_type: str,
    entity_id: int,
    auth: AuthContext = Depends(require_api_key),
) -> EntityListResponse:
    """List the visible entities next to one entity in the book hierarchy."""
    try:
        results = get_search_service().search_siblings(
            EntityRef(kind=entity_type, id=entity_id), auth.search_context("view")
        )
    except (UnknownEntityTypeError, EntityNotFoundError) as exc:
        raise HTTPException(status_code=404, detail="Entity not found") from exc
    return EntityListResponse(results=[_to_item(result) for result in results], count=len(results))


@app.get("/search/entities", response_model=EntityListResponse)
def search_entities_picker(
    term: str = "",
    types: str | None = None,
    permission: str = "view",
    auth: AuthContext = Depends(require_api_key),
) -> EntityListResponse:
    """Entity picker search; falls back to the most popular entities for an empty term."""
    if permission not in ROLE_ACTIONS["admin"]:
        raise HTTPException(status_code=400, detail=f"Unknown permission: {permission}")
    entity_types = _split_types(types, ("page", "chapter", "book"))
    context = auth.search_context(permission)
    limit = settings.popular_count
    if not term.strip():
        refs = get_view_service().popular(limit, 0, entity_types, context)
        results = [
            ScoredResult(
                ref=ref,
                score=None,
                name=row.get("name") or "",
                updated_at=row.get("updated_at"),
                row=row,
            )
            for ref, row in get_entity_repository().get_many(refs)
        ]
    else:
        options = SearchOptions.for_entities(term, entity_types)
        results = get_search_service().search_entities(
            options, context, page=1, per_page=limit
        ).results
        observe_search("entities", len(results))
    return EntityListResponse(results=[_to_item(result) for result in results], count=len(results))


@app.post("/search/reindex", response_model=ReindexResponse)
def reindex(auth: AuthContext = Depends(require_api_key)) -> ReindexResponse:
    """Rebuild the whole term index from current entity content."""
    require_roles(auth, {"admin"})
    start = time.monotonic()
    indexed = get_indexer().index_all_entities()
    duration = time.monotonic() - start
    if settings.metrics_enabled:
        REINDEX_DURATION.observe(duration)
    return ReindexResponse(indexed=indexed, duration=round(duration, 3))

