from __future__ import annotations

from typing import Sequence

from wikisearch.search.types import ScoredResult, SearchPage


def resolve_page_number(raw: object) -> int:
    """Coerce a page parameter to a 1-based page number."""
    try:
        page = int(str(raw))
    except (TypeError, ValueError):
        return 1
    return page if page > 0 else 1


def paginate(results: Sequence[ScoredResult], page: int, per_page: int) -> SearchPage:
    """Slice an already merged and sorted result list."""
    page = max(1, page)
    per_page = max(1, per_page)
    start = (page - 1) * per_page
    return SearchPage(
        results=list(results[start : start + per_page]),
        total=len(results),
        page=page,
        per_page=per_page,
    )
