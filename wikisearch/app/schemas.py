from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

EntityTypeName = Literal["page", "chapter", "book", "bookshelf"]


class AdvancedSearchRequest(BaseModel):
    search: str = ""
    types: list[str] | None = None
    filters: dict[str, str | None] = Field(default_factory=dict)
    exact: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    page: int = Field(default=1, ge=1)


class SearchResultItem(BaseModel):
    entity_type: EntityTypeName
    id: int
    name: str
    score: float | None = None
    updated_at: datetime | None = None
    url: str


class SearchResponse(BaseModel):
    search_term: str
    results: list[SearchResultItem]
    total: int
    count: int
    has_more: bool
    page: int
    next_page_url: str | None = None


class EntityListResponse(BaseModel):
    results: list[SearchResultItem]
    count: int


class ReindexResponse(BaseModel):
    indexed: dict[str, int]
    duration: float
