from __future__ import annotations

"""Authentication and actor resolution helpers."""

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from wikisearch.app.settings import settings
from wikisearch.search.types import SearchContext


@dataclass(frozen=True)
class AuthContext:
    """Resolved authentication context for the current request."""
    api_key: str | None
    role: str
    user_id: int | None

    def search_context(self, action: str = "view") -> SearchContext:
        return SearchContext(actor_id=self.user_id, role=self.role, action=action)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_api_key(request: Request) -> AuthContext:
    """Validate the API key or fall back to the anonymous role if configured."""
    api_key = _extract_api_key(request)
    key_map = settings.api_key_map
    allowed = settings.api_keys
    if api_key is None:
        if settings.allow_anonymous:
            return AuthContext(api_key=None, role=settings.anonymous_role, user_id=None)
        if not (key_map or allowed):
            raise _unauthorized("API key required")
        raise _unauthorized("Invalid or missing API key")
    if key_map and api_key in key_map:
        entry = key_map[api_key]
        user_id = entry.get("user_id")
        return AuthContext(
            api_key=api_key,
            role=str(entry.get("role", "reader")),
            user_id=user_id if isinstance(user_id, int) else None,
        )
    if api_key in allowed:
        return AuthContext(api_key=api_key, role="admin", user_id=None)
    raise _unauthorized("Invalid or missing API key")


def require_roles(auth: AuthContext, allowed: set[str]) -> None:
    """Enforce role-based access control."""
    if auth.role not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )


def _extract_api_key(request: Request) -> str | None:
    """Extract API key from headers."""
    header_key = request.headers.get("x-api-key")
    if header_key:
        return header_key.strip()
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None
