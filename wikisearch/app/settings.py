from __future__ import annotations

import json
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    database_uri_raw: str = os.getenv("WIKI_DATABASE_URI", "sqlite:///./wiki.db")
    log_level: str = os.getenv("WIKI_LOG_LEVEL", "INFO")
    search_page_size: int = int(os.getenv("WIKI_SEARCH_PAGE_SIZE", "20"))
    scoped_search_limit: int = int(os.getenv("WIKI_SCOPED_SEARCH_LIMIT", "20"))
    popular_count: int = int(os.getenv("WIKI_POPULAR_COUNT", "20"))
    index_insert_batch: int = int(os.getenv("WIKI_INDEX_INSERT_BATCH", "500"))
    index_select_chunk: int = int(os.getenv("WIKI_INDEX_SELECT_CHUNK", "1000"))
    metrics_enabled: bool = os.getenv("WIKI_METRICS_ENABLED", "true").lower() in {"1", "true", "yes"}
    base_url: str = os.getenv("WIKI_BASE_URL", "")
    api_keys_raw: str = os.getenv("WIKI_API_KEYS", "")
    api_key_map_raw: str = os.getenv("WIKI_API_KEY_MAP", "")
    allow_anonymous_raw: str = os.getenv("WIKI_ALLOW_ANONYMOUS", "true")
    anonymous_role_raw: str = os.getenv("WIKI_ANONYMOUS_ROLE", "guest")

    @property
    def database_uri(self) -> str:
        return os.getenv("WIKI_DATABASE_URI", self.database_uri_raw)

    @property
    def allow_anonymous(self) -> bool:
        raw = os.getenv("WIKI_ALLOW_ANONYMOUS", self.allow_anonymous_raw)
        return raw.strip().lower() in {"1", "true", "yes"}

    @property
    def anonymous_role(self) -> str:
        return os.getenv("WIKI_ANONYMOUS_ROLE", self.anonymous_role_raw).strip().lower()

    @property
    def api_keys(self) -> set[str]:
        raw = os.getenv("WIKI_API_KEYS", self.api_keys_raw)
        return {value.strip() for value in raw.split(",") if value.strip()}

    @property
    def api_key_map(self) -> dict[str, dict[str, object]]:
        """API keys mapped to a role and an optional wiki user id."""
        raw = os.getenv("WIKI_API_KEY_MAP", self.api_key_map_raw).strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        result: dict[str, dict[str, object]] = {}
        for key, value in data.items():
            if not isinstance(key, str) or not isinstance(value, dict):
                continue
            role = value.get("role")
            user_id = value.get("user_id")
            entry: dict[str, object] = {
                "role": role.lower() if isinstance(role, str) else "reader",
                "user_id": None,
            }
            if isinstance(user_id, int) and not isinstance(user_id, bool):
                entry["user_id"] = user_id
            elif isinstance(user_id, str) and user_id.strip().isdigit():
                entry["user_id"] = int(user_id)
            result[key] = entry
        return result


settings = Settings()
