from __future__ import annotations

"""Term index maintenance: tokenization, per-entity upserts and full rebuilds."""

import logging
import re
import time
from collections import Counter
from typing import Any, Iterable, Iterator, Mapping

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.engine import Connection, Engine

from wikisearch.entities.provider import EntityProvider, EntityRef, EntityType
from wikisearch.entities.schema import search_terms

logger = logging.getLogger(__name__)

SPLIT_CHARS = " \n\t.,!?:;()[]{}<>`'\""
NAME_WEIGHT = 5
BODY_WEIGHT = 1

_SPLIT_RE = re.compile("[" + re.escape(SPLIT_CHARS) + "]+")


class SearchIndexError(RuntimeError):
    """Raised when the term index cannot be written."""
    pass


def generate_terms(text: str | None, weight: float = 1) -> Counter[str]:
    """Count the tokens of ``text`` and scale each count by ``weight``."""
    counts: Counter[str] = Counter(token for token in _SPLIT_RE.split(text or "") if token)
    return Counter({token: count * weight for token, count in counts.items()})


def _chunked(items: list[dict[str, Any]], size: int) -> Iterator[list[dict[str, Any]]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class TermIndexer:
    """Maintain the ``search_terms`` table for every searchable entity type."""
    def __init__(
        self,
        engine: Engine,
        provider: EntityProvider,
        insert_batch_size: int = 500,
        select_chunk_size: int = 1000,
    ) -> None:
        self._engine = engine
        self._provider = provider
        self.insert_batch_size = max(1, insert_batch_size)
        self.select_chunk_size = max(1, select_chunk_size)

    def entity_terms(self, entity: EntityType, row: Mapping[str, Any]) -> Counter[str]:
        """Merge weighted name and body terms for one entity row."""
        terms = generate_terms(row.get("name"), NAME_WEIGHT * entity.search_factor)
        terms.update(generate_terms(row.get(entity.text_field), BODY_WEIGHT * entity.search_factor))
        return terms

    def index_entity(self, entity_type: str, row: Mapping[str, Any]) -> int:
        """Replace the terms of a single entity; returns the number of terms written."""
        entity = self._provider.get(entity_type)
        records = self._term_rows(entity, row)
        with self._engine.begin() as conn:
            self._delete_terms(conn, entity, int(row["id"]))
            self._insert(conn, records)
        logger.debug(
            "search_entity_indexed",
            extra={"entity_type": entity.token, "entity_id": row["id"], "terms": len(records)},
        )
        return len(records)

    def index_entity_by_id(self, ref: EntityRef) -> int:
        """Load an entity row and index it; missing rows only lose their terms."""
        entity = self._provider.get(ref.kind)
        with self._engine.connect() as conn:
            row = conn.execute(
                select(entity.table).where(entity.table.c.id == ref.id)
            ).mappings().first()
        if row is None:
            self.delete_entity_terms(ref)
            return 0
        return self.index_entity(ref.kind, row)

    def index_entities(self, entity_type: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """Index a batch of entities without clearing existing terms first."""
        entity = self._provider.get(entity_type)
        records: list[dict[str, Any]] = []
        for row in rows:
            records.extend(self._term_rows(entity, row))
        with self._engine.begin() as conn:
            self._insert(conn, records)
        return len(records)

    def index_all_entities(self) -> dict[str, int]:
        """Truncate the index and rebuild it from every entity's current content."""
        start = time.monotonic()
        counts: dict[str, int] = {}
        with self._engine.begin() as conn:
            conn.execute(delete(search_terms))
        for entity in self._provider.all():
            counts[entity.token] = self._reindex_type(entity)
        logger.info(
            "search_reindex_complete",
            extra={"entities": counts, "duration": round(time.monotonic() - start, 3)},
        )
        return counts

    def delete_entity_terms(self, ref: EntityRef, conn: Connection | None = None) -> None:
        """Remove every term of ``ref``, inside ``conn``'s transaction when one is given."""
        entity = self._provider.get(ref.kind)
        if conn is not None:
            self._delete_terms(conn, entity, ref.id)
            return
        with self._engine.begin() as conn:
            self._delete_terms(conn, entity, ref.id)

    def _reindex_type(self, entity: EntityType) -> int:
        table = entity.table
        columns = [table.c.id, table.c.name, entity.text_column]
        indexed = 0
        last_id = 0
        while True:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(*columns)
                    .where(table.c.id > last_id)
                    .order_by(table.c.id)
                    .limit(self.select_chunk_size)
                ).mappings().all()
            if not rows:
                break
            self.index_entities(entity.token, rows)
            indexed += len(rows)
            last_id = rows[-1]["id"]
        return indexed

    def _term_rows(self, entity: EntityType, row: Mapping[str, Any]) -> list[dict[str, Any]]:
        if "id" not in row:
            raise SearchIndexError(f"Cannot index {entity.token} without an id")
        return [
            {
                "term": term,
                "score": score,
                "entity_type": entity.morph_class,
                "entity_id": int(row["id"]),
            }
            for term, score in self.entity_terms(entity, row).items()
        ]

    def _insert(self, conn: Connection, records: list[dict[str, Any]]) -> None:
        for batch in _chunked(records, self.insert_batch_size):
            conn.execute(insert(search_terms), batch)

    @staticmethod
    def _delete_terms(conn: Connection, entity: EntityType, entity_id: int) -> None:
        conn.execute(
            delete(search_terms).where(
                and_(
                    search_terms.c.entity_type == entity.morph_class,
                    search_terms.c.entity_id == entity_id,
                )
            )
        )
