"""PostgreSQL implementation of the record store.

Records live in their own tables with ``search_text``, ``embedding
vector(D)``, and ``updated_at`` columns; this module never creates those
tables. Similarity uses pgvector's cosine distance operator ``<=>`` and is
reported as ``1 - distance``. Full-text rank uses ``ts_rank``.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
- Embeddings are sent as text literals cast with ``::text::vector`` so the
  fixed-precision literal is what gets stored

SQL is assembled by the ``build_*`` functions below from identifiers declared
on the record classes, never from user input.
"""

import json
import re
from typing import Any, List, Optional, Sequence, Tuple, Type

import asyncpg
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector

from ..common.errors import (
    InvalidInputError,
    RecordNotFoundError,
    StoreConnectionError,
    StoreQueryError,
)
from ..records import SearchableRecord, record_type_for
from .base import IndexEntry, RecordStore, ReindexCriteria, SearchFilters, StoreHit

logger = structlog.get_logger("store.postgres")

# Columns the index itself writes; changes to them never trigger a reindex.
INDEX_COLUMNS = ("search_text", "embedding", "updated_at")

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Unsafe SQL identifier: {name!r}")
    return name


def change_channel(entity_type: str) -> str:
    """LISTEN/NOTIFY channel carrying changes of ``entity_type`` rows."""
    return _ident(f"{entity_type}_changed")


def like_pattern(term: str) -> str:
    """``%term%`` with LIKE metacharacters escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def build_filter_clause(
    record_type: Type[SearchableRecord],
    filters: Optional[SearchFilters],
    first_param: int
) -> Tuple[List[str], List[Any]]:
    """Translate filters into SQL conditions numbered from ``first_param``."""
    if filters is None:
        return [], []
    filters.validate_for(record_type)

    conditions: List[str] = []
    params: List[Any] = []
    for name, value in filters.active().items():
        column = _ident(record_type.filter_columns[name])
        param = f"${first_param + len(params)}"
        if name == "location":
            conditions.append(f"{column} ILIKE {param}")
            params.append(like_pattern(value))
        else:
            conditions.append(f"{column} = {param}")
            params.append(value)
    return conditions, params


def _where(conditions: Sequence[str]) -> str:
    return " AND ".join(conditions) if conditions else "TRUE"


def build_vector_query(
    record_type: Type[SearchableRecord],
    filters: Optional[SearchFilters] = None
) -> Tuple[str, List[Any]]:
    """Nearest-neighbour query; ``$1`` is the vector literal, last param the limit."""
    conditions, params = build_filter_clause(record_type, filters, 2)
    limit_param = 2 + len(params)
    sql = f"""
        SELECT *, 1 - (embedding <=> $1::text::vector) AS score
        FROM {_ident(record_type.table)}
        WHERE {_where(["embedding IS NOT NULL"] + conditions)}
        ORDER BY embedding <=> $1::text::vector, updated_at DESC NULLS LAST
        LIMIT ${limit_param}
    """
    return sql, params


def build_fulltext_query(
    record_type: Type[SearchableRecord],
    filters: Optional[SearchFilters] = None,
    text_search_config: str = "english"
) -> Tuple[str, List[Any]]:
    """Full-text query; ``$1`` is the query text, last param the limit."""
    conditions, params = build_filter_clause(record_type, filters, 2)
    limit_param = 2 + len(params)
    config = _ident(text_search_config)
    document = f"to_tsvector('{config}', coalesce(search_text, ''))"
    tsquery = f"plainto_tsquery('{config}', $1)"
    sql = f"""
        SELECT *, ts_rank({document}, {tsquery}) AS score
        FROM {_ident(record_type.table)}
        WHERE {_where([f"{document} @@ {tsquery}"] + conditions)}
        ORDER BY score DESC, updated_at DESC NULLS LAST
        LIMIT ${limit_param}
    """
    return sql, params


def build_lexical_query(
    record_type: Type[SearchableRecord],
    filters: Optional[SearchFilters] = None
) -> Tuple[str, List[Any]]:
    """Substring query; ``$1`` is a text array of LIKE patterns, last param the limit."""
    columns = ["search_text"] + [f"CAST({_ident(c)} AS TEXT)" for c in record_type.lexical_columns]
    haystack = f"concat_ws(' ', {', '.join(columns)})"
    conditions, params = build_filter_clause(record_type, filters, 2)
    limit_param = 2 + len(params)
    sql = f"""
        SELECT *
        FROM {_ident(record_type.table)}
        WHERE {_where([f"{haystack} ILIKE ANY($1::text[])"] + conditions)}
        ORDER BY updated_at DESC NULLS LAST
        LIMIT ${limit_param}
    """
    return sql, params


def build_select_ids_query(
    record_type: Type[SearchableRecord],
    criteria: ReindexCriteria
) -> Tuple[str, List[Any]]:
    conditions: List[str] = []
    params: List[Any] = []
    if criteria.missing_embedding:
        conditions.append("embedding IS NULL")
    if criteria.status is not None:
        if "status" not in record_type.filter_columns:
            raise InvalidInputError(f"{record_type.entity_type} records have no status")
        params.append(criteria.status)
        conditions.append(f"{_ident(record_type.filter_columns['status'])} = ${len(params)}")
    if criteria.updated_after is not None:
        params.append(criteria.updated_after)
        conditions.append(f"updated_at > ${len(params)}")
    sql = f"""
        SELECT id FROM {_ident(record_type.table)}
        WHERE {_where(conditions)}
        ORDER BY updated_at ASC NULLS FIRST
    """
    if criteria.limit is not None:
        params.append(criteria.limit)
        sql += f" LIMIT ${len(params)}"
    return sql, params


def build_change_trigger_sql(record_type: Type[SearchableRecord]) -> str:
    """Trigger notifying ``<entity>_changed`` with ``{id, operation, changed_fields}``.

    Updates that only touch index columns are not notified.
    """
    entity = _ident(record_type.entity_type)
    table = _ident(record_type.table)
    ignored = ", ".join(f"'{c}'" for c in INDEX_COLUMNS)
    return f"""
        CREATE OR REPLACE FUNCTION notify_{entity}_change() RETURNS trigger AS $$
        DECLARE
            changed text[] := ARRAY[]::text[];
        BEGIN
            IF TG_OP = 'UPDATE' THEN
                SELECT coalesce(array_agg(n.key ORDER BY n.key), ARRAY[]::text[]) INTO changed
                FROM jsonb_each(to_jsonb(NEW)) AS n
                JOIN jsonb_each(to_jsonb(OLD)) AS o ON n.key = o.key
                WHERE n.value IS DISTINCT FROM o.value
                  AND n.key NOT IN ({ignored});
                IF coalesce(array_length(changed, 1), 0) = 0 THEN
                    RETURN NEW;
                END IF;
            END IF;
            PERFORM pg_notify(
                '{change_channel(record_type.entity_type)}',
                json_build_object('id', NEW.id, 'operation', TG_OP, 'changed_fields', changed)::text
            );
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;

        DROP TRIGGER IF EXISTS {entity}_change_notify ON {table};
        CREATE TRIGGER {entity}_change_notify
            AFTER INSERT OR UPDATE ON {table}
            FOR EACH ROW EXECUTE FUNCTION notify_{entity}_change();
    """


def _hit(record_type: Type[SearchableRecord], row: Any, scored: bool = True) -> StoreHit:
    score = float(row["score"]) if scored and row["score"] is not None else None
    return StoreHit(record=record_type.from_row(row), score=score)


class PostgresRecordStore(RecordStore):
    """Record store over PostgreSQL with the pgvector extension."""

    supports_filter_pushdown = True

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        command_timeout: float = 60.0,
        text_search_config: str = "english",
    ):
        """Configure the store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of the asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        - text_search_config: Text search configuration for ``ts_rank``
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self.text_search_config = text_search_config
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector and JSON codecs for a new connection."""
        await register_vector(conn)
        for type_name in ("json", "jsonb"):
            await conn.set_type_codec(
                type_name,
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

    async def _get_pool(self) -> Pool:
        """Get or create the connection pool."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PostgreSQL connection pool", pool_size=self.pool_size)
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                logger.error("Failed to create PostgreSQL connection pool", error=str(e))
                raise StoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False,
        fetch_val: bool = False
    ) -> Any:
        """Execute a query with error handling.

        The ``fetch``/``fetch_one``/``fetch_val`` flags pick how results are
        retrieved. Driver failures are wrapped in ``StoreQueryError``.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_val:
                    return await conn.fetchval(query, *args)
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                if fetch:
                    return await conn.fetch(query, *args)
                return await conn.execute(query, *args)
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("Query execution failed", query=" ".join(query.split())[:200], error=str(e))
            raise StoreQueryError(f"Query failed: {e}") from e

    async def fetch_record(self, entity_type: str, record_id: str) -> SearchableRecord:
        record_type = record_type_for(entity_type)
        row = await self._execute_query(
            f"SELECT * FROM {_ident(record_type.table)} WHERE id = $1",
            record_id,
            fetch_one=True,
        )
        if row is None:
            raise RecordNotFoundError(entity_type, record_id)
        return record_type.from_row(row)

    async def latest_competence_file_url(self, candidate_id: str) -> Optional[str]:
        return await self._execute_query(
            """
            SELECT file_url FROM competence_files
            WHERE candidate_id = $1 AND file_url IS NOT NULL
            ORDER BY created_at DESC
            LIMIT 1
            """,
            candidate_id,
            fetch_val=True,
        )

    async def select_ids(self, entity_type: str, criteria: ReindexCriteria) -> List[str]:
        sql, params = build_select_ids_query(record_type_for(entity_type), criteria)
        rows = await self._execute_query(sql, *params, fetch=True)
        return [str(row["id"]) for row in rows]

    async def write_index_entry(
        self,
        entity_type: str,
        record_id: str,
        search_text: str,
        embedding_literal: str
    ) -> None:
        record_type = record_type_for(entity_type)
        status = await self._execute_query(
            f"""
            UPDATE {_ident(record_type.table)}
            SET search_text = $2, embedding = $3::text::vector
            WHERE id = $1
            """,
            record_id,
            search_text,
            embedding_literal,
        )
        if status.endswith(" 0"):
            raise RecordNotFoundError(entity_type, record_id)

    async def get_index_entry(self, entity_type: str, record_id: str) -> IndexEntry:
        record_type = record_type_for(entity_type)
        row = await self._execute_query(
            f"""
            SELECT id, search_text, embedding, updated_at
            FROM {_ident(record_type.table)} WHERE id = $1
            """,
            record_id,
            fetch_one=True,
        )
        if row is None:
            raise RecordNotFoundError(entity_type, record_id)
        embedding = row["embedding"]
        return IndexEntry(
            record_id=str(row["id"]),
            search_text=row["search_text"],
            embedding=tuple(float(v) for v in embedding) if embedding is not None else None,
            updated_at=row["updated_at"],
        )

    async def vector_search(
        self,
        entity_type: str,
        embedding_literal: str,
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        record_type = record_type_for(entity_type)
        sql, params = build_vector_query(record_type, filters)
        rows = await self._execute_query(sql, embedding_literal, *params, limit, fetch=True)
        return [_hit(record_type, row) for row in rows]

    async def fulltext_search(
        self,
        entity_type: str,
        query: str,
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        record_type = record_type_for(entity_type)
        sql, params = build_fulltext_query(record_type, filters, self.text_search_config)
        rows = await self._execute_query(sql, query, *params, limit, fetch=True)
        return [_hit(record_type, row) for row in rows]

    async def lexical_search(
        self,
        entity_type: str,
        terms: Sequence[str],
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[StoreHit]:
        record_type = record_type_for(entity_type)
        sql, params = build_lexical_query(record_type, filters)
        patterns = [like_pattern(t) for t in terms]
        rows = await self._execute_query(sql, patterns, *params, limit, fetch=True)
        return [_hit(record_type, row, scored=False) for row in rows]

    async def count_embeddings(self, entity_type: str) -> int:
        table = _ident(record_type_for(entity_type).table)
        return await self._execute_query(
            f"SELECT count(*) FROM {table} WHERE embedding IS NOT NULL",
            fetch_val=True,
        )

    async def count_missing(self, entity_type: str) -> int:
        table = _ident(record_type_for(entity_type).table)
        return await self._execute_query(
            f"SELECT count(*) FROM {table} WHERE embedding IS NULL",
            fetch_val=True,
        )

    async def install_change_triggers(self, entity_types: Sequence[str]) -> None:
        for entity_type in entity_types:
            record_type = record_type_for(entity_type)
            await self._execute_query(build_change_trigger_sql(record_type))
            logger.info(
                "Installed change trigger",
                entity_type=entity_type,
                table=record_type.table,
                channel=change_channel(entity_type)
            )

    async def connect_listener(self) -> Connection:
        """Open a dedicated connection for LISTEN; pooled connections are not used."""
        try:
            return await asyncpg.connect(self.dsn)
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise StoreConnectionError(f"Failed to open listener connection: {e}") from e

    async def health_check(self) -> bool:
        """Check database connectivity and the vector extension."""
        try:
            value = await self._execute_query(
                "SELECT 1 FROM pg_extension WHERE extname = 'vector'",
                fetch_val=True,
            )
            return value == 1
        except (StoreConnectionError, StoreQueryError) as e:
            logger.error("Store health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PostgreSQL connection pool")
