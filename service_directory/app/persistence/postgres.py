"""
PostgreSQL repository for index items.
"""

from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from shared.circuit_breaker import CircuitBreaker
from shared.errors import AccessLayerException, ItemNotFoundError, ValidationError
from shared.logging import get_logger
from ..domain.models import ItemFilter


_COLUMNS = "id, title, url, letter, campus"
_MUTABLE_FIELDS = ("title", "url", "letter", "campus")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_where(filters: ItemFilter) -> Tuple[str, List[Any]]:
    """WHERE clause and parameters for a listing filter."""
    clauses: List[str] = []
    params: List[Any] = []

    if filters.campus:
        params.append(filters.campus)
        clauses.append(f"campus = ${len(params)}")
    if filters.letter:
        params.append(filters.letter)
        clauses.append(f"letter = ${len(params)}")
    if filters.search:
        params.append(f"%{_escape_like(filters.search)}%")
        clauses.append(f"title ILIKE ${len(params)}")

    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class PostgresIndexItemRepository:
    """asyncpg-backed origin store guarded by a circuit breaker."""

    def __init__(self, dsn: str, *, circuit_breaker: Optional[CircuitBreaker] = None):
        self.dsn = dsn
        self.logger = get_logger("directory.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60.0,
            name="postgres",
        )

    async def start(self):
        """Open the pool and make sure the table exists."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL repository started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL repository", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL repository stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS indexitem (
                    id SERIAL PRIMARY KEY,
                    title TEXT NOT NULL,
                    url TEXT NOT NULL,
                    letter VARCHAR(1) NOT NULL,
                    campus TEXT NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_indexitem_letter_title ON indexitem(letter, title);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_indexitem_campus_letter ON indexitem(campus, letter);
            """)

    def _pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise AccessLayerException("POSTGRES_NOT_STARTED", "Repository has not been started")
        return self.pool

    async def _fetch(self, query: str, *args) -> List[asyncpg.Record]:
        async def run():
            async with self._pool().acquire() as conn:
                return await conn.fetch(query, *args)
        return await self.circuit_breaker.call(run)

    async def _fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        async def run():
            async with self._pool().acquire() as conn:
                return await conn.fetchrow(query, *args)
        return await self.circuit_breaker.call(run)

    async def _fetchval(self, query: str, *args) -> Any:
        async def run():
            async with self._pool().acquire() as conn:
                return await conn.fetchval(query, *args)
        return await self.circuit_breaker.call(run)

    async def find_many(self, filters: ItemFilter) -> List[Dict[str, Any]]:
        where, params = build_where(filters)
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM indexitem{where} ORDER BY letter ASC, title ASC",
            *params
        )
        return [dict(row) for row in rows]

    async def count(self, filters: ItemFilter) -> int:
        where, params = build_where(filters)
        return int(await self._fetchval(f"SELECT COUNT(*) FROM indexitem{where}", *params))

    async def get(self, item_id: int) -> Optional[Dict[str, Any]]:
        row = await self._fetchrow(f"SELECT {_COLUMNS} FROM indexitem WHERE id = $1", item_id)
        return dict(row) if row else None

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        row = await self._fetchrow(
            f"""
                INSERT INTO indexitem (title, url, letter, campus)
                VALUES ($1, $2, $3, $4)
                RETURNING {_COLUMNS}
            """,
            fields["title"], fields["url"], fields["letter"], fields["campus"]
        )
        self.logger.info("Index item created", item_id=row["id"], campus=row["campus"], letter=row["letter"])
        return dict(row)

    async def update(self, item_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        changes = {name: value for name, value in fields.items() if name in _MUTABLE_FIELDS}
        if not changes:
            raise ValidationError("No updatable fields supplied", {"item_id": item_id})

        assignments = ", ".join(f"{name} = ${index}" for index, name in enumerate(changes, start=2))
        row = await self._fetchrow(
            f"""
                UPDATE indexitem SET {assignments}, updated_at = NOW()
                WHERE id = $1
                RETURNING {_COLUMNS}
            """,
            item_id, *changes.values()
        )
        if row is None:
            raise ItemNotFoundError(item_id)

        self.logger.info("Index item updated", item_id=item_id, fields=list(changes))
        return dict(row)

    async def delete(self, item_id: int) -> Dict[str, Any]:
        row = await self._fetchrow(
            f"DELETE FROM indexitem WHERE id = $1 RETURNING {_COLUMNS}",
            item_id
        )
        if row is None:
            raise ItemNotFoundError(item_id)

        self.logger.info("Index item deleted", item_id=item_id)
        return dict(row)

    async def health_check(self) -> bool:
        try:
            return await self._fetchval("SELECT 1") == 1
        except Exception as e:
            self.logger.warning("PostgreSQL health check failed", error=str(e))
            return False
