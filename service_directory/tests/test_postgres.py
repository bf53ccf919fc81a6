"""
Unit tests for the PostgreSQL repository.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import AccessLayerException, ItemNotFoundError, ValidationError
from service_directory.app.domain.models import ItemFilter
from service_directory.app.persistence.postgres import PostgresIndexItemRepository, build_where


class TestBuildWhere:
    """Test cases for build_where."""

    def test_no_filters(self):
        assert build_where(ItemFilter()) == ("", [])

    def test_all_filters(self):
        where, params = build_where(ItemFilter(campus="CSM", letter="A", search="lib"))
        assert where == " WHERE campus = $1 AND letter = $2 AND title ILIKE $3"
        assert params == ["CSM", "A", "%lib%"]

    def test_search_wildcards_escaped(self):
        _, params = build_where(ItemFilter(search="100%_done"))
        assert params == ["%100\\%\\_done%"]


class TestPostgresIndexItemRepository:
    """Test cases for PostgresIndexItemRepository."""

    @pytest.fixture
    def conn(self):
        return AsyncMock()

    @pytest.fixture
    def repo(self, conn):
        repository = PostgresIndexItemRepository(
            "postgres://test",
            circuit_breaker=CircuitBreaker(failure_threshold=2, recovery_timeout=60.0, name="test_db"),
        )
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = conn
        pool.close = AsyncMock()
        repository.pool = pool
        return repository

    @pytest.mark.asyncio
    async def test_find_many_orders_by_letter_then_title(self, repo, conn):
        conn.fetch.return_value = [{"id": 1, "title": "Library", "url": "u", "letter": "L", "campus": "CSM"}]

        rows = await repo.find_many(ItemFilter(campus="CSM"))

        assert rows == [{"id": 1, "title": "Library", "url": "u", "letter": "L", "campus": "CSM"}]
        query, param = conn.fetch.await_args.args
        assert "WHERE campus = $1" in query
        assert query.endswith("ORDER BY letter ASC, title ASC")
        assert param == "CSM"

    @pytest.mark.asyncio
    async def test_count(self, repo, conn):
        conn.fetchval.return_value = 7
        assert await repo.count(ItemFilter(letter="A")) == 7

    @pytest.mark.asyncio
    async def test_get_missing(self, repo, conn):
        conn.fetchrow.return_value = None
        assert await repo.get(42) is None

    @pytest.mark.asyncio
    async def test_create(self, repo, conn):
        conn.fetchrow.return_value = {"id": 5, "title": "Library", "url": "u", "letter": "L", "campus": "CSM"}

        created = await repo.create({"title": "Library", "url": "u", "letter": "L", "campus": "CSM"})

        assert created["id"] == 5
        assert conn.fetchrow.await_args.args[1:] == ("Library", "u", "L", "CSM")

    @pytest.mark.asyncio
    async def test_update_builds_assignments(self, repo, conn):
        conn.fetchrow.return_value = {"id": 5, "title": "Library", "url": "u", "letter": "L", "campus": "Skyline"}

        await repo.update(5, {"campus": "Skyline", "id": 99})

        query = conn.fetchrow.await_args.args[0]
        assert "campus = $2" in query
        assert "id = $" not in query.split("WHERE")[0]
        assert conn.fetchrow.await_args.args[1:] == (5, "Skyline")

    @pytest.mark.asyncio
    async def test_update_missing_row(self, repo, conn):
        conn.fetchrow.return_value = None
        with pytest.raises(ItemNotFoundError):
            await repo.update(5, {"title": "x"})

    @pytest.mark.asyncio
    async def test_update_without_changes(self, repo):
        with pytest.raises(ValidationError):
            await repo.update(5, {"unknown": "x"})

    @pytest.mark.asyncio
    async def test_delete_missing_row(self, repo, conn):
        conn.fetchrow.return_value = None
        with pytest.raises(ItemNotFoundError):
            await repo.delete(5)

    @pytest.mark.asyncio
    async def test_errors_propagate_and_trip_breaker(self, repo, conn):
        conn.fetch.side_effect = ConnectionError("db down")

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await repo.find_many(ItemFilter())

        with pytest.raises(CircuitBreakerOpenException):
            await repo.find_many(ItemFilter())

    @pytest.mark.asyncio
    async def test_not_started(self):
        repository = PostgresIndexItemRepository("postgres://test")
        with pytest.raises(AccessLayerException):
            await repository.get(1)

    @pytest.mark.asyncio
    async def test_health_check(self, repo, conn):
        conn.fetchval.return_value = 1
        assert await repo.health_check() is True
        conn.fetchval.side_effect = ConnectionError("down")
        assert await repo.health_check() is False

    @pytest.mark.asyncio
    async def test_start_failure(self):
        repository = PostgresIndexItemRepository("postgres://test")
        with patch("asyncpg.create_pool", new_callable=AsyncMock) as create_pool:
            create_pool.side_effect = OSError("refused")
            with pytest.raises(AccessLayerException) as exc_info:
                await repository.start()
        assert exc_info.value.code == "POSTGRES_START_FAILED"

    @pytest.mark.asyncio
    async def test_stop_closes_pool(self, repo):
        pool = repo.pool
        await repo.stop()
        pool.close.assert_awaited_once()
        assert repo.pool is None
