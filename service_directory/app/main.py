"""
Directory service: Site Index listings behind a two-tier cache.
"""

import time
from typing import Any, Dict, Optional

from fastapi import Header, Query, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreakerOpenException
from shared.config import DirectoryConfig, get_directory_config
from shared.errors import ItemNotFoundError, ValidationError
from shared.logging import set_actor

from .caching.cache_manager import DirectoryCacheManager
from .domain.models import CacheInvalidateRequest, IndexItem, IndexItemCreate, IndexItemUpdate, ItemFilter
from .persistence.postgres import PostgresIndexItemRepository
from .persistence.repository import IndexItemRepository


class DirectoryService(BaseService):
    """Directory service implementation."""

    def __init__(
        self,
        config: Optional[DirectoryConfig] = None,
        *,
        repository: Optional[IndexItemRepository] = None,
        cache_manager: Optional[DirectoryCacheManager] = None,
    ):
        config = config or get_directory_config()
        super().__init__("directory", config.port, config)

        self.repository = repository or PostgresIndexItemRepository(config.postgres_dsn)
        self.cache_manager = cache_manager or DirectoryCacheManager.from_config(
            config,
            self.repository,
            metrics=self.metrics,
        )

        @self.app.on_event("startup")
        async def _startup():
            if hasattr(self.repository, "start"):
                await self.repository.start()
            await self.cache_manager.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.cache_manager.stop()
            if hasattr(self.repository, "stop"):
                await self.repository.stop()

        @self.app.exception_handler(CircuitBreakerOpenException)
        async def origin_unavailable_handler(request, exc: CircuitBreakerOpenException):
            self.logger.warning("Origin circuit open", path=request.url.path, error=str(exc))
            self.metrics.record_error("ORIGIN_UNAVAILABLE")
            return JSONResponse(
                status_code=503,
                content={
                    "code": "ORIGIN_UNAVAILABLE",
                    "message": "Directory data is temporarily unavailable",
                    "details": {},
                }
            )

        self._setup_directory_routes()
        self._setup_admin_routes()

        self.app.state.directory_service = self

    def _setup_directory_routes(self):
        """Set up listing and mutation routes."""

        @self.app.get("/api/v2/index-items")
        async def list_index_items(
            response: Response,
            campus: Optional[str] = Query(None, max_length=100),
            letter: Optional[str] = Query(None, max_length=1),
            search: Optional[str] = Query(None, max_length=255),
        ):
            start = time.perf_counter()
            result = await self.cache_manager.list_items(ItemFilter(campus=campus, letter=letter, search=search))

            if result.source == "bypass":
                response.headers["X-Cache"] = "BYPASS"
            else:
                response.headers["X-Cache"] = "HIT" if result.cache_hit else "MISS"
            response.headers["X-Response-Time"] = f"{(time.perf_counter() - start) * 1000:.2f}ms"

            return {
                "items": result.rows,
                "count": len(result.rows),
                "cache_hit": result.cache_hit,
                "source": result.source,
                "timing_ms": result.timing_ms,
            }

        @self.app.get("/api/v2/index-items/count")
        async def count_index_items(
            campus: Optional[str] = Query(None, max_length=100),
            letter: Optional[str] = Query(None, max_length=1),
            search: Optional[str] = Query(None, max_length=255),
        ):
            count = await self.cache_manager.count_items(ItemFilter(campus=campus, letter=letter, search=search))
            return {"count": count}

        @self.app.get("/api/v2/index-items/{item_id}", response_model=IndexItem)
        async def get_index_item(item_id: int):
            item = await self.repository.get(item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            return item

        @self.app.post("/api/v2/index-items", status_code=201, response_model=IndexItem)
        async def create_index_item(payload: IndexItemCreate):
            created = await self.repository.create(payload.model_dump())
            self.cache_manager.on_item_written(new_row=created)
            return created

        @self.app.patch("/api/v2/index-items/{item_id}", response_model=IndexItem)
        async def update_index_item(item_id: int, payload: IndexItemUpdate):
            changes = payload.changes()
            if not changes:
                raise ValidationError("At least one field must be supplied", {"item_id": item_id})

            existing = await self.repository.get(item_id)
            if existing is None:
                raise ItemNotFoundError(item_id)

            updated = await self.repository.update(item_id, changes)
            self.cache_manager.on_item_written(old_row=existing, new_row=updated)
            return updated

        @self.app.delete("/api/v2/index-items/{item_id}")
        async def delete_index_item(item_id: int):
            deleted = await self.repository.delete(item_id)
            self.cache_manager.on_item_written(old_row=deleted)
            return {"deleted": deleted}

    def _setup_admin_routes(self):
        """Set up cache administration routes."""

        @self.app.get("/admin/cache")
        async def cache_stats():
            return await self.cache_manager.get_cache_stats()

        @self.app.post("/admin/cache/invalidate")
        async def invalidate_cache(payload: CacheInvalidateRequest, x_actor: Optional[str] = Header(None)):
            set_actor(x_actor)
            if payload.pattern:
                self.logger.info("Admin cache invalidation", pattern=payload.pattern)
                return await self.cache_manager.invalidate_by_pattern(payload.pattern)

            keys = list(payload.keys or [])
            if payload.key:
                keys.append(payload.key)
            if not keys:
                raise ValidationError("Provide key, keys or pattern")
            self.logger.info("Admin cache invalidation", keys=len(keys))
            return await self.cache_manager.invalidate_keys(keys)

        @self.app.post("/admin/cache/warm")
        async def warm_cache(x_actor: Optional[str] = Header(None)):
            set_actor(x_actor)
            summary = await self.cache_manager.warm_cache()
            if summary["status"] == "in_progress":
                return JSONResponse(status_code=409, content=summary)
            return summary

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check directory dependencies."""
        dependencies: Dict[str, Any] = {}

        cache_health = await self.cache_manager.health_check()
        dependencies["redis"] = "ok" if cache_health["remote_cache"] else "error"

        if hasattr(self.repository, "health_check"):
            dependencies["postgres"] = "ok" if await self.repository.health_check() else "error"

        return dependencies


def create_app():
    """Create FastAPI application."""
    service = DirectoryService()
    return service.app


if __name__ == "__main__":
    service = DirectoryService()
    service.run()
