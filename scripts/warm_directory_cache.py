#!/usr/bin/env python3
"""
Warm the directory listing caches from the command line.

Mirrors the ``POST /admin/cache/warm`` endpoint but can be run from a
workstation or a deploy job, e.g. right after a bulk import. It loads the
warm plan and reads each planned listing through the cache so Redis holds
it for every service instance.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

from service_directory.app.caching.cache_manager import DirectoryCacheManager
from service_directory.app.caching.warm_plan import WarmPlanLoader
from service_directory.app.persistence.postgres import PostgresIndexItemRepository
from shared.config import get_directory_config
from shared.logging import configure_logging


async def warm(
    *,
    redis_url: str,
    postgres_dsn: str,
    warm_plan_path: Optional[Path],
    concurrency: int,
) -> dict:
    """Execute cache warming and return the summary."""
    config = get_directory_config(
        redis_url=redis_url,
        postgres_dsn=postgres_dsn,
        warm_concurrency=concurrency,
    )
    repository = PostgresIndexItemRepository(config.postgres_dsn)
    await repository.start()
    manager = DirectoryCacheManager.from_config(config, repository)
    if warm_plan_path:
        manager.warm_plan_loader = WarmPlanLoader(warm_plan_path)

    try:
        return await manager.warm_cache()
    finally:
        await manager.stop()
        await repository.stop()


def plan_only(warm_plan_path: Optional[Path]) -> dict:
    """Describe the planned listings without touching Redis or the database."""
    filters = WarmPlanLoader(warm_plan_path).plan.filters()
    return {
        "planned": len(filters),
        "entries": [f.as_dict() for f in filters],
    }


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm Redis caches for Site Index listings.")
    parser.add_argument("--redis-url", default=os.getenv("SITEINDEX_REDIS_URL", "redis://localhost:6379/0"), help="Redis connection URL")
    parser.add_argument("--postgres-dsn", default=os.getenv("SITEINDEX_POSTGRES_DSN", "postgres://localhost:5432/siteindex"), help="PostgreSQL DSN")
    parser.add_argument("--warm-plan-file", type=Path, default=None, help="Path to warm plan JSON override")
    parser.add_argument("--concurrency", type=int, default=int(os.getenv("SITEINDEX_WARM_CONCURRENCY", 10)), help="Concurrent warm operations")
    parser.add_argument("--dry-run", action="store_true", help="Print the planned listings without warming")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    configure_logging("directory-cache-warm", os.getenv("SITEINDEX_LOG_LEVEL", "info"))

    if args.dry_run:
        summary = plan_only(args.warm_plan_file)
        print("[cache-warm] DRY RUN - no Redis writes executed")
    else:
        try:
            summary = asyncio.run(
                warm(
                    redis_url=args.redis_url,
                    postgres_dsn=args.postgres_dsn,
                    warm_plan_path=args.warm_plan_file,
                    concurrency=args.concurrency,
                )
            )
        except KeyboardInterrupt:
            return 130
        except Exception as exc:  # pragma: no cover - CLI surface
            print(f"[cache-warm] failed: {exc}", file=sys.stderr)
            return 1

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0 if not summary.get("errors") else 2


if __name__ == "__main__":
    raise SystemExit(main())
