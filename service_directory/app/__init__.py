"""
Directory Service package for the Site Index.

The directory service serves the public A-Z listing of district web pages
and keeps its caches coherent with admin writes:
- Read path: memory tier -> Redis tier -> PostgreSQL, with TTL tiers
- Write path: commit to PostgreSQL, then fan out cache invalidation
- Admin: cache statistics, pattern invalidation and cache warming

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.caching: Cache tiers, key building, invalidation and statistics.
- app.persistence: PostgreSQL repository for index items.
- app.domain: Filter and request/response models.
"""
