"""
Directory caching package.

Two-tier read-through cache for directory listings: a bounded in-process
tier in front of Redis, with deterministic keys, TTL tiers by query
popularity and prefix-based invalidation on writes. Cache failures never
fail a request; only repository errors reach the caller.
"""
