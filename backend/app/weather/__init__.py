"""
weather — cached daily weather per saved location.

Sub-modules:
    models     — readings, cache entries, time windows
    freshness  — TTL policy (FRESH / STALE)
    provider   — Tomorrow.io client and Retry-After parsing
    store      — in-memory, PostgreSQL and Redis cache backends
    service    — get-or-refresh with rate-limit stale fallback
    tables     — ORM tables
"""
