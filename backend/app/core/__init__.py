"""
Core package — cross-cutting concerns.

Modules:
    config        — environment variables & settings
    logging_config — structured JSON / pretty logging, request context
    errors        — exception hierarchy & handlers
    middleware    — request logging and correlation IDs
    health        — health check aggregation
    database      — async PostgreSQL engine & session factory
    cache         — Redis client
    single_flight — per-key coalescing of concurrent async calls
"""
