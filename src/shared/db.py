"""
Database helpers — connection pool management and health checks.

Uses ``asyncpg`` for async PostgreSQL access.  The updater only ever reads
from the billing database; its role (``ppp_updater``) needs SELECT on the
service table and nothing else.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import asyncpg

logger = logging.getLogger("shared.db")


# ---------------------------------------------------------------------------
# Connection pool
# ---------------------------------------------------------------------------


async def get_connection_pool(config: Dict[str, Any]) -> asyncpg.Pool:
    """Create and return an ``asyncpg`` connection pool.

    Args:
        config: Database configuration dict with keys:
                ``host``, ``port``, ``database``, ``user``, ``password``,
                and optionally ``min_size``, ``max_size``.

    Returns:
        An ``asyncpg.Pool`` instance.

    Raises:
        asyncpg.PostgresError: If the connection cannot be established.
    """
    pool = await asyncpg.create_pool(
        host=config.get("host"),
        port=config.get("port", 5432),
        database=config["database"],
        user=config["user"],
        password=config.get("password"),
        min_size=config.get("min_size", 1),
        max_size=config.get("max_size", 4),
    )
    logger.info(
        "Database pool created: %s@%s/%s",
        config["user"],
        config.get("host") or "localhost",
        config["database"],
    )
    return pool


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


async def health_check(pool: asyncpg.Pool) -> bool:
    """Verify the database is reachable and responsive.

    Returns:
        ``True`` if a simple query succeeds, ``False`` otherwise.
    """
    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1;")
            return result == 1
    except Exception:
        logger.exception("Database health check failed")
        return False
