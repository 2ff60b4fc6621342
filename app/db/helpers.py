# app/db/helpers.py
"""
Database helper functions for common patterns.
Reduces boilerplate in the repository layer.

Every helper takes the pool explicitly as its first argument so repositories
stay bound to the pool they were constructed with.
"""

import asyncio
import functools
from typing import TYPE_CHECKING, Any

import psycopg

from app.infrastructure.observability.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from app.db.pool import DatabasePoolManager

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def fetch_one(
    db: "DatabasePoolManager",
    query: str,
    params: tuple = (),
    *,
    connection: psycopg.AsyncConnection | None = None,
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        db: Pool manager to borrow a connection from
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection (e.g. inside a transaction)

    Returns:
        Dict with row data or None if no results
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

        async with db.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e


async def fetch_all(
    db: "DatabasePoolManager",
    query: str,
    params: tuple = (),
    *,
    connection: psycopg.AsyncConnection | None = None,
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

        async with db.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_all") from e


async def execute_query(
    db: "DatabasePoolManager",
    query: str,
    params: tuple = (),
    *,
    connection: psycopg.AsyncConnection | None = None,
) -> int:
    """
    Execute query and return number of affected rows.
    """
    try:
        if connection:
            cursor = await connection.execute(query, params)
            return cursor.rowcount

        async with db.connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="execute") from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Decorator to retry database operations on temporary failures.

    Only DatabaseError wrapping psycopg.OperationalError is retried; anything
    else propagates on the first attempt.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries (exponential backoff)
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except DatabaseError as e:
                    transient = isinstance(e.__cause__, psycopg.OperationalError)
                    if not transient or attempt >= max_retries:
                        if transient:
                            logger.error(
                                "Database operation failed after all retries",
                                operation=func.__name__,
                                attempts=attempt + 1,
                                error=str(e),
                            )
                            e.recoverable = False
                        raise

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
