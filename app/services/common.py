"""Shared Supabase data access helpers."""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from postgrest import APIError

from app.config import settings
from app.utils.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    VersionConflictError,
)
from supabase import Client

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
INVALID_TEXT_REPRESENTATION = "22P02"
# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_CODES = frozenset({"40001", "40P01", "55P03"})

Row = dict[str, Any]


def is_unique_violation(exc: APIError) -> bool:
    """Return True when PostgREST reports a unique constraint violation."""
    if str(getattr(exc, "code", "")) == UNIQUE_VIOLATION:
        return True
    message = str(getattr(exc, "message", "")).lower()
    return "duplicate" in message or "unique" in message


def is_uuid(value: object) -> bool:
    """Return True when ``value`` parses as a UUID."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def where(query, filters: dict[str, Any] | None):
    """Apply equality filters to a PostgREST query builder."""
    for key, value in (filters or {}).items():
        query = query.eq(key, value)
    return query


class SupabaseService:
    """Table helpers over a Supabase client with uniform error handling."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def execute(self, query, label: str = "query") -> list[Row]:
        """Run a query and return its rows.

        Unique violations surface as ``ConflictError`` carrying the database
        message. Lock and serialization failures become the retryable
        ``VersionConflictError``; malformed ids become ``InvalidInputError``.
        Other API errors are logged and re-raised for the generic 500 handler.
        """
        started = time.perf_counter()
        try:
            response = query.execute()
        except APIError as exc:
            if is_unique_violation(exc):
                raise ConflictError(str(getattr(exc, "message", None) or "Duplicate record")) from exc
            code = str(getattr(exc, "code", ""))
            if code in RETRYABLE_CODES:
                logger.info("Supabase %s hit contention (%s)", label, code)
                raise VersionConflictError("Vote is busy with a concurrent write") from exc
            if code == INVALID_TEXT_REPRESENTATION:
                raise InvalidInputError("Malformed identifier") from exc
            logger.error("Supabase %s failed: %s", label, getattr(exc, "message", exc))
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        threshold_ms = settings.slow_query_log_threshold_ms
        if threshold_ms > 0 and elapsed_ms >= threshold_ms:
            logger.warning("Slow Supabase %s %.1fms", label, elapsed_ms)

        data = response.data
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    def select_one(self, table: str, filters: dict[str, Any], not_found_label: str) -> Row:
        """Return the single matching row or raise NotFoundError."""
        query = where(self.client.table(table).select("*"), filters).limit(1)
        rows = self.execute(query, label=f"select {table}")
        if not rows:
            raise NotFoundError(not_found_label)
        return rows[0]

    def select_many(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        columns: str = "*",
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        """Select rows matching equality filters."""
        query = where(self.client.table(table).select(columns), filters)
        if order_by:
            query = query.order(order_by, desc=descending)
        if limit:
            query = query.limit(limit)
        return self.execute(query, label=f"select {table}")

    def select_in(
        self,
        table: str,
        column: str,
        values: Iterable[str],
        columns: str = "*",
        order_by: str | None = None,
    ) -> list[Row]:
        """Select rows whose ``column`` is one of ``values``."""
        ids = sorted({str(value) for value in values})
        if not ids:
            return []
        query = self.client.table(table).select(columns).in_(column, ids)
        if order_by:
            query = query.order(order_by)
        return self.execute(query, label=f"select {table}")

    def insert_many(self, table: str, payloads: list[Row]) -> list[Row]:
        if not payloads:
            return []
        return self.execute(self.client.table(table).insert(payloads), label=f"insert {table}")

    def update(self, table: str, filters: dict[str, Any], payload: Row) -> list[Row]:
        """Update rows matching every filter; an empty result means nothing matched."""
        query = where(self.client.table(table).update(payload), filters)
        return self.execute(query, label=f"update {table}")

    def delete(self, table: str, filters: dict[str, Any]) -> list[Row]:
        query = where(self.client.table(table).delete(), filters)
        return self.execute(query, label=f"delete {table}")

    def rpc(self, function: str, params: dict[str, Any]) -> list[Row]:
        """Call a Postgres function and return its result rows."""
        return self.execute(self.client.rpc(function, params), label=f"rpc {function}")


def group_by(rows: list[Row], key: str) -> dict[str, list[Row]]:
    """Group rows by the string value of ``key``."""
    grouped: dict[str, list[Row]] = defaultdict(list)
    for row in rows:
        grouped[str(row[key])].append(row)
    return grouped
