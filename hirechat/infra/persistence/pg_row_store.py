# =============================================================================
# File: hirechat/infra/persistence/pg_row_store.py
# Description: asyncpg implementation of RowStorePort
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from importlib import resources
from typing import Any, Dict, List, Optional, Sequence

import asyncpg
from asyncpg.exceptions import InterfaceError, PostgresError

from hirechat.chat.value_objects import RowFilter
from hirechat.common.enums.enums import Table
from hirechat.common.exceptions.exceptions import RowStoreError
from hirechat.config.pg_config import PostgresConfig, get_pg_config
from hirechat.infra.persistence.sql_filters import (
    affected_rows,
    build_count,
    build_delete,
    build_insert,
    build_select,
    build_update,
)

log = logging.getLogger("hirechat.infra.pg_row_store")

_DRIVER_ERRORS = (PostgresError, InterfaceError, OSError, asyncio.TimeoutError)


def load_schema() -> str:
    """Bundled schema.sql (tables, indexes, change trigger)."""
    return resources.files("hirechat.infra.persistence").joinpath("schema.sql").read_text(encoding="utf-8")


async def init_connection(conn: asyncpg.Connection) -> None:
    """JSONB codec for automatic list/dict <-> JSONB conversion"""
    await conn.set_type_codec(
        'jsonb',
        encoder=json.dumps,
        decoder=json.loads,
        schema='pg_catalog'
    )


def normalize_row(record: Any) -> Dict[str, Any]:
    """asyncpg Record -> dict with UUIDs rendered as strings."""
    row = dict(record)
    for column, value in row.items():
        if isinstance(value, uuid.UUID):
            row[column] = str(value)
    return row


class PostgresRowStore:
    """
    RowStorePort over an asyncpg pool.

    Usage:
        store = await PostgresRowStore.connect()
        rows = await store.select(Table.MESSAGES, [RowFilter.eq("project_id", pid)])
        await store.close()
    """

    def __init__(self, pool: asyncpg.Pool, command_timeout: Optional[float] = None):
        self._pool = pool
        self._timeout = command_timeout

    @classmethod
    async def connect(cls, config: Optional[PostgresConfig] = None) -> 'PostgresRowStore':
        config = config or get_pg_config()
        dsn = config.dsn.get_secret_value()
        log.info(f"Initializing PostgreSQL pool (hidden DSN): {dsn.split('@')[-1]}")
        try:
            pool = await asyncpg.create_pool(
                dsn=dsn,
                min_size=config.pool_min_size,
                max_size=config.pool_max_size,
                command_timeout=config.command_timeout,
                init=init_connection,
            )
        except _DRIVER_ERRORS as error:
            raise RowStoreError(f"PostgreSQL pool init error: {error}") from error
        log.info(f"PostgreSQL pool ready. Min/Max size: {config.pool_min_size}/{config.pool_max_size}")
        return cls(pool, config.command_timeout)

    async def close(self) -> None:
        await self._pool.close()

    async def apply_schema(self, sql: Optional[str] = None) -> None:
        """Execute a schema script (the bundled schema.sql by default)."""
        await self._execute("apply_schema", sql or load_schema())

    async def select(
        self,
        table: Table,
        filters: Sequence[RowFilter] = (),
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        sql, params = build_select(table, filters, columns, order_by, descending, limit)
        try:
            records = await self._pool.fetch(sql, *params, timeout=self._timeout)
        except _DRIVER_ERRORS as error:
            raise RowStoreError(f"select on {table} failed: {error}") from error
        return [normalize_row(record) for record in records]

    async def count(self, table: Table, filters: Sequence[RowFilter] = ()) -> int:
        sql, params = build_count(table, filters)
        try:
            return int(await self._pool.fetchval(sql, *params, timeout=self._timeout))
        except _DRIVER_ERRORS as error:
            raise RowStoreError(f"count on {table} failed: {error}") from error

    async def insert(self, table: Table, values: Dict[str, Any]) -> Dict[str, Any]:
        sql, params = build_insert(table, values)
        try:
            record = await self._pool.fetchrow(sql, *params, timeout=self._timeout)
        except _DRIVER_ERRORS as error:
            raise RowStoreError(f"insert into {table} failed: {error}") from error
        return normalize_row(record)

    async def update(self, table: Table, values: Dict[str, Any], filters: Sequence[RowFilter]) -> int:
        sql, params = build_update(table, values, filters)
        return affected_rows(await self._execute(f"update {table}", sql, *params))

    async def delete(self, table: Table, filters: Sequence[RowFilter]) -> int:
        sql, params = build_delete(table, filters)
        return affected_rows(await self._execute(f"delete from {table}", sql, *params))

    async def _execute(self, operation: str, sql: str, *params: Any) -> str:
        try:
            return await self._pool.execute(sql, *params, timeout=self._timeout)
        except _DRIVER_ERRORS as error:
            raise RowStoreError(f"{operation} failed: {error}") from error
