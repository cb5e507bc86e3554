# =============================================================================
# File: hirechat/infra/persistence/sql_filters.py
# Description: RowFilter -> parameterised PostgreSQL WHERE clause compiler
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from hirechat.chat.enums import FilterOp
from hirechat.chat.exceptions import UnsupportedFilterError
from hirechat.chat.value_objects import RowFilter
from hirechat.common.enums.enums import Table

# Identifiers cannot be parameterised; only these ever reach the SQL text.
TABLE_COLUMNS: Dict[Table, FrozenSet[str]] = {
    Table.MESSAGES: frozenset({
        "id", "project_id", "sender_id", "receiver_id", "content", "file_url",
        "file_type", "is_read", "reactions", "created_at",
    }),
    Table.INVITATIONS: frozenset({
        "id", "project_id", "seeker_id", "manager_id", "status",
        "manager_last_read_at", "seeker_last_read_at", "created_at",
    }),
    Table.APPLICATIONS: frozenset({"id", "project_id", "user_id", "status", "created_at"}),
    Table.PROJECTS: frozenset({"id", "title", "manager_id", "created_at"}),
    Table.PROFILES: frozenset({"id", "full_name", "avatar_url", "role"}),
}

_SQL_OPERATORS = {
    FilterOp.EQ: "=",
    FilterOp.NEQ: "<>",
    FilterOp.GT: ">",
    FilterOp.GTE: ">=",
    FilterOp.LT: "<",
    FilterOp.LTE: "<=",
}


def table_name(table: Table) -> str:
    table = Table(table)
    if table not in TABLE_COLUMNS:
        raise UnsupportedFilterError(f"Unknown table: {table}")
    return table.value


def check_columns(table: Table, columns: Iterable[str]) -> List[str]:
    allowed = TABLE_COLUMNS[Table(table)]
    checked = []
    for column in columns:
        if column not in allowed:
            raise UnsupportedFilterError(f"Unknown column {table}.{column}")
        checked.append(column)
    return checked


def compile_where(
        table: Table,
        filters: Sequence[RowFilter],
        start: int = 1,
) -> Tuple[str, List[Any]]:
    """
    Compile an AND of row filters.

    Args:
        table: Table the filters apply to (column whitelist)
        filters: Predicates
        start: Number of the first positional parameter

    Returns:
        (" WHERE ..." or "", parameter list)

    Raises:
        UnsupportedFilterError: unknown column or operator
    """
    clauses: List[str] = []
    params: List[Any] = []
    index = start

    for row_filter in filters:
        column = check_columns(table, [row_filter.column])[0]
        op = FilterOp(row_filter.op)

        if op == FilterOp.IN:
            values = list(row_filter.value)
            if not values:
                clauses.append("FALSE")
                continue
            clauses.append(f"{column} = ANY(${index})")
            params.append(values)
            index += 1
        elif row_filter.value is None:
            if op == FilterOp.EQ:
                clauses.append(f"{column} IS NULL")
            elif op == FilterOp.NEQ:
                clauses.append(f"{column} IS NOT NULL")
            else:
                raise UnsupportedFilterError(f"Operator {op.value} cannot compare with NULL")
        else:
            sql_op = _SQL_OPERATORS.get(op)
            if sql_op is None:
                raise UnsupportedFilterError(f"Unsupported operator: {op}")
            clauses.append(f"{column} {sql_op} ${index}")
            params.append(row_filter.value)
            index += 1

    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def build_select(
        table: Table,
        filters: Sequence[RowFilter] = (),
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
) -> Tuple[str, List[Any]]:
    name = table_name(table)
    projection = ", ".join(check_columns(table, columns)) if columns else "*"
    where, params = compile_where(table, filters)
    sql = f"SELECT {projection} FROM {name}{where}"
    if order_by:
        order_column = check_columns(table, [order_by])[0]
        sql += f" ORDER BY {order_column} {'DESC' if descending else 'ASC'}"
    if limit is not None:
        params.append(int(limit))
        sql += f" LIMIT ${len(params)}"
    return sql, params


def build_count(table: Table, filters: Sequence[RowFilter] = ()) -> Tuple[str, List[Any]]:
    where, params = compile_where(table, filters)
    return f"SELECT count(*) FROM {table_name(table)}{where}", params


def build_insert(table: Table, values: Dict[str, Any]) -> Tuple[str, List[Any]]:
    columns = check_columns(table, values.keys())
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    sql = f"INSERT INTO {table_name(table)} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
    return sql, [values[column] for column in columns]


def build_update(table: Table, values: Dict[str, Any], filters: Sequence[RowFilter]) -> Tuple[str, List[Any]]:
    columns = check_columns(table, values.keys())
    if not columns:
        raise UnsupportedFilterError("UPDATE without columns")
    assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=1))
    where, params = compile_where(table, filters, start=len(columns) + 1)
    return f"UPDATE {table_name(table)} SET {assignments}{where}", [values[c] for c in columns] + params


def build_delete(table: Table, filters: Sequence[RowFilter]) -> Tuple[str, List[Any]]:
    where, params = compile_where(table, filters)
    return f"DELETE FROM {table_name(table)}{where}", params


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0
