"""
Query Builder

Translates entity operations into parameterized SQL.
All values are passed as asyncpg positional parameters ($1, $2, ...) and every
identifier is quoted; column names are checked against the entity declaration
before they reach this module.

Soft-deleted rows (deleted_at set) are excluded from every read, and deleting
a soft-delete entity stamps deleted_at instead of removing the row.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from catalog.entities import EntityDefinition

from .filters import FilterClause, escape_like

logger = logging.getLogger(__name__)

SOFT_DELETE_COLUMN = "deleted_at"

VALUE_OPERATORS = {
    "equals": "=",
    "not_equals": "!=",
    "greater_than": ">",
    "less_than": "<",
}


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _normalize(sql: str) -> str:
    return " ".join(sql.split())


class QueryBuilder:
    """Builds parameterized SQL for entity operations."""

    def __init__(self, schema: Optional[str] = None):
        self.schema = schema

    def table(self, definition: EntityDefinition) -> str:
        if self.schema:
            return f"{quote_ident(self.schema)}.{quote_ident(definition.table)}"
        return quote_ident(definition.table)

    def _soft_delete(self, definition: EntityDefinition) -> List[str]:
        if definition.soft_deletes:
            return [f"{quote_ident(SOFT_DELETE_COLUMN)} IS NULL"]
        return []

    def _build_single_filter(self, clause: FilterClause, params: list) -> List[str]:
        """Build the SQL condition for one clause."""
        col = quote_ident(clause.field)
        op = clause.operator

        if op in VALUE_OPERATORS:
            params.append(clause.value)
            return [f"{col} {VALUE_OPERATORS[op]} ${len(params)}"]

        if op == "like":
            params.append(f"%{escape_like(clause.value)}%")
            return [f"CAST({col} AS TEXT) ILIKE ${len(params)}"]

        if op == "in":
            params.append(list(clause.value))
            return [f"{col} = ANY(${len(params)})"]

        if op == "not_in":
            params.append(list(clause.value))
            return [f"{col} != ALL(${len(params)})"]

        if op in ("between", "date_between"):
            low, high = clause.value
            params.append(low)
            low_ref = f"${len(params)}"
            params.append(high)
            high_ref = f"${len(params)}"
            target = f"{col}::date" if op == "date_between" else col
            return [f"{target} BETWEEN {low_ref} AND {high_ref}"]

        if op == "is_null":
            return [f"{col} IS NULL"]

        if op == "is_not_null":
            return [f"{col} IS NOT NULL"]

        logger.warning(f"Unsupported filter operator '{op}' reached the builder")
        return []

    def _where(self, definition: EntityDefinition, clauses: List[FilterClause], params: list) -> str:
        conditions = self._soft_delete(definition)
        for clause in clauses:
            conditions.extend(self._build_single_filter(clause, params))
        return f"WHERE {' AND '.join(conditions)}" if conditions else ""

    def _build_order(self, definition: EntityDefinition, order_by: Optional[str], order_direction: str) -> str:
        direction = "DESC" if (order_direction or "").lower() == "desc" else "ASC"
        if order_by and order_by in definition.filterable_columns:
            if order_by == definition.primary_key:
                return f"ORDER BY {quote_ident(order_by)} {direction}"
            return f"ORDER BY {quote_ident(order_by)} {direction}, {quote_ident(definition.primary_key)} ASC"
        if order_by:
            logger.warning(f"Ignoring order_by on unknown field {definition.name}.{order_by}")
        return f"ORDER BY {quote_ident(definition.primary_key)} ASC"

    def build_select(
        self,
        definition: EntityDefinition,
        clauses: Optional[List[FilterClause]] = None,
        order_by: Optional[str] = None,
        order_direction: str = "asc",
        limit: int = 15,
        offset: int = 0,
    ) -> Tuple[str, list]:
        """
        Build a SELECT for one page of an entity's records.
        Returns (sql, params).
        """
        params: list = []
        where_clause = self._where(definition, clauses or [], params)
        order_clause = self._build_order(definition, order_by, order_direction)

        params.append(limit)
        limit_clause = f"LIMIT ${len(params)}"
        params.append(offset)
        offset_clause = f"OFFSET ${len(params)}"

        sql = f"SELECT * FROM {self.table(definition)} {where_clause} {order_clause} {limit_clause} {offset_clause}"
        return _normalize(sql), params

    def build_count(
        self,
        definition: EntityDefinition,
        clauses: Optional[List[FilterClause]] = None,
    ) -> Tuple[str, list]:
        """COUNT over the same filters, no pagination."""
        params: list = []
        where_clause = self._where(definition, clauses or [], params)
        sql = f"SELECT COUNT(*) AS total FROM {self.table(definition)} {where_clause}"
        return _normalize(sql), params

    def build_search(
        self,
        definition: EntityDefinition,
        query: str,
        fields: List[str],
        limit: int,
    ) -> Tuple[str, list]:
        """Case-insensitive substring match OR-ed across fields."""
        params: list = [f"%{escape_like(query)}%"]
        matches = " OR ".join(f"CAST({quote_ident(f)} AS TEXT) ILIKE $1" for f in fields)
        conditions = [f"({matches})"] + self._soft_delete(definition)

        params.append(limit)
        sql = (
            f"SELECT * FROM {self.table(definition)} WHERE {' AND '.join(conditions)} "
            f"ORDER BY {quote_ident(definition.primary_key)} ASC LIMIT ${len(params)}"
        )
        return _normalize(sql), params

    def build_find(self, definition: EntityDefinition, record_id: Any) -> Tuple[str, list]:
        conditions = [f"{quote_ident(definition.primary_key)} = $1"] + self._soft_delete(definition)
        sql = f"SELECT * FROM {self.table(definition)} WHERE {' AND '.join(conditions)}"
        return _normalize(sql), [record_id]

    def build_find_many(self, definition: EntityDefinition, column: str, values: List[Any]) -> Tuple[str, list]:
        """Batch lookup of rows whose column is one of values."""
        conditions = [f"{quote_ident(column)} = ANY($1)"] + self._soft_delete(definition)
        sql = f"SELECT * FROM {self.table(definition)} WHERE {' AND '.join(conditions)}"
        return _normalize(sql), [list(values)]

    def build_pivot_select(
        self,
        target: EntityDefinition,
        pivot_table: str,
        pivot_parent_key: str,
        pivot_target_key: str,
        parent_ids: List[Any],
    ) -> Tuple[str, list]:
        """Batch many-to-many lookup; each row carries its parent id as _pivot_parent."""
        t = quote_ident(target.table)
        p = quote_ident(pivot_table)
        pivot_ref = f"{quote_ident(self.schema)}.{p}" if self.schema else p
        conditions = [f"p.{quote_ident(pivot_parent_key)} = ANY($1)"]
        if target.soft_deletes:
            conditions.append(f"{t}.{quote_ident(SOFT_DELETE_COLUMN)} IS NULL")
        sql = (
            f"SELECT {t}.*, p.{quote_ident(pivot_parent_key)} AS _pivot_parent "
            f"FROM {self.table(target)} {t} "
            f"JOIN {pivot_ref} p ON p.{quote_ident(pivot_target_key)} = {t}.{quote_ident(target.primary_key)} "
            f"WHERE {' AND '.join(conditions)}"
        )
        return _normalize(sql), [list(parent_ids)]

    def build_insert(self, definition: EntityDefinition, values: Dict[str, Any]) -> Tuple[str, list]:
        columns: List[str] = []
        placeholders: List[str] = []
        params: list = []
        for column, value in values.items():
            params.append(value)
            columns.append(quote_ident(column))
            placeholders.append(f"${len(params)}")

        if definition.timestamps:
            for column in ("created_at", "updated_at"):
                if column not in values:
                    columns.append(quote_ident(column))
                    placeholders.append("NOW()")

        if not columns:
            return f"INSERT INTO {self.table(definition)} DEFAULT VALUES RETURNING *", []

        sql = (
            f"INSERT INTO {self.table(definition)} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING *"
        )
        return _normalize(sql), params

    def build_update(self, definition: EntityDefinition, record_id: Any, values: Dict[str, Any]) -> Tuple[str, list]:
        assignments: List[str] = []
        params: list = []
        for column, value in values.items():
            params.append(value)
            assignments.append(f"{quote_ident(column)} = ${len(params)}")

        if definition.timestamps and "updated_at" not in values:
            assignments.append(f"{quote_ident('updated_at')} = NOW()")

        params.append(record_id)
        conditions = [f"{quote_ident(definition.primary_key)} = ${len(params)}"] + self._soft_delete(definition)
        sql = (
            f"UPDATE {self.table(definition)} SET {', '.join(assignments)} "
            f"WHERE {' AND '.join(conditions)} RETURNING *"
        )
        return _normalize(sql), params

    def build_delete(self, definition: EntityDefinition, record_id: Any) -> Tuple[str, list]:
        pk = quote_ident(definition.primary_key)
        if definition.soft_deletes:
            sql = (
                f"UPDATE {self.table(definition)} SET {quote_ident(SOFT_DELETE_COLUMN)} = NOW() "
                f"WHERE {pk} = $1 AND {quote_ident(SOFT_DELETE_COLUMN)} IS NULL RETURNING {pk}"
            )
        else:
            sql = f"DELETE FROM {self.table(definition)} WHERE {pk} = $1 RETURNING {pk}"
        return _normalize(sql), [record_id]
