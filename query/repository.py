"""
Entity Repository

Default storage operations for one declared entity. Records come back as
plain dicts with hidden columns removed; values keep their database types
until the response is serialized.
"""

import logging
from typing import Any, Dict, List, Optional

from catalog.entities import EntityDefinition

from .builder import QueryBuilder
from .filters import FilterClause
from utils.serialization import record_to_dict

logger = logging.getLogger(__name__)


class EntityRepository:
    """Repository for a single entity's table."""

    def __init__(self, db, definition: EntityDefinition, builder: QueryBuilder):
        self.db = db
        self.definition = definition
        self.builder = builder

    def _row(self, record) -> Optional[dict]:
        if record is None:
            return None
        return record_to_dict(record, self.definition.hidden)

    async def list(
        self,
        clauses: List[FilterClause],
        limit: int,
        offset: int,
        order_by: Optional[str] = None,
        order_direction: str = "asc",
    ) -> List[dict]:
        sql, params = self.builder.build_select(
            self.definition, clauses, order_by=order_by,
            order_direction=order_direction, limit=limit, offset=offset,
        )
        logger.info(f"list {self.definition.name}: {sql[:120]}")
        return [self._row(r) for r in await self.db.fetch(sql, *params)]

    async def count(self, clauses: List[FilterClause]) -> int:
        sql, params = self.builder.build_count(self.definition, clauses)
        total = await self.db.fetchval(sql, *params)
        return int(total or 0)

    async def search(self, query: str, fields: List[str], limit: int) -> List[dict]:
        sql, params = self.builder.build_search(self.definition, query, fields, limit)
        logger.info(f"search {self.definition.name}: {sql[:120]}")
        return [self._row(r) for r in await self.db.fetch(sql, *params)]

    async def find(self, record_id: Any) -> Optional[dict]:
        sql, params = self.builder.build_find(self.definition, record_id)
        return self._row(await self.db.fetchrow(sql, *params))

    async def insert(self, values: Dict[str, Any]) -> dict:
        sql, params = self.builder.build_insert(self.definition, values)
        logger.info(f"create {self.definition.name}: {sql[:120]}")
        return self._row(await self.db.fetchrow(sql, *params))

    async def update(self, record_id: Any, values: Dict[str, Any]) -> Optional[dict]:
        """Update and return the refreshed record, or None when no record matches."""
        if not values and not self.definition.timestamps:
            return await self.find(record_id)
        sql, params = self.builder.build_update(self.definition, record_id, values)
        logger.info(f"update {self.definition.name}: {sql[:120]}")
        return self._row(await self.db.fetchrow(sql, *params))

    async def delete(self, record_id: Any) -> bool:
        """Delete (or soft-delete) a record. Returns False when no record matches."""
        sql, params = self.builder.build_delete(self.definition, record_id)
        logger.info(f"delete {self.definition.name}: {sql[:120]}")
        return await self.db.fetchrow(sql, *params) is not None
