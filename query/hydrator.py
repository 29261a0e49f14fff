"""
Relationship Hydrator

Eager-loads relationship hints ("with") onto parent rows.
Uses one batch query per relationship to avoid N+1 lookups.

Supported kinds: belongsTo, hasOne, hasMany, belongsToMany. Polymorphic and
unknown relationships are skipped with a warning. So are relationships whose
target entity is not exposed.

Key defaults when a relationship leaves them unset:
- belongsTo:     parent.<relation>_id -> target.<primary key>
- hasOne/Many:   target.<parent>_id   -> parent.<primary key>
- belongsToMany: pivot "<a>_<b>" (sorted snake names) with <parent>_id / <target>_id
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from catalog.entities import EntityDefinition, EntityRegistry, RelationshipDef, snake_case
from catalog.fields import relationship_kind
from utils.serialization import record_to_dict

from .builder import QueryBuilder

logger = logging.getLogger(__name__)


class Hydrator:
    """Batch-loads and attaches related records to parent rows."""

    def __init__(
        self,
        db,
        builder: QueryBuilder,
        registry: EntityRegistry,
        is_exposed: Optional[Callable[[str], bool]] = None,
    ):
        self.db = db
        self.builder = builder
        self.registry = registry
        self.is_exposed = is_exposed or (lambda name: True)

    async def hydrate(
        self,
        definition: EntityDefinition,
        rows: List[dict],
        includes: List[str],
    ) -> List[dict]:
        """
        For each include, batch-fetch related rows and nest them into parents.

        Args:
            definition: The parent entity
            rows: Parent rows (raw values, hidden columns already stripped)
            includes: Relationship names to hydrate

        Returns:
            The same rows list, with included relationships added
        """
        if not rows or not includes:
            return rows

        for include_name in includes:
            rel = definition.relationships.get(include_name)
            if not rel:
                logger.warning(f"Unknown include '{include_name}' on entity '{definition.name}'")
                continue

            target = self.registry.resolve(rel.target)
            if target is None:
                logger.warning(f"Include '{include_name}' on '{definition.name}' targets unknown entity '{rel.target}'")
                continue
            if not self.is_exposed(target.name):
                logger.warning(f"Include '{include_name}' on '{definition.name}' targets unexposed entity '{target.name}', skipping")
                continue

            kind = relationship_kind(rel.kind)
            if kind == "belongsTo":
                await self._hydrate_belongs_to(rows, include_name, rel, target)
            elif kind in ("hasOne", "hasMany"):
                await self._hydrate_has(rows, include_name, rel, definition, target, many=kind == "hasMany")
            elif kind == "belongsToMany":
                await self._hydrate_many_to_many(rows, include_name, rel, definition, target)
            else:
                logger.warning(f"Include '{include_name}' ({kind}) cannot be eager-loaded, skipping")

        return rows

    async def _fetch(self, target: EntityDefinition, sql: str, params: list) -> List[dict]:
        logger.debug(f"hydrate {target.name}: {sql[:120]}")
        records = await self.db.fetch(sql, *params)
        return [record_to_dict(r, target.hidden) for r in records]

    async def _hydrate_belongs_to(
        self, rows: List[dict], include_name: str, rel: RelationshipDef, target: EntityDefinition
    ):
        """The parent row holds the foreign key."""
        foreign_key = rel.foreign_key or f"{snake_case(include_name)}_id"
        owner_key = rel.local_key or target.primary_key

        fk_values = list({row.get(foreign_key) for row in rows if row.get(foreign_key) is not None})
        related: Dict[Any, dict] = {}
        if fk_values:
            sql, params = self.builder.build_find_many(target, owner_key, fk_values)
            related = {r.get(owner_key): r for r in await self._fetch(target, sql, params)}

        for row in rows:
            row[include_name] = related.get(row.get(foreign_key))

    async def _hydrate_has(
        self,
        rows: List[dict],
        include_name: str,
        rel: RelationshipDef,
        parent: EntityDefinition,
        target: EntityDefinition,
        many: bool,
    ):
        """The target rows hold a foreign key pointing back to the parent."""
        foreign_key = rel.foreign_key or f"{snake_case(parent.name)}_id"
        local_key = rel.local_key or parent.primary_key

        parent_ids = list({row.get(local_key) for row in rows if row.get(local_key) is not None})
        grouped: Dict[Any, List[dict]] = defaultdict(list)
        if parent_ids:
            sql, params = self.builder.build_find_many(target, foreign_key, parent_ids)
            for r in await self._fetch(target, sql, params):
                grouped[r.get(foreign_key)].append(r)

        for row in rows:
            children = grouped.get(row.get(local_key), [])
            row[include_name] = children if many else (children[0] if children else None)

    async def _hydrate_many_to_many(
        self,
        rows: List[dict],
        include_name: str,
        rel: RelationshipDef,
        parent: EntityDefinition,
        target: EntityDefinition,
    ):
        parent_name, target_name = snake_case(parent.name), snake_case(target.name)
        pivot_table = rel.pivot_table or "_".join(sorted([parent_name, target_name]))
        pivot_parent_key = rel.pivot_local_key or f"{parent_name}_id"
        pivot_target_key = rel.pivot_target_key or f"{target_name}_id"

        parent_ids = list({row.get(parent.primary_key) for row in rows if row.get(parent.primary_key) is not None})
        grouped: Dict[Any, List[dict]] = defaultdict(list)
        if parent_ids:
            sql, params = self.builder.build_pivot_select(
                target, pivot_table, pivot_parent_key, pivot_target_key, parent_ids
            )
            for r in await self._fetch(target, sql, params):
                grouped[r.pop("_pivot_parent", None)].append(r)

        for row in rows:
            row[include_name] = grouped.get(row.get(parent.primary_key), [])
