"""
Schema Introspector

Builds the structural description of the application's data model:
- Entity descriptors from static ENTITIES declarations under the discovery roots
- Table descriptors from the live PostgreSQL catalog

One bad module or entity is logged and skipped. An unreachable storage
catalog degrades to an empty table set with a diagnostic note.
The result is memoized in the catalog cache under "schema_analysis".
"""

import importlib
import logging
import pkgutil
import re
from types import ModuleType
from typing import Dict, Iterable, List, Optional

from cache import CatalogCache, SCHEMA_KEY
from config import CatalogConfig
from errors import IntrospectionError, STORAGE_EXCEPTIONS

from .descriptors import (
    ColumnDescriptor,
    EntityDescriptor,
    FieldDescriptor,
    RelationshipDescriptor,
    SchemaSnapshot,
    TableDescriptor,
)
from .entities import EntityDefinition, EntityRegistry
from .fields import describe_field, describe_relationship, map_field_type, relationship_kind

logger = logging.getLogger(__name__)

# Package conventions tried, in order, for each plugin under a module root
MODULE_PACKAGE_CONVENTIONS = ("models", "app.models")

TIMESTAMP_COLUMNS = ("created_at", "updated_at")
SOFT_DELETE_COLUMN = "deleted_at"

_UNIQUE_INDEX_RE = re.compile(r"CREATE UNIQUE INDEX .* \(([^,()]+)\)\s*$", re.IGNORECASE)


def describe_table_text(table_name: str, column_names: List[str]) -> str:
    """Natural-language summary of a table from its column names."""
    parts = []
    if "id" in column_names:
        parts.append("records with unique IDs")
    if all(c in column_names for c in TIMESTAMP_COLUMNS):
        parts.append("with creation and update timestamps")
    if SOFT_DELETE_COLUMN in column_names:
        parts.append("with soft delete capability")

    specific = [c for c in column_names if c not in ("id", SOFT_DELETE_COLUMN) + TIMESTAMP_COLUMNS]
    if specific:
        parts.append("including columns: " + ", ".join(specific))

    if not parts:
        return f"Table '{table_name}' contains no described columns."
    return f"Table '{table_name}' contains " + ", ".join(parts) + "."


def describe_entity_text(definition: EntityDefinition) -> str:
    """Natural-language summary of an entity declaration."""
    sentences = [
        f"The {definition.name} model represents data stored in the '{definition.table}' table."
    ]
    if definition.editable_fields:
        sentences.append(
            "It has the following editable fields: " + ", ".join(definition.editable_fields) + "."
        )
    if definition.timestamps:
        sentences.append("It automatically tracks creation and update times.")
    if definition.soft_deletes:
        sentences.append("It supports soft deletion (records are marked as deleted rather than removed).")
    return " ".join(sentences)


def build_table_descriptor(info: dict) -> TableDescriptor:
    """Turn raw catalog rows from DatabaseConnection.get_table_info into a TableDescriptor."""
    name = info["table_name"]

    constraint_columns: Dict[str, List[str]] = {}
    constraint_types: Dict[str, str] = {}
    for row in info.get("constraints", []):
        constraint_columns.setdefault(row["constraint_name"], []).append(row["column_name"])
        constraint_types[row["constraint_name"]] = row["constraint_type"]

    primary = set()
    unique = []
    for constraint, columns in constraint_columns.items():
        kind = constraint_types[constraint]
        if kind == "PRIMARY KEY":
            primary.update(columns)
        if kind in ("PRIMARY KEY", "UNIQUE") and len(columns) == 1 and columns[0] not in unique:
            unique.append(columns[0])

    indexes = []
    for row in info.get("indexes", []):
        definition = row.get("indexdef", "")
        match = _UNIQUE_INDEX_RE.match(definition)
        if match:
            column = match.group(1).strip().strip('"')
            if column not in unique:
                unique.append(column)
        indexes.append({
            "name": row.get("indexname"),
            "definition": definition,
            "unique": "UNIQUE INDEX" in definition.upper(),
        })

    foreign_keys = {
        row["column_name"]: f"{row['referenced_table']}.{row['referenced_column']}"
        for row in info.get("foreign_keys", [])
    }

    columns = []
    for row in info.get("columns", []):
        column_name = row["column_name"]
        data_type = row.get("data_type") or ""
        raw_type = row.get("udt_name") if data_type in ("USER-DEFINED", "ARRAY") else data_type
        default = row.get("column_default")

        if column_name in primary:
            key_role = "PRI"
        elif column_name in unique:
            key_role = "UNI"
        elif column_name in foreign_keys:
            key_role = "MUL"
        else:
            key_role = ""

        if row.get("is_identity") == "YES":
            extra = "identity"
        elif default and str(default).startswith("nextval("):
            extra = "serial"
        else:
            extra = ""

        columns.append(ColumnDescriptor(
            name=column_name,
            raw_type=raw_type or "",
            nullable=row.get("is_nullable") == "YES",
            key_role=key_role,
            default=default,
            extra=extra,
        ))

    return TableDescriptor(
        name=name,
        columns=columns,
        indexes=indexes,
        foreign_keys=foreign_keys,
        unique_columns=unique,
        description=describe_table_text(name, [c.name for c in columns]),
    )


class SchemaIntrospector:
    """Discovers entity and table descriptors."""

    def __init__(
        self,
        db,
        config: CatalogConfig,
        cache: CatalogCache,
        registry: Optional[EntityRegistry] = None,
    ):
        self.db = db
        self.config = config
        self.cache = cache
        self.registry = registry if registry is not None else EntityRegistry()
        self._loaded_modules: set = set()

    # ------------------------------------------------------------------
    # Entity declarations
    # ------------------------------------------------------------------

    def _import(self, module_name: str, diagnostics: List[str], quiet_missing: bool = False) -> Optional[ModuleType]:
        try:
            return importlib.import_module(module_name)
        except ModuleNotFoundError as e:
            if quiet_missing and e.name and module_name.startswith(e.name):
                logger.debug(f"Discovery package '{module_name}' not present")
                return None
            logger.warning(f"Could not import entity module {module_name}: {e}")
            diagnostics.append(f"Could not import {module_name}: {e}")
        except Exception as e:
            logger.warning(f"Could not import entity module {module_name}: {e}")
            diagnostics.append(f"Could not import {module_name}: {e}")
        return None

    def _walk(self, package: ModuleType, diagnostics: List[str]) -> Iterable[ModuleType]:
        """Yield the package and every importable submodule below it."""
        yield package
        path = getattr(package, "__path__", None)
        if not path:
            return
        for info in pkgutil.walk_packages(path, prefix=package.__name__ + ".", onerror=lambda name: None):
            module = self._import(info.name, diagnostics)
            if module is not None:
                yield module

    def _candidate_packages(self, diagnostics: List[str]) -> Iterable[ModuleType]:
        for root in self.config.discovery_roots:
            package = self._import(root, diagnostics, quiet_missing=True)
            if package is not None:
                yield package

        for root in self.config.module_roots:
            package = self._import(root, diagnostics, quiet_missing=True)
            if package is None or not hasattr(package, "__path__"):
                continue
            for info in sorted(pkgutil.iter_modules(package.__path__), key=lambda i: i.name):
                if not info.ispkg:
                    continue
                # First convention that imports wins, later ones are not attempted
                for convention in MODULE_PACKAGE_CONVENTIONS:
                    candidate = self._import(f"{root}.{info.name}.{convention}", diagnostics, quiet_missing=True)
                    if candidate is not None:
                        yield candidate
                        break

    def _module_definitions(self, module: ModuleType, diagnostics: List[str]) -> List[EntityDefinition]:
        declared = getattr(module, "ENTITIES", None)
        if declared is None:
            return []
        if isinstance(declared, dict):
            declared = list(declared.values())

        definitions = []
        for item in declared:
            if not isinstance(item, EntityDefinition):
                message = f"{module.__name__}: ignoring non-entity declaration {item!r}"
                logger.warning(message)
                diagnostics.append(message)
                continue
            if not item.namespace:
                item.namespace = module.__name__
            definitions.append(item)
        return definitions

    def load_definitions(self, diagnostics: Optional[List[str]] = None) -> List[EntityDefinition]:
        """
        Import the discovery roots and register every declared entity.

        Modules already loaded are not re-read. Abstract and tableless
        declarations are never registered.
        """
        diagnostics = diagnostics if diagnostics is not None else []

        for package in self._candidate_packages(diagnostics):
            for module in self._walk(package, diagnostics):
                if module.__name__ in self._loaded_modules:
                    continue
                self._loaded_modules.add(module.__name__)

                for definition in self._module_definitions(module, diagnostics):
                    if definition.abstract or not definition.is_storage_backed:
                        logger.debug(f"Skipping {definition.qualified_name}: abstract or not storage-backed")
                        continue
                    self.registry.register(definition)

        return self.registry.all()

    # ------------------------------------------------------------------
    # Descriptors
    # ------------------------------------------------------------------

    def describe_entity(self, definition: EntityDefinition, table: Optional[TableDescriptor]) -> EntityDescriptor:
        overrides = self.config.field_descriptions.get(definition.name, {})

        fields: Dict[str, FieldDescriptor] = {}
        for name in definition.editable_fields:
            semantic_type = map_field_type(definition.casts.get(name))
            description = (
                overrides.get(name)
                or definition.field_descriptions.get(name)
                or describe_field(name, semantic_type)
            )
            column = table.column(name) if table else None
            if column is not None:
                nullable = column.nullable
                required = (
                    not column.nullable
                    and column.default is None
                    and not column.extra
                    and name != definition.primary_key
                )
                unique = name in table.unique_columns
            else:
                nullable, required, unique = True, False, False

            fields[name] = FieldDescriptor(
                type=semantic_type,
                nullable=nullable,
                required=required,
                unique=unique,
                description=description,
            )

        relationships = {}
        for name, rel in definition.relationships.items():
            kind = relationship_kind(rel.kind)
            relationships[name] = RelationshipDescriptor(
                kind=kind,
                target=rel.target,
                description=describe_relationship(name, kind),
                parameters=list(rel.parameters),
            )

        scopes, accessors, mutators = {}, {}, {}
        for spec in definition.methods:
            method = spec.method
            if method.startswith("scope_") and len(method) > len("scope_"):
                scopes[method[len("scope_"):]] = spec.to_dict()
            elif method.startswith("get_") and method.endswith("_attribute") and len(method) > len("get__attribute"):
                accessors[method[len("get_"):-len("_attribute")]] = spec.to_dict()
            elif method.startswith("set_") and method.endswith("_attribute") and len(method) > len("set__attribute"):
                mutators[method[len("set_"):-len("_attribute")]] = spec.to_dict()

        description = (
            self.config.custom_descriptions.get(definition.name)
            or definition.description
            or describe_entity_text(definition)
        )

        return EntityDescriptor(
            name=definition.name,
            qualified_name=definition.qualified_name,
            table_name=definition.table,
            fields=fields,
            relationships=relationships,
            scopes=scopes,
            accessors=accessors,
            mutators=mutators,
            primary_key=definition.primary_key,
            key_type=definition.key_type,
            uses_timestamps=definition.timestamps,
            supports_soft_delete=definition.soft_deletes,
            description=description,
            table_missing=table is None,
        )

    async def analyze_tables(self, diagnostics: List[str]) -> Dict[str, TableDescriptor]:
        if self.db is None:
            diagnostics.append("No storage connection configured; table catalog is empty")
            return {}

        try:
            names = await self.db.get_all_tables()
        except STORAGE_EXCEPTIONS as e:
            logger.warning(f"Could not analyze database tables: {e}")
            diagnostics.append(f"Storage catalog unavailable: {e}")
            return {}

        tables: Dict[str, TableDescriptor] = {}
        for name in names:
            try:
                tables[name] = build_table_descriptor(await self.db.get_table_info(name))
            except STORAGE_EXCEPTIONS as e:
                logger.warning(f"Could not describe table {name}: {e}")
                diagnostics.append(f"Table {name} structure unavailable: {e}")
                tables[name] = TableDescriptor(name=name, description=f"Table '{name}' (structure unavailable)")
        return tables

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _discover(self) -> SchemaSnapshot:
        diagnostics: List[str] = []
        definitions = self.load_definitions(diagnostics)
        tables = await self.analyze_tables(diagnostics)

        entities: Dict[str, EntityDescriptor] = {}
        for definition in definitions:
            try:
                entities[definition.qualified_name] = self.describe_entity(definition, tables.get(definition.table))
            except Exception as e:
                error = IntrospectionError(f"Could not analyze entity {definition.qualified_name}: {e}")
                logger.warning(error.message)
                diagnostics.append(error.message)

        logger.info(f"Discovered {len(entities)} entities and {len(tables)} tables")
        return SchemaSnapshot(entities=entities, tables=tables, diagnostics=diagnostics)

    async def discover(self, force: bool = False) -> SchemaSnapshot:
        """Return the (cached) schema snapshot. force=True re-runs discovery."""
        if force:
            self.cache.invalidate(SCHEMA_KEY)
        return await self.cache.remember(SCHEMA_KEY, self.config.schema_cache_ttl, self._discover)
