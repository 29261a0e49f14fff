"""
Metadata Compiler

Turns introspected descriptors plus resolved capabilities into one immutable
MetadataBundle:
- entity catalog (exposed entities only)
- table catalog (tables backing excluded entities are omitted)
- tool descriptors, one per enabled standard capability, then custom tools verbatim
- endpoint descriptors mirroring the tools one-to-one

Output ordering is deterministic: entities sorted by display name, tools in
list/search/create/update/delete order per entity. The bundle version is a
SHA-256 over the canonical JSON of everything except the generation timestamp.
"""

import copy
import hashlib
import json
import logging

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import CatalogConfig

from . import __version__
from .capabilities import CapabilitySet
from .descriptors import EntityDescriptor, TableDescriptor

logger = logging.getLogger(__name__)

LIST_LIMIT_DEFAULT = 15
LIST_LIMIT_MAX = 100
SEARCH_LIMIT_DEFAULT = 10
SEARCH_LIMIT_MAX = 50

TOOL_CATEGORIES = {
    "list": "data_retrieval",
    "search": "data_retrieval",
    "create": "data_creation",
    "update": "data_modification",
    "delete": "data_deletion",
}


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def bundle_hash(payload: Dict[str, Any]) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


class MetadataBundle(BaseModel):
    """Compiled catalog. Frozen; model_dump() returns a detached copy."""
    model_config = ConfigDict(frozen=True)

    application_info: Dict[str, Any]
    entities: Dict[str, Any]
    tables: Dict[str, Any]
    tools: List[Dict[str, Any]]
    endpoints: List[Dict[str, Any]]
    generated_at: str
    version: str
    diagnostics: List[str] = Field(default_factory=list)

    def tool(self, name: str) -> Optional[Dict[str, Any]]:
        for tool in self.tools:
            if tool.get("name") == name:
                return copy.deepcopy(tool)
        return None


class MetadataCompiler:
    """Compiles catalog metadata. Never fails on an entity without table data."""

    def __init__(self, config: CatalogConfig):
        self.config = config

    # ------------------------------------------------------------------
    # Parameter schemas
    # ------------------------------------------------------------------

    def _id_schema(self, entity: EntityDescriptor, verb: str) -> Dict[str, Any]:
        return {
            "type": "integer" if entity.key_type == "int" else "string",
            "description": f"ID of the record to {verb}",
        }

    def _field_properties(self, entity: EntityDescriptor) -> Dict[str, Any]:
        return {
            name: {"type": f.type, "description": f.description}
            for name, f in entity.fields.items()
        }

    def _filter_properties(self, entity: EntityDescriptor) -> Dict[str, Any]:
        return {
            name: {"type": f.type, "description": f"Filter by {name}"}
            for name, f in entity.fields.items()
        }

    def _list_schema(self, entity: EntityDescriptor) -> Dict[str, Any]:
        relation_items: Dict[str, Any] = {"type": "string"}
        if entity.relationships:
            relation_items["enum"] = sorted(entity.relationships)
        return {
            "type": "object",
            "properties": {
                "filters": {
                    "type": "object",
                    "description": "Filters to apply to the query",
                    "properties": self._filter_properties(entity),
                },
                "limit": {
                    "type": "integer",
                    "description": f"Maximum number of records to return (default: {LIST_LIMIT_DEFAULT})",
                    "minimum": 1,
                    "maximum": LIST_LIMIT_MAX,
                    "default": LIST_LIMIT_DEFAULT,
                },
                "offset": {
                    "type": "integer",
                    "description": "Number of records to skip (default: 0)",
                    "minimum": 0,
                    "default": 0,
                },
                "with": {
                    "type": "array",
                    "items": relation_items,
                    "description": "Relationships to eager load",
                },
                "order_by": {"type": "string", "description": "Field to order by"},
                "order_direction": {
                    "type": "string",
                    "enum": ["asc", "desc"],
                    "description": "Order direction",
                },
            },
            "required": [],
        }

    def _search_schema(self, entity: EntityDescriptor) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query text"},
                "fields": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Specific fields to search in (optional)",
                    "default": list(entity.fields),
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of results",
                    "minimum": 1,
                    "maximum": SEARCH_LIMIT_MAX,
                    "default": SEARCH_LIMIT_DEFAULT,
                },
            },
            "required": ["query"],
        }

    def _create_schema(self, entity: EntityDescriptor) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": self._field_properties(entity),
            "required": [name for name, f in entity.fields.items() if f.required],
        }

    def _update_schema(self, entity: EntityDescriptor) -> Dict[str, Any]:
        properties = {"id": self._id_schema(entity, "update")}
        properties.update(self._field_properties(entity))
        return {"type": "object", "properties": properties, "required": ["id"]}

    def _delete_schema(self, entity: EntityDescriptor) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {"id": self._id_schema(entity, "delete")},
            "required": ["id"],
        }

    # ------------------------------------------------------------------
    # Tools and endpoints
    # ------------------------------------------------------------------

    def build_tools(self, entity: EntityDescriptor, capabilities: CapabilitySet) -> List[Dict[str, Any]]:
        name = entity.name
        descriptions = {
            "list": f"Get a list of {name} records with optional filtering and pagination",
            "search": f"Search {name} records using text search",
            "create": f"Create a new {name} record",
            "update": f"Update an existing {name} record",
            "delete": f"Delete a {name} record",
        }
        schemas = {
            "list": self._list_schema,
            "search": self._search_schema,
            "create": self._create_schema,
            "update": self._update_schema,
            "delete": self._delete_schema,
        }

        tools = []
        for operation in capabilities.enabled_operations():
            tools.append({
                "name": f"{operation}_{name.lower()}",
                "description": descriptions[operation],
                "category": TOOL_CATEGORIES[operation],
                "target_entity": name,
                "operation": operation,
                "parameters": schemas[operation](entity),
            })
        return tools

    def build_endpoint(self, tool: Dict[str, Any]) -> Dict[str, Any]:
        prefix = self.config.api_prefix.rstrip("/")
        base = f"{prefix}/models/{tool['target_entity'].lower()}"
        operation = tool["operation"]
        name = tool["target_entity"]

        routes = {
            "list": ("GET", base, f"List {name} records"),
            "search": ("GET", f"{base}/search", f"Search {name} records"),
            "create": ("POST", base, f"Create new {name} record"),
            "update": ("PUT", f"{base}/{{id}}", f"Update {name} record"),
            "delete": ("DELETE", f"{base}/{{id}}", f"Delete {name} record"),
        }
        method, path, description = routes[operation]
        return {
            "method": method,
            "path": path,
            "description": description,
            "parameters": list(tool["parameters"].get("properties", {})),
            "tool": tool["name"],
        }

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(
        self,
        entities: Dict[str, EntityDescriptor],
        tables: Dict[str, TableDescriptor],
        capabilities: Dict[str, CapabilitySet],
        diagnostics: Optional[List[str]] = None,
    ) -> MetadataBundle:
        """
        Compile a bundle. `capabilities` holds an entry per exposed entity
        (keyed by qualified name); entities without one are left out.
        """
        exposed = sorted(
            (e for qn, e in entities.items() if qn in capabilities),
            key=lambda e: (e.name.lower(), e.qualified_name),
        )

        entity_catalog: Dict[str, Any] = {}
        tools: List[Dict[str, Any]] = []
        exposed_tables = set()
        seen_names = set()
        for entity in exposed:
            if entity.name.lower() in seen_names:
                logger.warning(
                    f"Entity name '{entity.name}' is declared twice, "
                    f"skipping {entity.qualified_name}"
                )
                continue
            seen_names.add(entity.name.lower())
            caps = capabilities[entity.qualified_name]
            data = entity.model_dump(by_alias=True)
            data["capabilities"] = caps.to_dict()
            entity_catalog[entity.name] = data
            tools.extend(self.build_tools(entity, caps))
            exposed_tables.add(entity.table_name)

        hidden_tables = {
            e.table_name for qn, e in entities.items() if qn not in capabilities
        } - exposed_tables
        table_catalog = {
            name: tables[name].model_dump(by_alias=True)
            for name in sorted(tables)
            if name not in hidden_tables
        }

        endpoints = [self.build_endpoint(tool) for tool in tools]
        tools.extend(copy.deepcopy(self.config.custom_tools))

        application_info = dict(self.config.application_info)
        application_info["catalog_version"] = __version__

        payload = {
            "application_info": application_info,
            "entities": entity_catalog,
            "tables": table_catalog,
            "tools": tools,
            "endpoints": endpoints,
        }
        return MetadataBundle(
            application_info=application_info,
            entities=entity_catalog,
            tables=table_catalog,
            tools=tools,
            endpoints=endpoints,
            generated_at=datetime.now(timezone.utc).isoformat(),
            version=bundle_hash(payload),
            diagnostics=list(diagnostics or []),
        )
