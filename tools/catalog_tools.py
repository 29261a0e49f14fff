"""
Catalog MCP Tools

Static tools that are always listed, whatever the application declares:
get_metadata, entity_operation and clear_cache.
"""

from mcp import types

from query.dispatcher import STANDARD_OPERATIONS


def get_catalog_tools() -> list[types.Tool]:
    return [_get_metadata_tool(), _entity_operation_tool(), _clear_cache_tool()]


def _get_metadata_tool() -> types.Tool:
    return types.Tool(
        name="get_metadata",
        description="""Get the compiled application metadata catalog.

Returns application info, every exposed entity (fields, relationships, capabilities),
the table catalog, the generated tool descriptors and the matching HTTP endpoints.
The bundle carries a content hash in "version" that only changes when the catalog does.

Use section to fetch a single part of the bundle.
""",
        inputSchema={
            "type": "object",
            "properties": {
                "section": {
                    "type": "string",
                    "enum": ["application_info", "entities", "tables", "tools", "endpoints"],
                    "description": "Return only this section of the bundle (optional)"
                },
                "refresh": {
                    "type": "boolean",
                    "description": "Recompile instead of serving the cached bundle (default: false)",
                    "default": False
                }
            }
        }
    )


def _entity_operation_tool() -> types.Tool:
    return types.Tool(
        name="entity_operation",
        description="""Run an operation against any exposed entity.

OPERATIONS:
- list: filters, limit (1-100, default 15), offset, with, order_by, order_direction
- search: query (required), fields, limit (1-50, default 10)
- create: field values (or wrap them in data)
- update: id (required) plus field values
- delete: id (required)
- show: id (required), with
- any custom action declared by the entity

FILTERS:
  {"status": "active"}                                   equality shorthand
  {"budget": {"operator": "greater_than", "value": 100}}
  [{"field": "name", "operator": "like", "value": "acme"}]

Operators: equals, not_equals, greater_than, less_than, like, in, not_in,
between, date_between, is_null, is_not_null.

EXAMPLES:
  entity_operation(entity="Project", operation="list", payload={"limit": 5})
  entity_operation(entity="Project", operation="update", payload={"id": 3, "name": "Renamed"})
""",
        inputSchema={
            "type": "object",
            "properties": {
                "entity": {
                    "type": "string",
                    "description": "Entity display name (e.g. Project) or qualified name"
                },
                "operation": {
                    "type": "string",
                    "description": f"One of {', '.join(STANDARD_OPERATIONS)}, or a custom action"
                },
                "payload": {
                    "type": "object",
                    "description": "Operation arguments"
                }
            },
            "required": ["entity", "operation"]
        }
    )


def _clear_cache_tool() -> types.Tool:
    return types.Tool(
        name="clear_cache",
        description="""Clear the catalog caches so the next request rediscovers the schema.

caches: "schema" (introspection results), "metadata" (compiled bundle).
Omit caches to clear both.
""",
        inputSchema={
            "type": "object",
            "properties": {
                "caches": {
                    "type": "array",
                    "items": {"type": "string", "enum": ["schema", "metadata"]},
                    "description": "Which caches to clear (default: both)"
                }
            }
        }
    )
