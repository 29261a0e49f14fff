"""
MCP Tools Package

Static tools (always listed):
- get_metadata
- entity_operation
- clear_cache

Compiled tools (list_<entity>, search_<entity>, ...) come from the metadata
bundle and are converted to MCP tool definitions here.
"""

import logging
from typing import Any, Dict, List

from mcp import types

from .catalog_tools import get_catalog_tools

logger = logging.getLogger(__name__)


def compiled_tool(descriptor: Dict[str, Any]) -> types.Tool:
    """Convert a bundle tool descriptor into an MCP tool."""
    schema = descriptor.get("parameters") or {"type": "object", "properties": {}}
    return types.Tool(
        name=descriptor["name"],
        description=descriptor.get("description", ""),
        inputSchema=schema,
    )


def get_tool_catalog(bundle=None) -> List[types.Tool]:
    """
    Static tools followed by the bundle's tools.
    Bundle tools whose name collides with an earlier tool are skipped.
    """
    tools = get_catalog_tools()
    if bundle is None:
        return tools

    seen = {tool.name for tool in tools}
    for descriptor in bundle.tools:
        name = descriptor.get("name")
        if not name or name in seen:
            logger.warning(f"Skipping tool descriptor without a unique name: {name!r}")
            continue
        seen.add(name)
        tools.append(compiled_tool(descriptor))
    return tools


__all__ = ['get_catalog_tools', 'compiled_tool', 'get_tool_catalog']
