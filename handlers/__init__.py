"""
Handler Registry - Maps tool names to handler functions

Static tools are registered here. Compiled tools (list_<entity>, ...) are
looked up in the current metadata bundle and bound to handle_compiled_tool.

Usage:
    from handlers import get_handler, get_compiled_handler

    handler = get_handler(tool_name)
    if handler:
        result = await handler(container, arguments)
    else:
        handler = await get_compiled_handler(container, tool_name)
"""

from functools import partial
from typing import Callable, Optional

from . import catalog_handlers
from . import operation_handlers


HANDLER_REGISTRY = {
    'get_metadata': catalog_handlers.handle_get_metadata,
    'clear_cache': catalog_handlers.handle_clear_cache,
    'entity_operation': operation_handlers.handle_entity_operation,
}


def get_handler(tool_name: str) -> Optional[Callable]:
    """
    Get the handler for a static tool.

    Returns:
        Handler taking (container, arguments), or None if not registered
    """
    return HANDLER_REGISTRY.get(tool_name)


async def get_compiled_handler(container, tool_name: str) -> Optional[Callable]:
    """
    Bind a bundle tool to the compiled-tool handler.

    Returns:
        Handler taking (container, arguments), or None if the bundle has no such tool
    """
    bundle = await container.generator.get_metadata()
    descriptor = bundle.tool(tool_name)
    if descriptor is None:
        return None
    return partial(operation_handlers.handle_compiled_tool, descriptor=descriptor)


def list_all_handlers() -> list[str]:
    """Get list of all registered static tool names"""
    return list(HANDLER_REGISTRY.keys())


__all__ = ['get_handler', 'get_compiled_handler', 'list_all_handlers', 'HANDLER_REGISTRY']
