"""
Catalog Handlers

Metadata retrieval and cache maintenance. The envelope builders are shared
with the HTTP transport.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from mcp import types

from errors import CatalogError, ValidationError, success_envelope
from utils.serialization import to_json

logger = logging.getLogger(__name__)

BUNDLE_SECTIONS = ("application_info", "entities", "tables", "tools", "endpoints")
CACHE_NAMES = ("schema", "metadata")


def _text(payload: Any) -> list[types.TextContent]:
    return [types.TextContent(type="text", text=to_json(payload))]


async def metadata_envelope(container, section: Optional[str] = None, refresh: bool = False) -> Dict[str, Any]:
    """The compiled bundle (or one section of it) wrapped in a success envelope."""
    if section and section not in BUNDLE_SECTIONS:
        raise ValidationError(
            f"Unknown metadata section '{section}'. Expected one of: {', '.join(BUNDLE_SECTIONS)}"
        )

    bundle = await container.generator.get_metadata(force=refresh)
    data = bundle.model_dump()
    if section:
        data = {section: data[section], "version": bundle.version}
    return success_envelope(data=data)


def parse_cache_names(value: Any) -> List[str]:
    """Accept a list, a JSON-encoded list, or a single cache name."""
    if value is None or value == "" or value == []:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            value = [value]
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValidationError(f"caches must be a list, got {value!r}")

    unknown = [name for name in value if name not in CACHE_NAMES]
    if unknown:
        raise ValidationError(
            f"Unknown cache name(s): {', '.join(map(str, unknown))}. Expected: {', '.join(CACHE_NAMES)}"
        )
    return list(value)


def clear_cache_envelope(container, names: List[str]) -> Dict[str, Any]:
    """Clear the named caches (both when names is empty)."""
    result = container.generator.clear_caches(
        schema="schema" in names,
        metadata="metadata" in names,
    )
    return success_envelope(data=result, message="Cache cleared successfully")


async def handle_get_metadata(container, arguments: dict[str, Any]) -> list[types.TextContent]:
    """Return the compiled bundle, or one section of it."""
    try:
        envelope = await metadata_envelope(
            container,
            section=arguments.get("section"),
            refresh=bool(arguments.get("refresh")),
        )
    except CatalogError as e:
        return _text(e.to_envelope())
    return _text(envelope)


async def handle_clear_cache(container, arguments: dict[str, Any]) -> list[types.TextContent]:
    try:
        names = parse_cache_names(arguments.get("caches"))
    except ValidationError as e:
        return _text(e.to_envelope())
    return _text(clear_cache_envelope(container, names))
