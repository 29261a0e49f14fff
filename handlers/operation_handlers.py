"""
Operation Handlers

Routes entity_operation and the compiled per-entity tools (list_project,
create_project, ...) to the dispatcher. The dispatcher always answers with
an envelope, so these handlers never raise for caller mistakes.
"""

import json
import logging
from typing import Any, Dict

from mcp import types

from errors import ValidationError
from utils.serialization import to_json

logger = logging.getLogger(__name__)


def _text(payload: Any) -> list[types.TextContent]:
    return [types.TextContent(type="text", text=to_json(payload))]


def _payload(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """
    The operation payload: an explicit "payload" object (or JSON string),
    otherwise every argument except entity/operation.
    """
    payload = arguments.get("payload")
    if payload is None:
        return {k: v for k, v in arguments.items() if k not in ("entity", "operation")}
    if isinstance(payload, str):
        try:
            payload = json.loads(payload) if payload.strip() else {}
        except json.JSONDecodeError as e:
            raise ValidationError(f"payload is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")
    return payload


async def handle_entity_operation(container, arguments: dict[str, Any]) -> list[types.TextContent]:
    """Run any operation against any exposed entity."""
    entity = arguments.get("entity")
    operation = arguments.get("operation")
    if not entity or not operation:
        return _text(ValidationError("entity and operation are required").to_envelope())

    try:
        payload = _payload(arguments)
    except ValidationError as e:
        return _text(e.to_envelope())

    envelope = await container.dispatch(entity, operation, payload)
    return _text(envelope)


async def handle_compiled_tool(container, arguments: dict[str, Any], descriptor: Dict[str, Any]) -> list[types.TextContent]:
    """Run a bundle tool (e.g. list_project) through the dispatcher."""
    entity = descriptor.get("target_entity")
    operation = descriptor.get("operation")
    if not entity or not operation:
        return _text(ValidationError(
            f"Tool '{descriptor.get('name')}' is descriptive only and has no executor",
            code="INVALID_OPERATION",
        ).to_envelope())

    envelope = await container.dispatch(entity, operation, arguments)
    return _text(envelope)
