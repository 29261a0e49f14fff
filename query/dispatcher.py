"""
Operation Dispatcher

Executes list / search / create / update / delete / show (plus declared custom
actions) against any registered entity and answers with the uniform envelope:

    {"success": bool, "data"?, "pagination"?, "error"?, "message"?}

Flow per call:
1. Resolve the entity (unknown or unexposed -> ENTITY_NOT_FOUND)
2. Authorize the operation against the resolved capability set
   (unknown operation -> INVALID_OPERATION, disabled -> OPERATION_NOT_PERMITTED)
3. Validate the payload
4. Execute, through the entity's AICapable extension when it declares one
5. Serialize the response

Nothing touches storage before step 3 succeeds. Storage failures are reported
as STORAGE_ERROR with the driver message unchanged; they are not retried.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from catalog.capabilities import CapabilityResolver, CapabilitySet
from catalog.entities import AICapable, EntityDefinition, EntityRegistry
from errors import (
    CatalogError,
    PermissionDeniedError,
    STORAGE_EXCEPTIONS,
    StorageError,
    ValidationError,
    entity_not_found,
    record_not_found,
    success_envelope,
)
from utils.serialization import serialize

from .builder import QueryBuilder
from .filters import coerce_value, column_cast, parse_filters
from .hydrator import Hydrator
from .repository import EntityRepository

logger = logging.getLogger(__name__)

STANDARD_OPERATIONS = ("list", "search", "create", "update", "delete", "show")

LIST_LIMIT_DEFAULT, LIST_LIMIT_MAX = 15, 100
SEARCH_LIMIT_DEFAULT, SEARCH_LIMIT_MAX = 10, 50


def _int_arg(payload: Dict[str, Any], key: str, default: int) -> int:
    value = payload.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer, got {value!r}")


def _str_arg(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string, got {value!r}")
    return value


def _list_arg(value: Any) -> List[str]:
    """Accept a list, a JSON-encoded list, or a comma-separated string."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            decoded = [part.strip() for part in value.split(",") if part.strip()]
        value = decoded if isinstance(decoded, list) else [decoded]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"Expected a list, got {value!r}")
    return [str(v) for v in value]


class Dispatcher:
    """Validates and executes entity operations."""

    def __init__(
        self,
        db,
        registry: EntityRegistry,
        resolver: CapabilityResolver,
        builder: Optional[QueryBuilder] = None,
    ):
        self.db = db
        self.registry = registry
        self.resolver = resolver
        self.builder = builder or QueryBuilder()
        self.hydrator = Hydrator(db, self.builder, registry, resolver.is_exposed)

    def repository(self, definition: EntityDefinition) -> EntityRepository:
        return EntityRepository(self.db, definition, self.builder)

    async def dispatch(
        self,
        entity_name: str,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        capabilities: Optional[CapabilitySet] = None,
    ) -> Dict[str, Any]:
        """Run one operation and return its result envelope. Never raises."""
        payload = dict(payload or {})
        try:
            definition = self.registry.resolve(entity_name)
            if definition is None or not self.resolver.is_exposed(definition.name):
                raise entity_not_found(entity_name)

            if capabilities is None:
                capabilities = self.resolver.resolve(definition)

            if operation not in STANDARD_OPERATIONS and operation not in capabilities.custom_actions:
                raise ValidationError(f"Operation '{operation}' is not supported", code="INVALID_OPERATION")

            if not capabilities.allows(operation):
                raise PermissionDeniedError(
                    f"Operation '{operation}' is not permitted on {definition.name}"
                )

            if operation in STANDARD_OPERATIONS:
                handler = getattr(self, f"_{operation}")
                envelope = await handler(definition, payload)
            else:
                envelope = await self._custom_action(definition, operation, payload)

            return serialize(envelope)

        except CatalogError as e:
            logger.info(f"{operation} {entity_name} rejected: {e.code} {e.message}")
            return e.to_envelope()
        except STORAGE_EXCEPTIONS as e:
            logger.error(f"Storage error during {operation} {entity_name}: {e}", exc_info=True)
            return StorageError(str(e)).to_envelope()

    # ------------------------------------------------------------------
    # Payload helpers
    # ------------------------------------------------------------------

    def _extension(self, definition: EntityDefinition) -> Optional[AICapable]:
        return definition.extension if isinstance(definition.extension, AICapable) else None

    def _record_id(self, definition: EntityDefinition, payload: Dict[str, Any], operation: str) -> Any:
        record_id = payload.get("id")
        if record_id is None or record_id == "":
            raise ValidationError(f"Record ID is required for {operation} operation")
        return coerce_value(record_id, column_cast(definition, definition.primary_key), "id")

    def _fillable_values(self, definition: EntityDefinition, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Project the payload onto fillable fields; unknown keys are dropped."""
        source = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        return {
            name: coerce_value(source[name], column_cast(definition, name), name)
            for name in definition.editable_fields
            if name in source
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _list(self, definition: EntityDefinition, payload: Dict[str, Any]) -> Dict[str, Any]:
        limit = min(max(_int_arg(payload, "limit", LIST_LIMIT_DEFAULT), 1), LIST_LIMIT_MAX)
        offset = max(_int_arg(payload, "offset", 0), 0)
        order_by = _str_arg(payload, "order_by")
        order_direction = (_str_arg(payload, "order_direction") or "asc").lower()
        if order_direction not in ("asc", "desc"):
            raise ValidationError(f"order_direction must be 'asc' or 'desc', got {order_direction!r}")
        clauses = parse_filters(payload.get("filters"), definition)
        includes = _list_arg(payload.get("with"))

        repository = self.repository(definition)
        rows = await repository.list(
            clauses, limit, offset,
            order_by=order_by,
            order_direction=order_direction,
        )
        total = await repository.count(clauses)
        rows = await self.hydrator.hydrate(definition, rows, includes)

        return success_envelope(
            data=rows,
            pagination={
                "limit": limit,
                "offset": offset,
                "total": total,
                "has_more": offset + limit < total,
            },
        )

    async def _search(self, definition: EntityDefinition, payload: Dict[str, Any]) -> Dict[str, Any]:
        query = payload.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query parameter is required")

        requested = _list_arg(payload.get("fields"))
        if requested:
            fields = [f for f in requested if f in definition.editable_fields]
            dropped = sorted(set(requested) - set(fields))
            if dropped:
                logger.warning(f"Ignoring unknown search fields on {definition.name}: {dropped}")
        else:
            fields = list(definition.editable_fields)
        if not fields:
            raise ValidationError(f"No searchable fields for {definition.name}")

        limit = min(max(_int_arg(payload, "limit", SEARCH_LIMIT_DEFAULT), 1), SEARCH_LIMIT_MAX)

        repository = self.repository(definition)
        extension = self._extension(definition)
        if extension:
            rows = await extension.search(repository, query, fields, limit)
        else:
            rows = await repository.search(query, fields, limit)

        return success_envelope(data=rows, query=query, fields_searched=fields, total=len(rows))

    async def _create(self, definition: EntityDefinition, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = self._fillable_values(definition, payload)
        repository = self.repository(definition)
        extension = self._extension(definition)
        if extension:
            record = await extension.create(repository, values)
        else:
            record = await repository.insert(values)
        return success_envelope(data=record, message="Record created successfully")

    async def _update(self, definition: EntityDefinition, payload: Dict[str, Any]) -> Dict[str, Any]:
        record_id = self._record_id(definition, payload, "update")
        values = self._fillable_values(definition, payload)
        repository = self.repository(definition)

        if await repository.find(record_id) is None:
            raise record_not_found(definition.name, record_id)

        extension = self._extension(definition)
        if extension:
            record = await extension.update(repository, record_id, values)
        else:
            record = await repository.update(record_id, values)
        if record is None:
            raise record_not_found(definition.name, record_id)

        return success_envelope(data=record, message="Record updated successfully")

    async def _delete(self, definition: EntityDefinition, payload: Dict[str, Any]) -> Dict[str, Any]:
        record_id = self._record_id(definition, payload, "delete")
        repository = self.repository(definition)

        if await repository.find(record_id) is None:
            raise record_not_found(definition.name, record_id)

        extension = self._extension(definition)
        if extension:
            deleted = await extension.delete(repository, record_id)
        else:
            deleted = await repository.delete(record_id)
        if not deleted:
            raise record_not_found(definition.name, record_id)

        return success_envelope(message="Record deleted successfully")

    async def _show(self, definition: EntityDefinition, payload: Dict[str, Any]) -> Dict[str, Any]:
        record_id = self._record_id(definition, payload, "show")
        includes = _list_arg(payload.get("with"))

        record = await self.repository(definition).find(record_id)
        if record is None:
            raise record_not_found(definition.name, record_id)

        await self.hydrator.hydrate(definition, [record], includes)
        return success_envelope(data=record)

    async def _custom_action(self, definition: EntityDefinition, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        extension = self._extension(definition)
        if extension is None or action not in extension.actions:
            raise ValidationError(
                f"Action '{action}' is not declared by {definition.name}", code="INVALID_OPERATION"
            )
        result = await extension.run_action(self.repository(definition), action, payload)
        return success_envelope(data=result, message=f"Action '{action}' completed")
