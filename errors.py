"""
Error kinds and result envelopes

Every caller-facing operation answers with the same envelope shape:
    {"success": bool, "data"?: ..., "pagination"?: ..., "error"?: CODE, "message"?: str}

Errors carry a short machine-readable code plus a human message and the HTTP
status the HTTP transport should answer with.
"""

from typing import Any, Dict, Optional

import asyncpg


class CatalogError(Exception):
    """Base class for errors surfaced to callers in a result envelope."""

    code = "ERROR"
    status = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_envelope(self) -> Dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(CatalogError):
    """Missing or malformed required input."""
    code = "VALIDATION_ERROR"
    status = 400


class NotFoundError(CatalogError):
    """Unknown entity name, or no record for the given id."""
    code = "RECORD_NOT_FOUND"
    status = 404


class PermissionDeniedError(CatalogError):
    """Operation is not enabled in the entity's resolved capability set."""
    code = "OPERATION_NOT_PERMITTED"
    status = 403


class IntrospectionError(CatalogError):
    """A single entity or table could not be analyzed. Never leaves discovery."""
    code = "INTROSPECTION_ERROR"
    status = 500


class StorageError(CatalogError):
    """The storage collaborator failed. The driver message is kept as-is."""
    code = "STORAGE_ERROR"
    status = 500


class CatalogDisabledError(CatalogError):
    """The catalog surfaces are switched off (AI_ASSISTANT_ENABLED=false)."""
    code = "CATALOG_DISABLED"
    status = 503


# Driver failures that are reported as STORAGE_ERROR instead of crashing the request
STORAGE_EXCEPTIONS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

# Error code -> HTTP status for codes that differ from their class default
STATUS_BY_CODE = {
    "ENTITY_NOT_FOUND": NotFoundError.status,
    "INVALID_OPERATION": ValidationError.status,
}


def entity_not_found(name: str) -> NotFoundError:
    return NotFoundError(f"Model not found: {name}", code="ENTITY_NOT_FOUND")


def record_not_found(entity: str, record_id: Any) -> NotFoundError:
    return NotFoundError(f"{entity} record {record_id} not found", code="RECORD_NOT_FOUND")


def success_envelope(data: Any = None, message: Optional[str] = None, **extra) -> Dict[str, Any]:
    envelope: Dict[str, Any] = {"success": True}
    if data is not None:
        envelope["data"] = data
    envelope.update(extra)
    if message:
        envelope["message"] = message
    return envelope


def status_for(envelope: Dict[str, Any]) -> int:
    """HTTP status for an envelope produced by the dispatcher."""
    if envelope.get("success"):
        return 200
    code = envelope.get("error")
    if code in STATUS_BY_CODE:
        return STATUS_BY_CODE[code]
    for kind in (ValidationError, NotFoundError, PermissionDeniedError, StorageError, CatalogDisabledError):
        if code == kind.code:
            return kind.status
    return 500
