"""
Filter Expressions

Parses the declarative filter input of list operations into FilterClause objects.

Accepted shapes:
- {"status": "open"}                                  bare scalar -> equals
- {"status": ["open", "blocked"]}                     bare list   -> in
- {"budget": {"operator": "between", "value": [10, 20]}}
- [{"field": "budget", "operator": "greater_than", "value": 5}, ...]
- any of the above as a JSON string

Clauses are combined with AND. Unknown operators and unknown fields are
dropped with a warning. A malformed value for in/not_in/between/date_between
is a ValidationError.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from catalog.entities import EntityDefinition
from catalog.fields import base_cast
from errors import ValidationError

logger = logging.getLogger(__name__)

OPERATORS = frozenset({
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "like",
    "in",
    "not_in",
    "between",
    "date_between",
    "is_null",
    "is_not_null",
})

LIST_OPERATORS = frozenset({"in", "not_in"})
RANGE_OPERATORS = frozenset({"between", "date_between"})
VALUELESS_OPERATORS = frozenset({"is_null", "is_not_null"})

KEY_TYPE_CASTS = {"int": "integer", "string": "string", "uuid": "uuid"}


@dataclass
class FilterClause:
    """A single filter condition."""
    field: str
    operator: str
    value: Any = None


def column_cast(definition: EntityDefinition, column: str) -> str:
    """Declared cast for a column, including the implicit key and timestamp casts."""
    if column == definition.primary_key:
        return KEY_TYPE_CASTS[definition.key_type]
    if column in definition.casts:
        return base_cast(definition.casts[column])
    if definition.timestamps and column in ("created_at", "updated_at"):
        return "datetime"
    return "string"


def _parse_datetime(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def coerce_value(value: Any, cast: Optional[str], field: str = "value") -> Any:
    """Convert an incoming JSON value to the Python type asyncpg expects for the cast."""
    if value is None:
        return None
    cast = base_cast(cast)
    try:
        if cast in ("integer", "int"):
            if isinstance(value, bool):
                raise ValueError("boolean is not an integer")
            return int(value)
        if cast in ("float", "double"):
            return float(value)
        if cast == "decimal":
            return Decimal(str(value))
        if cast in ("boolean", "bool"):
            if isinstance(value, str):
                return value.strip().lower() in ("true", "1", "yes")
            return bool(value)
        if cast == "date":
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, str):
                return date.fromisoformat(value[:10])
            return value
        if cast in ("datetime", "timestamp"):
            return _parse_datetime(value) if isinstance(value, str) else value
        if cast in ("array", "json"):
            return value if isinstance(value, str) else json.dumps(value)
    except (ValueError, TypeError, InvalidOperation) as e:
        raise ValidationError(f"Invalid value for {field}: {value!r} ({e})")
    return value


def escape_like(value: Any) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    text = str(value)
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _entries(filters: Any) -> List[tuple]:
    """Normalize accepted input shapes into (field, operator, value) triples."""
    if isinstance(filters, str):
        try:
            filters = json.loads(filters)
        except json.JSONDecodeError:
            raise ValidationError("filters must be a valid JSON object or array")

    entries = []
    if isinstance(filters, dict):
        for field, value in filters.items():
            if isinstance(value, dict) and "operator" in value:
                entries.append((field, value.get("operator"), value.get("value")))
            elif isinstance(value, (list, tuple)):
                entries.append((field, "in", list(value)))
            else:
                entries.append((field, "equals", value))
    elif isinstance(filters, list):
        for item in filters:
            if not isinstance(item, dict) or "field" not in item:
                raise ValidationError(f"Filter entries must be objects with a 'field' key, got {item!r}")
            entries.append((item["field"], item.get("operator", "equals"), item.get("value")))
    elif filters:
        raise ValidationError("filters must be an object or an array of filter entries")

    for field, _, _ in entries:
        if not isinstance(field, str):
            raise ValidationError(f"Filter field names must be strings, got {field!r}")
    return entries


def parse_filters(filters: Any, definition: EntityDefinition) -> List[FilterClause]:
    """Parse filter input for an entity into typed clauses."""
    if not filters:
        return []

    allowed = set(definition.filterable_columns)
    clauses = []
    for field, operator, value in _entries(filters):
        if not isinstance(operator, str) or operator not in OPERATORS:
            logger.warning(f"Ignoring unknown filter operator '{operator}' on {definition.name}.{field}")
            continue
        if field not in allowed:
            logger.warning(f"Ignoring filter on unknown field {definition.name}.{field}")
            continue

        cast = column_cast(definition, field)

        if operator in VALUELESS_OPERATORS:
            clauses.append(FilterClause(field, operator))
            continue

        if operator in LIST_OPERATORS:
            if not isinstance(value, (list, tuple)):
                raise ValidationError(f"Filter '{operator}' on {field} expects a list of values")
            clauses.append(FilterClause(field, operator, [coerce_value(v, cast, field) for v in value]))
            continue

        if operator in RANGE_OPERATORS:
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise ValidationError(f"Filter '{operator}' on {field} expects [low, high]")
            range_cast = "date" if operator == "date_between" else cast
            low, high = (coerce_value(v, range_cast, field) for v in value)
            clauses.append(FilterClause(field, operator, [low, high]))
            continue

        if value is None and operator in ("equals", "not_equals"):
            clauses.append(FilterClause(field, "is_null" if operator == "equals" else "is_not_null"))
            continue

        if operator == "like":
            clauses.append(FilterClause(field, operator, str(value)))
            continue

        clauses.append(FilterClause(field, operator, coerce_value(value, cast, field)))

    return clauses
