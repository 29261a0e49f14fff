"""
JSON serialization helpers for database values.
"""

import json
from datetime import datetime, date, time
from decimal import Decimal
from typing import Any, Iterable, Optional
from uuid import UUID


def serialize(obj: Any) -> Any:
    """Serialize non-JSON-native types, recursing into containers."""
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, dict):
        return {k: serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [serialize(v) for v in obj]
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Decimal):
        return float(obj)
    return str(obj)


def record_to_dict(record, hidden: Optional[Iterable[str]] = None) -> dict:
    """Convert an asyncpg Record (or mapping) to a dict without hidden columns."""
    hidden = set(hidden or ())
    return {k: v for k, v in dict(record).items() if k not in hidden}


def to_json(payload: Any, indent: Optional[int] = 2) -> str:
    return json.dumps(serialize(payload), indent=indent)
