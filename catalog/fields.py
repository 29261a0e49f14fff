"""
Field and relationship vocabulary

Fixed mappings from declared casts to semantic types, and from declared
relationship return types to relationship kinds.
"""

from typing import Optional

FIELD_TYPE_MAP = {
    "integer": "integer",
    "int": "integer",
    "float": "number",
    "double": "number",
    "decimal": "number",
    "boolean": "boolean",
    "bool": "boolean",
    "array": "array",
    "json": "array",
    "datetime": "string",
    "date": "string",
    "timestamp": "string",
}

TYPE_PHRASES = {
    "integer": "integer value",
    "number": "numeric value",
    "boolean": "true/false value",
    "array": "array of values",
    "string": "text value",
}

# Longest names first so "belongstomany" never matches as "belongsto"
RELATIONSHIP_KINDS = [
    ("belongstomany", "belongsToMany"),
    ("belongsto", "belongsTo"),
    ("hasmany", "hasMany"),
    ("hasone", "hasOne"),
    ("morphto", "morphTo"),
    ("morphmany", "morphMany"),
]

RELATIONSHIP_PHRASES = {
    "belongsTo": "belongs to another model",
    "hasMany": "has many related records",
    "hasOne": "has one related record",
    "belongsToMany": "many-to-many with another model",
    "morphTo": "polymorphic - can belong to different model types",
    "morphMany": "polymorphic - has many related records of different types",
}


def base_cast(cast: Optional[str]) -> str:
    """'decimal:2' -> 'decimal', None -> 'string'"""
    if not cast:
        return "string"
    return cast.split(":", 1)[0].strip().lower()


def map_field_type(cast: Optional[str]) -> str:
    """Semantic type for a declared cast. Unrecognized casts map to string."""
    return FIELD_TYPE_MAP.get(base_cast(cast), "string")


def describe_field(name: str, semantic_type: str) -> str:
    return f"The {name} field ({TYPE_PHRASES.get(semantic_type, 'text value')})"


def relationship_kind(type_name: str) -> str:
    """
    Derive the relationship kind from a declared return-type name.

    'BelongsToMany' -> belongsToMany, 'Illuminate\\...\\HasMany' -> hasMany,
    anything else -> unknown.
    """
    lowered = (type_name or "").lower()
    for needle, kind in RELATIONSHIP_KINDS:
        if needle in lowered:
            return kind
    return "unknown"


def describe_relationship(name: str, kind: str) -> str:
    phrase = RELATIONSHIP_PHRASES.get(kind)
    if phrase:
        return f"The {name} relationship ({phrase})"
    return f"The {name} relationship"
