"""
Catalog descriptors produced by schema introspection.
Using Pydantic for serialization

Python attribute names describe the value (raw_type, key_role, table_name);
the catalog wire keys (type, key, table) are serialization aliases, so
descriptors are always dumped with model_dump(by_alias=True).
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldDescriptor(BaseModel):
    type: str  # integer, number, boolean, array, string
    nullable: bool = True
    required: bool = False
    unique: bool = False
    description: str = ""


class RelationshipDescriptor(BaseModel):
    # belongsTo, hasMany, hasOne, belongsToMany, morphTo, morphMany, unknown
    kind: str = Field(..., serialization_alias="type")
    target: str
    description: str = ""
    parameters: List[str] = Field(default_factory=list)


class EntityDescriptor(BaseModel):
    """Structural description of one discoverable entity."""
    name: str
    qualified_name: str
    table_name: Optional[str] = Field(None, serialization_alias="table")
    description: str = ""
    primary_key: str = "id"
    key_type: str = "int"
    uses_timestamps: bool = Field(True, serialization_alias="timestamps")
    supports_soft_delete: bool = Field(False, serialization_alias="soft_deletes")
    fields: Dict[str, FieldDescriptor] = Field(default_factory=dict)
    relationships: Dict[str, RelationshipDescriptor] = Field(default_factory=dict)
    scopes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    accessors: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    mutators: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    # Set when the backing table could not be described
    table_missing: bool = False


class ColumnDescriptor(BaseModel):
    name: str
    raw_type: str = Field(..., serialization_alias="type")
    nullable: bool
    key_role: str = Field("", serialization_alias="key")  # PRI, UNI, MUL or empty
    default: Optional[str] = None
    extra: str = ""  # identity / serial marker


class TableDescriptor(BaseModel):
    name: str
    columns: List[ColumnDescriptor] = Field(default_factory=list)
    indexes: List[Dict[str, Any]] = Field(default_factory=list)
    # column -> "referenced_table.referenced_column"
    foreign_keys: Dict[str, str] = Field(default_factory=dict)
    # single-column unique constraints and unique indexes; folded into column keys
    unique_columns: List[str] = Field(default_factory=list, exclude=True)
    description: str = ""

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class SchemaSnapshot(BaseModel):
    """Result of one discovery run."""
    model_config = ConfigDict(frozen=True)

    entities: Dict[str, EntityDescriptor] = Field(default_factory=dict)
    tables: Dict[str, TableDescriptor] = Field(default_factory=dict)
    diagnostics: List[str] = Field(default_factory=list)
