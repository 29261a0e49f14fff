"""
Entity Declarations

Application modules declare their persisted entities statically: a module-level
ENTITIES list (or dict) of EntityDefinition objects. The introspector reads these
declarations instead of scanning live types, and the EntityRegistry turns a
name into a definition with a plain map lookup.

Example (app/models/projects.py):

    ENTITIES = [
        EntityDefinition(
            name="Project",
            table="projects",
            fillable=["name", "budget"],
            casts={"budget": "decimal"},
            relationships={"owner": RelationshipDef("BelongsTo", "Owner")},
        ),
    ]
"""

import logging
import re
from abc import ABC
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

KEY_TYPES = ("int", "string", "uuid")


def snake_case(name: str) -> str:
    """ProjectTask -> project_task, projectTask -> project_task"""
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


@dataclass
class MethodSpec:
    """A named callable member and its parameter names."""
    method: str
    parameters: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "parameters": list(self.parameters)}


@dataclass
class RelationshipDef:
    """
    A declared relationship.

    `kind` is the declared return-type name (e.g. "BelongsTo", "HasMany",
    "BelongsToMany"); the catalog derives the relationship kind from it.
    Keys left as None follow the usual naming conventions, see the
    *_key helpers.
    """
    kind: str
    target: str
    foreign_key: Optional[str] = None
    local_key: Optional[str] = None
    pivot_table: Optional[str] = None
    pivot_local_key: Optional[str] = None
    pivot_target_key: Optional[str] = None
    parameters: List[str] = field(default_factory=list)


class AICapable(ABC):
    """
    Optional extended-operations interface.

    An entity whose `extension` is an AICapable instance is flagged with
    has_custom_actions, exposes its declared `actions` as custom capabilities,
    and routes search/create/update/delete through these methods. The default
    implementations delegate to the entity repository; subclasses override
    the ones they need.

    Custom actions map an action name to the method implementing it:

        class ProjectActions(AICapable):
            actions = {"archive": MethodSpec("ai_archive", ["id"])}

            async def ai_archive(self, repository, payload):
                ...
    """

    actions: ClassVar[Mapping[str, MethodSpec]] = MappingProxyType({})

    async def search(self, repository, query: str, fields: List[str], limit: int) -> List[dict]:
        return await repository.search(query, fields, limit)

    async def create(self, repository, values: Dict[str, Any]) -> dict:
        return await repository.insert(values)

    async def update(self, repository, record_id: Any, values: Dict[str, Any]) -> Optional[dict]:
        return await repository.update(record_id, values)

    async def delete(self, repository, record_id: Any) -> bool:
        return await repository.delete(record_id)

    async def run_action(self, repository, action: str, payload: Dict[str, Any]) -> Any:
        spec = self.actions[action]
        method = getattr(self, spec.method)
        return await method(repository, payload)


@dataclass
class EntityDefinition:
    """Static descriptor of one persisted entity type."""
    name: str
    table: Optional[str] = None
    fillable: List[str] = field(default_factory=list)
    casts: Dict[str, str] = field(default_factory=dict)
    hidden: List[str] = field(default_factory=list)
    primary_key: str = "id"
    key_type: str = "int"
    timestamps: bool = True
    soft_deletes: bool = False
    relationships: Dict[str, RelationshipDef] = field(default_factory=dict)
    # Named members following scope_* / get_*_attribute / set_*_attribute conventions
    methods: List[MethodSpec] = field(default_factory=list)
    description: Optional[str] = None
    field_descriptions: Dict[str, str] = field(default_factory=dict)
    abstract: bool = False
    namespace: str = ""
    extension: Optional[AICapable] = None

    def __post_init__(self):
        if self.key_type not in KEY_TYPES:
            raise ValueError(f"{self.name}: key_type must be one of {KEY_TYPES}, got '{self.key_type}'")

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name

    @property
    def entity_slug(self) -> str:
        """Lowercased name used in tool names and endpoint paths."""
        return self.name.lower()

    @property
    def is_storage_backed(self) -> bool:
        return bool(self.table)

    @property
    def editable_fields(self) -> List[str]:
        """Fillable attributes minus hidden ones, in declaration order."""
        return [f for f in self.fillable if f not in self.hidden]

    @property
    def filterable_columns(self) -> List[str]:
        """Columns a filter or ordering may reference."""
        columns = [self.primary_key] + [f for f in self.editable_fields if f != self.primary_key]
        if self.timestamps:
            columns.extend(["created_at", "updated_at"])
        return columns


class EntityRegistry:
    """
    Name -> EntityDefinition map.

    Lookup accepts the qualified name or, case-insensitively, the display
    name. The first registration of a qualified name wins. A display name
    shared by several entities resolves to the lowest qualified name, the
    same entity the compiled catalog keeps.
    """

    def __init__(self, definitions: Optional[Iterable[EntityDefinition]] = None):
        self._entities: Dict[str, EntityDefinition] = {}
        self._by_display: Dict[str, str] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: EntityDefinition) -> bool:
        key = definition.qualified_name
        if key in self._entities:
            logger.warning(f"Entity '{key}' already registered, keeping the first declaration")
            return False
        self._entities[key] = definition
        display = definition.name.lower()
        current = self._by_display.get(display)
        if current is None or key < current:
            self._by_display[display] = key
        return True

    def resolve(self, name: str) -> Optional[EntityDefinition]:
        if not name:
            return None
        if name in self._entities:
            return self._entities[name]
        key = self._by_display.get(name.lower())
        return self._entities.get(key) if key else None

    def all(self) -> List[EntityDefinition]:
        return list(self._entities.values())

    def clear(self):
        self._entities.clear()
        self._by_display.clear()

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None

    def __len__(self) -> int:
        return len(self._entities)
