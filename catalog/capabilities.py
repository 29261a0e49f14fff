"""
Capability Resolution

Each entity's capability set is built by applying override layers left to right:

    defaults  ->  per-entity overrides  ->  extension-derived entries

Every layer is a flat mapping; later layers overwrite earlier ones key by key
(shallow merge), so a per-entity {"can_create": True} only flips that flag.

Exposure is decided separately: a non-empty include_only list admits only the
named entities, and the exclude list always wins.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from config import CatalogConfig

from .entities import AICapable, EntityDefinition, MethodSpec

logger = logging.getLogger(__name__)

STANDARD_OPERATIONS = ("list", "search", "create", "update", "delete")

# show is served by the list capability
OPERATION_FLAGS = {
    "list": "can_list",
    "show": "can_list",
    "search": "can_search",
    "create": "can_create",
    "update": "can_update",
    "delete": "can_delete",
}

Layer = Callable[[EntityDefinition], Dict[str, Any]]


@dataclass
class CapabilitySet:
    flags: Dict[str, bool] = field(default_factory=dict)
    custom_actions: Dict[str, MethodSpec] = field(default_factory=dict)

    @property
    def has_custom_actions(self) -> bool:
        return bool(self.flags.get("has_custom_actions"))

    def allows(self, operation: str) -> bool:
        flag = OPERATION_FLAGS.get(operation)
        if flag is not None:
            return bool(self.flags.get(flag, False))
        if operation in self.custom_actions:
            return bool(self.flags.get(f"can_{operation}", False))
        return False

    def enabled_operations(self) -> List[str]:
        return [op for op in STANDARD_OPERATIONS if self.allows(op)]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.flags)
        data["has_custom_actions"] = self.has_custom_actions
        data["custom_actions"] = {name: spec.to_dict() for name, spec in self.custom_actions.items()}
        return data


def merge_layers(layers: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow key-level merge, later layers win."""
    merged: Dict[str, Any] = {}
    for layer in layers:
        merged.update(layer)
    return merged


class CapabilityResolver:
    """Resolves capability sets and exposure for entities."""

    def __init__(self, config: CatalogConfig):
        self.config = config
        self.layers: List[Layer] = [
            self.default_layer,
            self.entity_layer,
            self.extension_layer,
        ]

    def default_layer(self, definition: EntityDefinition) -> Dict[str, Any]:
        return dict(self.config.default_capabilities)

    def entity_layer(self, definition: EntityDefinition) -> Dict[str, Any]:
        return dict(self.config.per_entity_capabilities.get(definition.name, {}))

    def extension_layer(self, definition: EntityDefinition) -> Dict[str, Any]:
        if not isinstance(definition.extension, AICapable):
            return {}
        layer: Dict[str, Any] = {"has_custom_actions": True}
        for action in definition.extension.actions:
            layer[f"can_{action}"] = True
        return layer

    def resolve(self, definition: EntityDefinition) -> CapabilitySet:
        flags = merge_layers([layer(definition) for layer in self.layers])

        custom_actions: Dict[str, MethodSpec] = {}
        if isinstance(definition.extension, AICapable):
            custom_actions = dict(definition.extension.actions)

        return CapabilitySet(
            flags={k: bool(v) for k, v in flags.items()},
            custom_actions=custom_actions,
        )

    def is_exposed(self, name: str) -> bool:
        if name in self.config.exclude:
            return False
        if self.config.include_only and name not in self.config.include_only:
            return False
        return True

    def resolve_all(self, definitions: List[EntityDefinition]) -> Dict[str, CapabilitySet]:
        """Capability sets for every exposed definition, keyed by qualified name."""
        resolved = {}
        for definition in definitions:
            if not self.is_exposed(definition.name):
                logger.debug(f"Entity {definition.name} is not exposed")
                continue
            resolved[definition.qualified_name] = self.resolve(definition)
        return resolved
