"""
Catalog Container - Centralized dependency wiring

Single source of truth for service initialization, shared by the stdio
MCP server (server.py) and the HTTP transport (transport/http.py).
"""

from typing import Optional

from cache import CatalogCache
from config import CatalogConfig
from catalog.capabilities import CapabilityResolver
from catalog.compiler import MetadataCompiler
from catalog.entities import EntityRegistry
from catalog.generator import MetadataGenerator
from catalog.introspector import SchemaIntrospector
from query.builder import QueryBuilder
from query.dispatcher import Dispatcher


class CatalogContainer:
    """
    Container for catalog services with attribute access.

    Args:
        db: DatabaseConnection (or any object with the same fetch API)
        config: Catalog configuration
        registry: Optional pre-populated registry; discovery adds to it
    """
    def __init__(self, db, config: CatalogConfig, registry: Optional[EntityRegistry] = None):
        self.db = db
        self.config = config
        self.cache = CatalogCache(default_ttl=config.metadata_cache_ttl)
        self.registry = registry if registry is not None else EntityRegistry()

        self.introspector = SchemaIntrospector(db, config, self.cache, self.registry)
        self.resolver = CapabilityResolver(config)
        self.compiler = MetadataCompiler(config)
        self.generator = MetadataGenerator(
            self.introspector, self.resolver, self.compiler, self.cache, config
        )

        schema = getattr(getattr(db, "config", None), "schema", None)
        self.builder = QueryBuilder(schema=schema)
        self.dispatcher = Dispatcher(db, self.registry, self.resolver, self.builder)

    async def dispatch(self, entity_name: str, operation: str, payload: Optional[dict] = None) -> dict:
        """Dispatch after making sure entity declarations are loaded."""
        if not self.registry.resolve(entity_name):
            self.introspector.load_definitions()
        return await self.dispatcher.dispatch(entity_name, operation, payload)
