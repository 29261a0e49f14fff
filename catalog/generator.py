"""
Metadata Generator

Runs discover -> resolve -> compile and caches the bundle under "metadata",
independently of the "schema_analysis" entry kept by the introspector. The
bundle can be rebuilt without re-discovering schema and vice versa.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from cache import CatalogCache, METADATA_KEY, SCHEMA_KEY
from config import CatalogConfig

from .capabilities import CapabilityResolver
from .compiler import MetadataBundle, MetadataCompiler
from .introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


class MetadataGenerator:

    def __init__(
        self,
        introspector: SchemaIntrospector,
        resolver: CapabilityResolver,
        compiler: MetadataCompiler,
        cache: CatalogCache,
        config: CatalogConfig,
    ):
        self.introspector = introspector
        self.resolver = resolver
        self.compiler = compiler
        self.cache = cache
        self.config = config

    async def _generate(self) -> MetadataBundle:
        snapshot = await self.introspector.discover()
        definitions = [
            d for d in self.introspector.registry.all()
            if d.qualified_name in snapshot.entities
        ]
        capabilities = self.resolver.resolve_all(definitions)
        bundle = self.compiler.compile(
            snapshot.entities, snapshot.tables, capabilities, diagnostics=snapshot.diagnostics
        )
        logger.info(
            f"Compiled metadata {bundle.version[:12]}: "
            f"{len(bundle.entities)} entities, {len(bundle.tools)} tools"
        )
        return bundle

    async def get_metadata(self, force: bool = False) -> MetadataBundle:
        """Return the cached bundle, compiling it on a miss or when forced."""
        if force:
            self.cache.invalidate(METADATA_KEY)
        return await self.cache.remember(METADATA_KEY, self.config.metadata_cache_ttl, self._generate)

    def clear_caches(self, schema: bool = False, metadata: bool = False) -> Dict[str, Any]:
        """
        Clear the introspection cache, the metadata cache, or both.
        With no flags both are cleared.
        """
        if not schema and not metadata:
            schema = metadata = True

        keys: List[str] = []
        if schema:
            keys.append(SCHEMA_KEY)
        if metadata:
            keys.append(METADATA_KEY)

        cleared = self.cache.clear(keys)
        logger.info(f"Cleared {cleared} cache entries ({', '.join(keys)})")
        return {"cleared": cleared, "caches": keys}

    async def write_metadata(self, output: Path) -> MetadataBundle:
        """Generate a fresh bundle and write it to a JSON file."""
        bundle = await self.get_metadata(force=True)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, 'w', encoding='utf-8') as f:
            json.dump(bundle.model_dump(), f, indent=2, default=str)
        logger.info(f"Metadata written to {output}")
        return bundle
