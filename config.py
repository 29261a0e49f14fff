"""
Configuration for the Model Catalog MCP Server
Environment-aware configuration based on APP_ENV

Two configuration objects are loaded from the environment:
- DatabaseConfig: PostgreSQL connection + pool settings
- CatalogConfig: entity discovery, exposure rules, capability policy, cache TTLs
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Environment modes
EnvironmentMode = Literal["development", "test", "production"]

# Entities that are never exposed unless the exclude list is overridden
DEFAULT_EXCLUDE = [
    "User",
    "PasswordReset",
    "PersonalAccessToken",
    "Migration",
    "FailedJob",
    "Job",
    "Cache",
    "Session",
]

DEFAULT_CAPABILITIES = {
    "can_list": True,
    "can_search": True,
    "can_create": False,
    "can_update": False,
    "can_delete": False,
}


def load_app_environment(mode: Optional[str] = None) -> str:
    """
    Load environment variables from the appropriate .env file.

    Priority:
    1. Explicit 'mode' argument
    2. APP_ENV environment variable
    3. Default to 'development'

    Loads .env.{mode} if it exists. Variables already set by the host
    take precedence over file values.
    """
    if not mode:
        mode = os.getenv('APP_ENV', 'development')

    env_file = Path(__file__).parent / f'.env.{mode}'

    if env_file.exists():
        logger.info(f"Loading config from {env_file}")
        load_dotenv(env_file, override=False)
    else:
        logger.debug(f"No config file found for mode '{mode}' at {env_file}")

    return mode


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration"""

    host: str
    port: int
    database: str
    user: str
    password: str

    # Schema whose tables are described in the catalog
    schema: str = "public"

    # Connection pool settings
    min_pool_size: int = 2
    max_pool_size: int = 10
    command_timeout: int = 60  # seconds

    ssl_mode: str = "prefer"

    @property
    def asyncpg_dsn(self) -> str:
        """Get asyncpg DSN format"""
        return (
            f"postgresql://{self.user}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @classmethod
    def from_environment(cls, mode: Optional[EnvironmentMode] = None) -> 'DatabaseConfig':
        """
        Load configuration from environment variables

        Environment variables:
        - DB_HOST: Database host (default: localhost)
        - DB_PORT: Database port (default: 5432)
        - DB_NAME: Database name (default: app_db)
        - DB_USER: Database user (default: postgres)
        - DB_PASSWORD: Database password
        - DB_SSL_MODE: SSL mode (default: prefer in development, require otherwise)
        - DB_SCHEMA: Schema to describe (default: public)
        - DB_MIN_POOL_SIZE / DB_MAX_POOL_SIZE: Pool bounds
        """
        mode = load_app_environment(mode)

        config = cls(
            host=os.getenv('DB_HOST', 'localhost'),
            port=int(os.getenv('DB_PORT', '5432')),
            database=os.getenv('DB_NAME', 'app_db'),
            user=os.getenv('DB_USER', 'postgres'),
            password=os.getenv('DB_PASSWORD', ''),
            schema=os.getenv('DB_SCHEMA', 'public'),
            ssl_mode=os.getenv('DB_SSL_MODE', 'prefer' if mode == 'development' else 'require'),
            min_pool_size=int(os.getenv('DB_MIN_POOL_SIZE', '2')),
            max_pool_size=int(os.getenv('DB_MAX_POOL_SIZE', '10')),
        )

        config.validate_safety(mode)
        return config

    def validate_safety(self, mode: str):
        """Ensure configuration is safe for the requested mode"""
        if mode == 'test':
            if 'test' not in self.database:
                raise ValueError(
                    f"SAFETY ERROR: Test mode requested but database is '{self.database}'. "
                    "Test database must contain 'test'."
                )
            if 'prod' in self.database:
                raise ValueError(
                    f"SAFETY ERROR: Test mode requested but database '{self.database}' appears to be production."
                )


@dataclass
class CatalogConfig:
    """
    Catalog configuration: which entities are exposed and what they may do.

    Environment Variables:
    - AI_ASSISTANT_ENABLED: Enable/disable the catalog surfaces (default: true)
    - AI_API_PREFIX: Prefix for HTTP routes and endpoint descriptors (default: /api/ai)
    - CATALOG_DISCOVERY_ROOTS: Comma-separated packages holding entity declarations
    - CATALOG_MODULE_ROOTS: Comma-separated plugin packages (each sub-package may
      carry a `models` or `app.models` package)
    - AI_SCHEMA_CACHE_TTL / AI_METADATA_CACHE_TTL: Cache lifetimes in seconds
    - APP_NAME, APP_VERSION, APP_URL, APP_TIMEZONE, APP_LOCALE: application info
    - CATALOG_CONFIG_FILE: Optional JSON file with exclude/include_only,
      custom_descriptions, field_descriptions, capabilities and custom_tools
    """
    enabled: bool = True
    api_prefix: str = "/api/ai"

    discovery_roots: List[str] = field(default_factory=lambda: ["app.models"])
    module_roots: List[str] = field(default_factory=lambda: ["modules"])

    exclude: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    include_only: List[str] = field(default_factory=list)

    # Entity display name -> description override
    custom_descriptions: Dict[str, str] = field(default_factory=dict)
    # Entity display name -> {field: description} override
    field_descriptions: Dict[str, Dict[str, str]] = field(default_factory=dict)

    default_capabilities: Dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_CAPABILITIES))
    per_entity_capabilities: Dict[str, Dict[str, bool]] = field(default_factory=dict)

    # Pre-authored tool descriptors appended verbatim to the compiled tool list
    custom_tools: List[Dict[str, Any]] = field(default_factory=list)

    schema_cache_ttl: int = 3600
    metadata_cache_ttl: int = 3600

    app_name: str = "Application"
    app_version: str = "1.0.0"
    app_url: str = "http://localhost"
    app_timezone: str = "UTC"
    app_locale: str = "en"
    environment: str = "development"

    @property
    def application_info(self) -> Dict[str, Any]:
        return {
            "name": self.app_name,
            "version": self.app_version,
            "environment": self.environment,
            "timezone": self.app_timezone,
            "locale": self.app_locale,
            "url": self.app_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CatalogConfig':
        """
        Build a config from a plain mapping.

        Accepts the structured keys of the JSON config file. Capabilities may
        be given either as {"default": {...}, "per_entity": {...}} or through
        the flat keys default_capabilities / per_entity_capabilities.
        """
        config = cls()
        config.apply(data)
        return config

    def apply(self, data: Dict[str, Any]):
        """Overlay values from a mapping onto this config."""
        capabilities = data.get("capabilities") or {}

        if "exclude" in data:
            self.exclude = list(data["exclude"] or [])
        if "include_only" in data:
            self.include_only = list(data["include_only"] or [])
        if "custom_descriptions" in data:
            self.custom_descriptions = dict(data["custom_descriptions"] or {})
        if "field_descriptions" in data:
            self.field_descriptions = {
                name: dict(fields or {}) for name, fields in (data["field_descriptions"] or {}).items()
            }
        if "custom_tools" in data:
            self.custom_tools = list(data["custom_tools"] or [])

        default_caps = capabilities.get("default", data.get("default_capabilities"))
        if default_caps is not None:
            merged = dict(DEFAULT_CAPABILITIES)
            merged.update(default_caps)
            self.default_capabilities = merged

        per_entity = capabilities.get("per_entity", data.get("per_entity_capabilities"))
        if per_entity is not None:
            self.per_entity_capabilities = {name: dict(caps or {}) for name, caps in per_entity.items()}

        for key in ("discovery_roots", "module_roots"):
            if key in data:
                setattr(self, key, list(data[key] or []))

        for key in ("schema_cache_ttl", "metadata_cache_ttl"):
            if key in data:
                setattr(self, key, int(data[key]))

        if "api_prefix" in data:
            self.api_prefix = data["api_prefix"]

    @classmethod
    def from_environment(cls, mode: Optional[EnvironmentMode] = None) -> 'CatalogConfig':
        """Load catalog configuration from environment variables and optional JSON file."""
        mode = load_app_environment(mode)

        config = cls(
            enabled=_env_bool("AI_ASSISTANT_ENABLED", True),
            api_prefix=os.getenv("AI_API_PREFIX", "/api/ai"),
            discovery_roots=_env_list("CATALOG_DISCOVERY_ROOTS", ["app.models"]),
            module_roots=_env_list("CATALOG_MODULE_ROOTS", ["modules"]),
            schema_cache_ttl=int(os.getenv("AI_SCHEMA_CACHE_TTL", "3600")),
            metadata_cache_ttl=int(os.getenv("AI_METADATA_CACHE_TTL", "3600")),
            app_name=os.getenv("APP_NAME", "Application"),
            app_version=os.getenv("APP_VERSION", "1.0.0"),
            app_url=os.getenv("APP_URL", "http://localhost"),
            app_timezone=os.getenv("APP_TIMEZONE", "UTC"),
            app_locale=os.getenv("APP_LOCALE", "en"),
            environment=mode,
        )

        config_file = os.getenv("CATALOG_CONFIG_FILE")
        if config_file:
            path = Path(config_file)
            if path.exists():
                with open(path, 'r', encoding='utf-8') as f:
                    config.apply(json.load(f))
                logger.info(f"Loaded catalog settings from {path}")
            else:
                logger.warning(f"CATALOG_CONFIG_FILE points to a missing file: {path}")

        return config
