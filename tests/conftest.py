"""
Pytest configuration and shared fixtures for Model Catalog tests

APPROACH: Fake the asyncpg-backed DatabaseConnection
- FakeDatabase exposes the same async API (fetch / fetchrow / fetchval /
  get_all_tables / get_table_info) as AsyncMocks
- Catalog rows are described with the same shapes information_schema returns
- Discovery runs against the packages under tests/sample_app and
  tests/sample_plugins

PostgreSQL-backed tests live in test_integration_postgres.py and skip when
no test database is reachable.
"""

import pytest
from pathlib import Path
import sys
from unittest.mock import AsyncMock

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import CatalogConfig, DatabaseConfig
from container import CatalogContainer
from catalog.capabilities import CapabilityResolver
from catalog.entities import EntityDefinition, EntityRegistry, RelationshipDef


SAMPLE_ROOT = "tests.sample_app.models"
PLUGIN_ROOT = "tests.sample_plugins"


def column(name, data_type="text", nullable=True, default=None, identity=False, udt_name=None):
    """One information_schema.columns row."""
    return {
        "column_name": name,
        "data_type": data_type,
        "udt_name": udt_name or data_type,
        "is_nullable": "YES" if nullable else "NO",
        "column_default": default,
        "is_identity": "YES" if identity else "NO",
    }


def table_info(name, columns, primary_key="id", unique=(), foreign_keys=None, indexes=()):
    """A DatabaseConnection.get_table_info() result."""
    constraints = [{
        "constraint_name": f"{name}_pkey",
        "constraint_type": "PRIMARY KEY",
        "column_name": primary_key,
    }]
    for col in unique:
        constraints.append({
            "constraint_name": f"{name}_{col}_key",
            "constraint_type": "UNIQUE",
            "column_name": col,
        })
    fks = []
    for col, target in (foreign_keys or {}).items():
        table, ref = target.split(".")
        fks.append({"column_name": col, "referenced_table": table, "referenced_column": ref})
        constraints.append({
            "constraint_name": f"{name}_{col}_fkey",
            "constraint_type": "FOREIGN KEY",
            "column_name": col,
        })
    return {
        "table_name": name,
        "columns": list(columns),
        "constraints": constraints,
        "indexes": [{"indexname": n, "indexdef": d} for n, d in indexes],
        "foreign_keys": fks,
    }


def _serial_id(table):
    return column("id", "integer", nullable=False, default=f"nextval('{table}_id_seq'::regclass)")


def _timestamps():
    return [
        column("created_at", "timestamp without time zone"),
        column("updated_at", "timestamp without time zone"),
    ]


SAMPLE_TABLES = {
    "projects": table_info(
        "projects",
        [
            _serial_id("projects"),
            column("name", "character varying", nullable=False),
            column("budget", "numeric"),
            column("status", "text", nullable=False, default="'open'::text"),
            column("owner_id", "integer"),
            column("secret_note", "text"),
            *_timestamps(),
            column("deleted_at", "timestamp without time zone"),
        ],
        unique=["name"],
        foreign_keys={"owner_id": "owners.id"},
    ),
    "tasks": table_info(
        "tasks",
        [
            column("id", "integer", nullable=False, identity=True),
            column("title", "text", nullable=False),
            column("project_id", "integer", nullable=False),
            column("done", "boolean", nullable=False, default="false"),
            column("due_on", "date"),
            *_timestamps(),
        ],
        foreign_keys={"project_id": "projects.id"},
    ),
    "owners": table_info(
        "owners",
        [
            _serial_id("owners"),
            column("name", "text", nullable=False),
            column("email", "text"),
            *_timestamps(),
        ],
        indexes=[
            ("owners_pkey", "CREATE UNIQUE INDEX owners_pkey ON public.owners USING btree (id)"),
            ("owners_email_idx", "CREATE UNIQUE INDEX owners_email_idx ON public.owners USING btree (email)"),
        ],
    ),
    "tags": table_info("tags", [_serial_id("tags"), column("label", "text", nullable=False)]),
    "project_tag": table_info(
        "project_tag",
        [column("project_id", "integer", nullable=False), column("tag_id", "integer", nullable=False)],
        primary_key="project_id",
    ),
    "users": table_info(
        "users",
        [_serial_id("users"), column("email", "text", nullable=False), column("password", "text")],
    ),
}


class FakeDatabase:
    """Stand-in for DatabaseConnection with AsyncMock query methods."""

    def __init__(self, tables=None):
        self.config = DatabaseConfig(
            host="localhost", port=5432, database="fake_db", user="test", password="",
        )
        self.tables = dict(SAMPLE_TABLES if tables is None else tables)

        self.fetch = AsyncMock(return_value=[])
        self.fetchrow = AsyncMock(return_value=None)
        self.fetchval = AsyncMock(return_value=0)
        self.execute = AsyncMock(return_value="OK")
        self.check_connection = AsyncMock(return_value=True)
        self.get_pool_stats = AsyncMock(return_value={"status": "connected", "size": 1, "freesize": 1})
        self.get_all_tables = AsyncMock(side_effect=self._all_tables)
        self.get_table_info = AsyncMock(side_effect=self._table_info)
        self.disconnect = AsyncMock()

    @property
    def schema(self):
        return self.config.schema

    async def _all_tables(self):
        return sorted(self.tables)

    async def _table_info(self, name):
        return self.tables[name]


def sample_config(**overrides) -> CatalogConfig:
    """Catalog config pointed at the sample packages; Project is fully writable."""
    config = CatalogConfig(
        discovery_roots=[SAMPLE_ROOT],
        module_roots=[PLUGIN_ROOT],
        per_entity_capabilities={
            "Project": {"can_create": True, "can_update": True, "can_delete": True},
        },
        app_name="Sample App",
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


# ----------------------------------------------------------------------
# Standalone definitions (not shared with the discovery packages)
# ----------------------------------------------------------------------

def make_project(**overrides) -> EntityDefinition:
    values = dict(
        name="Project",
        table="projects",
        fillable=["name", "budget", "status", "owner_id", "secret_note"],
        casts={"budget": "decimal:2", "owner_id": "integer"},
        hidden=["secret_note"],
        soft_deletes=True,
        relationships={
            "owner": RelationshipDef("BelongsTo", "Owner"),
            "tasks": RelationshipDef("HasMany", "Task"),
            "tags": RelationshipDef("BelongsToMany", "Tag", pivot_table="project_tag"),
            "attachable": RelationshipDef("MorphTo", "Attachment"),
        },
    )
    values.update(overrides)
    return EntityDefinition(**values)


def make_registry(*extra) -> EntityRegistry:
    return EntityRegistry([
        make_project(),
        EntityDefinition(
            name="Task", table="tasks",
            fillable=["title", "project_id", "done", "due_on"],
            casts={"project_id": "integer", "done": "boolean", "due_on": "date"},
        ),
        EntityDefinition(name="Owner", table="owners", fillable=["name", "email", "api_token"], hidden=["api_token"]),
        EntityDefinition(name="Tag", table="tags", fillable=["label"], timestamps=False),
        EntityDefinition(name="User", table="users", fillable=["email"]),
        *extra,
    ])


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def catalog_config():
    return sample_config()


@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def resolver(catalog_config):
    return CapabilityResolver(catalog_config)


@pytest.fixture
def container(fake_db, catalog_config):
    """CatalogContainer wired to the fake database and the sample packages."""
    return CatalogContainer(fake_db, catalog_config)
