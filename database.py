"""
Database connection management and catalog queries
Async PostgreSQL operations using asyncpg
"""

import asyncpg
import logging
from typing import Optional, List, Dict, Any
from contextlib import asynccontextmanager

from config import DatabaseConfig

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """
    Manages PostgreSQL connection pool and provides database operations
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    @property
    def schema(self) -> str:
        return self.config.schema

    async def connect(self):
        """Initialize connection pool"""
        if self.pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            # asyncpg expects: True (require SSL), False (disable SSL), or 'prefer'
            if self.config.ssl_mode == 'require':
                ssl_setting = True
            elif self.config.ssl_mode == 'disable':
                ssl_setting = False
            else:
                ssl_setting = 'prefer'

            self.pool = await asyncpg.create_pool(
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                user=self.config.user,
                password=self.config.password,
                min_size=self.config.min_pool_size,
                max_size=self.config.max_pool_size,
                command_timeout=self.config.command_timeout,
                ssl=ssl_setting,
            )

            logger.info(f"Connected to PostgreSQL at {self.config.host}:{self.config.port}")

        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def disconnect(self):
        """Close connection pool"""
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    @asynccontextmanager
    async def acquire(self):
        """
        Acquire a connection from the pool.

        Usage:
            async with db.acquire() as conn:
                result = await conn.fetch("SELECT * FROM projects")
        """
        if self.pool is None:
            raise asyncpg.InterfaceError("Database not connected. Call connect() first.")

        async with self.pool.acquire() as connection:
            try:
                yield connection
            except Exception as e:
                logger.error(f"Error during database operation: {e}", exc_info=True)
                try:
                    await connection.reset()
                except Exception as reset_error:
                    logger.error(f"Failed to reset connection: {reset_error}")
                raise

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        """
        Execute a query without returning results

        Returns:
            Status string (e.g., "DELETE 1")
        """
        async with self.acquire() as conn:
            return await conn.execute(query, *args, timeout=timeout)

    async def fetch(self, query: str, *args, timeout: Optional[float] = None) -> List[asyncpg.Record]:
        """Fetch multiple rows"""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args, timeout: Optional[float] = None) -> Optional[asyncpg.Record]:
        """Fetch a single row"""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args, timeout=timeout)

    async def fetchval(
        self,
        query: str,
        *args,
        column: int = 0,
        timeout: Optional[float] = None
    ) -> Any:
        """Fetch a single value"""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column, timeout=timeout)

    async def check_connection(self) -> bool:
        """
        Check if database connection is healthy

        Returns:
            True if connection is healthy
        """
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except Exception as e:
            logger.error(f"Connection check failed: {e}")
            return False

    async def get_pool_stats(self) -> Dict[str, Any]:
        """Connection pool statistics for the health endpoint."""
        if self.pool is None:
            return {'status': 'disconnected', 'size': 0, 'freesize': 0}

        return {
            'status': 'connected',
            'size': self.pool.get_size(),
            'freesize': self.pool.get_idle_size(),
            'min_size': self.config.min_pool_size,
            'max_size': self.config.max_pool_size
        }

    # ------------------------------------------------------------------
    # Storage catalog
    # ------------------------------------------------------------------

    async def get_all_tables(self) -> List[str]:
        """
        Get list of all base tables in the configured schema

        Returns:
            List of table names
        """
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = $1
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        result = await self.fetch(query, self.schema)
        return [row['table_name'] for row in result]

    async def get_table_info(self, table_name: str) -> Dict[str, Any]:
        """
        Describe a table from the catalog: columns, constraints, indexes, foreign keys

        Args:
            table_name: Name of the table

        Returns:
            Dictionary with raw catalog rows
        """
        columns_query = """
            SELECT
                column_name,
                data_type,
                udt_name,
                is_nullable,
                column_default,
                is_identity
            FROM information_schema.columns
            WHERE table_schema = $1 AND table_name = $2
            ORDER BY ordinal_position
        """
        columns = await self.fetch(columns_query, self.schema, table_name)

        constraints_query = """
            SELECT
                tc.constraint_name,
                tc.constraint_type,
                kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
                AND tc.table_name = kcu.table_name
            WHERE tc.table_schema = $1 AND tc.table_name = $2
            AND tc.constraint_type IN ('PRIMARY KEY', 'UNIQUE', 'FOREIGN KEY')
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """
        constraints = await self.fetch(constraints_query, self.schema, table_name)

        indexes_query = """
            SELECT
                indexname,
                indexdef
            FROM pg_indexes
            WHERE schemaname = $1 AND tablename = $2
            ORDER BY indexname
        """
        indexes = await self.fetch(indexes_query, self.schema, table_name)

        foreign_keys_query = """
            SELECT
                kcu.column_name,
                ccu.table_name AS referenced_table,
                ccu.column_name AS referenced_column
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
                ON ccu.constraint_name = tc.constraint_name
                AND ccu.table_schema = tc.table_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
            AND tc.table_schema = $1 AND tc.table_name = $2
            ORDER BY kcu.column_name
        """
        foreign_keys = await self.fetch(foreign_keys_query, self.schema, table_name)

        return {
            'table_name': table_name,
            'columns': [dict(col) for col in columns],
            'constraints': [dict(con) for con in constraints],
            'indexes': [dict(idx) for idx in indexes],
            'foreign_keys': [dict(fk) for fk in foreign_keys],
        }
