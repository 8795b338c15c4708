# ============================================================================
# CLAUDE CONTEXT - POSTGRESQL REPOSITORY
# ============================================================================
# STATUS: Core Infrastructure - PostgreSQL connection management
# PURPOSE: PostgreSQL access for the process catalog and the job store
# EXPORTS: PostgreSQLRepository
# DEPENDENCIES: psycopg, config
# SCOPE: Read/write database operations for API serving
# PATTERNS: Repository pattern, Per-request connections, Managed identity
# ============================================================================

"""
PostgreSQL Repository - Base Database Access

Provides PostgreSQL connection management with support for:
- Password-based authentication (local development)
- Azure Managed Identity authentication (production)
- Per-operation connection creation (no pooling)
- Safe SQL execution with psycopg.sql composition
- Schema verification

Usage:
    from infrastructure.postgresql import PostgreSQLRepository

    repo = PostgreSQLRepository(schema_name='meta')
    with repo._get_cursor() as cursor:
        cursor.execute("SELECT count(*) AS n FROM meta.jobs")
        total = cursor.fetchone()['n']
"""

import logging
import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from typing import Optional, Tuple, Any
from contextlib import contextmanager

from config import get_postgres_connection_string

logger = logging.getLogger(__name__)


class PostgreSQLRepository:
    """
    PostgreSQL repository base class with connection management.

    Connection Strategy:
    -------------------
    Each operation creates a NEW connection and closes it immediately after use.
    No connection pooling is used - suitable for serverless Azure Functions
    where connection reuse across requests is not beneficial.

    Example:
    -------
    ```python
    repo = PostgreSQLRepository(schema_name='meta')

    # Single statement with auto-commit
    with repo._get_cursor() as cursor:
        cursor.execute("DELETE FROM meta.jobs WHERE job_id = %s", (job_id,))

    # Multi-statement transaction
    with repo._get_connection() as conn:
        with conn.cursor() as cursor:
            cursor.execute(...)
            cursor.execute(...)
        conn.commit()
    ```
    """

    def __init__(self, connection_string: Optional[str] = None,
                 schema_name: str = 'meta',
                 statement_timeout_seconds: Optional[int] = None):
        """
        Initialize PostgreSQL repository.

        Parameters:
        ----------
        connection_string : Optional[str]
            Explicit PostgreSQL connection string. If not provided,
            uses get_postgres_connection_string() from config module.

        schema_name : str
            Database schema holding the tables. Defaults to 'meta'.

        statement_timeout_seconds : Optional[int]
            Applied to every connection via SET statement_timeout.
        """
        self.schema_name = schema_name
        self.statement_timeout_seconds = statement_timeout_seconds
        self._explicit_conn_string = connection_string

        self._ensure_schema_exists()

        logger.info(f"✅ PostgreSQLRepository initialized with schema: {self.schema_name}")

    @property
    def conn_string(self) -> str:
        # Managed identity tokens expire; resolve lazily per connection
        return self._explicit_conn_string or get_postgres_connection_string()

    @contextmanager
    def _get_connection(self):
        """
        Context manager for PostgreSQL database connections.

        1. Create connection using connection string
        2. Yield connection to caller
        3. On error: rollback transaction
        4. Always: close connection

        Yields:
        ------
        psycopg.Connection
            Active PostgreSQL connection with dict_row factory.
            Autocommit is OFF by default (explicit commit needed).
        """
        conn = None
        try:
            logger.debug(f"🔗 Attempting PostgreSQL connection to schema: {self.schema_name}")
            conn = psycopg.connect(self.conn_string, row_factory=dict_row)

            if self.statement_timeout_seconds:
                conn.execute(
                    sql.SQL("SET statement_timeout = {}").format(
                        sql.Literal(f"{self.statement_timeout_seconds}s")
                    )
                )

            yield conn

        except psycopg.Error as e:
            logger.error(f"❌ PostgreSQL error: {type(e).__name__}: {e}")
            if conn is not None and not conn.closed:
                try:
                    conn.rollback()
                except psycopg.Error as rollback_error:
                    logger.warning(f"Rollback failed: {rollback_error}")
            raise

        finally:
            if conn is not None:
                conn.close()
                logger.debug("🔒 Connection closed")

    @contextmanager
    def _get_cursor(self, conn=None):
        """
        Context manager for PostgreSQL cursors with auto-transaction handling.

        - With conn: Caller controls transaction (no auto-commit)
        - Without conn: Auto-commits on success, auto-rollback on error
        """
        if conn is not None:
            with conn.cursor() as cursor:
                yield cursor
        else:
            with self._get_connection() as conn:
                with conn.cursor() as cursor:
                    yield cursor
                conn.commit()

    def _ensure_schema_exists(self) -> None:
        """
        Verify that the target database schema exists.

        Logs a warning if missing but doesn't fail - actual operations
        will fail with specific errors if the schema is genuinely missing.
        """
        try:
            with self._get_cursor() as cursor:
                cursor.execute(
                    "SELECT schema_name FROM information_schema.schemata WHERE schema_name = %s",
                    (self.schema_name,)
                )
                if not cursor.fetchone():
                    logger.warning(
                        f"⚠️ Schema '{self.schema_name}' does not exist. "
                        f"Run sql/processes_schema.sql before serving requests."
                    )
                else:
                    logger.debug(f"✅ Schema '{self.schema_name}' exists")

        except psycopg.Error as e:
            logger.error(f"❌ Error checking schema existence: {e}")

    def _execute_query(self, query: sql.Composed, params: Optional[Tuple] = None,
                       fetch: Optional[str] = None) -> Optional[Any]:
        """
        Execute a single composed statement and commit.

        Parameters:
        ----------
        query : sql.Composed
            SQL built with psycopg.sql composition for injection safety.
        params : Optional[Tuple]
            Query parameters for %s placeholders.
        fetch : Optional[str]
            Fetch mode: None | 'one' | 'all'

        Returns:
        -------
        - fetch='one': Single row or None
        - fetch='all': List of rows
        - fetch=None: Row count

        Raises:
        ------
        TypeError
            If query is not sql.Composed (security requirement)
        ValueError
            If fetch parameter is invalid
        psycopg.Error
            Propagated unchanged; callers translate to their own taxonomy
        """
        if not isinstance(query, sql.Composed):
            raise TypeError(f"Query must be sql.Composed, got {type(query)}")

        if fetch and fetch not in ('one', 'all'):
            raise ValueError(f"Invalid fetch mode: {fetch}")

        with self._get_cursor() as cursor:
            cursor.execute(query, params)

            if fetch == 'one':
                return cursor.fetchone()
            if fetch == 'all':
                return cursor.fetchall()
            return cursor.rowcount

    def _table(self, table_name: str) -> sql.Composed:
        """Schema-qualified identifier for a table."""
        return sql.Identifier(self.schema_name, table_name)
