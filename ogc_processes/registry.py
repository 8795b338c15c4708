# ============================================================================
# CLAUDE CONTEXT - PROCESS REGISTRY
# ============================================================================
# STATUS: Standalone Repository - Process catalog (read-only)
# PURPOSE: List and describe the processes this API can execute
# EXPORTS: ProcessRegistry, InMemoryProcessRegistry, PostgresProcessRegistry,
#          LayeredProcessRegistry
# DEPENDENCIES: psycopg, pydantic, infrastructure.postgresql
# SOURCE: meta.processes table (seeded out of band) or built-in definitions
# SCOPE: Read-only catalog; safe to share between threads without locking
# PATTERNS: Repository Pattern, SQL Composition
# ============================================================================

"""
Process Registry

The catalog is administered out of band (see ``sql/processes_schema.sql``);
this module only reads it. Rows hold the summary, inputs and outputs as JSON
documents. Navigation links are never stored - the service computes them
for every response.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

from psycopg import sql
from pydantic import ValidationError as PydanticValidationError

from infrastructure.postgresql import PostgreSQLRepository

from .errors import NoSuchProcess, storage_errors
from .models import Process, ProcessSummary

logger = logging.getLogger(__name__)


class ProcessRegistry(ABC):
    """Read-only catalog of process definitions."""

    @abstractmethod
    def list_processes(self, offset: int, limit: int) -> Tuple[List[ProcessSummary], int]:
        """Return one page of summaries ordered by id, plus the total count."""

    @abstractmethod
    def get_process(self, process_id: str) -> Process:
        """Return the full description. Raises NoSuchProcess."""

    def exists(self, process_id: str) -> bool:
        try:
            self.get_process(process_id)
        except NoSuchProcess:
            return False
        return True


class InMemoryProcessRegistry(ProcessRegistry):
    """Catalog built from Process definitions (built-ins, tests, local dev)."""

    def __init__(self, processes: Iterable[Process]):
        self._processes = {p.id: p for p in processes}
        self._ordered_ids = sorted(self._processes)

    def list_processes(self, offset: int, limit: int) -> Tuple[List[ProcessSummary], int]:
        page = self._ordered_ids[offset:offset + limit]
        return [self._processes[pid].summary() for pid in page], len(self._ordered_ids)

    def get_process(self, process_id: str) -> Process:
        try:
            return self._processes[process_id]
        except KeyError:
            raise NoSuchProcess(f"Process '{process_id}' not found") from None


class PostgresProcessRegistry(PostgreSQLRepository, ProcessRegistry):
    """
    Catalog stored in ``{schema}.processes``.

    Table layout:
        id       text primary key
        summary  jsonb   (ProcessSummary without links)
        inputs   jsonb   (map of InputDescription)
        outputs  jsonb   (map of OutputDescription)
    """

    def __init__(self, schema_name: str = "meta",
                 connection_string: Optional[str] = None,
                 statement_timeout_seconds: Optional[int] = None):
        super().__init__(
            connection_string=connection_string,
            schema_name=schema_name,
            statement_timeout_seconds=statement_timeout_seconds
        )

    def list_processes(self, offset: int, limit: int) -> Tuple[List[ProcessSummary], int]:
        table = self._table("processes")
        page_query = sql.SQL(
            "SELECT id, summary FROM {table} ORDER BY id LIMIT %s OFFSET %s"
        ).format(table=table)
        count_query = sql.SQL("SELECT COUNT(*) AS count FROM {table}").format(table=table)

        with storage_errors("Process catalog", "list", logger):
            with self._get_cursor() as cur:
                cur.execute(page_query, (limit, offset))
                rows = cur.fetchall()
                cur.execute(count_query)
                total = cur.fetchone()["count"]

        summaries = [self._row_to_summary(row) for row in rows]
        logger.debug(f"Listed {len(summaries)}/{total} processes (offset={offset}, limit={limit})")
        return summaries, total

    def get_process(self, process_id: str) -> Process:
        query = sql.SQL(
            "SELECT id, summary, inputs, outputs FROM {table} WHERE id = %s"
        ).format(table=self._table("processes"))

        with storage_errors("Process catalog", "get", logger):
            with self._get_cursor() as cur:
                cur.execute(query, (process_id,))
                row = cur.fetchone()

        if not row:
            raise NoSuchProcess(f"Process '{process_id}' not found")

        try:
            return Process(
                **{**(row["summary"] or {}), "id": row["id"], "links": []},
                inputs=row["inputs"] or {},
                outputs=row["outputs"] or {}
            )
        except PydanticValidationError as e:
            logger.error(f"Catalog row for process '{process_id}' is malformed: {e}")
            raise

    @staticmethod
    def _row_to_summary(row) -> ProcessSummary:
        return ProcessSummary(**{**(row["summary"] or {}), "id": row["id"], "links": []})


class LayeredProcessRegistry(ProcessRegistry):
    """
    Built-in processes in front of a stored catalog.

    Built-ins are always available, whether or not the catalog was seeded.
    A catalog row with a built-in's id is shadowed by the built-in, since
    the executable shipped with the engine is the one that runs.
    """

    def __init__(self, builtins: Iterable[Process], catalog: ProcessRegistry):
        self._builtins = {p.id: p for p in builtins}
        self.catalog = catalog

    def get_process(self, process_id: str) -> Process:
        if process_id in self._builtins:
            return self._builtins[process_id]
        return self.catalog.get_process(process_id)

    def list_processes(self, offset: int, limit: int) -> Tuple[List[ProcessSummary], int]:
        # At most len(builtins) catalog rows are shadowed, so this prefix
        # always holds every catalog row of the requested page.
        rows, catalog_total = self.catalog.list_processes(
            offset=0, limit=offset + limit + len(self._builtins)
        )
        fetched_ids = {s.id for s in rows}
        complete = len(rows) >= catalog_total

        shadowed = {
            pid for pid in self._builtins
            if pid in fetched_ids or (not complete and self.catalog.exists(pid))
        }

        merged = [s for s in rows if s.id not in self._builtins]
        merged.extend(p.summary() for p in self._builtins.values())
        merged.sort(key=lambda s: s.id)

        total = catalog_total - len(shadowed) + len(self._builtins)
        return merged[offset:offset + limit], total
