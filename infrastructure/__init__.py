# ============================================================================
# CLAUDE CONTEXT - INFRASTRUCTURE MODULE
# ============================================================================
# STATUS: Core Infrastructure - Database access
# PURPOSE: Shared PostgreSQL connection management for the processes API
# EXPORTS: PostgreSQLRepository
# DEPENDENCIES: psycopg, config
# ============================================================================

"""
Infrastructure Module

Provides the PostgreSQLRepository base class shared by the process
catalog and the job store.
"""

from .postgresql import PostgreSQLRepository

__version__ = "1.0.0"
__all__ = [
    "PostgreSQLRepository"
]
