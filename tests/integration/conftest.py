"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
The kv_store table is created by the adapter itself (ensure_schema), the
same way the application does at startup. Each test gets an empty table
via truncation.
"""

from __future__ import annotations

from collections.abc import Iterator

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

from cert_broker.adapters.storage import PsycopgKeyValueStorage

TRUNCATE_ALL = "TRUNCATE kv_store"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        yield pg


@pytest.fixture(scope="session")
def session_dsn(postgres_container: PostgresContainer) -> str:
    dsn = postgres_container.get_connection_url(driver=None)
    PsycopgKeyValueStorage(dsn).ensure_schema().value()
    return dsn


@pytest.fixture()
def dsn(session_dsn: str) -> str:
    """Return a psycopg-compatible DSN and truncate the table before each test."""
    with psycopg.connect(session_dsn) as conn:
        conn.execute(TRUNCATE_ALL)
    return session_dsn


@pytest.fixture()
def pg_storage(dsn: str) -> PsycopgKeyValueStorage:
    return PsycopgKeyValueStorage(dsn, connect_timeout=5)
