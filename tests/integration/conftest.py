"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
Creates the credential_store table matching the production schema.
Each test gets a fresh, clean table via truncation.
"""

from __future__ import annotations

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

DDL = """
CREATE TABLE credential_store (
    namespace   TEXT        NOT NULL,
    entry_key   TEXT        NOT NULL,
    value       BYTEA       NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (namespace, entry_key)
);
"""

TRUNCATE_ALL = """
TRUNCATE credential_store;
"""


@pytest.fixture(scope="session")
def postgres_container() -> PostgresContainer:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        dsn = pg.get_connection_url().replace("postgresql+psycopg2", "postgresql")
        with psycopg.connect(dsn) as conn:
            conn.execute(DDL)
            conn.commit()
        yield pg


@pytest.fixture()
def dsn(postgres_container: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN and truncate the store before each test."""
    connection_url = postgres_container.get_connection_url().replace(
        "postgresql+psycopg2", "postgresql"
    )
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        conn.commit()
    return connection_url


def insert_entry(dsn: str, namespace: str, entry_key: str, value: bytes) -> None:
    """Write one store entry directly, bypassing the adapter."""
    with psycopg.connect(dsn) as conn:
        conn.execute(
            "INSERT INTO credential_store (namespace, entry_key, value) VALUES (%s, %s, %s)",
            (namespace, entry_key, value),
        )
        conn.commit()
