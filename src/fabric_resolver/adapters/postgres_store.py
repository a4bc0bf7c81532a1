"""
PostgreSQL credential store — certificates and private keys in one table.

Adapter layer — implements the KeyValueStore port using psycopg (v3) with
parameterized queries. Entries live in a single table partitioned by
namespace:

    CREATE TABLE credential_store (
        namespace  TEXT        NOT NULL,   -- 'cert' or 'key'
        entry_key  TEXT        NOT NULL,   -- same names as the file store
        value      BYTEA       NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (namespace, entry_key)
    );

Read-only: writing credentials is the enrollment tool's job.
Transient connection errors are retried with tenacity; a missing row is
NOT_FOUND, every other failure a DATABASE_ERROR.
"""

from __future__ import annotations

from collections.abc import Callable

import psycopg
import structlog
from psycopg import sql
from railway import ErrorCode
from railway.result import Result
from railway.result_failures import ResultFailures
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fabric_resolver.adapters.file_store import StoreKey, cert_file_name, key_file_name

log = structlog.get_logger()

CERT_NAMESPACE = "cert"
KEY_NAMESPACE = "key"

_SELECT = "SELECT value FROM {table} WHERE namespace = %s AND entry_key = %s"


class PsycopgKeyValueStore:
    """
    Load store entries from PostgreSQL.

    Implements the KeyValueStore port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(
        self,
        dsn: str,
        namespace: str,
        entry_key: Callable[[StoreKey], str],
        table: str = "credential_store",
    ) -> None:
        self._dsn = dsn
        self._namespace = namespace
        self._entry_key = entry_key
        self._query = sql.SQL(_SELECT).format(table=sql.Identifier(table))

    def load(self, key: StoreKey) -> Result[bytes]:
        try:
            entry = self._entry_key(key)
        except TypeError as exc:
            return ResultFailures.validation_error(str(exc), exc)

        return Result.from_computation(
            lambda: self._fetch(entry),
            ErrorCode.DATABASE_ERROR,
            f"Failed to load {self._namespace} entry {entry} from database",
        ).flat_map(
            lambda rows: Result.success(bytes(rows[0][0]))
            if rows
            else ResultFailures.not_found(f"Store {self._namespace} entry", entry)
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=5),
        retry=retry_if_exception_type(psycopg.OperationalError),
        reraise=True,
    )
    def _fetch(self, entry: str) -> list[tuple[bytes]]:
        """SELECT with retry; an empty list means the entry does not exist."""
        with psycopg.connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(self._query, (self._namespace, entry))
            rows = cur.fetchall()
            log.debug("store.db_lookup", namespace=self._namespace, entry=entry, found=bool(rows))
            return rows


def certificate_db_store(dsn: str, table: str = "credential_store") -> PsycopgKeyValueStore:
    return PsycopgKeyValueStore(dsn, CERT_NAMESPACE, cert_file_name, table)


def key_db_store(dsn: str, table: str = "credential_store") -> PsycopgKeyValueStore:
    return PsycopgKeyValueStore(dsn, KEY_NAMESPACE, key_file_name, table)
