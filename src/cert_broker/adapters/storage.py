"""
Storage adapters — key-value persistence for roles and certificate records.

Adapter layer — implements the KeyValueStorage port twice:

  PsycopgKeyValueStorage  one PostgreSQL table (key TEXT PK, value BYTEA),
                          one connection per call, parameterized SQL
  InMemoryKeyValueStorage a locked dict, for tests and single-process runs

put_if_absent is a single conditional statement in both adapters
(INSERT ... ON CONFLICT DO NOTHING / check-and-set under the lock), which
is what makes concurrent first revocations of a serial converge.

Deadlines are per process, not per call: connect_timeout bounds opening a
connection and statement_timeout (sent as a session option) bounds every
statement. A call that runs out of either fails with DATABASE_ERROR and,
being a single statement, leaves nothing half-written. Request handlers run
synchronously and carry no cancellation handle, so a client that disconnects
does not abort a call already in flight.

All exceptions are caught at this adapter boundary via Result.from_computation().
"""

from __future__ import annotations

import threading

import psycopg
import structlog
from railway import ErrorCode
from railway.result import Result

from cert_broker.domain.models import ROLES_PREFIX, Role, StorageEntry
from cert_broker.domain.ports import KeyValueStorage

log = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key    TEXT PRIMARY KEY,
    value  BYTEA NOT NULL
)
"""

_SELECT = "SELECT value FROM kv_store WHERE key = %s"

_UPSERT = """
INSERT INTO kv_store (key, value) VALUES (%s, %s)
ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
"""

_INSERT_IF_ABSENT = """
INSERT INTO kv_store (key, value) VALUES (%s, %s)
ON CONFLICT (key) DO NOTHING
"""

_LIST = "SELECT key FROM kv_store WHERE starts_with(key, %s) ORDER BY key"


class PsycopgKeyValueStorage:
    """
    Key-value storage on a single PostgreSQL table.

    Implements the KeyValueStorage port. Every call opens its own
    connection; single-statement writes are atomic per key.
    """

    def __init__(self, dsn: str, connect_timeout: int = 10, statement_timeout: int = 30) -> None:
        self._dsn = dsn
        self._connect_timeout = connect_timeout
        self._statement_timeout = statement_timeout

    def ensure_schema(self) -> Result[str]:
        """Create the kv_store table when it doesn't exist yet."""
        return Result.from_computation(
            lambda: self._execute_ddl(),
            ErrorCode.DATABASE_ERROR,
            "Failed to create the key-value table",
        )

    def get(self, key: str) -> Result[StorageEntry]:
        return Result.from_computation(
            lambda: self._select(key),
            ErrorCode.DATABASE_ERROR,
            f"Failed to read {key}",
        )

    def put(self, key: str, value: bytes) -> Result[str]:
        return Result.from_computation(
            lambda: self._upsert(key, value),
            ErrorCode.DATABASE_ERROR,
            f"Failed to write {key}",
        )

    def put_if_absent(self, key: str, value: bytes) -> Result[bool]:
        return Result.from_computation(
            lambda: self._write(_INSERT_IF_ABSENT, key, value),
            ErrorCode.DATABASE_ERROR,
            f"Failed to write {key}",
        )

    def list(self, prefix: str) -> Result[list[str]]:
        return Result.from_computation(
            lambda: self._list(prefix),
            ErrorCode.DATABASE_ERROR,
            f"Failed to list {prefix}",
        )

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(
            self._dsn,
            connect_timeout=self._connect_timeout,
            options=f"-c statement_timeout={self._statement_timeout * 1000}",
        )

    def _execute_ddl(self) -> str:
        with self._connect() as conn:
            conn.execute(SCHEMA)
        log.info("storage.schema_ready", table="kv_store")
        return "kv_store"

    def _select(self, key: str) -> StorageEntry:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(_SELECT, (key,))
            row = cur.fetchone()
        return StorageEntry(key=key, value=bytes(row[0]) if row else None)

    def _upsert(self, key: str, value: bytes) -> str:
        self._write(_UPSERT, key, value)
        return key

    def _write(self, statement: str, key: str, value: bytes) -> bool:
        """Run an insert statement; True when a row was inserted or updated."""
        with self._connect() as conn, conn.transaction(), conn.cursor() as cur:
            cur.execute(statement, (key, value))
            written = cur.rowcount == 1
        log.debug("storage.write", key=key, written=written)
        return written

    def _list(self, prefix: str) -> list[str]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(_LIST, (prefix,))
            return [row[0][len(prefix) :] for row in cur.fetchall()]


class InMemoryKeyValueStorage:
    """
    Dict-backed storage guarded by a lock.

    Implements the KeyValueStorage port. Never fails; useful in tests and
    when no DSN is configured (records are lost on restart).
    """

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Result[StorageEntry]:
        with self._lock:
            return Result.success(StorageEntry(key=key, value=self._data.get(key)))

    def put(self, key: str, value: bytes) -> Result[str]:
        with self._lock:
            self._data[key] = value
        return Result.success(key)

    def put_if_absent(self, key: str, value: bytes) -> Result[bool]:
        with self._lock:
            if key in self._data:
                return Result.success(False)
            self._data[key] = value
        return Result.success(True)

    def delete(self, key: str) -> None:
        """Remove a key. Not part of the port; operators and tests use it."""
        with self._lock:
            self._data.pop(key, None)

    def list(self, prefix: str) -> Result[list[str]]:
        with self._lock:
            keys = sorted(k for k in self._data if k.startswith(prefix))
        return Result.success([k[len(prefix) :] for k in keys])


class StorageRoleStore:
    """
    Role policies stored as JSON under roles/<name>.

    Implements the RoleStore port on top of any KeyValueStorage.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage

    def get_role(self, name: str) -> Result[Role]:
        return (
            self._storage.get(ROLES_PREFIX + name)
            .ensure(lambda entry: entry.exists, ErrorCode.NOT_FOUND, f"unknown role: {name}")
            .flat_map(
                lambda entry: Result.from_computation(
                    lambda: Role.from_json(entry.value),  # type: ignore[arg-type]
                    ErrorCode.DATABASE_ERROR,
                    f"Stored role {name} is malformed",
                )
            )
        )

    def put_role(self, role: Role) -> Result[Role]:
        return self._storage.put(ROLES_PREFIX + role.name, role.to_json()).map(lambda _: role)

    def list_roles(self) -> Result[list[str]]:
        return self._storage.list(ROLES_PREFIX)
