"""Persistence for synced users and executions.

Two backends share one interface: ``InMemoryStore`` keeps records for the
lifetime of the process, ``SqliteStore`` keeps them on disk. Both make status
transitions atomic with a compare-and-swap on the current status.
"""

from __future__ import annotations

import abc
import dataclasses
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from kanz.core.errors import Conflict, NotFound
from kanz.core.models import Execution, ExecutionStatus, SyncedUser, SyncedWallet
from kanz.core.users import merge_wallets
from kanz.core.utils import get_logger, utc_now_iso

LOGGER = get_logger("kanz.store")

# Fields a transition may write besides ``status``.
MUTABLE_FIELDS = frozenset(
    {"evm_tx_hash", "bridge_message_id", "swap_tx_hash", "error_code", "error_message"}
)


def _check_changes(changes: Dict[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields are not mutable: {', '.join(sorted(unknown))}")


class ExecutionStore(abc.ABC):
    """Repository over the ``users`` and ``executions`` collections."""

    @abc.abstractmethod
    def get_user(self, user_id: str) -> Optional[SyncedUser]:
        ...

    @abc.abstractmethod
    def upsert_wallets(self, user_id: str, wallets: Sequence[SyncedWallet]) -> SyncedUser:
        """Merge ``wallets`` into the user's record, creating it if needed."""

    @abc.abstractmethod
    def insert_execution(self, execution: Execution) -> Tuple[Execution, bool]:
        """Persist a new execution.

        Returns ``(record, created)``. When the execution carries an
        idempotency key already used by the same user, the existing record is
        returned with ``created=False``.
        """

    @abc.abstractmethod
    def get_execution(self, execution_id: str) -> Optional[Execution]:
        ...

    @abc.abstractmethod
    def transition(
        self,
        execution_id: str,
        *,
        expected: ExecutionStatus,
        status: ExecutionStatus,
        **changes: Any,
    ) -> Execution:
        """Move ``execution_id`` from ``expected`` to ``status`` atomically.

        Raises ``NotFound`` if the record is absent and ``Conflict`` if its
        current status is no longer ``expected``.
        """

    def close(self) -> None:
        """Release backend resources."""


class InMemoryStore(ExecutionStore):
    """Process-local store guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[str, SyncedUser] = {}
        self._executions: Dict[str, Execution] = {}
        self._idempotency: Dict[Tuple[str, str], str] = {}

    def get_user(self, user_id: str) -> Optional[SyncedUser]:
        with self._lock:
            return self._users.get(user_id)

    def upsert_wallets(self, user_id: str, wallets: Sequence[SyncedWallet]) -> SyncedUser:
        with self._lock:
            existing = self._users.get(user_id)
            merged = merge_wallets(existing.wallets if existing else (), wallets)
            user = SyncedUser(user_id=user_id, wallets=merged)
            self._users[user_id] = user
            return user

    def insert_execution(self, execution: Execution) -> Tuple[Execution, bool]:
        with self._lock:
            if execution.idempotency_key:
                key = (execution.user_id, execution.idempotency_key)
                existing_id = self._idempotency.get(key)
                if existing_id is not None:
                    return self._executions[existing_id], False
                self._idempotency[key] = execution.id
            self._executions[execution.id] = execution
            return execution, True

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        with self._lock:
            return self._executions.get(execution_id)

    def transition(
        self,
        execution_id: str,
        *,
        expected: ExecutionStatus,
        status: ExecutionStatus,
        **changes: Any,
    ) -> Execution:
        _check_changes(changes)
        with self._lock:
            current = self._executions.get(execution_id)
            if current is None:
                raise NotFound()
            if current.status != expected:
                raise Conflict(
                    f"Execution moved to {current.status.value} before this update",
                    details={"status": current.status.value},
                )
            updated = dataclasses.replace(current, status=status, updated_at=utc_now_iso(), **changes)
            self._executions[execution_id] = updated
            return updated


_EXECUTION_COLUMNS = (
    "id",
    "user_id",
    "amount_usdc",
    "source_chain",
    "evm_address",
    "solana_address",
    "created_at",
    "updated_at",
    "status",
    "evm_tx_hash",
    "bridge_message_id",
    "swap_tx_hash",
    "error_code",
    "error_message",
    "idempotency_key",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    wallets TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS executions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    amount_usdc TEXT NOT NULL,
    source_chain TEXT NOT NULL,
    evm_address TEXT NOT NULL,
    solana_address TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    status TEXT NOT NULL,
    evm_tx_hash TEXT,
    bridge_message_id TEXT,
    swap_tx_hash TEXT,
    error_code TEXT,
    error_message TEXT,
    idempotency_key TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS executions_idempotency
    ON executions (user_id, idempotency_key) WHERE idempotency_key IS NOT NULL;
"""


class SqliteStore(ExecutionStore):
    """Durable store on a single SQLite file.

    Transitions are a conditional ``UPDATE ... WHERE status = ?`` so a stale
    writer changes zero rows and gets ``Conflict``.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = str(path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.executescript(_SCHEMA)
        LOGGER.info("Opened SQLite store at %s", self.path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _wallets_to_json(wallets: Sequence[SyncedWallet]) -> str:
        return json.dumps([dataclasses.asdict(w) for w in wallets])

    @staticmethod
    def _wallets_from_json(raw: str) -> Tuple[SyncedWallet, ...]:
        return tuple(SyncedWallet(**item) for item in json.loads(raw))

    @staticmethod
    def _row_to_execution(row: sqlite3.Row) -> Execution:
        data = {key: row[key] for key in _EXECUTION_COLUMNS}
        data["status"] = ExecutionStatus(data["status"])
        return Execution(**data)

    def get_user(self, user_id: str) -> Optional[SyncedUser]:
        with self._lock:
            row = self._conn.execute("SELECT wallets FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return SyncedUser(user_id=user_id, wallets=self._wallets_from_json(row["wallets"]))

    def upsert_wallets(self, user_id: str, wallets: Sequence[SyncedWallet]) -> SyncedUser:
        with self._lock, self._conn:
            row = self._conn.execute("SELECT wallets FROM users WHERE user_id = ?", (user_id,)).fetchone()
            existing = self._wallets_from_json(row["wallets"]) if row else ()
            merged = merge_wallets(existing, wallets)
            self._conn.execute(
                "INSERT INTO users (user_id, wallets) VALUES (?, ?) "
                "ON CONFLICT(user_id) DO UPDATE SET wallets = excluded.wallets",
                (user_id, self._wallets_to_json(merged)),
            )
        return SyncedUser(user_id=user_id, wallets=merged)

    def insert_execution(self, execution: Execution) -> Tuple[Execution, bool]:
        values = dataclasses.asdict(execution)
        values["status"] = execution.status.value
        placeholders = ", ".join("?" for _ in _EXECUTION_COLUMNS)
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        f"INSERT INTO executions ({', '.join(_EXECUTION_COLUMNS)}) VALUES ({placeholders})",
                        tuple(values[key] for key in _EXECUTION_COLUMNS),
                    )
            except sqlite3.IntegrityError:
                if not execution.idempotency_key:
                    raise
                row = self._conn.execute(
                    "SELECT * FROM executions WHERE user_id = ? AND idempotency_key = ?",
                    (execution.user_id, execution.idempotency_key),
                ).fetchone()
                if row is None:
                    raise
                return self._row_to_execution(row), False
        return execution, True

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM executions WHERE id = ?", (execution_id,)).fetchone()
        return self._row_to_execution(row) if row else None

    def transition(
        self,
        execution_id: str,
        *,
        expected: ExecutionStatus,
        status: ExecutionStatus,
        **changes: Any,
    ) -> Execution:
        _check_changes(changes)
        assignments = {"status": status.value, "updated_at": utc_now_iso(), **changes}
        set_clause = ", ".join(f"{key} = ?" for key in assignments)
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    f"UPDATE executions SET {set_clause} WHERE id = ? AND status = ?",
                    (*assignments.values(), execution_id, expected.value),
                )
            row = self._conn.execute("SELECT * FROM executions WHERE id = ?", (execution_id,)).fetchone()
        if row is None:
            raise NotFound()
        current = self._row_to_execution(row)
        if cursor.rowcount == 0:
            raise Conflict(
                f"Execution moved to {current.status.value} before this update",
                details={"status": current.status.value},
            )
        return current


def open_store(path: Optional[str] = None) -> ExecutionStore:
    """Return a SQLite store when ``path`` is set, otherwise an in-memory one."""
    if path:
        return SqliteStore(path)
    return InMemoryStore()


__all__ = ["ExecutionStore", "InMemoryStore", "MUTABLE_FIELDS", "SqliteStore", "open_store"]
