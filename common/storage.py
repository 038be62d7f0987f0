"""In-process relational store for the back office core.

Tables hold plain dict rows keyed by UUID. Writes go through ``atomic()``,
which serializes writers per logical key (one wallet, one reseller) and
stages every write in a unit of work that is applied all-or-nothing at
commit. Unique and append-only constraints are enforced at commit time.
"""

import threading
from collections import defaultdict
from contextlib import contextmanager
from copy import deepcopy
from typing import Any, Iterator, Optional
from uuid import UUID

from .errors import PersistenceError

RESELLERS = "resellers"
WALLETS = "wallets"
WALLET_TRANSACTIONS = "wallet_transactions"
VALIDITY = "validity"
VALIDITY_HISTORY = "validity_history"
NUMBER_LIMITS = "number_limits"

TABLES = (RESELLERS, WALLETS, WALLET_TRANSACTIONS, VALIDITY, VALIDITY_HISTORY, NUMBER_LIMITS)

# Rows are never updated or deleted once written.
APPEND_ONLY = frozenset({WALLET_TRANSACTIONS, VALIDITY_HISTORY})

# One row per reseller.
UNIQUE_COLUMNS = {
    WALLETS: "reseller_id",
    VALIDITY: "reseller_id",
    NUMBER_LIMITS: "reseller_id",
}


def _matches(row: dict, criteria: dict) -> bool:
    return all(row.get(column) == value for column, value in criteria.items())


class UnitOfWork:
    """Staged writes for one atomic block, readable before commit."""

    def __init__(self, storage: "InMemoryStorage"):
        self.storage = storage
        self.staged: dict[str, dict[UUID, dict]] = defaultdict(dict)
        self.inserted: set[tuple[str, UUID]] = set()
        self.held: list[threading.RLock] = []

    def get(self, table: str, row_id: UUID) -> Optional[dict]:
        if row_id in self.staged[table]:
            return deepcopy(self.staged[table][row_id])
        return self.storage.get(table, row_id)

    def find(self, table: str, **criteria) -> list[dict]:
        rows = {row["id"]: row for row in self.storage.find(table, **criteria)}
        for row_id, row in self.staged[table].items():
            if _matches(row, criteria):
                rows[row_id] = deepcopy(row)
        return list(rows.values())

    def find_one(self, table: str, **criteria) -> Optional[dict]:
        rows = self.find(table, **criteria)
        return rows[0] if rows else None

    def insert(self, table: str, row: dict) -> dict:
        row_id = row["id"]
        if row_id in self.staged[table] or self.storage.get(table, row_id) is not None:
            raise PersistenceError(f"Duplicate primary key {row_id} in {table}")
        self.staged[table][row_id] = deepcopy(row)
        self.inserted.add((table, row_id))
        return deepcopy(row)

    def update(self, table: str, row: dict) -> dict:
        if table in APPEND_ONLY:
            raise PersistenceError(f"{table} is append-only")
        row_id = row["id"]
        if (table, row_id) not in self.inserted and self.storage.get(table, row_id) is None:
            raise PersistenceError(f"Row {row_id} not found in {table}")
        self.staged[table][row_id] = deepcopy(row)
        return deepcopy(row)

    def commit(self) -> None:
        self.storage._apply(self)


class InMemoryStorage:
    def __init__(self):
        self.tables: dict[str, dict[UUID, dict]] = {name: {} for name in TABLES}
        self._commit_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._key_locks: dict[str, threading.RLock] = {}
        self._local = threading.local()

    # Reads

    def get(self, table: str, row_id: UUID) -> Optional[dict]:
        row = self.tables[table].get(row_id)
        return deepcopy(row) if row is not None else None

    def find(self, table: str, **criteria) -> list[dict]:
        with self._commit_lock:
            return [deepcopy(row) for row in self.tables[table].values() if _matches(row, criteria)]

    def find_one(self, table: str, **criteria) -> Optional[dict]:
        rows = self.find(table, **criteria)
        return rows[0] if rows else None

    def count(self, table: str, **criteria) -> int:
        return len(self.find(table, **criteria))

    # Writes

    def _lock_for(self, key: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.RLock()
            return lock

    @contextmanager
    def atomic(self, *keys: str) -> Iterator[UnitOfWork]:
        """Serialize writers on ``keys`` and commit staged writes together.

        Nested blocks on the same thread join the outer unit of work. Their
        locks stay held until the outer block commits or rolls back.
        """
        locks = [self._lock_for(key) for key in sorted(set(keys))]
        outer = getattr(self._local, "uow", None)
        if outer is not None:
            for lock in locks:
                lock.acquire()
                outer.held.append(lock)
            yield outer
            return

        uow = UnitOfWork(self)
        for lock in locks:
            lock.acquire()
            uow.held.append(lock)
        self._local.uow = uow
        try:
            yield uow
            uow.commit()
        finally:
            self._local.uow = None
            for lock in reversed(uow.held):
                lock.release()

    def _apply(self, uow: UnitOfWork) -> None:
        with self._commit_lock:
            for table, rows in uow.staged.items():
                self._check_unique(table, rows)
            for table, rows in uow.staged.items():
                for row_id, row in rows.items():
                    self.tables[table][row_id] = deepcopy(row)

    def _check_unique(self, table: str, rows: dict[UUID, dict]) -> None:
        column = UNIQUE_COLUMNS.get(table)
        if column is None:
            return
        owners: dict[Any, UUID] = {
            row[column]: row_id for row_id, row in self.tables[table].items() if row_id not in rows
        }
        for row_id, row in rows.items():
            value = row[column]
            if value in owners and owners[value] != row_id:
                raise PersistenceError(f"Unique constraint violated on {table}.{column}={value}")
            owners[value] = row_id
