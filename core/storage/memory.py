"""
Thread-safe in-memory store

Used by the test suite and local runs. A single lock makes the uniqueness
check and the write one atomic step, which is the guarantee the identity
resolver relies on from a real database.
"""
import copy
import logging
import threading
from typing import Any, Dict, List, Optional

from .base import Store, UniqueConstraint, sort_rows
from .errors import NotFoundError, UniqueViolationError
from .predicates import Predicate

logger = logging.getLogger("memory-store")


class InMemoryStore(Store):
    def __init__(self, constraints: Optional[Dict[str, List[UniqueConstraint]]] = None):
        super().__init__(constraints)
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def _check_unique(self, table: str, row: Dict[str, Any], ignore_id: Optional[str] = None):
        rows = self._table(table)
        for constraint in self.constraints_for(table):
            key = constraint.key_for(row)
            if key is None:
                continue
            for other_id, other in rows.items():
                if other_id == ignore_id:
                    continue
                if constraint.key_for(other) == key:
                    raise UniqueViolationError(constraint.name, table=table, context={"conflicting_id": other_id})

    def select(self, table: str, predicate: Optional[Predicate] = None,
               order_by: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [copy.deepcopy(row) for row in self._table(table).values()
                    if predicate is None or predicate.matches(row)]
        rows = sort_rows(rows, order_by)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def get(self, table: str, row_id: str) -> Dict[str, Any]:
        with self._lock:
            row = self._table(table).get(row_id)
            if row is None:
                raise NotFoundError(f"{table} row {row_id} not found", table=table)
            return copy.deepcopy(row)

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(row)
        row.setdefault("id", self.new_id())
        with self._lock:
            rows = self._table(table)
            if row["id"] in rows:
                raise UniqueViolationError(f"{table}_pkey", table=table, context={"conflicting_id": row["id"]})
            self._check_unique(table, row)
            rows[row["id"]] = row
            logger.debug(f"Inserted {table} row {row['id']}")
            return copy.deepcopy(row)

    def update(self, table: str, row_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._table(table)
            current = rows.get(row_id)
            if current is None:
                raise NotFoundError(f"{table} row {row_id} not found", table=table)
            updated = {**current, **copy.deepcopy(patch), "id": row_id}
            self._check_unique(table, updated, ignore_id=row_id)
            rows[row_id] = updated
            return copy.deepcopy(updated)

    def clear(self):
        with self._lock:
            self._tables.clear()
