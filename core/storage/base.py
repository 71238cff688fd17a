"""
Store contract used by the identity resolver and lifecycle tracker

A store is a set of named tables of JSON-compatible dict rows keyed by ``id``.
Adapters enforce the unique constraints declared in ``TABLE_CONSTRAINTS`` and
raise only the tagged errors from ``storage.errors``.
"""
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .predicates import Predicate


@dataclass(frozen=True)
class UniqueConstraint:
    """
    Unique constraint over one or more columns

    Rows with an empty value in any constrained column never conflict, the same
    way SQL treats NULLs. ``active_only`` constraints ignore rows whose
    ``is_active`` flag is false.
    """
    name: str
    columns: Tuple[str, ...]
    case_insensitive: Tuple[str, ...] = ()
    active_only: bool = False

    def key_for(self, row: Dict[str, Any]) -> Optional[str]:
        """Return the normalized key value for a row, or None if the row is exempt"""
        if self.active_only and not row.get("is_active", True):
            return None

        parts = []
        for column in self.columns:
            value = row.get(column)
            if value is None or value == "":
                return None
            value = str(value)
            if column in self.case_insensitive:
                value = value.lower()
            parts.append(value)
        return "|".join(parts)


TABLE_CONSTRAINTS: Dict[str, List[UniqueConstraint]] = {
    "clinics": [
        UniqueConstraint("clinics_name_active_key", ("name",), case_insensitive=("name",), active_only=True),
        UniqueConstraint("clinics_slug_key", ("slug",)),
    ],
    "providers": [
        UniqueConstraint("providers_clinic_external_key", ("clinic_id", "external_id"), active_only=True),
    ],
    "clients": [
        UniqueConstraint("clients_clinic_phone_key", ("clinic_id", "phone")),
        UniqueConstraint("clients_clinic_email_key", ("clinic_id", "email"), case_insensitive=("email",)),
    ],
    "canonical_patients": [
        UniqueConstraint(
            "canonical_patients_client_name_key",
            ("client_id", "name"),
            case_insensitive=("name",),
            active_only=True,
        ),
    ],
    "scheduled_actions": [],
}


def sort_rows(rows: List[Dict[str, Any]], order_by: Optional[str]) -> List[Dict[str, Any]]:
    """Sort rows by a column name; a leading ``-`` sorts descending. Empty values sort last."""
    if not order_by:
        return rows
    descending = order_by.startswith("-")
    column = order_by.lstrip("-")
    present = [row for row in rows if row.get(column) is not None]
    missing = [row for row in rows if row.get(column) is None]
    present.sort(key=lambda row: row[column], reverse=descending)
    return present + missing


class Store(ABC):
    """Abstract table store"""

    def __init__(self, constraints: Optional[Dict[str, List[UniqueConstraint]]] = None):
        self.constraints = constraints if constraints is not None else TABLE_CONSTRAINTS

    def constraints_for(self, table: str) -> List[UniqueConstraint]:
        return self.constraints.get(table, [])

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @abstractmethod
    def select(self, table: str, predicate: Optional[Predicate] = None,
               order_by: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return rows matching the predicate (all rows when None)"""

    @abstractmethod
    def get(self, table: str, row_id: str) -> Dict[str, Any]:
        """Return one row by id. Raises NotFoundError."""

    @abstractmethod
    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row. Raises UniqueViolationError or FatalStoreError."""

    @abstractmethod
    def update(self, table: str, row_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a shallow patch to a row and return the stored result"""

    def select_one(self, table: str, predicate: Predicate) -> Optional[Dict[str, Any]]:
        rows = self.select(table, predicate, limit=1)
        return rows[0] if rows else None

    def count_by(self, table: str, column: str, predicate: Optional[Predicate] = None) -> Dict[Any, int]:
        """Grouped count of rows matching the predicate, keyed by ``column``"""
        return dict(Counter(row.get(column) for row in self.select(table, predicate)))
