"""
Row predicates understood by every store adapter

Predicates are small immutable objects with a ``matches(row)`` method, so the
in-memory and Redis adapters can evaluate them the same way.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Tuple



class Predicate:
    """Base predicate"""

    def matches(self, row: Dict[str, Any]) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class Eq(Predicate):
    column: str
    value: Any
    case_insensitive: bool = False

    def matches(self, row: Dict[str, Any]) -> bool:
        actual = row.get(self.column)
        if self.case_insensitive and isinstance(actual, str) and isinstance(self.value, str):
            return actual.lower() == self.value.lower()
        return actual == self.value


@dataclass(frozen=True)
class In(Predicate):
    column: str
    values: Tuple[Any, ...]

    def matches(self, row: Dict[str, Any]) -> bool:
        return row.get(self.column) in self.values


@dataclass(frozen=True)
class Lte(Predicate):
    """Column value is at or before ``value``. Datetimes compare against ISO strings."""
    column: str
    value: Any

    def matches(self, row: Dict[str, Any]) -> bool:
        actual = row.get(self.column)
        if actual is None:
            return False
        if isinstance(self.value, datetime) and isinstance(actual, str):
            actual = datetime.fromisoformat(actual)
        return actual <= self.value


@dataclass(frozen=True)
class And(Predicate):
    clauses: Tuple[Predicate, ...]

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(clause.matches(row) for clause in self.clauses)


@dataclass(frozen=True)
class Or(Predicate):
    clauses: Tuple[Predicate, ...]

    def matches(self, row: Dict[str, Any]) -> bool:
        return any(clause.matches(row) for clause in self.clauses)


class _Never(Predicate):
    """Matches nothing"""

    def matches(self, row: Dict[str, Any]) -> bool:
        return False

    def __repr__(self) -> str:
        return "NEVER"


NEVER = _Never()


def all_of(*clauses: Predicate) -> Predicate:
    """AND together the given clauses, flattening a single clause"""
    clauses = tuple(c for c in clauses if c is not None)
    if len(clauses) == 1:
        return clauses[0]
    return And(clauses)
