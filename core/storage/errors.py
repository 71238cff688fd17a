"""
Tagged error types shared by the store adapters and their callers

Store adapters only ever raise the closed set below, so callers can decide
between "reconcile", "degrade to None" and "surface" without inspecting
driver-specific exceptions.
"""
from typing import Any, Dict, Optional


class ValidationError(ValueError):
    """Malformed input. Never retried."""


class StoreError(Exception):
    """Base class for every error raised by a store adapter"""

    def __init__(self, message: str, table: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.table = table
        self.context = context or {}


class NotFoundError(StoreError):
    """The requested row does not exist"""


class UniqueViolationError(StoreError):
    """An insert or update collided with a unique constraint"""

    def __init__(self, constraint: str, table: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(f"Unique constraint violated: {constraint}", table=table, context=context)
        self.constraint = constraint


class FatalStoreError(StoreError):
    """Any store failure the caller cannot recover from"""


class IdentityConflictError(FatalStoreError):
    """A unique violation whose conflicting row could not be found again"""


class RaceConditionRetry(Exception):
    """
    Raised inside the identity resolver when an insert lost a race.

    The resolver catches it and reconciles with a single lookup; it never
    leaves the resolver.
    """

    def __init__(self, entity: str, natural_key: Any, constraint: str):
        super().__init__(f"Lost insert race for {entity} {natural_key!r} on {constraint}")
        self.entity = entity
        self.natural_key = natural_key
        self.constraint = constraint
