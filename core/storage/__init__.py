"""
Storage package for the follow-up core

- base: Store contract and unique constraint declarations
- predicates: row predicates shared by all adapters
- errors: the closed set of tagged store errors
- memory / redis_store: adapters
"""

from .base import Store, UniqueConstraint, TABLE_CONSTRAINTS
from .errors import (
    ValidationError,
    StoreError,
    NotFoundError,
    UniqueViolationError,
    FatalStoreError,
    IdentityConflictError,
)
from .memory import InMemoryStore
from .predicates import Eq, In, Lte, And, Or, NEVER, all_of
from .redis_store import RedisStore, create_redis_store

__all__ = [
    'Store',
    'UniqueConstraint',
    'TABLE_CONSTRAINTS',
    'ValidationError',
    'StoreError',
    'NotFoundError',
    'UniqueViolationError',
    'FatalStoreError',
    'IdentityConflictError',
    'InMemoryStore',
    'RedisStore',
    'create_redis_store',
    'Eq',
    'In',
    'Lte',
    'And',
    'Or',
    'NEVER',
    'all_of',
]
