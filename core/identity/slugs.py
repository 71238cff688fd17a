"""
URL-safe slug allocation for clinics
"""
import logging
import re
import time
from typing import Callable, Optional

from storage.base import Store
from storage.errors import StoreError, ValidationError
from storage.predicates import Eq

logger = logging.getLogger("slug-allocator")

MAX_SLUG_ATTEMPTS = 5

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """
    Lowercase a name and collapse runs of non-alphanumerics into single hyphens

    Raises:
        ValidationError: If nothing slug-worthy is left
    """
    slug = _NON_ALNUM.sub("-", (name or "").lower()).strip("-")
    if not slug:
        raise ValidationError(f"Cannot derive a slug from {name!r}")
    return slug


class SlugAllocator:
    """Picks a slug that is not yet taken in a table"""

    def __init__(self, store: Store, table: str = "clinics", column: str = "slug",
                 max_attempts: int = MAX_SLUG_ATTEMPTS, clock: Callable[[], float] = time.time):
        self.store = store
        self.table = table
        self.column = column
        self.max_attempts = max_attempts
        self.clock = clock

    def _is_available(self, candidate: str) -> Optional[bool]:
        """True/False for a definite answer, None when the store could not tell"""
        try:
            return self.store.select_one(self.table, Eq(self.column, candidate)) is None
        except StoreError as e:
            logger.warning(f"Slug availability check failed for '{candidate}': {e}")
            return None

    def allocate(self, base_name: str) -> str:
        """
        Allocate a slug for ``base_name``

        Tries ``base``, ``base-2``, ``base-3``... up to ``max_attempts`` checks.
        A failed check counts as an attempt. When every attempt is used up the
        last six digits of the current Unix time are appended and the result is
        returned without another check; the table's unique constraint on the
        slug column is the final arbiter.

        Args:
            base_name: Human-readable name (e.g. clinic name)

        Returns:
            Slug string
        """
        base = slugify(base_name)

        for attempt in range(self.max_attempts):
            candidate = base if attempt == 0 else f"{base}-{attempt + 1}"
            if self._is_available(candidate):
                return candidate

        suffix = str(int(self.clock()))[-6:]
        fallback = f"{base}-{suffix}"
        logger.warning(f"Slug attempts exhausted for '{base}', using timestamp fallback '{fallback}'")
        return fallback
