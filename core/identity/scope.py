"""
Hybrid tenant scope filter

Rows belong to a tenant either through the tenant column or, for records
created before tenancy existed, through a legacy owner column.
"""
import logging
from typing import Iterable, Optional

from storage.predicates import Eq, In, Or, NEVER, Predicate

logger = logging.getLogger("scope-filter")


class ScopeFilterBuilder:
    def __init__(self, tenant_column: str = "clinic_id", owner_column: str = "owner_id"):
        self.tenant_column = tenant_column
        self.owner_column = owner_column

    def build(self, tenant_id: Optional[str], legacy_owner_ids: Iterable[str] = ()) -> Predicate:
        """
        Build ``tenant = X OR owner IN (...)``

        Either side is dropped when its input is empty. With neither input the
        NEVER predicate is returned so the read matches no rows.
        """
        owner_ids = tuple(owner_id for owner_id in (legacy_owner_ids or ()) if owner_id)

        clauses = []
        if tenant_id:
            clauses.append(Eq(self.tenant_column, tenant_id))
        if owner_ids:
            clauses.append(In(self.owner_column, owner_ids))

        if not clauses:
            logger.debug("Scope filter built with no tenant and no owners; matching nothing")
            return NEVER
        if len(clauses) == 1:
            return clauses[0]
        return Or(tuple(clauses))
