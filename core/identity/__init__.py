"""
Identity package for the follow-up core

Contains tenant entity resolution:
- models: Clinic, Provider, Client, CanonicalPatient
- slugs: SlugAllocator for clinic slugs
- scope: ScopeFilterBuilder for hybrid tenant/owner reads
- resolver: IdentityResolver (optimistic insert, then reconcile)
"""

from .models import (
    Clinic,
    Provider,
    ProviderRole,
    Client,
    CanonicalPatient,
    OwnerInfo,
    PatientInfo,
    ClientIdentity,
)
from .slugs import SlugAllocator, slugify
from .scope import ScopeFilterBuilder
from .resolver import IdentityResolver

__all__ = [
    'Clinic',
    'Provider',
    'ProviderRole',
    'Client',
    'CanonicalPatient',
    'OwnerInfo',
    'PatientInfo',
    'ClientIdentity',
    'SlugAllocator',
    'slugify',
    'ScopeFilterBuilder',
    'IdentityResolver',
]
