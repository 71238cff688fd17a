"""
Find-or-create for tenant entities under concurrent writers

Every ``get_or_create_*`` follows optimistic-insert-then-reconcile:

1. look the row up by its natural key
2. return it if found
3. otherwise insert
4. on a unique violation look it up once more and return the winner
   (IdentityConflictError if it is still missing)
5. surface any other store failure as FatalStoreError

Correctness comes only from the store's unique constraints. Nothing is cached
between calls.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from storage.base import Store
from storage.errors import (
    FatalStoreError,
    IdentityConflictError,
    NotFoundError,
    RaceConditionRetry,
    StoreError,
    UniqueViolationError,
    ValidationError,
)
from storage.predicates import Eq, Or, Predicate, all_of
from discharge.contact import normalize_to_e164, require_e164, require_email
from utils.time_utils import ensure_utc, now_utc, to_iso, get_timezone
from .models import (
    DEMOGRAPHIC_FIELDS,
    CanonicalPatient,
    Client,
    ClientIdentity,
    Clinic,
    OwnerInfo,
    PatientInfo,
    Provider,
    ProviderRole,
    is_empty_demographic,
)
from .slugs import SlugAllocator

logger = logging.getLogger("identity-resolver")

CLINICS = "clinics"
PROVIDERS = "providers"
CLIENTS = "clients"
PATIENTS = "canonical_patients"


def _require_name(value: Optional[str], what: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationError(f"{what} name must not be blank")
    return name


class IdentityResolver:
    """Resolves clinics, providers, clients and canonical patients"""

    def __init__(self, store: Store, slug_allocator: Optional[SlugAllocator] = None,
                 default_timezone: Optional[str] = None):
        self.store = store
        self.slug_allocator = slug_allocator or SlugAllocator(store)
        if default_timezone is None:
            from config.settings import DEFAULT_TIMEZONE
            default_timezone = DEFAULT_TIMEZONE
        self.default_timezone = default_timezone

    # ------------------------------------------------------------------
    # Store plumbing
    # ------------------------------------------------------------------

    def _lookup(self, table: str, predicate: Predicate, entity: str, key: Any) -> Optional[Dict[str, Any]]:
        """Lookup used inside mutations; store errors propagate"""
        try:
            return self.store.select_one(table, predicate)
        except StoreError as e:
            logger.error(f"Lookup of {entity} {key!r} failed: {e}")
            raise FatalStoreError(f"Failed to look up {entity} {key!r}: {e}", table=table) from e

    def _find(self, table: str, predicate: Predicate, entity: str, key: Any) -> Optional[Dict[str, Any]]:
        """Lookup used by the public find_* methods; store errors degrade to None"""
        try:
            return self.store.select_one(table, predicate)
        except StoreError as e:
            logger.error(f"Error finding {entity} {key!r}: {e}")
            return None

    def _insert(self, table: str, row: Dict[str, Any], entity: str, key: Any) -> Dict[str, Any]:
        try:
            return self.store.insert(table, row)
        except UniqueViolationError as e:
            raise RaceConditionRetry(entity, key, e.constraint) from e
        except StoreError as e:
            logger.error(f"Failed to create {entity} {key!r}: {e}", exc_info=True)
            raise FatalStoreError(f"Failed to create {entity} {key!r}: {e}", table=table) from e

    def _find_or_create(self, table: str, predicate: Predicate, build_row: Callable[[], Dict[str, Any]],
                        entity: str, key: Any) -> Tuple[Dict[str, Any], bool]:
        """
        Returns:
            (row, created) tuple
        """
        existing = self._lookup(table, predicate, entity, key)
        if existing:
            return existing, False

        try:
            row = self._insert(table, build_row(), entity, key)
            logger.info(f"Created {entity} {key!r} ({row['id']})")
            return row, True
        except RaceConditionRetry as race:
            logger.info(f"Concurrent creation of {entity} {key!r} detected ({race.constraint}), reconciling")

        winner = self._lookup(table, predicate, entity, key)
        if winner:
            return winner, False

        logger.error(f"Unique violation for {entity} {key!r} but no conflicting row found")
        raise IdentityConflictError(
            f"{entity} {key!r} conflicted on insert but could not be found afterwards",
            table=table,
            context={"entity": entity, "key": key},
        )

    # ------------------------------------------------------------------
    # Clinics
    # ------------------------------------------------------------------

    def _clinic_predicate(self, name: str) -> Predicate:
        return all_of(Eq("name", name, case_insensitive=True), Eq("is_active", True))

    def get_or_create_clinic(self, name: str, email: Optional[str] = None, phone: Optional[str] = None,
                             address: Optional[str] = None, timezone: Optional[str] = None,
                             pims_type: str = "none") -> Clinic:
        """
        Get an active clinic by case-insensitive name, creating it if needed

        Args:
            name: Clinic display name
            email: Contact email (validated)
            phone: Contact phone (normalized to E.164)
            address: Postal address
            timezone: IANA zone, defaults to DEFAULT_TIMEZONE
            pims_type: Practice-management system tag

        Returns:
            Clinic
        """
        name = _require_name(name, "Clinic")
        email = require_email(email) if email else None
        phone = require_e164(phone) if phone else None
        timezone = timezone or self.default_timezone
        get_timezone(timezone)

        def build_row():
            clinic = Clinic(
                name=name,
                slug=self.slug_allocator.allocate(name),
                email=email,
                phone=phone,
                address=address,
                timezone=timezone,
                pims_type=pims_type or "none",
            )
            return clinic.to_dict()

        row, _ = self._find_or_create(CLINICS, self._clinic_predicate(name), build_row, "clinic", name)
        return Clinic.from_dict(row)

    def find_clinic_by_name(self, name: str) -> Optional[Clinic]:
        row = self._find(CLINICS, self._clinic_predicate((name or "").strip()), "clinic", name)
        return Clinic.from_dict(row) if row else None

    def find_clinic_by_slug(self, slug: str) -> Optional[Clinic]:
        row = self._find(CLINICS, Eq("slug", slug), "clinic", slug)
        return Clinic.from_dict(row) if row else None

    def deactivate_clinic(self, clinic_id: str) -> Clinic:
        """Soft-deactivate a clinic. Its name becomes free for a new active clinic."""
        try:
            row = self.store.update(CLINICS, clinic_id, {"is_active": False, "updated_at": to_iso(now_utc())})
        except NotFoundError:
            raise
        except StoreError as e:
            logger.error(f"Failed to deactivate clinic {clinic_id}: {e}", exc_info=True)
            raise FatalStoreError(f"Failed to deactivate clinic {clinic_id}: {e}", table=CLINICS) from e
        logger.info(f"Deactivated clinic {clinic_id}")
        return Clinic.from_dict(row)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def _provider_predicate(self, clinic_id: str, external_id: str) -> Predicate:
        return all_of(Eq("clinic_id", clinic_id), Eq("external_id", external_id), Eq("is_active", True))

    def get_or_create_provider(self, clinic_id: str, external_id: str, name: str,
                               role: Optional[str] = None) -> Provider:
        """Get or create a provider by (clinic, external id). Unknown roles become ``other``."""
        if not clinic_id:
            raise ValidationError("Provider requires a clinic_id")
        external_id = (external_id or "").strip()
        if not external_id:
            raise ValidationError("Provider requires an external_id")
        name = _require_name(name, "Provider")
        provider_role = ProviderRole.from_string(role)
        if role and provider_role is ProviderRole.OTHER and role != ProviderRole.OTHER.value:
            logger.info(f"Unknown provider role '{role}' coerced to 'other'")

        def build_row():
            return Provider(clinic_id=clinic_id, external_id=external_id, name=name, role=provider_role).to_dict()

        key = (clinic_id, external_id)
        row, _ = self._find_or_create(PROVIDERS, self._provider_predicate(clinic_id, external_id),
                                      build_row, "provider", key)
        return Provider.from_dict(row)

    def find_provider(self, clinic_id: str, external_id: str) -> Optional[Provider]:
        row = self._find(PROVIDERS, self._provider_predicate(clinic_id, external_id), "provider",
                         (clinic_id, external_id))
        return Provider.from_dict(row) if row else None

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def _client_predicate(self, clinic_id: str, phone: Optional[str], email: Optional[str]) -> Predicate:
        # Same columns as the clients unique constraints: phone or email
        contact = []
        if phone:
            contact.append(Eq("phone", phone))
        if email:
            contact.append(Eq("email", email, case_insensitive=True))
        match = contact[0] if len(contact) == 1 else Or(tuple(contact))
        return all_of(Eq("clinic_id", clinic_id), match)

    def get_or_create_client(self, clinic_id: str, name: str, phone: Optional[str] = None,
                             email: Optional[str] = None) -> Client:
        """
        Get or create the pet owner inside a clinic

        The natural key is (clinic, E.164 phone), falling back to
        (clinic, email) when no phone is given. When both are given a client
        matching either one is returned as is; its stored phone and email are
        not rewritten.
        """
        client, _ = self._resolve_client(clinic_id, name, phone, email)
        return client

    def _resolve_client(self, clinic_id: str, name: str, phone: Optional[str],
                        email: Optional[str]) -> Tuple[Client, bool]:
        if not clinic_id:
            raise ValidationError("Client requires a clinic_id")
        name = _require_name(name, "Client")
        phone = require_e164(phone) if phone else None
        email = require_email(email) if email else None
        if not phone and not email:
            raise ValidationError("Client requires a phone number or an email address")

        def build_row():
            return Client(clinic_id=clinic_id, name=name, phone=phone, email=email).to_dict()

        key = (clinic_id, phone or email)
        row, created = self._find_or_create(CLIENTS, self._client_predicate(clinic_id, phone, email),
                                            build_row, "client", key)
        return Client.from_dict(row), created

    def find_client(self, clinic_id: str, phone: Optional[str] = None,
                    email: Optional[str] = None) -> Optional[Client]:
        phone = normalize_to_e164(phone) if phone else None
        if not phone and not email:
            return None
        row = self._find(CLIENTS, self._client_predicate(clinic_id, phone, email), "client",
                         (clinic_id, phone or email))
        return Client.from_dict(row) if row else None

    # ------------------------------------------------------------------
    # Canonical patients
    # ------------------------------------------------------------------

    def _patient_predicate(self, client_id: str, name: str) -> Predicate:
        return all_of(Eq("client_id", client_id), Eq("name", name, case_insensitive=True), Eq("is_active", True))

    def find_canonical_patient(self, client_id: str, name: str) -> Optional[CanonicalPatient]:
        row = self._find(PATIENTS, self._patient_predicate(client_id, (name or "").strip()),
                         "canonical patient", (client_id, name))
        return CanonicalPatient.from_dict(row) if row else None

    def _visit_patch(self, existing: Dict[str, Any], demographics: Dict[str, Any],
                     visited_at: datetime) -> Dict[str, Any]:
        """Fill absent demographics and count the visit. Present values are never overwritten."""
        visited_iso = to_iso(visited_at)
        patch = {
            "visit_count": int(existing.get("visit_count") or 0) + 1,
            "last_visit_at": max(filter(None, [existing.get("last_visit_at"), visited_iso]),
                                 key=ensure_utc),
            "updated_at": to_iso(now_utc()),
        }
        if not existing.get("first_visit_at"):
            patch["first_visit_at"] = visited_iso

        for field_name in DEMOGRAPHIC_FIELDS:
            incoming = demographics.get(field_name)
            if is_empty_demographic(incoming):
                continue
            if is_empty_demographic(existing.get(field_name)):
                patch[field_name] = incoming
        return patch

    def record_visit(self, client_id: str, name: str, demographics: Optional[Dict[str, Any]] = None,
                     visited_at: Optional[datetime] = None) -> CanonicalPatient:
        """
        Record a visit for the canonical patient (client, name)

        Creates the patient on first sight. Later visits only fill
        demographics that are still empty, increment ``visit_count`` and move
        ``last_visit_at`` forward.
        """
        patient, _ = self._record_visit(client_id, name, demographics, visited_at)
        return patient

    def _record_visit(self, client_id: str, name: str, demographics: Optional[Dict[str, Any]],
                      visited_at: Optional[datetime]) -> Tuple[CanonicalPatient, bool]:
        if not client_id:
            raise ValidationError("Canonical patient requires a client_id")
        name = _require_name(name, "Patient")
        demographics = demographics or {}
        unknown = set(demographics) - set(DEMOGRAPHIC_FIELDS)
        if unknown:
            logger.debug(f"Ignoring unknown demographic fields: {sorted(unknown)}")
        visited_at = ensure_utc(visited_at) if visited_at else now_utc()
        key = (client_id, name)

        def build_row():
            patient = CanonicalPatient(
                client_id=client_id,
                name=name,
                visit_count=1,
                first_visit_at=visited_at,
                last_visit_at=visited_at,
                **{f: demographics.get(f) for f in DEMOGRAPHIC_FIELDS if not is_empty_demographic(demographics.get(f))},
            )
            return patient.to_dict()

        row, created = self._find_or_create(PATIENTS, self._patient_predicate(client_id, name),
                                            build_row, "canonical patient", key)
        if created:
            return CanonicalPatient.from_dict(row), True

        patch = self._visit_patch(row, demographics, visited_at)
        try:
            updated = self.store.update(PATIENTS, row["id"], patch)
        except StoreError as e:
            logger.error(f"Failed to record visit for canonical patient {key!r}: {e}", exc_info=True)
            raise FatalStoreError(f"Failed to record visit for {key!r}: {e}", table=PATIENTS) from e
        return CanonicalPatient.from_dict(updated), False

    # ------------------------------------------------------------------
    # Composite
    # ------------------------------------------------------------------

    def resolve_client_identity(self, clinic_name: str, owner: OwnerInfo, patient: PatientInfo,
                                visited_at: Optional[datetime] = None) -> ClientIdentity:
        """Resolve clinic, client and canonical patient for one incoming case"""
        clinic = self.get_or_create_clinic(clinic_name)
        client, is_new_client = self._resolve_client(clinic.id, owner.name, owner.phone, owner.email)
        canonical, is_new_patient = self._record_visit(client.id, patient.name, patient.demographics, visited_at)

        logger.info(
            f"Resolved identity clinic={clinic.id} client={client.id} patient={canonical.id} "
            f"new_client={is_new_client} new_patient={is_new_patient}"
        )
        return ClientIdentity(
            clinic=clinic,
            client=client,
            patient=canonical,
            is_new_client=is_new_client,
            is_new_patient=is_new_patient,
        )
