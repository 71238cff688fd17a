"""
Tests for IdentityResolver find-or-create semantics
"""
import threading
from datetime import datetime, timezone

import pytest
from unittest.mock import Mock

from identity.models import OwnerInfo, PatientInfo, ProviderRole
from identity.resolver import IdentityResolver
from storage.base import Store
from storage.errors import FatalStoreError, IdentityConflictError, UniqueViolationError, ValidationError
from test_utils import RacingStore


class TestClinics:
    """Test clinic resolution"""

    def test_creates_clinic_with_slug_and_timezone(self, resolver, store):
        """Test first sight of a clinic creates it"""
        clinic = resolver.get_or_create_clinic("Happy Paws", email="Front@HappyPaws.com", phone="555-123-4567")

        assert clinic.slug == "happy-paws"
        assert clinic.timezone == "America/Los_Angeles"
        assert clinic.email == "front@happypaws.com"
        assert clinic.phone == "+15551234567"
        assert clinic.is_active
        assert len(store.select("clinics")) == 1

    def test_name_lookup_is_case_insensitive(self, resolver, store):
        """Test the same clinic is returned for a differently-cased name"""
        first = resolver.get_or_create_clinic("Happy Paws")
        second = resolver.get_or_create_clinic("  HAPPY PAWS ")

        assert first.id == second.id
        assert len(store.select("clinics")) == 1

    def test_slug_collision_gets_suffix(self, resolver):
        """Test two names with the same slug get distinct slugs"""
        first = resolver.get_or_create_clinic("Happy Paws")
        second = resolver.get_or_create_clinic("Happy-Paws!")

        assert first.id != second.id
        assert second.slug == "happy-paws-2"

    def test_deactivated_clinic_frees_its_name(self, resolver):
        """Test an inactive clinic does not block a new one with the same name"""
        old = resolver.get_or_create_clinic("Happy Paws")
        resolver.deactivate_clinic(old.id)

        new = resolver.get_or_create_clinic("Happy Paws")
        assert new.id != old.id
        assert new.slug == "happy-paws-2"
        assert resolver.find_clinic_by_slug("happy-paws").is_active is False

    def test_find_clinic(self, resolver):
        created = resolver.get_or_create_clinic("Happy Paws")

        assert resolver.find_clinic_by_name("happy paws").id == created.id
        assert resolver.find_clinic_by_slug("happy-paws").id == created.id
        assert resolver.find_clinic_by_name("Unknown Clinic") is None

    @pytest.mark.parametrize("kwargs", [
        {"name": "  "},
        {"name": "Happy Paws", "email": "not-an-email"},
        {"name": "Happy Paws", "phone": "12"},
        {"name": "Happy Paws", "timezone": "Mars/Base"},
    ])
    def test_invalid_input(self, resolver, kwargs):
        with pytest.raises(ValidationError):
            resolver.get_or_create_clinic(**kwargs)


class TestConcurrency:
    """Test optimistic insert and reconciliation"""

    def test_lost_race_returns_winner(self):
        """Test a unique violation on insert resolves to the competing row"""
        store = RacingStore({"clinics": {"id": "winner", "name": "Happy Paws", "slug": "hp", "is_active": True}})
        resolver = IdentityResolver(store, default_timezone="UTC")

        clinic = resolver.get_or_create_clinic("Happy Paws")

        assert clinic.id == "winner"
        assert len(store.select("clinics")) == 1
        assert store.insert_calls == ["clinics"]

    def test_conflict_without_winner_raises(self):
        """Test a unique violation with no visible row is an identity conflict"""
        mock_store = Mock(spec=Store)
        mock_store.select_one.return_value = None
        mock_store.insert.side_effect = UniqueViolationError("clinics_name_active_key", table="clinics")
        resolver = IdentityResolver(mock_store, default_timezone="UTC")

        with pytest.raises(IdentityConflictError):
            resolver.get_or_create_clinic("Happy Paws")

    def test_other_store_errors_are_fatal(self):
        """Test non-unique insert failures surface as FatalStoreError"""
        mock_store = Mock(spec=Store)
        mock_store.select_one.return_value = None
        mock_store.insert.side_effect = FatalStoreError("disk full")
        resolver = IdentityResolver(mock_store, default_timezone="UTC")

        with pytest.raises(FatalStoreError):
            resolver.get_or_create_clinic("Happy Paws")

    def test_find_degrades_to_none(self):
        """Test read-only lookups swallow store failures"""
        mock_store = Mock(spec=Store)
        mock_store.select_one.side_effect = FatalStoreError("timeout")
        resolver = IdentityResolver(mock_store, default_timezone="UTC")

        assert resolver.find_clinic_by_name("Happy Paws") is None
        assert resolver.find_client("clinic-1", phone="5551234567") is None

    def test_concurrent_creation_yields_one_row(self, store):
        """Test parallel callers all get the same clinic"""
        resolver = IdentityResolver(store, default_timezone="UTC")
        barrier = threading.Barrier(8)
        results, errors = [], []

        def worker():
            barrier.wait()
            try:
                results.append(resolver.get_or_create_clinic("Happy Paws").id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(set(results)) == 1
        assert len(store.select("clinics")) == 1


class TestProviders:
    """Test provider resolution"""

    def test_get_or_create_provider(self, resolver, store):
        clinic = resolver.get_or_create_clinic("Happy Paws")
        first = resolver.get_or_create_provider(clinic.id, "EXT-1", "Dr. Smith", "veterinarian")
        second = resolver.get_or_create_provider(clinic.id, "EXT-1", "Dr. Smith", "veterinarian")

        assert first.id == second.id
        assert first.role is ProviderRole.VETERINARIAN
        assert resolver.find_provider(clinic.id, "EXT-1").id == first.id

    @pytest.mark.parametrize("role,expected", [
        ("vet", ProviderRole.VETERINARIAN),
        ("Vet Tech", ProviderRole.VET_TECH),
        ("front-desk", ProviderRole.RECEPTIONIST),
        ("Surgeon", ProviderRole.OTHER),
        (None, ProviderRole.OTHER),
    ])
    def test_role_coercion(self, resolver, role, expected):
        """Test unknown roles become other"""
        provider = resolver.get_or_create_provider("clinic-1", f"EXT-{role}", "Pat", role)
        assert provider.role is expected

    def test_requires_external_id(self, resolver):
        with pytest.raises(ValidationError):
            resolver.get_or_create_provider("clinic-1", " ", "Dr. Smith")


class TestClients:
    """Test client resolution"""

    def test_phone_is_the_natural_key(self, resolver, store):
        """Test differently formatted phones resolve to one client"""
        first = resolver.get_or_create_client("clinic-1", "Jane Smith", phone="(555) 123-4567")
        second = resolver.get_or_create_client("clinic-1", "Jane S.", phone="+1 555 123 4567")

        assert first.id == second.id
        assert first.phone == "+15551234567"
        assert len(store.select("clients")) == 1

    def test_clients_are_scoped_per_clinic(self, resolver):
        first = resolver.get_or_create_client("clinic-1", "Jane Smith", phone="5551234567")
        second = resolver.get_or_create_client("clinic-2", "Jane Smith", phone="5551234567")
        assert first.id != second.id

    def test_email_fallback(self, resolver):
        """Test email is the key when no phone is given"""
        first = resolver.get_or_create_client("clinic-1", "Jane Smith", email="Jane@Example.com")
        second = resolver.get_or_create_client("clinic-1", "Jane Smith", email="jane@example.com")

        assert first.id == second.id
        assert resolver.find_client("clinic-1", email="JANE@example.com").id == first.id

    def test_changed_phone_with_same_email_resolves_existing_client(self, resolver, store):
        """Test an owner who changed phone numbers is matched by their email"""
        first = resolver.get_or_create_client("clinic-1", "Ann Lee", phone="5551234567", email="ann@example.com")
        second = resolver.get_or_create_client("clinic-1", "Ann Lee", phone="5559999999", email="Ann@Example.com")

        assert second.id == first.id
        assert second.phone == "+15551234567"
        assert len(store.select("clients")) == 1

    def test_find_client_matches_either_contact(self, resolver):
        client = resolver.get_or_create_client("clinic-1", "Ann Lee", phone="5551234567", email="ann@example.com")

        found = resolver.find_client("clinic-1", phone="5550000000", email="ann@example.com")

        assert found.id == client.id

    def test_requires_contact(self, resolver):
        with pytest.raises(ValidationError):
            resolver.get_or_create_client("clinic-1", "Jane Smith")

    def test_rejects_placeholder_phone(self, resolver):
        with pytest.raises(ValidationError):
            resolver.get_or_create_client("clinic-1", "Jane Smith", phone="000-000-0000")


class TestCanonicalPatients:
    """Test visit recording and demographic merging"""

    def test_first_visit_creates_patient(self, resolver):
        visited = datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc)
        patient = resolver.record_visit("client-1", "Max", {"species": "canine", "breed": "Beagle"}, visited)

        assert patient.visit_count == 1
        assert patient.species == "canine"
        assert patient.first_visit_at == visited
        assert patient.last_visit_at == visited

    def test_demographics_are_write_once(self, resolver):
        """Test later visits fill gaps but never overwrite"""
        resolver.record_visit("client-1", "Max", {"species": "canine"})
        patient = resolver.record_visit("client-1", "MAX", {"species": "feline", "breed": "Beagle"})

        assert patient.visit_count == 2
        assert patient.species == "canine"
        assert patient.breed == "Beagle"

    def test_unknown_counts_as_empty(self, resolver):
        """Test an "unknown" value is filled in by a later visit"""
        first = resolver.record_visit("client-1", "Max", {"species": "unknown"})
        assert first.species is None

        patient = resolver.record_visit("client-1", "Max", {"species": "canine"})
        assert patient.species == "canine"

    def test_last_visit_only_moves_forward(self, resolver):
        late = datetime(2025, 2, 1, tzinfo=timezone.utc)
        early = datetime(2025, 1, 1, tzinfo=timezone.utc)

        resolver.record_visit("client-1", "Max", visited_at=late)
        patient = resolver.record_visit("client-1", "Max", visited_at=early)

        assert patient.last_visit_at == late
        assert patient.first_visit_at == late
        assert patient.visit_count == 2

    def test_find_canonical_patient(self, resolver):
        created = resolver.record_visit("client-1", "Max")
        assert resolver.find_canonical_patient("client-1", "max").id == created.id
        assert resolver.find_canonical_patient("client-2", "Max") is None


class TestResolveClientIdentity:
    """Test the composite resolution used by the orchestrator"""

    def test_new_then_existing(self, resolver, sample_owner, sample_patient):
        first = resolver.resolve_client_identity("Happy Paws", sample_owner, sample_patient)
        second = resolver.resolve_client_identity("happy paws", sample_owner, sample_patient)

        assert first.is_new_client and first.is_new_patient
        assert not second.is_new_client and not second.is_new_patient
        assert first.clinic.id == second.clinic.id
        assert first.client.id == second.client.id
        assert second.patient.visit_count == 2

    def test_email_only_owner(self, resolver):
        identity = resolver.resolve_client_identity(
            "Happy Paws",
            OwnerInfo(name="Jane", email="jane@example.com"),
            PatientInfo(name="Luna"),
        )
        assert identity.client.email == "jane@example.com"
        assert identity.client.phone is None
