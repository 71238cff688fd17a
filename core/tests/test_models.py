"""
Tests for scheduling, identity and discharge data models
"""
import pytest
from datetime import datetime, timezone

from discharge.models import DischargeCase, SoapNote
from identity.models import CanonicalPatient, Clinic, ProviderRole
from scheduling.models import ActionMetadata, ActionStatus, ActionType, ScheduledAction


class TestActionStatus:
    """Tests for status helpers"""

    @pytest.mark.parametrize("status,terminal", [
        (ActionStatus.QUEUED, False),
        (ActionStatus.RINGING, False),
        (ActionStatus.IN_PROGRESS, False),
        (ActionStatus.COMPLETED, True),
        (ActionStatus.FAILED, True),
        (ActionStatus.CANCELLED, True),
    ])
    def test_is_terminal(self, status, terminal):
        assert status.is_terminal is terminal

    @pytest.mark.parametrize("value,expected", [
        ("call", ActionType.CALL),
        ("Phone", ActionType.CALL),
        ("e-mail", ActionType.EMAIL),
        ("EMAIL", ActionType.EMAIL),
        ("", ActionType.CALL),
    ])
    def test_action_type_from_string(self, value, expected):
        assert ActionType.from_string(value) is expected


class TestActionMetadata:
    """Tests for the typed metadata view"""

    def test_defaults(self):
        metadata = ActionMetadata.from_raw(None)
        assert metadata.retry_count == 0
        assert metadata.max_retries == 3
        assert metadata.retries_remaining == 3

    @pytest.mark.parametrize("raw_value,expected", [
        (0, 0),
        ("0", 0),
        (5, 5),
        (None, 3),
    ])
    def test_explicit_max_retries(self, raw_value, expected):
        """Test an explicit zero budget is kept rather than defaulted"""
        metadata = ActionMetadata.from_raw({"max_retries": raw_value})
        assert metadata.max_retries == expected
        assert metadata.retries_remaining == expected

    def test_extra_keys_survive(self):
        """Test caller keys are carried through unchanged"""
        raw = {"retry_count": 2, "client_id": "client-1", "voicemail_detection_enabled": True}
        metadata = ActionMetadata.from_raw(raw)

        assert metadata.retry_count == 2
        assert metadata.get("client_id") == "client-1"
        assert metadata.voicemail_detection_enabled
        assert not metadata.voicemail_hangup_on_detection
        assert metadata.to_raw() == {**raw, "max_retries": 3}


class TestScheduledAction:
    """Tests for ScheduledAction serialization"""

    def test_to_dict(self):
        action = ScheduledAction(
            id="action-1",
            case_id="case-1",
            clinic_id="clinic-1",
            action_type=ActionType.CALL,
            recipient="+15551234567",
            scheduled_for=datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc),
        )

        data = action.to_dict()
        assert data["status"] == "queued"
        assert data["action_type"] == "call"
        assert data["scheduled_for"] == "2025-01-15T18:00:00+00:00"
        assert data["ended_at"] is None
        assert data["metadata"] == {"retry_count": 0, "max_retries": 3}

    def test_from_dict(self):
        action = ScheduledAction.from_dict({
            "id": "action-1",
            "case_id": "case-1",
            "action_type": "email",
            "status": "completed",
            "scheduled_for": "2025-01-15T18:00:00Z",
            "ended_at": "2025-01-15T18:01:00+00:00",
            "ended_reason": "email-sent",
            "metadata": {"retry_count": 1},
        })

        assert action.action_type is ActionType.EMAIL
        assert action.is_terminal
        assert action.scheduled_for == datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc)
        assert action.metadata.retry_count == 1


class TestIdentityModels:
    """Tests for tenant entity models"""

    def test_clinic_round_trip(self):
        clinic = Clinic(name="Happy Paws", slug="happy-paws", timezone="America/Chicago")
        restored = Clinic.from_dict(clinic.to_dict())

        assert restored.id == clinic.id
        assert restored.slug == "happy-paws"
        assert restored.is_active

    def test_canonical_patient_demographics(self):
        patient = CanonicalPatient(client_id="client-1", name="Max", species="canine", breed="Beagle")
        demographics = patient.demographics()
        assert demographics["species"] == "canine"
        assert demographics["breed"] == "Beagle"
        assert demographics["sex"] is None

    def test_provider_role_exact_value(self):
        assert ProviderRole.from_string("vet_tech") is ProviderRole.VET_TECH


class TestDischargeCase:
    """Tests for the discharge case view"""

    def test_from_dict_reads_nested_notes(self):
        case = DischargeCase.from_dict({
            "id": "case-1",
            "soap_notes": [{"plan": "Rest", "clientInstructions": "No stairs"}],
            "metadata": {"entities": {"caseType": "surgery"}},
        })

        assert case.soap_notes[0].client_instructions == "No stairs"
        assert case.entities_case_type == "surgery"
        assert case.has_clinical_notes()
        assert not case.is_external_source

    def test_clinical_text_labels_sections(self):
        case = DischargeCase(
            external_notes="Vaccines given",
            soap_notes=[SoapNote(subjective="Itchy", plan="Cone")],
            transcriptions=["Doctor: all good"],
        )
        text = case.clinical_text()

        assert text.startswith("APPOINTMENT NOTES:\nVaccines given")
        assert "SUBJECTIVE:\nItchy" in text
        assert "PLAN:\nCone" in text
        assert text.endswith("TRANSCRIPT:\nDoctor: all good")

    def test_blank_sections_do_not_count(self):
        case = DischargeCase(soap_notes=[SoapNote(plan="   ")], discharge_summaries=[""])
        assert not case.has_clinical_notes()
        assert case.clinical_text() == ""
