"""
Tests for call outcome business logic - pure functions with no external dependencies
"""
import pytest
from datetime import datetime, timezone

from followup.call_business_logic import (
    build_dispatch_payload,
    calculate_retry_delay,
    map_ended_reason,
    should_mark_failed,
    should_retry_call,
)
from scheduling.models import ActionMetadata, ActionStatus, ActionType, ScheduledAction


class TestMapEndedReason:
    """Test end-reason to status mapping"""

    @pytest.mark.parametrize("reason,expected", [
        ("customer-ended-call", ActionStatus.COMPLETED),
        ("assistant-ended-call", ActionStatus.COMPLETED),
        ("dial-busy", ActionStatus.FAILED),
        ("dial-no-answer", ActionStatus.FAILED),
        ("twilio-failed-to-connect-call", ActionStatus.FAILED),
        ("pipeline-error-dial-failed", ActionStatus.FAILED),
        ("voicemail", ActionStatus.FAILED),
        ("manually-cancelled", ActionStatus.CANCELLED),
        ("silence-timed-out", ActionStatus.COMPLETED),
        (None, ActionStatus.COMPLETED),
    ])
    def test_mapping(self, reason, expected):
        assert map_ended_reason(reason) is expected

    def test_voicemail_with_detection_leaves_message(self):
        """Test a detected voicemail without hang-up counts as completed"""
        metadata = {"voicemail_detection_enabled": True}
        assert map_ended_reason("voicemail", metadata) is ActionStatus.COMPLETED
        assert not should_mark_failed("voicemail", metadata)

    def test_voicemail_with_hangup(self):
        metadata = {"voicemail_detection_enabled": True, "voicemail_hangup_on_detection": True}
        assert map_ended_reason("voicemail", metadata) is ActionStatus.FAILED


class TestShouldRetryCall:
    """Test retry decisions"""

    @pytest.mark.parametrize("reason,retry_count,expected", [
        ("dial-busy", 0, True),
        ("dial-no-answer", 2, True),
        ("dial-busy", 3, False),
        ("assistant-error", 0, False),
        ("customer-ended-call", 0, False),
        (None, 0, False),
    ])
    def test_should_retry(self, reason, retry_count, expected):
        assert should_retry_call(reason, retry_count) is expected

    def test_voicemail_left_is_not_retried(self):
        assert not should_retry_call("voicemail", 0, metadata={"voicemail_detection_enabled": True})

    def test_voicemail_hangup_is_retried(self):
        metadata = {"voicemail_detection_enabled": True, "voicemail_hangup_on_detection": True}
        assert should_retry_call("voicemail", 0, metadata=metadata)

    @pytest.mark.parametrize("retry_count,minutes", [(0, 5), (1, 10), (2, 20), (3, 40)])
    def test_calculate_retry_delay(self, retry_count, minutes):
        assert calculate_retry_delay(retry_count) == minutes


class TestBuildDispatchPayload:
    """Test the payload handed to the dispatch client"""

    def test_payload_uses_stored_summary(self):
        action = ScheduledAction(
            id="action-1",
            case_id="case-1",
            clinic_id="clinic-1",
            action_type=ActionType.EMAIL,
            recipient="owner@example.com",
            scheduled_for=datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc),
            metadata=ActionMetadata(extra={"discharge_summary": {"patientName": "Max"}}),
        )

        payload = build_dispatch_payload(action)
        assert payload == {
            "action_id": "action-1",
            "case_id": "case-1",
            "clinic_id": "clinic-1",
            "action_type": "email",
            "summary": {"patientName": "Max"},
        }
