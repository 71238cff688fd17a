"""
Business logic for call outcomes - pure functions with no external dependencies

These functions translate dispatch-provider end reasons into lifecycle
statuses and retry decisions, separated from infrastructure concerns for
easier testing.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from scheduling.models import ActionStatus, ScheduledAction

logger = logging.getLogger("call-business-logic")

# End reasons meaning the conversation happened
COMPLETED_ENDED_REASONS = ("assistant-ended-call", "customer-ended-call")

# End reasons meaning the call never properly happened (substring match)
FAILED_ENDED_REASONS = (
    "dial-busy",
    "dial-failed",
    "dial-no-answer",
    "assistant-error",
    "exceeded-max-duration",
    "voicemail",
    "assistant-not-found",
    "assistant-not-invalid",
    "assistant-not-provided",
    "assistant-request-failed",
    "assistant-request-returned-error",
    "assistant-request-returned-unspeakable-error",
    "assistant-request-returned-invalid-json",
    "assistant-request-returned-no-content",
    "twilio-failed-to-connect-call",
    "vonage-rejected",
)

# End reasons worth another attempt later
RETRYABLE_ENDED_REASONS = ("dial-busy", "dial-no-answer", "voicemail")


def _voicemail_with_detection(ended_reason: str, metadata: Mapping[str, Any]) -> bool:
    return "voicemail" in ended_reason.lower() and metadata.get("voicemail_detection_enabled") is True


def should_mark_failed(ended_reason: Optional[str], metadata: Optional[Mapping[str, Any]] = None) -> bool:
    """
    Determine if an end reason means the call failed

    With voicemail detection enabled, a voicemail only counts as a failure when
    the call was configured to hang up instead of leaving a message.
    """
    if not ended_reason:
        return False
    metadata = metadata or {}

    if _voicemail_with_detection(ended_reason, metadata):
        return metadata.get("voicemail_hangup_on_detection") is True

    reason = ended_reason.lower()
    return any(failed in reason for failed in FAILED_ENDED_REASONS)


def map_ended_reason(ended_reason: Optional[str], metadata: Optional[Mapping[str, Any]] = None) -> ActionStatus:
    """
    Map a dispatch-provider end reason to a terminal status

    Args:
        ended_reason: Provider end reason, e.g. ``customer-ended-call``
        metadata: Action metadata (voicemail settings)

    Returns:
        COMPLETED, FAILED or CANCELLED. Unknown reasons count as completed.
    """
    if not ended_reason:
        return ActionStatus.COMPLETED
    metadata = metadata or {}

    if ended_reason in COMPLETED_ENDED_REASONS:
        return ActionStatus.COMPLETED

    if "cancelled" in ended_reason:
        return ActionStatus.CANCELLED

    if _voicemail_with_detection(ended_reason, metadata):
        hangup = metadata.get("voicemail_hangup_on_detection") is True
        logger.debug(f"Voicemail detected ({ended_reason}), hangup_on_detection={hangup}")
        return ActionStatus.FAILED if hangup else ActionStatus.COMPLETED

    if should_mark_failed(ended_reason, metadata):
        return ActionStatus.FAILED

    return ActionStatus.COMPLETED


def should_retry_call(ended_reason: Optional[str], retry_count: int, max_retries: int = 3,
                      metadata: Optional[Mapping[str, Any]] = None) -> bool:
    """
    Determine if a failed call should be placed again later

    Args:
        ended_reason: Provider end reason
        retry_count: Retries already used
        max_retries: Retry budget
        metadata: Action metadata (voicemail settings)

    Returns:
        True if the call should be retried, False otherwise
    """
    if not ended_reason or retry_count >= max_retries:
        return False
    metadata = metadata or {}

    if _voicemail_with_detection(ended_reason, metadata):
        # A message was left unless we hung up
        return metadata.get("voicemail_hangup_on_detection") is True

    reason = ended_reason.lower()
    return any(retryable in reason for retryable in RETRYABLE_ENDED_REASONS)


def calculate_retry_delay(retry_count: int) -> int:
    """
    Calculate delay before the next call attempt using exponential backoff

    Args:
        retry_count: Retries already used (0-indexed)

    Returns:
        Delay in minutes: 5, 10, 20, ...
    """
    return (2 ** retry_count) * 5


def build_dispatch_payload(action: ScheduledAction, summary: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Prepare the payload handed to the dispatch client

    Args:
        action: The action being dispatched
        summary: Generated discharge summary, if any

    Returns:
        JSON-compatible payload
    """
    return {
        "action_id": action.id,
        "case_id": action.case_id,
        "clinic_id": action.clinic_id,
        "action_type": action.action_type.value,
        "summary": summary or action.metadata.get("discharge_summary"),
    }
