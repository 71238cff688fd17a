"""
Data models for scheduled follow-up actions
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
import uuid

from utils.time_utils import now_utc, to_iso, from_iso

DEFAULT_MAX_RETRIES = 3


class ActionStatus(Enum):
    """Status of a scheduled action"""
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.CANCELLED})


class ActionType(Enum):
    """Channel of a scheduled action"""
    CALL = "call"
    EMAIL = "email"

    @classmethod
    def from_string(cls, value: str) -> "ActionType":
        """Convert string to ActionType, defaulting to CALL"""
        if not value:
            return cls.CALL
        value_lower = value.strip().lower()
        mapping = {
            'phone': cls.CALL,
            'voice': cls.CALL,
            'phone_call': cls.CALL,
            'mail': cls.EMAIL,
            'e-mail': cls.EMAIL,
        }
        if value_lower in mapping:
            return mapping[value_lower]
        try:
            return cls(value_lower)
        except ValueError:
            return cls.CALL


@dataclass
class ActionMetadata:
    """
    Typed view over the free-form metadata map of a scheduled action.

    Known keys are exposed as attributes; every other key is carried in
    ``extra`` so round-tripping never drops caller data.
    """
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    next_retry_at: Optional[str] = None
    last_retry_reason: Optional[str] = None
    last_error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS = ("retry_count", "max_retries", "next_retry_at", "last_retry_reason", "last_error")

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "ActionMetadata":
        raw = dict(raw or {})
        max_retries = raw.pop("max_retries", None)
        return cls(
            retry_count=int(raw.pop("retry_count", 0) or 0),
            max_retries=DEFAULT_MAX_RETRIES if max_retries is None else int(max_retries),
            next_retry_at=raw.pop("next_retry_at", None),
            last_retry_reason=raw.pop("last_retry_reason", None),
            last_error=raw.pop("last_error", None),
            extra=raw,
        )

    def to_raw(self) -> Dict[str, Any]:
        raw = dict(self.extra)
        raw["retry_count"] = self.retry_count
        raw["max_retries"] = self.max_retries
        for key in ("next_retry_at", "last_retry_reason", "last_error"):
            value = getattr(self, key)
            if value is not None:
                raw[key] = value
        return raw

    def get(self, key: str, default: Any = None) -> Any:
        if key in self.KNOWN_KEYS:
            return getattr(self, key)
        return self.extra.get(key, default)

    @property
    def retries_remaining(self) -> int:
        return max(self.max_retries - self.retry_count, 0)

    @property
    def voicemail_detection_enabled(self) -> bool:
        return bool(self.extra.get("voicemail_detection_enabled"))

    @property
    def voicemail_hangup_on_detection(self) -> bool:
        return bool(self.extra.get("voicemail_hangup_on_detection"))


@dataclass
class ScheduledAction:
    """
    A delayed follow-up call or email for one discharge case.
    Terminal fields (ended_*) are only populated in terminal states.
    """
    # Core identification
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    case_id: str = ""
    clinic_id: Optional[str] = None
    owner_id: Optional[str] = None

    # Delivery
    action_type: ActionType = ActionType.CALL
    recipient: str = ""
    status: ActionStatus = ActionStatus.QUEUED
    scheduled_for: datetime = field(default_factory=now_utc)
    external_id: Optional[str] = None

    metadata: ActionMetadata = field(default_factory=ActionMetadata)

    # Terminal outcome
    ended_at: Optional[datetime] = None
    ended_reason: Optional[str] = None
    duration_seconds: Optional[int] = None
    cost: Optional[float] = None

    # Timestamps
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible row"""
        return {
            "id": self.id,
            "case_id": self.case_id,
            "clinic_id": self.clinic_id,
            "owner_id": self.owner_id,
            "action_type": self.action_type.value,
            "recipient": self.recipient,
            "status": self.status.value,
            "scheduled_for": to_iso(self.scheduled_for),
            "external_id": self.external_id,
            "metadata": self.metadata.to_raw(),
            "ended_at": to_iso(self.ended_at),
            "ended_reason": self.ended_reason,
            "duration_seconds": self.duration_seconds,
            "cost": self.cost,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledAction":
        """Create from a stored row"""
        return cls(
            id=data["id"],
            case_id=data.get("case_id", ""),
            clinic_id=data.get("clinic_id"),
            owner_id=data.get("owner_id"),
            action_type=ActionType.from_string(data.get("action_type")),
            recipient=data.get("recipient", ""),
            status=ActionStatus(data.get("status", ActionStatus.QUEUED.value)),
            scheduled_for=from_iso(data.get("scheduled_for")) or now_utc(),
            external_id=data.get("external_id"),
            metadata=ActionMetadata.from_raw(data.get("metadata")),
            ended_at=from_iso(data.get("ended_at")),
            ended_reason=data.get("ended_reason"),
            duration_seconds=data.get("duration_seconds"),
            cost=data.get("cost"),
            created_at=from_iso(data.get("created_at")) or now_utc(),
            updated_at=from_iso(data.get("updated_at")) or now_utc(),
        )
