"""
Scheduling module for the follow-up core

Contains components for timing and tracking delayed follow-up actions:
- ScheduledAction / ActionStatus / ActionType: action records
- BusinessHoursScheduler: legal send windows per timezone
- lifecycle: CallLifecycleTracker, state machine over scheduled actions
- RQ Tasks: execute actions at their scheduled time
"""

from .models import ScheduledAction, ActionStatus, ActionType, ActionMetadata
from .business_hours import BusinessHoursScheduler, WindowConfig, DayWindow

__all__ = [
    "ScheduledAction",
    "ActionStatus",
    "ActionType",
    "ActionMetadata",
    "BusinessHoursScheduler",
    "WindowConfig",
    "DayWindow"
]
