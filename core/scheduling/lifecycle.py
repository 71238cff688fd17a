"""
CallLifecycleTracker - owns every write to scheduled actions

State machine::

    queued -> ringing | in_progress | cancelled | failed | completed
    ringing -> in_progress | completed | failed | cancelled
    in_progress -> completed | failed | cancelled

Terminal states (completed, failed, cancelled) are written once. A repeated
terminal notification for a terminal record is accepted as a no-op. There is
no compare-and-swap between concurrent notifications.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from storage.base import Store
from storage.errors import FatalStoreError, NotFoundError, StoreError, ValidationError
from storage.predicates import Eq, Lte, Predicate, all_of
from identity.scope import ScopeFilterBuilder
from followup.call_business_logic import map_ended_reason
from followup.errors import InvalidTransitionError
from utils.time_utils import ensure_utc, now_utc, to_iso
from .models import ActionMetadata, ActionStatus, ActionType, ScheduledAction

logger = logging.getLogger("call-lifecycle")

ACTIONS = "scheduled_actions"

ALLOWED_TRANSITIONS = {
    ActionStatus.QUEUED: {ActionStatus.RINGING, ActionStatus.IN_PROGRESS, ActionStatus.CANCELLED,
                          ActionStatus.FAILED, ActionStatus.COMPLETED},
    ActionStatus.RINGING: {ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED, ActionStatus.FAILED,
                           ActionStatus.CANCELLED},
    ActionStatus.IN_PROGRESS: {ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.CANCELLED},
    ActionStatus.COMPLETED: set(),
    ActionStatus.FAILED: set(),
    ActionStatus.CANCELLED: set(),
}


class CallLifecycleTracker:
    """
    Tracks scheduled actions through their lifecycle.

    Handles:
    - Creating queued actions
    - Dispatch / in-progress / terminal transitions
    - Retry accounting and metadata merges
    - Tenant-scoped stats and listings
    """

    def __init__(self, store: Store, scope_builder: Optional[ScopeFilterBuilder] = None):
        self.store = store
        self.scope_builder = scope_builder or ScopeFilterBuilder()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_action(self, action_id: str) -> Optional[ScheduledAction]:
        """Get an action by id, or None if it does not exist or cannot be read"""
        try:
            return ScheduledAction.from_dict(self.store.get(ACTIONS, action_id))
        except NotFoundError:
            return None
        except StoreError as e:
            logger.error(f"Failed to read action {action_id}: {e}")
            return None

    def find_by_external_id(self, external_id: str) -> Optional[ScheduledAction]:
        try:
            row = self.store.select_one(ACTIONS, Eq("external_id", external_id))
        except StoreError as e:
            logger.error(f"Failed to look up action by external id {external_id}: {e}")
            return None
        return ScheduledAction.from_dict(row) if row else None

    def _require(self, action_id: str) -> ScheduledAction:
        """Read for mutations; unknown ids raise NotFoundError"""
        try:
            return ScheduledAction.from_dict(self.store.get(ACTIONS, action_id))
        except NotFoundError:
            logger.warning(f"Action {action_id} not found")
            raise
        except StoreError as e:
            logger.error(f"Failed to read action {action_id}: {e}", exc_info=True)
            raise FatalStoreError(f"Failed to read action {action_id}: {e}", table=ACTIONS) from e

    def _scope(self, tenant_id: Optional[str], legacy_owner_ids: Iterable[str],
               action_type: Optional[ActionType] = None, status: Optional[ActionStatus] = None) -> Predicate:
        predicate = self.scope_builder.build(tenant_id, legacy_owner_ids)
        extra = []
        if action_type is not None:
            extra.append(Eq("action_type", action_type.value))
        if status is not None:
            extra.append(Eq("status", status.value))
        return all_of(predicate, *extra)

    def get_stats(self, tenant_id: Optional[str], legacy_owner_ids: Iterable[str] = (),
                  action_type: Optional[ActionType] = None) -> Dict[str, int]:
        """
        Count actions per status for a tenant

        Every status is present in the result, zero when nothing matched.
        Store errors degrade to all zeros.
        """
        stats = {status.value: 0 for status in ActionStatus}
        try:
            counts = self.store.count_by(ACTIONS, "status", self._scope(tenant_id, legacy_owner_ids, action_type))
        except StoreError as e:
            logger.error(f"Failed to count actions for tenant {tenant_id}: {e}")
            return stats

        for status, count in counts.items():
            if status in stats:
                stats[status] += count
        return stats

    def get_stats_by_user(self, owner_id: str, action_type: Optional[ActionType] = None) -> Dict[str, int]:
        """Legacy per-user stats"""
        return self.get_stats(None, [owner_id], action_type)

    def list_actions(self, tenant_id: Optional[str], legacy_owner_ids: Iterable[str] = (),
                     status: Optional[ActionStatus] = None, limit: Optional[int] = None) -> List[ScheduledAction]:
        """List a tenant's actions ordered by scheduled time"""
        try:
            rows = self.store.select(ACTIONS, self._scope(tenant_id, legacy_owner_ids, status=status),
                                     order_by="scheduled_for", limit=limit)
        except StoreError as e:
            logger.error(f"Failed to list actions for tenant {tenant_id}: {e}")
            return []
        return [ScheduledAction.from_dict(row) for row in rows]

    def find_due_actions(self, now: Optional[datetime] = None, limit: int = 50) -> List[ScheduledAction]:
        """Queued actions whose scheduled time has passed"""
        now = ensure_utc(now) if now else now_utc()
        predicate = all_of(Eq("status", ActionStatus.QUEUED.value), Lte("scheduled_for", now))
        try:
            rows = self.store.select(ACTIONS, predicate, order_by="scheduled_for", limit=limit)
        except StoreError as e:
            logger.error(f"Failed to find due actions: {e}")
            return []
        return [ScheduledAction.from_dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write(self, action_id: str, patch: Dict[str, Any]) -> ScheduledAction:
        patch = {**patch, "updated_at": to_iso(now_utc())}
        try:
            return ScheduledAction.from_dict(self.store.update(ACTIONS, action_id, patch))
        except NotFoundError:
            raise
        except StoreError as e:
            logger.error(f"Failed to update action {action_id}: {e}", exc_info=True)
            raise FatalStoreError(f"Failed to update action {action_id}: {e}", table=ACTIONS) from e

    def create_action(self, case_id: str, clinic_id: Optional[str], action_type: ActionType, recipient: str,
                      scheduled_for: datetime, owner_id: Optional[str] = None,
                      metadata: Optional[Dict[str, Any]] = None) -> ScheduledAction:
        """
        Create a queued action

        Args:
            case_id: Discharge case the action follows up on
            clinic_id: Owning tenant
            action_type: CALL or EMAIL
            recipient: Phone (E.164) or email address
            scheduled_for: When to run; must be in the future
            owner_id: Legacy owner id
            metadata: Caller metadata; ``retry_count`` defaults to 0

        Returns:
            The stored ScheduledAction
        """
        if not case_id:
            raise ValidationError("Scheduled action requires a case_id")
        if not recipient:
            raise ValidationError("Scheduled action requires a recipient")
        if not clinic_id and not owner_id:
            raise ValidationError("Scheduled action requires a clinic_id or owner_id")

        scheduled_for = ensure_utc(scheduled_for)
        if scheduled_for <= now_utc():
            raise ValidationError(f"scheduled_for must be in the future, got {scheduled_for.isoformat()}")

        action = ScheduledAction(
            case_id=case_id,
            clinic_id=clinic_id,
            owner_id=owner_id,
            action_type=action_type,
            recipient=recipient,
            scheduled_for=scheduled_for,
            metadata=ActionMetadata.from_raw(metadata),
        )

        try:
            row = self.store.insert(ACTIONS, action.to_dict())
        except StoreError as e:
            logger.error(f"Failed to create action for case {case_id}: {e}", exc_info=True)
            raise FatalStoreError(f"Failed to create action for case {case_id}: {e}", table=ACTIONS) from e

        logger.info(f"Queued {action_type.value} action {action.id} for case {case_id} at {scheduled_for.isoformat()}")
        return ScheduledAction.from_dict(row)

    def _transition(self, action: ScheduledAction, target: ActionStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[action.status]:
            raise InvalidTransitionError(action.id, action.status.value, target.value)

    def mark_dispatched(self, action_id: str, external_id: str,
                        status: ActionStatus = ActionStatus.RINGING) -> ScheduledAction:
        """Persist the dispatch client's external id together with the new state"""
        if status not in (ActionStatus.RINGING, ActionStatus.IN_PROGRESS):
            raise ValidationError(f"mark_dispatched only moves to ringing or in_progress, not {status.value}")
        if not external_id:
            raise ValidationError("mark_dispatched requires an external_id")

        action = self._require(action_id)
        if action.status not in (ActionStatus.QUEUED, ActionStatus.RINGING):
            raise InvalidTransitionError(action_id, action.status.value, status.value)
        if action.status is not status:
            self._transition(action, status)

        logger.info(f"Action {action_id} dispatched as {external_id} ({status.value})")
        return self._write(action_id, {"status": status.value, "external_id": external_id})

    def mark_in_progress(self, action_id: str) -> ScheduledAction:
        action = self._require(action_id)
        if action.status is ActionStatus.IN_PROGRESS:
            return action
        if action.status is not ActionStatus.RINGING:
            raise InvalidTransitionError(action_id, action.status.value, ActionStatus.IN_PROGRESS.value)
        return self._write(action_id, {"status": ActionStatus.IN_PROGRESS.value})

    def record_terminal(self, action_id: str, status: ActionStatus, ended_reason: Optional[str] = None,
                        ended_at: Optional[datetime] = None, duration_seconds: Optional[int] = None,
                        cost: Optional[float] = None) -> ScheduledAction:
        """
        Write a terminal outcome

        A record that is already terminal is returned unchanged.

        Args:
            action_id: Action to finish
            status: COMPLETED, FAILED or CANCELLED
            ended_reason: Provider or internal reason string
            ended_at: When it ended (defaults to now)
            duration_seconds: Call duration, if known
            cost: Provider cost, if known

        Returns:
            The stored ScheduledAction
        """
        if not status.is_terminal:
            raise ValidationError(f"{status.value} is not a terminal status")

        action = self._require(action_id)
        if action.is_terminal:
            if action.status is not status:
                logger.warning(
                    f"Ignoring {status.value} for action {action_id}: already {action.status.value}"
                )
            else:
                logger.info(f"Duplicate {status.value} notification for action {action_id} ignored")
            return action

        self._transition(action, status)
        patch = {
            "status": status.value,
            "ended_at": to_iso(ensure_utc(ended_at) if ended_at else now_utc()),
            "ended_reason": ended_reason,
        }
        if duration_seconds is not None:
            patch["duration_seconds"] = duration_seconds
        if cost is not None:
            patch["cost"] = cost

        logger.info(f"Action {action_id} -> {status.value} ({ended_reason})")
        return self._write(action_id, patch)

    def cancel(self, action_id: str, reason: str = "cancelled") -> ScheduledAction:
        """
        Cancel a queued action

        Once dispatched, an action has to be cancelled at the dispatch client
        and the outcome arrives through ``record_terminal``.
        """
        action = self._require(action_id)
        if action.status is ActionStatus.CANCELLED:
            return action
        if action.status is not ActionStatus.QUEUED:
            raise InvalidTransitionError(action_id, action.status.value, ActionStatus.CANCELLED.value)

        logger.info(f"Cancelling action {action_id}: {reason}")
        return self._write(action_id, {
            "status": ActionStatus.CANCELLED.value,
            "ended_at": to_iso(now_utc()),
            "ended_reason": reason,
        })

    def update_metadata(self, action_id: str, patch: Dict[str, Any]) -> ScheduledAction:
        """Merge ``patch`` into the action metadata; existing keys survive"""
        action = self._require(action_id)
        merged = {**action.metadata.to_raw(), **patch}
        return self._write(action_id, {"metadata": ActionMetadata.from_raw(merged).to_raw()})

    def increment_retry_count(self, action_id: str, reason: Optional[str] = None,
                              next_retry_at: Optional[datetime] = None) -> int:
        """
        Bump ``retry_count`` in the metadata

        Returns:
            The new retry count
        """
        action = self._require(action_id)
        retry_count = action.metadata.retry_count + 1
        patch: Dict[str, Any] = {"retry_count": retry_count}
        if reason is not None:
            patch["last_retry_reason"] = reason
        if next_retry_at is not None:
            patch["next_retry_at"] = to_iso(next_retry_at)
        self.update_metadata(action_id, patch)
        logger.info(f"Action {action_id} retry count now {retry_count}")
        return retry_count

    def map_ended_reason(self, ended_reason: Optional[str],
                         metadata: Optional[Dict[str, Any]] = None) -> ActionStatus:
        return map_ended_reason(ended_reason, metadata)
