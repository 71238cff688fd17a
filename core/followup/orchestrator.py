"""
DischargeFollowupOrchestrator - wires readiness, timing, identity and lifecycle

Flow for one case:
readiness -> next legal instant -> identity rows -> queued action ->
summary generation (retried) -> dispatch (retried) -> dispatched action.
Later the rq job moves the action on and the provider's end-of-call report
finishes it.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from discharge.contact import normalize_to_e164, is_valid_email
from discharge.models import DischargeCase
from discharge.readiness import DischargeReadinessEvaluator, TestModeConfig
from identity.models import OwnerInfo, PatientInfo
from identity.resolver import IdentityResolver
from scheduling.business_hours import BusinessHoursScheduler, WindowConfig
from scheduling.lifecycle import CallLifecycleTracker
from scheduling.models import ActionStatus, ActionType, ScheduledAction
from storage.base import Store
from storage.errors import StoreError, ValidationError
from utils.time_utils import ensure_utc, now_utc, to_iso
from .call_business_logic import build_dispatch_payload, calculate_retry_delay, should_retry_call
from .dispatch import DispatchClient
from .errors import TransientExternalError
from .generation import DischargeSummaryGenerator, GenerationClient
from .retry import RetryExecutor

logger = logging.getLogger("followup-orchestrator")


class DischargeFollowupOrchestrator:
    """
    Schedules and drives discharge follow-ups.

    Every collaborator is injected; defaults are built around the given store.
    """

    def __init__(self, store: Store, generation_client: GenerationClient, dispatch_client: DispatchClient,
                 resolver: Optional[IdentityResolver] = None, tracker: Optional[CallLifecycleTracker] = None,
                 scheduler: Optional[BusinessHoursScheduler] = None, retry_executor: Optional[RetryExecutor] = None,
                 window_config: Optional[WindowConfig] = None, test_mode: Optional[TestModeConfig] = None,
                 evaluator: Optional[DischargeReadinessEvaluator] = None,
                 default_delay_minutes: Optional[int] = None, default_timezone: Optional[str] = None):
        from config import settings

        self.store = store
        self.dispatch_client = dispatch_client
        self.resolver = resolver or IdentityResolver(store)
        self.tracker = tracker or CallLifecycleTracker(store)
        self.scheduler = scheduler or BusinessHoursScheduler()
        self.retry_executor = retry_executor or RetryExecutor()
        self.generator = DischargeSummaryGenerator(generation_client, self.retry_executor)
        self.window_config = window_config or WindowConfig.from_settings()
        self.test_mode = test_mode or TestModeConfig.from_env()
        self.evaluator = evaluator or DischargeReadinessEvaluator()
        self.default_delay_minutes = (settings.DEFAULT_SCHEDULE_DELAY_MINUTES
                                      if default_delay_minutes is None else default_delay_minutes)
        self.default_timezone = default_timezone or settings.DEFAULT_TIMEZONE
        self.max_action_retries = settings.ACTION_MAX_RETRIES

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _recipient(self, action_type: ActionType, case: DischargeCase, owner: OwnerInfo) -> str:
        """Pick the address for the action; test mode always wins"""
        if action_type is ActionType.CALL:
            phone = self.test_mode.contact_phone if self.test_mode.enabled else (owner.phone or case.owner_phone)
            recipient = normalize_to_e164(phone)
            if not recipient:
                raise ValidationError(f"No valid phone number for a call on case {case.id}")
            return recipient

        email = self.test_mode.contact_email if self.test_mode.enabled else (owner.email or case.owner_email)
        if not is_valid_email(email):
            raise ValidationError(f"No valid email address for case {case.id}")
        return email.strip()

    def _initial_time(self, scheduled_at: Optional[datetime]) -> datetime:
        now = now_utc()
        if scheduled_at is None:
            return now + timedelta(minutes=self.default_delay_minutes)
        scheduled_at = ensure_utc(scheduled_at)
        if scheduled_at <= now:
            raise ValidationError(f"Scheduled time must be in the future, got {scheduled_at.isoformat()}")
        return scheduled_at

    def _fail(self, action_id: str, reason: str):
        """Mark an action failed without masking the error that caused it"""
        try:
            self.tracker.update_metadata(action_id, {"last_error": reason})
            self.tracker.record_terminal(action_id, ActionStatus.FAILED, ended_reason=reason)
        except StoreError as e:
            logger.error(f"Could not mark action {action_id} failed: {e}", exc_info=True)

    def _dispatch(self, action: ScheduledAction, when: datetime) -> ScheduledAction:
        """Hand the action to the dispatch client and record the external id"""
        payload = build_dispatch_payload(action)
        external_id = self.retry_executor.run(
            lambda: self.dispatch_client.schedule(action.recipient, payload, when),
            description=f"dispatch of action {action.id}",
        )
        status = ActionStatus.RINGING if action.action_type is ActionType.CALL else ActionStatus.IN_PROGRESS
        return self.tracker.mark_dispatched(action.id, external_id, status)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def schedule_followup(self, case: DischargeCase, clinic_name: str, owner: OwnerInfo, patient: PatientInfo,
                          action_type: ActionType = ActionType.CALL, scheduled_at: Optional[datetime] = None,
                          owner_id: Optional[str] = None, timezone: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> ScheduledAction:
        """
        Schedule a follow-up for a discharge-ready case

        Args:
            case: The discharge case
            clinic_name: Owning clinic (created on first sight)
            owner: Pet owner contact details
            patient: Patient name and demographics
            action_type: CALL or EMAIL
            scheduled_at: Explicit time (must be in the future); defaults to now + delay
            owner_id: Legacy owner id for hybrid scoping
            timezone: Zone for business hours (defaults to DEFAULT_TIMEZONE)
            metadata: Extra metadata stored on the action

        Returns:
            The dispatched ScheduledAction

        Raises:
            ValidationError: If the case is not ready or inputs are invalid
        """
        readiness = self.evaluator.evaluate(case, self.test_mode)
        if not readiness.ready:
            raise ValidationError(f"Case {case.id} is not ready for follow-up: {', '.join(readiness.missing)}")

        zone = timezone or self.default_timezone
        scheduled_for = self.scheduler.next_allowed_instant(self._initial_time(scheduled_at), zone,
                                                            self.window_config)
        recipient = self._recipient(action_type, case, owner)

        identity = self.resolver.resolve_client_identity(clinic_name, owner, patient)

        action_metadata = dict(metadata or {})
        action_metadata.setdefault("max_retries", self.max_action_retries)
        action_metadata.update({
            "client_id": identity.client.id,
            "canonical_patient_id": identity.patient.id,
            "timezone": zone,
            "test_mode": self.test_mode.enabled,
        })
        action = self.tracker.create_action(
            case_id=case.id,
            clinic_id=identity.clinic.id,
            action_type=action_type,
            recipient=recipient,
            scheduled_for=scheduled_for,
            owner_id=owner_id,
            metadata=action_metadata,
        )

        try:
            summary = self.generator.generate(case, patient.name)
            action = self.tracker.update_metadata(action.id, {"discharge_summary": summary})
            return self._dispatch(action, scheduled_for)
        except Exception as e:
            logger.error(f"Scheduling follow-up {action.id} for case {case.id} failed: {e}")
            self._fail(action.id, f"scheduling_failed: {e}")
            raise

    def execute_action(self, action_id: str) -> Optional[ScheduledAction]:
        """
        Run a due action; called by the rq job at its scheduled time

        - terminal actions are skipped
        - queued actions (never accepted by dispatch) are dispatched now; a
          transient failure uses up one retry
        - a ringing call goes in progress and waits for its end-of-call report
        - an in-progress email is complete once its job has run
        """
        action = self.tracker.get_action(action_id)
        if action is None:
            logger.warning(f"Action {action_id} not found for execution")
            return None

        if action.is_terminal:
            logger.info(f"Action {action_id} already {action.status.value}, skipping")
            return action

        if action.status is ActionStatus.QUEUED:
            try:
                return self._dispatch(action, now_utc())
            except TransientExternalError as e:
                retry_count = self.tracker.increment_retry_count(action_id, reason=str(e))
                if retry_count >= action.metadata.max_retries:
                    self._fail(action_id, f"dispatch_failed: {e}")
                    raise
                logger.warning(f"Dispatch of action {action_id} failed ({retry_count} retries used): {e}")
                return self.tracker.get_action(action_id)
            except Exception as e:
                self._fail(action_id, f"dispatch_failed: {e}")
                raise

        if action.status is ActionStatus.RINGING:
            return self.tracker.mark_in_progress(action_id)

        if action.action_type is ActionType.EMAIL:
            return self.tracker.record_terminal(action_id, ActionStatus.COMPLETED, ended_reason="email-sent")

        logger.info(f"Action {action_id} already in progress, waiting for its outcome")
        return action

    def dispatch_due_actions(self, now: Optional[datetime] = None, limit: int = 50) -> List[ScheduledAction]:
        """Execute queued actions whose time has passed without being dispatched"""
        results = []
        for action in self.tracker.find_due_actions(now, limit):
            try:
                result = self.execute_action(action.id)
            except Exception as e:
                logger.error(f"Executing due action {action.id} failed: {e}", exc_info=True)
                continue
            if result is not None:
                results.append(result)
        return results

    def handle_end_of_call(self, ended_reason: Optional[str], external_id: Optional[str] = None,
                           action_id: Optional[str] = None, ended_at: Optional[datetime] = None,
                           duration_seconds: Optional[int] = None,
                           cost: Optional[float] = None) -> Optional[ScheduledAction]:
        """
        Record the provider's end-of-call report

        Repeated reports for a finished action are no-ops. A failed call
        whose reason is retryable gets a new queued action while retries
        remain.

        Returns:
            The updated action, or None if no action matches
        """
        if action_id:
            action = self.tracker.get_action(action_id)
        elif external_id:
            action = self.tracker.find_by_external_id(external_id)
        else:
            raise ValidationError("handle_end_of_call requires an external_id or an action_id")

        if action is None:
            logger.warning(f"No action found for end-of-call report (action={action_id}, external={external_id})")
            return None

        metadata = action.metadata.to_raw()
        status = self.tracker.map_ended_reason(ended_reason, metadata)
        if action.is_terminal:
            return self.tracker.record_terminal(action.id, status, ended_reason=ended_reason)

        updated = self.tracker.record_terminal(
            action.id, status,
            ended_reason=ended_reason,
            ended_at=ended_at,
            duration_seconds=duration_seconds,
            cost=cost,
        )

        if status is ActionStatus.FAILED and should_retry_call(
                ended_reason, action.metadata.retry_count, action.metadata.max_retries, metadata):
            self._schedule_retry(updated, ended_reason)
        return updated

    def _schedule_retry(self, action: ScheduledAction, reason: str) -> ScheduledAction:
        delay = calculate_retry_delay(action.metadata.retry_count)
        zone = action.metadata.get("timezone") or self.default_timezone
        when = self.scheduler.next_allowed_instant(now_utc() + timedelta(minutes=delay), zone, self.window_config)

        retry_count = self.tracker.increment_retry_count(action.id, reason=reason, next_retry_at=when)
        metadata = {
            **action.metadata.to_raw(),
            "retry_count": retry_count,
            "retry_of": action.id,
            "next_retry_at": None,
            "last_retry_reason": reason,
        }
        retry_action = self.tracker.create_action(
            case_id=action.case_id,
            clinic_id=action.clinic_id,
            action_type=action.action_type,
            recipient=action.recipient,
            scheduled_for=when,
            owner_id=action.owner_id,
            metadata=metadata,
        )
        logger.info(f"Scheduled retry {retry_action.id} of action {action.id} at {to_iso(when)} ({reason})")

        try:
            return self._dispatch(retry_action, when)
        except Exception as e:
            logger.error(f"Dispatching retry {retry_action.id} failed: {e}")
            self._fail(retry_action.id, f"dispatch_failed: {e}")
            raise

    def cancel_followup(self, action_id: str, reason: str = "cancelled by user") -> ScheduledAction:
        """
        Cancel a follow-up

        Queued actions are cancelled directly; dispatched ones are cancelled
        at the dispatch client first.
        """
        action = self.tracker.get_action(action_id)
        if action is None:
            raise ValidationError(f"Action {action_id} not found")

        if action.status is ActionStatus.QUEUED or action.is_terminal:
            return self.tracker.cancel(action_id, reason)

        if action.external_id:
            self.dispatch_client.cancel(action.external_id)
        return self.tracker.record_terminal(action_id, ActionStatus.CANCELLED, ended_reason=reason)


def create_orchestrator(store: Store = None) -> DischargeFollowupOrchestrator:
    """
    Factory function to create an orchestrator from configuration

    Args:
        store: Store to use (creates a RedisStore if None)

    Returns:
        DischargeFollowupOrchestrator with OpenAI generation and rq dispatch
    """
    from storage.redis_store import create_redis_store
    from .dispatch import RQDispatchClient
    from .generation import OpenAIGenerationClient

    return DischargeFollowupOrchestrator(
        store=store or create_redis_store(),
        generation_client=OpenAIGenerationClient(),
        dispatch_client=RQDispatchClient(),
    )
