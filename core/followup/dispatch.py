"""
Dispatch client adapters - hand a follow-up to whatever executes it later

The orchestrator only talks to ``DispatchClient``. ``RQDispatchClient``
schedules the rq job that runs the action at its time; ``MockDispatchClient``
records requests for tests and dry runs.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from storage.errors import ValidationError
from utils.time_utils import ensure_utc
from .errors import DispatchError

logger = logging.getLogger("dispatch-client")

EXECUTE_TASK = "scheduling.tasks.execute_scheduled_action"


def generate_job_id(action_id: str) -> str:
    """Job id for an action; one job per action"""
    return f"followup-{action_id}"


class DispatchClient(ABC):
    """Abstract interface for dispatching scheduled actions"""

    @abstractmethod
    def schedule(self, recipient: str, payload: Dict[str, Any], when_utc: datetime) -> str:
        """Accept an action for execution at ``when_utc`` and return its external id"""
        pass

    @abstractmethod
    def cancel(self, external_id: str) -> bool:
        """Cancel a previously scheduled action. Returns False if it no longer exists."""
        pass


class RQDispatchClient(DispatchClient):
    """Dispatch client that enqueues an rq job at the scheduled time"""

    def __init__(self, connection: Optional[redis.Redis] = None, queue_name: Optional[str] = None,
                 job_timeout: int = 300):
        if connection is None:
            from config.redis import create_redis_connection
            connection = create_redis_connection(decode_responses=False)
        if queue_name is None:
            from config.settings import FOLLOWUP_QUEUE_NAME
            queue_name = FOLLOWUP_QUEUE_NAME
        self.connection = connection
        self.queue = Queue(queue_name, connection=connection)
        self.job_timeout = job_timeout

    def schedule(self, recipient: str, payload: Dict[str, Any], when_utc: datetime) -> str:
        action_id = payload.get("action_id")
        if not action_id:
            raise ValidationError("Dispatch payload requires an action_id")

        try:
            job = self.queue.enqueue_at(
                ensure_utc(when_utc),
                EXECUTE_TASK,
                action_id,
                job_id=generate_job_id(action_id),
                job_timeout=self.job_timeout,
                meta={"recipient": recipient, **payload},
            )
        except redis.RedisError as e:
            logger.error(f"Failed to enqueue action {action_id}: {e}")
            raise DispatchError(f"Failed to enqueue action {action_id}: {e}", status_code=503) from e

        logger.info(f"Enqueued action {action_id} as job {job.id} for {ensure_utc(when_utc).isoformat()}")
        return job.id

    def cancel(self, external_id: str) -> bool:
        try:
            job = Job.fetch(external_id, connection=self.connection)
            job.cancel()
        except NoSuchJobError:
            logger.warning(f"Job {external_id} not found for cancellation")
            return False
        except redis.RedisError as e:
            raise DispatchError(f"Failed to cancel job {external_id}: {e}", status_code=503) from e

        logger.info(f"Cancelled job {external_id}")
        return True


class MockDispatchClient(DispatchClient):
    """Mock implementation for testing"""

    def __init__(self):
        self.scheduled: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self.should_fail = False
        self.failure_status_code: Optional[int] = None
        self.failure_error: Optional[str] = None

    def schedule(self, recipient: str, payload: Dict[str, Any], when_utc: datetime) -> str:
        if self.should_fail:
            raise DispatchError(self.failure_error or "Mock dispatch failure", status_code=self.failure_status_code)

        external_id = f"mock-dispatch-{len(self.scheduled) + 1}"
        self.scheduled.append({
            'id': external_id,
            'recipient': recipient,
            'payload': payload,
            'when_utc': ensure_utc(when_utc),
        })
        return external_id

    def cancel(self, external_id: str) -> bool:
        if not any(item['id'] == external_id for item in self.scheduled):
            return False
        self.cancelled.append(external_id)
        return True

    def reset(self):
        """Reset mock state"""
        self.scheduled.clear()
        self.cancelled.clear()
        self.should_fail = False
        self.failure_status_code = None
        self.failure_error = None
