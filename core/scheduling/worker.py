"""
RQ worker setup for the follow-up core
"""
import argparse
import logging
import signal
import sys
import time
from typing import Optional

import redis
from rq import Queue, Worker

from config.redis import check_redis_connection, create_redis_connection
from config.settings import FOLLOWUP_QUEUE_NAME, configure_logging

logger = logging.getLogger("scheduling-worker")


class FollowupWorker:
    """
    Runs an rq worker with the built-in scheduler enabled, so jobs enqueued
    with ``enqueue_at`` are moved onto the queue when they become due.
    """

    def __init__(self, connection: Optional[redis.Redis] = None, queue_name: str = FOLLOWUP_QUEUE_NAME):
        self.redis_conn = connection or create_redis_connection(decode_responses=False)
        self.queue = Queue(queue_name, connection=self.redis_conn)
        self.worker: Optional[Worker] = None
        self.running = False

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.stop()

    def start_worker(self, worker_name: Optional[str] = None):
        """
        Start processing follow-up jobs

        Args:
            worker_name: Optional name for the worker (defaults to a timestamped name)
        """
        if self.running:
            logger.warning("Worker is already running")
            return

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.worker = Worker(
            [self.queue],
            connection=self.redis_conn,
            name=worker_name or f"followup-worker-{int(time.time())}"
        )
        self.running = True
        logger.info(f"Starting follow-up worker on queue '{self.queue.name}'")

        try:
            self.worker.work(with_scheduler=True)
        finally:
            self.running = False
            logger.info("Worker stopped")

    def stop(self):
        """Stop the worker gracefully"""
        if self.worker and self.running:
            logger.info("Stopping worker...")
            self.worker.request_stop(signal.SIGTERM, None)
            self.running = False

    def enqueue_sweep(self, limit: int = 50):
        """Queue a sweep for queued actions that are past due"""
        from .tasks import sweep_due_actions
        return self.queue.enqueue(sweep_due_actions, limit)

    def get_worker_stats(self) -> dict:
        """Get statistics about the worker and queue"""
        return {
            "queue_size": len(self.queue),
            "failed_jobs": len(self.queue.failed_job_registry),
            "finished_jobs": len(self.queue.finished_job_registry),
            "started_jobs": len(self.queue.started_job_registry),
            "scheduled_jobs": len(self.queue.scheduled_job_registry),
            "worker_count": len(Worker.all(connection=self.redis_conn)),
            "is_running": self.running
        }


def main():
    """Run a follow-up worker"""
    parser = argparse.ArgumentParser(description="Discharge follow-up worker")
    parser.add_argument("--worker-name", help="Name for the worker process")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (defaults to LOG_LEVEL)"
    )
    parser.add_argument(
        "--sweep",
        action="store_true",
        help="Queue a sweep of past-due actions before starting"
    )
    args = parser.parse_args()

    configure_logging(args.log_level)

    worker = FollowupWorker()
    if not check_redis_connection(worker.redis_conn):
        logger.error("Redis is not reachable, not starting the worker")
        sys.exit(1)
    if args.sweep:
        worker.enqueue_sweep()
    worker.start_worker(worker_name=args.worker_name)


if __name__ == "__main__":
    main()
