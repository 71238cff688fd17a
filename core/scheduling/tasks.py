"""
RQ tasks for executing scheduled follow-up actions

Jobs are enqueued by ``followup.dispatch.RQDispatchClient`` using the dotted
path of these functions, so they only take JSON-friendly arguments.
"""
import logging
from rq import get_current_job

logger = logging.getLogger("followup-tasks")


def _default_orchestrator():
    # Imported lazily so workers only build clients when a job runs
    from followup.orchestrator import create_orchestrator
    return create_orchestrator()


def execute_scheduled_action(action_id: str, orchestrator=None) -> str:
    """
    RQ task to execute a scheduled action at its time

    Args:
        action_id: The unique identifier of the action to execute
        orchestrator: Injected orchestrator (built from configuration if None)

    Returns:
        Status message indicating the result
    """
    current_job = get_current_job()
    job_id = current_job.id if current_job else "inline"
    orchestrator = orchestrator or _default_orchestrator()

    logger.info(f"Starting execution of action {action_id} (job {job_id})")
    try:
        action = orchestrator.execute_action(action_id)
    except Exception as e:
        logger.error(f"Exception executing action {action_id}: {e}", exc_info=True)
        raise

    if action is None:
        return f"Action {action_id} not found"
    return f"Action {action_id} is {action.status.value}"


def sweep_due_actions(limit: int = 50, orchestrator=None) -> str:
    """
    RQ task that executes queued actions whose time has passed

    Picks up actions that were created but never accepted by the dispatch
    client (e.g. the process died in between).
    """
    orchestrator = orchestrator or _default_orchestrator()
    executed = orchestrator.dispatch_due_actions(limit=limit)
    logger.info(f"Swept {len(executed)} due actions")
    return f"Executed {len(executed)} due actions"
