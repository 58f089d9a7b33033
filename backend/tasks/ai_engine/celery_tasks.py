# tasks/ai_engine/celery_tasks.py

import logging
from typing import Optional

from celery import shared_task

from .exceptions import CompletedTaskNotFoundError
from .history import ExecutionHistoryRecorder

# Configure logging for background worker monitoring
logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,  # Max backoff of 10 minutes
    max_retries=3,
    time_limit=30,          # Hard limit for the task process
    soft_time_limit=25      # Soft limit to allow cleanup
)
def record_execution_history(self, user_id: int, task_id: str) -> Optional[int]:
    """
    Worker: write the execution history row for a just-completed task.
    Input = (user_id, task_id) only. Returns the history row id.
    """
    logger.info(f"Execution history recording started for Task {task_id} (user {user_id})")
    try:
        record = ExecutionHistoryRecorder().record(user_id, task_id)

    except CompletedTaskNotFoundError:
        # Uncompleted or deleted before the worker ran; retrying cannot help.
        logger.warning(f"Task {task_id} is no longer completed. Exiting worker.")
        return None

    except Exception as exc:
        logger.exception(f"Execution history recording failed for Task {task_id}: {exc}")
        # Re-raise for Celery retry policy
        raise

    logger.info(f"Execution history {record.pk} persisted for Task {task_id}")
    return record.pk
