# tasks/services.py

import logging
from typing import Optional

from django.db import transaction
from django.utils import timezone

from .models import Task, TaskStatus
from .stores import ProposalStore

# Configure logging
logger = logging.getLogger(__name__)


def complete_task(task: Task, actual_minutes: Optional[int] = None) -> Task:
    """
    Mark a task completed. When the task was shaped by an accepted
    enrichment proposal, execution history recording is enqueued once the
    transaction commits, so the caller never waits on it and the worker
    always sees the completed row.
    """
    with transaction.atomic():
        task.status = TaskStatus.COMPLETED
        task.completed_at = timezone.now()
        update_fields = ['status', 'completed_at', 'updated_at']
        if actual_minutes is not None:
            task.actual_minutes = actual_minutes
            update_fields.append('actual_minutes')
        task.save(update_fields=update_fields)

        if ProposalStore().exists_accepted_for_task(task.user_id, task.id):
            user_id, task_id = task.user_id, str(task.id)

            def trigger_history():
                from .ai_engine.celery_tasks import record_execution_history
                # Pass only the ids. Worker will fetch required context.
                record_execution_history.delay(user_id, task_id)

            transaction.on_commit(trigger_history)

    logger.info(f"Task {task.id} completed by user {task.user_id}")
    return task


def uncomplete_task(task: Task) -> Task:
    """Reopen a completed task. An existing history row is left as written."""
    task.status = TaskStatus.PENDING
    task.completed_at = None
    task.save(update_fields=['status', 'completed_at', 'updated_at'])
    logger.info(f"Task {task.id} reopened by user {task.user_id}")
    return task


def soft_delete_task(task: Task) -> Task:
    task.deleted_at = timezone.now()
    task.save(update_fields=['deleted_at', 'updated_at'])
    return task
