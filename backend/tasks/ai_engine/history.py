# tasks/ai_engine/history.py
"""
Execution history: what actually happened when a task was completed.

``record`` writes one immutable audit row per completed task. Those rows
feed later similarity searches (accuracy ratio, added subtasks, stall
points). ``summarize`` turns a task's row into user-facing advice.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from django.utils.dateparse import parse_datetime

from ..models import ExecutionOutcome, Task, TaskExecutionHistory
from ..stores import ExecutionHistoryStore, TaskStore
from .exceptions import CompletedTaskNotFoundError, TaskNotFoundError
from .keywords import extract_keywords

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# Thresholds for summary advice
UNDERESTIMATE_ADVICE_RATIO = 1.5
ADDED_SUBTASKS_ADVICE_COUNT = 2
STALL_ADVICE_MINUTES = 30


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def normalize_stall_events(raw_events: Any) -> Tuple[List[Dict[str, Any]], int]:
    """
    Stall events come from ``task.metadata["stall_events"]`` as dicts with
    ``start_time``, ``end_time`` (ISO strings) and an optional ``reason``.
    Returns the cleaned events (with ``duration_minutes``) and their total.
    """
    if not isinstance(raw_events, list):
        return [], 0

    events: List[Dict[str, Any]] = []
    total = 0
    for raw in raw_events:
        if not isinstance(raw, dict):
            continue
        start = parse_datetime(str(raw.get('start_time') or ''))
        end = parse_datetime(str(raw.get('end_time') or ''))
        duration = 0
        if start is not None and end is not None:
            duration = max(0, math.floor((end - start).total_seconds() / 60))

        event = {
            'start_time': raw.get('start_time'),
            'end_time': raw.get('end_time'),
            'duration_minutes': duration,
        }
        if raw.get('reason'):
            event['reason'] = str(raw['reason'])
        events.append(event)
        total += duration

    return events, total


class ExecutionHistoryRecorder:

    def __init__(
        self,
        task_store: Optional[TaskStore] = None,
        history_store: Optional[ExecutionHistoryStore] = None,
    ):
        self.task_store = task_store or TaskStore()
        self.history_store = history_store or ExecutionHistoryStore()

    def record(self, user_id: int, task_id: Any) -> TaskExecutionHistory:
        """
        Write the execution history for a completed task. The task itself is
        not modified. Recording twice returns the existing row.

        Raises:
            CompletedTaskNotFoundError: No completed task with this id for the user.
        """
        task = self.task_store.get_completed(user_id, task_id)
        if task is None:
            raise CompletedTaskNotFoundError(f"Completed task {task_id} not found")

        existing = self.history_store.get_for_task(task.id)
        if existing is not None:
            logger.info(f"History already recorded for task {task.id}, skipping")
            return existing

        children = self.task_store.list_children(task)
        original = [child for child in children if child.is_ai_suggested]
        added = [child for child in children if not child.is_ai_suggested]

        ratio = None
        if task.estimated_minutes and task.actual_minutes:
            ratio = task.actual_minutes / task.estimated_minutes

        days_overdue = 0
        if task.due_date and task.completed_at:
            elapsed = (task.completed_at - task.due_date).total_seconds()
            days_overdue = max(0, math.floor(elapsed / SECONDS_PER_DAY))

        # abandoned / delegated / deferred are never assigned here.
        outcome = ExecutionOutcome.COMPLETED_LATE if days_overdue > 0 else ExecutionOutcome.COMPLETED

        metadata = task.metadata if isinstance(task.metadata, dict) else {}
        stall_events, stall_minutes = normalize_stall_events(metadata.get('stall_events'))

        record = self.history_store.insert(
            task=task,
            user_id=user_id,
            original_estimated_minutes=task.estimated_minutes,
            final_actual_minutes=task.actual_minutes,
            estimation_accuracy_ratio=ratio,
            original_subtask_count=len(original),
            subtasks_added_mid_execution=len(added),
            added_subtask_titles=[child.title for child in added],
            stall_events=stall_events,
            total_stall_time_minutes=stall_minutes,
            outcome=outcome,
            task_category=str(metadata.get('category') or ''),
            completion_date=task.completed_at,
            days_overdue=days_overdue,
            keyword_fingerprint=extract_keywords(f"{task.title} {task.description or ''}"),
        )
        logger.info(
            f"Recorded execution history for task {task.id}: outcome={outcome}, "
            f"ratio={ratio}, added_subtasks={len(added)}"
        )
        return record

    def summarize(self, user_id: int, task_id: Any) -> Dict[str, Any]:
        """Task snapshot, its history row (or None) and derived advice."""
        task = self.task_store.get(task_id)
        if task is None or task.user_id != user_id:
            raise TaskNotFoundError(f"Task {task_id} not found")

        history = self.history_store.get_for_task(task.id)
        return {
            'task': {
                'id': str(task.id),
                'title': task.title,
                'status': task.status,
                'estimated_minutes': task.estimated_minutes,
                'actual_minutes': task.actual_minutes,
                'due_date': _iso(task.due_date),
                'completed_at': _iso(task.completed_at),
            },
            'execution_history': self._history_dict(history) if history is not None else None,
            'insights': self._insights(history, task),
        }

    def _history_dict(self, history: TaskExecutionHistory) -> Dict[str, Any]:
        return {
            'id': history.id,
            'original_estimated_minutes': history.original_estimated_minutes,
            'final_actual_minutes': history.final_actual_minutes,
            'estimation_accuracy_ratio': history.estimation_accuracy_ratio,
            'original_subtask_count': history.original_subtask_count,
            'subtasks_added_mid_execution': history.subtasks_added_mid_execution,
            'added_subtask_titles': history.added_subtask_titles or [],
            'stall_events': history.stall_events or [],
            'total_stall_time_minutes': history.total_stall_time_minutes,
            'outcome': history.outcome,
            'completion_date': _iso(history.completion_date),
            'days_overdue': history.days_overdue,
            'task_category': history.task_category,
            'keyword_fingerprint': history.keyword_fingerprint or [],
            'created_at': _iso(history.created_at),
        }

    def _insights(self, history: Optional[TaskExecutionHistory], task: Task) -> Dict[str, Any]:
        if history is None:
            was_on_time = None
            if task.due_date and task.completed_at:
                was_on_time = task.completed_at <= task.due_date
            return {
                'has_history': False,
                'estimation_accuracy_percentage': None,
                'was_over_estimate': None,
                'was_under_estimate': None,
                'additional_subtasks_needed': 0,
                'total_stall_time': 0,
                'was_on_time': was_on_time,
                'suggestions': [],
            }

        ratio = history.estimation_accuracy_ratio
        suggestions: List[str] = []

        if ratio and ratio > UNDERESTIMATE_ADVICE_RATIO:
            suggestions.append(
                f"This task took {math.floor((ratio - 1) * 100 + 0.5)}% longer than estimated. "
                "Consider adding buffer time for similar tasks."
            )
        if history.subtasks_added_mid_execution > ADDED_SUBTASKS_ADVICE_COUNT:
            suggestions.append(
                f"{history.subtasks_added_mid_execution} subtasks were added during execution. "
                "Future similar tasks may benefit from more upfront planning."
            )
        if history.total_stall_time_minutes > STALL_ADVICE_MINUTES:
            suggestions.append(
                f"Significant stall time detected ({history.total_stall_time_minutes} minutes). "
                "Review blockers for patterns."
            )
        if history.days_overdue > 0:
            suggestions.append(
                f"Task was {history.days_overdue} day(s) overdue. "
                "Consider earlier starts or adjusted due dates for similar tasks."
            )

        return {
            'has_history': True,
            'estimation_accuracy_percentage': (
                math.floor(min(ratio, 1 / ratio) * 100 + 0.5) if ratio else None
            ),
            'was_over_estimate': ratio < 1 if ratio else None,
            'was_under_estimate': ratio > 1 if ratio else None,
            'additional_subtasks_needed': history.subtasks_added_mid_execution,
            'total_stall_time': history.total_stall_time_minutes,
            'was_on_time': history.days_overdue == 0,
            'suggestions': suggestions,
        }
