# tasks/stores.py
"""
ORM-backed storage collaborators for the enrichment engine.

Engine classes receive these by injection, so tests can hand them fakes.
All reads exclude soft-deleted tasks unless stated otherwise.
"""

import logging
from functools import reduce
from operator import or_
from typing import Any, Dict, Iterable, List, Optional

from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .models import (
    ProposalStatus,
    Task,
    TaskEnrichmentProposal,
    TaskExecutionHistory,
    TaskStatus,
)

logger = logging.getLogger(__name__)


def _as_datetime(value: Any) -> Any:
    return parse_datetime(value) if isinstance(value, str) else value


class TaskStore:

    def find_completed_by_keyword(self, user_id: int, keywords: List[str], limit: int) -> List[Task]:
        """Completed tasks whose title or description contains any keyword, newest completion first."""
        if not keywords:
            return []

        matches_any = reduce(
            or_,
            (Q(title__icontains=kw) | Q(description__icontains=kw) for kw in keywords),
        )
        queryset = (
            Task.objects.filter(user_id=user_id, status=TaskStatus.COMPLETED, deleted_at__isnull=True)
            .filter(matches_any)
            .order_by('-completed_at')
        )
        return list(queryset[:limit])

    def get(self, task_id: Any) -> Optional[Task]:
        """Any user's non-deleted task; ownership is the caller's concern."""
        return Task.objects.filter(id=task_id, deleted_at__isnull=True).first()

    def get_completed(self, user_id: int, task_id: Any) -> Optional[Task]:
        return Task.objects.filter(id=task_id, user_id=user_id, status=TaskStatus.COMPLETED).first()

    def list_children(self, task: Task) -> List[Task]:
        return list(
            Task.objects.filter(parent_task=task, user_id=task.user_id, deleted_at__isnull=True)
        )

    def insert_child(self, parent: Task, **fields: Any) -> Task:
        return Task.objects.create(
            user_id=parent.user_id,
            parent_task=parent,
            project_id=parent.project_id,
            **fields,
        )

    def update(self, task: Task, **fields: Any) -> Task:
        if not fields:
            return task
        for name, value in fields.items():
            setattr(task, name, value)
        task.save(update_fields=[*fields.keys(), 'updated_at'])
        return task


class ExecutionHistoryStore:

    def find_by_task_ids(
        self, user_id: int, task_ids: Iterable[Any], limit: Optional[int] = None
    ) -> List[TaskExecutionHistory]:
        task_ids = list(task_ids)
        if not task_ids:
            return []
        queryset = TaskExecutionHistory.objects.filter(user_id=user_id, task_id__in=task_ids)
        if limit is not None:
            queryset = queryset[:limit]
        return list(queryset)

    def get_for_task(self, task_id: Any) -> Optional[TaskExecutionHistory]:
        return TaskExecutionHistory.objects.filter(task_id=task_id).first()

    def insert(self, **fields: Any) -> TaskExecutionHistory:
        return TaskExecutionHistory.objects.create(**fields)


class ProposalStore:

    def insert(
        self,
        user_id: int,
        proposal: Dict[str, Any],
        similarity_analysis: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        task_id: Any = None,
        proposal_id: Any = None,
    ) -> TaskEnrichmentProposal:
        """
        Persist a proposal. ``proposal`` and ``similarity_analysis`` are the
        ``to_dict()`` forms of the engine contracts; ``proposal_id`` keeps the
        identifier a cached proposal was handed out under.
        """
        metadata = metadata or {}
        fields: Dict[str, Any] = dict(
            user_id=user_id,
            task_id=task_id,
            proposed_title=proposal.get('proposed_title') or '',
            proposed_description=proposal.get('proposed_description') or '',
            proposed_due_date=_as_datetime(proposal.get('proposed_due_date')),
            proposed_estimated_minutes=proposal.get('proposed_estimated_minutes'),
            proposed_priority=proposal.get('proposed_priority') or 'none',
            proposed_subtasks=proposal.get('proposed_subtasks') or [],
            similarity_analysis=similarity_analysis,
            ai_model=metadata.get('model') or '',
            ai_provider=metadata.get('provider') or '',
            input_tokens=metadata.get('input_tokens') or 0,
            output_tokens=metadata.get('output_tokens') or 0,
            processing_time_ms=metadata.get('processing_time_ms') or 0,
            status=ProposalStatus.PENDING,
        )
        if proposal_id is not None:
            fields['id'] = proposal_id
        return TaskEnrichmentProposal.objects.create(**fields)

    def get_by_id(self, proposal_id: Any) -> Optional[TaskEnrichmentProposal]:
        return TaskEnrichmentProposal.objects.filter(id=proposal_id).first()

    def update_status(
        self,
        proposal_id: Any,
        status: str,
        accepted_fields: List[str],
        modifications: Optional[Dict[str, Any]] = None,
    ) -> int:
        return TaskEnrichmentProposal.objects.filter(id=proposal_id).update(
            status=status,
            accepted_fields=list(accepted_fields),
            user_modifications=modifications,
            responded_at=timezone.now(),
        )

    def exists_accepted_for_task(self, user_id: int, task_id: Any) -> bool:
        return TaskEnrichmentProposal.objects.filter(
            user_id=user_id, task_id=task_id, status=ProposalStatus.ACCEPTED
        ).exists()
