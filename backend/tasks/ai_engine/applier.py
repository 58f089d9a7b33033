# tasks/ai_engine/applier.py
"""
Commits the accepted parts of an enrichment proposal to a task.

The proposal's final status and the exact list of accepted fields are the
feedback signal for later confidence calibration; no recalibration happens
here.
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from ..models import (
    AI_SUGGESTED_SOURCE,
    ProposalStatus,
    Task,
    TaskEnrichmentProposal,
    TaskPriority,
    TaskStatus,
)
from ..stores import ProposalStore, TaskStore
from .cache import get_proposal_cache
from .contracts import AIMetadata, EnrichmentProposal, ProposedSubtask, SimilarityAnalysis
from .exceptions import ProposalNotFoundError, TaskNotFoundError

logger = logging.getLogger(__name__)

# Accepted field name -> (Task field, proposal field)
SCALAR_FIELDS = {
    'title': ('title', 'proposed_title'),
    'description': ('description', 'proposed_description'),
    'due_date': ('due_date', 'proposed_due_date'),
    'estimated_minutes': ('estimated_minutes', 'proposed_estimated_minutes'),
    'priority': ('priority', 'proposed_priority'),
}
SUBTASKS_FIELD = 'subtasks'
ACCEPTABLE_FIELDS = (*SCALAR_FIELDS.keys(), SUBTASKS_FIELD)


def _as_aware(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        value = parse_datetime(value)
    if value is not None and timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


def _json_safe(modifications: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if modifications is None:
        return None
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in modifications.items()
    }


class EnrichmentApplier:

    def __init__(
        self,
        task_store: Optional[TaskStore] = None,
        proposal_store: Optional[ProposalStore] = None,
        cache=None,
    ):
        self.task_store = task_store or TaskStore()
        self.proposal_store = proposal_store or ProposalStore()
        self.cache = cache if cache is not None else get_proposal_cache()

    def apply(
        self,
        user_id: int,
        task_id: Any,
        proposal_id: Any,
        accepted_fields: List[str],
        modifications: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """
        Apply ``accepted_fields`` of a proposal to a task.

        For each accepted field the user's modification wins over the
        proposed value; unlisted fields are left alone. A due date is only
        written when there is a value to write. Accepting ``subtasks``
        inserts every proposed subtask as an AI-tagged child task. The
        proposal ends up ``accepted``, or ``rejected`` when nothing was
        accepted.

        Raises:
            ProposalNotFoundError, TaskNotFoundError: Missing, deleted or owned
                by another user.
        """
        accepted = list(dict.fromkeys(accepted_fields or []))
        modifications = modifications or {}

        with transaction.atomic():
            durable = self.proposal_store.get_by_id(proposal_id)
            cached = None
            if durable is None:
                cached = self.cache.get(proposal_id)
                if cached is None:
                    raise ProposalNotFoundError(f"Enrichment proposal {proposal_id} not found")
                owner_id = cached.user_id
            else:
                owner_id = durable.user_id
            if owner_id != user_id:
                raise ProposalNotFoundError(f"Enrichment proposal {proposal_id} not found")

            task = self.task_store.get(task_id)
            if task is None or task.user_id != user_id:
                raise TaskNotFoundError(f"Task {task_id} not found")

            if durable is None:
                # Promote the cached proposal, keeping the id the client holds.
                durable = self.proposal_store.insert(
                    user_id,
                    cached.proposal.to_dict(),
                    similarity_analysis=cached.similarity_analysis.to_dict(),
                    metadata=asdict(cached.metadata),
                    task_id=task.id,
                    proposal_id=proposal_id,
                )
                self.cache.discard(proposal_id)
                logger.info(f"Applier: promoted cached proposal {proposal_id} onto task {task.id}")

            updates = self._field_updates(durable, accepted, modifications)
            task = self.task_store.update(task, **updates)

            created = 0
            if SUBTASKS_FIELD in accepted:
                created = self._insert_subtasks(task, durable.proposed_subtasks or [])

            status = ProposalStatus.ACCEPTED if accepted else ProposalStatus.REJECTED
            self.proposal_store.update_status(durable.id, status, accepted, _json_safe(modifications or None))

        logger.info(
            f"Applier: proposal {durable.id} {status} for task {task.id} "
            f"(fields={accepted}, subtasks_created={created})"
        )
        return task

    def _field_updates(
        self,
        proposal: TaskEnrichmentProposal,
        accepted: List[str],
        modifications: Dict[str, Any]
    ) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        for name, (task_field, proposal_field) in SCALAR_FIELDS.items():
            if name not in accepted:
                continue
            value = modifications.get(name)
            if value is None:
                value = getattr(proposal, proposal_field)
            if name == 'due_date':
                value = _as_aware(value)
                if value is None:
                    continue
            if name in ('title', 'description') and value is None:
                value = ''
            updates[task_field] = value
        return updates

    def _insert_subtasks(self, parent: Task, proposed: List[Dict[str, Any]]) -> int:
        for raw in proposed:
            subtask = ProposedSubtask.from_dict(raw)
            self.task_store.insert_child(
                parent,
                title=subtask.title,
                estimated_minutes=subtask.estimated_minutes,
                sort_order=subtask.suggested_order,
                status=TaskStatus.PENDING,
                priority=TaskPriority.NONE,
                metadata={
                    'source': AI_SUGGESTED_SOURCE,
                    'subtask_type': str(subtask.type),
                    'ai_can_do': subtask.ai_can_do,
                },
            )
        return len(proposed)

    def save_proposal(
        self,
        user_id: int,
        task_id: Any,
        proposal: EnrichmentProposal,
        analysis: Optional[SimilarityAnalysis] = None,
        metadata: Optional[AIMetadata] = None,
    ) -> str:
        """Persist a proposal already tied to an existing task."""
        record = self.proposal_store.insert(
            user_id,
            proposal.to_dict(),
            similarity_analysis=analysis.to_dict() if analysis is not None else None,
            metadata=asdict(metadata) if metadata is not None else None,
            task_id=task_id,
        )
        return str(record.id)

    def task_has_accepted_proposal(self, user_id: int, task_id: Any) -> bool:
        return self.proposal_store.exists_accepted_for_task(user_id, task_id)
