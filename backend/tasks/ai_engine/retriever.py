# tasks/ai_engine/retriever.py
"""Phase one of similarity search: cheap keyword retrieval of completed tasks."""

import logging
from typing import List, Optional

from ..stores import ExecutionHistoryStore, TaskStore
from .contracts import Candidate, HistorySnapshot

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 20


class CandidateRetriever:
    """
    Returns the user's completed, non-deleted tasks that mention any keyword,
    newest completion first, each with its execution history attached when
    one was recorded.
    """

    def __init__(
        self,
        task_store: Optional[TaskStore] = None,
        history_store: Optional[ExecutionHistoryStore] = None,
    ):
        self.task_store = task_store or TaskStore()
        self.history_store = history_store or ExecutionHistoryStore()

    def retrieve(self, user_id: int, keywords: List[str], limit: int = DEFAULT_CANDIDATE_LIMIT) -> List[Candidate]:
        if not keywords:
            return []

        tasks = self.task_store.find_completed_by_keyword(user_id, keywords, limit)
        logger.debug(f"CandidateRetriever: {len(tasks)} candidates for keywords {keywords}")

        candidates: List[Candidate] = []
        for task in tasks:
            # Separate lookup per candidate keeps the task store free of joins.
            record = self.history_store.get_for_task(task.id)
            candidates.append(
                Candidate(
                    task_id=str(task.id),
                    title=task.title,
                    description=task.description or "",
                    estimated_minutes=task.estimated_minutes,
                    actual_minutes=task.actual_minutes,
                    completed_at=task.completed_at,
                    history=HistorySnapshot.from_record(record) if record is not None else None,
                )
            )
        return candidates
