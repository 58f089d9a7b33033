# tasks/ai_engine/__init__.py
"""
AI Engine Package
=================

Task enrichment and similarity matching for the planner.

Modules:
--------
- keywords: Deterministic keyword extraction
- retriever: Keyword retrieval of completed candidate tasks
- similarity: Model-scored similarity with keyword fallback
- insights: Aggregation of execution history across matches
- orchestrator: Central coordination layer for enrichment
- scheduling: Deterministic due-date suggestion
- recurrence: Recurrence rule arithmetic
- cache: Short-lived proposal cache (in-process or Django cache)
- applier: Commits accepted proposal fields to a task
- history: Execution history recording and summaries
- provider: OpenAI chat integration
- usage: Monthly AI usage accounting
- celery_tasks: Asynchronous history recording via Celery

Architecture:
-------------
Enrichment flows through the EnrichmentOrchestrator, which finds similar
completed tasks, grounds a single generation call in their history and
returns the enrichment contract:

    {
        "proposal_id": str,
        "proposal": {...},
        "similar_tasks": {"matched_tasks": [...], "aggregated_insights": {...}, "degraded": bool},
        "insights": {"estimation_confidence": str, "risk_factors": [...], ...}
    }

The proposal is held in the proposal cache until the client applies it
with the EnrichmentApplier. Completing a task with an accepted proposal
enqueues record_execution_history, which closes the loop for later
similarity searches.

Usage:
------
    from tasks.ai_engine import EnrichmentOrchestrator, TaskDescriptor

    orchestrator = EnrichmentOrchestrator()
    result = orchestrator.enrich(user.id, TaskDescriptor(title="Plan quarterly offsite"))
"""

from .applier import EnrichmentApplier
from .cache import DjangoProposalCache, ProposalCache, get_proposal_cache
from .celery_tasks import record_execution_history
from .contracts import EnrichmentResult, SimilarityAnalysis, TaskDescriptor
from .history import ExecutionHistoryRecorder
from .insights import aggregate_insights, calculate_success_prediction
from .keywords import extract_keywords
from .orchestrator import EnrichmentOrchestrator
from .provider import OpenAIChatProvider
from .recurrence import (
    RECURRENCE_PRESETS,
    RecurrenceRule,
    describe_recurrence_rule,
    generate_occurrences,
    next_occurrence,
)
from .scheduling import suggest_due_date
from .similarity import SimilarityScorer, SimilarTaskMatcher
from .usage import UsageTracker

__all__ = [
    # Core classes
    "EnrichmentOrchestrator",
    "EnrichmentApplier",
    "ExecutionHistoryRecorder",
    "SimilarTaskMatcher",
    "SimilarityScorer",
    "OpenAIChatProvider",
    "UsageTracker",
    "ProposalCache",
    "DjangoProposalCache",
    # Contracts
    "TaskDescriptor",
    "EnrichmentResult",
    "SimilarityAnalysis",
    "RecurrenceRule",
    # Functions
    "aggregate_insights",
    "calculate_success_prediction",
    "describe_recurrence_rule",
    "extract_keywords",
    "generate_occurrences",
    "get_proposal_cache",
    "next_occurrence",
    "record_execution_history",
    "suggest_due_date",
    # Constants
    "RECURRENCE_PRESETS",
]
