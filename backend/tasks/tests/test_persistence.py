# tasks/tests/test_persistence.py
"""
Persistence Tests
=================

Database-backed behaviour of the enrichment engine.

Test Categories:
----------------
1. Stores: keyword retrieval scope (owner, status, soft delete)
2. Applier: accepted fields, modifications, subtasks, cache promotion, access
3. Execution history: derived metrics, idempotency, immutability, summaries
4. Usage tracking: monthly accumulation, cost warnings, failure transparency
5. Completion workflow: on-commit dispatch of the history worker
"""

import datetime
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.utils import timezone

from tasks.ai_engine.applier import EnrichmentApplier
from tasks.ai_engine.cache import ProposalCache
from tasks.ai_engine.celery_tasks import record_execution_history
from tasks.ai_engine.contracts import AIMetadata, EnrichmentProposal, ProposedSubtask, SimilarityAnalysis
from tasks.ai_engine.exceptions import (
    CompletedTaskNotFoundError,
    ProposalNotFoundError,
    TaskNotFoundError,
)
from tasks.ai_engine.history import ExecutionHistoryRecorder, normalize_stall_events
from tasks.ai_engine.retriever import CandidateRetriever
from tasks.ai_engine.usage import UsageTracker
from tasks.models import (
    AI_SUGGESTED_SOURCE,
    AIUsage,
    ExecutionOutcome,
    ProposalStatus,
    Task,
    TaskEnrichmentProposal,
    TaskExecutionHistory,
    TaskPriority,
    TaskStatus,
)
from tasks.services import complete_task
from tasks.stores import ProposalStore, TaskStore

User = get_user_model()

COMPLETED_AT = datetime.datetime(2024, 1, 12, 15, 0, tzinfo=datetime.timezone.utc)


def make_proposal(**overrides) -> EnrichmentProposal:
    fields = dict(
        proposed_title="Plan the quarterly team offsite",
        proposed_description="Venue booked, agenda shared.",
        proposed_due_date=datetime.datetime(2024, 2, 1, 17, 0, tzinfo=datetime.timezone.utc),
        proposed_estimated_minutes=240,
        proposed_priority=TaskPriority.HIGH,
        proposed_subtasks=[
            ProposedSubtask(title="Research venues", estimated_minutes=60, type="research",
                            ai_can_do=True, suggested_order=0),
            ProposedSubtask(title="Send invites", estimated_minutes=20, type="action",
                            suggested_order=1),
        ],
    )
    fields.update(overrides)
    return EnrichmentProposal(**fields)


class UsersMixin:

    def setUp(self) -> None:
        self.user = User.objects.create_user(username="alice", password="pw")
        self.other = User.objects.create_user(username="bob", password="pw")

    def completed_task(self, user=None, **fields) -> Task:
        defaults = dict(
            title="Plan team offsite",
            status=TaskStatus.COMPLETED,
            completed_at=COMPLETED_AT,
        )
        defaults.update(fields)
        return Task.objects.create(user=user or self.user, **defaults)


# ===========================================================================
# STORES
# ===========================================================================


class TestTaskStore(UsersMixin, TestCase):

    def test_keyword_search_scope(self) -> None:
        match = self.completed_task(title="Plan team offsite")
        self.completed_task(title="Buy groceries")
        Task.objects.create(user=self.user, title="Plan party")
        self.completed_task(title="Plan old retreat", deleted_at=timezone.now())
        self.completed_task(user=self.other, title="Plan their offsite")

        found = TaskStore().find_completed_by_keyword(self.user.id, ["plan"], limit=20)

        self.assertEqual([t.id for t in found], [match.id])

    def test_keyword_search_matches_description_and_orders_by_completion(self) -> None:
        older = self.completed_task(title="Quarterly review", description="offsite prep",
                                    completed_at=COMPLETED_AT - datetime.timedelta(days=3))
        newer = self.completed_task(title="Offsite budget")

        found = TaskStore().find_completed_by_keyword(self.user.id, ["offsite"], limit=20)

        self.assertEqual([t.id for t in found], [newer.id, older.id])

    def test_empty_keywords(self) -> None:
        self.completed_task()

        self.assertEqual(TaskStore().find_completed_by_keyword(self.user.id, [], limit=20), [])

    def test_retriever_attaches_history(self) -> None:
        task = self.completed_task(estimated_minutes=100, actual_minutes=120)
        TaskExecutionHistory.objects.create(
            task=task, user=self.user, estimation_accuracy_ratio=1.2, outcome=ExecutionOutcome.COMPLETED,
        )

        candidates = CandidateRetriever().retrieve(self.user.id, ["offsite"])

        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].task_id, str(task.id))
        self.assertAlmostEqual(candidates[0].history.estimation_accuracy_ratio, 1.2)


# ===========================================================================
# APPLIER
# ===========================================================================


class TestEnrichmentApplier(UsersMixin, TestCase):

    def setUp(self) -> None:
        super().setUp()
        self.task = Task.objects.create(user=self.user, title="offsite", description="original")
        self.cache = ProposalCache()
        self.applier = EnrichmentApplier(cache=self.cache)

    def _cached(self, user_id=None, **overrides) -> str:
        return self.cache.put(
            user_id or self.user.id,
            make_proposal(**overrides),
            SimilarityAnalysis.empty(),
            AIMetadata(model="gpt-4o-mini", provider="openai", input_tokens=100, output_tokens=50),
        )

    def test_applies_accepted_fields_with_modifications(self) -> None:
        proposal_id = self._cached()

        task = self.applier.apply(
            self.user.id, self.task.id, proposal_id,
            ["title", "estimated_minutes", "priority"],
            modifications={"title": "Custom offsite title"},
        )

        task.refresh_from_db()
        self.assertEqual(task.title, "Custom offsite title")
        self.assertEqual(task.estimated_minutes, 240)
        self.assertEqual(task.priority, TaskPriority.HIGH)
        self.assertEqual(task.description, "original")
        self.assertIsNone(task.due_date)

    def test_cached_proposal_is_promoted_under_same_id(self) -> None:
        proposal_id = self._cached()

        self.applier.apply(self.user.id, self.task.id, proposal_id, ["title"], modifications={"title": "X"})

        record = TaskEnrichmentProposal.objects.get(id=proposal_id)
        self.assertEqual(record.task_id, self.task.id)
        self.assertEqual(record.status, ProposalStatus.ACCEPTED)
        self.assertEqual(record.accepted_fields, ["title"])
        self.assertEqual(record.user_modifications, {"title": "X"})
        self.assertEqual(record.ai_model, "gpt-4o-mini")
        self.assertEqual(record.input_tokens, 100)
        self.assertIsNotNone(record.responded_at)
        self.assertEqual(len(self.cache), 0)

    def test_accepting_subtasks_creates_ai_tagged_children(self) -> None:
        proposal_id = self._cached()

        self.applier.apply(self.user.id, self.task.id, proposal_id, ["subtasks"])

        children = list(Task.objects.filter(parent_task=self.task).order_by("sort_order"))
        self.assertEqual([c.title for c in children], ["Research venues", "Send invites"])
        self.assertEqual(children[0].metadata, {
            "source": AI_SUGGESTED_SOURCE,
            "subtask_type": "research",
            "ai_can_do": True,
        })
        self.assertEqual(children[0].status, TaskStatus.PENDING)
        self.assertEqual(children[0].priority, TaskPriority.NONE)
        self.assertEqual(children[1].sort_order, 1)
        self.assertTrue(all(c.is_ai_suggested for c in children))

    def test_empty_acceptance_rejects_and_leaves_task_alone(self) -> None:
        proposal_id = self._cached()

        self.applier.apply(self.user.id, self.task.id, proposal_id, [])

        self.task.refresh_from_db()
        self.assertEqual(self.task.title, "offsite")
        self.assertFalse(Task.objects.filter(parent_task=self.task).exists())
        record = TaskEnrichmentProposal.objects.get(id=proposal_id)
        self.assertEqual(record.status, ProposalStatus.REJECTED)
        self.assertEqual(record.accepted_fields, [])

    def test_missing_due_date_is_not_written(self) -> None:
        proposal_id = self._cached(proposed_due_date=None)

        self.applier.apply(self.user.id, self.task.id, proposal_id, ["due_date"])

        self.task.refresh_from_db()
        self.assertIsNone(self.task.due_date)

    def test_due_date_modification_wins(self) -> None:
        proposal_id = self._cached()
        custom = datetime.datetime(2024, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)

        self.applier.apply(self.user.id, self.task.id, proposal_id, ["due_date"], modifications={"due_date": custom})

        self.task.refresh_from_db()
        self.assertEqual(self.task.due_date, custom)
        record = TaskEnrichmentProposal.objects.get(id=proposal_id)
        self.assertEqual(record.user_modifications, {"due_date": custom.isoformat()})

    def test_durable_proposal_is_applied(self) -> None:
        proposal_id = self.applier.save_proposal(self.user.id, self.task.id, make_proposal())

        self.applier.apply(self.user.id, self.task.id, proposal_id, ["description"])

        self.task.refresh_from_db()
        self.assertEqual(self.task.description, "Venue booked, agenda shared.")
        self.assertTrue(self.applier.task_has_accepted_proposal(self.user.id, self.task.id))

    def test_unknown_proposal(self) -> None:
        with self.assertRaises(ProposalNotFoundError):
            self.applier.apply(self.user.id, self.task.id, "00000000-0000-0000-0000-000000000000", ["title"])

    def test_expired_proposal_is_not_found(self) -> None:
        now = [timezone.now()]
        cache = ProposalCache(ttl_seconds=300, clock=lambda: now[0])
        applier = EnrichmentApplier(cache=cache)
        proposal_id = cache.put(self.user.id, make_proposal(), SimilarityAnalysis.empty(), AIMetadata())
        now[0] = now[0] + datetime.timedelta(seconds=301)

        with self.assertRaises(ProposalNotFoundError):
            applier.apply(self.user.id, self.task.id, proposal_id, ["title"])

    def test_other_users_proposal(self) -> None:
        proposal_id = self._cached(user_id=self.other.id)

        with self.assertRaises(ProposalNotFoundError):
            self.applier.apply(self.user.id, self.task.id, proposal_id, ["title"])

    def test_other_users_task(self) -> None:
        foreign = Task.objects.create(user=self.other, title="theirs")
        proposal_id = self._cached()

        with self.assertRaises(TaskNotFoundError):
            self.applier.apply(self.user.id, foreign.id, proposal_id, ["title"])
        self.assertFalse(TaskEnrichmentProposal.objects.filter(id=proposal_id).exists())

    def test_deleted_task(self) -> None:
        self.task.deleted_at = timezone.now()
        self.task.save()
        proposal_id = self._cached()

        with self.assertRaises(TaskNotFoundError):
            self.applier.apply(self.user.id, self.task.id, proposal_id, ["title"])


# ===========================================================================
# EXECUTION HISTORY
# ===========================================================================


class TestExecutionHistoryRecorder(UsersMixin, TestCase):

    def _late_task(self) -> Task:
        task = self.completed_task(
            title="Plan team offsite",
            description="Venue and agenda",
            estimated_minutes=120,
            actual_minutes=180,
            due_date=COMPLETED_AT - datetime.timedelta(days=2),
            metadata={
                "category": "events",
                "stall_events": [{
                    "start_time": "2024-01-10T10:00:00+00:00",
                    "end_time": "2024-01-10T10:45:00+00:00",
                    "reason": "Waiting on vendor",
                }],
            },
        )
        Task.objects.create(user=self.user, parent_task=task, title="Research venues",
                            metadata={"source": AI_SUGGESTED_SOURCE})
        Task.objects.create(user=self.user, parent_task=task, title="Book catering")
        Task.objects.create(user=self.user, parent_task=task, title="Arrange transport")
        return task

    def test_records_late_completion(self) -> None:
        task = self._late_task()

        record = ExecutionHistoryRecorder().record(self.user.id, task.id)

        self.assertAlmostEqual(record.estimation_accuracy_ratio, 1.5)
        self.assertEqual(record.days_overdue, 2)
        self.assertEqual(record.outcome, ExecutionOutcome.COMPLETED_LATE)
        self.assertEqual(record.original_subtask_count, 1)
        self.assertEqual(record.subtasks_added_mid_execution, 2)
        self.assertEqual(sorted(record.added_subtask_titles), ["Arrange transport", "Book catering"])
        self.assertEqual(record.total_stall_time_minutes, 45)
        self.assertEqual(record.stall_events[0]["reason"], "Waiting on vendor")
        self.assertEqual(record.task_category, "events")
        self.assertEqual(record.keyword_fingerprint, ["plan", "team", "offsite", "venue", "agenda"])
        self.assertEqual(record.completion_date, COMPLETED_AT)

    def test_missing_estimate_leaves_ratio_empty(self) -> None:
        task = self.completed_task(actual_minutes=30)

        record = ExecutionHistoryRecorder().record(self.user.id, task.id)

        self.assertIsNone(record.estimation_accuracy_ratio)
        self.assertEqual(record.outcome, ExecutionOutcome.COMPLETED)
        self.assertEqual(record.days_overdue, 0)

    def test_pending_task_is_rejected(self) -> None:
        task = Task.objects.create(user=self.user, title="Not done")

        with self.assertRaises(CompletedTaskNotFoundError):
            ExecutionHistoryRecorder().record(self.user.id, task.id)

    def test_recording_twice_returns_existing_row(self) -> None:
        task = self._late_task()
        recorder = ExecutionHistoryRecorder()

        first = recorder.record(self.user.id, task.id)
        second = recorder.record(self.user.id, task.id)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(TaskExecutionHistory.objects.filter(task=task).count(), 1)

    def test_rows_are_immutable(self) -> None:
        record = ExecutionHistoryRecorder().record(self.user.id, self._late_task().id)

        with self.assertRaises(ValidationError):
            record.save()

    def test_summary_with_history(self) -> None:
        task = self.completed_task(estimated_minutes=60, actual_minutes=120)
        ExecutionHistoryRecorder().record(self.user.id, task.id)

        summary = ExecutionHistoryRecorder().summarize(self.user.id, task.id)

        insights = summary["insights"]
        self.assertTrue(insights["has_history"])
        self.assertEqual(insights["estimation_accuracy_percentage"], 50)
        self.assertTrue(insights["was_under_estimate"])
        self.assertFalse(insights["was_over_estimate"])
        self.assertTrue(insights["was_on_time"])
        self.assertEqual(len(insights["suggestions"]), 1)
        self.assertIn("100% longer", insights["suggestions"][0])
        self.assertEqual(summary["execution_history"]["estimation_accuracy_ratio"], 2.0)

    def test_summary_without_history(self) -> None:
        task = Task.objects.create(user=self.user, title="Open task")

        summary = ExecutionHistoryRecorder().summarize(self.user.id, task.id)

        self.assertIsNone(summary["execution_history"])
        self.assertFalse(summary["insights"]["has_history"])
        self.assertEqual(summary["task"]["title"], "Open task")

    def test_summary_access(self) -> None:
        foreign = Task.objects.create(user=self.other, title="theirs")

        with self.assertRaises(TaskNotFoundError):
            ExecutionHistoryRecorder().summarize(self.user.id, foreign.id)
        with self.assertRaises(TaskNotFoundError):
            ExecutionHistoryRecorder().summarize(self.user.id, "00000000-0000-0000-0000-000000000000")

    def test_normalize_stall_events_skips_junk(self) -> None:
        events, total = normalize_stall_events([
            {"start_time": "2024-01-10T10:00:00+00:00", "end_time": "2024-01-10T10:20:30+00:00"},
            "not an event",
            {"start_time": "garbage"},
        ])

        self.assertEqual(total, 20)
        self.assertEqual([e["duration_minutes"] for e in events], [20, 0])
        self.assertNotIn("reason", events[0])
        self.assertEqual(normalize_stall_events(None), ([], 0))


# ===========================================================================
# USAGE TRACKING
# ===========================================================================


@override_settings(AI_MODEL_PRICING={}, AI_MONTHLY_COST_WARNING_USD=5.0)
class TestUsageTracker(UsersMixin, TestCase):

    def test_accumulates_per_month(self) -> None:
        tracker = UsageTracker()

        tracker.track_usage(self.user.id, "openai", "gpt-4o-mini", "enrich", 1000, 500)
        tracker.track_usage(self.user.id, "openai", "gpt-4o-mini", "enrich", 1000, 500)
        tracker.track_usage(self.user.id, "openai", "gpt-4o-mini", "research", 200, 100)

        usage = AIUsage.objects.get(user=self.user)
        self.assertEqual(usage.requests, 3)
        self.assertEqual(usage.input_tokens, 2200)
        self.assertEqual(usage.output_tokens, 1100)
        self.assertEqual(usage.usage_by_feature["enrich"], {"requests": 2, "tokens": 3000})
        self.assertEqual(usage.usage_by_feature["research"], {"requests": 1, "tokens": 300})
        self.assertEqual(usage.usage_by_provider["openai"]["by_model"]["gpt-4o-mini"]["requests"], 3)
        self.assertEqual(usage.estimated_cost_usd, Decimal("0.000990"))

    @override_settings(AI_MONTHLY_COST_WARNING_USD=0.0001)
    def test_cost_warning(self) -> None:
        warnings = UsageTracker().track_usage(self.user.id, "openai", "gpt-4o-mini", "enrich", 1000, 500)

        self.assertEqual(len(warnings), 1)
        self.assertEqual(warnings[0]["type"], "cost")

    def test_no_warning_below_threshold(self) -> None:
        self.assertEqual(
            UsageTracker().track_usage(self.user.id, "openai", "gpt-4o-mini", "enrich", 1000, 500),
            [],
        )

    def test_database_failure_is_swallowed(self) -> None:
        with patch.object(AIUsage.objects, "select_for_update", side_effect=DatabaseError("down")):
            warnings = UsageTracker().track_usage(self.user.id, "openai", "gpt-4o-mini", "enrich", 10, 10)

        self.assertEqual(warnings, [])
        self.assertFalse(AIUsage.objects.exists())

    def test_current_usage_without_activity(self) -> None:
        usage = UsageTracker().current_usage(self.user.id)

        self.assertEqual(usage["requests"], 0)
        self.assertEqual(usage["usage_by_feature"], {})


# ===========================================================================
# COMPLETION WORKFLOW
# ===========================================================================


class TestCompletionWorkflow(UsersMixin, TestCase):

    def _accepted_task(self) -> Task:
        task = Task.objects.create(user=self.user, title="Plan team offsite", estimated_minutes=60)
        record = ProposalStore().insert(self.user.id, make_proposal().to_dict(), task_id=task.id)
        ProposalStore().update_status(record.id, ProposalStatus.ACCEPTED, ["title"])
        return task

    def test_enriched_task_dispatches_history_after_commit(self) -> None:
        task = self._accepted_task()

        with patch.object(record_execution_history, "delay") as mock_delay:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                complete_task(task, actual_minutes=75)

        self.assertEqual(len(callbacks), 1)
        mock_delay.assert_called_once_with(self.user.id, str(task.id))
        task.refresh_from_db()
        self.assertEqual(task.status, TaskStatus.COMPLETED)
        self.assertEqual(task.actual_minutes, 75)
        self.assertIsNotNone(task.completed_at)

    def test_plain_task_dispatches_nothing(self) -> None:
        task = Task.objects.create(user=self.user, title="Buy groceries")

        with patch.object(record_execution_history, "delay") as mock_delay:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                complete_task(task)

        self.assertEqual(callbacks, [])
        mock_delay.assert_not_called()

    def test_worker_records_history(self) -> None:
        task = self._accepted_task()
        complete_task(task, actual_minutes=90)

        history_id = record_execution_history(self.user.id, str(task.id))

        record = TaskExecutionHistory.objects.get(pk=history_id)
        self.assertEqual(record.task_id, task.id)
        self.assertAlmostEqual(record.estimation_accuracy_ratio, 1.5)

    def test_worker_exits_quietly_for_uncompleted_task(self) -> None:
        task = Task.objects.create(user=self.user, title="Reopened")

        self.assertIsNone(record_execution_history(self.user.id, str(task.id)))
        self.assertFalse(TaskExecutionHistory.objects.exists())
