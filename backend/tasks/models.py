import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils.translation import gettext_lazy as _


class TaskStatus(models.TextChoices):
    PENDING = 'pending', _('Pending')
    IN_PROGRESS = 'in_progress', _('In progress')
    COMPLETED = 'completed', _('Completed')
    CANCELLED = 'cancelled', _('Cancelled')


class TaskPriority(models.TextChoices):
    HIGH = 'high', _('High')
    MEDIUM = 'medium', _('Medium')
    LOW = 'low', _('Low')
    NONE = 'none', _('None')


class SubtaskType(models.TextChoices):
    ACTION = 'action', _('Action')
    RESEARCH = 'research', _('Research')
    DRAFT = 'draft', _('Draft')
    PLAN = 'plan', _('Plan')
    REVIEW = 'review', _('Review')


class ExecutionOutcome(models.TextChoices):
    # abandoned / delegated / deferred are set by flows outside the engine;
    # the history recorder only ever produces the first two.
    COMPLETED = 'completed', _('Completed')
    COMPLETED_LATE = 'completed_late', _('Completed late')
    ABANDONED = 'abandoned', _('Abandoned')
    DELEGATED = 'delegated', _('Delegated')
    DEFERRED = 'deferred', _('Deferred')


class ProposalStatus(models.TextChoices):
    PENDING = 'pending', _('Pending')
    ACCEPTED = 'accepted', _('Accepted')
    REJECTED = 'rejected', _('Rejected')


class ConfidenceLevel(models.TextChoices):
    HIGH = 'high', _('High')
    MEDIUM = 'medium', _('Medium')
    LOW = 'low', _('Low')


# Provenance tag stored in Task.metadata["source"] for AI-created subtasks.
AI_SUGGESTED_SOURCE = 'ai_suggested'


class Task(models.Model):
    """
    A node of the user's task graph. Subtasks point at their parent via
    ``parent_task``; deletion is soft (``deleted_at``).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tasks',
        verbose_name=_("user")
    )

    # Projects are managed outside this app; only the reference is kept.
    project_id = models.UUIDField(null=True, blank=True, verbose_name=_("project"))

    parent_task = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True, blank=True,
        related_name='subtasks',
        verbose_name=_("parent task")
    )

    title = models.CharField(max_length=500, verbose_name=_("title"))
    description = models.TextField(blank=True, default='', verbose_name=_("description"))
    status = models.CharField(
        max_length=20,
        choices=TaskStatus.choices,
        default=TaskStatus.PENDING,
        verbose_name=_("status")
    )
    priority = models.CharField(
        max_length=10,
        choices=TaskPriority.choices,
        default=TaskPriority.NONE,
        verbose_name=_("priority")
    )

    due_date = models.DateTimeField(null=True, blank=True, verbose_name=_("due date"))
    estimated_minutes = models.PositiveIntegerField(
        null=True, blank=True,
        verbose_name=_("estimated minutes")
    )
    actual_minutes = models.PositiveIntegerField(
        null=True, blank=True,
        verbose_name=_("actual minutes")
    )
    sort_order = models.IntegerField(default=0, verbose_name=_("sort order"))

    is_recurring = models.BooleanField(default=False, verbose_name=_("is recurring"))
    recurrence_rule = models.JSONField(
        null=True, blank=True,
        verbose_name=_("recurrence rule"),
        help_text=_("Serialized RecurrenceRule (see tasks.ai_engine.recurrence).")
    )

    metadata = models.JSONField(
        default=dict, blank=True,
        verbose_name=_("metadata"),
        help_text=_("Free-form bag: source, subtask_type, ai_can_do, category, stall_events.")
    )

    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("created at"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("updated at"))
    completed_at = models.DateTimeField(null=True, blank=True, verbose_name=_("completed at"))
    deleted_at = models.DateTimeField(null=True, blank=True, verbose_name=_("deleted at"))

    class Meta:
        verbose_name = _("Task")
        verbose_name_plural = _("Tasks")
        ordering = ['sort_order', '-created_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='tasks_user_status_idx'),
            models.Index(fields=['user', 'due_date'], name='tasks_user_due_idx'),
        ]

    def __str__(self):
        return f"Task {self.title!r} ({self.status})"

    @property
    def is_ai_suggested(self) -> bool:
        return isinstance(self.metadata, dict) and self.metadata.get('source') == AI_SUGGESTED_SOURCE


class TaskExecutionHistory(models.Model):
    """
    Audit record written once when a task is completed. Later similarity
    searches read it to learn how long similar work really took.
    """
    task = models.OneToOneField(
        Task,
        on_delete=models.CASCADE,
        related_name='execution_history',
        verbose_name=_("task")
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='execution_history',
        verbose_name=_("user")
    )

    original_estimated_minutes = models.PositiveIntegerField(null=True, blank=True)
    final_actual_minutes = models.PositiveIntegerField(null=True, blank=True)
    estimation_accuracy_ratio = models.FloatField(
        null=True, blank=True,
        help_text=_("actual / estimated; null when either side is missing.")
    )

    original_subtask_count = models.PositiveIntegerField(default=0)
    subtasks_added_mid_execution = models.PositiveIntegerField(default=0)
    added_subtask_titles = models.JSONField(default=list, blank=True)

    stall_events = models.JSONField(default=list, blank=True)
    total_stall_time_minutes = models.PositiveIntegerField(default=0)

    outcome = models.CharField(max_length=20, choices=ExecutionOutcome.choices)
    task_category = models.CharField(max_length=100, blank=True, default='')
    completion_date = models.DateTimeField(null=True, blank=True)
    days_overdue = models.PositiveIntegerField(default=0)
    keyword_fingerprint = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Task execution history")
        verbose_name_plural = _("Task execution history")
        ordering = ['-completion_date']

    def __str__(self):
        return f"Execution history for task {self.task_id}: {self.outcome}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Execution history records are immutable once written.")
        super().save(*args, **kwargs)


class TaskEnrichmentProposal(models.Model):
    """
    Durable copy of an AI enrichment proposal together with the user's
    response (accepted fields and modifications).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    task = models.ForeignKey(
        Task,
        on_delete=models.CASCADE,
        null=True, blank=True,
        related_name='enrichment_proposals',
        verbose_name=_("task")
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='enrichment_proposals',
        verbose_name=_("user")
    )

    proposed_title = models.CharField(max_length=500, blank=True, default='')
    proposed_description = models.TextField(blank=True, default='')
    proposed_due_date = models.DateTimeField(null=True, blank=True)
    proposed_estimated_minutes = models.PositiveIntegerField(null=True, blank=True)
    proposed_priority = models.CharField(
        max_length=10,
        choices=TaskPriority.choices,
        default=TaskPriority.NONE
    )
    proposed_subtasks = models.JSONField(default=list, blank=True)
    similarity_analysis = models.JSONField(null=True, blank=True)

    status = models.CharField(
        max_length=10,
        choices=ProposalStatus.choices,
        default=ProposalStatus.PENDING
    )
    accepted_fields = models.JSONField(default=list, blank=True)
    user_modifications = models.JSONField(null=True, blank=True)

    ai_model = models.CharField(max_length=100, blank=True, default='')
    ai_provider = models.CharField(max_length=50, blank=True, default='')
    input_tokens = models.PositiveIntegerField(default=0)
    output_tokens = models.PositiveIntegerField(default=0)
    processing_time_ms = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("Task enrichment proposal")
        verbose_name_plural = _("Task enrichment proposals")
        ordering = ['-created_at']

    def __str__(self):
        return f"Enrichment proposal {self.id} ({self.status})"


class AIUsage(models.Model):
    """Monthly AI usage aggregate per user."""
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ai_usage',
        verbose_name=_("user")
    )
    period_start = models.DateField()
    period_end = models.DateField()

    requests = models.PositiveIntegerField(default=0)
    input_tokens = models.PositiveIntegerField(default=0)
    output_tokens = models.PositiveIntegerField(default=0)
    usage_by_feature = models.JSONField(default=dict, blank=True)
    usage_by_provider = models.JSONField(default=dict, blank=True)
    estimated_cost_usd = models.DecimalField(max_digits=12, decimal_places=6, default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("AI usage")
        verbose_name_plural = _("AI usage")
        constraints = [
            models.UniqueConstraint(fields=['user', 'period_start'], name='ai_usage_user_period_uniq'),
        ]

    def __str__(self):
        return f"AI usage {self.period_start}..{self.period_end}: {self.requests} requests"
