# tasks/serializers.py

import logging

from django.db import transaction
from rest_framework import serializers

from .ai_engine.applier import ACCEPTABLE_FIELDS
from .ai_engine.contracts import TaskDescriptor
from .ai_engine.recurrence import RecurrenceRule, is_valid_recurrence_rule
from .ai_engine.similarity import DEFAULT_MATCH_LIMIT
from .models import Task, TaskPriority

logger = logging.getLogger(__name__)

MAX_SIMILAR_TASKS = 20


class TaskSerializer(serializers.ModelSerializer):
    class Meta:
        model = Task
        # explicit whitelist: user-editable fields + system-read fields required by UI
        fields = [
            'id', 'project_id', 'parent_task', 'title', 'description', 'status', 'priority',
            'due_date', 'estimated_minutes', 'actual_minutes', 'sort_order',
            'is_recurring', 'recurrence_rule', 'metadata',
            'created_at', 'updated_at', 'completed_at'
        ]
        read_only_fields = [
            'id', 'status', 'created_at', 'updated_at', 'completed_at'
        ]

    def validate_parent_task(self, value):
        request = self.context.get('request')
        if value is not None and request is not None:
            if value.user_id != request.user.id or value.deleted_at is not None:
                raise serializers.ValidationError("Parent task not found.")
        return value

    def validate_recurrence_rule(self, value):
        if value is None:
            return value
        if not isinstance(value, dict) or 'frequency' not in value:
            raise serializers.ValidationError("recurrence_rule must be an object with a frequency.")
        try:
            rule = RecurrenceRule.from_dict(value)
            valid = is_valid_recurrence_rule(rule)
        except (TypeError, ValueError) as e:
            raise serializers.ValidationError(f"Invalid recurrence rule: {e}")
        if not valid:
            raise serializers.ValidationError("Invalid recurrence rule.")
        return rule.to_dict()

    def create(self, validated_data):
        """Persist the task with the authenticated user."""
        user = self.context['request'].user
        if not user or not user.is_authenticated:
            raise serializers.ValidationError("Authentication required to create a task.")

        with transaction.atomic():
            task = Task.objects.create(user=user, **validated_data)

        logger.info(f"Task {task.id} created by user {user.id}")
        return task


class EnrichRequestSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=500)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    project_id = serializers.UUIDField(required=False, allow_null=True)
    existing_tags = serializers.ListField(child=serializers.CharField(), required=False, default=list)

    def to_descriptor(self) -> TaskDescriptor:
        data = self.validated_data
        project_id = data.get('project_id')
        return TaskDescriptor(
            title=data['title'],
            description=data.get('description') or None,
            project_id=str(project_id) if project_id else None,
            existing_tags=tuple(data.get('existing_tags') or ()),
        )


class SimilarTasksRequestSerializer(EnrichRequestSerializer):
    limit = serializers.IntegerField(min_value=1, max_value=MAX_SIMILAR_TASKS, default=DEFAULT_MATCH_LIMIT)


class EnrichmentModificationsSerializer(serializers.Serializer):
    title = serializers.CharField(required=False, max_length=500, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    due_date = serializers.DateTimeField(required=False)
    estimated_minutes = serializers.IntegerField(required=False, min_value=0)
    priority = serializers.ChoiceField(choices=TaskPriority.choices, required=False)


class ApplyEnrichmentSerializer(serializers.Serializer):
    task_id = serializers.UUIDField()
    proposal_id = serializers.UUIDField()
    accepted_fields = serializers.ListField(
        child=serializers.ChoiceField(choices=ACCEPTABLE_FIELDS),
        allow_empty=True,
    )
    modifications = EnrichmentModificationsSerializer(required=False, allow_null=True)


class CompleteTaskSerializer(serializers.Serializer):
    completed = serializers.BooleanField(default=True)
    actual_minutes = serializers.IntegerField(required=False, min_value=0, allow_null=True)
