# tasks/ai_engine/schemas.py
"""
Serializer schemas for model output.

These validate JSON produced by the model, not client input. Closed-choice
fields are lenient: an unknown value collapses to a documented fallback
instead of rejecting the whole response.
"""

from datetime import datetime, time

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import serializers

from ..models import ConfidenceLevel, SubtaskType, TaskPriority


class LenientChoiceField(serializers.Field):
    """Maps values outside ``choices`` (including null) to ``fallback``."""

    def __init__(self, choices, fallback, **kwargs):
        self.choice_values = {str(value) for value in choices.values}
        self.fallback = fallback
        kwargs.setdefault("default", fallback)
        super().__init__(**kwargs)

    def validate_empty_values(self, data):
        if data is None:
            return (True, self.fallback)
        return super().validate_empty_values(data)

    def to_internal_value(self, data):
        value = str(data).strip().lower()
        return value if value in self.choice_values else self.fallback

    def to_representation(self, value):
        return value


class LenientDateTimeField(serializers.Field):
    """ISO datetime or date string; anything unparseable becomes None."""

    def __init__(self, **kwargs):
        kwargs.setdefault("default", None)
        super().__init__(**kwargs)

    def validate_empty_values(self, data):
        if data is None:
            return (True, None)
        return super().validate_empty_values(data)

    def to_internal_value(self, data):
        if not isinstance(data, str) or not data.strip():
            return None
        raw = data.strip()
        try:
            parsed = parse_datetime(raw)
            if parsed is None:
                parsed_date = parse_date(raw)
                if parsed_date is None:
                    return None
                parsed = datetime.combine(parsed_date, time.min)
        except ValueError:
            return None
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed)
        return parsed

    def to_representation(self, value):
        return value.isoformat() if value else None


class ProposedSubtaskSchema(serializers.Serializer):
    title = serializers.CharField(allow_blank=True, allow_null=True, default="")
    estimated_minutes = serializers.IntegerField(min_value=0, allow_null=True, default=15)
    type = LenientChoiceField(SubtaskType, SubtaskType.ACTION)
    ai_can_do = serializers.BooleanField(default=False)
    suggested_order = serializers.IntegerField(allow_null=True, default=None)


class EnrichmentInsightsSchema(serializers.Serializer):
    estimation_confidence = LenientChoiceField(ConfidenceLevel, ConfidenceLevel.MEDIUM)
    risk_factors = serializers.ListField(child=serializers.CharField(), default=list)
    key_assumptions = serializers.ListField(child=serializers.CharField(), default=list)


class EnrichmentResponseSchema(serializers.Serializer):
    refined_title = serializers.CharField(allow_blank=True, allow_null=True, default="")
    description = serializers.CharField(allow_blank=True, allow_null=True, default="")
    estimated_minutes = serializers.IntegerField(min_value=0, allow_null=True, default=60)
    suggested_due_date = LenientDateTimeField()
    priority = LenientChoiceField(TaskPriority, TaskPriority.NONE)
    subtasks = ProposedSubtaskSchema(many=True, required=False)
    insights = EnrichmentInsightsSchema(required=False)


class SimilarityMatchSchema(serializers.Serializer):
    index = serializers.IntegerField()
    score = serializers.FloatField()
    reasons = serializers.ListField(child=serializers.CharField(), default=list)


class SimilarityResponseSchema(serializers.Serializer):
    matches = SimilarityMatchSchema(many=True)


class DurationResponseSchema(serializers.Serializer):
    minutes = serializers.IntegerField(min_value=0, allow_null=True, default=None)
    confidence = LenientChoiceField(ConfidenceLevel, ConfidenceLevel.MEDIUM)
    reasoning = serializers.CharField(allow_blank=True, allow_null=True, default="")
