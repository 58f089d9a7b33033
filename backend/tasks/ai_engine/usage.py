# tasks/ai_engine/usage.py
"""
Monthly AI usage accounting.

One ``AIUsage`` row per user per calendar month, accumulating request and
token counts by feature, by provider and by model, plus an estimated USD
cost. Tracking is failure-transparent: a database error while recording
usage is logged and never breaks the model call it describes, and
``track_response_usage`` extends that to any failure at engine call sites.
"""

import calendar
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from ..models import AIUsage
from .config import estimate_cost

logger = logging.getLogger(__name__)

COST_QUANTUM = Decimal("0.000001")


def current_month_period(today: Optional[date] = None) -> Tuple[date, date]:
    today = today or timezone.localdate()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


class UsageTracker:

    def track_usage(
        self,
        user_id: int,
        provider: str,
        model: str,
        feature: str,
        input_tokens: int,
        output_tokens: int,
    ) -> List[Dict[str, Any]]:
        """Record one model call. Returns any cost warnings for the period."""
        period_start, period_end = current_month_period()
        cost = Decimal(str(estimate_cost(input_tokens, output_tokens, model))).quantize(COST_QUANTUM)

        try:
            with transaction.atomic():
                usage, _ = AIUsage.objects.select_for_update().get_or_create(
                    user_id=user_id,
                    period_start=period_start,
                    defaults={'period_end': period_end},
                )

                by_feature = dict(usage.usage_by_feature or {})
                feature_usage = by_feature.get(feature) or {'requests': 0, 'tokens': 0}
                by_feature[feature] = {
                    'requests': feature_usage['requests'] + 1,
                    'tokens': feature_usage['tokens'] + input_tokens + output_tokens,
                }

                by_provider = dict(usage.usage_by_provider or {})
                provider_usage = by_provider.get(provider) or {
                    'requests': 0, 'input_tokens': 0, 'output_tokens': 0, 'cost_usd': 0.0, 'by_model': {},
                }
                model_usage = provider_usage['by_model'].get(model) or {
                    'requests': 0, 'input_tokens': 0, 'output_tokens': 0,
                }
                by_provider[provider] = {
                    'requests': provider_usage['requests'] + 1,
                    'input_tokens': provider_usage['input_tokens'] + input_tokens,
                    'output_tokens': provider_usage['output_tokens'] + output_tokens,
                    'cost_usd': float(provider_usage.get('cost_usd', 0.0)) + float(cost),
                    'by_model': {
                        **provider_usage['by_model'],
                        model: {
                            'requests': model_usage['requests'] + 1,
                            'input_tokens': model_usage['input_tokens'] + input_tokens,
                            'output_tokens': model_usage['output_tokens'] + output_tokens,
                        },
                    },
                }

                usage.requests += 1
                usage.input_tokens += input_tokens
                usage.output_tokens += output_tokens
                usage.usage_by_feature = by_feature
                usage.usage_by_provider = by_provider
                usage.estimated_cost_usd = Decimal(usage.estimated_cost_usd) + cost
                usage.save()
        except DatabaseError as e:
            logger.error(f"Usage tracking failed for user {user_id} ({feature}): {str(e)}")
            return []

        logger.debug(
            f"Usage tracked: user={user_id} feature={feature} model={model} "
            f"tokens={input_tokens}+{output_tokens}"
        )
        return self.check_warnings(usage)

    def check_warnings(self, usage: AIUsage) -> List[Dict[str, Any]]:
        threshold = float(getattr(settings, 'AI_MONTHLY_COST_WARNING_USD', 5.0))
        cost = float(usage.estimated_cost_usd)
        if threshold <= 0 or cost < threshold:
            return []

        logger.warning(f"User {usage.user_id} passed the monthly AI cost warning: ${cost:.2f}")
        return [{
            'type': 'cost',
            'level': 'warning',
            'message': f"Monthly cost warning: ${cost:.2f} of ${threshold:.2f} warning threshold",
            'current_value': cost,
            'threshold': threshold,
            'percentage': cost / threshold * 100,
        }]

    def current_usage(self, user_id: int) -> Dict[str, Any]:
        period_start, period_end = current_month_period()
        usage = AIUsage.objects.filter(user_id=user_id, period_start=period_start).first()

        if usage is None:
            return {
                'period_start': period_start.isoformat(),
                'period_end': period_end.isoformat(),
                'requests': 0,
                'input_tokens': 0,
                'output_tokens': 0,
                'usage_by_feature': {},
                'usage_by_provider': {},
                'estimated_cost_usd': 0.0,
                'warnings': [],
            }

        return {
            'period_start': usage.period_start.isoformat(),
            'period_end': usage.period_end.isoformat(),
            'requests': usage.requests,
            'input_tokens': usage.input_tokens,
            'output_tokens': usage.output_tokens,
            'usage_by_feature': usage.usage_by_feature,
            'usage_by_provider': usage.usage_by_provider,
            'estimated_cost_usd': float(usage.estimated_cost_usd),
            'warnings': self.check_warnings(usage),
        }


def track_response_usage(tracker: UsageTracker, user_id: int, response: Any, feature: str) -> List[Dict[str, Any]]:
    """
    Record usage for a provider response without letting tracking affect
    the caller: any failure is logged and an empty warning list returned.
    """
    try:
        return tracker.track_usage(
            user_id, response.provider, response.model, feature,
            response.input_tokens, response.output_tokens,
        )
    except Exception as e:
        logger.exception(f"Usage tracking failed for user {user_id} ({feature}): {e}")
        return []
