# tasks/ai_engine/config.py
"""
Per-feature model configuration.

Every model call in the engine is tagged with a feature name. The feature
decides which model, token limit and temperature are used, and the same
name is the key under which usage is aggregated. Deployments override the
defaults through ``settings.AI_FEATURE_OVERRIDES``::

    AI_FEATURE_OVERRIDES = {"enrich": {"model": "gpt-4o", "max_tokens": 4096}}
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Tuple

from django.conf import settings

FEATURE_ENRICH = "enrich"
FEATURE_DECOMPOSE = "decompose"
FEATURE_RESEARCH = "research"
FEATURE_SUGGESTIONS = "suggestions"

PROVIDER_OPENAI = "openai"

# Temperature presets: lower is more deterministic.
TEMPERATURE_PRECISE = 0.0
TEMPERATURE_FOCUSED = 0.3
TEMPERATURE_BALANCED = 0.5

SHORT_RESPONSE_TOKENS = 512
MEDIUM_RESPONSE_TOKENS = 2048
LONG_RESPONSE_TOKENS = 4096

# USD per million tokens: (input, output).
DEFAULT_MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4.1": (2.00, 8.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-3.5-turbo-0125": (0.50, 1.50),
}


@dataclass(frozen=True)
class FeatureConfig:
    provider: str
    model: str
    max_tokens: int
    temperature: float


_FEATURE_DEFAULTS: Dict[str, Tuple[int, float]] = {
    FEATURE_ENRICH: (MEDIUM_RESPONSE_TOKENS, TEMPERATURE_FOCUSED),
    FEATURE_DECOMPOSE: (SHORT_RESPONSE_TOKENS, TEMPERATURE_FOCUSED),
    FEATURE_RESEARCH: (MEDIUM_RESPONSE_TOKENS, TEMPERATURE_PRECISE),
    FEATURE_SUGGESTIONS: (SHORT_RESPONSE_TOKENS, TEMPERATURE_FOCUSED),
}


def get_feature_config(feature: str) -> FeatureConfig:
    """Resolve the model configuration for ``feature``; unknown names get enrich defaults."""
    max_tokens, temperature = _FEATURE_DEFAULTS.get(feature, _FEATURE_DEFAULTS[FEATURE_ENRICH])
    config = FeatureConfig(
        provider=PROVIDER_OPENAI,
        model=getattr(settings, "AI_DEFAULT_MODEL", "gpt-4o-mini"),
        max_tokens=max_tokens,
        temperature=temperature,
    )

    overrides = getattr(settings, "AI_FEATURE_OVERRIDES", None) or {}
    feature_overrides = overrides.get(feature) or {}
    allowed = {k: v for k, v in feature_overrides.items() if k in ("model", "max_tokens", "temperature")}
    return replace(config, **allowed) if allowed else config


def get_model_pricing() -> Dict[str, Tuple[float, float]]:
    pricing = dict(DEFAULT_MODEL_PRICING)
    for model, prices in (getattr(settings, "AI_MODEL_PRICING", None) or {}).items():
        pricing[model] = (float(prices[0]), float(prices[1]))
    return pricing


def estimate_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """USD cost for one call; 0.0 for models without a known price."""
    prices = get_model_pricing().get(model)
    if prices is None:
        return 0.0
    input_price, output_price = prices
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000
