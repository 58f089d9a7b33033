# tasks/ai_engine/orchestrator.py

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from ..models import ConfidenceLevel
from ..stores import ExecutionHistoryStore
from .cache import get_proposal_cache
from .config import FEATURE_DECOMPOSE, FEATURE_ENRICH, FEATURE_SUGGESTIONS, get_feature_config
from .contracts import (
    AIMetadata,
    DurationEstimate,
    EnrichmentInsights,
    EnrichmentProposal,
    EnrichmentResult,
    HistoricalExecution,
    ProposedSubtask,
    SimilarityAnalysis,
    SimilarTaskMatch,
    TaskDescriptor,
)
from .exceptions import ModelResponseError, ProviderError
from .insights import calculate_success_prediction
from .parsing import parse_model_json
from .provider import OpenAIChatProvider, get_default_provider
from .scheduling import suggest_due_date
from .schemas import DurationResponseSchema, EnrichmentResponseSchema, ProposedSubtaskSchema
from .similarity import SimilarityScorer, SimilarTaskMatcher
from .usage import UsageTracker, track_response_usage

# Configure logging for pipeline auditing
logger = logging.getLogger(__name__)

HISTORICAL_DATA_LIMIT = 10
DEFAULT_SUBTASK_MINUTES = 15
DEFAULT_ESTIMATED_MINUTES = 60

PARSE_FAILURE_RISK = "Could not parse AI response"
AI_UNAVAILABLE_RISK = "AI suggestions unavailable; showing defaults"
SIMILARITY_DEGRADED_RISK = "Similar tasks were matched by keywords only"

TASK_ENRICHMENT_PROMPT = """You are a task planning expert. Your job is to help users by enriching their tasks with intelligent suggestions.

## Philosophy: Propose, Don't Ask
- Make intelligent assumptions rather than asking questions
- Provide complete, actionable suggestions
- The user can modify your suggestions, so don't hold back
- Be specific and concrete, not vague

## What You Propose
1. **Refined Title**: Clear, action-oriented title starting with a verb
2. **Description**: Concrete definition of done, key constraints
3. **Estimated Duration**: In minutes, based on subtasks and history
4. **Suggested Due Date**: Based on complexity (or null if unclear)
5. **Priority**: Based on implied urgency and importance
6. **Subtasks**: 3-7 actionable steps with:
   - Clear, verb-starting titles
   - Time estimates in minutes
   - Type classification (action/research/draft/plan/review)
   - Flag if AI can help with this subtask

## Subtask Types AI Can Help With
- research: Gathering information, finding options, comparing alternatives
- draft: Writing emails, documents, outlines, plans
- plan: Creating step-by-step approaches, timelines, checklists

## Output Format
Return valid JSON matching this structure:
{
  "refined_title": "string",
  "description": "string",
  "estimated_minutes": number,
  "suggested_due_date": "ISO string or null",
  "priority": "high|medium|low|none",
  "subtasks": [
    {
      "title": "string",
      "estimated_minutes": number,
      "type": "action|research|draft|plan|review",
      "ai_can_do": boolean,
      "suggested_order": number
    }
  ],
  "insights": {
    "estimation_confidence": "high|medium|low",
    "risk_factors": ["string"],
    "key_assumptions": ["string"]
  }
}"""

SUBTASK_GENERATION_PROMPT = """You are a task decomposition expert. Based on the task provided and any similar completed tasks, generate appropriate subtasks.

## Guidelines
- Generate 3-7 actionable subtasks
- Each subtask should be specific and completable
- Use action verbs (Write, Research, Review, Create, etc.)
- Estimate time in minutes for each subtask
- Classify each subtask type: action, research, draft, plan, or review
- Mark subtasks that AI can help with (research, draft, plan types)
- Order subtasks logically

## Output Format
Return a valid JSON array:
[
  {
    "title": "string",
    "estimated_minutes": number,
    "type": "action|research|draft|plan|review",
    "ai_can_do": boolean,
    "suggested_order": number
  }
]"""

DURATION_ESTIMATION_PROMPT = """You are a time estimation expert. Estimate how long a task will take based on the task details, subtasks, and historical data from similar tasks.

## Guidelines
- Provide a realistic estimate in minutes
- Account for common delays and interruptions
- Consider the complexity of subtasks
- Learn from historical accuracy if provided
- Provide a confidence level: high (>80% sure), medium (50-80%), low (<50%)

## Output Format
Return valid JSON:
{
  "minutes": number,
  "confidence": "high|medium|low",
  "reasoning": "string"
}"""


class EnrichmentOrchestrator:
    """
    The central coordination layer for task enrichment.

    ``enrich`` runs the full pipeline and returns the contract:
      {
        proposal_id,
        proposal,
        similar_tasks,
        insights
      }

    Only store failures propagate. Similarity and history lookups degrade to
    empty results, and a failed or unparseable generation call degrades to
    ``EnrichmentProposal.minimal()`` with low confidence and a risk factor.
    The proposal is parked in the proposal cache because the task it will
    be applied to may not exist yet.
    """

    def __init__(
        self,
        matcher: Optional[SimilarTaskMatcher] = None,
        provider: Optional[OpenAIChatProvider] = None,
        usage_tracker: Optional[UsageTracker] = None,
        history_store: Optional[ExecutionHistoryStore] = None,
        cache=None,
    ):
        self.provider = provider or get_default_provider()
        self.usage_tracker = usage_tracker or UsageTracker()
        self.matcher = matcher or SimilarTaskMatcher(
            scorer=SimilarityScorer(provider=self.provider, usage_tracker=self.usage_tracker)
        )
        self.history_store = history_store or ExecutionHistoryStore()
        self.cache = cache if cache is not None else get_proposal_cache()

    # ------------------------------------------------------------------
    # Full pipeline
    # ------------------------------------------------------------------

    def enrich(self, user_id: int, descriptor: TaskDescriptor) -> EnrichmentResult:
        started = time.monotonic()

        # --- STEP 1: SIMILAR TASKS ---
        try:
            analysis = self.matcher.find_similar_tasks(user_id, descriptor)
        except Exception as e:
            logger.exception(f"Orchestrator: similarity search failed for '{descriptor.title}': {str(e)}")
            analysis = SimilarityAnalysis.empty()

        # --- STEP 2: HISTORICAL ACCURACY ---
        try:
            historical = self._historical_data(user_id, analysis.matched_tasks)
        except Exception as e:
            logger.exception(f"Orchestrator: history lookup failed for user {user_id}: {str(e)}")
            historical = []

        # --- STEP 3 & 4: CONTEXT + GENERATION ---
        context = self._build_enrichment_context(descriptor, analysis.matched_tasks, historical)
        config = get_feature_config(FEATURE_ENRICH)
        metadata = AIMetadata(model=config.model, provider=config.provider)

        try:
            response = self.provider.chat(
                messages=[{"role": "user", "content": context}],
                system_prompt=TASK_ENRICHMENT_PROMPT,
                model=config.model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                user_id=user_id,
                json_mode=True,
            )
            metadata = AIMetadata(
                model=response.model,
                provider=response.provider,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            )
            track_response_usage(self.usage_tracker, user_id, response, FEATURE_ENRICH)
            # --- STEP 5: DEFENSIVE PARSE ---
            proposal, insights = self._parse_enrichment_response(response.content)

        except ProviderError as e:
            logger.warning(f"Orchestrator: generation unavailable ({e.error_code}), returning minimal proposal")
            proposal, insights = self._fallback(AI_UNAVAILABLE_RISK)

        except Exception as e:
            logger.exception(f"Orchestrator: generation failure for '{descriptor.title}': {str(e)}")
            proposal, insights = self._fallback(AI_UNAVAILABLE_RISK)

        if analysis.degraded:
            insights.risk_factors.append(SIMILARITY_DEGRADED_RISK)

        # --- STEP 6: SUCCESS PREDICTION ---
        insights.success_prediction = calculate_success_prediction(
            analysis.aggregated_insights,
            has_history=bool(analysis.matched_tasks),
            confidence=insights.estimation_confidence,
        )

        # --- STEP 7: PARK THE UNATTACHED PROPOSAL ---
        metadata.processing_time_ms = int((time.monotonic() - started) * 1000)
        proposal_id = self.cache.put(user_id, proposal, analysis, metadata)

        logger.info(
            f"Orchestrator: proposal {proposal_id} for '{descriptor.title}' "
            f"({len(proposal.proposed_subtasks)} subtasks, confidence {insights.estimation_confidence}, "
            f"{metadata.processing_time_ms}ms)"
        )
        return EnrichmentResult(
            proposal_id=proposal_id,
            proposal=proposal,
            similar_tasks=analysis,
            insights=insights,
        )

    # ------------------------------------------------------------------
    # Sub-operations
    # ------------------------------------------------------------------

    def generate_subtasks(
        self,
        user_id: int,
        descriptor: TaskDescriptor,
        similar_tasks: Optional[List[SimilarTaskMatch]] = None
    ) -> List[ProposedSubtask]:
        """Decomposition-only call. Any failure yields an empty list."""
        similar_tasks = similar_tasks or []
        similar_context = ""
        if similar_tasks:
            similar_context = "\n\nSimilar completed tasks and their patterns:\n" + "\n".join(
                f"- \"{t.title}\": {', '.join(t.match_reasons)}" for t in similar_tasks
            )

        message = (
            "Task to decompose:\n"
            f"Title: {descriptor.title}\n"
            f"Description: {descriptor.description or 'No description provided'}"
            f"{similar_context}\n\n"
            "Generate appropriate subtasks for this task."
        )

        config = get_feature_config(FEATURE_DECOMPOSE)
        try:
            response = self.provider.chat(
                messages=[{"role": "user", "content": message}],
                system_prompt=SUBTASK_GENERATION_PROMPT,
                model=config.model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                user_id=user_id,
            )
            track_response_usage(self.usage_tracker, user_id, response, FEATURE_DECOMPOSE)
            raw_subtasks = parse_model_json(response.content, ProposedSubtaskSchema, many=True)
        except ProviderError as e:
            logger.warning(f"Orchestrator: subtask generation unavailable ({e.error_code})")
            return []
        except ModelResponseError as e:
            logger.warning(f"Orchestrator: unparseable subtask response: {e}")
            return []
        except Exception as e:
            logger.exception(f"Orchestrator: subtask generation failure: {str(e)}")
            return []

        return self._to_subtasks(raw_subtasks)

    def estimate_duration(
        self,
        user_id: int,
        descriptor: TaskDescriptor,
        subtasks: List[ProposedSubtask],
        historical_data: Optional[List[HistoricalExecution]] = None
    ) -> DurationEstimate:
        """
        Duration-only call grounded on the subtask total. On any failure the
        subtask total is returned with low confidence.
        """
        historical_data = historical_data or []
        baseline = sum(s.estimated_minutes or 0 for s in subtasks)

        historical_context = ""
        if historical_data:
            lines = [
                f"- Estimated: {h.original_estimated_minutes}min, Actual: {h.final_actual_minutes}min "
                f"(Accuracy: {(h.estimation_accuracy_ratio or 1) * 100:.0f}%)"
                for h in historical_data
                if h.original_estimated_minutes and h.final_actual_minutes
            ]
            historical_context = "\n\nHistorical data from similar tasks:\n" + "\n".join(lines)

        subtask_lines = "\n".join(
            f"- {s.title}: {s.estimated_minutes if s.estimated_minutes is not None else '?'}min"
            for s in subtasks
        )
        message = (
            "Task to estimate:\n"
            f"Title: {descriptor.title}\n"
            f"Description: {descriptor.description or 'No description provided'}\n\n"
            f"Proposed subtasks (total: {baseline} minutes):\n"
            f"{subtask_lines}"
            f"{historical_context}\n\n"
            "Provide a time estimate for completing this task."
        )

        config = get_feature_config(FEATURE_SUGGESTIONS)
        try:
            response = self.provider.chat(
                messages=[{"role": "user", "content": message}],
                system_prompt=DURATION_ESTIMATION_PROMPT,
                model=config.model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                user_id=user_id,
                json_mode=True,
            )
            track_response_usage(self.usage_tracker, user_id, response, FEATURE_SUGGESTIONS)
            data = parse_model_json(response.content, DurationResponseSchema)
        except (ProviderError, ModelResponseError) as e:
            logger.warning(f"Orchestrator: duration estimate fell back to subtask total: {e}")
            return DurationEstimate(minutes=baseline, confidence=ConfidenceLevel.LOW)
        except Exception as e:
            logger.exception(f"Orchestrator: duration estimate failure: {str(e)}")
            return DurationEstimate(minutes=baseline, confidence=ConfidenceLevel.LOW)

        minutes = data.get("minutes")
        return DurationEstimate(
            minutes=minutes if minutes is not None else baseline,
            confidence=data["confidence"],
            reasoning=data.get("reasoning") or "",
        )

    def suggest_due_date(self, estimated_minutes: Optional[int], priority: Optional[str] = None, now=None):
        """No model call; see ``scheduling.suggest_due_date``."""
        return suggest_due_date(estimated_minutes, priority, now=now)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _historical_data(self, user_id: int, matches: List[SimilarTaskMatch]) -> List[HistoricalExecution]:
        if not matches:
            return []
        records = self.history_store.find_by_task_ids(
            user_id, [m.task_id for m in matches], limit=HISTORICAL_DATA_LIMIT
        )
        return [
            HistoricalExecution(
                original_estimated_minutes=r.original_estimated_minutes,
                final_actual_minutes=r.final_actual_minutes,
                estimation_accuracy_ratio=r.estimation_accuracy_ratio,
                subtasks_added_mid_execution=r.subtasks_added_mid_execution or 0,
                outcome=r.outcome,
            )
            for r in records
        ]

    def _build_enrichment_context(
        self,
        descriptor: TaskDescriptor,
        matches: List[SimilarTaskMatch],
        historical: List[HistoricalExecution]
    ) -> str:
        tags = ", ".join(descriptor.existing_tags) if descriptor.existing_tags else "None"
        context = (
            "Task to enrich:\n"
            f"Title: {descriptor.title}\n"
            f"Description: {descriptor.description or 'No description provided'}\n"
            f"Project ID: {descriptor.project_id or 'None'}\n"
            f"Existing Tags: {tags}"
        )

        if matches:
            context += "\n\nSimilar completed tasks:\n" + "\n".join(
                f"- \"{m.title}\" ({m.similarity_score}% match)" for m in matches
            )

        if historical:
            ratios = [h.estimation_accuracy_ratio for h in historical if h.estimation_accuracy_ratio]
            with_added = sum(1 for h in historical if h.subtasks_added_mid_execution > 0)
            context += "\n\nHistorical insights:"
            if ratios:
                context += f"\n- Average estimation accuracy: {sum(ratios) / len(ratios) * 100:.0f}%"
            context += f"\n- Tasks with added subtasks: {with_added}/{len(historical)}"

        context += "\n\nProvide enrichment suggestions in the specified JSON format."
        return context

    def _parse_enrichment_response(self, content: str) -> Tuple[EnrichmentProposal, EnrichmentInsights]:
        try:
            data = parse_model_json(content, EnrichmentResponseSchema)
        except ModelResponseError as e:
            logger.warning(f"Orchestrator: unparseable enrichment response: {e}")
            return self._fallback(PARSE_FAILURE_RISK)

        estimated = data.get("estimated_minutes")
        proposal = EnrichmentProposal(
            proposed_title=data.get("refined_title") or "",
            proposed_description=data.get("description") or "",
            proposed_due_date=data.get("suggested_due_date"),
            proposed_estimated_minutes=estimated if estimated is not None else DEFAULT_ESTIMATED_MINUTES,
            proposed_priority=data["priority"],
            proposed_subtasks=self._to_subtasks(data.get("subtasks") or []),
        )

        raw_insights: Dict[str, Any] = data.get("insights") or {}
        insights = EnrichmentInsights(
            estimation_confidence=raw_insights.get("estimation_confidence", ConfidenceLevel.MEDIUM),
            risk_factors=list(raw_insights.get("risk_factors") or []),
            key_assumptions=list(raw_insights.get("key_assumptions") or []),
        )
        return proposal, insights

    def _to_subtasks(self, raw_subtasks: List[Dict[str, Any]]) -> List[ProposedSubtask]:
        subtasks = []
        for index, raw in enumerate(raw_subtasks):
            minutes = raw.get("estimated_minutes")
            order = raw.get("suggested_order")
            subtasks.append(
                ProposedSubtask(
                    title=raw.get("title") or "",
                    estimated_minutes=minutes if minutes is not None else DEFAULT_SUBTASK_MINUTES,
                    type=raw["type"],
                    ai_can_do=bool(raw.get("ai_can_do", False)),
                    suggested_order=order if order is not None else index,
                )
            )
        return subtasks

    def _fallback(self, risk: str) -> Tuple[EnrichmentProposal, EnrichmentInsights]:
        return EnrichmentProposal.minimal(), EnrichmentInsights(
            estimation_confidence=ConfidenceLevel.LOW,
            risk_factors=[risk],
        )
