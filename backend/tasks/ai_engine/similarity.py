# tasks/ai_engine/similarity.py
"""
Two-phase similar-task search.

Phase one (``CandidateRetriever``) narrows the user's completed tasks by
keyword. Phase two (``SimilarityScorer``) asks the model to score each
candidate 0-100 with reasons. When the model is unavailable or answers
with something unparseable, every candidate gets a basic keyword match
instead, so enrichment never fails because of this step.
"""

import logging
import math
from typing import List, Optional, Tuple

from .config import FEATURE_RESEARCH, get_feature_config
from .contracts import (
    Candidate,
    ExecutionInsights,
    SimilarityAnalysis,
    SimilarTaskMatch,
    TaskDescriptor,
)
from .exceptions import ModelResponseError, ProviderError
from .insights import aggregate_insights
from .keywords import extract_keywords
from .parsing import parse_model_json
from .provider import OpenAIChatProvider, get_default_provider
from .retriever import DEFAULT_CANDIDATE_LIMIT, CandidateRetriever
from .schemas import SimilarityResponseSchema
from .usage import UsageTracker, track_response_usage
from ..models import ExecutionOutcome

logger = logging.getLogger(__name__)

MIN_SIMILARITY_SCORE = 20
FALLBACK_SIMILARITY_SCORE = 50
FALLBACK_MATCH_REASON = "Matched by keywords"
DEFAULT_MATCH_LIMIT = 5

SIMILARITY_SYSTEM_PROMPT = (
    "You are a task similarity analyzer. Your job is to compare tasks and identify "
    "meaningful similarities.\n\n"
    "Focus on:\n"
    "1. Task type/category (planning, writing, research, meeting, etc.)\n"
    "2. Domain/subject matter\n"
    "3. Complexity and scope\n"
    "4. Required actions and skills\n\n"
    "Be objective and specific in your scoring. A score of:\n"
    "- 90-100: Nearly identical tasks\n"
    "- 70-89: Very similar tasks\n"
    "- 50-69: Moderately similar tasks\n"
    "- 30-49: Some similarities\n"
    "- 0-29: Minimal or no meaningful similarity\n\n"
    "Always respond with valid JSON only."
)


def build_execution_insights(candidate: Candidate) -> ExecutionInsights:
    history = candidate.history
    if history is None:
        ratio = None
        if candidate.estimated_minutes and candidate.actual_minutes:
            ratio = candidate.actual_minutes / candidate.estimated_minutes
        return ExecutionInsights(estimated_vs_actual=ratio)

    return ExecutionInsights(
        estimated_vs_actual=history.estimation_accuracy_ratio,
        subtasks_added=history.subtasks_added_mid_execution,
        stall_points=[e["reason"] for e in history.stall_events if isinstance(e, dict) and e.get("reason")],
        outcome=history.outcome or ExecutionOutcome.COMPLETED,
        added_subtask_titles=list(history.added_subtask_titles),
    )


class SimilarityScorer:
    """
    Scores candidates against a new task with one model call.

    ``score`` returns ``(matches, degraded)``; ``degraded`` is True when the
    basic keyword fallback was used.
    """

    def __init__(
        self,
        provider: Optional[OpenAIChatProvider] = None,
        usage_tracker: Optional[UsageTracker] = None,
    ):
        self.provider = provider or get_default_provider()
        self.usage_tracker = usage_tracker or UsageTracker()

    def score(
        self, user_id: int, descriptor: TaskDescriptor, candidates: List[Candidate]
    ) -> Tuple[List[SimilarTaskMatch], bool]:
        if not candidates:
            return [], False

        config = get_feature_config(FEATURE_RESEARCH)
        try:
            response = self.provider.chat(
                messages=[{"role": "user", "content": self._build_prompt(descriptor, candidates)}],
                system_prompt=SIMILARITY_SYSTEM_PROMPT,
                model=config.model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                user_id=user_id,
                json_mode=True,
            )
            track_response_usage(self.usage_tracker, user_id, response, FEATURE_RESEARCH)
            data = parse_model_json(response.content, SimilarityResponseSchema)

        except ProviderError as e:
            logger.warning(f"SimilarityScorer: provider failed ({e.error_code}), using keyword matches")
            return self._basic_matches(candidates), True

        except ModelResponseError as e:
            logger.warning(f"SimilarityScorer: unparseable response, using keyword matches: {e}")
            return self._basic_matches(candidates), True

        except Exception as e:
            logger.exception(f"Unexpected error in SimilarityScorer: {e}")
            return self._basic_matches(candidates), True

        return self._map_matches(candidates, data["matches"]), False

    def _build_prompt(self, descriptor: TaskDescriptor, candidates: List[Candidate]) -> str:
        entries = []
        for index, candidate in enumerate(candidates):
            entry = (
                f"[{index}] Title: \"{candidate.title}\"\n"
                f"    Description: {candidate.description or 'No description'}"
            )
            history = candidate.history
            if history is not None:
                entry += (
                    f"\n    - Estimated: {history.original_estimated_minutes or 'N/A'} mins, "
                    f"Actual: {history.final_actual_minutes or 'N/A'} mins"
                    f"\n    - Subtasks added during execution: {history.subtasks_added_mid_execution}"
                    f"\n    - Outcome: {history.outcome or ExecutionOutcome.COMPLETED}"
                )
            entries.append(entry)

        return (
            "Analyze the similarity between the new task and these completed tasks.\n"
            "Score each completed task from 0-100 based on:\n"
            "- Task type similarity (e.g., both are \"planning\" tasks, \"writing\" tasks, etc.)\n"
            "- Domain similarity (e.g., both involve \"meetings\", \"reports\", \"events\", etc.)\n"
            "- Complexity similarity (simple vs complex tasks)\n"
            "- Required skills/resources overlap\n\n"
            "New Task:\n"
            f"Title: \"{descriptor.title}\"\n"
            f"Description: {descriptor.description or 'No description'}\n\n"
            "Completed Tasks:\n"
            + "\n\n".join(entries)
            + "\n\nReturn ONLY valid JSON in this exact format:\n"
            '{"matches": [{"index": 0, "score": 85, "reasons": ["Both are planning tasks", "Similar complexity level"]}]}\n\n'
            f"Include all tasks that have a score of {MIN_SIMILARITY_SCORE} or higher. Be specific in your reasons."
        )

    def _map_matches(self, candidates: List[Candidate], raw_matches: List[dict]) -> List[SimilarTaskMatch]:
        matches: List[SimilarTaskMatch] = []
        seen = set()
        for raw in raw_matches:
            index = raw["index"]
            if index < 0 or index >= len(candidates) or index in seen:
                continue
            seen.add(index)

            score = max(0, min(100, int(math.floor(raw["score"] + 0.5))))
            if score < MIN_SIMILARITY_SCORE:
                continue

            candidate = candidates[index]
            matches.append(
                SimilarTaskMatch(
                    task_id=candidate.task_id,
                    title=candidate.title,
                    similarity_score=score,
                    match_reasons=list(raw.get("reasons") or []),
                    execution_insights=build_execution_insights(candidate),
                )
            )
        return matches

    def _basic_matches(self, candidates: List[Candidate]) -> List[SimilarTaskMatch]:
        return [
            SimilarTaskMatch(
                task_id=candidate.task_id,
                title=candidate.title,
                similarity_score=FALLBACK_SIMILARITY_SCORE,
                match_reasons=[FALLBACK_MATCH_REASON],
                execution_insights=build_execution_insights(candidate),
            )
            for candidate in candidates
        ]


class SimilarTaskMatcher:
    """extract keywords -> retrieve -> score -> rank -> aggregate."""

    def __init__(
        self,
        retriever: Optional[CandidateRetriever] = None,
        scorer: Optional[SimilarityScorer] = None,
    ):
        self.retriever = retriever or CandidateRetriever()
        self.scorer = scorer or SimilarityScorer()

    def find_similar_tasks(
        self, user_id: int, descriptor: TaskDescriptor, limit: int = DEFAULT_MATCH_LIMIT
    ) -> SimilarityAnalysis:
        keywords = extract_keywords(descriptor.text)
        if not keywords:
            logger.info("SimilarTaskMatcher: no keywords extracted, skipping search")
            return SimilarityAnalysis.empty()

        candidates = self.retriever.retrieve(user_id, keywords, limit=DEFAULT_CANDIDATE_LIMIT)
        if not candidates:
            return SimilarityAnalysis.empty()

        matches, degraded = self.scorer.score(user_id, descriptor, candidates)
        ranked = sorted(matches, key=lambda m: m.similarity_score, reverse=True)[:limit]

        logger.info(
            f"SimilarTaskMatcher: {len(ranked)} of {len(candidates)} candidates kept for user {user_id}"
            + (" (degraded)" if degraded else "")
        )
        return SimilarityAnalysis(
            matched_tasks=ranked,
            aggregated_insights=aggregate_insights(ranked),
            degraded=degraded,
        )
