# tasks/ai_engine/contracts.py
"""
Value contracts exchanged between the enrichment engine components.

These are transient: they live for one request (or, for cached proposals,
a few minutes). Anything that must survive is copied into the models in
``tasks.models`` via ``to_dict()``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from django.utils.dateparse import parse_datetime

from ..models import ConfidenceLevel, ExecutionOutcome, SubtaskType, TaskPriority


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(str(value))


@dataclass(frozen=True)
class TaskDescriptor:
    """Minimal input to enrichment; never persisted."""

    title: str
    description: Optional[str] = None
    project_id: Optional[str] = None
    existing_tags: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValueError("TaskDescriptor.title must be non-empty")

    @property
    def text(self) -> str:
        return f"{self.title} {self.description or ''}"


@dataclass
class HistorySnapshot:
    """The parts of an execution history record used for similarity."""

    original_estimated_minutes: Optional[int] = None
    final_actual_minutes: Optional[int] = None
    estimation_accuracy_ratio: Optional[float] = None
    subtasks_added_mid_execution: int = 0
    added_subtask_titles: List[str] = field(default_factory=list)
    stall_events: List[Dict[str, Any]] = field(default_factory=list)
    outcome: str = ExecutionOutcome.COMPLETED
    task_category: str = ""
    keyword_fingerprint: List[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: Any) -> "HistorySnapshot":
        return cls(
            original_estimated_minutes=record.original_estimated_minutes,
            final_actual_minutes=record.final_actual_minutes,
            estimation_accuracy_ratio=record.estimation_accuracy_ratio,
            subtasks_added_mid_execution=record.subtasks_added_mid_execution or 0,
            added_subtask_titles=list(record.added_subtask_titles or []),
            stall_events=list(record.stall_events or []),
            outcome=record.outcome,
            task_category=record.task_category or "",
            keyword_fingerprint=list(record.keyword_fingerprint or []),
        )


@dataclass
class Candidate:
    """A completed task returned by keyword retrieval."""

    task_id: str
    title: str
    description: str = ""
    estimated_minutes: Optional[int] = None
    actual_minutes: Optional[int] = None
    completed_at: Optional[datetime] = None
    history: Optional[HistorySnapshot] = None


@dataclass
class HistoricalExecution:
    original_estimated_minutes: Optional[int]
    final_actual_minutes: Optional[int]
    estimation_accuracy_ratio: Optional[float]
    subtasks_added_mid_execution: int
    outcome: str


@dataclass
class ExecutionInsights:
    estimated_vs_actual: Optional[float] = None
    subtasks_added: int = 0
    stall_points: List[str] = field(default_factory=list)
    outcome: str = ExecutionOutcome.COMPLETED
    added_subtask_titles: List[str] = field(default_factory=list)


@dataclass
class SimilarTaskMatch:
    task_id: str
    title: str
    similarity_score: int
    match_reasons: List[str]
    execution_insights: ExecutionInsights

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimilarTaskMatch":
        return cls(
            task_id=data["task_id"],
            title=data["title"],
            similarity_score=int(data["similarity_score"]),
            match_reasons=list(data.get("match_reasons", [])),
            execution_insights=ExecutionInsights(**data.get("execution_insights", {})),
        )


@dataclass
class AggregatedInsights:
    avg_estimation_accuracy: float = 1.0
    common_subtasks_added: List[str] = field(default_factory=list)
    common_stall_points: List[str] = field(default_factory=list)
    success_rate: float = 100.0


@dataclass
class SimilarityAnalysis:
    matched_tasks: List[SimilarTaskMatch] = field(default_factory=list)
    aggregated_insights: AggregatedInsights = field(default_factory=AggregatedInsights)
    # True when the semantic scorer fell back to keyword-only matches.
    degraded: bool = False

    @classmethod
    def empty(cls) -> "SimilarityAnalysis":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimilarityAnalysis":
        return cls(
            matched_tasks=[SimilarTaskMatch.from_dict(m) for m in data.get("matched_tasks", [])],
            aggregated_insights=AggregatedInsights(**data.get("aggregated_insights", {})),
            degraded=bool(data.get("degraded", False)),
        )


@dataclass
class ProposedSubtask:
    title: str
    estimated_minutes: Optional[int] = 15
    type: str = SubtaskType.ACTION
    ai_can_do: bool = False
    suggested_order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "estimated_minutes": self.estimated_minutes,
            "type": str(self.type),
            "ai_can_do": self.ai_can_do,
            "suggested_order": self.suggested_order,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProposedSubtask":
        return cls(
            title=data.get("title", ""),
            estimated_minutes=data.get("estimated_minutes"),
            type=data.get("type", SubtaskType.ACTION),
            ai_can_do=bool(data.get("ai_can_do", False)),
            suggested_order=int(data.get("suggested_order") or 0),
        )


@dataclass
class EnrichmentProposal:
    proposed_title: str
    proposed_description: str
    proposed_due_date: Optional[datetime]
    proposed_estimated_minutes: Optional[int]
    proposed_priority: str
    proposed_subtasks: List[ProposedSubtask] = field(default_factory=list)

    @classmethod
    def minimal(cls) -> "EnrichmentProposal":
        """Proposal returned when the model output is unusable."""
        return cls(
            proposed_title="",
            proposed_description="",
            proposed_due_date=None,
            proposed_estimated_minutes=60,
            proposed_priority=TaskPriority.NONE,
            proposed_subtasks=[],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposed_title": self.proposed_title,
            "proposed_description": self.proposed_description,
            "proposed_due_date": _iso(self.proposed_due_date),
            "proposed_estimated_minutes": self.proposed_estimated_minutes,
            "proposed_priority": str(self.proposed_priority),
            "proposed_subtasks": [s.to_dict() for s in self.proposed_subtasks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrichmentProposal":
        return cls(
            proposed_title=data.get("proposed_title", ""),
            proposed_description=data.get("proposed_description", ""),
            proposed_due_date=_from_iso(data.get("proposed_due_date")),
            proposed_estimated_minutes=data.get("proposed_estimated_minutes"),
            proposed_priority=data.get("proposed_priority", TaskPriority.NONE),
            proposed_subtasks=[ProposedSubtask.from_dict(s) for s in data.get("proposed_subtasks", [])],
        )


@dataclass
class EnrichmentInsights:
    estimation_confidence: str = ConfidenceLevel.MEDIUM
    risk_factors: List[str] = field(default_factory=list)
    key_assumptions: List[str] = field(default_factory=list)
    success_prediction: int = 0


@dataclass
class AIMetadata:
    model: str = ""
    provider: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    processing_time_ms: int = 0


@dataclass
class EnrichmentResult:
    proposal_id: str
    proposal: EnrichmentProposal
    similar_tasks: SimilarityAnalysis
    insights: EnrichmentInsights

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "proposal": self.proposal.to_dict(),
            "similar_tasks": self.similar_tasks.to_dict(),
            "insights": asdict(self.insights),
        }


@dataclass
class DurationEstimate:
    minutes: int
    confidence: str
    reasoning: str = ""


@dataclass
class CachedProposal:
    proposal: EnrichmentProposal
    similarity_analysis: SimilarityAnalysis
    metadata: AIMetadata
    user_id: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal": self.proposal.to_dict(),
            "similarity_analysis": self.similarity_analysis.to_dict(),
            "metadata": asdict(self.metadata),
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedProposal":
        return cls(
            proposal=EnrichmentProposal.from_dict(data["proposal"]),
            similarity_analysis=SimilarityAnalysis.from_dict(data["similarity_analysis"]),
            metadata=AIMetadata(**data.get("metadata", {})),
            user_id=data["user_id"],
            created_at=_from_iso(data["created_at"]),
        )
