from typing import Dict, Any, List, Optional
from pydantic import Field
from datetime import datetime
from enum import Enum

from .base import WorkerModel, utcnow


class Priority(str, Enum):
    """Recommendation priority, stored as an ordinal"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def ordinal(self) -> int:
        return _PRIORITY_ORDINALS[self]

    @classmethod
    def from_ordinal(cls, value: Optional[int]) -> "Priority":
        for priority, ordinal in _PRIORITY_ORDINALS.items():
            if ordinal == value:
                return priority
        return cls.MEDIUM


_PRIORITY_ORDINALS = {
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


class RecommendationStatus(str, Enum):
    """Recommendation lifecycle status"""
    PENDING = "pending"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


# pending -> rejected | executing -> completed | failed
ALLOWED_TRANSITIONS = {
    RecommendationStatus.PENDING: {RecommendationStatus.REJECTED, RecommendationStatus.EXECUTING},
    RecommendationStatus.EXECUTING: {RecommendationStatus.COMPLETED, RecommendationStatus.FAILED},
    RecommendationStatus.REJECTED: set(),
    RecommendationStatus.COMPLETED: set(),
    RecommendationStatus.FAILED: set(),
}


class ErrorKind(str, Enum):
    """Why an accepted recommendation failed"""
    INITIALIZATION = "initialization"
    EXECUTION = "execution"


class DecisionVerdict(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class AnalysisSections(WorkerModel):
    """Four-section narrative analysis"""
    overview: str = Field(description="Overview of current holdings, balances and state, with concrete figures")
    conditions: str = Field(description="Current external conditions and trends, citing the data")
    risk: str = Field(description="Risk evaluation with specific concerns and exposures")
    opportunities: str = Field(description="Opportunities identified from the data, with suggested strategies")


class Analysis(WorkerModel):
    """One persisted analysis run"""
    id: str
    agent_id: str
    created_at: datetime = Field(default_factory=utcnow)
    sections: AnalysisSections
    capabilities_used: List[str] = Field(default_factory=list)
    duration_ms: int = 0


class RecommendationResult(WorkerModel):
    """Payload recorded when an accepted recommendation completes"""
    text: str
    data: Any = None
    timestamp: datetime = Field(default_factory=utcnow)


class Recommendation(WorkerModel):
    """A generated suggestion to invoke one ACTION capability"""
    id: str
    analysis_id: str
    capability_name: str
    owner_name: str = "unknown"
    priority: Priority = Priority.MEDIUM
    reasoning: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    trigger_phrase: str
    params: Optional[Dict[str, Any]] = None
    estimated_impact: Optional[str] = None
    estimated_gas: Optional[str] = None
    status: RecommendationStatus = RecommendationStatus.PENDING
    decided_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    result: Optional[RecommendationResult] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    created_at: datetime = Field(default_factory=utcnow)


class AnalysisWithRecommendations(Analysis):
    """Analysis together with the recommendations it owns"""
    recommendations: List[Recommendation] = Field(default_factory=list)


class Decision(WorkerModel):
    """Human verdict on one recommendation"""
    action_id: str
    decision: DecisionVerdict


class RejectedAck(WorkerModel):
    action_id: str
    status: RecommendationStatus = RecommendationStatus.REJECTED


class DecisionOutcome(WorkerModel):
    """Accepted/rejected breakdown of a decision batch"""
    accepted: List[Recommendation] = Field(default_factory=list)
    rejected: List[RejectedAck] = Field(default_factory=list)
