"""Boundaries the pipeline depends on: host environment, result registry, inference, storage"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Type, Union
from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from insight_worker.domain.models.capability import Capability, CapabilityOutcome
from insight_worker.domain.models.analysis import (
    Analysis, AnalysisWithRecommendations, ErrorKind,
    Recommendation, RecommendationResult
)


class ModelSize(str, Enum):
    """Hint for which model tier serves an inference call"""
    SMALL = "small"
    LARGE = "large"


class InferenceService(ABC):
    """Opaque, fallible language-model inference"""

    @abstractmethod
    async def infer(
        self,
        prompt: str,
        *,
        schema: Optional[Type[BaseModel]] = None,
        temperature: float = 0.7,
        model_size: ModelSize = ModelSize.SMALL,
    ) -> Union[BaseModel, str]:
        """Return an instance of ``schema`` when given, plain text otherwise"""


class ResultRegistry(ABC):
    """Correlation-id keyed store of capability outcomes"""

    @abstractmethod
    def put(self, correlation_id: str, outcome: CapabilityOutcome) -> None:
        pass

    @abstractmethod
    def get(self, correlation_id: str) -> Optional[CapabilityOutcome]:
        pass


class HostEnvironment(ABC):
    """Agent environment that owns capabilities, context providers and execution contexts"""

    @abstractmethod
    async def list_capabilities(self) -> List[Capability]:
        pass

    @abstractmethod
    async def compose_context(self) -> Dict[str, Any]:
        """Provider name -> payload, resolved by the host in one call"""

    @abstractmethod
    async def dispatch(
        self,
        correlation_id: str,
        trigger_text: str,
        capability_name: str,
        context_id: str,
    ) -> None:
        """Invoke one capability inside ``context_id`` and wait for it to finish"""

    @abstractmethod
    async def get_world(self, world_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def ensure_world(self, world_id: str, name: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    async def ensure_execution_context(self, context_id: str, world_id: str) -> None:
        pass

    @abstractmethod
    async def delete_execution_context(self, context_id: str) -> None:
        pass


class AnalysisRepository(ABC):
    """Persistence of analyses and their recommendations"""

    @abstractmethod
    async def save_analysis(self, analysis: Analysis, recommendations: List[Recommendation]) -> None:
        pass

    @abstractmethod
    async def get_analysis(self, analysis_id: str) -> Optional[AnalysisWithRecommendations]:
        pass

    @abstractmethod
    async def list_analyses(self, agent_id: str, limit: int = 10) -> List[Analysis]:
        pass

    @abstractmethod
    async def delete_analysis(self, analysis_id: str) -> bool:
        pass

    @abstractmethod
    async def list_recommendations(self, analysis_id: str) -> List[Recommendation]:
        """Ordered by priority desc, then confidence desc"""

    @abstractmethod
    async def get_recommendation(self, recommendation_id: str) -> Recommendation:
        """Raises RecommendationNotFoundError when absent"""

    @abstractmethod
    async def mark_rejected(self, recommendation_id: str, decided_at: datetime) -> Recommendation:
        pass

    @abstractmethod
    async def mark_executing(self, recommendation_id: str, decided_at: datetime) -> Recommendation:
        pass

    @abstractmethod
    async def mark_completed(
        self,
        recommendation_id: str,
        result: RecommendationResult,
        executed_at: datetime,
    ) -> Recommendation:
        pass

    @abstractmethod
    async def mark_failed(
        self,
        recommendation_id: str,
        error: str,
        error_kind: ErrorKind,
        executed_at: datetime,
    ) -> Recommendation:
        pass
