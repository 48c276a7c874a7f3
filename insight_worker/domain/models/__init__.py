from .base import WorkerModel, utcnow
from .capability import (
    Capability, CapabilityCategory, CapabilityOutcome, Classification,
    ClassificationResult, ContextSnapshot, ExampleMessage, ExecutionResult,
    DATA_SUB_TYPES, ACTION_SUB_TYPES, extract_error_message
)
from .analysis import (
    Analysis, AnalysisSections, AnalysisWithRecommendations, Decision,
    DecisionOutcome, DecisionVerdict, ErrorKind, Priority, Recommendation,
    RecommendationResult, RecommendationStatus, RejectedAck, ALLOWED_TRANSITIONS
)
from .inference import (
    CapabilityCategorization, ParamEntry, RecommendationDraft,
    RelevantCapabilitySelection
)
