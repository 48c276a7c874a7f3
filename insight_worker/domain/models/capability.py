from typing import Dict, Any, List, Optional, Union
from pydantic import Field
from datetime import datetime
from enum import Enum

from .base import WorkerModel, utcnow


class CapabilityCategory(str, Enum):
    """Read-only vs mutating capability"""
    DATA = "DATA"
    ACTION = "ACTION"


DATA_SUB_TYPES = (
    "GET_BALANCE",
    "GET_PRICE",
    "GET_PORTFOLIO",
    "GET_TRANSACTIONS",
    "GET_NFT",
    "GET_MARKET_DATA",
    "SEARCH",
    "ANALYZE",
    "READ",
    "OTHER",
)

ACTION_SUB_TYPES = (
    "SWAP",
    "TRANSFER",
    "STAKE",
    "UNSTAKE",
    "BRIDGE",
    "NFT_MINT",
    "NFT_TRANSFER",
    "LIQUIDITY_ADD",
    "LIQUIDITY_REMOVE",
    "GOVERNANCE_VOTE",
    "SOCIAL_POST",
    "OTHER",
)


class ExampleMessage(WorkerModel):
    """One turn of an example exchange"""
    speaker: str
    text: str


class Capability(WorkerModel):
    """A named, invokable operation exposed by the host environment"""
    name: str = Field(description="Unique capability name")
    description: str = Field("", description="What the capability does")
    similes: List[str] = Field(default_factory=list, description="Alternate names")
    examples: List[List[ExampleMessage]] = Field(default_factory=list, description="Example exchanges")
    owner: Optional[str] = Field(None, description="Owning provider/plugin name")

    @property
    def owner_name(self) -> str:
        if self.owner:
            return self.owner
        parts = self.name.split(":")
        if len(parts) > 1:
            return parts[0]
        return "unknown"


class Classification(WorkerModel):
    """Result of labelling one capability"""
    capability: Capability
    category: CapabilityCategory
    sub_type: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    owner_name: str = "unknown"


class ClassificationResult(WorkerModel):
    """Capabilities grouped by category and sub-type"""
    data_by_type: Dict[str, List[Capability]] = Field(default_factory=dict)
    action_by_type: Dict[str, List[Capability]] = Field(default_factory=dict)
    classifications: List[Classification] = Field(default_factory=list)


class ContextSnapshot(WorkerModel):
    """Payload collected from one context provider"""
    provider_name: str
    data: Any = None
    timestamp: datetime = Field(default_factory=utcnow)


class CapabilityOutcome(WorkerModel):
    """Raw result a capability handler leaves in the host's result registry"""
    model_config = WorkerModel.model_config | {"arbitrary_types_allowed": True}

    success: Optional[bool] = None
    text: Optional[str] = None
    data: Any = None
    values: Any = None
    error: Union[str, BaseException, None] = None


class ExecutionResult(WorkerModel):
    """Mapped result of running one DATA capability"""
    capability_name: str
    success: bool
    data: Any = None
    error: Optional[str] = None


def extract_error_message(
    outcome: Optional[CapabilityOutcome],
    default: str = "Capability failed",
) -> Optional[str]:
    """Error text of an outcome: exception message, string error, or the default when it failed silently"""

    if outcome is None:
        return None

    if outcome.error is not None:
        if isinstance(outcome.error, BaseException):
            return str(outcome.error)
        if isinstance(outcome.error, str) and outcome.error:
            return outcome.error
        return default

    if not outcome.success:
        return default

    return None
