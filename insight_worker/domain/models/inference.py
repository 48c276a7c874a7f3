"""Structured response contracts for inference calls"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from .capability import CapabilityCategory


class CapabilityCategorization(BaseModel):
    """Classifier reply for one capability"""
    category: CapabilityCategory = Field(description="Main category of the capability")
    sub_type: str = Field(description="Specific type within the category (e.g. GET_BALANCE, SWAP, TRANSFER)")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence level in the classification")
    reasoning: str = Field(description="Brief explanation of the classification")


class RelevantCapabilitySelection(BaseModel):
    """Subset of a capability group judged relevant"""
    relevant_capabilities: List[str] = Field(description="Names of the capabilities that are relevant")
    reasoning: str = Field(description="Why these capabilities are relevant")


class ParamEntry(BaseModel):
    key: str
    value: str


class RecommendationDraft(BaseModel):
    """Fully specified recommendation for one selected capability"""
    priority: Literal["high", "medium", "low"] = Field(description="Priority level of this recommendation")
    reasoning: str = Field(description="Why this capability is recommended")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence in this recommendation")
    trigger_phrase: str = Field(description="Exact message that triggers the capability")
    params: List[ParamEntry] = Field(default_factory=list, description="Key/value parameters for the capability")
    estimated_impact: str = Field(description="Expected outcome of running the capability")
    estimated_gas: Optional[str] = Field(None, description="Rough cost estimate, or 'Not applicable'")
