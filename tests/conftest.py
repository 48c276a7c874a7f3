"""Shared fixtures: deterministic inference, in-memory store and an in-process host"""

import re
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio

from insight_worker.domain.models import (
    Analysis, AnalysisSections, Capability, CapabilityCategorization,
    CapabilityCategory, ExampleMessage, ParamEntry, Priority, Recommendation,
    RecommendationDraft, RelevantCapabilitySelection, utcnow
)
from insight_worker.domain.ports import InferenceService, ModelSize
from insight_worker.domain.world.world_manager import WorldManager
from insight_worker.infrastructure.host.local_host import LocalHostEnvironment
from insight_worker.infrastructure.persistence.repository import SqlAlchemyAnalysisRepository
from insight_worker.infrastructure.persistence.schema import create_db_engine

NAME_PATTERN = re.compile(r"\*\*Name:\*\* (\S+)")
GROUP_PATTERN = re.compile(r"## Available (\S+) Capabilities")
LISTED_PATTERN = re.compile(r"^### \d+\. (\S+)$", re.MULTILINE)

SECTIONS = AnalysisSections(
    overview="Wallet holds 1.5 ETH and 200 USDC.",
    conditions="ETH trades at 3000 USD, up 2% on the day.",
    risk="Concentration in ETH is high.",
    opportunities="Rebalance part of ETH into stablecoins.",
)


class StubInference(InferenceService):
    """Answers by response schema and capability name"""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.fail_classification_for: Set[str] = set()
        self.fail_selection_for: Set[str] = set()
        self.fail_recommendation_for: Set[str] = set()
        self.fail_trigger_for: Set[str] = set()
        self.excluded: Set[str] = set()
        self.priorities: Dict[str, str] = {}
        self.confidences: Dict[str, float] = {}
        self.fail_insight = False

    def calls_for(self, schema_name: Optional[str]) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["schema"] == schema_name]

    async def infer(self, prompt, *, schema=None, temperature=0.7, model_size=ModelSize.SMALL):
        self.calls.append({
            "schema": schema.__name__ if schema else None,
            "temperature": temperature,
            "model_size": model_size,
            "prompt": prompt,
        })

        if schema is CapabilityCategorization:
            return self._categorize(NAME_PATTERN.search(prompt).group(1))

        if schema is RelevantCapabilitySelection:
            sub_type = GROUP_PATTERN.search(prompt).group(1)
            if sub_type in self.fail_selection_for:
                raise RuntimeError(f"selection failed for {sub_type}")
            names = [n for n in LISTED_PATTERN.findall(prompt) if n not in self.excluded]
            return RelevantCapabilitySelection(relevant_capabilities=names, reasoning="matches context")

        if schema is AnalysisSections:
            if self.fail_insight:
                raise RuntimeError("model overloaded")
            return SECTIONS

        if schema is RecommendationDraft:
            name = NAME_PATTERN.search(prompt).group(1)
            if name in self.fail_recommendation_for:
                raise RuntimeError(f"draft failed for {name}")
            return RecommendationDraft(
                priority=self.priorities.get(name, "medium"),
                reasoning=f"{name} fits the opportunities section",
                confidence=self.confidences.get(name, 0.8),
                trigger_phrase=f" Please run {name} ",
                params=[ParamEntry(key="asset", value="ETH"), ParamEntry(key="amount", value="0.5")],
                estimated_impact="Lower concentration risk",
                estimated_gas="~0.002 ETH",
            )

        name = NAME_PATTERN.search(prompt).group(1)
        if name in self.fail_trigger_for:
            raise RuntimeError(f"trigger failed for {name}")
        return f"  run {name} now  \n"

    def _categorize(self, name: str) -> CapabilityCategorization:
        if name in self.fail_classification_for:
            raise RuntimeError(f"classification failed for {name}")

        upper = name.upper()
        if any(marker in upper for marker in ("GET", "CHECK", "READ")):
            sub_type = "GET_PRICE" if "PRICE" in upper else "GET_BALANCE"
            return CapabilityCategorization(
                category=CapabilityCategory.DATA, sub_type=sub_type, confidence=0.9, reasoning="read-only"
            )

        sub_type = "SWAP" if "SWAP" in upper else "TRANSFER"
        return CapabilityCategorization(
            category=CapabilityCategory.ACTION, sub_type=f" {sub_type} ", confidence=0.85, reasoning="mutates state"
        )


def make_capability(name: str, description: str = "", owner: Optional[str] = None) -> Capability:
    return Capability(
        name=name,
        description=description or f"{name} capability",
        similes=[name.lower()],
        examples=[[
            ExampleMessage(speaker="user", text=f"please {name.lower()}"),
            ExampleMessage(speaker="agent", text="on it"),
        ]],
        owner=owner,
    )


def make_recommendation(
    analysis_id: str,
    rec_id: str,
    capability_name: str = "dex:SWAP_TOKENS",
    priority: Priority = Priority.MEDIUM,
    confidence: float = 0.5,
) -> Recommendation:
    return Recommendation(
        id=rec_id,
        analysis_id=analysis_id,
        capability_name=capability_name,
        owner_name=capability_name.split(":")[0],
        priority=priority,
        reasoning="because",
        confidence=confidence,
        trigger_phrase=f"run {capability_name}",
        params={"asset": "ETH"},
        estimated_impact="impact",
        estimated_gas="Not applicable",
        created_at=utcnow(),
    )


def make_analysis(analysis_id: str, agent_id: str = "agent-1", created_at=None) -> Analysis:
    return Analysis(
        id=analysis_id,
        agent_id=agent_id,
        created_at=created_at or utcnow(),
        sections=SECTIONS,
        capabilities_used=["wallet", "portfolio"],
        duration_ms=42,
    )


@pytest.fixture
def stub_inference():
    return StubInference()


@pytest.fixture
def host():
    host = LocalHostEnvironment()

    async def get_balance(trigger: str):
        return {"success": True, "text": "Balance: 1.5 ETH", "data": {"ETH": 1.5}}

    def get_price(trigger: str):
        return {"success": True, "values": {"ETH": 3000}}

    async def swap(trigger: str):
        return {"success": True, "text": "Swapped 0.5 ETH", "data": {"tx": "0xabc"}}

    async def transfer(trigger: str):
        return {"success": False, "error": "Insufficient balance"}

    host.register_capability(make_capability("wallet:GET_BALANCE"), get_balance)
    host.register_capability(make_capability("market:GET_PRICE"), get_price)
    host.register_capability(make_capability("dex:SWAP_TOKENS"), swap)
    host.register_capability(make_capability("bank:TRANSFER_FUNDS"), transfer)

    host.register_provider("portfolio", lambda: {"total_usd": 4700})

    async def clock():
        return {"hour": 14}

    host.register_provider("time", clock)
    return host


@pytest_asyncio.fixture
async def world(host):
    manager = WorldManager(host, "agent-1", "test-agent")
    await manager.ensure_agent_world()
    return manager


@pytest_asyncio.fixture
async def repository():
    repo = SqlAlchemyAnalysisRepository(create_db_engine("sqlite://"))
    await repo.create_schema()
    yield repo
    repo.dispose()
