import pytest

from insight_worker.domain.models import RecommendationStatus
from insight_worker.domain.orchestration.analysis_orchestrator import AnalysisOrchestrator
from insight_worker.domain.world.world_manager import WorldManager
from insight_worker.infrastructure.host.local_host import LocalHostEnvironment

from tests.conftest import SECTIONS


@pytest.fixture
def orchestrator(host, stub_inference, repository):
    world = WorldManager(host, "agent-1", "test-agent")
    return AnalysisOrchestrator(host, host.registry, stub_inference, repository, world)


class TestAnalysisOrchestrator:

    @pytest.mark.asyncio
    async def test_full_run_persists_analysis_and_recommendations(self, orchestrator, repository, host):
        result = await orchestrator.run_analysis("agent-1")

        assert result.sections == SECTIONS
        assert result.agent_id == "agent-1"
        assert set(result.capabilities_used) == {"wallet", "market", "portfolio", "time"}
        assert {r.capability_name for r in result.recommendations} == {"dex:SWAP_TOKENS", "bank:TRANSFER_FUNDS"}
        assert all(r.status == RecommendationStatus.PENDING for r in result.recommendations)

        stored = await repository.get_analysis(result.id)
        assert stored is not None
        assert len(stored.recommendations) == 2
        assert {d["capability_name"] for d in host.dispatched} == {"wallet:GET_BALANCE", "market:GET_PRICE"}
        assert host.rooms == {}
        assert orchestrator.world.world_id in host.worlds

    @pytest.mark.asyncio
    async def test_stage_order(self, orchestrator, stub_inference):
        await orchestrator.run_analysis("agent-1")

        schemas = [call["schema"] for call in stub_inference.calls]
        insight_at = schemas.index("AnalysisSections")
        before, after = schemas[:insight_at], schemas[insight_at + 1:]

        rank = {"CapabilityCategorization": 0, "RelevantCapabilitySelection": 1, None: 2}
        assert [rank[s] for s in before] == sorted(rank[s] for s in before)
        assert set(before) == set(rank)
        assert set(after) == {"RelevantCapabilitySelection", "RecommendationDraft"}
        assert schemas.count("AnalysisSections") == 1

    @pytest.mark.asyncio
    async def test_dry_run_is_not_persisted(self, orchestrator, repository):
        result = await orchestrator.run_analysis("agent-1", persist=False)

        assert result.recommendations
        assert await repository.get_analysis(result.id) is None

    @pytest.mark.asyncio
    async def test_insight_failure_aborts_run(self, orchestrator, repository, stub_inference, host):
        stub_inference.fail_insight = True

        with pytest.raises(RuntimeError):
            await orchestrator.run_analysis("agent-1", analysis_id="doomed")

        assert await repository.get_analysis("doomed") is None
        assert stub_inference.calls_for("RecommendationDraft") == []
        assert host.rooms == {}

    @pytest.mark.asyncio
    async def test_no_capabilities_still_produces_analysis(self, repository, stub_inference):
        empty_host = LocalHostEnvironment()
        world = WorldManager(empty_host, "agent-1")
        orchestrator = AnalysisOrchestrator(empty_host, empty_host.registry, stub_inference, repository, world)

        result = await orchestrator.run_analysis("agent-1")

        assert result.recommendations == []
        assert result.capabilities_used == []
        assert [c["schema"] for c in stub_inference.calls] == ["AnalysisSections"]

    @pytest.mark.asyncio
    async def test_background_run_uses_returned_id(self, orchestrator, repository):
        analysis_id = orchestrator.start_analysis("agent-1")
        await orchestrator.drain()

        stored = await repository.get_analysis(analysis_id)
        assert stored is not None
        assert stored.id == analysis_id
