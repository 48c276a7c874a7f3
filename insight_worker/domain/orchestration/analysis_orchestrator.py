import time
import uuid
from typing import TypedDict, List, Dict, Any, Optional
from langgraph.graph import StateGraph, END
import structlog

from insight_worker.domain.analysis.insight_generator import InsightGenerator, derive_capabilities_used
from insight_worker.domain.analysis.recommendation_generator import RecommendationGenerator
from insight_worker.domain.background import BackgroundTaskSet
from insight_worker.domain.capability.capability_executor import CapabilityExecutor
from insight_worker.domain.capability.classifier import CapabilityClassifier
from insight_worker.domain.capability.relevance_selector import RelevanceSelector
from insight_worker.domain.context.context_collector import ContextCollector
from insight_worker.domain.models import (
    Analysis, AnalysisSections, AnalysisWithRecommendations, Capability,
    ClassificationResult, ContextSnapshot, ExecutionResult, Recommendation, utcnow
)
from insight_worker.domain.ports import AnalysisRepository, HostEnvironment, InferenceService, ResultRegistry
from insight_worker.domain.world.world_manager import WorldManager
from insight_worker.infrastructure.observability.logging import metrics, worker_logger

logger = structlog.get_logger(__name__)


class AnalysisState(TypedDict, total=False):
    """State carried through one analysis run"""
    analysis_id: str
    agent_id: str
    persist: bool
    started_at: float
    classification: ClassificationResult
    context: List[ContextSnapshot]
    selected: List[Capability]
    results: List[ExecutionResult]
    room_ids: List[str]
    sections: AnalysisSections
    recommendations: List[Recommendation]
    analysis: Analysis


class AnalysisOrchestrator:
    """Runs the analysis pipeline as a linear LangGraph workflow"""

    def __init__(
        self,
        host: HostEnvironment,
        registry: ResultRegistry,
        inference: InferenceService,
        repository: AnalysisRepository,
        world: WorldManager,
        tasks: Optional[BackgroundTaskSet] = None,
    ):
        self.host = host
        self.repository = repository
        self.world = world
        self.tasks = tasks or BackgroundTaskSet()

        self.classifier = CapabilityClassifier(inference)
        self.collector = ContextCollector(host)
        self.selector = RelevanceSelector(inference)
        self.executor = CapabilityExecutor(host, registry, inference, world.world_id)
        self.insight_generator = InsightGenerator(inference)
        self.recommendation_generator = RecommendationGenerator(inference, self.selector)

        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the pipeline graph"""

        workflow = StateGraph(AnalysisState)

        workflow.add_node("classify", self.classify_node)
        workflow.add_node("collect", self.collect_node)
        workflow.add_node("select", self.select_node)
        workflow.add_node("execute", self.execute_node)
        workflow.add_node("cleanup_contexts", self.cleanup_node)
        workflow.add_node("insight", self.insight_node)
        workflow.add_node("recommend", self.recommend_node)
        workflow.add_node("persist", self.persist_node)

        workflow.set_entry_point("classify")
        workflow.add_edge("classify", "collect")
        workflow.add_edge("collect", "select")
        workflow.add_edge("select", "execute")
        workflow.add_edge("execute", "cleanup_contexts")
        workflow.add_edge("cleanup_contexts", "insight")
        workflow.add_edge("insight", "recommend")
        workflow.add_edge("recommend", "persist")
        workflow.add_edge("persist", END)

        return workflow.compile()

    async def classify_node(self, state: AnalysisState) -> Dict[str, Any]:
        start = time.perf_counter()
        capabilities = await self.host.list_capabilities()
        classification = await self.classifier.classify(capabilities)
        self._stage_done(state, "classify", "collect", start, {
            "capabilities": len(capabilities),
            "data_types": len(classification.data_by_type),
            "action_types": len(classification.action_by_type),
        })
        return {"classification": classification}

    async def collect_node(self, state: AnalysisState) -> Dict[str, Any]:
        start = time.perf_counter()
        context = await self.collector.collect()
        self._stage_done(state, "collect", "select", start, {"providers": len(context)})
        return {"context": context}

    async def select_node(self, state: AnalysisState) -> Dict[str, Any]:
        start = time.perf_counter()
        selected = await self.selector.select(state["classification"].data_by_type, state["context"])
        self._stage_done(state, "select", "execute", start, {"selected": len(selected)})
        return {"selected": selected}

    async def execute_node(self, state: AnalysisState) -> Dict[str, Any]:
        start = time.perf_counter()
        results, room_ids = await self.executor.execute(state["selected"])
        self._stage_done(state, "execute", "cleanup_contexts", start, {
            "executed": len(results),
            "successful": sum(1 for r in results if r.success),
        })
        return {"results": results, "room_ids": room_ids}

    async def cleanup_node(self, state: AnalysisState) -> Dict[str, Any]:
        await self.world.cleanup(state.get("room_ids", []))
        return {"room_ids": []}

    async def insight_node(self, state: AnalysisState) -> Dict[str, Any]:
        start = time.perf_counter()
        sections = await self.insight_generator.generate(state["results"], state["context"])
        self._stage_done(state, "insight", "recommend", start)
        return {"sections": sections}

    async def recommend_node(self, state: AnalysisState) -> Dict[str, Any]:
        start = time.perf_counter()
        recommendations = await self.recommendation_generator.generate(
            state["analysis_id"],
            state["sections"],
            state["classification"].action_by_type,
        )
        self._stage_done(state, "recommend", "persist", start, {"recommendations": len(recommendations)})
        return {"recommendations": recommendations}

    async def persist_node(self, state: AnalysisState) -> Dict[str, Any]:
        analysis = Analysis(
            id=state["analysis_id"],
            agent_id=state["agent_id"],
            created_at=utcnow(),
            sections=state["sections"],
            capabilities_used=derive_capabilities_used(state["results"], state["context"]),
            duration_ms=int((time.perf_counter() - state["started_at"]) * 1000),
        )

        if state.get("persist", True):
            await self.repository.save_analysis(analysis, state["recommendations"])
            logger.info("analysis_persisted", recommendations=len(state["recommendations"]))

        return {"analysis": analysis}

    def _stage_done(
        self,
        state: AnalysisState,
        stage: str,
        next_stage: str,
        start: float,
        summary: Optional[Dict[str, Any]] = None
    ):
        metrics.record_latency(f"stage.{stage}", (time.perf_counter() - start) * 1000)
        worker_logger.log_stage_transition(state["analysis_id"], stage, next_stage, summary)

    async def run_analysis(
        self,
        agent_id: str,
        persist: bool = True,
        analysis_id: Optional[str] = None,
    ) -> AnalysisWithRecommendations:
        """Run every stage in order; any stage error aborts the run and is re-raised"""

        analysis_id = analysis_id or str(uuid.uuid4())

        with structlog.contextvars.bound_contextvars(analysis_id=analysis_id, agent_id=agent_id):
            logger.info("analysis_run_started", persist=persist)
            started_at = time.perf_counter()

            try:
                await self.world.ensure_agent_world()
                final_state = await self.workflow.ainvoke({
                    "analysis_id": analysis_id,
                    "agent_id": agent_id,
                    "persist": persist,
                    "started_at": started_at,
                })
            except Exception as e:
                metrics.increment_counter("analysis.failed")
                logger.error("analysis_run_failed", error=str(e), exc_info=True)
                raise

            analysis: Analysis = final_state["analysis"]
            metrics.increment_counter("analysis.completed")
            logger.info(
                "analysis_run_completed",
                duration_ms=analysis.duration_ms,
                recommendations=len(final_state["recommendations"])
            )

            return AnalysisWithRecommendations(
                **analysis.model_dump(),
                recommendations=final_state["recommendations"]
            )

    def start_analysis(self, agent_id: str, persist: bool = True) -> str:
        """Spawn a run in the background and return its analysis id immediately"""

        analysis_id = str(uuid.uuid4())
        self.tasks.spawn(
            self.run_analysis(agent_id, persist=persist, analysis_id=analysis_id),
            name=f"analysis-{analysis_id}"
        )
        return analysis_id

    async def drain(self, timeout: Optional[float] = 10.0) -> None:
        await self.tasks.drain(timeout)
