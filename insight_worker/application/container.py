from typing import Optional
import structlog

from insight_worker.domain.background import BackgroundTaskSet
from insight_worker.domain.decision.decision_processor import DecisionProcessor
from insight_worker.domain.orchestration.analysis_orchestrator import AnalysisOrchestrator
from insight_worker.domain.ports import InferenceService
from insight_worker.domain.world.world_manager import WorldManager
from insight_worker.infrastructure.config.settings import WorkerSettings
from insight_worker.infrastructure.host.local_host import LocalHostEnvironment
from insight_worker.infrastructure.inference.langchain_inference import LangChainInference
from insight_worker.infrastructure.observability.langfuse_tracing import TracedInference
from insight_worker.infrastructure.persistence.repository import SqlAlchemyAnalysisRepository
from insight_worker.infrastructure.persistence.schema import create_db_engine

logger = structlog.get_logger(__name__)


def build_inference(settings: WorkerSettings) -> InferenceService:
    """LangChain models, traced through Langfuse when keys are configured"""

    inference: InferenceService = LangChainInference.from_settings(settings)

    if settings.tracing_enabled:
        inference = TracedInference(
            inference,
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
        )
        logger.info("langfuse_tracing_enabled", host=settings.langfuse_host)

    return inference


class WorkerContainer:
    """Wires the pipeline, decision processor and storage for one agent"""

    def __init__(
        self,
        settings: WorkerSettings,
        host: Optional[LocalHostEnvironment] = None,
        inference: Optional[InferenceService] = None,
        repository: Optional[SqlAlchemyAnalysisRepository] = None,
    ):
        self.settings = settings
        self.agent_id = settings.agent_id

        self.host = host or LocalHostEnvironment()
        self.registry = self.host.registry
        self.inference = inference or build_inference(settings)
        self.repository = repository or SqlAlchemyAnalysisRepository(
            create_db_engine(settings.database_url, echo=settings.database_echo)
        )

        self.tasks = BackgroundTaskSet()
        self.world = WorldManager(self.host, self.agent_id, settings.agent_name)
        self.orchestrator = AnalysisOrchestrator(
            self.host, self.registry, self.inference, self.repository, self.world, self.tasks
        )
        self.decisions = DecisionProcessor(
            self.repository, self.host, self.registry, self.world, self.tasks
        )

    async def startup(self) -> None:
        await self.repository.create_schema()
        await self.world.ensure_agent_world()
        logger.info("worker_started", agent_id=self.agent_id, world_id=self.world.world_id)

    async def shutdown(self) -> None:
        await self.tasks.drain(self.settings.drain_timeout_seconds)
        self.repository.dispose()

        flush = getattr(self.inference, "flush", None)
        if callable(flush):
            flush()

        logger.info("worker_stopped", agent_id=self.agent_id)
