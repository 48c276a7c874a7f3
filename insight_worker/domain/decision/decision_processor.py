import asyncio
import json
import uuid
from typing import Any, Dict, Iterable, List, Optional
import structlog

from insight_worker.domain.background import BackgroundTaskSet
from insight_worker.domain.errors import (
    CapabilityNotFoundError, InvalidDecisionError, InvalidTransitionError
)
from insight_worker.domain.models import (
    CapabilityOutcome, Decision, DecisionOutcome, DecisionVerdict, ErrorKind,
    Recommendation, RecommendationResult, RecommendationStatus, RejectedAck,
    extract_error_message, utcnow
)
from insight_worker.domain.ports import AnalysisRepository, HostEnvironment, ResultRegistry
from insight_worker.domain.world.world_manager import WorldManager
from insight_worker.infrastructure.observability.logging import worker_logger

logger = structlog.get_logger(__name__)

NO_RESULT_ERROR = "No result returned from capability"
DEFAULT_EXECUTION_ERROR = "Capability execution failed"
CANCELLED_EXECUTION_ERROR = "Execution cancelled before completion"


def parse_decisions(raw: Iterable[Dict[str, Any]]) -> List[Decision]:
    """Validate raw {actionId, decision} entries before any of them is processed"""

    decisions = []
    for entry in raw:
        verdict = entry.get("decision")
        if verdict not in (DecisionVerdict.ACCEPT.value, DecisionVerdict.REJECT.value):
            raise InvalidDecisionError(
                f"Invalid decision: {verdict}. Must be 'accept' or 'reject'"
            )
        decisions.append(Decision(action_id=entry["actionId"], decision=DecisionVerdict(verdict)))
    return decisions


def classify_failure(message: str) -> ErrorKind:
    """Heuristic kind for failures caught outside the normal result path"""
    return ErrorKind.INITIALIZATION if "not found" in message.lower() else ErrorKind.EXECUTION


def build_result(outcome: CapabilityOutcome, executed_at) -> RecommendationResult:
    data = outcome.data if outcome.data is not None else outcome.values
    text = outcome.text or json.dumps(data, default=str)
    return RecommendationResult(text=text, data=data, timestamp=executed_at)


class DecisionProcessor:
    """Applies accept/reject decisions; accepted recommendations execute in the background"""

    def __init__(
        self,
        repository: AnalysisRepository,
        host: HostEnvironment,
        registry: ResultRegistry,
        world: WorldManager,
        tasks: Optional[BackgroundTaskSet] = None,
    ):
        self.repository = repository
        self.host = host
        self.registry = registry
        self.world = world
        self.tasks = tasks or BackgroundTaskSet()

    async def process(self, decisions: List[Decision]) -> DecisionOutcome:
        """One failing decision is logged and skipped; the rest still run"""

        outcome = DecisionOutcome()

        for decision in decisions:
            try:
                if decision.decision == DecisionVerdict.ACCEPT:
                    outcome.accepted.append(await self.accept(decision.action_id))
                else:
                    outcome.rejected.append(await self.reject(decision.action_id))
            except Exception as e:
                logger.error(
                    "decision_failed",
                    action_id=decision.action_id,
                    decision=decision.decision.value,
                    error=str(e)
                )

        logger.info(
            "decisions_processed",
            accepted=len(outcome.accepted),
            rejected=len(outcome.rejected),
            total=len(decisions)
        )
        return outcome

    async def reject(self, recommendation_id: str) -> RejectedAck:
        await self.repository.mark_rejected(recommendation_id, utcnow())
        worker_logger.log_status_transition(
            recommendation_id, RecommendationStatus.PENDING.value, RecommendationStatus.REJECTED.value
        )
        return RejectedAck(action_id=recommendation_id)

    async def accept(self, recommendation_id: str) -> Recommendation:
        """Marks executing and returns at once; execution is not awaited"""

        recommendation = await self.repository.mark_executing(recommendation_id, utcnow())
        worker_logger.log_status_transition(
            recommendation_id, RecommendationStatus.PENDING.value, RecommendationStatus.EXECUTING.value
        )

        self.tasks.spawn(self._execute(recommendation_id), name=f"execute-{recommendation_id}")
        return recommendation

    async def drain(self, timeout: Optional[float] = 10.0) -> None:
        await self.tasks.drain(timeout)

    async def _execute(self, recommendation_id: str) -> None:
        try:
            await self._run(recommendation_id)

        except CapabilityNotFoundError as e:
            await self._fail(recommendation_id, str(e), ErrorKind.INITIALIZATION)

        except asyncio.CancelledError:
            logger.warning("recommendation_execution_cancelled", recommendation_id=recommendation_id)
            try:
                await self._fail(recommendation_id, CANCELLED_EXECUTION_ERROR, ErrorKind.EXECUTION)
            except InvalidTransitionError:
                logger.info("recommendation_already_terminal", recommendation_id=recommendation_id)
            raise

        except Exception as e:
            logger.error("recommendation_execution_error", recommendation_id=recommendation_id, error=str(e))
            message = str(e) or type(e).__name__
            await self._fail(recommendation_id, message, classify_failure(message))

    async def _run(self, recommendation_id: str) -> None:
        recommendation = await self.repository.get_recommendation(recommendation_id)

        capabilities = await self.host.list_capabilities()
        capability = next((c for c in capabilities if c.name == recommendation.capability_name), None)
        if capability is None:
            raise CapabilityNotFoundError(recommendation.capability_name)

        correlation_id = str(uuid.uuid4())
        room_id = str(uuid.uuid4())

        try:
            await self.host.ensure_execution_context(room_id, self.world.world_id)
            await self.host.dispatch(
                correlation_id, recommendation.trigger_phrase, capability.name, room_id
            )
            outcome = self.registry.get(correlation_id)
        finally:
            await self.world.cleanup([room_id])

        executed_at = utcnow()

        if outcome is None:
            await self._fail(recommendation_id, NO_RESULT_ERROR, ErrorKind.EXECUTION, executed_at)
            return

        if outcome.success:
            await self.repository.mark_completed(
                recommendation_id, build_result(outcome, executed_at), executed_at
            )
            worker_logger.log_status_transition(
                recommendation_id,
                RecommendationStatus.EXECUTING.value,
                RecommendationStatus.COMPLETED.value,
                {"correlation_id": correlation_id}
            )
            return

        await self._fail(
            recommendation_id,
            extract_error_message(outcome, DEFAULT_EXECUTION_ERROR),
            ErrorKind.EXECUTION,
            executed_at
        )

    async def _fail(self, recommendation_id: str, error: str, kind: ErrorKind, executed_at=None) -> None:
        await self.repository.mark_failed(recommendation_id, error, kind, executed_at or utcnow())
        worker_logger.log_status_transition(
            recommendation_id,
            RecommendationStatus.EXECUTING.value,
            RecommendationStatus.FAILED.value,
            {"error": error, "error_kind": kind.value}
        )
