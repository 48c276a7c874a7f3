import asyncio
import time
import uuid
from typing import List, Optional, Tuple
import structlog

from insight_worker.domain.models import (
    Capability, CapabilityOutcome, ExecutionResult, extract_error_message
)
from insight_worker.domain.ports import (
    HostEnvironment, InferenceService, ModelSize, ResultRegistry
)
from insight_worker.domain.prompts import data_trigger_prompt
from insight_worker.infrastructure.observability.logging import worker_logger

logger = structlog.get_logger(__name__)

TRIGGER_TEMPERATURE = 0.2
NO_RESULT_ERROR = "No result returned from capability"
DEFAULT_EXECUTION_ERROR = "Capability execution failed"


def map_outcome(capability_name: str, outcome: Optional[CapabilityOutcome]) -> ExecutionResult:
    """Turn a registry outcome (or its absence) into an ExecutionResult"""

    if outcome is None:
        return ExecutionResult(capability_name=capability_name, success=False, error=NO_RESULT_ERROR)

    success = bool(outcome.success)
    data = outcome.data if outcome.data is not None else outcome.values
    error = extract_error_message(outcome, DEFAULT_EXECUTION_ERROR)

    return ExecutionResult(
        capability_name=capability_name,
        success=success,
        data=data,
        error=None if success else error
    )


class CapabilityExecutor:
    """Runs DATA capabilities in ephemeral rooms inside the agent's world"""

    def __init__(
        self,
        host: HostEnvironment,
        registry: ResultRegistry,
        inference: InferenceService,
        world_id: str,
    ):
        self.host = host
        self.registry = registry
        self.inference = inference
        self.world_id = world_id

    async def execute(self, capabilities: List[Capability]) -> Tuple[List[ExecutionResult], List[str]]:
        """Returns the results plus every room id created, for cleanup by the caller"""

        if not capabilities:
            logger.info("no_capabilities_to_execute")
            return [], []

        room_ids: List[str] = []
        results = await asyncio.gather(
            *(self._execute_one(capability, room_ids) for capability in capabilities)
        )

        logger.info(
            "capabilities_executed",
            total=len(results),
            successful=sum(1 for r in results if r.success)
        )
        return list(results), room_ids

    async def _execute_one(self, capability: Capability, room_ids: List[str]) -> ExecutionResult:
        correlation_id = str(uuid.uuid4())
        start = time.perf_counter()

        try:
            trigger = await self.inference.infer(
                data_trigger_prompt(capability),
                temperature=TRIGGER_TEMPERATURE,
                model_size=ModelSize.SMALL,
            )
            trigger_text = str(trigger).strip()

            room_id = str(uuid.uuid4())
            room_ids.append(room_id)
            await self.host.ensure_execution_context(room_id, self.world_id)

            await self.host.dispatch(correlation_id, trigger_text, capability.name, room_id)
            result = map_outcome(capability.name, self.registry.get(correlation_id))

        except Exception as e:
            logger.error("capability_execution_error", capability=capability.name, error=str(e))
            result = ExecutionResult(capability_name=capability.name, success=False, error=str(e))

        worker_logger.log_capability_execution(
            capability_name=capability.name,
            correlation_id=correlation_id,
            success=result.success,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            error=result.error
        )
        return result
