from typing import List
import structlog

from insight_worker.domain.models import AnalysisSections, ContextSnapshot, ExecutionResult
from insight_worker.domain.ports import InferenceService, ModelSize
from insight_worker.domain.prompts import insight_prompt

logger = structlog.get_logger(__name__)

INSIGHT_TEMPERATURE = 0.7


def derive_capabilities_used(
    results: List[ExecutionResult],
    context: List[ContextSnapshot],
) -> List[str]:
    """Owner prefixes of successful results followed by provider names, first occurrence wins"""

    names = [
        result.capability_name.split(":")[0] or "unknown"
        for result in results if result.success
    ]
    names.extend(snapshot.provider_name for snapshot in context)
    return list(dict.fromkeys(names))


class InsightGenerator:
    """Synthesizes the four-section analysis; failures propagate"""

    def __init__(self, inference: InferenceService):
        self.inference = inference

    async def generate(
        self,
        results: List[ExecutionResult],
        context: List[ContextSnapshot],
    ) -> AnalysisSections:
        capabilities_used = derive_capabilities_used(results, context)
        logger.info("generating_insight", results=len(results), sources=capabilities_used)

        sections = await self.inference.infer(
            insight_prompt(results, context, capabilities_used),
            schema=AnalysisSections,
            temperature=INSIGHT_TEMPERATURE,
            model_size=ModelSize.LARGE,
        )

        logger.info("insight_generated")
        return sections
