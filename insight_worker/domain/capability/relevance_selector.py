import asyncio
from typing import Dict, List
import structlog

from insight_worker.domain.models import Capability, ContextSnapshot, RelevantCapabilitySelection
from insight_worker.domain.ports import InferenceService, ModelSize
from insight_worker.domain.prompts import select_relevant_data_prompt

logger = structlog.get_logger(__name__)

SELECTION_TEMPERATURE = 0.3


class RelevanceSelector:
    """Narrows each sub-type group to the capabilities an inference call judges relevant"""

    def __init__(self, inference: InferenceService):
        self.inference = inference

    async def select(
        self,
        data_by_type: Dict[str, List[Capability]],
        context: List[ContextSnapshot],
    ) -> List[Capability]:
        """Relevant DATA capabilities across all groups; a failing group contributes nothing"""

        groups = await asyncio.gather(*(
            self.select_group(sub_type, capabilities, select_relevant_data_prompt(sub_type, capabilities, context))
            for sub_type, capabilities in data_by_type.items()
        ))

        selected = [capability for group in groups for capability in group]
        logger.info("data_capabilities_selected", selected=[c.name for c in selected])
        return selected

    async def select_group(
        self,
        sub_type: str,
        capabilities: List[Capability],
        prompt: str,
    ) -> List[Capability]:
        if not capabilities:
            return []

        try:
            reply = await self.inference.infer(
                prompt,
                schema=RelevantCapabilitySelection,
                temperature=SELECTION_TEMPERATURE,
                model_size=ModelSize.SMALL,
            )
        except Exception as e:
            logger.warning("relevance_selection_failed", sub_type=sub_type, error=str(e))
            return []

        wanted = set(reply.relevant_capabilities)
        chosen = [capability for capability in capabilities if capability.name in wanted]

        logger.debug(
            "relevance_group_selected",
            sub_type=sub_type,
            chosen=[c.name for c in chosen],
            reasoning=reply.reasoning
        )
        return chosen
