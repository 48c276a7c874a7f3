import asyncio
from typing import Dict, List, Optional
import structlog

from insight_worker.domain.models import (
    Capability, CapabilityCategory, CapabilityCategorization,
    Classification, ClassificationResult
)
from insight_worker.domain.ports import InferenceService, ModelSize
from insight_worker.domain.prompts import capability_categorization_prompt

logger = structlog.get_logger(__name__)

CLASSIFICATION_TEMPERATURE = 0.1


class CapabilityClassifier:
    """Labels each capability DATA or ACTION with a sub-type, one inference call per capability"""

    def __init__(self, inference: InferenceService):
        self.inference = inference

    async def classify(self, capabilities: List[Capability]) -> ClassificationResult:
        if not capabilities:
            return ClassificationResult()

        logger.info("classifying_capabilities", count=len(capabilities))

        outcomes = await asyncio.gather(
            *(self._classify_one(capability) for capability in capabilities)
        )
        classifications = [c for c in outcomes if c is not None]

        data_by_type: Dict[str, List[Capability]] = {}
        action_by_type: Dict[str, List[Capability]] = {}

        for classification in classifications:
            target = data_by_type if classification.category == CapabilityCategory.DATA else action_by_type
            target.setdefault(classification.sub_type, []).append(classification.capability)

        logger.info(
            "capabilities_classified",
            total=len(capabilities),
            classified=len(classifications),
            data_types=sorted(data_by_type),
            action_types=sorted(action_by_type)
        )

        return ClassificationResult(
            data_by_type=data_by_type,
            action_by_type=action_by_type,
            classifications=classifications
        )

    async def _classify_one(self, capability: Capability) -> Optional[Classification]:
        try:
            reply = await self.inference.infer(
                capability_categorization_prompt(capability),
                schema=CapabilityCategorization,
                temperature=CLASSIFICATION_TEMPERATURE,
                model_size=ModelSize.SMALL,
            )
        except Exception as e:
            logger.warning("capability_classification_failed", capability=capability.name, error=str(e))
            return None

        return Classification(
            capability=capability,
            category=reply.category,
            sub_type=reply.sub_type.strip() or "OTHER",
            confidence=reply.confidence,
            reasoning=reply.reasoning,
            owner_name=capability.owner_name
        )
