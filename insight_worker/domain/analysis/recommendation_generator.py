import asyncio
import uuid
from typing import Dict, List, Optional
import structlog

from insight_worker.domain.capability.relevance_selector import RelevanceSelector
from insight_worker.domain.models import (
    AnalysisSections, Capability, Priority, Recommendation,
    RecommendationDraft, RecommendationStatus, utcnow
)
from insight_worker.domain.ports import InferenceService, ModelSize
from insight_worker.domain.prompts import (
    recommendation_prompt, select_relevant_actions_prompt
)

logger = structlog.get_logger(__name__)

RECOMMENDATION_TEMPERATURE = 0.2


class RecommendationGenerator:
    """Selects relevant ACTION capabilities per group, then drafts one recommendation per selection"""

    def __init__(self, inference: InferenceService, selector: Optional[RelevanceSelector] = None):
        self.inference = inference
        self.selector = selector or RelevanceSelector(inference)

    async def generate(
        self,
        analysis_id: str,
        analysis: AnalysisSections,
        action_by_type: Dict[str, List[Capability]],
    ) -> List[Recommendation]:
        groups = await asyncio.gather(*(
            self._generate_for_group(analysis_id, analysis, sub_type, capabilities)
            for sub_type, capabilities in action_by_type.items()
        ))

        recommendations = [rec for group in groups for rec in group]
        logger.info("recommendations_generated", analysis_id=analysis_id, count=len(recommendations))
        return recommendations

    async def _generate_for_group(
        self,
        analysis_id: str,
        analysis: AnalysisSections,
        sub_type: str,
        capabilities: List[Capability],
    ) -> List[Recommendation]:
        selected = await self.selector.select_group(
            sub_type,
            capabilities,
            select_relevant_actions_prompt(sub_type, capabilities, analysis),
        )
        if not selected:
            return []

        drafts = await asyncio.gather(
            *(self._draft(analysis_id, analysis, capability) for capability in selected)
        )
        return [d for d in drafts if d is not None]

    async def _draft(
        self,
        analysis_id: str,
        analysis: AnalysisSections,
        capability: Capability,
    ) -> Optional[Recommendation]:
        try:
            draft: RecommendationDraft = await self.inference.infer(
                recommendation_prompt(capability, analysis),
                schema=RecommendationDraft,
                temperature=RECOMMENDATION_TEMPERATURE,
                model_size=ModelSize.SMALL,
            )

            params = {entry.key: entry.value for entry in draft.params} or None

            return Recommendation(
                id=str(uuid.uuid4()),
                analysis_id=analysis_id,
                capability_name=capability.name,
                owner_name=capability.owner_name,
                priority=Priority(draft.priority),
                reasoning=draft.reasoning,
                confidence=draft.confidence,
                trigger_phrase=draft.trigger_phrase.strip(),
                params=params,
                estimated_impact=draft.estimated_impact,
                estimated_gas=draft.estimated_gas,
                status=RecommendationStatus.PENDING,
                created_at=utcnow()
            )

        except Exception as e:
            logger.error("recommendation_draft_failed", capability=capability.name, error=str(e))
            return None
