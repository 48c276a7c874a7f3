"""Exception hierarchy for the analysis pipeline and decision state machine"""


class InsightWorkerError(Exception):
    """Base error"""


class RecommendationNotFoundError(InsightWorkerError):
    def __init__(self, recommendation_id: str):
        super().__init__(f"Recommendation {recommendation_id} not found")
        self.recommendation_id = recommendation_id


class InvalidTransitionError(InsightWorkerError):
    """Status change not allowed from the recommendation's current status"""

    def __init__(self, recommendation_id: str, current: str, target: str):
        super().__init__(
            f"Recommendation {recommendation_id} cannot move from {current} to {target}"
        )
        self.recommendation_id = recommendation_id
        self.current = current
        self.target = target


class CapabilityNotFoundError(InsightWorkerError):
    def __init__(self, capability_name: str):
        super().__init__(f"Capability {capability_name} not found in host environment")
        self.capability_name = capability_name


class InvalidDecisionError(InsightWorkerError):
    """Decision verdict other than accept/reject"""
