from typing import List
import structlog

from insight_worker.domain.models import ContextSnapshot, utcnow
from insight_worker.domain.ports import HostEnvironment

logger = structlog.get_logger(__name__)


class ContextCollector:
    """Snapshots every context provider through one host composition call"""

    def __init__(self, host: HostEnvironment):
        self.host = host

    async def collect(self) -> List[ContextSnapshot]:
        composed = await self.host.compose_context()
        collected_at = utcnow()

        snapshots = [
            ContextSnapshot(provider_name=name, data=payload, timestamp=collected_at)
            for name, payload in (composed or {}).items()
        ]

        logger.info("context_collected", providers=[s.provider_name for s in snapshots])
        return snapshots
