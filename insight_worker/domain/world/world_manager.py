import uuid
from typing import Iterable
import structlog

from insight_worker.domain.ports import HostEnvironment

logger = structlog.get_logger(__name__)

WORLD_NAMESPACE = uuid.UUID("6f1c2a4e-93b7-4d0a-8f51-2c7e9b1d5a30")


def derive_world_id(agent_id: str) -> str:
    """Same agent id, same world id, across restarts"""
    return str(uuid.uuid5(WORLD_NAMESPACE, f"world:{agent_id}"))


class WorldManager:
    """Owns the agent's durable world and cleans up ephemeral rooms"""

    def __init__(self, host: HostEnvironment, agent_id: str, agent_name: str = "insight-worker"):
        self.host = host
        self.agent_id = agent_id
        self.agent_name = agent_name
        self.world_id = derive_world_id(agent_id)

    async def ensure_agent_world(self) -> str:
        existing = await self.host.get_world(self.world_id)
        if existing:
            logger.debug("agent_world_exists", world_id=self.world_id)
            return self.world_id

        await self.host.ensure_world(
            self.world_id,
            name=f"{self.agent_name} world",
            metadata={"agent_id": self.agent_id, "purpose": "analysis"}
        )
        logger.info("agent_world_created", world_id=self.world_id, agent_id=self.agent_id)
        return self.world_id

    async def cleanup(self, room_ids: Iterable[str]) -> int:
        """Best-effort room deletion; returns how many were removed"""

        removed = 0
        for room_id in room_ids:
            try:
                await self.host.delete_execution_context(room_id)
                removed += 1
            except Exception as e:
                logger.warning("room_cleanup_failed", room_id=room_id, error=str(e))

        if removed:
            logger.debug("rooms_cleaned_up", count=removed)
        return removed
