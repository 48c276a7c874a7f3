import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import structlog

from insight_worker.domain.errors import CapabilityNotFoundError, InsightWorkerError
from insight_worker.domain.models import Capability, CapabilityOutcome, utcnow
from insight_worker.domain.ports import HostEnvironment, ResultRegistry

logger = structlog.get_logger(__name__)

HandlerReturn = Union[CapabilityOutcome, Dict[str, Any], None]
CapabilityHandler = Callable[[str], Union[HandlerReturn, Awaitable[HandlerReturn]]]
ContextProvider = Callable[[], Union[Any, Awaitable[Any]]]


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class InMemoryResultRegistry(ResultRegistry):
    """Outcomes keyed by correlation id"""

    def __init__(self):
        self._outcomes: Dict[str, CapabilityOutcome] = {}

    def put(self, correlation_id: str, outcome: CapabilityOutcome) -> None:
        self._outcomes[correlation_id] = outcome

    def get(self, correlation_id: str) -> Optional[CapabilityOutcome]:
        return self._outcomes.get(correlation_id)

    def __len__(self) -> int:
        return len(self._outcomes)


class LocalHostEnvironment(HostEnvironment):
    """In-process host: Python callables registered as capabilities and context providers"""

    def __init__(self, registry: Optional[InMemoryResultRegistry] = None):
        self.registry = registry or InMemoryResultRegistry()
        self._capabilities: Dict[str, Capability] = {}
        self._handlers: Dict[str, CapabilityHandler] = {}
        self._providers: Dict[str, ContextProvider] = {}
        self.worlds: Dict[str, Dict[str, Any]] = {}
        self.rooms: Dict[str, Dict[str, Any]] = {}
        self.dispatched: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    def register_capability(self, capability: Capability, handler: CapabilityHandler) -> None:
        self._capabilities[capability.name] = capability
        self._handlers[capability.name] = handler
        logger.debug("capability_registered", capability=capability.name)

    def register_provider(self, name: str, provider: ContextProvider) -> None:
        self._providers[name] = provider

    async def list_capabilities(self) -> List[Capability]:
        return list(self._capabilities.values())

    async def compose_context(self) -> Dict[str, Any]:
        """Every provider at once; a failing provider is logged and left out"""

        names = list(self._providers)
        payloads = await asyncio.gather(
            *(_maybe_await(self._providers[name]()) for name in names),
            return_exceptions=True
        )

        composed = {}
        for name, payload in zip(names, payloads):
            if isinstance(payload, Exception):
                logger.warning("provider_failed", provider=name, error=str(payload))
                continue
            composed[name] = payload
        return composed

    async def dispatch(
        self,
        correlation_id: str,
        trigger_text: str,
        capability_name: str,
        context_id: str,
    ) -> None:
        if context_id not in self.rooms:
            raise InsightWorkerError(f"Execution context {context_id} not found")

        handler = self._handlers.get(capability_name)
        if handler is None:
            raise CapabilityNotFoundError(capability_name)

        self.dispatched.append({
            "correlation_id": correlation_id,
            "capability_name": capability_name,
            "trigger_text": trigger_text,
            "context_id": context_id,
            "at": utcnow(),
        })

        try:
            returned = await _maybe_await(handler(trigger_text))
        except Exception as e:
            logger.warning("capability_handler_raised", capability=capability_name, error=str(e))
            self.registry.put(correlation_id, CapabilityOutcome(success=False, error=e))
            return

        if returned is None:
            return
        if isinstance(returned, dict):
            returned = CapabilityOutcome.model_validate(returned)
        self.registry.put(correlation_id, returned)

    async def get_world(self, world_id: str) -> Optional[Dict[str, Any]]:
        return self.worlds.get(world_id)

    async def ensure_world(self, world_id: str, name: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        async with self._lock:
            self.worlds.setdefault(world_id, {"id": world_id, "name": name, "metadata": metadata or {}})

    async def ensure_execution_context(self, context_id: str, world_id: str) -> None:
        async with self._lock:
            if world_id not in self.worlds:
                raise InsightWorkerError(f"World {world_id} not found")
            self.rooms.setdefault(context_id, {"id": context_id, "world_id": world_id})

    async def delete_execution_context(self, context_id: str) -> None:
        async with self._lock:
            self.rooms.pop(context_id, None)
