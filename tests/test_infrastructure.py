import json
import logging

import pytest
import structlog
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from insight_worker.domain.models import CapabilityOutcome
from insight_worker.domain.ports import ModelSize
from insight_worker.infrastructure.config.settings import WorkerSettings
from insight_worker.infrastructure.host.local_host import InMemoryResultRegistry, LocalHostEnvironment
from insight_worker.infrastructure.inference.langchain_inference import LangChainInference
from insight_worker.infrastructure.observability.logging import MetricsCollector, _processor_chain

from tests.conftest import make_capability


class TestSettings:

    def test_agent_id_derived_from_name(self, monkeypatch):
        monkeypatch.delenv("INSIGHT_WORKER_AGENT_ID", raising=False)

        first = WorkerSettings(agent_name="alpha")
        second = WorkerSettings(agent_name="alpha")

        assert first.agent_id == second.agent_id
        assert WorkerSettings(agent_name="beta").agent_id != first.agent_id

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("INSIGHT_WORKER_AGENT_ID", "agent-from-env")
        monkeypatch.setenv("INSIGHT_WORKER_MAX_LIST_LIMIT", "25")

        settings = WorkerSettings()

        assert settings.agent_id == "agent-from-env"
        assert settings.max_list_limit == 25

    def test_tracing_needs_keys(self):
        assert WorkerSettings(langfuse_enabled=True).tracing_enabled is False
        assert WorkerSettings(
            langfuse_enabled=True, langfuse_public_key="pk", langfuse_secret_key="sk"
        ).tracing_enabled is True


class TestLangChainInference:

    @pytest.mark.asyncio
    async def test_text_reply_is_stripped(self):
        inference = LangChainInference({
            ModelSize.SMALL: FakeListChatModel(responses=["  check my balance \n"]),
            ModelSize.LARGE: FakeListChatModel(responses=["unused"]),
        })

        reply = await inference.infer("prompt", temperature=0.2)

        assert reply == "check my balance"

    @pytest.mark.asyncio
    async def test_model_size_selects_model(self):
        inference = LangChainInference({
            ModelSize.SMALL: FakeListChatModel(responses=["small"]),
            ModelSize.LARGE: FakeListChatModel(responses=["large"]),
        })

        assert await inference.infer("prompt", model_size=ModelSize.LARGE) == "large"


class TestLocalHost:

    @pytest.mark.asyncio
    async def test_handler_exception_recorded_as_failed_outcome(self):
        host = LocalHostEnvironment()

        def explode(trigger):
            raise RuntimeError("handler crashed")

        host.register_capability(make_capability("x:DO"), explode)
        await host.ensure_world("w", "world")
        await host.ensure_execution_context("room", "w")

        await host.dispatch("corr-1", "do it", "x:DO", "room")

        outcome = host.registry.get("corr-1")
        assert outcome.success is False
        assert str(outcome.error) == "handler crashed"

    @pytest.mark.asyncio
    async def test_dispatch_requires_room(self):
        host = LocalHostEnvironment()
        host.register_capability(make_capability("x:DO"), lambda trigger: None)

        with pytest.raises(Exception, match="not found"):
            await host.dispatch("corr-1", "do it", "x:DO", "no-room")

    def test_registry_lookup(self):
        registry = InMemoryResultRegistry()
        registry.put("a", CapabilityOutcome(success=True))

        assert registry.get("a").success is True
        assert registry.get("b") is None
        assert len(registry) == 1


class TestMetricsCollector:

    def test_latency_summary(self):
        collector = MetricsCollector()
        collector.record_latency("stage.classify", 10.0)
        collector.record_latency("stage.classify", 30.0)
        collector.increment_counter("analysis.completed")

        summary = collector.get_metrics_summary()

        assert summary["latency.stage.classify"] == {"count": 2, "avg": 20.0, "min": 10.0, "max": 30.0}
        assert summary["analysis.completed"] == 1


class TestLogging:

    def test_run_context_is_merged_into_entries(self):
        event = {"event": "stage_transition"}

        with structlog.contextvars.bound_contextvars(analysis_id="a-1", agent_id="agent-1"):
            for processor in _processor_chain("json"):
                event = processor(logging.getLogger("insight_worker.test"), "warning", event)

        entry = json.loads(event)
        assert entry["analysis_id"] == "a-1"
        assert entry["agent_id"] == "agent-1"
        assert entry["level"] == "warning"
