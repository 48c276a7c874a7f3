import asyncio

import pytest
import pytest_asyncio

from insight_worker.domain.decision.decision_processor import (
    DecisionProcessor, classify_failure, parse_decisions
)
from insight_worker.domain.errors import InvalidDecisionError
from insight_worker.domain.models import (
    Decision, DecisionVerdict, ErrorKind, RecommendationStatus
)

from tests.conftest import make_analysis, make_capability, make_recommendation


@pytest_asyncio.fixture
async def processor(repository, host, world):
    await repository.save_analysis(make_analysis("a-1"), [
        make_recommendation("a-1", "swap", "dex:SWAP_TOKENS"),
        make_recommendation("a-1", "transfer", "bank:TRANSFER_FUNDS"),
        make_recommendation("a-1", "ghost", "ghost:NOT_INSTALLED"),
        make_recommendation("a-1", "idle", "dex:SWAP_TOKENS"),
    ])
    return DecisionProcessor(repository, host, host.registry, world)


def accept(action_id):
    return Decision(action_id=action_id, decision=DecisionVerdict.ACCEPT)


def reject(action_id):
    return Decision(action_id=action_id, decision=DecisionVerdict.REJECT)


class TestAccept:

    @pytest.mark.asyncio
    async def test_successful_execution_completes(self, processor, repository, host):
        outcome = await processor.process([accept("swap")])

        assert [r.id for r in outcome.accepted] == ["swap"]
        assert outcome.accepted[0].status == RecommendationStatus.EXECUTING
        assert outcome.accepted[0].decided_at is not None

        await processor.drain()

        final = await repository.get_recommendation("swap")
        assert final.status == RecommendationStatus.COMPLETED
        assert final.result.text == "Swapped 0.5 ETH"
        assert final.result.data == {"tx": "0xabc"}
        assert final.executed_at is not None
        assert final.error is None
        assert host.dispatched[0]["trigger_text"] == "run dex:SWAP_TOKENS"

    @pytest.mark.asyncio
    async def test_missing_capability_is_initialization_failure(self, processor, repository, host):
        await processor.process([accept("ghost")])
        await processor.drain()

        final = await repository.get_recommendation("ghost")
        assert final.status == RecommendationStatus.FAILED
        assert final.error_kind == ErrorKind.INITIALIZATION
        assert "ghost:NOT_INSTALLED" in final.error
        assert final.executed_at is not None
        assert host.dispatched == []

    @pytest.mark.asyncio
    async def test_capability_failure_is_execution_failure(self, processor, repository):
        await processor.process([accept("transfer")])
        await processor.drain()

        final = await repository.get_recommendation("transfer")
        assert final.status == RecommendationStatus.FAILED
        assert final.error_kind == ErrorKind.EXECUTION
        assert "Insufficient" in final.error

    @pytest.mark.asyncio
    async def test_no_result_is_execution_failure(self, processor, repository, host):
        async def silent(trigger):
            return None

        host.register_capability(make_capability("dex:SWAP_TOKENS"), silent)

        await processor.process([accept("swap")])
        await processor.drain()

        final = await repository.get_recommendation("swap")
        assert final.status == RecommendationStatus.FAILED
        assert final.error_kind == ErrorKind.EXECUTION
        assert final.error == "No result returned from capability"

    @pytest.mark.asyncio
    async def test_cancelled_execution_ends_failed(self, processor, repository, host):
        async def slow(trigger):
            await asyncio.sleep(5)
            return {"success": True, "text": "too late"}

        host.register_capability(make_capability("dex:SWAP_TOKENS"), slow)

        await processor.process([accept("swap")])
        await processor.drain(timeout=0.05)

        final = await repository.get_recommendation("swap")
        assert final.status == RecommendationStatus.FAILED
        assert final.error_kind == ErrorKind.EXECUTION
        assert final.error == "Execution cancelled before completion"
        assert final.executed_at is not None
        assert host.rooms == {}

    @pytest.mark.asyncio
    async def test_execution_room_is_cleaned_up(self, processor, host):
        await processor.process([accept("swap")])
        await processor.drain()

        assert len(host.dispatched) == 1
        assert host.rooms == {}

    @pytest.mark.asyncio
    async def test_double_accept_dispatches_once(self, processor, host):
        outcome = await processor.process([accept("swap"), accept("swap")])
        await processor.drain()

        assert [r.id for r in outcome.accepted] == ["swap"]
        assert len(host.dispatched) == 1


class TestReject:

    @pytest.mark.asyncio
    async def test_reject_sets_status_without_dispatch(self, processor, repository, host):
        outcome = await processor.process([reject("idle")])

        assert [ack.action_id for ack in outcome.rejected] == ["idle"]
        assert outcome.rejected[0].status == RecommendationStatus.REJECTED

        final = await repository.get_recommendation("idle")
        assert final.status == RecommendationStatus.REJECTED
        assert final.decided_at is not None
        assert final.executed_at is None
        assert host.dispatched == []


class TestBatch:

    @pytest.mark.asyncio
    async def test_failing_decision_is_skipped(self, processor):
        outcome = await processor.process([reject("unknown"), reject("idle"), accept("missing"), accept("swap")])
        await processor.drain()

        assert [ack.action_id for ack in outcome.rejected] == ["idle"]
        assert [r.id for r in outcome.accepted] == ["swap"]

    @pytest.mark.asyncio
    async def test_rejected_recommendation_cannot_be_accepted(self, processor, repository):
        await processor.process([reject("idle")])

        outcome = await processor.process([accept("idle")])

        assert outcome.accepted == []
        assert (await repository.get_recommendation("idle")).status == RecommendationStatus.REJECTED


class TestHelpers:

    def test_parse_decisions(self):
        decisions = parse_decisions([
            {"actionId": "a", "decision": "accept"},
            {"actionId": "b", "decision": "reject"},
        ])

        assert [d.decision for d in decisions] == [DecisionVerdict.ACCEPT, DecisionVerdict.REJECT]

    def test_parse_rejects_unknown_verdict(self):
        with pytest.raises(InvalidDecisionError):
            parse_decisions([{"actionId": "a", "decision": "maybe"}])

    def test_failure_kind_heuristic(self):
        assert classify_failure("World abc not found") == ErrorKind.INITIALIZATION
        assert classify_failure("connection reset") == ErrorKind.EXECUTION
