"""
Tests for the multi-agent orchestrator: fan-out, isolation, ordering and
resource release.
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from cdpfleet.browser.models import AgentDescriptor, Failure, Navigate, Success, default_steps
from cdpfleet.errors import InvalidConfiguration
from cdpfleet.orchestrator import Orchestrator, run_agents, validate

from fakes import FakeProvider


def _agents(count: int, url: str = "https://example.com"):
    return [
        AgentDescriptor(name=f"Agent-{i + 1}", endpoint=f":{9222 + i}", steps=default_steps(url))
        for i in range(count)
    ]


class TestValidate:
    def test_empty_rejected(self):
        with pytest.raises(InvalidConfiguration, match="no agents"):
            validate([])

    def test_duplicates_rejected(self):
        agents = _agents(2) + [AgentDescriptor(name="Agent-1", endpoint=":9300")]
        with pytest.raises(InvalidConfiguration, match="Agent-1"):
            validate(agents)

    def test_returns_tuple(self):
        agents = _agents(2)
        assert validate(agents) == tuple(agents)


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_all_succeed(self):
        provider = FakeProvider()
        report = await Orchestrator(provider).run(_agents(3))
        assert len(report.outcomes) == 3
        assert report.summary.success_count == 3
        assert report.summary.failure_count == 0
        assert all(isinstance(o, Success) for o in report.outcomes)

    @pytest.mark.asyncio
    async def test_outcomes_index_aligned_with_input(self):
        agents = _agents(5)
        report = await Orchestrator(FakeProvider()).run(agents)
        assert [o.agent_name for o in report.outcomes] == [a.name for a in agents]

    @pytest.mark.asyncio
    async def test_order_independent_of_completion_order(self):
        agents = _agents(3)
        # the first agent finishes last
        provider = FakeProvider(delays={
            "http://localhost:9222": 0.06,
            "http://localhost:9223": 0.03,
            "http://localhost:9224": 0.0,
        })
        finished = []
        orchestrator = Orchestrator(provider)
        orchestrator.add_outcome_callback(lambda index, outcome: finished.append(outcome.agent_name))
        report = await orchestrator.run(agents)
        assert finished == ["Agent-3", "Agent-2", "Agent-1"]
        assert [o.agent_name for o in report.outcomes] == ["Agent-1", "Agent-2", "Agent-3"]

    @pytest.mark.asyncio
    async def test_units_run_concurrently(self):
        agents = _agents(4)
        provider = FakeProvider(delays={a.endpoint: 0.1 for a in agents})
        report = await Orchestrator(provider).run(agents)
        assert report.summary.success_count == 4
        # four sequential runs would take at least 400ms
        assert report.summary.elapsed_ms < 350

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_siblings(self):
        agents = _agents(4)
        provider = FakeProvider(unreachable={agents[2].endpoint})
        report = await Orchestrator(provider).run(agents)
        assert [o.ok for o in report.outcomes] == [True, True, False, True]
        assert isinstance(report.outcomes[2], Failure)
        assert report.outcomes[2].agent_name == "Agent-3"
        assert all(o.payload["title"] == "Example Domain" for o in report.successes)
        assert report.summary.success_count == 3
        assert report.summary.failure_count == 1

    @pytest.mark.asyncio
    async def test_every_connection_released_exactly_once(self):
        agents = _agents(5)
        provider = FakeProvider(
            unreachable={agents[0].endpoint},
            fail_goto={agents[1].endpoint},
            delays={agents[2].endpoint: 5.0},
        )
        report = await Orchestrator(provider, timeout=0.1).run(agents)
        assert [o.ok for o in report.outcomes] == [False, False, False, True, True]
        assert provider.open_count == 4
        assert provider.close_count == 4
        assert all(c.close_count == 1 for c in provider.connections)

    @pytest.mark.asyncio
    async def test_slow_unit_does_not_block_fast_ones(self):
        agents = _agents(2)
        provider = FakeProvider(delays={agents[0].endpoint: 0.1})
        finished = []
        orchestrator = Orchestrator(provider)
        orchestrator.add_outcome_callback(lambda index, outcome: finished.append(index))
        await orchestrator.run(agents)
        assert finished == [1, 0]

    @pytest.mark.asyncio
    async def test_empty_set_makes_no_provider_calls(self):
        provider = MagicMock()
        provider.connect = AsyncMock()
        provider.start = AsyncMock()
        provider.stop = AsyncMock()
        with pytest.raises(InvalidConfiguration):
            await Orchestrator(provider).run([])
        provider.connect.assert_not_called()
        provider.start.assert_not_called()
        provider.stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_names_make_no_provider_calls(self):
        provider = FakeProvider()
        agents = [
            AgentDescriptor(name="A", endpoint=":9222", steps=default_steps("https://example.com")),
            AgentDescriptor(name="A", endpoint=":9223", steps=default_steps("https://example.com")),
        ]
        with pytest.raises(InvalidConfiguration, match="duplicate"):
            await Orchestrator(provider).run(agents)
        assert provider.connect_calls == []

    @pytest.mark.asyncio
    async def test_provider_stopped_after_run(self):
        provider = FakeProvider()
        await Orchestrator(provider).run(_agents(2))
        assert provider.stop_calls == 1

    @pytest.mark.asyncio
    async def test_provider_stop_error_keeps_report(self):
        provider = FakeProvider(stop_error=RuntimeError("driver already gone"))
        report = await Orchestrator(provider).run(_agents(2))
        assert provider.stop_calls == 1
        assert report.summary.success_count == 2
        assert provider.close_count == 2

    @pytest.mark.asyncio
    async def test_async_callback_and_callback_errors(self):
        seen = []

        async def record(index, outcome):
            seen.append((index, outcome.agent_name))

        def explode(index, outcome):
            raise RuntimeError("display broke")

        orchestrator = Orchestrator(FakeProvider())
        orchestrator.add_outcome_callback(explode)
        orchestrator.add_outcome_callback(record)
        report = await orchestrator.run(_agents(2))
        assert sorted(seen) == [(0, "Agent-1"), (1, "Agent-2")]
        assert report.summary.success_count == 2

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(InvalidConfiguration):
            Orchestrator(FakeProvider(), timeout=0)

    @pytest.mark.asyncio
    async def test_run_agents_helper(self):
        provider = FakeProvider()
        report = await run_agents(_agents(1), provider=provider)
        assert report.summary.total == 1


class TestScenario:
    @pytest.mark.asyncio
    async def test_one_reachable_one_refused(self):
        agents = [
            AgentDescriptor(name="A", endpoint=":9222", steps=(Navigate(url="https://example.com"),)),
            AgentDescriptor(name="B", endpoint=":9999", steps=(Navigate(url="https://x.com"),)),
        ]
        provider = FakeProvider(unreachable={"http://localhost:9999"})
        report = await Orchestrator(provider).run(agents)

        first, second = report.outcomes
        assert isinstance(first, Success)
        assert first.agent_name == "A"
        assert first.payload["title"] == "Example Domain"
        assert isinstance(second, Failure)
        assert second.agent_name == "B"
        assert second.error == "connection refused"
        assert report.summary.success_count == 1
        assert report.summary.failure_count == 1
        assert provider.connect_calls == ["http://localhost:9222", "http://localhost:9999"]
        assert provider.close_count == 1
