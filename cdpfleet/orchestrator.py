"""
Orchestrator - runs every agent of a descriptor set concurrently and joins the
outcomes into a Report.

Usage
-----
    provider = PlaywrightProvider()
    report = await Orchestrator(provider).run(agents)
    for outcome in report.outcomes:
        print(outcome.agent_name, outcome.ok)
"""
import asyncio
import inspect
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .browser.models import AgentDescriptor, Outcome, Report
from .browser.provider import ConnectionProvider
from .browser.unit import ExecutionUnit
from .errors import InvalidConfiguration
from .logging_config import get_logger

logger = get_logger("cdpfleet.orchestrator")


def validate(descriptors: Sequence[AgentDescriptor]) -> tuple:
    """Check a descriptor set is runnable and freeze it into a tuple."""
    agents = tuple(descriptors)
    if not agents:
        raise InvalidConfiguration("no agents to run")

    seen = set()
    duplicates = []
    for agent in agents:
        if agent.name in seen and agent.name not in duplicates:
            duplicates.append(agent.name)
        seen.add(agent.name)
    if duplicates:
        raise InvalidConfiguration(f"duplicate agent names: {', '.join(duplicates)}")
    return agents


class Orchestrator:
    """Fans out one ExecutionUnit per agent and fans their outcomes back in."""

    def __init__(
        self,
        provider: ConnectionProvider,
        timeout: Optional[float] = None,
        artifact_dir: Optional[Path] = None,
    ):
        if timeout is not None and timeout <= 0:
            raise InvalidConfiguration(f"timeout must be positive, got {timeout}")
        self.provider = provider
        self.timeout = timeout
        self.artifact_dir = artifact_dir
        self._outcome_callbacks: List[Callable] = []

    def add_outcome_callback(self, callback: Callable):
        self._outcome_callbacks.append(callback)

    async def _notify_outcome(self, index: int, outcome: Outcome):
        for callback in self._outcome_callbacks:
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(index, outcome)
                else:
                    callback(index, outcome)
            except Exception as e:
                logger.error(f"Outcome callback error: {e}")

    async def _run_unit(self, index: int, agent: AgentDescriptor) -> Outcome:
        unit = ExecutionUnit(agent, self.provider, timeout=self.timeout, artifact_dir=self.artifact_dir)
        outcome = await unit.run()
        await self._notify_outcome(index, outcome)
        return outcome

    async def _stop_provider(self):
        try:
            await self.provider.stop()
        except Exception as e:
            logger.error(f"Error stopping connection provider: {e}")

    async def run(self, descriptors: Sequence[AgentDescriptor]) -> Report:
        agents = validate(descriptors)

        started_at = datetime.now().isoformat()
        start = time.monotonic()
        logger.info_with("Dispatching agents", count=len(agents))

        # the provider starts lazily on the first connect; a startup error
        # surfaces as a Failure of each agent rather than of the run
        try:
            # units never raise, so gather returns one outcome per agent in input order
            outcomes = await asyncio.gather(
                *(self._run_unit(i, agent) for i, agent in enumerate(agents))
            )
        finally:
            await self._stop_provider()

        elapsed_ms = (time.monotonic() - start) * 1000
        report = Report.build(list(outcomes), elapsed_ms=elapsed_ms, started_at=started_at)
        logger.info_with(
            "Run finished",
            success=report.summary.success_count,
            failure=report.summary.failure_count,
            elapsed_ms=round(elapsed_ms),
        )
        return report


async def run_agents(
    descriptors: Sequence[AgentDescriptor],
    provider: Optional[ConnectionProvider] = None,
    timeout: Optional[float] = None,
    artifact_dir: Optional[Path] = None,
) -> Report:
    """Run a descriptor set with a Playwright provider unless one is given."""
    if provider is None:
        from .browser.provider import PlaywrightProvider
        provider = PlaywrightProvider()
    return await Orchestrator(provider, timeout=timeout, artifact_dir=artifact_dir).run(descriptors)
