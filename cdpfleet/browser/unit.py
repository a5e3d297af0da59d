"""
ExecutionUnit - one agent's isolated run, from connection to Outcome.
"""
import asyncio
import time
from pathlib import Path
from typing import Optional, Tuple

from ..errors import BrowserConnectionError, TaskError
from ..logging_config import get_logger
from .models import AgentDescriptor, Failure, Outcome, Success
from .provider import BrowserContext, Connection, ConnectionProvider, Page
from .steps import StepExecutor

logger = get_logger("cdpfleet.browser.unit")


async def resolve_page(connection: Connection) -> Tuple[BrowserContext, Page]:
    """Reuse the first existing context and page, creating them only if absent."""
    contexts = connection.contexts
    if contexts:
        context = contexts[0]
    else:
        context = await connection.new_context()
        logger.debug("Created new browser context")

    pages = context.pages
    if pages:
        page = pages[0]
    else:
        page = await context.new_page()
        logger.debug("Created new page")
    return context, page


class ExecutionUnit:
    """
    Runs one agent end to end and never raises.

    The connection is opened inside run() and closed exactly once on every exit
    path. Any error, including a timeout, becomes a Failure outcome.
    """

    def __init__(
        self,
        descriptor: AgentDescriptor,
        provider: ConnectionProvider,
        timeout: Optional[float] = None,
        artifact_dir: Optional[Path] = None,
    ):
        self.descriptor = descriptor
        self.provider = provider
        self.timeout = timeout
        self.artifact_dir = artifact_dir
        self._connection: Optional[Connection] = None
        self._executor: Optional[StepExecutor] = None
        self.browser_version: Optional[str] = None

    async def run(self) -> Outcome:
        name = self.descriptor.name
        logger.info(f"[{name}] Starting...")
        start = time.monotonic()

        try:
            if self.timeout is not None:
                await asyncio.wait_for(self._drive(), timeout=self.timeout)
            else:
                await self._drive()
        except asyncio.TimeoutError:
            outcome = self._failure(f"timed out after {self.timeout:g}s", "TimeoutError", start)
        except BrowserConnectionError as e:
            outcome = self._failure(e.reason, e.__class__.__name__, start)
        except TaskError as e:
            outcome = self._failure(str(e), e.__class__.__name__, start)
        except Exception as e:
            outcome = self._failure(str(e) or e.__class__.__name__, e.__class__.__name__, start)
        else:
            outcome = Success(
                agent_name=name,
                payload=dict(self._executor.payload),
                artifact=self._executor.artifact,
                duration_ms=(time.monotonic() - start) * 1000,
                steps=tuple(self._executor.records),
            )
            logger.info(f"[{name}] Completed: {outcome.payload.get('title', '')}")
        finally:
            await self._release()

        return outcome

    async def _drive(self):
        self._connection = await self.provider.connect(self.descriptor.endpoint)
        self.browser_version = getattr(self._connection, "version", None)
        _, page = await resolve_page(self._connection)
        self._executor = StepExecutor(page, agent_name=self.descriptor.name, artifact_dir=self.artifact_dir)
        await self._executor.run(self.descriptor.steps)

    async def _release(self):
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.error(f"[{self.descriptor.name}] Error closing connection: {e}")

    def _failure(self, message: str, error_type: str, start: float) -> Failure:
        logger.warning_with(
            f"[{self.descriptor.name}] Error: {message}",
            agent=self.descriptor.name,
            endpoint=self.descriptor.endpoint,
            error_type=error_type,
        )
        records = tuple(self._executor.records) if self._executor else ()
        return Failure(
            agent_name=self.descriptor.name,
            error=message,
            error_type=error_type,
            duration_ms=(time.monotonic() - start) * 1000,
            steps=records,
        )
