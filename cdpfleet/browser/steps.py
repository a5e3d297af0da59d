"""
StepExecutor - runs an agent's task steps against a page.

Each step type has one handler. Handlers write into a shared payload dict; the
executor times every step and keeps a StepRecord history for the outcome.
"""
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiofiles

from ..errors import TaskError
from ..logging_config import get_logger
from .models import (
    CaptureArtifact,
    ExtractStats,
    ExtractText,
    Navigate,
    StepRecord,
    StepType,
    TaskStep,
)
from .provider import Page

logger = get_logger("cdpfleet.browser.steps")

STATS_SCRIPT = """() => ({
    url: window.location.href,
    links: document.querySelectorAll('a').length,
    images: document.querySelectorAll('img').length
})"""


class StepExecutor:
    """Executes task steps in order, stopping at the first failure."""

    def __init__(self, page: Page, agent_name: str = "", artifact_dir: Optional[Path] = None):
        self.page = page
        self.agent_name = agent_name
        self.artifact_dir = Path(artifact_dir) if artifact_dir else None
        self.payload: Dict[str, Any] = {}
        self.artifact: Optional[bytes] = None
        self.records: List[StepRecord] = []
        self._handlers: Dict[StepType, Callable[[Any], Awaitable[None]]] = {
            StepType.NAVIGATE: self._navigate,
            StepType.EXTRACT_TEXT: self._extract_text,
            StepType.EXTRACT_STATS: self._extract_stats,
            StepType.CAPTURE_ARTIFACT: self._capture_artifact,
        }

    async def run(self, steps: Sequence[TaskStep]) -> Dict[str, Any]:
        for step in steps:
            await self.execute(step)
        return self.payload

    async def execute(self, step: TaskStep):
        handler = self._handlers.get(step.step_type)
        if handler is None:
            raise TaskError(str(step.step_type), "no handler registered")

        params = step.to_dict()
        params.pop("type", None)
        record = StepRecord(step_type=step.step_type, params=params)
        start = time.monotonic()
        try:
            await handler(step)
        except Exception as e:
            record.error = str(e) or e.__class__.__name__
            raise TaskError(step.step_type.value, record.error) from e
        finally:
            record.duration_ms = (time.monotonic() - start) * 1000
            self.records.append(record)
        logger.debug(f"[{self.agent_name}] {step.step_type.value} done in {record.duration_ms:.0f}ms")

    # ==================== Handlers ====================

    async def _navigate(self, step: Navigate):
        response = await self.page.goto(step.url, wait_until=step.wait_until)
        self.payload["url"] = self.page.url
        self.payload["status"] = response.status if response else None
        self.payload["title"] = await self.page.title()

    async def _extract_text(self, step: ExtractText):
        text = await self.page.locator(step.selector).first.text_content()
        self.payload.setdefault("texts", {})[step.result_key] = text

    async def _extract_stats(self, step: ExtractStats):
        self.payload["stats"] = await self.page.evaluate(STATS_SCRIPT)

    async def _capture_artifact(self, step: CaptureArtifact):
        options: Dict[str, Any] = {"type": step.image_type, "full_page": step.full_page}
        if step.quality is not None:
            options["quality"] = step.quality
        data = await self.page.screenshot(**options)
        self.artifact = data
        self.payload["artifact_size"] = len(data)

        if step.path:
            path = Path(step.path)
            if self.artifact_dir and not path.is_absolute():
                path = self.artifact_dir / path
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
            self.payload["artifact_path"] = str(path)
