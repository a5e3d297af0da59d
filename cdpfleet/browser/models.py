"""
Browser agent data models.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Union

from ..errors import InvalidConfiguration


class StepType(Enum):
    NAVIGATE = "navigate"
    EXTRACT_TEXT = "extract_text"
    EXTRACT_STATS = "extract_stats"
    CAPTURE_ARTIFACT = "capture_artifact"


class OutcomeStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


# ==================== Task Steps ====================

# load states accepted by Playwright's page.goto
WAIT_UNTIL_STATES = ("load", "domcontentloaded", "networkidle", "commit")

@dataclass(frozen=True)
class Navigate:
    """Load a URL in the agent's page."""
    url: str
    wait_until: str = "load"

    step_type = StepType.NAVIGATE

    def __post_init__(self):
        if self.wait_until not in WAIT_UNTIL_STATES:
            raise InvalidConfiguration(
                f"wait_until must be one of {', '.join(WAIT_UNTIL_STATES)}, got {self.wait_until!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.step_type.value, "url": self.url, "wait_until": self.wait_until}


@dataclass(frozen=True)
class ExtractText:
    """Read the text content of the first element matching a selector."""
    selector: str
    key: Optional[str] = None

    step_type = StepType.EXTRACT_TEXT

    @property
    def result_key(self) -> str:
        return self.key or self.selector

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.step_type.value, "selector": self.selector, "key": self.key}


@dataclass(frozen=True)
class ExtractStats:
    """Count links and images on the current page."""

    step_type = StepType.EXTRACT_STATS

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.step_type.value}


@dataclass(frozen=True)
class CaptureArtifact:
    """Take a screenshot, optionally writing it to `path`."""
    path: Optional[str] = None
    image_type: str = "png"
    quality: Optional[int] = None
    full_page: bool = False

    step_type = StepType.CAPTURE_ARTIFACT

    def __post_init__(self):
        if self.image_type not in ("png", "jpeg"):
            raise InvalidConfiguration(f"unsupported image type: {self.image_type}")
        if self.quality is not None and self.image_type != "jpeg":
            raise InvalidConfiguration("quality is only supported for jpeg artifacts")
        if self.quality is not None and not 0 <= self.quality <= 100:
            raise InvalidConfiguration(f"quality must be between 0 and 100, got {self.quality}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.step_type.value,
            "path": self.path,
            "image_type": self.image_type,
            "quality": self.quality,
            "full_page": self.full_page,
        }


TaskStep = Union[Navigate, ExtractText, ExtractStats, CaptureArtifact]

_STEP_CLASSES = {
    StepType.NAVIGATE: Navigate,
    StepType.EXTRACT_TEXT: ExtractText,
    StepType.EXTRACT_STATS: ExtractStats,
    StepType.CAPTURE_ARTIFACT: CaptureArtifact,
}


def step_from_dict(data: Dict[str, Any]) -> TaskStep:
    """Build a task step from its dict form ({"type": ..., **params})."""
    data = data.copy()
    raw_type = data.pop("type", None)
    try:
        step_type = StepType(raw_type)
    except ValueError:
        raise InvalidConfiguration(f"unknown step type: {raw_type!r}")
    try:
        return _STEP_CLASSES[step_type](**data)
    except TypeError as e:
        raise InvalidConfiguration(f"bad parameters for {step_type.value} step: {e}")


def default_steps(url: str) -> Tuple[TaskStep, ...]:
    """Navigate to `url`, then grab a jpeg screenshot in memory."""
    return (Navigate(url=url), CaptureArtifact(image_type="jpeg", quality=80))


# ==================== Agents ====================

_PORT_ONLY = re.compile(r"^:?(\d{1,5})$")
_HOST_PORT = re.compile(r"^([A-Za-z0-9.\-]+|\[[0-9A-Fa-f:]+\]):(\d{1,5})$")


def normalize_endpoint(endpoint: str) -> str:
    """
    Turn a user-supplied endpoint into a CDP URL.

    ":9222" and "9222" mean localhost; "host:9222" gets an http scheme;
    http(s) and ws(s) URLs pass through unchanged.
    """
    endpoint = (endpoint or "").strip()
    if not endpoint:
        raise InvalidConfiguration("endpoint must not be empty")
    if endpoint.startswith(("http://", "https://", "ws://", "wss://")):
        return endpoint.rstrip("/")

    match = _PORT_ONLY.match(endpoint)
    if match:
        host, port = "localhost", match.group(1)
    else:
        match = _HOST_PORT.match(endpoint)
        if not match:
            raise InvalidConfiguration(f"invalid endpoint: {endpoint!r}")
        host, port = match.group(1), match.group(2)

    if not 0 < int(port) < 65536:
        raise InvalidConfiguration(f"invalid port in endpoint: {endpoint!r}")
    return f"http://{host}:{port}"


@dataclass(frozen=True)
class AgentDescriptor:
    """One agent: where to connect and what to do there."""
    name: str
    endpoint: str
    steps: Tuple[TaskStep, ...] = ()

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise InvalidConfiguration("agent name must not be empty")
        object.__setattr__(self, "endpoint", normalize_endpoint(self.endpoint))
        object.__setattr__(self, "steps", tuple(self.steps))

    @property
    def target_url(self) -> Optional[str]:
        for step in self.steps:
            if isinstance(step, Navigate):
                return step.url
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "endpoint": self.endpoint,
            "steps": [s.to_dict() for s in self.steps],
        }


# ==================== Outcomes ====================

@dataclass
class StepRecord:
    """An executed task step."""
    step_type: StepType
    params: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "step_type": self.step_type.value,
            "params": self.params,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class Success:
    agent_name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    artifact: Optional[bytes] = field(default=None, repr=False, compare=False)
    duration_ms: float = 0.0
    steps: Tuple[StepRecord, ...] = ()

    status = OutcomeStatus.SUCCESS

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            "agent": self.agent_name,
            "status": self.status.value,
            "payload": self.payload,
            "duration_ms": self.duration_ms,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class Failure:
    agent_name: str
    error: str
    error_type: str = "Exception"
    duration_ms: float = 0.0
    steps: Tuple[StepRecord, ...] = ()

    status = OutcomeStatus.FAILURE

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "agent": self.agent_name,
            "status": self.status.value,
            "error": self.error,
            "error_type": self.error_type,
            "duration_ms": self.duration_ms,
            "steps": [s.to_dict() for s in self.steps],
        }


Outcome = Union[Success, Failure]


@dataclass(frozen=True)
class ReportSummary:
    total: int
    success_count: int
    failure_count: int
    elapsed_ms: float

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "success": self.success_count,
            "failure": self.failure_count,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass(frozen=True)
class Report:
    """Outcomes in descriptor order, plus summary statistics."""
    outcomes: Tuple[Outcome, ...]
    summary: ReportSummary
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def build(cls, outcomes: List[Outcome], elapsed_ms: float, started_at: Optional[str] = None) -> "Report":
        outcomes = tuple(outcomes)
        successes = sum(1 for o in outcomes if o.ok)
        summary = ReportSummary(
            total=len(outcomes),
            success_count=successes,
            failure_count=len(outcomes) - successes,
            elapsed_ms=elapsed_ms,
        )
        if started_at is None:
            return cls(outcomes=outcomes, summary=summary)
        return cls(outcomes=outcomes, summary=summary, started_at=started_at)

    @property
    def successes(self) -> List[Success]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failures(self) -> List[Failure]:
        return [o for o in self.outcomes if not o.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "summary": self.summary.to_dict(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
