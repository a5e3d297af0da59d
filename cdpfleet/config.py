"""
Agent fleet configuration.

Descriptor sets come from a JSON agents file, from command line options, from
the CDP_URL environment variable, or from the built-in default fleet.

Agents file format:

    {
      "agents": [
        {"name": "Agent-1", "endpoint": ":9222", "url": "https://example.com"},
        {"name": "Agent-2", "endpoint": "localhost:9223",
         "steps": [{"type": "navigate", "url": "https://httpbin.org"},
                   {"type": "extract_text", "selector": "h1", "key": "heading"}]}
      ]
    }
"""
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .browser.models import AgentDescriptor, default_steps, step_from_dict
from .errors import InvalidConfiguration

DEFAULT_CDP_URL = "http://localhost:9222"

DEFAULT_FLEET = [
    {"name": "Agent-1", "port": 9222, "url": "https://example.com"},
    {"name": "Agent-2", "port": 9223, "url": "https://httpbin.org"},
    {"name": "Agent-3", "port": 9224, "url": "https://news.ycombinator.com"},
]


# ==================== Settings ====================

@dataclass
class Settings:
    """Runtime settings read from the environment."""
    cdp_url: str = DEFAULT_CDP_URL
    timeout: Optional[float] = None
    artifact_dir: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        timeout = None
        raw_timeout = env.get("CDPFLEET_TIMEOUT", "").strip()
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise InvalidConfiguration(f"CDPFLEET_TIMEOUT is not a number: {raw_timeout!r}")
            if timeout <= 0:
                raise InvalidConfiguration("CDPFLEET_TIMEOUT must be positive")
        artifact_dir = env.get("CDPFLEET_ARTIFACT_DIR") or None
        return cls(
            cdp_url=env.get("CDP_URL") or DEFAULT_CDP_URL,
            timeout=timeout,
            artifact_dir=Path(artifact_dir) if artifact_dir else None,
        )


# ==================== Agents File ====================

class AgentModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    endpoint: str = Field(..., min_length=1, max_length=2000)
    url: Optional[str] = Field(None, min_length=1, max_length=2000)
    steps: Optional[List[Dict[str, Any]]] = None

    @model_validator(mode="after")
    def check_url_or_steps(self):
        if self.url is None and not self.steps:
            raise ValueError("agent needs either 'url' or 'steps'")
        return self

    def to_descriptor(self) -> AgentDescriptor:
        if self.steps:
            steps = tuple(step_from_dict(s) for s in self.steps)
        else:
            steps = default_steps(self.url)
        return AgentDescriptor(name=self.name, endpoint=self.endpoint, steps=steps)


class AgentsFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    agents: List[AgentModel] = Field(default_factory=list)


def parse_agents(data: Any, source: Optional[str] = None) -> List[AgentDescriptor]:
    """Validate agents-file data and turn it into descriptors."""
    if isinstance(data, list):
        data = {"agents": data}
    try:
        model = AgentsFileModel.model_validate(data)
    except ValidationError as e:
        raise InvalidConfiguration(_describe_validation_error(e), source=source)
    try:
        return [agent.to_descriptor() for agent in model.agents]
    except InvalidConfiguration as e:
        raise InvalidConfiguration(str(e), source=source)


def load_agents_file(path) -> List[AgentDescriptor]:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise InvalidConfiguration("agents file not found", source=str(path))
    except json.JSONDecodeError as e:
        raise InvalidConfiguration(f"invalid JSON: {e}", source=str(path))
    return parse_agents(data, source=str(path))


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(problems)


# ==================== Command Line Agents ====================

def parse_agent_option(value: str, default_url: Optional[str] = None) -> AgentDescriptor:
    """
    Parse NAME=ENDPOINT[=URL].

    The URL part may itself contain '=' (query strings), so only the first two
    separators split.
    """
    parts = value.split("=", 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise InvalidConfiguration(f"expected NAME=ENDPOINT[=URL], got {value!r}")
    name, endpoint = parts[0], parts[1]
    url = parts[2] if len(parts) == 3 and parts[2] else default_url
    if not url:
        raise InvalidConfiguration(f"agent {name!r} has no target URL")
    return AgentDescriptor(name=name, endpoint=endpoint, steps=default_steps(url))


def agents_from_ports(ports: Sequence[int], url: str, host: str = "localhost") -> List[AgentDescriptor]:
    """One agent per port, all visiting the same URL."""
    return [
        AgentDescriptor(name=f"Agent-{i + 1}", endpoint=f"{host}:{port}", steps=default_steps(url))
        for i, port in enumerate(ports)
    ]


def default_agents() -> List[AgentDescriptor]:
    return [
        AgentDescriptor(name=a["name"], endpoint=f":{a['port']}", steps=default_steps(a["url"]))
        for a in DEFAULT_FLEET
    ]
