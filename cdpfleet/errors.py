"""
Exception hierarchy for cdpfleet.

Per-agent errors (BrowserConnectionError, TaskError) never leave an execution
unit; they are recorded as Failure outcomes. InvalidConfiguration is raised to
the caller before any agent is dispatched.
"""
from typing import Optional


class CdpFleetError(Exception):
    """Base exception for cdpfleet errors"""
    pass


class BrowserConnectionError(CdpFleetError, ConnectionError):
    """CDP endpoint unreachable or handshake failed"""
    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"could not connect to {endpoint}: {reason}")


class TaskError(CdpFleetError):
    """A task step failed after the connection was established"""
    def __init__(self, step: str, reason: str):
        self.step = step
        self.reason = reason
        super().__init__(f"{step} failed: {reason}")


class InvalidConfiguration(CdpFleetError):
    """The agent descriptor set cannot be run"""
    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)
