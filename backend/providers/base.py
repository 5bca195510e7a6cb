"""
Base types for external generation providers.

A provider turns a prompt into a long-running remote task: ``submit`` returns
a ``TaskHandle`` and ``poll`` reports its current state. Everything that
waits for a task to finish lives in ``providers.lifecycle`` so the providers
themselves stay thin request/response adapters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from math import gcd
from typing import Any, Dict, Optional


class TaskStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    TIMEOUT = 'timeout'

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.TIMEOUT)


class ProviderError(Exception):
    """Base error for provider calls, carrying the provider's own message."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class ProviderSubmissionError(ProviderError):
    """The provider refused or failed to accept a task."""


class ProviderTimeoutError(ProviderError):
    """A task did not reach a terminal state within its poll budget."""


@dataclass(frozen=True)
class Sizing:
    width: int
    height: int
    aspect_ratio: Optional[str] = None

    @property
    def ratio(self) -> str:
        """Explicit aspect ratio, or the reduced width:height ratio."""
        if self.aspect_ratio:
            return self.aspect_ratio
        divisor = gcd(self.width, self.height) or 1
        return f'{self.width // divisor}:{self.height // divisor}'

    def __str__(self) -> str:
        return f'{self.width}x{self.height}'


@dataclass(frozen=True)
class TaskHandle:
    id: str
    poll_target: str
    provider: str
    cost: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PollResult:
    status: TaskStatus
    progress: Optional[float] = None
    result_locator: Optional[str] = None
    error: Optional[str] = None
    cost: Optional[float] = None


@dataclass(frozen=True)
class PollPolicy:
    """
    How long to keep polling a task.

    The defaults poll every three seconds up to sixty times. ``backoff``
    multiplies the interval after each attempt, capped at ``max_interval``;
    ``deadline`` bounds the total wait in seconds regardless of attempts left.
    """

    interval: float = 3.0
    max_attempts: int = 60
    backoff: float = 1.0
    max_interval: float = 30.0
    deadline: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        delay = self.interval * (self.backoff ** attempt)
        return min(delay, self.max_interval)

    @classmethod
    def from_config(cls) -> 'PollPolicy':
        import config

        return cls(
            interval=config.POLL_INTERVAL,
            max_attempts=config.POLL_MAX_ATTEMPTS,
            backoff=config.POLL_BACKOFF,
            max_interval=config.POLL_MAX_INTERVAL,
        )


class TaskProvider(ABC):
    """Submit/poll adapter for one generation backend."""

    name: str = 'provider'

    @abstractmethod
    async def submit(
        self,
        prompt: str,
        sizing: Sizing,
        extras: Optional[Dict[str, Any]] = None,
    ) -> TaskHandle:
        """Create a remote task. Raises ProviderSubmissionError on refusal."""

    @abstractmethod
    async def poll(self, handle: TaskHandle) -> PollResult:
        """Report the task's current state without side effects."""

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
