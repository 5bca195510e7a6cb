"""
Shared pytest fixtures and provider fakes.
"""
import io
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

from providers.base import (
    PollPolicy,
    PollResult,
    ProviderError,
    ProviderSubmissionError,
    Sizing,
    TaskHandle,
    TaskProvider,
    TaskStatus,
)
from providers.llm import LLMResponse, TextGenerationProvider


class FakeImageProvider(TaskProvider):
    """
    Scriptable task provider.

    ``behaviours`` maps a prompt substring to what its task does:
    ``reject`` (submission error), ``explode`` (unexpected error on submit),
    ``fail``, ``hang`` (never finishes), ``crash`` (unexpected error on every
    poll) or ``flaky`` (one poll error before completing). Anything else completes
    after ``polls_to_complete`` polls.
    """

    name = 'fake'

    def __init__(self, behaviours: Optional[Dict[str, str]] = None, polls_to_complete: int = 1,
                 cost: float = 0.05):
        self.behaviours = behaviours or {}
        self.polls_to_complete = polls_to_complete
        self.cost = cost
        self.submitted: List[Dict[str, Any]] = []
        self.polls: Dict[str, int] = {}
        self._modes: Dict[str, str] = {}

    def _mode_for(self, prompt: str) -> str:
        for marker, mode in self.behaviours.items():
            if marker in prompt:
                return mode
        return 'complete'

    async def submit(self, prompt: str, sizing: Sizing, extras: Optional[Dict[str, Any]] = None) -> TaskHandle:
        mode = self._mode_for(prompt)
        if mode == 'reject':
            raise ProviderSubmissionError("Prompt rejected", status_code=400)
        if mode == 'explode':
            raise KeyError('task_id')

        task_id = f"task-{len(self.submitted)}"
        self.submitted.append({'prompt': prompt, 'sizing': sizing, 'extras': dict(extras or {})})
        self._modes[task_id] = mode
        return TaskHandle(id=task_id, poll_target=task_id, provider=self.name, cost=self.cost)

    async def poll(self, handle: TaskHandle) -> PollResult:
        count = self.polls[handle.id] = self.polls.get(handle.id, 0) + 1
        mode = self._modes[handle.id]

        if mode == 'crash':
            raise RuntimeError("unexpected payload shape")
        if mode == 'hang':
            return PollResult(status=TaskStatus.PROCESSING, progress=0.5)
        if mode == 'fail':
            return PollResult(status=TaskStatus.FAILED, error="Generation failed")
        if mode == 'flaky' and count == 1:
            raise ProviderError("connection reset")
        if mode != 'flaky' and count < self.polls_to_complete:
            return PollResult(status=TaskStatus.PROCESSING, progress=count / self.polls_to_complete)
        return PollResult(
            status=TaskStatus.COMPLETED,
            result_locator=f"https://cdn.test/{handle.id}.png",
            cost=handle.cost,
        )


class FakeTextProvider(TextGenerationProvider):
    """Returns canned completions in order and records every call."""

    def __init__(self, responses: Optional[List[str]] = None, error: Optional[str] = None):
        self.responses = list(responses or [])
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, prompt: str, system: str = '', model: Optional[str] = None,
                       max_tokens: int = 2048) -> LLMResponse:
        self.calls.append({'prompt': prompt, 'system': system, 'model': model, 'max_tokens': max_tokens})
        if self.error:
            raise ProviderError(self.error, status_code=500)
        content = self.responses.pop(0) if self.responses else ''
        return LLMResponse(content=content, model=model or 'fake')


def png_bytes(width: int = 64, height: int = 32, color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new('RGB', (width, height), color).save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def fast_policy():
    return PollPolicy(interval=0, max_attempts=3)


@pytest.fixture
def image_provider():
    return FakeImageProvider()


@pytest.fixture
def text_provider():
    return FakeTextProvider()
