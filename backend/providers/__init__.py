from .base import (
    PollPolicy,
    PollResult,
    ProviderError,
    ProviderSubmissionError,
    ProviderTimeoutError,
    Sizing,
    TaskHandle,
    TaskProvider,
    TaskStatus,
)
from .factory import ProviderFactory
from .lifecycle import BatchTask, TaskBatch, TaskLifecycle, TaskOutcome, TaskRequest
from .llm import AnthropicProvider, LLMResponse, TextGenerationProvider
from .piapi import PiApiVideoProvider
from .vap import VapImageProvider

__all__ = [
    'AnthropicProvider',
    'BatchTask',
    'LLMResponse',
    'PiApiVideoProvider',
    'PollPolicy',
    'PollResult',
    'ProviderError',
    'ProviderFactory',
    'ProviderSubmissionError',
    'ProviderTimeoutError',
    'Sizing',
    'TaskBatch',
    'TaskHandle',
    'TaskLifecycle',
    'TaskOutcome',
    'TaskProvider',
    'TaskRequest',
    'TaskStatus',
    'TextGenerationProvider',
    'VapImageProvider',
]
