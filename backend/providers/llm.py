"""
Text generation providers used by Prompt nodes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

import config

from .base import ProviderError
from .http import HttpProviderMixin

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = '2023-06-01'


@dataclass
class LLMResponse:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ''
    raw_response: Any = None


class TextGenerationProvider(ABC):
    """Single-turn text completion backend."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: str = '',
        model: Optional[str] = None,
        max_tokens: int = 2048,
    ) -> LLMResponse:
        """Return the completion. Raises ProviderError on failure."""

    async def aclose(self) -> None:
        """Release network resources held by the provider."""


class AnthropicProvider(HttpProviderMixin, TextGenerationProvider):
    """Anthropic Messages API over httpx."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = config.ANTHROPIC_API_KEY if api_key is None else api_key
        self.default_model = default_model or config.DEFAULT_LLM_MODEL
        self._init_http(
            base_url or config.ANTHROPIC_BASE_URL,
            headers={
                'x-api-key': self.api_key,
                'anthropic-version': ANTHROPIC_VERSION,
                'content-type': 'application/json',
            },
            transport=transport,
            timeout=httpx.Timeout(120.0, connect=10.0),
        )

    async def generate(
        self,
        prompt: str,
        system: str = '',
        model: Optional[str] = None,
        max_tokens: int = 2048,
    ) -> LLMResponse:
        if not self.api_key:
            raise ProviderError("ANTHROPIC_API_KEY not configured")

        body: dict = {
            'model': model or self.default_model,
            'max_tokens': max_tokens,
            'messages': [{'role': 'user', 'content': prompt}],
        }
        if system:
            body['system'] = system

        data = await self._request_json('POST', '/messages', json=body)

        blocks = data.get('content') or []
        text = ''.join(block.get('text', '') for block in blocks if block.get('type') == 'text')
        usage = data.get('usage') or {}
        logger.debug(
            "Anthropic %s: %s in / %s out tokens",
            data.get('model'), usage.get('input_tokens'), usage.get('output_tokens'),
        )
        return LLMResponse(
            content=text,
            model=data.get('model', body['model']),
            input_tokens=usage.get('input_tokens', 0),
            output_tokens=usage.get('output_tokens', 0),
            stop_reason=data.get('stop_reason') or '',
            raw_response=data,
        )
