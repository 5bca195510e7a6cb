"""
Provider Factory
Creates task providers by name and caches one instance per name.
"""
import logging
from typing import Dict, Optional, Type

from .base import TaskProvider
from .llm import AnthropicProvider, TextGenerationProvider
from .piapi import PiApiVideoProvider
from .vap import VapImageProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """
    Registry of task providers.

    Batch requests and workflow services name a provider (``vap``, ``piapi``);
    the factory builds it on first use and hands out the same instance after
    that so its HTTP connection pool is shared.
    """

    PROVIDER_MAP: Dict[str, Type[TaskProvider]] = {
        VapImageProvider.name: VapImageProvider,
        PiApiVideoProvider.name: PiApiVideoProvider,
    }

    def __init__(self):
        self._providers: Dict[str, TaskProvider] = {}
        self._text_provider: Optional[TextGenerationProvider] = None

    def register(self, name: str, provider: TaskProvider) -> None:
        """Install a ready-made provider instance under ``name``."""
        self._providers[name] = provider

    def get(self, name: str) -> TaskProvider:
        if name in self._providers:
            return self._providers[name]

        provider_class = self.PROVIDER_MAP.get(name)
        if provider_class is None:
            raise ValueError(f"Unknown provider: {name}")

        provider = provider_class()
        self._providers[name] = provider
        logger.debug("Created provider %s", name)
        return provider

    def text_provider(self) -> TextGenerationProvider:
        if self._text_provider is None:
            self._text_provider = AnthropicProvider()
        return self._text_provider

    def set_text_provider(self, provider: TextGenerationProvider) -> None:
        self._text_provider = provider

    def available(self) -> list:
        return sorted(set(self.PROVIDER_MAP) | set(self._providers))

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
        if self._text_provider is not None:
            await self._text_provider.aclose()
