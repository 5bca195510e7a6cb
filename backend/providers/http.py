"""
Shared httpx plumbing for provider adapters.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type

import httpx

from .base import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of a provider's error text."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase

    if isinstance(payload, dict):
        error = payload.get('error')
        if isinstance(error, dict):
            error = error.get('message')
        message = error or payload.get('message') or payload.get('detail')
        if message:
            return str(message)
    return str(payload)[:300]


class HttpProviderMixin:
    """
    Lazily created ``httpx.AsyncClient`` plus JSON request helper.

    Tests pass an ``httpx.MockTransport`` through ``transport``.
    """

    base_url: str = ''

    def _init_http(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self._headers = dict(headers or {})
        self._transport = transport
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request_json(
        self,
        method: str,
        path: str,
        error_class: Type[ProviderError] = ProviderError,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise error_class(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            message = _error_message(response)
            raise error_class(
                f"{method} {path} returned {response.status_code}: {message}",
                status_code=response.status_code,
                payload=message,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise error_class(f"{method} {path} returned invalid JSON") from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
