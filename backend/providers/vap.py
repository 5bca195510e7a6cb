"""
VAP image generation tasks.

Without an API key the provider runs in trial mode, which uses the public
trial endpoints (a few images per day, no video).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

import config

from .base import (
    PollResult,
    ProviderError,
    ProviderSubmissionError,
    Sizing,
    TaskHandle,
    TaskProvider,
    TaskStatus,
)
from .http import HttpProviderMixin

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    'pending': TaskStatus.PENDING,
    'queued': TaskStatus.PENDING,
    'processing': TaskStatus.PROCESSING,
    'running': TaskStatus.PROCESSING,
    'completed': TaskStatus.COMPLETED,
    'failed': TaskStatus.FAILED,
}


class VapImageProvider(HttpProviderMixin, TaskProvider):
    name = 'vap'

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = config.VAP_API_KEY if api_key is None else api_key
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        self._init_http(base_url or config.VAP_BASE_URL, headers=headers, transport=transport)

        if self.trial_mode:
            logger.warning("VAP running in trial mode (limited images per day); set VAP_API_KEY for full access")

    @property
    def trial_mode(self) -> bool:
        return not self.api_key

    async def submit(
        self,
        prompt: str,
        sizing: Sizing,
        extras: Optional[Dict[str, Any]] = None,
    ) -> TaskHandle:
        extras = dict(extras or {})
        if not prompt or not prompt.strip():
            raise ProviderSubmissionError("Prompt is required for image generation")

        if self.trial_mode:
            return await self._submit_trial(prompt)

        params: Dict[str, Any] = {
            'description': prompt,
            'aspect_ratio': sizing.ratio,
            'width': sizing.width,
            'height': sizing.height,
        }
        params.update(extras)
        data = await self._request_json(
            'POST', '/tasks',
            error_class=ProviderSubmissionError,
            json={'type': 'image', 'params': params},
        )
        task_id = data.get('task_id')
        if not task_id:
            raise ProviderSubmissionError(f"VAP did not return a task id: {data}", payload=data)

        cost = data.get('estimated_cost')
        return TaskHandle(
            id=str(task_id),
            poll_target=f'/tasks/{task_id}',
            provider=self.name,
            cost=float(cost) if cost is not None else None,
        )

    async def _submit_trial(self, prompt: str) -> TaskHandle:
        try:
            data = await self._request_json(
                'POST', '/trial/generate',
                error_class=ProviderSubmissionError,
                json={'prompt': prompt},
            )
        except ProviderSubmissionError as exc:
            if exc.status_code == 429:
                raise ProviderSubmissionError(
                    "Daily trial limit reached. Set VAP_API_KEY for unlimited access.",
                    status_code=429,
                ) from exc
            raise

        task_id = data.get('task_id')
        if not task_id:
            raise ProviderSubmissionError(f"VAP trial did not return a task id: {data}", payload=data)

        logger.info("VAP trial task %s created (%s remaining today)", task_id, data.get('remaining'))
        return TaskHandle(
            id=str(task_id),
            poll_target=f'/trial/status/{task_id}',
            provider=self.name,
            meta={'trial': True, 'remaining': data.get('remaining')},
        )

    async def poll(self, handle: TaskHandle) -> PollResult:
        try:
            data = await self._request_json('GET', handle.poll_target)
        except ProviderError as exc:
            if exc.status_code == 404:
                # Freshly created tasks can take a moment to become visible
                return PollResult(status=TaskStatus.PENDING)
            raise

        status = _STATUS_MAP.get(str(data.get('status', '')).lower(), TaskStatus.PROCESSING)
        if status == TaskStatus.FAILED:
            return PollResult(status=status, error=data.get('error') or 'Task failed')

        if status != TaskStatus.COMPLETED:
            return PollResult(status=status, progress=data.get('progress'))

        if handle.meta.get('trial'):
            locator = data.get('image_url')
        else:
            result = data.get('result') or {}
            locator = result.get('output_url') or result.get('image_url')
        return PollResult(status=status, result_locator=locator, cost=handle.cost)
