"""
PiAPI Kling image-to-video tasks.

PiAPI wraps every response in ``{code, message, data}``; a non-200 ``code``
is a refusal even when the HTTP status is 200.
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
    'staged': TaskStatus.PENDING,
    'processing': TaskStatus.PROCESSING,
    'completed': TaskStatus.COMPLETED,
    'failed': TaskStatus.FAILED,
}


def _video_url(output: Dict[str, Any]) -> Optional[str]:
    if output.get('video_url'):
        return output['video_url']
    if output.get('video'):
        return output['video']
    works = output.get('works') or []
    if works:
        return ((works[0] or {}).get('video') or {}).get('resource')
    return None


class PiApiVideoProvider(HttpProviderMixin, TaskProvider):
    """
    Animates a still image into a short clip.

    ``extras`` must carry ``image_url``; relative URLs are resolved against
    the public base URL so the provider can fetch them.
    """

    name = 'piapi'

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = config.PIAPI_API_KEY if api_key is None else api_key
        self.public_base_url = (
            config.PUBLIC_BASE_URL if public_base_url is None else public_base_url
        ).rstrip('/')
        self._init_http(
            base_url or config.PIAPI_BASE_URL,
            headers={'X-API-Key': self.api_key, 'Content-Type': 'application/json'},
            transport=transport,
        )

    def _public_url(self, url: str) -> str:
        if url.startswith('/') and self.public_base_url:
            return f'{self.public_base_url}{url}'
        return url

    async def submit(
        self,
        prompt: str,
        sizing: Sizing,
        extras: Optional[Dict[str, Any]] = None,
    ) -> TaskHandle:
        extras = dict(extras or {})
        if not self.api_key:
            raise ProviderSubmissionError("PIAPI_API_KEY not configured")
        image_url = extras.pop('image_url', None)
        if not image_url:
            raise ProviderSubmissionError("image_url is required for image-to-video")

        body = {
            'model': 'kling',
            'task_type': 'video_generation',
            'input': {
                'prompt': prompt,
                'negative_prompt': extras.pop('negative_prompt', ''),
                'cfg_scale': extras.pop('cfg_scale', 0.5),
                'duration': extras.pop('duration', 5),
                'aspect_ratio': sizing.ratio,
                'mode': extras.pop('mode', 'std'),
                'version': extras.pop('version', '3.0'),
                'image_url': self._public_url(image_url),
                **extras,
            },
            'config': {
                'service_mode': 'public',
                'webhook_config': {'endpoint': '', 'secret': ''},
            },
        }
        data = await self._request_json(
            'POST', '/task', error_class=ProviderSubmissionError, json=body
        )
        if data.get('code') != 200:
            raise ProviderSubmissionError(data.get('message') or 'API error', payload=data)

        task_id = (data.get('data') or {}).get('task_id')
        if not task_id:
            raise ProviderSubmissionError(f"PiAPI did not return a task id: {data}", payload=data)

        logger.info("PiAPI task %s started", task_id)
        return TaskHandle(id=str(task_id), poll_target=f'/task/{task_id}', provider=self.name)

    async def poll(self, handle: TaskHandle) -> PollResult:
        data = await self._request_json('GET', handle.poll_target)
        if data.get('code') != 200:
            raise ProviderError(data.get('message') or 'Status check failed', payload=data)

        task = data.get('data') or {}
        status = _STATUS_MAP.get(str(task.get('status', '')).lower(), TaskStatus.PROCESSING)

        if status == TaskStatus.FAILED:
            message = (task.get('error') or {}).get('message') or 'Generation failed'
            return PollResult(status=status, error=message)

        if status == TaskStatus.COMPLETED:
            locator = _video_url(task.get('output') or {})
            if locator:
                return PollResult(status=status, result_locator=locator)
            # Completed without a video yet; keep polling
            return PollResult(status=TaskStatus.PROCESSING)

        return PollResult(status=status, progress=(task.get('output') or {}).get('progress'))
