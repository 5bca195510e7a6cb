"""
Batch job service.

Fans a list of generation requests out to one provider and keeps refreshing
the batch in the background until every task has settled. The job record
mirrors the batch after each refresh.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import config
from asset_store import AssetStore
from database.job_store import JobRecord, JobStatus, JobStore
from providers.base import PollPolicy, Sizing
from providers.factory import ProviderFactory
from providers.lifecycle import TaskBatch, TaskRequest
from utils.async_helpers import LoopRunner
from workflow_engine.node_configs import ASPECT_RATIO_SIZES, DEFAULT_IMAGE_SIZE

logger = logging.getLogger(__name__)


def build_requests(
    items: List[Dict[str, Any]],
    aspect_ratio: str,
    extras: Optional[Dict[str, Any]] = None,
) -> List[TaskRequest]:
    """
    Turn request items into task requests.

    Each item needs a ``prompt``; ``imageUrl`` (or ``url``) is forwarded as
    the provider's ``image_url``. Raises ValueError for a malformed item.
    """
    width, height = ASPECT_RATIO_SIZES.get(aspect_ratio, DEFAULT_IMAGE_SIZE)
    sizing = Sizing(width, height, aspect_ratio)

    requests = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"Item {position} must be an object")
        prompt = item.get('prompt')
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError(f"Item {position} has no prompt")

        item_extras = dict(extras or {})
        image_url = item.get('imageUrl') or item.get('url')
        meta: Dict[str, Any] = {}
        if image_url:
            item_extras['image_url'] = image_url
            meta['sourceUrl'] = image_url
        requests.append(TaskRequest(prompt=prompt, sizing=sizing, extras=item_extras, meta=meta))
    return requests


class BatchJobService:
    """Starts and tracks provider batches as background jobs."""

    KIND = 'batch'

    def __init__(
        self,
        job_store: JobStore,
        provider_factory: ProviderFactory,
        runner: LoopRunner,
        asset_store: Optional[AssetStore] = None,
        policy: Optional[PollPolicy] = None,
        refresh_interval: float = config.BATCH_REFRESH_INTERVAL,
    ):
        self.job_store = job_store
        self.provider_factory = provider_factory
        self.runner = runner
        self.asset_store = asset_store
        self.policy = policy or PollPolicy.from_config()
        self.refresh_interval = refresh_interval

    def start(
        self,
        provider_name: str,
        items: List[Dict[str, Any]],
        aspect_ratio: str = '9:16',
        extras: Optional[Dict[str, Any]] = None,
    ) -> JobRecord:
        provider = self.provider_factory.get(provider_name)
        requests = build_requests(items, aspect_ratio, extras)

        job = self.job_store.create(self.KIND, {
            'provider': provider_name,
            'aspectRatio': aspect_ratio,
            'items': items,
            'extras': extras or {},
        })
        batch = TaskBatch(provider, self.asset_store, self.policy, batch_id=job.id)
        self.runner.submit(self.run_batch, job.id, batch, requests)
        logger.info("Started %s batch %s with %d items", provider_name, job.id, len(requests))
        return job

    def _publish(self, job_id: str, batch: TaskBatch) -> None:
        total = len(batch.tasks)
        settled = sum(1 for task in batch.tasks if task.status.is_terminal)
        progress = int(round(settled / total * 100)) if total else 100
        self.job_store.update(job_id, progress=progress, results=batch.to_dict())

    async def run_batch(self, job_id: str, batch: TaskBatch, requests: List[TaskRequest]) -> None:
        self.job_store.update(job_id, status=JobStatus.EXECUTING)
        try:
            await batch.submit_all(requests)
            self._publish(job_id, batch)

            while batch.status == 'running':
                await asyncio.sleep(self.refresh_interval)
                await batch.refresh()
                self._publish(job_id, batch)
        except Exception as exc:
            logger.exception("Batch job %s failed", job_id)
            self.job_store.update(job_id, status=JobStatus.FAILED, error=str(exc))
            return

        status = batch.status
        if status == 'failed':
            self.job_store.update(job_id, status=JobStatus.FAILED, error="No task in the batch completed")
        else:
            self.job_store.update(job_id, status=JobStatus.COMPLETED)
        logger.info("Batch job %s finished: %s %s", job_id, status, batch.counts())
