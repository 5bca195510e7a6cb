"""
Submit, poll and persist loop shared by workflow nodes and batch jobs.

``TaskLifecycle`` drives one task to a terminal state and never raises for a
provider failure: every outcome, including an exhausted poll budget, comes
back as a ``TaskOutcome``. ``TaskBatch`` fans out many independent tasks and
advances them one refresh at a time so a route-level job can report
progress between refreshes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from utils.async_helpers import gather_with_concurrency

from .base import (
    PollPolicy,
    PollResult,
    ProviderError,
    ProviderTimeoutError,
    Sizing,
    TaskHandle,
    TaskProvider,
    TaskStatus,
)

if TYPE_CHECKING:
    from asset_store import AssetStore

logger = logging.getLogger(__name__)

# Concurrent submissions per batch
SUBMIT_CONCURRENCY = 4


@dataclass
class TaskOutcome:
    status: TaskStatus
    task_id: Optional[str] = None
    remote_url: Optional[str] = None
    local_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    persisted: bool = False
    cost: Optional[float] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def url(self) -> Optional[str]:
        return self.local_url or self.remote_url

    def to_node_outputs(self) -> Dict[str, Any]:
        """Output keys published by image generation nodes."""
        return {
            'imageUrl': self.url,
            'image_url': self.url,
            'remoteUrl': self.remote_url,
            'thumbnailUrl': self.thumbnail_url,
            'taskId': self.task_id,
            'status': self.status.value,
            'cost': float(self.cost or 0),
            'success': self.success,
            'error': self.error,
        }


class TaskLifecycle:
    """Runs one task from submission to a terminal, persisted outcome."""

    def __init__(
        self,
        provider: TaskProvider,
        asset_store: Optional['AssetStore'] = None,
        policy: Optional[PollPolicy] = None,
    ):
        self.provider = provider
        self.asset_store = asset_store
        self.policy = policy or PollPolicy()

    async def run(
        self,
        prompt: str,
        sizing: Sizing,
        extras: Optional[Dict[str, Any]] = None,
    ) -> TaskOutcome:
        try:
            handle = await self.provider.submit(prompt, sizing, extras or {})
        except ProviderError as exc:
            logger.error("%s submission failed: %s", self.provider.name, exc)
            return TaskOutcome(status=TaskStatus.FAILED, error=str(exc))

        logger.info(
            "%s task %s submitted (%s, est. cost %s)",
            self.provider.name, handle.id, sizing, handle.cost,
        )
        try:
            result, attempts = await self.wait(handle)
        except ProviderTimeoutError as exc:
            logger.warning(str(exc))
            return TaskOutcome(
                status=TaskStatus.TIMEOUT,
                task_id=handle.id,
                cost=handle.cost,
                error=str(exc),
                attempts=(exc.payload or {}).get('attempts', 0),
            )
        return await self.finish(handle, result, attempts)

    async def wait(self, handle: TaskHandle) -> Tuple[PollResult, int]:
        """
        Poll until the task is terminal.

        Each attempt sleeps first, then polls. Poll errors are treated as
        transient and consume an attempt. Raises ProviderTimeoutError once
        the attempt budget or the deadline is exhausted.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        last_error: Optional[str] = None
        attempts = 0

        for attempt in range(self.policy.max_attempts):
            delay = self.policy.delay_for(attempt)
            if self.policy.deadline is not None:
                remaining = self.policy.deadline - (loop.time() - started)
                if remaining <= 0:
                    break
                delay = min(delay, remaining)

            await asyncio.sleep(delay)
            attempts += 1

            try:
                result = await self.provider.poll(handle)
            except ProviderError as exc:
                last_error = str(exc)
                logger.warning("Poll %d for task %s failed: %s", attempts, handle.id, exc)
                continue

            if result.status.is_terminal:
                return result, attempts

            if attempt % 5 == 0:
                logger.debug(
                    "Task %s still %s (%.0fs elapsed)",
                    handle.id, result.status.value, loop.time() - started,
                )

        message = f"Task {handle.id} did not finish after {attempts} polls"
        if last_error:
            message += f" (last error: {last_error})"
        raise ProviderTimeoutError(message, payload={'attempts': attempts})

    async def finish(self, handle: TaskHandle, result: PollResult, attempts: int = 0) -> TaskOutcome:
        outcome = TaskOutcome(
            status=result.status,
            task_id=handle.id,
            remote_url=result.result_locator,
            cost=result.cost if result.cost is not None else handle.cost,
            error=result.error,
            attempts=attempts,
        )

        if result.status == TaskStatus.COMPLETED and not result.result_locator:
            outcome.status = TaskStatus.FAILED
            outcome.error = f"Task {handle.id} completed without a result URL"
            return outcome

        if result.status == TaskStatus.FAILED and not outcome.error:
            outcome.error = f"Task {handle.id} failed"

        if outcome.status == TaskStatus.COMPLETED:
            await self._persist(outcome)
        return outcome

    async def _persist(self, outcome: TaskOutcome) -> None:
        if self.asset_store is None:
            return

        from asset_store import AssetPersistError

        try:
            stored = await self.asset_store.persist(outcome.remote_url, outcome.task_id)
        except AssetPersistError as exc:
            logger.warning(
                "Could not persist result of task %s, serving remote URL instead: %s",
                outcome.task_id, exc,
            )
            return

        outcome.local_url = stored.url
        outcome.thumbnail_url = stored.thumbnail_url
        outcome.persisted = True


@dataclass
class TaskRequest:
    prompt: str
    sizing: Sizing
    extras: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchTask:
    index: int
    request: TaskRequest
    handle: Optional[TaskHandle] = None
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    progress: Optional[float] = None
    outcome: Optional[TaskOutcome] = None
    error: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.handle is not None and not self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        outcome = self.outcome
        return {
            'index': self.index,
            'taskId': self.handle.id if self.handle else None,
            'prompt': self.request.prompt,
            'status': self.status.value,
            'attempts': self.attempts,
            'progress': self.progress,
            'url': outcome.url if outcome else None,
            'remoteUrl': outcome.remote_url if outcome else None,
            'thumbnailUrl': outcome.thumbnail_url if outcome else None,
            'cost': outcome.cost if outcome else (self.handle.cost if self.handle else None),
            'error': self.error,
            **self.request.meta,
        }


class TaskBatch:
    """
    A group of independently polled tasks.

    A failed submission marks only that task as failed. Each ``refresh``
    polls every open task concurrently and charges one attempt to each; a
    task that runs out of attempts is marked as timed out and never polled
    again.
    """

    def __init__(
        self,
        provider: TaskProvider,
        asset_store: Optional['AssetStore'] = None,
        policy: Optional[PollPolicy] = None,
        batch_id: Optional[str] = None,
    ):
        self.id = batch_id or str(uuid.uuid4())
        self.provider = provider
        self.policy = policy or PollPolicy()
        self.lifecycle = TaskLifecycle(provider, asset_store, self.policy)
        self.tasks: List[BatchTask] = []
        self.created_at = datetime.now(timezone.utc)

    async def submit_all(self, requests: List[TaskRequest]) -> None:
        self.tasks = [BatchTask(index=i, request=request) for i, request in enumerate(requests)]
        await gather_with_concurrency(SUBMIT_CONCURRENCY, *(self._submit(task) for task in self.tasks))
        logger.info(
            "Batch %s: %d/%d tasks submitted",
            self.id, sum(1 for t in self.tasks if t.handle), len(self.tasks),
        )

    async def _submit(self, task: BatchTask) -> None:
        request = task.request
        try:
            task.handle = await self.provider.submit(request.prompt, request.sizing, request.extras)
        except ProviderError as exc:
            task.status = TaskStatus.FAILED
            task.error = str(exc)
            logger.error("Batch %s task %d submission failed: %s", self.id, task.index, exc)
            return
        except Exception as exc:
            logger.exception("Batch %s task %d submission raised", self.id, task.index)
            task.status = TaskStatus.FAILED
            task.error = str(exc) or type(exc).__name__
            return
        task.status = TaskStatus.PROCESSING

    async def refresh(self) -> str:
        open_tasks = [task for task in self.tasks if task.is_open]
        if open_tasks:
            await asyncio.gather(*(self._refresh_task(task) for task in open_tasks))
        return self.status

    async def _refresh_task(self, task: BatchTask) -> None:
        task.attempts += 1
        try:
            await self._advance(task)
        except Exception as exc:
            logger.exception("Batch %s task %s raised while polling", self.id, task.handle.id)
            task.status = TaskStatus.FAILED
            task.error = str(exc) or type(exc).__name__

    async def _advance(self, task: BatchTask) -> None:
        try:
            result = await self.provider.poll(task.handle)
        except ProviderError as exc:
            logger.warning("Batch %s task %s poll failed: %s", self.id, task.handle.id, exc)
            result = None

        if result is not None and result.status.is_terminal:
            outcome = await self.lifecycle.finish(task.handle, result, task.attempts)
            task.outcome = outcome
            task.status = outcome.status
            task.error = outcome.error
            return

        if result is not None:
            task.progress = result.progress

        if task.attempts >= self.policy.max_attempts:
            task.status = TaskStatus.TIMEOUT
            task.error = f"Task {task.handle.id} did not finish after {task.attempts} polls"
            logger.warning("Batch %s: %s", self.id, task.error)

    @property
    def is_settled(self) -> bool:
        return all(task.status.is_terminal for task in self.tasks)

    @property
    def status(self) -> str:
        if not self.is_settled:
            return 'running'
        completed = sum(1 for task in self.tasks if task.status == TaskStatus.COMPLETED)
        if completed == len(self.tasks):
            return 'done'
        if completed == 0:
            return 'failed'
        return 'partial'

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {status.value: 0 for status in TaskStatus}
        for task in self.tasks:
            counts[task.status.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'provider': self.provider.name,
            'status': self.status,
            'counts': self.counts(),
            'createdAt': self.created_at.isoformat(),
            'tasks': [task.to_dict() for task in self.tasks],
        }
