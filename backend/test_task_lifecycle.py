"""
Tests for the submit/poll/persist lifecycle and batch fan-out.
"""
import asyncio
import logging

import httpx
import pytest

from asset_store import AssetStore
from conftest import FakeImageProvider, png_bytes
from providers.base import PollPolicy, PollResult, Sizing, TaskHandle, TaskStatus
from providers.lifecycle import TaskBatch, TaskLifecycle, TaskRequest
from app.services.batch_jobs import BatchJobService
from database import InMemoryJobStore, JobStatus

SIZING = Sizing(1920, 1080, '16:9')


def image_transport(status_code=200, content=None, content_type='image/png'):
    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, text='gone')
        return httpx.Response(200, content=content or png_bytes(), headers={'content-type': content_type})

    return httpx.MockTransport(handler)


def test_poll_policy_backoff_is_capped():
    policy = PollPolicy(interval=1.0, backoff=2.0, max_interval=5.0)

    assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert PollPolicy().delay_for(10) == 3.0


async def test_task_completes_after_polling(fast_policy):
    provider = FakeImageProvider(polls_to_complete=2)

    outcome = await TaskLifecycle(provider, policy=fast_policy).run("a lighthouse", SIZING)

    assert outcome.status == TaskStatus.COMPLETED
    assert outcome.success
    assert outcome.attempts == 2
    assert outcome.url == 'https://cdn.test/task-0.png'
    assert outcome.persisted is False
    assert outcome.cost == 0.05


async def test_exhausted_budget_is_timeout(fast_policy):
    provider = FakeImageProvider(behaviours={'slow': 'hang'})

    outcome = await TaskLifecycle(provider, policy=fast_policy).run("slow sunset", SIZING)

    assert outcome.status == TaskStatus.TIMEOUT
    assert outcome.attempts == 3
    assert provider.polls['task-0'] == 3
    assert 'did not finish' in outcome.error


async def test_deadline_stops_polling_early():
    provider = FakeImageProvider(behaviours={'slow': 'hang'})
    policy = PollPolicy(interval=0.02, max_attempts=1000, deadline=0.1)

    outcome = await TaskLifecycle(provider, policy=policy).run("slow sunset", SIZING)

    assert outcome.status == TaskStatus.TIMEOUT
    assert 0 < outcome.attempts < 1000


async def test_failed_task_reports_provider_error(fast_policy):
    provider = FakeImageProvider(behaviours={'broken': 'fail'})

    outcome = await TaskLifecycle(provider, policy=fast_policy).run("broken clock", SIZING)

    assert outcome.status == TaskStatus.FAILED
    assert outcome.error == "Generation failed"
    assert outcome.to_node_outputs()['success'] is False


async def test_rejected_submission_never_polls(fast_policy):
    provider = FakeImageProvider(behaviours={'nope': 'reject'})

    outcome = await TaskLifecycle(provider, policy=fast_policy).run("nope", SIZING)

    assert outcome.status == TaskStatus.FAILED
    assert outcome.task_id is None
    assert provider.polls == {}


async def test_transient_poll_error_consumes_an_attempt(fast_policy):
    provider = FakeImageProvider(behaviours={'flaky': 'flaky'})

    outcome = await TaskLifecycle(provider, policy=fast_policy).run("flaky network", SIZING)

    assert outcome.status == TaskStatus.COMPLETED
    assert outcome.attempts == 2


async def test_completed_without_locator_is_failure(fast_policy):
    lifecycle = TaskLifecycle(FakeImageProvider(), policy=fast_policy)
    handle = TaskHandle(id='t1', poll_target='t1', provider='fake')

    outcome = await lifecycle.finish(handle, PollResult(status=TaskStatus.COMPLETED))

    assert outcome.status == TaskStatus.FAILED
    assert 'without a result URL' in outcome.error


async def test_caller_deadline_cancels_polling():
    provider = FakeImageProvider(behaviours={'slow': 'hang'})
    lifecycle = TaskLifecycle(provider, policy=PollPolicy(interval=0.05, max_attempts=1000))

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(lifecycle.run("slow sunset", SIZING), 0.2)


async def test_result_is_persisted_with_thumbnail(tmp_path, fast_policy):
    store = AssetStore(tmp_path, transport=image_transport(content=png_bytes(1600, 900)))

    outcome = await TaskLifecycle(FakeImageProvider(), store, fast_policy).run("a lighthouse", SIZING)

    assert outcome.persisted is True
    assert outcome.local_url == '/outputs/task-0.png'
    assert outcome.thumbnail_url == '/outputs/task-0_thumb.jpg'
    assert outcome.remote_url == 'https://cdn.test/task-0.png'
    assert outcome.to_node_outputs()['imageUrl'] == '/outputs/task-0.png'
    assert (tmp_path / 'task-0.png').is_file()
    assert (tmp_path / 'task-0_thumb.jpg').is_file()


async def test_persist_failure_falls_back_to_remote_url(tmp_path, fast_policy, caplog):
    store = AssetStore(tmp_path, transport=image_transport(status_code=500))

    with caplog.at_level(logging.WARNING, logger='providers.lifecycle'):
        outcome = await TaskLifecycle(FakeImageProvider(), store, fast_policy).run("a lighthouse", SIZING)

    assert outcome.status == TaskStatus.COMPLETED
    assert outcome.persisted is False
    assert outcome.url == 'https://cdn.test/task-0.png'
    assert any('Could not persist' in record.getMessage() for record in caplog.records)


# ============================================================================
# Batches
# ============================================================================

def requests_for(*prompts):
    return [TaskRequest(prompt=prompt, sizing=SIZING) for prompt in prompts]


async def test_batch_partial_with_rejection_and_timeout(fast_policy):
    provider = FakeImageProvider(behaviours={'bad': 'reject', 'slow': 'hang'})
    batch = TaskBatch(provider, policy=fast_policy)

    await batch.submit_all(requests_for("good frame", "bad frame", "slow frame"))
    good, bad, slow = batch.tasks

    assert bad.status == TaskStatus.FAILED
    assert 'rejected' in bad.error
    assert batch.status == 'running'

    assert await batch.refresh() == 'running'
    assert good.status == TaskStatus.COMPLETED
    assert slow.attempts == 1

    await batch.refresh()
    assert await batch.refresh() == 'partial'
    assert slow.status == TaskStatus.TIMEOUT
    assert provider.polls[slow.handle.id] == 3

    # Settled tasks are never polled again
    await batch.refresh()
    assert provider.polls[slow.handle.id] == 3
    assert provider.polls[good.handle.id] == 1

    counts = batch.counts()
    assert (counts['completed'], counts['failed'], counts['timeout']) == (1, 1, 1)


async def test_batch_done_when_every_task_completes(fast_policy):
    batch = TaskBatch(FakeImageProvider(), policy=fast_policy)

    await batch.submit_all(requests_for("one", "two"))

    assert await batch.refresh() == 'done'
    data = batch.to_dict()
    assert data['status'] == 'done'
    assert [task['url'] for task in data['tasks']] == [
        'https://cdn.test/task-0.png', 'https://cdn.test/task-1.png',
    ]


async def test_batch_failed_when_nothing_completes(fast_policy):
    batch = TaskBatch(FakeImageProvider(behaviours={'x': 'reject'}), policy=fast_policy)

    await batch.submit_all(requests_for("x1", "x2"))

    assert batch.is_settled
    assert batch.status == 'failed'


async def test_batch_task_meta_is_reported(fast_policy):
    batch = TaskBatch(FakeImageProvider(), policy=fast_policy)
    request = TaskRequest(prompt="pan left", sizing=SIZING, meta={'sourceUrl': '/outputs/a.png'})

    await batch.submit_all([request])

    assert batch.to_dict()['tasks'][0]['sourceUrl'] == '/outputs/a.png'


async def test_batch_task_errors_stay_with_that_task(fast_policy):
    provider = FakeImageProvider(behaviours={'broken': 'crash', 'odd': 'explode'})
    batch = TaskBatch(provider, policy=fast_policy)

    await batch.submit_all(requests_for("frame 0", "frame 1", "broken frame", "odd frame", "frame 4"))
    assert batch.tasks[3].status == TaskStatus.FAILED

    assert await batch.refresh() == 'partial'
    assert [task.status for task in batch.tasks] == [
        TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.FAILED,
        TaskStatus.FAILED, TaskStatus.COMPLETED,
    ]
    assert batch.tasks[2].error == 'unexpected payload shape'


async def test_batch_job_completes_when_one_task_crashes(fast_policy):
    job_store = InMemoryJobStore()
    provider = FakeImageProvider(behaviours={'broken': 'crash'})
    service = BatchJobService(job_store, provider_factory=None, runner=None,
                              policy=fast_policy, refresh_interval=0)
    job = job_store.create(BatchJobService.KIND)
    batch = TaskBatch(provider, policy=fast_policy, batch_id=job.id)

    await service.run_batch(job.id, batch, requests_for("frame 0", "broken frame", "frame 2"))

    stored = job_store.get(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.results['status'] == 'partial'
    assert [task['status'] for task in stored.results['tasks']] == ['completed', 'failed', 'completed']
