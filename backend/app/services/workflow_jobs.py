"""
Workflow job service.

Accepts a run request on a Flask thread, validates it synchronously so bad
requests fail fast, then executes the workflow on the shared background
event loop while the job record tracks status and progress.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from database.job_store import JobRecord, JobStatus, JobStore
from database.workflow_store import WorkflowStore
from utils.async_helpers import LoopRunner
from workflow_engine import WorkflowExecutor, WorkflowServices

logger = logging.getLogger(__name__)


def summarize_results(results: Dict[str, Any]) -> Dict[str, Any]:
    """Attach per-item counts and total cost when the output carries an item list."""
    items = results.get('frames')
    if items is None:
        items = results.get('results')

    summary: Dict[str, Any] = {}
    if isinstance(items, list):
        entries = [item for item in items if isinstance(item, dict)]
        failures = sum(1 for item in entries if item.get('success') is False)
        summary = {
            'items': len(items),
            'successCount': len(entries) - failures,
            'failureCount': failures,
            'totalCost': round(sum(float(item.get('cost') or 0) for item in entries), 4),
        }
    return {'output': results, 'summary': summary}


class WorkflowJobService:
    """Starts workflow runs as background jobs."""

    KIND = 'workflow'

    def __init__(
        self,
        job_store: JobStore,
        workflow_store: WorkflowStore,
        services_factory: Callable[[], WorkflowServices],
        runner: LoopRunner,
        timeout: Optional[float] = None,
    ):
        self.job_store = job_store
        self.workflow_store = workflow_store
        self.services_factory = services_factory
        self.runner = runner
        self.timeout = timeout

    def start(self, name: str, inputs: Dict[str, Any], timeout: Optional[float] = None) -> JobRecord:
        """
        Validate and launch a run of workflow ``name``.

        Raises LookupError for an unknown workflow and ValueError for a
        malformed graph or unusable inputs; no job is created in either case.
        """
        graph = self.workflow_store.get(name)
        executor = WorkflowExecutor(graph, self.services_factory())
        executor.check(inputs)

        job = self.job_store.create(self.KIND, {'workflow': name, 'inputs': inputs})
        self.runner.submit(self.run_job, job.id, executor, inputs, timeout or self.timeout)
        logger.info("Started workflow %s as job %s", name, job.id)
        return job

    async def run_job(
        self,
        job_id: str,
        executor: WorkflowExecutor,
        inputs: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> None:
        self.job_store.update(job_id, status=JobStatus.EXECUTING)

        def on_progress(fraction: float) -> None:
            self.job_store.update(job_id, progress=int(round(fraction * 100)))

        try:
            run = executor.execute(inputs, on_progress=on_progress)
            if timeout:
                results = await asyncio.wait_for(run, timeout)
            else:
                results = await run
        except asyncio.TimeoutError:
            logger.error("Workflow job %s timed out after %ss", job_id, timeout)
            self.job_store.update(
                job_id, status=JobStatus.FAILED, error=f"Workflow timed out after {timeout}s"
            )
            return
        except Exception as exc:
            logger.exception("Workflow job %s failed", job_id)
            self.job_store.update(job_id, status=JobStatus.FAILED, error=str(exc))
            return

        summary = summarize_results(results)
        self.job_store.update(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            results=summary,
        )
        counts = summary['summary']
        if counts:
            logger.info(
                "Workflow job %s completed: %d/%d items",
                job_id, counts['successCount'], counts['items'],
            )
        else:
            logger.info("Workflow job %s completed", job_id)
