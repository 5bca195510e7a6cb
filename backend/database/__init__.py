"""
Database package for job records and workflow definitions.

- InMemoryJobStore: process-lifetime job registry with atomic updates
- ExecutionManager: DuckDB checkpoints of job records
- WorkflowStore: DuckDB-backed workflow definitions, cached in memory

Usage:
    from database import InMemoryJobStore, ExecutionManager, WorkflowStore

    jobs = InMemoryJobStore()
    job = jobs.create('workflow', {'workflow': 'script-explainer'})
    jobs.update(job.id, status=JobStatus.EXECUTING)

    # Persist a snapshot on demand
    jobs.checkpoint(ExecutionManager())
"""

from .execution_manager import ExecutionManager
from .job_store import InMemoryJobStore, JobRecord, JobStatus, JobStore
from .workflow_store import WorkflowStore

__all__ = [
    'ExecutionManager',
    'InMemoryJobStore',
    'JobRecord',
    'JobStatus',
    'JobStore',
    'WorkflowStore',
]
