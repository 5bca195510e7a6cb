"""
Background job services used by the HTTP routes.
"""
from .batch_jobs import BatchJobService
from .workflow_jobs import WorkflowJobService

__all__ = ['BatchJobService', 'WorkflowJobService']
