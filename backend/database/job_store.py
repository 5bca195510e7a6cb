"""
Job registry for route-level asynchronous work.

Jobs live in process memory for the lifetime of the server. They survive a
restart only when the store is explicitly checkpointed to DuckDB through an
``ExecutionManager``; jobs that were still running at checkpoint time come
back as failed, because their in-flight state is not persisted.
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from .execution_manager import ExecutionManager

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStatus(str, Enum):
    PENDING = 'pending'
    EXECUTING = 'executing'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @property
    def is_finished(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class JobRecord:
    id: str
    kind: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    params: Dict[str, Any] = field(default_factory=dict)
    results: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


JobMutator = Callable[[JobRecord], None]


class JobStore(ABC):
    """create/get/update interface shared by the job services."""

    @abstractmethod
    def create(self, kind: str, params: Optional[Dict[str, Any]] = None) -> JobRecord:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobRecord]:
        """Snapshot of the job, or None. Mutating it never affects the store."""

    @abstractmethod
    def update(self, job_id: str, mutator: Optional[JobMutator] = None, **fields: Any) -> JobRecord:
        """
        Apply ``fields`` and then ``mutator`` to the stored job as one atomic step.

        Raises LookupError for an unknown job id.
        """

    @abstractmethod
    def list(self, limit: int = 20, kind: Optional[str] = None) -> List[JobRecord]:
        ...


class InMemoryJobStore(JobStore):
    """
    Process-lifetime job store.

    A single lock serialises every read and write, so two request threads
    (or a request thread and the background loop) never interleave updates
    to the same job.
    """

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def create(self, kind: str, params: Optional[Dict[str, Any]] = None) -> JobRecord:
        record = JobRecord(id=str(uuid.uuid4()), kind=kind, params=copy.deepcopy(params or {}))
        with self._lock:
            self._jobs[record.id] = record
            snapshot = copy.deepcopy(record)
        logger.info("Created %s job %s", kind, record.id)
        return snapshot

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            record = self._jobs.get(job_id)
            return copy.deepcopy(record) if record is not None else None

    def update(self, job_id: str, mutator: Optional[JobMutator] = None, **fields: Any) -> JobRecord:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise LookupError(f"Job not found: {job_id}")

            for name, value in fields.items():
                if not hasattr(record, name):
                    raise AttributeError(f"JobRecord has no field {name!r}")
                setattr(record, name, value)
            if mutator is not None:
                mutator(record)

            record.updated_at = utc_now()
            if record.status.is_finished and record.completed_at is None:
                record.completed_at = record.updated_at
            return copy.deepcopy(record)

    def list(self, limit: int = 20, kind: Optional[str] = None) -> List[JobRecord]:
        with self._lock:
            records = [r for r in self._jobs.values() if kind is None or r.kind == kind]
            records.sort(key=lambda r: r.created_at, reverse=True)
            return [copy.deepcopy(r) for r in records[:limit]]

    def checkpoint(self, manager: 'ExecutionManager') -> int:
        """Write every job to DuckDB; returns the number saved."""
        with self._lock:
            snapshot = [copy.deepcopy(record) for record in self._jobs.values()]
        return manager.save_jobs(snapshot)

    def restore(self, manager: 'ExecutionManager') -> int:
        """Load checkpointed jobs that are not already in memory."""
        restored = 0
        for record in manager.load_jobs():
            if not record.status.is_finished:
                record.status = JobStatus.FAILED
                record.error = record.error or "Interrupted by server restart"
                record.completed_at = record.completed_at or utc_now()
            with self._lock:
                if record.id not in self._jobs:
                    self._jobs[record.id] = record
                    restored += 1
        logger.info("Restored %d checkpointed jobs", restored)
        return restored
