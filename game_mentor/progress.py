"""
Progress tracking for one analysis run.

AnalysisProgress is a mutable, ordered set of jobs owned by a single pipeline
run. Observers only ever receive ProgressSnapshot copies through `report()`.
All mutations run on the event loop with no await between the mutation and the
report, so writes from one run are serialized.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import DuplicateJobError, InvalidTransitionError, UnknownJobError

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


class AnalysisJob(BaseModel):
    """One unit of pipeline progress, keyed by tag."""
    model_config = ConfigDict(frozen=True)

    tag: str
    name: str
    status: JobStatus = JobStatus.PENDING
    progress: Optional[float] = Field(default=None, ge=0.0, le=100.0)


class ProgressSnapshot(BaseModel):
    """Immutable copy of an AnalysisProgress at one moment."""
    model_config = ConfigDict(frozen=True)

    jobs: Tuple[AnalysisJob, ...] = ()
    total_percentage: float = 0.0

    def job(self, tag: str) -> AnalysisJob:
        for job in self.jobs:
            if job.tag == tag:
                return job
        raise UnknownJobError(f"Unknown job tag '{tag}'")

    @property
    def tags(self) -> List[str]:
        return [job.tag for job in self.jobs]


ProgressSink = Callable[[ProgressSnapshot], None]


def calculate_total(jobs: Iterable[AnalysisJob]) -> float:
    """Average job progress (None counts as 0), clamped to [0, 100]."""
    values = [job.progress or 0.0 for job in jobs]
    if not values:
        return 0.0
    return max(0.0, min(100.0, sum(values) / len(values)))


def _clamp(progress: Optional[float]) -> Optional[float]:
    if progress is None:
        return None
    return max(0.0, min(100.0, float(progress)))


class AnalysisProgress:
    """Ordered job list with a derived total percentage."""

    def __init__(self, jobs: Optional[Iterable[AnalysisJob]] = None):
        self._jobs: List[AnalysisJob] = []
        self.total_percentage = 0.0
        for job in jobs or []:
            self._append(job)
        self._recalculate()

    @property
    def jobs(self) -> Tuple[AnalysisJob, ...]:
        return tuple(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def has_job(self, tag: str) -> bool:
        return any(job.tag == tag for job in self._jobs)

    def get_job(self, tag: str) -> AnalysisJob:
        return self._jobs[self._index(tag)]

    def add_job(
        self,
        tag: str,
        name: str,
        status: JobStatus = JobStatus.PENDING,
        progress: Optional[float] = None,
    ) -> AnalysisJob:
        job = AnalysisJob(tag=tag, name=name, status=status, progress=_clamp(progress))
        self._append(job)
        self._recalculate()
        return job

    def insert_job_before(self, reference_tag: str, job: AnalysisJob) -> AnalysisJob:
        """
        Insert a job immediately before an existing one.

        Raises:
            UnknownJobError: If reference_tag is not in the set
            DuplicateJobError: If the new job's tag is already present
        """
        index = self._index(reference_tag)
        if self.has_job(job.tag):
            raise DuplicateJobError(f"Job tag '{job.tag}' already exists")
        self._jobs.insert(index, job)
        self._recalculate()
        return job

    def update_job(
        self,
        tag: str,
        status: Optional[JobStatus] = None,
        progress: Optional[float] = None,
        name: Optional[str] = None,
    ) -> AnalysisJob:
        """
        Update a job's status, progress and/or display name.

        Completing a job without an explicit progress sets it to 100.

        Raises:
            UnknownJobError: If the tag is not in the set
            InvalidTransitionError: If the job would leave a terminal state or
                move back to pending
        """
        index = self._index(tag)
        current = self._jobs[index]
        updates = {}

        if status is not None and status != current.status:
            if current.status in TERMINAL_STATUSES:
                raise InvalidTransitionError(
                    f"Job '{tag}' is {current.status.value} and cannot become {status.value}"
                )
            if status == JobStatus.PENDING:
                raise InvalidTransitionError(f"Job '{tag}' cannot return to pending")
            updates["status"] = status
            if status == JobStatus.COMPLETED and progress is None:
                updates["progress"] = 100.0

        if progress is not None:
            updates["progress"] = _clamp(progress)
        if name is not None:
            updates["name"] = name

        updated = current.model_copy(update=updates)
        self._jobs[index] = updated
        self._recalculate()
        return updated

    def rename_job(self, tag: str, name: str) -> AnalysisJob:
        return self.update_job(tag, name=name)

    def merge(self, snapshot: ProgressSnapshot, before_tag: Optional[str] = None):
        """
        Fold a sub-progress snapshot into this set.

        Jobs whose tag already exists are replaced in place; new jobs keep
        their relative order and go before `before_tag` when given, otherwise
        at the end.
        """
        if before_tag is not None:
            self._index(before_tag)

        for job in snapshot.jobs:
            if self.has_job(job.tag):
                self._jobs[self._index(job.tag)] = job
            elif before_tag is not None:
                self._jobs.insert(self._index(before_tag), job)
            else:
                self._jobs.append(job)
        self._recalculate()

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(jobs=tuple(self._jobs), total_percentage=self.total_percentage)

    def report(self, sink: Optional[ProgressSink]) -> ProgressSnapshot:
        """Emit a snapshot copy to `sink` (if any) and return it."""
        snapshot = self.snapshot()
        if sink is not None:
            sink(snapshot)
        return snapshot

    def _append(self, job: AnalysisJob):
        if self.has_job(job.tag):
            raise DuplicateJobError(f"Job tag '{job.tag}' already exists")
        self._jobs.append(job)

    def _index(self, tag: str) -> int:
        for index, job in enumerate(self._jobs):
            if job.tag == tag:
                return index
        raise UnknownJobError(f"Unknown job tag '{tag}'")

    def _recalculate(self):
        self.total_percentage = calculate_total(self._jobs)
