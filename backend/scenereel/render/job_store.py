"""Render job records and the store that owns their lifetime.

State machine::

    pending --claim--> rendering --complete--> completed
       |                   |
       +------cancel-------+--fail/cancel--> failed

completed and failed are terminal: later mutations are reported back to
the caller (MutationResult.TERMINAL) and not applied, so a poll loop that
finishes after a cancel landed cannot overwrite it.

The in-memory store is per-process only. Jobs older than the sweep
threshold are evicted together with their local output artifact.
"""

import copy
import logging
import secrets
import string
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from scenereel.exceptions import CANCELLED_MESSAGE
from scenereel.render.cancellation import CancellationToken
from scenereel.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class RenderStatus(Enum):
    """Render job status."""

    PENDING = "pending"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({RenderStatus.COMPLETED, RenderStatus.FAILED})

_ALLOWED_TRANSITIONS: dict[RenderStatus, frozenset[RenderStatus]] = {
    RenderStatus.PENDING: frozenset({RenderStatus.PENDING, RenderStatus.RENDERING, RenderStatus.FAILED}),
    RenderStatus.RENDERING: frozenset({RenderStatus.RENDERING, RenderStatus.COMPLETED, RenderStatus.FAILED}),
}


class MutationResult(Enum):
    APPLIED = "applied"
    TERMINAL = "terminal"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"


class CancelResult(Enum):
    OK = "ok"
    ALREADY_TERMINAL = "already_terminal"
    NOT_FOUND = "not_found"


@dataclass
class RenderJob:
    """Render job information."""

    id: str
    status: RenderStatus
    created_at: datetime
    updated_at: datetime
    composition_id: Optional[str] = None
    project_id: Optional[str] = None
    progress: int = 0
    current_stage: Optional[str] = None
    output_url: Optional[str] = None
    output_key: Optional[str] = None
    error_message: Optional[str] = None
    rendered_by: Optional[str] = None  # "remote" or "simulated"
    backend_task_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    # Serialized timeline and request options, kept for re-submission
    timeline: Optional[dict[str, Any]] = None
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "current_stage": self.current_stage,
            "composition_id": self.composition_id,
            "project_id": self.project_id,
            "output_url": self.output_url,
            "error_message": self.error_message,
            "rendered_by": self.rendered_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def _snapshot(job: RenderJob) -> RenderJob:
    """Copy of a record that shares no mutable state with the stored one."""
    return replace(job, timeline=copy.deepcopy(job.timeline), options=copy.deepcopy(job.options))


def generate_render_id(now: Optional[float] = None) -> str:
    """Time-derived, randomly suffixed job id, e.g. ``render_1718000000000_k3j9x0a2b``."""
    millis = int((now if now is not None else time.time()) * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"render_{millis}_{suffix}"


class RenderJobStore(ABC):
    """Owns render job records. Each job's record is the unit of consistency."""

    @abstractmethod
    def create(
        self,
        *,
        composition_id: Optional[str] = None,
        project_id: Optional[str] = None,
        timeline: Optional[dict[str, Any]] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> RenderJob:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[RenderJob]:
        ...

    @abstractmethod
    def list_jobs(self, project_id: Optional[str] = None) -> list[RenderJob]:
        ...

    @abstractmethod
    def claim(self, job_id: str) -> bool:
        """Move a pending job to rendering. False for any other state."""

    @abstractmethod
    def update(self, job_id: str, mutator: Callable[[RenderJob], None]) -> MutationResult:
        ...

    @abstractmethod
    def cancel(self, job_id: str) -> CancelResult:
        ...

    @abstractmethod
    def cancellation_token(self, job_id: str) -> CancellationToken:
        ...

    @abstractmethod
    def sweep(self, max_age_seconds: float) -> list[RenderJob]:
        """Evict jobs older than the threshold and return them.

        Artifacts in local storage are deleted here. Outputs held by the
        remote rendering service are left to the caller, using the
        returned records' backend_task_id.
        """

    def set_progress(self, job_id: str, progress: int, stage: Optional[str] = None) -> MutationResult:
        def mutate(job: RenderJob) -> None:
            job.progress = progress
            if stage is not None:
                job.current_stage = stage

        return self.update(job_id, mutate)

    def complete(
        self,
        job_id: str,
        output_url: str,
        output_key: Optional[str] = None,
        rendered_by: Optional[str] = None,
    ) -> MutationResult:
        def mutate(job: RenderJob) -> None:
            job.status = RenderStatus.COMPLETED
            job.progress = 100
            job.current_stage = "Complete"
            job.output_url = output_url
            job.output_key = output_key
            if rendered_by:
                job.rendered_by = rendered_by

        return self.update(job_id, mutate)

    def fail(self, job_id: str, error_message: str, rendered_by: Optional[str] = None) -> MutationResult:
        # Progress is left at its last reported value
        def mutate(job: RenderJob) -> None:
            job.status = RenderStatus.FAILED
            job.error_message = error_message
            if rendered_by:
                job.rendered_by = rendered_by

        return self.update(job_id, mutate)


class InMemoryRenderJobStore(RenderJobStore):
    """Thread-safe in-memory job table with age-based eviction."""

    def __init__(
        self,
        storage: Optional[LocalStorageService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._jobs: dict[str, RenderJob] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()
        self._storage = storage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(
        self,
        *,
        composition_id: Optional[str] = None,
        project_id: Optional[str] = None,
        timeline: Optional[dict[str, Any]] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> RenderJob:
        now = self._clock()
        with self._lock:
            job_id = generate_render_id(now.timestamp())
            while job_id in self._jobs:
                job_id = generate_render_id(now.timestamp())

            job = RenderJob(
                id=job_id,
                status=RenderStatus.PENDING,
                created_at=now,
                updated_at=now,
                composition_id=composition_id,
                project_id=project_id,
                timeline=copy.deepcopy(timeline),
                options=copy.deepcopy(options or {}),
            )
            self._jobs[job_id] = job
            self._tokens[job_id] = CancellationToken()
            return _snapshot(job)

    def get(self, job_id: str) -> Optional[RenderJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return _snapshot(job) if job else None

    def list_jobs(self, project_id: Optional[str] = None) -> list[RenderJob]:
        with self._lock:
            jobs = [
                _snapshot(job) for job in self._jobs.values()
                if project_id is None or job.project_id == project_id
            ]
        return sorted(jobs, key=lambda j: j.created_at)

    def claim(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != RenderStatus.PENDING:
                return False
            job.status = RenderStatus.RENDERING
            job.updated_at = self._clock()
            return True

    def update(self, job_id: str, mutator: Callable[[RenderJob], None]) -> MutationResult:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return MutationResult.NOT_FOUND
            if job.is_terminal:
                logger.info(f"[RENDER] Ignoring update to {job.status.value} job {job_id}")
                return MutationResult.TERMINAL

            draft = _snapshot(job)
            mutator(draft)

            if draft.status not in _ALLOWED_TRANSITIONS[job.status]:
                logger.warning(
                    f"[RENDER] Rejected transition {job.status.value} -> {draft.status.value} for {job_id}"
                )
                return MutationResult.INVALID_TRANSITION

            draft.id = job.id
            draft.created_at = job.created_at
            draft.progress = max(job.progress, min(100, int(draft.progress)))
            draft.updated_at = self._clock()
            if draft.is_terminal and draft.completed_at is None:
                draft.completed_at = draft.updated_at

            self._jobs[job_id] = draft
            return MutationResult.APPLIED

    def cancel(self, job_id: str) -> CancelResult:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return CancelResult.NOT_FOUND
            if job.is_terminal:
                return CancelResult.ALREADY_TERMINAL

            self._tokens[job_id].cancel()
            now = self._clock()
            job.status = RenderStatus.FAILED
            job.error_message = CANCELLED_MESSAGE
            job.updated_at = now
            job.completed_at = now

        logger.info(f"[RENDER] Cancelled job {job_id}")
        return CancelResult.OK

    def cancellation_token(self, job_id: str) -> CancellationToken:
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            raise KeyError(job_id)
        return token

    def sweep(self, max_age_seconds: float) -> list[RenderJob]:
        now = self._clock()
        with self._lock:
            expired = [
                job for job in self._jobs.values()
                if (now - job.created_at).total_seconds() > max_age_seconds
            ]
            for job in expired:
                del self._jobs[job.id]
                self._tokens.pop(job.id, None)

        for job in expired:
            if job.output_key and self._storage is not None:
                try:
                    self._storage.delete_file(job.output_key)
                except OSError as e:
                    logger.warning(f"[SWEEP] Failed to delete artifact {job.output_key}: {e}")

        if expired:
            logger.info(f"[SWEEP] Evicted {len(expired)} render job(s) older than {max_age_seconds}s")
        return expired
