"""
Job records and the stores that hold them.

A :class:`JobRecord` is created in the ``in_progress`` state when audio is
submitted and is moved to exactly one terminal state by the orchestrator.
The record enforces its own transition rules (status never regresses, the
transcript and report are written at most once); stores only guarantee that
each mutation is applied atomically against the latest persisted copy.

Two stores are provided:

* :class:`MemoryJobStore` keeps records in a dictionary guarded by a lock.
  It is the default for local development and tests.
* :class:`GcsJobStore` writes one JSON document per job to Cloud Storage so
  that records survive a restart and can be read by other processes.
"""

from __future__ import annotations

import copy
import enum
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from google.api_core.exceptions import NotFound, PreconditionFailed
from google.cloud import storage

from .errors import JobError

logger = logging.getLogger(__name__)

JOB_PREFIX = "jobs/"


class JobStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.IN_PROGRESS


class JobNotFound(KeyError):
    """No job exists with the requested id."""

    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job {self.job_id} not found"


class InvalidTransition(ValueError):
    """A mutation would break the job state machine."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobRecord:
    id: str
    source_reference: str
    status: JobStatus = JobStatus.IN_PROGRESS
    transcript: str = ""
    report: str = ""
    error: Optional[JobError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, source_reference: str) -> "JobRecord":
        now = _utcnow()
        return cls(id=str(uuid.uuid4()), source_reference=source_reference, created_at=now, updated_at=now)

    @property
    def has_transcript(self) -> bool:
        # metadata is written together with the transcript, which may itself be empty
        return "audioDuration" in self.metadata

    def _require_in_progress(self, action: str) -> None:
        if self.status.is_terminal:
            raise InvalidTransition(f"Cannot {action}: job {self.id} is already {self.status.value}")

    def record_transcript(self, transcript: str, duration_seconds: float) -> None:
        self._require_in_progress("record transcript")
        if self.has_transcript:
            raise InvalidTransition(f"Transcript for job {self.id} was already recorded")
        self.transcript = transcript
        self.metadata = {
            "audioDuration": duration_seconds,
            "wordCount": len(transcript.split()),
        }

    def complete(self, report: str) -> None:
        """Store the generated report and finish the job."""
        self._require_in_progress("complete")
        self.report = report
        self.status = JobStatus.COMPLETED

    def complete_with_errors(self, placeholder: str) -> None:
        """Finish the job with a usable transcript but no report."""
        self._require_in_progress("complete")
        self.report = placeholder
        self.status = JobStatus.COMPLETED_WITH_ERRORS

    def fail(self, error: JobError) -> None:
        self._require_in_progress("fail")
        self.error = error
        self.status = JobStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceReference": self.source_reference,
            "status": self.status.value,
            "transcript": self.transcript,
            "report": self.report,
            "error": self.error.to_dict() if self.error else None,
            "metadata": dict(self.metadata),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        error = data.get("error")
        return cls(
            id=data["id"],
            source_reference=data["sourceReference"],
            status=JobStatus(data["status"]),
            transcript=data.get("transcript") or "",
            report=data.get("report") or "",
            error=JobError.from_dict(error) if error else None,
            metadata=dict(data.get("metadata") or {}),
            created_at=datetime.fromisoformat(data["createdAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
        )


Mutation = Callable[[JobRecord], None]


class MemoryJobStore:
    """Thread-safe in-process store.  Callers always receive copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, JobRecord] = {}

    def create(self, source_reference: str) -> JobRecord:
        record = JobRecord.new(source_reference)
        with self._lock:
            if record.id in self._records:
                raise InvalidTransition(f"Job id {record.id} already exists")
            self._records[record.id] = record
            return copy.deepcopy(record)

    def get(self, job_id: str) -> JobRecord:
        with self._lock:
            try:
                return copy.deepcopy(self._records[job_id])
            except KeyError:
                raise JobNotFound(job_id) from None

    def update(self, job_id: str, mutation: Mutation) -> JobRecord:
        """Apply ``mutation`` to the stored record and return the result.

        The mutation runs against a working copy; if it raises, the stored
        record is left untouched.
        """
        with self._lock:
            try:
                working = copy.deepcopy(self._records[job_id])
            except KeyError:
                raise JobNotFound(job_id) from None
            mutation(working)
            working.updated_at = _utcnow()
            self._records[job_id] = working
            return copy.deepcopy(working)


class GcsJobStore:
    """Persist each job as ``<prefix><id>.json`` in a Cloud Storage bucket.

    Each job has a single writer (its pipeline run), so updates are plain
    read-modify-write cycles and jobs never wait on one another.
    """

    def __init__(self, bucket: storage.Bucket, prefix: str = JOB_PREFIX):
        self._bucket = bucket
        self._prefix = prefix

    @classmethod
    def from_bucket_name(cls, bucket_name: str, prefix: str = JOB_PREFIX, client: Optional[storage.Client] = None) -> "GcsJobStore":
        client = client or storage.Client()
        return cls(client.bucket(bucket_name), prefix)

    def _blob(self, job_id: str) -> storage.Blob:
        return self._bucket.blob(f"{self._prefix}{job_id}.json")

    def _write(self, record: JobRecord, **kwargs: Any) -> None:
        self._blob(record.id).upload_from_string(
            json.dumps(record.to_dict()),
            content_type="application/json",
            **kwargs,
        )

    def _read(self, job_id: str) -> JobRecord:
        try:
            text = self._blob(job_id).download_as_text()
        except NotFound:
            raise JobNotFound(job_id) from None
        return JobRecord.from_dict(json.loads(text))

    def create(self, source_reference: str) -> JobRecord:
        record = JobRecord.new(source_reference)
        try:
            # generation 0 means "only if the object does not exist yet"
            self._write(record, if_generation_match=0)
        except PreconditionFailed:
            raise InvalidTransition(f"Job id {record.id} already exists") from None
        logger.info("Created job %s in gs://%s/%s", record.id, self._bucket.name, self._prefix)
        return record

    def get(self, job_id: str) -> JobRecord:
        return self._read(job_id)

    def update(self, job_id: str, mutation: Mutation) -> JobRecord:
        record = self._read(job_id)
        mutation(record)
        record.updated_at = _utcnow()
        self._write(record)
        return record
