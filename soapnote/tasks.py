"""
Orchestration layer for the SOAP note pipeline.

:class:`Orchestrator` owns every job from submission to its terminal state:

* ``submit`` creates the job record synchronously (status ``in_progress``)
  and hands the job id to a worker thread, returning immediately.
* The worker checks that the audio can be read, transcribes it, then asks
  the summariser for a SOAP report, writing the outcome of each stage back
  through the job store.

Failure policy:

* unreadable audio or a failed transcription ends the job as ``failed``
  with the classified error;
* a failed report still leaves a usable transcript, so the job ends as
  ``completed_with_errors`` with a human readable placeholder in place of
  the report;
* anything unexpected ends the job as ``failed`` with an ``Internal`` error.

There are no retries and no cancellation; a caller who wants another
attempt submits a new job.
"""

from __future__ import annotations

import atexit
import logging
import os
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Optional

from . import audio_processor
from .errors import JobError, PipelineError
from .jobs import JOB_PREFIX, GcsJobStore, JobRecord, MemoryJobStore
from .status import StatusQuery
from .stt_service import transcriber_from_env
from .summarizer import GeminiSummarizer

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8
REPORT_FAILURE_PREFIX = "SOAP report generation failed: "


def report_placeholder(error: JobError) -> str:
    return f"{REPORT_FAILURE_PREFIX}{error.message}"


class Orchestrator:
    def __init__(self, store, transcriber, summarizer, *, executor: Optional[Executor] = None, max_workers: int = DEFAULT_MAX_WORKERS):
        self.store = store
        self.transcriber = transcriber
        self.summarizer = summarizer
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="soapnote-job")

    def submit(self, audio_location: str) -> str:
        """Create a job for ``audio_location`` and schedule it.

        Returns the job id as soon as the record exists.  Provider failures
        are never raised here; they are recorded on the job.

        Raises:
            ValueError: If ``audio_location`` is not a non-empty string.
            RuntimeError: If the worker pool no longer accepts work; the job
                is recorded as failed before this propagates.
        """
        if not audio_location or not isinstance(audio_location, str):
            raise ValueError("Invalid file path provided")
        record = self.store.create(audio_location)
        logger.info("Created job %s for %s", record.id, audio_location)
        try:
            self._executor.submit(self.process, record.id)
        except Exception as exc:
            # the record already exists, so it must not be left in_progress
            logger.exception("Could not schedule job %s", record.id)
            error = JobError.internal(exc)
            self.store.update(record.id, lambda r: r.fail(error))
            raise
        return record.id

    def process(self, job_id: str) -> JobRecord:
        """Run the pipeline for one job and return its terminal record."""
        try:
            return self._run(job_id)
        except Exception as exc:
            logger.exception("Unexpected error processing job %s", job_id)
            error = JobError.internal(exc)
            try:
                return self.store.update(job_id, lambda r: r.fail(error))
            except Exception:
                logger.exception("Could not record internal failure for job %s", job_id)
                raise

    def _fail(self, job_id: str, error: JobError) -> JobRecord:
        logger.error("Job %s failed: %s (%s) %s", job_id, error.kind.value, error.code, error.message)
        return self.store.update(job_id, lambda r: r.fail(error))

    def _run(self, job_id: str) -> JobRecord:
        record = self.store.get(job_id)
        location = record.source_reference

        try:
            audio_processor.ensure_readable(location)
        except PipelineError as exc:
            return self._fail(job_id, exc.error)

        started = time.monotonic()
        try:
            outcome = self.transcriber.transcribe(location)
        except PipelineError as exc:
            return self._fail(job_id, exc.error)
        logger.info(
            "Transcription for job %s took %.2fs, length: %d chars",
            job_id,
            time.monotonic() - started,
            len(outcome.transcript),
        )
        self.store.update(job_id, lambda r: r.record_transcript(outcome.transcript, outcome.duration_seconds))

        started = time.monotonic()
        try:
            report = self.summarizer.summarize(outcome.transcript)
        except PipelineError as exc:
            logger.warning("SOAP report generation failed for job %s: %s", job_id, exc.error.message)
            placeholder = report_placeholder(exc.error)
            return self.store.update(job_id, lambda r: r.complete_with_errors(placeholder))
        logger.info("SOAP report for job %s took %.2fs", job_id, time.monotonic() - started)
        return self.store.update(job_id, lambda r: r.complete(report))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def store_from_env():
    """Build the job store selected by ``JOB_STORE``."""
    kind = os.environ.get("JOB_STORE", "memory").lower()
    if kind == "memory":
        return MemoryJobStore()
    if kind == "gcs":
        bucket = os.environ.get("JOB_BUCKET")
        if not bucket:
            raise RuntimeError("JOB_BUCKET is not set in environment variables")
        return GcsJobStore.from_bucket_name(bucket, os.environ.get("JOB_PREFIX", JOB_PREFIX))
    raise RuntimeError(f"Unknown JOB_STORE: {kind}")


def build_from_env() -> tuple[Orchestrator, StatusQuery]:
    """Construct the process-wide orchestrator and status query.

    Provider clients are created once here; missing configuration raises
    ``RuntimeError`` so the process fails at startup rather than per job.
    """
    store = store_from_env()
    orchestrator = Orchestrator(
        store,
        transcriber_from_env(),
        GeminiSummarizer.from_env(),
        max_workers=int(os.environ.get("MAX_WORKERS", DEFAULT_MAX_WORKERS)),
    )
    atexit.register(orchestrator.shutdown)
    return orchestrator, StatusQuery(store)
