"""Read-only view of job records for polling clients."""

from .jobs import JobRecord


class StatusQuery:
    def __init__(self, store):
        self._store = store

    def get(self, job_id: str) -> JobRecord:
        """Return a copy of the job record; raises ``JobNotFound`` for unknown ids."""
        return self._store.get(job_id)
