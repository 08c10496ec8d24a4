"""
Failure taxonomy shared by every stage of the pipeline.

Failures are values rather than an exception hierarchy: a :class:`JobError`
is tagged with one of the closed set of :class:`ErrorKind` members and
carries a machine readable code plus a free-form context payload.  Adapters
raise :class:`PipelineError`, a thin carrier for a ``JobError``; the
orchestrator unwraps it and records the error on the job.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict


class ErrorKind(str, enum.Enum):
    INPUT_UNAVAILABLE = "InputUnavailable"
    TRANSCRIPTION_FAILED = "TranscriptionFailed"
    REPORT_GENERATION_FAILED = "ReportGenerationFailed"
    INTERNAL = "Internal"


@dataclass(frozen=True)
class JobError:
    """A classified failure with a code and diagnostic context."""

    kind: ErrorKind
    code: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def input_unavailable(cls, message: str, code: str = "FileNotAccessible", **context: Any) -> "JobError":
        return cls(ErrorKind.INPUT_UNAVAILABLE, code, message, context)

    @classmethod
    def transcription_failed(cls, message: str, code: str, **context: Any) -> "JobError":
        return cls(ErrorKind.TRANSCRIPTION_FAILED, code, message, context)

    @classmethod
    def report_generation_failed(cls, message: str, code: str, **context: Any) -> "JobError":
        return cls(ErrorKind.REPORT_GENERATION_FAILED, code, message, context)

    @classmethod
    def internal(cls, exc: BaseException) -> "JobError":
        """Wrap an unanticipated exception, keeping its message for diagnostics."""
        return cls(
            ErrorKind.INTERNAL,
            "Unexpected",
            str(exc) or exc.__class__.__name__,
            {"exception": exc.__class__.__name__},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobError":
        return cls(
            ErrorKind(data["kind"]),
            data.get("code", ""),
            data.get("message", ""),
            dict(data.get("context") or {}),
        )


class PipelineError(Exception):
    """Raised by adapters; carries the classified :class:`JobError`."""

    def __init__(self, error: JobError):
        super().__init__(error.message)
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def code(self) -> str:
        return self.error.code
