import json

import pytest
import requests
from google.api_core.exceptions import NotFound, PreconditionFailed

from soapnote.errors import JobError, PipelineError
from soapnote.jobs import MemoryJobStore
from soapnote.stt_service import TranscriptOutcome
from soapnote.tasks import Orchestrator


class FakeBlob:
    def __init__(self, name):
        self.name = name
        self.data = None
        self.content_type = None

    def exists(self):
        return self.data is not None

    def upload_from_string(self, data, content_type=None, if_generation_match=None):
        if if_generation_match == 0 and self.data is not None:
            raise PreconditionFailed(f"{self.name} already exists")
        self.data = data
        self.content_type = content_type

    def upload_from_file(self, stream, content_type=None):
        self.data = stream.read()
        self.content_type = content_type

    def download_as_text(self):
        if self.data is None:
            raise NotFound(self.name)
        return self.data if isinstance(self.data, str) else self.data.decode("utf-8")

    def download_to_filename(self, path):
        if self.data is None:
            raise NotFound(self.name)
        data = self.data.encode("utf-8") if isinstance(self.data, str) else self.data
        with open(path, "wb") as f:
            f.write(data)


class FakeBucket:
    def __init__(self, name):
        self.name = name
        self.blobs = {}

    def blob(self, name):
        return self.blobs.setdefault(name, FakeBlob(name))


class FakeStorageClient:
    def __init__(self):
        self.buckets = {}

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket(name))


class ManualExecutor:
    """Holds submitted work until the test decides to run it."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args):
        self.pending.append((fn, args))

    def run_all(self):
        while self.pending:
            fn, args = self.pending.pop(0)
            fn(*args)

    def shutdown(self, wait=True):
        self.run_all()


class FakeTranscriber:
    def __init__(self, transcript="", duration=0.0, error=None):
        self.outcome = TranscriptOutcome(transcript, duration)
        self.error = error
        self.calls = []

    def transcribe(self, audio_location):
        self.calls.append(audio_location)
        if self.error is not None:
            raise self.error
        return self.outcome


class FakeSummarizer:
    def __init__(self, report="", error=None):
        self.report = report
        self.error = error
        self.calls = []

    def summarize(self, transcript):
        self.calls.append(transcript)
        if self.error is not None:
            raise self.error
        return self.report


SOAP_NOTE = (
    "**Subjective (S):**\n- Headache\n\n"
    "**Objective (O):**\n- Not mentioned\n\n"
    "**Assessment (A):**\n- Tension headache\n\n"
    "**Plan (P):**\n- Rest and fluids"
)


def transcription_error(message="Deepgram API error: bad audio", code="ProviderError"):
    return PipelineError(JobError.transcription_failed(message, code))


def report_error(message="Failed to generate SOAP report: quota exceeded", code="GenerationFailed"):
    return PipelineError(JobError.report_generation_failed(message, code))


def make_response(status_code, payload=None, text=""):
    response = requests.Response()
    response.status_code = status_code
    response.reason = "OK" if status_code < 400 else "Error"
    response._content = (json.dumps(payload) if payload is not None else text).encode("utf-8")
    return response


@pytest.fixture
def storage_client():
    return FakeStorageClient()


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "a.wav"
    path.write_bytes(b"RIFF\x00\x00\x00\x00WAVEfmt ")
    return str(path)


@pytest.fixture
def make_orchestrator(executor):
    def _make(transcriber=None, summarizer=None, store=None):
        return Orchestrator(
            store or MemoryJobStore(),
            transcriber or FakeTranscriber("patient reports headache", 42),
            summarizer or FakeSummarizer(SOAP_NOTE),
            executor=executor,
        )

    return _make
