"""
Access to submitted audio.

Audio is referenced by a location string: either a local filesystem path or
a ``gs://bucket/object`` URI.  This module answers two questions for the
rest of the pipeline: can the audio be read at all, and where is a local
copy of it?  Remote audio is downloaded to a temporary file that is removed
again on every exit path of the caller's ``with`` block.
"""

import functools
import logging
import mimetypes
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage

from .errors import JobError, PipelineError

logger = logging.getLogger(__name__)

GCS_SCHEME = "gs://"

CONTENT_TYPES = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".flac": "audio/flac",
    ".ogg": "audio/ogg",
    ".webm": "audio/webm",
}


@functools.lru_cache(maxsize=1)
def _default_client() -> storage.Client:
    return storage.Client()


def is_remote(location: str) -> bool:
    return location.startswith(GCS_SCHEME)


def split_gcs_uri(uri: str) -> Tuple[str, str]:
    """Split ``gs://bucket/path/to/object`` into ``(bucket, path/to/object)``."""
    bucket, _, name = uri[len(GCS_SCHEME):].partition("/")
    if not bucket or not name:
        raise PipelineError(
            JobError.input_unavailable(f"Malformed Cloud Storage URI: {uri}", code="InvalidLocation", location=uri)
        )
    return bucket, name


def guess_content_type(location: str) -> str:
    ext = Path(location).suffix.lower()
    if ext in CONTENT_TYPES:
        return CONTENT_TYPES[ext]
    return mimetypes.guess_type(location)[0] or "application/octet-stream"


def ensure_readable(location: str, *, storage_client: Optional[storage.Client] = None) -> None:
    """Raise ``InputUnavailable`` unless the audio at ``location`` can be read."""
    if not location or not isinstance(location, str):
        raise PipelineError(JobError.input_unavailable("No audio location given", code="InvalidLocation"))
    if is_remote(location):
        bucket_name, name = split_gcs_uri(location)
        client = storage_client or _default_client()
        try:
            exists = client.bucket(bucket_name).blob(name).exists()
        except GoogleAPIError as exc:
            raise PipelineError(
                JobError.input_unavailable(
                    f"Audio object not accessible: {location}", location=location, error=str(exc)
                )
            ) from exc
        if not exists:
            raise PipelineError(JobError.input_unavailable(f"Audio object not found: {location}", location=location))
        return
    if not os.path.isfile(location) or not os.access(location, os.R_OK):
        raise PipelineError(
            JobError.input_unavailable(f"Audio file not found or not accessible: {location}", location=location)
        )


def _download_blob(location: str, storage_client: Optional[storage.Client]) -> str:
    """Download a ``gs://`` object to a temporary file and return the local path."""
    bucket_name, name = split_gcs_uri(location)
    client = storage_client or _default_client()
    fd, tmp_path = tempfile.mkstemp(suffix=Path(name).suffix)
    os.close(fd)
    try:
        client.bucket(bucket_name).blob(name).download_to_filename(tmp_path)
    except GoogleAPIError as exc:
        cleanup_temp_file(tmp_path)
        raise PipelineError(
            JobError.input_unavailable(f"Could not download audio: {location}", location=location, error=str(exc))
        ) from exc
    return tmp_path


@contextmanager
def local_copy(location: str, *, storage_client: Optional[storage.Client] = None) -> Iterator[str]:
    """Yield a local path for ``location``.

    Local paths are yielded as-is.  Remote objects are downloaded to a
    scratch file that is deleted when the block exits, however it exits.
    """
    ensure_readable(location, storage_client=storage_client)
    if not is_remote(location):
        yield location
        return
    tmp_path = _download_blob(location, storage_client)
    try:
        yield tmp_path
    finally:
        cleanup_temp_file(tmp_path)


def read_audio(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as exc:
        raise PipelineError(
            JobError.input_unavailable(f"Audio file could not be read: {path}", location=path, error=str(exc))
        ) from exc


def cleanup_temp_file(path: Optional[str]) -> None:
    """Remove a temporary file if it exists.

    Args:
        path: Path to the temporary file.  Nothing happens if ``path`` is
            ``None`` or the file does not exist.
    """
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            logger.warning("Could not remove temporary file %s", path, exc_info=True)
