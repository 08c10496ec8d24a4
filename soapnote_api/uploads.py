"""
Storage for uploaded recordings.

Uploads land either in a local directory or, when a bucket is configured,
in Cloud Storage under the ``Audios/`` prefix.  Either way the caller gets
back a location string that :mod:`soapnote.audio_processor` can read.
"""

import logging
import os
import uuid

from google.cloud import storage
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from soapnote.audio_processor import guess_content_type

logger = logging.getLogger(__name__)

AUDIO_PREFIX = "Audios/"
DEFAULT_UPLOAD_DIR = "uploads"


def _unique_name(file: FileStorage) -> str:
    name = secure_filename(file.filename or "") or "recording.wav"
    return f"{uuid.uuid4().hex[:12]}_{name}"


class LocalUploadStore:
    def __init__(self, directory: str = DEFAULT_UPLOAD_DIR):
        self.directory = os.path.abspath(directory)

    def save(self, file: FileStorage) -> str:
        os.makedirs(self.directory, exist_ok=True)
        path = os.path.join(self.directory, _unique_name(file))
        file.save(path)
        logger.info("Saved upload to %s", path)
        return path


class GcsUploadStore:
    def __init__(self, bucket: storage.Bucket, prefix: str = AUDIO_PREFIX):
        self._bucket = bucket
        self._prefix = prefix

    def save(self, file: FileStorage) -> str:
        name = f"{self._prefix}{_unique_name(file)}"
        blob = self._bucket.blob(name)
        blob.upload_from_file(file.stream, content_type=file.mimetype or guess_content_type(name))
        uri = f"gs://{self._bucket.name}/{name}"
        logger.info("Uploaded recording to %s", uri)
        return uri


def upload_store_from_env():
    bucket = os.environ.get("UPLOAD_BUCKET")
    if bucket:
        return GcsUploadStore(storage.Client().bucket(bucket))
    return LocalUploadStore(os.environ.get("UPLOAD_DIR", DEFAULT_UPLOAD_DIR))
