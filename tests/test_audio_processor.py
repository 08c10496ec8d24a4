import os
import tempfile

import pytest

from soapnote import audio_processor
from soapnote.errors import ErrorKind, PipelineError


@pytest.fixture
def scratch_dir(tmp_path, monkeypatch):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return scratch


def test_existing_local_file_is_readable(audio_file):
    audio_processor.ensure_readable(audio_file)


def test_missing_local_file(tmp_path):
    with pytest.raises(PipelineError) as info:
        audio_processor.ensure_readable(str(tmp_path / "missing.wav"))
    assert info.value.kind is ErrorKind.INPUT_UNAVAILABLE
    assert info.value.code == "FileNotAccessible"


def test_directory_is_not_audio(tmp_path):
    with pytest.raises(PipelineError):
        audio_processor.ensure_readable(str(tmp_path))


def test_malformed_gcs_uri():
    with pytest.raises(PipelineError) as info:
        audio_processor.split_gcs_uri("gs://bucket-only")
    assert info.value.code == "InvalidLocation"


def test_missing_gcs_object(storage_client):
    with pytest.raises(PipelineError) as info:
        audio_processor.ensure_readable("gs://audio/Audios/missing.wav", storage_client=storage_client)
    assert info.value.kind is ErrorKind.INPUT_UNAVAILABLE


def test_local_copy_downloads_and_cleans_up(storage_client, scratch_dir):
    storage_client.bucket("audio").blob("Audios/a.wav").data = b"RIFFdata"

    with audio_processor.local_copy("gs://audio/Audios/a.wav", storage_client=storage_client) as path:
        assert path.endswith(".wav")
        with open(path, "rb") as f:
            assert f.read() == b"RIFFdata"

    assert not os.path.exists(path)
    assert os.listdir(scratch_dir) == []


def test_local_copy_cleans_up_on_error(storage_client, scratch_dir):
    storage_client.bucket("audio").blob("Audios/a.wav").data = b"RIFFdata"

    with pytest.raises(RuntimeError):
        with audio_processor.local_copy("gs://audio/Audios/a.wav", storage_client=storage_client):
            raise RuntimeError("provider went away")
    assert os.listdir(scratch_dir) == []


def test_local_copy_yields_local_paths_unchanged(audio_file):
    with audio_processor.local_copy(audio_file) as path:
        assert path == audio_file
    assert os.path.exists(audio_file)


def test_content_type_guess():
    assert audio_processor.guess_content_type("uploads/x_recording.wav") == "audio/wav"
    assert audio_processor.guess_content_type("gs://b/Audios/visit.WEBM") == "audio/webm"
