"""
Speech-to-text service wrappers.

Each transcriber exposes ``transcribe(audio_location)`` and returns a
:class:`TranscriptOutcome`.  A transcriber makes exactly one remote call per
invocation and never retries; every provider-side problem is translated into
a ``TranscriptionFailed`` :class:`~soapnote.errors.PipelineError`.  Audio
that cannot be located raises ``InputUnavailable`` instead.

Two providers are supported:

* Deepgram's pre-recorded REST API (the default), called with ``requests``.
* Google Cloud Speech-to-Text, via ``google-cloud-speech``.

Usage::

    from soapnote.stt_service import transcriber_from_env

    transcriber = transcriber_from_env()
    outcome = transcriber.transcribe("uploads/visit.wav")
    print(outcome.transcript, outcome.duration_seconds)
"""

import logging
import os
import re
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from google.api_core.exceptions import GoogleAPIError
from google.cloud import speech_v1p1beta1 as speech
from google.cloud import storage
from google.protobuf.json_format import MessageToDict

from . import audio_processor
from .config import DEFAULT_TIMEOUT, provider_timeout
from .errors import JobError, PipelineError

logger = logging.getLogger(__name__)

DEEPGRAM_URL = "https://api.deepgram.com/v1/listen"
DEEPGRAM_MODEL = "nova-3"


@dataclass(frozen=True)
class TranscriptOutcome:
    transcript: str
    duration_seconds: float = 0.0


def parse_seconds(time_str: str) -> float:
    m = re.match(r"([0-9]+(?:\.[0-9]+)?)s", time_str or "")
    return float(m.group(1)) if m else 0.0


def _failure(message: str, code: str, **context: Any) -> PipelineError:
    return PipelineError(JobError.transcription_failed(message, code, **context))


class DeepgramTranscriber:
    """Transcribe audio with Deepgram's ``/v1/listen`` endpoint.

    The recognition options mirror the clinic recorder's needs: speaker
    diarisation and smart formatting on the configured model.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEEPGRAM_MODEL,
        url: str = DEEPGRAM_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        storage_client: Optional[storage.Client] = None,
    ):
        if not api_key:
            raise RuntimeError("DEEPGRAM_API_KEY is not set in environment variables")
        self.model = model
        self.url = url
        self.timeout = timeout
        self._storage_client = storage_client
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Token {api_key}"})

    @classmethod
    def from_env(cls) -> "DeepgramTranscriber":
        return cls(
            os.environ.get("DEEPGRAM_API_KEY", ""),
            model=os.environ.get("DEEPGRAM_MODEL", DEEPGRAM_MODEL),
            url=os.environ.get("DEEPGRAM_URL", DEEPGRAM_URL),
            timeout=provider_timeout(),
        )

    @property
    def options(self) -> Dict[str, str]:
        return {"model": self.model, "diarize": "true", "diarize_version": "v2", "smart_format": "true"}

    def transcribe(self, audio_location: str) -> TranscriptOutcome:
        logger.info("Starting Deepgram transcription for %s", audio_location)
        with audio_processor.local_copy(audio_location, storage_client=self._storage_client) as path:
            audio = audio_processor.read_audio(path)
        try:
            response = self._session.post(
                self.url,
                params=self.options,
                headers={"Content-Type": audio_processor.guess_content_type(audio_location)},
                data=audio,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise _failure(
                f"Deepgram request failed: {exc}", "RequestFailed", location=audio_location, error=str(exc)
            ) from exc
        outcome = self._parse(response, audio_location)
        logger.info(
            "Deepgram transcription complete for %s: %d chars, %.1fs of audio",
            audio_location,
            len(outcome.transcript),
            outcome.duration_seconds,
        )
        return outcome

    @staticmethod
    def _parse(response: requests.Response, audio_location: str) -> TranscriptOutcome:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        provider_error = None
        if isinstance(payload, dict):
            provider_error = payload.get("err_msg") or payload.get("error")
        if not response.ok or provider_error:
            message = provider_error or response.text[:500] or response.reason
            raise _failure(
                f"Deepgram API error: {message}",
                "ProviderError",
                location=audio_location,
                status=response.status_code,
                providerCode=payload.get("err_code") if isinstance(payload, dict) else None,
                requestId=payload.get("request_id") if isinstance(payload, dict) else None,
            )
        if not isinstance(payload, dict):
            raise _failure("Deepgram returned a non-JSON response", "InvalidResponse", location=audio_location)
        try:
            channels = (payload.get("results") or {}).get("channels") or []
            alternatives = (channels[0].get("alternatives") or []) if channels else []
            transcript = (alternatives[0].get("transcript") or "") if alternatives else ""
            duration = float((payload.get("metadata") or {}).get("duration") or 0.0)
        except (AttributeError, IndexError, TypeError, ValueError) as exc:
            raise _failure(
                f"Unexpected Deepgram response shape: {exc}", "InvalidResponse", location=audio_location
            ) from exc
        return TranscriptOutcome(transcript=transcript, duration_seconds=max(duration, 0.0))


class GoogleSpeechTranscriber:
    """Transcribe audio with Google Cloud Speech-to-Text.

    ``gs://`` locations are handed to the API by URI; local files are sent
    inline.
    """

    def __init__(
        self,
        client: Optional[speech.SpeechClient] = None,
        *,
        language_code: str = "en-US",
        diarisation_speakers: int = 2,
        timeout: float = DEFAULT_TIMEOUT,
        storage_client: Optional[storage.Client] = None,
    ):
        self._client = client or speech.SpeechClient()
        self.language_code = language_code
        self.diarisation_speakers = diarisation_speakers
        self.timeout = timeout
        self._storage_client = storage_client

    @classmethod
    def from_env(cls) -> "GoogleSpeechTranscriber":
        return cls(
            language_code=os.environ.get("STT_LANGUAGE", "en-US"),
            diarisation_speakers=int(os.environ.get("STT_MAX_SPEAKERS", 2)),
            timeout=provider_timeout(),
        )

    def _config(self) -> speech.RecognitionConfig:
        diarisation_config = speech.SpeakerDiarizationConfig(
            enable_speaker_diarization=True,
            min_speaker_count=1,
            max_speaker_count=self.diarisation_speakers,
        )
        return speech.RecognitionConfig(
            language_code=self.language_code,
            enable_automatic_punctuation=True,
            diarization_config=diarisation_config,
        )

    def _audio(self, audio_location: str) -> speech.RecognitionAudio:
        if audio_processor.is_remote(audio_location):
            audio_processor.ensure_readable(audio_location, storage_client=self._storage_client)
            return speech.RecognitionAudio(uri=audio_location)
        with audio_processor.local_copy(audio_location) as path:
            return speech.RecognitionAudio(content=audio_processor.read_audio(path))

    def transcribe(self, audio_location: str) -> TranscriptOutcome:
        audio = self._audio(audio_location)
        logger.info("Starting STT job for %s", audio_location)
        try:
            operation = self._client.long_running_recognize(config=self._config(), audio=audio)
            response = operation.result(timeout=self.timeout)
        except (GoogleAPIError, FuturesTimeout, TimeoutError) as exc:
            raise _failure(
                f"Speech-to-Text request failed: {exc}", "RequestFailed", location=audio_location, error=str(exc)
            ) from exc
        logger.info("STT job complete for %s", audio_location)
        return self._parse(MessageToDict(response._pb))

    @staticmethod
    def _parse(response_dict: Dict[str, Any]) -> TranscriptOutcome:
        results = response_dict.get("results", [])
        pieces = []
        for result in results:
            alts = result.get("alternatives", [])
            if alts and alts[0].get("transcript"):
                pieces.append(alts[0]["transcript"].strip())
        duration = parse_seconds(results[-1].get("resultEndTime", "0s")) if results else 0.0
        return TranscriptOutcome(transcript=" ".join(pieces), duration_seconds=duration)


def transcriber_from_env():
    """Build the transcriber selected by ``TRANSCRIPTION_PROVIDER``."""
    provider = os.environ.get("TRANSCRIPTION_PROVIDER", "deepgram").lower()
    if provider == "deepgram":
        return DeepgramTranscriber.from_env()
    if provider == "google":
        return GoogleSpeechTranscriber.from_env()
    raise RuntimeError(f"Unknown TRANSCRIPTION_PROVIDER: {provider}")
