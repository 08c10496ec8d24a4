"""
SOAP report generation.

:class:`GeminiSummarizer` turns a visit transcript into a SOAP note
(Subjective, Objective, Assessment, Plan) with a Gemini model via the
``google-generativeai`` library.  The prompt is a fixed template filled with
the transcript only; it can be replaced through the ``SOAP_PROMPT``
environment variable, which must contain a ``{transcript}`` placeholder.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import google.generativeai as genai

from .config import provider_timeout
from .errors import JobError, PipelineError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash-exp"

GENERATION_CONFIG = {
    "temperature": 0.3,
    "top_p": 0.8,
    "max_output_tokens": 4000,
}

DEFAULT_PROMPT = """Please analyze the following medical conversation and generate a SOAP report.
If the conversation is not medical-related, please state that it's not a medical conversation.

Conversation:
{transcript}

Format your response as follows:

**Subjective (S):**
- Patient's symptoms and concerns
- History of present illness
- Review of systems

**Objective (O):**
- Physical exam findings
- Vital signs (if mentioned)
- Test results (if mentioned)

**Assessment (A):**
- Diagnosis or impression
- Differential diagnosis (if applicable)

**Plan (P):**
- Diagnostic tests (if needed)
- Treatment plan
- Follow-up instructions
- Patient education"""


def _failure(message: str, code: str, **context: Any) -> PipelineError:
    return PipelineError(JobError.report_generation_failed(message, code, **context))


class GeminiSummarizer:
    def __init__(
        self,
        model: genai.GenerativeModel,
        *,
        prompt_template: str = DEFAULT_PROMPT,
        timeout: Optional[float] = None,
    ):
        self._model = model
        self.prompt_template = prompt_template
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "GeminiSummarizer":
        api_key = os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY is not set in environment variables")
        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(
            os.environ.get("GENAI_MODEL", DEFAULT_MODEL),
            generation_config=GENERATION_CONFIG,
        )
        return cls(
            model,
            prompt_template=os.environ.get("SOAP_PROMPT", DEFAULT_PROMPT),
            timeout=provider_timeout(),
        )

    def build_prompt(self, transcript: str) -> str:
        return self.prompt_template.replace("{transcript}", transcript)

    def _request_options(self) -> Dict[str, Any]:
        return {"timeout": self.timeout} if self.timeout else {}

    def summarize(self, transcript: str) -> str:
        """Generate a SOAP report for ``transcript``.

        Raises:
            PipelineError: ``ReportGenerationFailed`` when the transcript is
                blank (no remote call is made), when the model call fails, or
                when the model returns no usable text.
        """
        if not isinstance(transcript, str) or not transcript.strip():
            raise _failure("Transcript is empty or invalid", "EmptyTranscript")

        logger.info("Generating SOAP report for transcript (%d chars)", len(transcript))
        try:
            response = self._model.generate_content(
                self.build_prompt(transcript),
                request_options=self._request_options(),
            )
        except Exception as exc:
            # the client surfaces transport, quota and safety problems as a mix of
            # google.api_core and library-specific exception types
            logger.exception("Error generating SOAP report")
            raise _failure(
                f"Failed to generate SOAP report: {exc}",
                "GenerationFailed",
                error=str(exc),
                transcriptLength=len(transcript),
            ) from exc

        if response is None:
            raise _failure("Empty response from Gemini API", "EmptyResponse")
        try:
            text = response.text
        except ValueError as exc:
            # raised when the candidate was blocked or carries no text parts
            raise _failure(f"Empty response from Gemini API: {exc}", "EmptyResponse") from exc

        if not text or not text.strip():
            raise _failure("Empty SOAP report generated", "EmptyOutput")
        logger.info("SOAP report generated (%d chars)", len(text))
        return text.strip()
