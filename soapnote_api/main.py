"""
HTTP entrypoint for the SOAP note service.

Routes:

* ``POST /transcription/upload`` – multipart upload with an ``audio`` field.
  The recording is stored and a job is started; the response carries the
  job id straight away.
* ``GET /transcription/report/<id>`` – poll a job until its status is
  ``completed``, ``completed_with_errors`` or ``failed``.
* ``GET /health`` – liveness check.

Environment variables:

* ``TRANSCRIPTION_PROVIDER`` – ``deepgram`` (default) or ``google``.
* ``DEEPGRAM_API_KEY`` – required for the Deepgram provider.
  ``DEEPGRAM_MODEL`` and ``DEEPGRAM_URL`` override the model and endpoint.
* ``GEMINI_API_KEY`` – required.  ``GENAI_MODEL`` selects the model and
  ``SOAP_PROMPT`` replaces the report prompt.
* ``PROVIDER_TIMEOUT`` – seconds before a provider call is abandoned.
* ``MAX_WORKERS`` – size of the job worker pool.
* ``JOB_STORE`` – ``memory`` (default) or ``gcs``; the latter needs
  ``JOB_BUCKET`` and honours ``JOB_PREFIX``.
* ``UPLOAD_DIR`` – local directory for uploads, or ``UPLOAD_BUCKET`` to
  store them in Cloud Storage instead.
* ``CORS_ORIGIN`` – browser origin allowed to call the API.
* ``PORT`` / ``LOG_LEVEL`` – server port and log level.

Run with ``python -m soapnote_api.main`` or point a WSGI server at
``soapnote_api.main:create_app()``.
"""

import json
import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS

from soapnote.jobs import JobNotFound
from soapnote.status import StatusQuery
from soapnote.tasks import build_from_env

from .uploads import upload_store_from_env

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGIN = "http://localhost:3000"


def serialize_record(record) -> dict:
    data = record.to_dict()
    # the browser client reads the report under its original name
    data["soapReport"] = data["report"]
    return data


def create_app(orchestrator=None, status_query=None, upload_store=None) -> Flask:
    if orchestrator is None:
        orchestrator, status_query = build_from_env()
    if status_query is None:
        status_query = StatusQuery(orchestrator.store)
    if upload_store is None:
        upload_store = upload_store_from_env()

    app = Flask(__name__)
    CORS(
        app,
        origins=[os.environ.get("CORS_ORIGIN", DEFAULT_CORS_ORIGIN)],
        methods=["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"],
        supports_credentials=True,
    )
    app.extensions["soapnote.orchestrator"] = orchestrator

    @app.get("/health")
    def health():
        return jsonify({"ok": True})

    @app.post("/transcription/upload")
    def upload_audio():
        file = request.files.get("audio")
        if file is None or not file.filename:
            logger.info(json.dumps({"event": "upload_rejected", "reason": "missing_audio"}))
            return jsonify({"success": False, "message": "An 'audio' file is required"}), 400

        try:
            location = upload_store.save(file)
            job_id = orchestrator.submit(location)
        except ValueError as e:
            return jsonify({"success": False, "message": str(e)}), 400
        except Exception:
            logger.exception("Error in /transcription/upload")
            return jsonify({"success": False, "message": "Could not store the uploaded audio"}), 500

        logger.info(json.dumps({"event": "job_submitted", "id": job_id, "location": location}))
        return (
            jsonify(
                {
                    "id": job_id,
                    "status": "in_progress",
                    "message": "Transcription is being processed. Use the report endpoint to check status.",
                }
            ),
            202,
        )

    @app.get("/transcription/report/<job_id>")
    def get_report(job_id: str):
        try:
            record = status_query.get(job_id)
        except JobNotFound:
            return jsonify({"success": False, "message": f"Report with ID {job_id} not found"}), 404
        return jsonify({"success": True, "data": serialize_record(record)})

    return app


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
    port = int(os.environ.get("PORT", 3333))
    create_app().run(host="0.0.0.0", port=port)
