"""
server/app.py
-------------
Flask application exposing the decode orchestrator over HTTP.

Routes:
    POST /api/scan-barcode   multipart field ``image`` → {success, barcode?, error?}
    GET  /health             liveness probe

Upload gatekeeping here only checks presence, size and mimetype;
everything after the bytes are in hand is the orchestrator's job.
"""

from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge

from codescan.core.config import AppConfig
from codescan.processing.orchestrator import DecodeOrchestrator

logger = logging.getLogger(__name__)


def create_app(config: AppConfig, orchestrator: Optional[DecodeOrchestrator] = None) -> Flask:
    """Build the Flask app around one shared, stateless orchestrator."""
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.server.max_upload_bytes
    decoder = orchestrator or DecodeOrchestrator(config)

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(_exc):
        limit_mb = config.server.max_upload_bytes / (1024 * 1024)
        return jsonify(success=False, error=f"Image exceeds the {limit_mb:.0f} MB upload limit"), 413

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify(status="ok", strategies=decoder.strategy_names)

    @app.route("/api/scan-barcode", methods=["POST"])
    def scan_barcode():
        upload = request.files.get("image")
        if upload is None or not upload.filename:
            return jsonify(success=False, error="No image file uploaded"), 400

        mimetype = upload.mimetype or ""
        if not mimetype.startswith(config.server.allowed_mime_prefix):
            return jsonify(success=False, error="Only image files are allowed"), 415

        data = upload.read()
        logger.info("Upload received: %s (%d bytes, %s)", upload.filename, len(data), mimetype)
        result = decoder.decode(data, mimetype)
        return jsonify(result.to_response())

    return app
