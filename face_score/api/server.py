"""
Face Score API Server
Single-image scoring through the job queue (inline when the broker is down),
concurrent batch scoring and health/status endpoints.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import logging

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from ..config import LOG_DATEFMT, LOG_FORMAT, Settings
from ..errors import (
    AppError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
    format_error_response,
    utc_timestamp,
)
from ..pipeline.batch_scorer import BatchInput
from ..services.queue_service import SubmissionMode
from .context import ServiceContext

logger = logging.getLogger(__name__)

SERVICE_NAME = "face-score-api"
VERSION = "1.0.0"


def _success(message: str, data: Any, status: int = 200):
    return jsonify({"status": "success", "message": message, "data": data}), status


def _error(error: BaseException):
    status = error.status_code if isinstance(error, AppError) else 500
    return jsonify(format_error_response(error)), status


def _read_single_image(ctx: ServiceContext) -> Tuple[bytes, Optional[str]]:
    """Multipart `image` file first, then a base64 `image` field (JSON or form)."""
    file = request.files.get("image")
    if file is not None and file.filename != "":
        return file.read(), file.mimetype

    payload = request.get_json(silent=True) or {}
    encoded = payload.get("image") or request.form.get("image")
    if not encoded:
        raise ValidationError("Image is required", {"field": "image"})
    return ctx.engine.image_service.decode_base64(encoded), None


def _session_tag() -> Optional[str]:
    payload = request.get_json(silent=True) or {}
    return request.form.get("sessionId") or payload.get("sessionId")


def create_app(context: ServiceContext | None = None) -> Flask:
    """
    Build the Flask app around a ServiceContext.
    Without one, a context is built from the environment and started.
    """
    if context is None:
        context = ServiceContext.build(Settings.from_env()).start()
    settings = context.settings

    app = Flask(__name__)
    CORS(app, origins=settings.cors_origin)  # Enable CORS for frontend communication
    # Multipart overhead on top of the largest accepted batch
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_bytes * max(settings.max_batch_size, 1) + 1024 * 1024
    app.extensions["face_score"] = context

    # ─── single image ───────────────────────────────────────────────────
    @app.route("/api/score", methods=["POST"])
    def submit_score():
        data, mimetype = _read_single_image(context)
        context.engine.image_service.validate_payload(data, mimetype)
        session_tag = _session_tag()
        logger.info(f"Score request ({len(data)} bytes, session={session_tag or 'anonymous'})")

        submission = context.manager.submit(data, session_tag)
        if submission.mode is SubmissionMode.QUEUED:
            return _success("Job queued for processing", submission.to_dict(), 202)
        return _success("Face score calculated directly (queue unavailable)", submission.to_dict())

    @app.route("/api/status/<job_id>", methods=["GET"])
    def job_status(job_id: str):
        job = context.manager.get_status(job_id)
        return _success("Job status retrieved", job.status_dict())

    @app.route("/api/result/<job_id>", methods=["GET"])
    def job_result(job_id: str):
        outcome = context.manager.get_result(job_id)
        if not outcome.ready:
            return _success("Job not completed yet", {"jobId": outcome.job_id, "state": outcome.state.value}, 202)
        return _success("Face score calculated successfully", outcome.result)

    # ─── batch ──────────────────────────────────────────────────────────
    @app.route("/api/ml/score/batch", methods=["POST"])
    def score_batch():
        files = [f for f in request.files.getlist("images") if f.filename != ""]
        inputs: List[BatchInput] = [BatchInput(f.read(), f.mimetype, f.filename) for f in files]
        result = context.batch.score_batch(inputs, session_tag=_session_tag())
        summary = result.summary
        envelope = {
            "status": "success" if summary.successful_images > 0 else "error",
            "message": (
                f"Batch processing completed: {summary.successful_images}/{summary.total_images} "
                f"images processed successfully"
            ),
            "data": result.to_dict(),
        }
        return jsonify(envelope), 200

    # ─── legacy ─────────────────────────────────────────────────────────
    @app.route("/api/ml/face-score", methods=["POST"])
    def legacy_face_score():
        payload = request.get_json(silent=True) or {}
        try:
            image_base64 = payload.get("imageBase64")
            if not image_base64:
                if payload.get("imageUrl"):
                    raise ValidationError(
                        "imageUrl processing not implemented. Please use imageBase64 or "
                        "the /api/score endpoint with file upload"
                    )
                raise ValidationError("Either imageUrl or imageBase64 is required")
            data = context.engine.image_service.decode_base64(image_base64)
            context.engine.image_service.validate_payload(data)
            result = context.engine.score(data)
        except AppError as err:
            logger.error(f"Legacy face score failed: {err.message}")
            body = {"success": False, "error": err.message, "timestamp": utc_timestamp()}
            return jsonify(body), err.status_code
        return jsonify({"success": True, "data": result.to_dict(), "timestamp": utc_timestamp()})

    # ─── status ─────────────────────────────────────────────────────────
    @app.route("/api/health", methods=["GET"])
    def health_check():
        return _success("Service health retrieved", context.health.snapshot())

    @app.route("/api/ml/models/status", methods=["GET"])
    def models_status():
        return _success("ML models status retrieved successfully", context.health.models_status())

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "message": "Face Score API",
            "service": SERVICE_NAME,
            "version": VERSION,
            "status": "running",
            "features": [
                "Face Detection",
                "Embedding Extraction",
                "Attractiveness Scoring",
                "Batch Processing",
                "Queue Management",
            ],
            "timestamp": utc_timestamp(),
        })

    # ─── error handlers ─────────────────────────────────────────────────
    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.status_code >= 500:
            logger.error(f"{error.error_type}: {error.message}")
        else:
            logger.warning(f"{error.error_type}: {error.message}")
        return _error(error)

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(error):
        return _error(PayloadTooLargeError(
            f"Request exceeds maximum size of {app.config['MAX_CONTENT_LENGTH']} bytes",
        ))

    @app.errorhandler(404)
    def not_found(error):
        return _error(NotFoundError(
            "The requested resource was not found",
            {"path": request.path, "method": request.method},
        ))

    @app.errorhandler(Exception)
    def internal_error(error: Exception):
        if isinstance(error, HTTPException):
            body: Dict[str, Any] = {
                "status": "error",
                "message": error.description,
                "error_type": "http_error",
                "timestamp": utc_timestamp(),
            }
            return jsonify(body), error.code
        logger.exception(f"Internal server error: {error}")
        return _error(error)

    return app


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    context = ServiceContext.build(settings).start()
    app = create_app(context)

    print("🚀 Starting Face Score API Server...")
    print(f"🔧 Max upload size: {settings.max_upload_bytes // (1024 * 1024)}MB, max batch: {settings.max_batch_size}")
    print(f"📬 Broker: {context.manager.backend} ({'available' if context.manager.available else 'degraded'})")
    print("🌐 CORS enabled for frontend communication")
    print("=" * 60)

    try:
        app.run(host=settings.api_host, port=settings.api_port, debug=False, threaded=True)
    finally:
        context.stop()


if __name__ == "__main__":
    main()
