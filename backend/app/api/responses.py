"""Shared JSON error responses for the API blueprints."""

from flask import current_app, jsonify

from services.errors import (
    RemoteAPIError, ResourceNotFoundError, TransportError, ValidationError,
)

STATUS_CODES = [
    (ValidationError, 400),
    (ResourceNotFoundError, 404),
    (RemoteAPIError, 502),
    (TransportError, 504),
]


def error_response(error, message):
    """Log a failed request and return ({"error": ...}, status)."""
    status = next((code for cls, code in STATUS_CODES if isinstance(error, cls)), 500)
    if status >= 500:
        current_app.logger.error(f"{message}: {error}")
    else:
        current_app.logger.warning(f"{message}: {error}")
    return jsonify({"error": {"message": message, "details": str(error)}}), status


def missing_iterations_response():
    return jsonify({
        "error": {
            "message": "Missing required parameter: iterations",
            "details": "Provide comma-separated iteration IDs (e.g. ?iterations=id1,id2)"
        }
    }), 400
