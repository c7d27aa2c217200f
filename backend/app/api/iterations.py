"""Iteration listing endpoint."""

from flask import Blueprint, jsonify

from app.api.responses import error_response
from app.factory import get_gitlab_client

bp = Blueprint("iterations", __name__, url_prefix="/api/iterations")


@bp.route("", methods=["GET"])
def list_iterations():
    """List the group's iterations, oldest first."""
    try:
        iterations = get_gitlab_client().fetch_iterations()
    except Exception as e:
        return error_response(e, "Failed to fetch iterations")

    iterations.sort(key=lambda it: it.start_date or "")
    return jsonify({
        "iterations": [it.to_dict() for it in iterations],
        "count": len(iterations)
    })
