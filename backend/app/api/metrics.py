"""Iteration metrics API endpoints."""

from flask import Blueprint, request, jsonify

from app.api.responses import error_response, missing_iterations_response
from app.factory import get_metrics_repository, get_metrics_service
from services.control_limits import METRIC_FIELDS

bp = Blueprint("metrics", __name__, url_prefix="/api/metrics")


def get_iteration_ids():
    """Parse comma-separated iteration IDs from the query string."""
    iterations = request.args.get("iterations", "")
    return [i.strip() for i in iterations.split(",") if i.strip()]


def get_date_range():
    """Get optional date range from query params.

    Query params:
        - start_date: ISO date string (e.g., "2025-01-01")
        - end_date: ISO date string (e.g., "2025-03-31")

    Returns:
        Tuple of (start_date, end_date), either can be None
    """
    start_date = request.args.get("start_date")
    end_date = request.args.get("end_date")
    return start_date, end_date


def include_raw_data():
    return request.args.get("include_raw", "").lower() in ("1", "true", "yes")


@bp.route("", methods=["GET"])
def get_metrics():
    """Calculate metrics for the given iterations.

    Query params:
        - iterations: Comma-separated iteration IDs (required)
        - include_raw: Include the filtered issues/MRs/incidents per iteration

    Returns one metric record per iteration, in request order.
    """
    iteration_ids = get_iteration_ids()
    if not iteration_ids:
        return missing_iterations_response()

    try:
        metrics = get_metrics_service().calculate_metrics(iteration_ids)
    except Exception as e:
        return error_response(e, "Failed to calculate metrics")

    raw = include_raw_data()
    return jsonify({
        "metrics": [m.to_dict(include_raw=raw) for m in metrics],
        "count": len(metrics)
    })


@bp.route("/stored", methods=["GET"])
def list_stored_metrics():
    """List previously calculated metrics.

    Query params:
        - start_date / end_date: Optional range on the iteration start date
    """
    start_date, end_date = get_date_range()
    repository = get_metrics_repository()

    try:
        if start_date or end_date:
            metrics = repository.find_by_date_range(start_date, end_date)
        else:
            metrics = repository.find_all()
    except Exception as e:
        return error_response(e, "Failed to load stored metrics")

    return jsonify({
        "metrics": [m.to_dict(include_raw=False) for m in metrics],
        "count": len(metrics)
    })


@bp.route("/stored/<metric_id>", methods=["DELETE"])
def delete_stored_metric(metric_id):
    if not get_metrics_repository().delete(metric_id):
        return jsonify({"error": {"message": "Metric not found", "details": metric_id}}), 404
    return jsonify({"data": {"deleted": metric_id}})


@bp.route("/stored", methods=["DELETE"])
def delete_all_stored_metrics():
    count = get_metrics_repository().delete_all()
    return jsonify({"data": {"deleted": count}})


@bp.route("/<metric_name>", methods=["GET"])
def get_metric_chart(metric_name):
    """Get one metric series with SPC control limits.

    Path params:
        - metric_name: velocity, throughput, cycle-time, lead-time,
          deployment-frequency, mttr or change-failure-rate

    Query params:
        - iterations: Comma-separated iteration IDs (required)

    Returns:
        - Per-iteration values
        - Average, upper/lower control limits and average moving range
        - Iterations outside the limits
    """
    if metric_name not in METRIC_FIELDS:
        return jsonify({
            "error": {
                "message": f"Unknown metric: {metric_name}",
                "details": f"Expected one of: {', '.join(sorted(METRIC_FIELDS))}"
            }
        }), 404

    iteration_ids = get_iteration_ids()
    if not iteration_ids:
        return missing_iterations_response()

    try:
        service = get_metrics_service()
        metrics = service.calculate_metrics(iteration_ids)
        chart = service.control_chart(metrics, metric_name)
    except Exception as e:
        return error_response(e, f"Failed to calculate {metric_name} metrics")

    return jsonify({"data": chart})
