"""Response cache inspection endpoints."""

from flask import Blueprint, jsonify

from app.api.responses import error_response
from app.factory import get_graphql_client

bp = Blueprint("cache", __name__, url_prefix="/api/cache")


@bp.route("", methods=["GET"])
def cache_status():
    """Hit/miss counters and entry count of the GraphQL response cache."""
    try:
        client = get_graphql_client()
    except Exception as e:
        return error_response(e, "Failed to read cache status")

    return jsonify({"data": {**client.cache.stats(), "ttlSeconds": client.ttl}})


@bp.route("", methods=["DELETE"])
def clear_cache():
    """Drop every cached response."""
    try:
        cleared = get_graphql_client().cache.clear()
    except Exception as e:
        return error_response(e, "Failed to clear cache")

    return jsonify({"data": {"cleared": cleared}})
