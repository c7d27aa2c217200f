"""Builds the metrics services from app configuration.

One GraphQL client is kept per Flask app so its response cache is shared
across requests.
"""

from flask import current_app

from services.errors import ConfigurationError
from services.gitlab_client import GitLabClient
from services.graphql_client import GraphQLClient
from services.metrics_aggregator import MetricsAggregator
from services.metrics_repository import FileMetricsRepository
from services.metrics_service import MetricsService

EXTENSION_KEY = "iteration_metrics"


def _extension() -> dict:
    return current_app.extensions.setdefault(EXTENSION_KEY, {})


def get_graphql_client() -> GraphQLClient:
    ext = _extension()
    if "graphql" not in ext:
        config = current_app.config
        if not config.get("GITLAB_TOKEN"):
            raise ConfigurationError("GITLAB_TOKEN is required")
        ext["graphql"] = GraphQLClient(
            config["GITLAB_URL"],
            config["GITLAB_TOKEN"],
            ttl=config["CACHE_TTL_SECONDS"],
            page_delay=config["PAGE_DELAY_SECONDS"],
        )
    return ext["graphql"]


def get_gitlab_client() -> GitLabClient:
    config = current_app.config
    if not config.get("GITLAB_PROJECT_PATH"):
        raise ConfigurationError("GITLAB_PROJECT_PATH is required")
    return GitLabClient(
        get_graphql_client(),
        config["GITLAB_PROJECT_PATH"],
        incident_lookback_days=config["INCIDENT_LOOKBACK_DAYS"],
        incident_lookahead_days=config["INCIDENT_LOOKAHEAD_DAYS"],
        max_workers=config["MAX_WORKERS"],
    )


def get_metrics_repository() -> FileMetricsRepository:
    ext = _extension()
    if "repository" not in ext:
        ext["repository"] = FileMetricsRepository(current_app.config["METRICS_DATA_DIR"])
    return ext["repository"]


def get_metrics_service() -> MetricsService:
    aggregator = MetricsAggregator(
        deployment_branches=current_app.config["DEPLOYMENT_BRANCHES"]
    )
    return MetricsService(get_gitlab_client(), aggregator, get_metrics_repository())
