"""Orchestrates fetching, aggregation and storage of iteration metrics."""

import logging
from typing import Optional

from services.control_limits import calculate_control_limits, find_outliers, metric_series
from services.errors import ValidationError
from services.gitlab_client import GitLabClient
from services.metrics_aggregator import MetricsAggregator
from services.metrics_repository import MetricsRepository

logger = logging.getLogger(__name__)


class MetricsService:
    """Computes metrics for a batch of iterations."""

    def __init__(self, gitlab_client: GitLabClient,
                 aggregator: Optional[MetricsAggregator] = None,
                 repository: Optional[MetricsRepository] = None):
        self.gitlab_client = gitlab_client
        self.aggregator = aggregator or MetricsAggregator()
        self.repository = repository

    def calculate_metrics(self, iteration_ids) -> list:
        """Fetch, aggregate and (optionally) store metrics, in input order.

        Fetching is all-or-nothing: one failed iteration fails the batch.
        """
        iteration_ids = [i for i in iteration_ids or [] if i]
        if not iteration_ids:
            raise ValidationError("At least one iteration id is required")

        batch = self.gitlab_client.fetch_multiple_iterations(iteration_ids)

        metrics = []
        for data in batch:
            metric = self.aggregator.aggregate(
                data.iteration, data.issues, data.incidents, data.merge_requests
            )
            # saves stay sequential; the file repository rewrites one file
            if self.repository is not None:
                self.repository.save(metric)
            metrics.append(metric)

        logger.info("Calculated metrics for %d iterations", len(metrics))
        return metrics

    @staticmethod
    def series(metrics, name: str) -> list:
        return metric_series(metrics, name)

    @staticmethod
    def control_chart(metrics, name: str) -> dict:
        """Series, SPC limits and out-of-control iterations for one metric."""
        values = MetricsService.series(metrics, name)
        limits = calculate_control_limits(values)
        outliers = find_outliers(values, limits)
        return {
            "metric": name,
            "points": [
                {
                    "iterationId": metric.iteration_id,
                    "iterationTitle": metric.iteration_title,
                    "startDate": metric.start_date,
                    "value": value,
                }
                for metric, value in zip(metrics, values)
            ],
            "limits": limits.to_dict(),
            "outliers": [metrics[i].iteration_id for i in outliers],
        }
