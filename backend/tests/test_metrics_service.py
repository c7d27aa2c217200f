"""Tests for the metrics orchestration service."""

from unittest.mock import Mock

import pytest

from services.dates import parse_datetime
from services.errors import TransportError, ValidationError
from services.metrics_service import MetricsService
from services.models import Issue, Iteration, IterationData, Metric, StatusNote


def iteration_data(iteration_id, title, start_date, due_date, issues=()):
    iteration = Iteration(id=iteration_id, title=title, start_date=start_date, due_date=due_date)
    return IterationData(iteration=iteration, issues=list(issues), incidents=[], merge_requests=[])


@pytest.fixture
def gitlab_client():
    client = Mock()
    client.fetch_multiple_iterations.return_value = [
        iteration_data("it-2", "Sprint 12", "2025-07-21", "2025-08-03"),
        iteration_data("it-1", "Sprint 11", "2025-07-07", "2025-07-20"),
    ]
    return client


class TestCalculateMetrics:
    """Test batch calculation."""

    def test_one_metric_per_iteration_in_order(self, gitlab_client):
        service = MetricsService(gitlab_client)

        metrics = service.calculate_metrics(["it-2", "it-1"])

        gitlab_client.fetch_multiple_iterations.assert_called_once_with(["it-2", "it-1"])
        assert [m.iteration_id for m in metrics] == ["it-2", "it-1"]
        assert metrics[0].iteration_title == "Sprint 12"

    def test_saves_each_metric(self, gitlab_client):
        repository = Mock()
        service = MetricsService(gitlab_client, repository=repository)

        metrics = service.calculate_metrics(["it-2", "it-1"])

        assert [c[0][0] for c in repository.save.call_args_list] == metrics

    def test_requires_iteration_ids(self, gitlab_client):
        service = MetricsService(gitlab_client)

        with pytest.raises(ValidationError):
            service.calculate_metrics([])
        with pytest.raises(ValidationError):
            service.calculate_metrics(["", None])

        gitlab_client.fetch_multiple_iterations.assert_not_called()

    def test_status_set_after_close_does_not_fail_batch(self, gitlab_client):
        """An in-progress note dated after close is a data anomaly, not bad input."""
        closed = Issue(
            id="gid://gitlab/Issue/1",
            title="Issue",
            state="closed",
            created_at=parse_datetime("2025-07-21T09:00:00Z"),
            closed_at=parse_datetime("2025-07-22T09:00:00Z"),
            status_notes=[StatusNote(created_at=parse_datetime("2025-07-25T09:00:00Z"), text="In progress")],
        )
        gitlab_client.fetch_multiple_iterations.return_value = [
            iteration_data("it-2", "Sprint 12", "2025-07-21", "2025-08-03", issues=[closed]),
        ]

        metrics = MetricsService(gitlab_client).calculate_metrics(["it-2"])

        assert metrics[0].cycle_time_avg == pytest.approx(1.0)

    def test_fetch_failure_saves_nothing(self, gitlab_client):
        gitlab_client.fetch_multiple_iterations.side_effect = TransportError("timed out")
        repository = Mock()
        service = MetricsService(gitlab_client, repository=repository)

        with pytest.raises(TransportError):
            service.calculate_metrics(["it-1"])

        repository.save.assert_not_called()


class TestControlChart:
    """Test chart payloads."""

    def test_chart_payload(self):
        metrics = [
            Metric(iteration_id=f"it-{i}", iteration_title=f"Sprint {i}",
                   start_date=f"2025-07-{i:02d}", velocity_points=value)
            for i, value in enumerate([5, 5, 5, 5, 5, 5, 5, 5, 5, 20], start=1)
        ]

        chart = MetricsService.control_chart(metrics, "velocity")

        assert chart["metric"] == "velocity"
        assert len(chart["points"]) == 10
        assert chart["points"][0] == {
            "iterationId": "it-1",
            "iterationTitle": "Sprint 1",
            "startDate": "2025-07-01",
            "value": 5,
        }
        assert chart["limits"]["average"] == pytest.approx(6.5)
        assert chart["outliers"] == ["it-10"]

    def test_series(self):
        metrics = [Metric(iteration_id="it-1", velocity_stories=3),
                   Metric(iteration_id="it-2", velocity_stories=4)]
        assert MetricsService.series(metrics, "throughput") == [3, 4]

    def test_unknown_metric(self):
        with pytest.raises(ValidationError):
            MetricsService.control_chart([Metric(iteration_id="it-1")], "happiness")
