"""Turn one iteration's issues, incidents and merge requests into a Metric."""

import logging
import math
from typing import Callable, Optional

from services.dates import days_between, in_window, window_bounds, window_days
from services.incident_timing import IncidentTimingResolver
from services.models import Metric
from services.status_changes import first_match, work_started_at

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1


def percentile(values, p: float) -> float:
    """Nearest-rank percentile: sorted[ceil(p * n) - 1], clamped to the series.

    Returns 0 for an empty series. This is the only percentile definition
    used for cycle time and lead time; P50/P90 golden values depend on it.
    """
    if not values:
        return 0
    ordered = sorted(values)
    index = math.ceil(p * len(ordered)) - 1
    index = min(max(index, 0), len(ordered) - 1)
    return ordered[index]


def summarize(values) -> dict:
    """Average, P50 and P90 of a series of durations."""
    if not values:
        return {"avg": 0, "p50": 0, "p90": 0}
    return {
        "avg": sum(values) / len(values),
        "p50": percentile(values, 0.5),
        "p90": percentile(values, 0.9),
    }


class MetricsAggregator:
    """Computes velocity, flow and DORA metrics for an iteration window."""

    def __init__(self, resolver: Optional[IncidentTimingResolver] = None,
                 work_start_policy: Callable = first_match,
                 deployment_branches=None):
        self.resolver = resolver or IncidentTimingResolver()
        self.work_start_policy = work_start_policy
        self.deployment_branches = {
            b.lower() for b in deployment_branches or []
        }

    def completed_issues(self, issues, start, end) -> list:
        return [
            issue for issue in issues
            if issue.is_closed and in_window(issue.closed_at, start, end)
        ]

    def deployments(self, merge_requests, start, end) -> list:
        """Merged requests in the window, restricted to deployment branches if configured."""
        deployed = []
        for mr in merge_requests:
            if not in_window(mr.merged_at, start, end):
                continue
            if self.deployment_branches and (mr.target_branch or "").lower() not in self.deployment_branches:
                continue
            deployed.append(mr)
        return deployed

    def incidents_started_in(self, incidents, start, end) -> list:
        """Incidents attributed to the window by their resolved start, not createdAt."""
        return [
            incident for incident in incidents
            if in_window(self.resolver.resolve_start(incident), start, end)
        ]

    def velocity(self, completed) -> tuple:
        points = sum(
            issue.weight if issue.weight is not None else DEFAULT_WEIGHT
            for issue in completed
        )
        return points, len(completed)

    def cycle_times(self, completed) -> list:
        """Days from work start to close for each completed issue."""
        times = []
        for issue in completed:
            started = work_started_at(issue, self.work_start_policy)
            if started is not None and started > issue.closed_at:
                logger.warning(
                    "Issue %s moved to in progress after it closed, using createdAt",
                    issue.iid or issue.id,
                )
                started = issue.created_at
            if started is None or started > issue.closed_at:
                continue
            times.append(days_between(started, issue.closed_at))
        return times

    def lead_times(self, deployed) -> list:
        """Days from first commit (or MR creation) to merge."""
        times = []
        for mr in deployed:
            first_change = mr.first_commit_at or mr.created_at
            if first_change is None:
                continue
            times.append(days_between(first_change, mr.merged_at))
        return times

    def mttr(self, incidents) -> float:
        """Mean downtime in hours over incidents whose end is known."""
        downtimes = [
            self.resolver.downtime_hours(incident)
            for incident in incidents
            if self.resolver.resolve_end(incident) is not None
        ]
        if not downtimes:
            return 0
        return sum(downtimes) / len(downtimes)

    @staticmethod
    def change_failure_rate(incident_count: int, deployment_count: int) -> float:
        if deployment_count == 0:
            return 0
        return incident_count / deployment_count * 100

    def aggregate(self, iteration, issues, incidents, merge_requests) -> Metric:
        start, end = window_bounds(iteration)
        days = window_days(iteration)

        completed = self.completed_issues(issues, start, end)
        deployed = self.deployments(merge_requests, start, end)
        window_incidents = self.incidents_started_in(incidents, start, end)

        points, stories = self.velocity(completed)
        cycle_time = summarize(self.cycle_times(completed))
        lead_time = summarize(self.lead_times(deployed))

        logger.info(
            "Aggregated %s: %d/%d issues completed, %d deployments, %d incidents",
            iteration.title, len(completed), len(issues), len(deployed), len(window_incidents),
        )

        return Metric(
            iteration_id=iteration.id,
            iteration_title=iteration.title,
            start_date=iteration.start_date,
            end_date=iteration.due_date,
            velocity_points=points,
            velocity_stories=stories,
            cycle_time_avg=cycle_time["avg"],
            cycle_time_p50=cycle_time["p50"],
            cycle_time_p90=cycle_time["p90"],
            lead_time_avg=lead_time["avg"],
            lead_time_p50=lead_time["p50"],
            lead_time_p90=lead_time["p90"],
            deployment_frequency=len(deployed) / days,
            mttr_avg=self.mttr(window_incidents),
            change_failure_rate=self.change_failure_rate(len(window_incidents), len(deployed)),
            issue_count=len(issues),
            mr_count=len(merge_requests),
            deployment_count=len(deployed),
            incident_count=len(window_incidents),
            raw_data={
                "iteration": iteration.to_dict(),
                "issues": [issue.to_dict() for issue in completed],
                "mergeRequests": [mr.to_dict() for mr in deployed],
                "incidents": [
                    {**incident.to_dict(), **self.resolver.describe(incident)}
                    for incident in window_incidents
                ],
            },
        )
