"""GitLab query families used to build iteration metrics."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse

from services.dates import to_iso, window_bounds
from services.errors import RemoteAPIError, ResourceNotFoundError
from services.graphql_client import GraphQLClient
from services.models import (
    Incident, Issue, Iteration, IterationData, MergeRequest, TimelineEvent, parse_status_notes,
)
from services.status_changes import parse_status_changes

logger = logging.getLogger(__name__)

ITERATIONS_QUERY = """
query getIterations($fullPath: ID!, $after: String) {
  group(fullPath: $fullPath) {
    id
    iterations(first: 100, after: $after, includeAncestors: false) {
      pageInfo { hasNextPage endCursor }
      nodes { id iid title state startDate dueDate webUrl }
    }
  }
}
"""

ISSUES_QUERY = """
query getIterationIssues($fullPath: ID!, $iterationId: [ID!], $after: String, $not: NegatedIssueFilterInput) {
  group(fullPath: $fullPath) {
    id
    issues(iterationId: $iterationId, includeSubgroups: true, first: 100, after: $after, not: $not) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id iid title state createdAt closedAt weight webUrl
        labels { nodes { title } }
        assignees { nodes { username } }
        notes(first: 20) {
          pageInfo { hasNextPage endCursor }
          nodes { body system systemNoteMetadata { action } createdAt }
        }
      }
    }
  }
}
"""

ISSUE_NOTES_QUERY = """
query getIssueNotes($id: IssueID!, $after: String) {
  issue(id: $id) {
    id
    notes(first: 100, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { body system systemNoteMetadata { action } createdAt }
    }
  }
}
"""

INCIDENTS_QUERY = """
query getIncidents($fullPath: ID!, $after: String, $createdAfter: Time, $createdBefore: Time) {
  group(fullPath: $fullPath) {
    id
    issues(types: [INCIDENT], includeSubgroups: true, createdAfter: $createdAfter,
           createdBefore: $createdBefore, first: 100, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { id iid title state createdAt closedAt updatedAt webUrl }
    }
  }
}
"""

MERGE_REQUESTS_QUERY = """
query getMergeRequests($fullPath: ID!, $after: String, $mergedAfter: Time, $mergedBefore: Time) {
  group(fullPath: $fullPath) {
    id
    mergeRequests(state: merged, first: 100, after: $after,
                  mergedAfter: $mergedAfter, mergedBefore: $mergedBefore) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id iid title createdAt mergedAt targetBranch webUrl
        commits { nodes { sha committedDate } }
      }
    }
  }
}
"""

TIMELINE_EVENTS_QUERY = """
query getIncidentTimelineEvents($fullPath: ID!, $incidentId: IssueID!) {
  project(fullPath: $fullPath) {
    incidentManagementTimelineEvents(incidentId: $incidentId) {
      nodes { id occurredAt note timelineEventTags { nodes { name } } }
    }
  }
}
"""


def project_path_from_url(web_url: Optional[str]) -> Optional[str]:
    """'https://gitlab.com/grp/proj/-/issues/3' -> 'grp/proj'."""
    if not web_url:
        return None
    path = urlparse(web_url).path.split("/-/")[0].strip("/")
    return path or None


class GitLabClient:
    """Fetches iterations, issues, incidents and merge requests for a group."""

    def __init__(self, graphql: GraphQLClient, project_path: str,
                 incident_lookback_days: int = 60,
                 incident_lookahead_days: int = 30,
                 max_workers: int = 6):
        self.graphql = graphql
        self.project_path = project_path
        self.incident_lookback_days = incident_lookback_days
        self.incident_lookahead_days = incident_lookahead_days
        self.max_workers = max_workers

    def fetch_iterations(self) -> list:
        nodes = self.graphql.fetch_all_pages(
            ITERATIONS_QUERY,
            {"fullPath": self.project_path},
            ("group", "iterations"),
            allow_parent_fallback=True,
            context="fetching iterations",
        )
        logger.info("Found %d iterations for %s", len(nodes), self.project_path)
        return [Iteration.from_node(node) for node in nodes]

    def fetch_iteration_issues(self, iteration_id: str) -> list:
        nodes = self.graphql.fetch_all_pages(
            ISSUES_QUERY,
            {
                "fullPath": self.project_path,
                "iterationId": [iteration_id],
                "not": {"types": ["INCIDENT"]},
            },
            ("group", "issues"),
            context="fetching iteration issues",
        )
        logger.info("Fetched %d issues for iteration %s", len(nodes), iteration_id)
        return [Issue.from_node(self._with_remaining_notes(node)) for node in nodes]

    def _with_remaining_notes(self, issue_node: dict) -> dict:
        """Complete an issue's notes when the first batch has no in-progress change."""
        notes = issue_node.get("notes") or {}
        page_info = notes.get("pageInfo") or {}
        first_batch = notes.get("nodes") or []
        if not page_info.get("hasNextPage"):
            return issue_node
        if parse_status_changes(parse_status_notes(first_batch)):
            return issue_node

        remaining = self.graphql.fetch_all_pages(
            ISSUE_NOTES_QUERY,
            {"id": issue_node["id"], "after": page_info.get("endCursor")},
            ("issue", "notes"),
            path_variable="id",
            context="fetching issue notes",
        )
        logger.debug("Fetched %d more notes for issue %s", len(remaining), issue_node.get("iid"))
        return {**issue_node, "notes": {"nodes": first_batch + remaining}}

    def fetch_timeline_events(self, incident_node: dict) -> list:
        """Timeline events for one incident.

        Incidents whose project cannot be resolved, or whose timeline the API
        refuses, are treated as having no events.
        """
        project_path = project_path_from_url(incident_node.get("webUrl"))
        if not project_path:
            logger.warning("Could not extract project path for incident %s", incident_node.get("id"))
            return []

        try:
            data = self.graphql.execute(
                TIMELINE_EVENTS_QUERY,
                {"fullPath": project_path, "incidentId": incident_node["id"]},
                context="fetching incident timeline",
            )
        except (RemoteAPIError, ResourceNotFoundError) as e:
            logger.warning("Timeline events unavailable for incident %s: %s", incident_node.get("id"), e)
            return []

        project = data.get("project") or {}
        timeline = project.get("incidentManagementTimelineEvents") or {}
        return [TimelineEvent.from_node(node) for node in timeline.get("nodes") or []]

    def fetch_incidents(self, start, end) -> list:
        """Incidents created around [start, end), each with its timeline events.

        The creation range is widened on both sides: an incident can be filed
        long after it started, and can start before an iteration yet be
        filed during it. Attribution to a window happens in the aggregator.
        """
        created_after = start - timedelta(days=self.incident_lookback_days)
        created_before = end + timedelta(days=self.incident_lookahead_days)
        nodes = self.graphql.fetch_all_pages(
            INCIDENTS_QUERY,
            {
                "fullPath": self.project_path,
                "createdAfter": to_iso(created_after),
                "createdBefore": to_iso(created_before),
            },
            ("group", "issues"),
            context="fetching incidents",
        )
        logger.info("Fetched %d incidents created %s to %s", len(nodes),
                    created_after.date(), created_before.date())
        return [Incident.from_node(node, self.fetch_timeline_events(node)) for node in nodes]

    def fetch_merge_requests(self, start, end) -> list:
        nodes = self.graphql.fetch_all_pages(
            MERGE_REQUESTS_QUERY,
            {
                "fullPath": self.project_path,
                "mergedAfter": to_iso(start),
                "mergedBefore": to_iso(end),
            },
            ("group", "mergeRequests"),
            context="fetching merge requests",
        )
        logger.info("Fetched %d merged MRs from %s to %s", len(nodes), start.date(), end.date())
        return [MergeRequest.from_node(node) for node in nodes]

    def fetch_iteration_data(self, iteration: Iteration) -> IterationData:
        start, end = window_bounds(iteration)
        return IterationData(
            iteration=iteration,
            issues=self.fetch_iteration_issues(iteration.id),
            incidents=self.fetch_incidents(start, end),
            merge_requests=self.fetch_merge_requests(start, end),
        )

    def fetch_multiple_iterations(self, iteration_ids) -> list:
        """Fetch data for several iterations in parallel, in input order.

        The iteration list is fetched once. If any iteration fails, pending
        fetches are cancelled and the error is raised for the whole batch.
        """
        iterations = {it.id: it for it in self.fetch_iterations()}
        missing = [i for i in iteration_ids if i not in iterations]
        if missing:
            raise ResourceNotFoundError(
                f"Iterations not found: {', '.join(missing)}", path=self.project_path
            )

        results = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.fetch_iteration_data, iterations[iteration_id]): iteration_id
                for iteration_id in dict.fromkeys(iteration_ids)
            }
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        return [results[iteration_id] for iteration_id in iteration_ids]
