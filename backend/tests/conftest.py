"""Shared fixtures for iteration metrics tests."""

import os
import sys
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.graphql_client import GraphQLClient, ResponseCache
from services.models import Issue, Iteration, MergeRequest


class FakeClock:
    """Monotonic clock the tests can move forward."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def graphql_response(data=None, errors=None, status_code=200):
    """Mock requests.Response carrying a GraphQL body."""
    body = {}
    if data is not None:
        body["data"] = data
    if errors:
        body["errors"] = errors
    return Mock(status_code=status_code, reason="OK", json=Mock(return_value=body))


def connection_page(nodes, has_next_page, end_cursor=None,
                    root="group", connection="issues"):
    """One page of a paginated connection under data.<root>.<connection>."""
    return graphql_response({
        root: {
            connection: {
                "nodes": nodes,
                "pageInfo": {"hasNextPage": has_next_page, "endCursor": end_cursor},
            }
        }
    })


def make_session(*responses):
    session = Mock()
    session.headers = {}
    session.post.side_effect = list(responses)
    return session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def make_client(clock, sleep):
    """Build a GraphQLClient around canned responses."""
    def _make(*responses, ttl=300):
        session = make_session(*responses)
        client = GraphQLClient(
            "https://gitlab.example.com/",
            "test-token",
            session=session,
            cache=ResponseCache(clock=clock),
            ttl=ttl,
            page_delay=0.1,
            sleep=sleep,
        )
        return client
    return _make


@pytest.fixture
def sample_iteration():
    """Two-week iteration, 2025-07-21 to 2025-08-03 inclusive."""
    return Iteration(
        id="gid://gitlab/Iteration/101",
        title="Sprint 12",
        start_date="2025-07-21",
        due_date="2025-08-03",
    )


@pytest.fixture
def iteration_nodes():
    return [
        {
            "id": "gid://gitlab/Iteration/100",
            "iid": "11",
            "title": "Sprint 11",
            "state": "closed",
            "startDate": "2025-07-07",
            "dueDate": "2025-07-20",
        },
        {
            "id": "gid://gitlab/Iteration/101",
            "iid": "12",
            "title": "Sprint 12",
            "state": "closed",
            "startDate": "2025-07-21",
            "dueDate": "2025-08-03",
        },
    ]


@pytest.fixture
def issue_node():
    """Closed issue moved to In progress two days after creation."""
    return {
        "id": "gid://gitlab/Issue/501",
        "iid": "42",
        "title": "Add export button",
        "state": "closed",
        "createdAt": "2025-07-21T09:00:00Z",
        "closedAt": "2025-07-28T09:00:00Z",
        "weight": 3,
        "webUrl": "https://gitlab.example.com/acme/web/-/issues/42",
        "labels": {"nodes": [{"title": "feature"}]},
        "assignees": {"nodes": [{"username": "dev1"}]},
        "notes": {
            "nodes": [
                {
                    "body": "changed the description",
                    "system": True,
                    "systemNoteMetadata": {"action": "description"},
                    "createdAt": "2025-07-21T10:00:00Z",
                },
                {
                    "body": "set status to **In progress**",
                    "system": True,
                    "systemNoteMetadata": {"action": "work_item_status"},
                    "createdAt": "2025-07-23T09:00:00Z",
                },
                {
                    "body": "set status to **Done**",
                    "system": True,
                    "systemNoteMetadata": {"action": "work_item_status"},
                    "createdAt": "2025-07-28T09:00:00Z",
                },
            ]
        },
    }


@pytest.fixture
def incident_node():
    return {
        "id": "gid://gitlab/Issue/900",
        "iid": "7",
        "title": "Checkout returns 500",
        "state": "closed",
        "createdAt": "2025-07-30T21:42:38Z",
        "closedAt": "2025-07-31T08:00:00Z",
        "updatedAt": "2025-07-31T08:00:00Z",
        "webUrl": "https://gitlab.example.com/acme/web/-/issues/7",
    }


@pytest.fixture
def timeline_event_nodes():
    return [
        {
            "id": "gid://gitlab/Timeline/1",
            "occurredAt": "2025-07-25T15:03:00Z",
            "note": "Bad deploy https://gitlab.example.com/acme/web/-/merge_requests/88",
            "timelineEventTags": {"nodes": [{"name": "Start time"}]},
        },
        {
            "id": "gid://gitlab/Timeline/2",
            "occurredAt": "2025-07-29T10:09:00Z",
            "note": "Rolled back",
            "timelineEventTags": {"nodes": [{"name": "End time"}]},
        },
    ]


@pytest.fixture
def merge_request_node():
    return {
        "id": "gid://gitlab/MergeRequest/88",
        "iid": "88",
        "title": "Speed up checkout",
        "createdAt": "2025-07-22T12:00:00Z",
        "mergedAt": "2025-07-24T12:00:00Z",
        "targetBranch": "main",
        "webUrl": "https://gitlab.example.com/acme/web/-/merge_requests/88",
        "commits": {
            "nodes": [
                {"sha": "bbb", "committedDate": "2025-07-22T12:00:00Z"},
                {"sha": "aaa", "committedDate": "2025-07-21T12:00:00Z"},
            ]
        },
    }


@pytest.fixture
def sample_issue(issue_node):
    return Issue.from_node(issue_node)


@pytest.fixture
def sample_merge_request(merge_request_node):
    return MergeRequest.from_node(merge_request_node)


@pytest.fixture
def app(tmp_path):
    """Create Flask test app."""
    from app import create_app
    app = create_app({
        "TESTING": True,
        "GITLAB_TOKEN": "test-token",
        "GITLAB_PROJECT_PATH": "acme/web",
        "METRICS_DATA_DIR": str(tmp_path),
        "METRICS_CONFIG_PATH": str(tmp_path / "missing-config.json"),
    })
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
