"""Domain records built from GitLab GraphQL nodes."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from services.dates import parse_datetime, to_iso
from services.errors import ValidationError

# System note body written by GitLab on status changes: "set status to **In progress**"
STATUS_NOTE_PATTERN = re.compile(r"set status to \*\*(.+?)\*\*")
STATUS_NOTE_ACTION = "work_item_status"


def _nodes(container) -> list:
    """Unwrap a GraphQL connection ({"nodes": [...]}) into a list."""
    if not container:
        return []
    if isinstance(container, list):
        return container
    return container.get("nodes") or []


@dataclass(frozen=True)
class Iteration:
    id: str
    title: str
    start_date: str
    due_date: str
    iid: Optional[str] = None
    state: Optional[str] = None
    web_url: Optional[str] = None

    @classmethod
    def from_node(cls, node: dict) -> "Iteration":
        return cls(
            id=node["id"],
            title=node.get("title") or "Unknown Sprint",
            start_date=node.get("startDate"),
            due_date=node.get("dueDate"),
            iid=node.get("iid"),
            state=node.get("state"),
            web_url=node.get("webUrl"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "iid": self.iid,
            "title": self.title,
            "state": self.state,
            "startDate": self.start_date,
            "dueDate": self.due_date,
            "webUrl": self.web_url,
        }


@dataclass(frozen=True)
class StatusNote:
    """A status-change record taken from an issue's system notes."""

    created_at: datetime
    text: str

    def to_dict(self) -> dict:
        return {"createdAt": to_iso(self.created_at), "text": self.text}


def parse_status_notes(note_nodes: list) -> list:
    """Keep only status-change system notes, ordered by time."""
    notes = []
    for note in note_nodes:
        if not note.get("system"):
            continue
        metadata = note.get("systemNoteMetadata") or {}
        if metadata.get("action") != STATUS_NOTE_ACTION:
            continue
        match = STATUS_NOTE_PATTERN.search(note.get("body") or "")
        created_at = parse_datetime(note.get("createdAt"))
        if not match or created_at is None:
            continue
        notes.append(StatusNote(created_at=created_at, text=match.group(1)))
    notes.sort(key=lambda n: n.created_at)
    return notes


@dataclass
class Issue:
    id: str
    title: str
    state: str
    created_at: datetime
    closed_at: Optional[datetime] = None
    weight: Optional[float] = None
    assignees: list = field(default_factory=list)
    status_notes: list = field(default_factory=list)
    iid: Optional[str] = None
    web_url: Optional[str] = None
    labels: list = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    @classmethod
    def from_node(cls, node: dict) -> "Issue":
        return cls(
            id=node["id"],
            title=node.get("title", ""),
            state=node.get("state", "opened"),
            created_at=parse_datetime(node.get("createdAt")),
            closed_at=parse_datetime(node.get("closedAt")),
            weight=node.get("weight"),
            assignees=[a.get("username") for a in _nodes(node.get("assignees"))],
            status_notes=parse_status_notes(_nodes(node.get("notes"))),
            iid=node.get("iid"),
            web_url=node.get("webUrl"),
            labels=[label.get("title") for label in _nodes(node.get("labels"))],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "iid": self.iid,
            "title": self.title,
            "state": self.state,
            "createdAt": to_iso(self.created_at),
            "closedAt": to_iso(self.closed_at),
            "weight": self.weight,
            "assignees": list(self.assignees),
            "labels": list(self.labels),
            "statusNotes": [n.to_dict() for n in self.status_notes],
            "webUrl": self.web_url,
        }


@dataclass(frozen=True)
class TimelineEvent:
    occurred_at: Optional[datetime]
    tags: tuple = ()
    note: Optional[str] = None

    @classmethod
    def from_node(cls, node: dict) -> "TimelineEvent":
        return cls(
            occurred_at=parse_datetime(node.get("occurredAt")),
            tags=tuple(tag.get("name", "") for tag in _nodes(node.get("timelineEventTags"))),
            note=node.get("note"),
        )

    def to_dict(self) -> dict:
        return {
            "occurredAt": to_iso(self.occurred_at),
            "tags": list(self.tags),
            "note": self.note,
        }


@dataclass
class Incident:
    id: str
    created_at: Optional[datetime]
    closed_at: Optional[datetime] = None
    timeline_events: list = field(default_factory=list)
    iid: Optional[str] = None
    title: Optional[str] = None
    state: Optional[str] = None
    updated_at: Optional[datetime] = None
    web_url: Optional[str] = None

    @classmethod
    def from_node(cls, node: dict, timeline_events: list = None) -> "Incident":
        return cls(
            id=node["id"],
            created_at=parse_datetime(node.get("createdAt")),
            closed_at=parse_datetime(node.get("closedAt")),
            timeline_events=list(timeline_events or []),
            iid=node.get("iid"),
            title=node.get("title"),
            state=node.get("state"),
            updated_at=parse_datetime(node.get("updatedAt")),
            web_url=node.get("webUrl"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "iid": self.iid,
            "title": self.title,
            "state": self.state,
            "createdAt": to_iso(self.created_at),
            "closedAt": to_iso(self.closed_at),
            "updatedAt": to_iso(self.updated_at),
            "webUrl": self.web_url,
            "timelineEvents": [e.to_dict() for e in self.timeline_events],
        }


@dataclass(frozen=True)
class Commit:
    committed_date: Optional[datetime]
    sha: Optional[str] = None

    def to_dict(self) -> dict:
        return {"sha": self.sha, "committedDate": to_iso(self.committed_date)}


@dataclass
class MergeRequest:
    id: str
    merged_at: Optional[datetime] = None
    commits: list = field(default_factory=list)
    iid: Optional[str] = None
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    target_branch: Optional[str] = None
    web_url: Optional[str] = None

    @property
    def first_commit_at(self) -> Optional[datetime]:
        dates = [c.committed_date for c in self.commits if c.committed_date is not None]
        return min(dates) if dates else None

    @classmethod
    def from_node(cls, node: dict) -> "MergeRequest":
        return cls(
            id=node["id"],
            merged_at=parse_datetime(node.get("mergedAt")),
            commits=[
                Commit(committed_date=parse_datetime(c.get("committedDate")), sha=c.get("sha"))
                for c in _nodes(node.get("commits"))
            ],
            iid=node.get("iid"),
            title=node.get("title"),
            created_at=parse_datetime(node.get("createdAt")),
            target_branch=node.get("targetBranch"),
            web_url=node.get("webUrl"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "iid": self.iid,
            "title": self.title,
            "createdAt": to_iso(self.created_at),
            "mergedAt": to_iso(self.merged_at),
            "targetBranch": self.target_branch,
            "webUrl": self.web_url,
            "commits": [c.to_dict() for c in self.commits],
        }


@dataclass
class IterationData:
    """Everything fetched for one iteration, ready for aggregation."""

    iteration: Iteration
    issues: list
    incidents: list
    merge_requests: list


def _new_metric_id() -> str:
    return f"metric-{uuid.uuid4().hex[:12]}"


def _utcnow_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


@dataclass
class Metric:
    """Derived metrics for a single iteration."""

    iteration_id: str
    velocity_points: float = 0
    velocity_stories: int = 0
    cycle_time_avg: float = 0
    cycle_time_p50: float = 0
    cycle_time_p90: float = 0
    lead_time_avg: float = 0
    lead_time_p50: float = 0
    lead_time_p90: float = 0
    deployment_frequency: float = 0
    mttr_avg: float = 0
    change_failure_rate: float = 0
    raw_data: dict = field(default_factory=dict)
    iteration_title: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    issue_count: int = 0
    mr_count: int = 0
    deployment_count: int = 0
    incident_count: int = 0
    id: str = field(default_factory=_new_metric_id)
    created_at: str = field(default_factory=_utcnow_iso)

    # camelCase JSON key -> attribute
    _FIELDS = {
        "id": "id",
        "iterationId": "iteration_id",
        "iterationTitle": "iteration_title",
        "startDate": "start_date",
        "endDate": "end_date",
        "velocityPoints": "velocity_points",
        "velocityStories": "velocity_stories",
        "cycleTimeAvg": "cycle_time_avg",
        "cycleTimeP50": "cycle_time_p50",
        "cycleTimeP90": "cycle_time_p90",
        "leadTimeAvg": "lead_time_avg",
        "leadTimeP50": "lead_time_p50",
        "leadTimeP90": "lead_time_p90",
        "deploymentFrequency": "deployment_frequency",
        "mttrAvg": "mttr_avg",
        "changeFailureRate": "change_failure_rate",
        "issueCount": "issue_count",
        "mrCount": "mr_count",
        "deploymentCount": "deployment_count",
        "incidentCount": "incident_count",
        "rawData": "raw_data",
        "createdAt": "created_at",
    }

    def __post_init__(self):
        self.validate()

    def validate(self):
        if not self.iteration_id:
            raise ValidationError("iterationId is required")
        if not isinstance(self.velocity_points, (int, float)) or self.velocity_points < 0:
            raise ValidationError("velocityPoints must be a non-negative number")
        if not isinstance(self.cycle_time_avg, (int, float)) or self.cycle_time_avg < 0:
            raise ValidationError("cycleTimeAvg must be a non-negative number")

    def to_dict(self, include_raw: bool = True) -> dict:
        data = {key: getattr(self, attr) for key, attr in self._FIELDS.items()}
        if not include_raw:
            data.pop("rawData")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Metric":
        kwargs = {attr: data[key] for key, attr in cls._FIELDS.items() if key in data}
        return cls(**kwargs)


@dataclass(frozen=True)
class ControlLimits:
    average: float
    upper_limit: float
    lower_limit: float
    mr_bar: float

    def to_dict(self) -> dict:
        return {
            "average": self.average,
            "upperLimit": self.upper_limit,
            "lowerLimit": self.lower_limit,
            "mrBar": self.mr_bar,
        }
