"""Resolve when an incident actually started and ended.

GitLab records when an incident issue was created and closed, which is often
hours or days away from the real outage. Responders tag timeline events
("Start time", "End time", "Impact mitigated") with the real instants. Each
instant is resolved by trying an ordered list of candidates, most precise
first, until one yields a value.
"""

from typing import Callable, Optional

from services.dates import hours_between, to_iso

START_TIME_TAG = "start time"
END_TIME_TAG = "end time"
IMPACT_MITIGATED_TAG = "impact mitigated"


def find_tagged_event(events, tag_substring: str):
    """First event (in event order) with a tag containing tag_substring, case-insensitive."""
    needle = tag_substring.lower()
    for event in events or []:
        if any(needle in (tag or "").lower() for tag in event.tags):
            return event
    return None


def tagged_event_time(tag_substring: str) -> Callable:
    def candidate(incident):
        event = find_tagged_event(incident.timeline_events, tag_substring)
        return event.occurred_at if event else None
    return candidate


def created_at(incident):
    return incident.created_at


def closed_at(incident):
    return incident.closed_at


# (source name, candidate) pairs, tried in order
START_CANDIDATES = (
    ("timeline_start", tagged_event_time(START_TIME_TAG)),
    ("created", created_at),
)

END_CANDIDATES = (
    ("timeline_end", tagged_event_time(END_TIME_TAG)),
    ("timeline_mitigated", tagged_event_time(IMPACT_MITIGATED_TAG)),
    ("closed", closed_at),
)


def first_resolved(candidates, incident) -> tuple:
    """Return (source, instant) from the first candidate yielding a value."""
    for source, candidate in candidates:
        instant = candidate(incident)
        if instant is not None:
            return source, instant
    return None, None


class IncidentTimingResolver:
    """Resolves incident start/end instants with cascading fallback.

    Never raises on missing data: absent tiers fall through to coarser ones,
    and an incident with no resolvable end contributes no downtime.
    """

    def __init__(self, start_candidates=START_CANDIDATES, end_candidates=END_CANDIDATES):
        self.start_candidates = tuple(start_candidates)
        self.end_candidates = tuple(end_candidates)

    def resolve_start(self, incident):
        return first_resolved(self.start_candidates, incident)[1]

    def resolve_end(self, incident):
        return first_resolved(self.end_candidates, incident)[1]

    def start_source(self, incident) -> Optional[str]:
        return first_resolved(self.start_candidates, incident)[0]

    def end_source(self, incident) -> Optional[str]:
        return first_resolved(self.end_candidates, incident)[0]

    def downtime_hours(self, incident) -> float:
        start = self.resolve_start(incident)
        end = self.resolve_end(incident)
        if start is None or end is None:
            return 0
        return hours_between(start, end)

    def describe(self, incident) -> dict:
        """Resolved timing and its provenance, for raw data output."""
        start_source, start = first_resolved(self.start_candidates, incident)
        end_source, end = first_resolved(self.end_candidates, incident)
        return {
            "actualStartTime": to_iso(start),
            "actualEndTime": to_iso(end),
            "startTimeSource": start_source,
            "endTimeSource": end_source,
            "hasTimelineEvents": bool(incident.timeline_events),
            "downtimeHours": hours_between(start, end) if start and end else 0,
        }
