"""Classify issue status notes to find when work started."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

IN_PROGRESS_PATTERNS = (
    re.compile(r"in progress", re.IGNORECASE),
    re.compile(r"in-progress", re.IGNORECASE),
    re.compile(r"wip", re.IGNORECASE),
    re.compile(r"working", re.IGNORECASE),
)


@dataclass(frozen=True)
class StatusChange:
    instant: datetime
    status: str
    matched_pattern: str


def classify(note, patterns=IN_PROGRESS_PATTERNS) -> Optional[StatusChange]:
    for pattern in patterns:
        if pattern.search(note.text):
            return StatusChange(
                instant=note.created_at,
                status=note.text,
                matched_pattern=pattern.pattern,
            )
    return None


def parse_status_changes(notes, patterns=IN_PROGRESS_PATTERNS) -> list:
    """In-progress status changes, oldest first."""
    changes = [classify(note, patterns) for note in notes or []]
    return sorted((c for c in changes if c is not None), key=lambda c: c.instant)


def first_match(changes) -> Optional[StatusChange]:
    return changes[0] if changes else None


def last_match(changes) -> Optional[StatusChange]:
    """Latest move into progress; useful for issues reopened after closing."""
    return changes[-1] if changes else None


def work_started_at(issue, policy: Callable = first_match,
                    patterns=IN_PROGRESS_PATTERNS) -> datetime:
    """When work on the issue started, falling back to its creation time."""
    change = policy(parse_status_changes(issue.status_notes, patterns))
    if change is not None:
        return change.instant
    return issue.created_at
