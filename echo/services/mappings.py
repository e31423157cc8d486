"""
Status and label tables used by the issue sync.

Pure data plus lookups with an optional per-organization override layer.
Nothing here touches the database or the network.
"""

from typing import Iterable, List, Mapping, Optional

EXTERNAL_OPEN = "open"
EXTERNAL_CLOSED = "closed"
EXTERNAL_STATES = (EXTERNAL_OPEN, EXTERNAL_CLOSED)

FEEDBACK_STATUSES = ("new", "in-progress", "planned", "completed", "closed")

# Local feedback status -> tracker issue state
STATUS_TO_EXTERNAL_STATE = {
    "new": EXTERNAL_OPEN,
    "open": EXTERNAL_OPEN,
    "in-progress": EXTERNAL_OPEN,
    "planned": EXTERNAL_OPEN,
    "completed": EXTERNAL_CLOSED,
    "closed": EXTERNAL_CLOSED,
    "rejected": EXTERNAL_CLOSED,
}

# Tracker issue state -> local feedback status
EXTERNAL_STATE_TO_STATUS = {
    EXTERNAL_OPEN: "in-progress",
    EXTERNAL_CLOSED: "completed",
}

DEFAULT_TYPE_LABELS = {
    "bug": "bug",
    "feature": "enhancement",
    "improvement": "enhancement",
    "question": "question",
}

DEFAULT_PRIORITY_LABELS = {
    "low": "priority: low",
    "medium": "priority: medium",
    "high": "priority: high",
    "urgent": "priority: urgent",
}

DEFAULT_TRIGGER_STATUSES = ("in-progress", "planned")


def _lookup(key: Optional[str], defaults: Mapping[str, str], overrides: Optional[Mapping[str, str]]) -> Optional[str]:
    if not key:
        return None
    if overrides and overrides.get(key):
        return overrides[key]
    return defaults.get(key)


def resolve_external_state(status: str, overrides: Optional[Mapping[str, str]] = None) -> str:
    """Target tracker state for a local status; unknown statuses stay open."""
    state = _lookup(status, STATUS_TO_EXTERNAL_STATE, overrides)
    return state if state in EXTERNAL_STATES else EXTERNAL_OPEN


def resolve_local_status(state: Optional[str]) -> Optional[str]:
    return EXTERNAL_STATE_TO_STATUS.get(state) if state else None


def resolve_labels(
    feedback_type: Optional[str],
    priority: Optional[str],
    type_overrides: Optional[Mapping[str, str]] = None,
    priority_overrides: Optional[Mapping[str, str]] = None,
) -> List[str]:
    labels = []
    for label in (
        _lookup(feedback_type, DEFAULT_TYPE_LABELS, type_overrides),
        _lookup(priority, DEFAULT_PRIORITY_LABELS, priority_overrides),
    ):
        if label and label not in labels:
            labels.append(label)
    return labels


def should_trigger_issue_creation(status: str, trigger_statuses: Optional[Iterable[str]] = None) -> bool:
    if trigger_statuses is None:
        trigger_statuses = DEFAULT_TRIGGER_STATUSES
    return status in set(trigger_statuses)
