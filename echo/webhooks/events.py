"""Outbound webhook event types and payload envelope"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

FEEDBACK_CREATED = "feedback.created"
FEEDBACK_UPDATED = "feedback.updated"
FEEDBACK_DELETED = "feedback.deleted"
FEEDBACK_STATUS_CHANGED = "feedback.status_changed"

COMMENT_CREATED = "comment.created"
COMMENT_UPDATED = "comment.updated"
COMMENT_DELETED = "comment.deleted"

USER_INVITED = "user.invited"
USER_JOINED = "user.joined"
USER_REMOVED = "user.removed"

WEBHOOK_EVENTS = frozenset(
    {
        FEEDBACK_CREATED,
        FEEDBACK_UPDATED,
        FEEDBACK_DELETED,
        FEEDBACK_STATUS_CHANGED,
        COMMENT_CREATED,
        COMMENT_UPDATED,
        COMMENT_DELETED,
        USER_INVITED,
        USER_JOINED,
        USER_REMOVED,
    }
)


def build_payload(organization_id: str, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "event": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "organizationId": organization_id,
        "data": data,
    }


def feedback_data(feedback) -> Dict[str, Any]:
    return {
        "feedbackId": str(feedback.feedback_id),
        "title": feedback.title,
        "description": feedback.description,
        "type": feedback.type,
        "priority": feedback.priority,
        "status": feedback.status,
        "organizationId": feedback.organization_id,
        "createdAt": feedback.created_at.isoformat() if feedback.created_at else None,
    }


def status_changed_data(feedback_id: int, old_status: str, new_status: str) -> Dict[str, Any]:
    return {"feedbackId": str(feedback_id), "oldStatus": old_status, "newStatus": new_status}


def comment_data(comment) -> Dict[str, Any]:
    return {
        "commentId": str(comment.comment_id),
        "feedbackId": str(comment.feedback_id),
        "authorName": comment.author_name,
        "content": comment.content,
        "isInternal": comment.is_internal,
        "createdAt": comment.created_at.isoformat() if comment.created_at else None,
    }
