"""Provider-neutral types for external issue tracker integrations"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Protocol, runtime_checkable


class IssueTrackerError(Exception):
    """Transport or API failure talking to an external tracker"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class Capability(str, Enum):
    ISSUE_SYNC = "issue_sync"
    COMMENT_SYNC = "comment_sync"
    STATUS_SYNC = "status_sync"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class ProviderMetadata:
    type: str
    name: str
    description: str
    capabilities: FrozenSet[Capability]


@dataclass
class ProviderConfig:
    """Decrypted credentials and target for one integration"""
    access_token: str
    owner: str
    repo: str


@dataclass
class FeedbackForSync:
    feedback_id: int
    title: str
    description: Optional[str]
    type: Optional[str]
    priority: Optional[str]
    status: str
    url: str


@dataclass
class CommentForSync:
    comment_id: int
    content: str
    author_name: Optional[str]


@dataclass
class ExternalIssue:
    id: str
    number: Optional[int]
    url: str
    title: str
    state: str
    created_at: Optional[datetime] = None


@dataclass
class ExternalComment:
    id: str
    body: str
    author: str
    url: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class InboundEvent:
    """Normalized inbound webhook from a tracker"""
    kind: str  # issue_closed, issue_reopened, issue_updated, comment_created
    issue_id: str
    issue_number: Optional[int]
    state: Optional[str]
    repository: Optional[str] = None
    comment: Optional[ExternalComment] = None
    data: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class IssueTrackerProvider(Protocol):
    """
    Structural interface every provider satisfies.

    Only metadata and supports() are mandatory. The remaining methods belong to
    a capability and callers check supports() before using them.
    """

    metadata: ProviderMetadata

    def supports(self, capability: Capability) -> bool: ...


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """ISO-8601 with a trailing Z, as GitHub returns it"""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
