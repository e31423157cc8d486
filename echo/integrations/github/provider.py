"""GitHub implementation of the issue tracker provider interface"""

import hashlib
import hmac
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from echo.integrations.base import (
    Capability,
    CommentForSync,
    ExternalComment,
    ExternalIssue,
    FeedbackForSync,
    InboundEvent,
    ProviderConfig,
    ProviderMetadata,
    parse_timestamp,
)
from echo.integrations.github.client import GitHubClient, exchange_oauth_code

logger = logging.getLogger("echo.github")

LABEL_COLORS = {
    "bug": "d73a4a",
    "enhancement": "a2eeef",
    "question": "d876e3",
    "priority: low": "c5def5",
    "priority: medium": "fbca04",
    "priority: high": "d93f0b",
    "priority: urgent": "b60205",
}
DEFAULT_LABEL_COLOR = "ededed"

ISSUE_ACTIONS = {
    "closed": "issue_closed",
    "reopened": "issue_reopened",
    "edited": "issue_updated",
    "labeled": "issue_updated",
    "unlabeled": "issue_updated",
}


def format_issue_body(feedback: FeedbackForSync) -> str:
    return f"""## Feedback from Echo

{feedback.description or "No description provided."}

---

| Field | Value |
|-------|-------|
| **Type** | {feedback.type or "feedback"} |
| **Priority** | {feedback.priority or "-"} |
| **Status** | {feedback.status} |

[View in Echo]({feedback.url})"""


def format_comment_body(comment: CommentForSync) -> str:
    author = comment.author_name or "An Echo user"
    return f"{author} commented:\n\n{comment.content}"


def _to_external_issue(issue: Dict[str, Any]) -> ExternalIssue:
    return ExternalIssue(
        id=str(issue["id"]),
        number=issue.get("number"),
        url=issue.get("html_url", ""),
        title=issue.get("title", ""),
        state=issue.get("state", "open"),
        created_at=parse_timestamp(issue.get("created_at")),
    )


def _to_external_comment(comment: Dict[str, Any]) -> ExternalComment:
    return ExternalComment(
        id=str(comment["id"]),
        body=comment.get("body") or "",
        author=(comment.get("user") or {}).get("login", ""),
        url=comment.get("html_url"),
        created_at=parse_timestamp(comment.get("created_at")),
    )


class GitHubProvider:
    """Syncs feedback to GitHub Issues"""

    metadata = ProviderMetadata(
        type="github",
        name="GitHub",
        description="Sync feedback to GitHub Issues",
        capabilities=frozenset(
            {Capability.ISSUE_SYNC, Capability.COMMENT_SYNC, Capability.STATUS_SYNC, Capability.WEBHOOK}
        ),
    )

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, base_url: Optional[str] = None):
        self._transport = transport
        self._base_url = base_url

    def supports(self, capability: Capability) -> bool:
        return capability in self.metadata.capabilities

    def client(self, config: ProviderConfig) -> GitHubClient:
        return GitHubClient(
            access_token=config.access_token,
            owner=config.owner,
            repo=config.repo,
            base_url=self._base_url,
            transport=self._transport,
        )

    # OAuth connect

    async def exchange_oauth_code(self, code: str, redirect_uri: str) -> str:
        return await exchange_oauth_code(code, redirect_uri, transport=self._transport)

    async def authenticated_login(self, access_token: str) -> str:
        """Login of the token's owner; raises IssueTrackerError when the token is unusable."""
        client = GitHubClient(access_token, owner="", repo="", base_url=self._base_url, transport=self._transport)
        user = await client.get_authenticated_user()
        return user.get("login", "")

    # Issue sync

    async def create_issue(
        self, config: ProviderConfig, feedback: FeedbackForSync, labels: Iterable[str] = ()
    ) -> ExternalIssue:
        issue = await self.client(config).create_issue(
            title=feedback.title,
            body=format_issue_body(feedback),
            labels=list(labels),
        )
        return _to_external_issue(issue)

    async def update_issue(
        self, config: ProviderConfig, issue_number: int, feedback: FeedbackForSync
    ) -> ExternalIssue:
        issue = await self.client(config).update_issue(
            issue_number, title=feedback.title, body=format_issue_body(feedback)
        )
        return _to_external_issue(issue)

    async def close_issue(self, config: ProviderConfig, issue_number: int) -> None:
        await self.client(config).close_issue(issue_number)

    async def reopen_issue(self, config: ProviderConfig, issue_number: int) -> None:
        await self.client(config).reopen_issue(issue_number)

    async def get_issue_state(self, config: ProviderConfig, issue_number: int) -> ExternalIssue:
        return _to_external_issue(await self.client(config).get_issue(issue_number))

    async def ensure_labels(self, config: ProviderConfig, labels: Iterable[str]) -> List[str]:
        """Create any of ``labels`` missing from the repository; returns the created names."""
        wanted = [label for label in dict.fromkeys(labels) if label]
        if not wanted:
            return []
        client = self.client(config)
        existing = {label["name"].lower() for label in await client.list_labels()}
        created = []
        for name in wanted:
            if name.lower() in existing:
                continue
            await client.create_label(name, LABEL_COLORS.get(name, DEFAULT_LABEL_COLOR))
            created.append(name)
        if created:
            logger.info("Created labels in %s/%s: %s", config.owner, config.repo, created)
        return created

    # Comment sync

    async def create_comment(
        self, config: ProviderConfig, issue_number: int, comment: CommentForSync
    ) -> ExternalComment:
        result = await self.client(config).create_issue_comment(issue_number, format_comment_body(comment))
        return _to_external_comment(result)

    async def list_comments(self, config: ProviderConfig, issue_number: int) -> List[ExternalComment]:
        return [_to_external_comment(c) for c in await self.client(config).list_issue_comments(issue_number)]

    # Webhooks

    def verify_webhook(self, body: bytes, signature_header: Optional[str], secret: Optional[str]) -> bool:
        """Check X-Hub-Signature-256 against the integration's webhook secret."""
        if not secret or not signature_header:
            return False
        sha_name, _, signature = signature_header.partition("=")
        if sha_name != "sha256" or not signature:
            return False
        expected = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, event_name: str, payload: Dict[str, Any]) -> Optional[InboundEvent]:
        issue = payload.get("issue")
        if not isinstance(issue, dict) or "id" not in issue:
            return None

        action = payload.get("action")
        repository = (payload.get("repository") or {}).get("full_name")
        common = dict(
            issue_id=str(issue["id"]),
            issue_number=issue.get("number"),
            state=issue.get("state"),
            repository=repository,
            data=payload,
        )

        if event_name == "issue_comment":
            if action != "created" or not isinstance(payload.get("comment"), dict):
                return None
            return InboundEvent(kind="comment_created", comment=_to_external_comment(payload["comment"]), **common)

        if event_name == "issues" and action in ISSUE_ACTIONS:
            return InboundEvent(kind=ISSUE_ACTIONS[action], **common)

        return None


github_provider = GitHubProvider()
