import hashlib
import hmac

import pytest

from echo.integrations.base import Capability, CommentForSync, FeedbackForSync, IssueTrackerProvider, ProviderConfig
from echo.integrations.github.provider import format_comment_body, format_issue_body
from echo.integrations.registry import ProviderNotFound, ProviderRegistry

from conftest import OWNER, REPO, TOKEN

CONFIG = ProviderConfig(access_token=TOKEN, owner=OWNER, repo=REPO)


def sample_feedback(**overrides):
    values = dict(
        feedback_id=12,
        title="Dark mode",
        description="Please add dark mode.",
        type="feature",
        priority="medium",
        status="planned",
        url="https://echo.test/feedback/12",
    )
    values.update(overrides)
    return FeedbackForSync(**values)


def signed(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def test_issue_body_has_metadata_table_and_back_link():
    body = format_issue_body(sample_feedback())

    assert "Please add dark mode." in body
    assert "| **Type** | feature |" in body
    assert "| **Priority** | medium |" in body
    assert "| **Status** | planned |" in body
    assert body.endswith("[View in Echo](https://echo.test/feedback/12)")


def test_issue_body_without_description():
    assert "No description provided." in format_issue_body(sample_feedback(description=""))


def test_comment_body_names_author():
    assert format_comment_body(CommentForSync(1, "Looks good", "Dana")) == "Dana commented:\n\nLooks good"
    assert format_comment_body(CommentForSync(1, "Hi", None)).startswith("An Echo user commented:")


def test_provider_satisfies_protocol(provider):
    assert isinstance(provider, IssueTrackerProvider)
    assert all(provider.supports(c) for c in Capability)


async def test_create_issue_maps_response(provider, github):
    issue = await provider.create_issue(CONFIG, sample_feedback(), ["enhancement"])

    assert issue.number == 1
    assert issue.id == "100001"
    assert issue.state == "open"
    assert github.issues[1]["labels"] == ["enhancement"]


async def test_ensure_labels_creates_only_missing(provider, github):
    created = await provider.ensure_labels(CONFIG, ["Bug", "priority: high", "priority: high"])

    assert created == ["priority: high"]
    posted = github.calls("POST", "/labels")
    assert len(posted) == 1
    assert posted[0][2] == {"name": "priority: high", "color": "d93f0b"}


async def test_ensure_labels_without_labels_makes_no_calls(provider, github):
    assert await provider.ensure_labels(CONFIG, []) == []
    assert github.requests == []


async def test_list_comments(provider, github):
    github.add_issue()
    github.add_comment(1, "First!", login="octocat")

    comments = await provider.list_comments(CONFIG, 1)

    assert [(c.author, c.body) for c in comments] == [("octocat", "First!")]


def test_verify_webhook(provider):
    body = b'{"action":"closed"}'

    assert provider.verify_webhook(body, signed(body, "s3cret"), "s3cret")
    assert not provider.verify_webhook(body, signed(body, "other"), "s3cret")
    assert not provider.verify_webhook(body, None, "s3cret")
    assert not provider.verify_webhook(body, signed(body, "s3cret"), None)
    assert not provider.verify_webhook(body, "sha1=abc", "s3cret")


def test_parse_issue_closed(provider):
    payload = {
        "action": "closed",
        "issue": {"id": 555, "number": 3, "state": "closed"},
        "repository": {"full_name": f"{OWNER}/{REPO}"},
    }

    event = provider.parse_webhook("issues", payload)

    assert event.kind == "issue_closed"
    assert event.issue_id == "555"
    assert event.state == "closed"
    assert event.repository == f"{OWNER}/{REPO}"


def test_parse_comment_created(provider):
    payload = {
        "action": "created",
        "issue": {"id": 555, "number": 3, "state": "open"},
        "comment": {"id": 77, "body": "On it", "user": {"login": "octocat"}, "html_url": "u"},
    }

    event = provider.parse_webhook("issue_comment", payload)

    assert event.kind == "comment_created"
    assert event.comment.id == "77"
    assert event.comment.author == "octocat"


def test_parse_ignores_other_events(provider):
    issue = {"id": 1, "number": 1, "state": "open"}
    assert provider.parse_webhook("issues", {"action": "assigned", "issue": issue}) is None
    assert provider.parse_webhook("issue_comment", {"action": "deleted", "issue": issue, "comment": {"id": 1}}) is None
    assert provider.parse_webhook("push", {"ref": "main"}) is None


def test_registry_lookup(provider):
    registry = ProviderRegistry()
    registry.register(provider)

    assert "github" in registry
    assert len(registry) == 1
    assert registry.with_capability(Capability.COMMENT_SYNC) == [provider]
    assert registry.get("jira") is None
    with pytest.raises(ProviderNotFound):
        registry.get_or_raise("jira")
