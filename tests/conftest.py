import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "echo-test-secret-key"
os.environ["INTERNAL_API_TOKEN"] = "internal-test-token"
os.environ["APP_URL"] = "https://echo.test"
os.environ["GITHUB_CLIENT_ID"] = "echo-client-id"
os.environ["GITHUB_CLIENT_SECRET"] = "echo-client-secret"

import asyncio
import json
import re
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from echo.core.database import Base
from echo.core.security import encrypt_token
from echo.integrations.github import GitHubProvider
from echo.integrations.registry import ProviderRegistry
from echo.models import Comment, Feedback, Integration, Webhook
from echo.webhooks import WebhookDispatcher

ORG = "org-1"
OWNER = "acme"
REPO = "widgets"
TOKEN = "ghp_test"
WEBHOOK_SECRET = "gh-webhook-secret"
GITHUB_API = "https://api.github.test"
OAUTH_CODE = "oauth-code"


class FakeGitHub:
    """In-memory GitHub REST API for one repository"""

    def __init__(self):
        self.issues = {}
        self.comments = {}
        self.labels = [{"name": "bug", "color": "d73a4a"}]
        self.requests = []
        self.failures = {}
        self.delay = 0.0
        self._next_number = 1
        self._next_comment_id = 9000

    def fail(self, method, suffix, status=500):
        self.failures[(method, suffix)] = status

    def calls(self, method, suffix=""):
        return [r for r in self.requests if r[0] == method and r[1].endswith(suffix)]

    def add_issue(self, state="open"):
        number = self._next_number
        self._next_number += 1
        self.issues[number] = {
            "id": 100000 + number,
            "number": number,
            "title": f"Issue {number}",
            "body": "",
            "state": state,
            "labels": [],
            "html_url": f"https://github.com/{OWNER}/{REPO}/issues/{number}",
            "created_at": "2024-01-01T00:00:00Z",
        }
        return self.issues[number]

    def add_comment(self, number, body, login="octocat"):
        comment_id = self._next_comment_id
        self._next_comment_id += 1
        comment = {
            "id": comment_id,
            "body": body,
            "user": {"login": login},
            "html_url": f"https://github.com/{OWNER}/{REPO}/issues/{number}#issuecomment-{comment_id}",
            "created_at": "2024-01-02T00:00:00Z",
        }
        self.comments.setdefault(number, []).append(comment)
        return comment

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)

        method = request.method
        path = request.url.path
        body = None
        if request.content and request.headers.get("Content-Type", "").startswith("application/json"):
            body = json.loads(request.content)
        self.requests.append((method, path, body))

        for (fail_method, suffix), status in self.failures.items():
            if fail_method == method and path.endswith(suffix):
                return httpx.Response(status, json={"message": "Upstream failure"})

        if path == "/login/oauth/access_token":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            if form.get("code") != OAUTH_CODE or form.get("client_secret") != "echo-client-secret":
                return httpx.Response(
                    200, json={"error": "bad_verification_code", "error_description": "The code passed is incorrect or expired."}
                )
            return httpx.Response(200, json={"access_token": TOKEN, "token_type": "bearer", "scope": "repo"})

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"message": "Bad credentials"})

        if path == "/user":
            return httpx.Response(200, json={"login": OWNER})

        if path == "/user/repos":
            return httpx.Response(200, json=[self._repository()])

        prefix = f"/repos/{OWNER}/{REPO}"
        if not path.startswith(prefix):
            return httpx.Response(404, json={"message": "Not Found"})
        rest = path[len(prefix):]

        if rest == "":
            return httpx.Response(200, json=self._repository())

        if rest == "/labels":
            if method == "POST":
                self.labels.append(body)
                return httpx.Response(201, json=body)
            return httpx.Response(200, json=self.labels)

        if rest == "/issues" and method == "POST":
            issue = self.add_issue()
            issue.update(title=body["title"], body=body["body"], labels=body.get("labels", []))
            return httpx.Response(201, json=issue)

        match = re.fullmatch(r"/issues/(\d+)", rest)
        if match:
            issue = self.issues.get(int(match.group(1)))
            if issue is None:
                return httpx.Response(404, json={"message": "Not Found"})
            if method == "PATCH":
                issue.update(body)
            return httpx.Response(200, json=issue)

        match = re.fullmatch(r"/issues/(\d+)/comments", rest)
        if match:
            number = int(match.group(1))
            if method == "POST":
                return httpx.Response(201, json=self.add_comment(number, body["body"], login="echo-bot"))
            return httpx.Response(200, json=self.comments.get(number, []))

        return httpx.Response(404, json={"message": "Not Found"})

    def _repository(self):
        return {
            "id": 42,
            "name": REPO,
            "full_name": f"{OWNER}/{REPO}",
            "owner": {"login": OWNER},
            "private": True,
            "description": "Widget factory",
            "html_url": f"https://github.com/{OWNER}/{REPO}",
        }


class Subscriber:
    """Records webhook deliveries and answers with a scripted status sequence"""

    def __init__(self):
        self.requests = []
        self.statuses = []
        self.raise_error = False
        self.delay = 0.0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.requests.append(request)
        if self.raise_error:
            raise httpx.ConnectError("connection refused", request=request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, text="ok" if status < 400 else "nope")


# ==========================
# Database
# ==========================

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'echo.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ==========================
# GitHub and subscribers
# ==========================

@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def provider(github):
    return GitHubProvider(transport=httpx.MockTransport(github.handler), base_url=GITHUB_API)


@pytest.fixture
def registry(provider):
    registry = ProviderRegistry()
    registry.register(provider)
    return registry


@pytest.fixture
def subscriber():
    return Subscriber()


@pytest.fixture
def dispatcher(session_factory, subscriber):
    return WebhookDispatcher(
        session_factory=session_factory,
        transport=httpx.MockTransport(subscriber.handler),
        processing=set(),
    )


# ==========================
# Factories
# ==========================

@pytest.fixture
def make_integration(db):
    async def _make(**overrides):
        values = dict(
            organization_id=ORG,
            provider="github",
            owner=OWNER,
            repo=REPO,
            access_token=encrypt_token(TOKEN),
            webhook_secret=WEBHOOK_SECRET,
        )
        values.update(overrides)
        integration = Integration(**values)
        db.add(integration)
        await db.commit()
        return integration

    return _make


@pytest.fixture
def make_feedback(db):
    async def _make(**overrides):
        values = dict(
            organization_id=ORG,
            title="Export to CSV",
            description="Please add CSV export.",
            type="feature",
            priority="high",
            status="new",
        )
        values.update(overrides)
        feedback = Feedback(**values)
        db.add(feedback)
        await db.commit()
        return feedback

    return _make


@pytest.fixture
def make_comment(db):
    async def _make(feedback_id, **overrides):
        values = dict(feedback_id=feedback_id, author_name="Dana", content="Any update?", is_internal=False)
        values.update(overrides)
        comment = Comment(**values)
        db.add(comment)
        await db.commit()
        return comment

    return _make


@pytest.fixture
def make_webhook(db):
    async def _make(**overrides):
        values = dict(
            organization_id=ORG,
            name="CI",
            url="https://hooks.example.com/echo",
            secret="whsec",
            events=["feedback.created", "feedback.status_changed"],
        )
        values.update(overrides)
        webhook = Webhook(**values)
        db.add(webhook)
        await db.commit()
        return webhook

    return _make
