"""Minimal async client for the GitHub REST API (issues, labels, comments)"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from echo.config import get_settings
from echo.integrations.base import IssueTrackerError

logger = logging.getLogger("echo.github")


class GitHubClient:
    """
    Wraps the repository-scoped endpoints Echo needs.

    Every method returns the parsed JSON body or raises IssueTrackerError with
    the upstream status code and raw body. Only validate_token degrades to a bool.
    """

    def __init__(
        self,
        access_token: str,
        owner: str,
        repo: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.access_token = access_token
        self.owner = owner
        self.repo = repo
        self.base_url = (base_url or settings.github_api_url).rstrip("/")
        self.api_version = settings.github_api_version
        self.timeout = timeout if timeout is not None else settings.github_timeout
        self._transport = transport

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.access_token}",
            "X-GitHub-Api-Version": self.api_version,
            "User-Agent": "Echo-Feedback/1.0",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make an authenticated request against the GitHub API.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, headers=self._headers(), json=json, params=params
                )
        except httpx.HTTPError as exc:
            logger.warning("GitHub %s %s transport error: %s", method, path, exc)
            raise IssueTrackerError(f"GitHub API transport error: {exc}") from exc

        if response.is_error:
            logger.warning("GitHub %s %s failed with %s", method, path, response.status_code)
            raise IssueTrackerError(
                f"GitHub API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Issues

    async def create_issue(
        self,
        title: str,
        body: str,
        labels: Optional[List[str]] = None,
        assignees: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        if assignees:
            payload["assignees"] = assignees
        return await self._request("POST", f"{self.repo_path}/issues", json=payload)

    async def update_issue(self, issue_number: int, **fields: Any) -> Dict[str, Any]:
        """PATCH only the given fields (title, body, state, labels, assignees)."""
        payload = {key: value for key, value in fields.items() if value is not None}
        return await self._request("PATCH", f"{self.repo_path}/issues/{issue_number}", json=payload)

    async def get_issue(self, issue_number: int) -> Dict[str, Any]:
        return await self._request("GET", f"{self.repo_path}/issues/{issue_number}")

    async def close_issue(self, issue_number: int) -> Dict[str, Any]:
        return await self.update_issue(issue_number, state="closed")

    async def reopen_issue(self, issue_number: int) -> Dict[str, Any]:
        return await self.update_issue(issue_number, state="open")

    # Labels

    async def list_labels(self) -> List[Dict[str, Any]]:
        return await self._request("GET", f"{self.repo_path}/labels", params={"per_page": 100})

    async def create_label(
        self, name: str, color: str, description: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {"name": name, "color": color}
        if description:
            payload["description"] = description
        return await self._request("POST", f"{self.repo_path}/labels", json=payload)

    # Comments

    async def create_issue_comment(self, issue_number: int, body: str) -> Dict[str, Any]:
        return await self._request(
            "POST", f"{self.repo_path}/issues/{issue_number}/comments", json={"body": body}
        )

    async def list_issue_comments(self, issue_number: int) -> List[Dict[str, Any]]:
        return await self._request(
            "GET", f"{self.repo_path}/issues/{issue_number}/comments", params={"per_page": 100}
        )

    # Repository

    async def get_repository(self) -> Dict[str, Any]:
        return await self._request("GET", self.repo_path)

    async def get_authenticated_user(self) -> Dict[str, Any]:
        return await self._request("GET", "/user")

    async def list_repositories(self) -> List[Dict[str, Any]]:
        """Repositories visible to the token, most recently updated first"""
        return await self._request(
            "GET", "/user/repos", params={"per_page": 100, "sort": "updated"}
        )

    async def validate_token(self) -> bool:
        """True when the token can read the configured repository."""
        try:
            await self.get_repository()
            return True
        except IssueTrackerError as exc:
            logger.info("GitHub credential check failed for %s/%s: %s", self.owner, self.repo, exc)
            return False


async def exchange_oauth_code(
    code: str,
    redirect_uri: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Trade an OAuth authorization code for a user access token."""
    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=settings.github_timeout, transport=transport) as client:
            response = await client.post(
                f"{settings.github_oauth_url.rstrip('/')}/login/oauth/access_token",
                data={
                    "client_id": settings.github_client_id,
                    "client_secret": settings.github_client_secret,
                    "code": code,
                    "redirect_uri": redirect_uri,
                },
                headers={"Accept": "application/json"},
            )
    except httpx.HTTPError as exc:
        logger.warning("GitHub OAuth transport error: %s", exc)
        raise IssueTrackerError(f"GitHub OAuth transport error: {exc}") from exc

    if response.is_error:
        raise IssueTrackerError(
            f"Token exchange failed: {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    # GitHub answers 200 with an error field for bad or expired codes
    token_data = response.json()
    if "error" in token_data:
        raise IssueTrackerError(f"Token exchange failed: {token_data.get('error_description') or token_data['error']}")

    access_token = token_data.get("access_token")
    if not access_token:
        raise IssueTrackerError("No access token received")
    return access_token
