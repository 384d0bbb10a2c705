"""
GitHub REST API client.

Async httpx client for the few endpoints the mirror needs: listing issues
(optionally since a timestamp), reading, creating and updating a single
issue, and listing/creating labels.

Transient failures (5xx, timeouts, rate limits) are retried with exponential
backoff; authentication, not-found and validation failures raise typed
errors immediately.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from gitmemo.exceptions import GitMemoError
from gitmemo.schemas import IssueData, LabelData

logger = logging.getLogger(__name__)


class GitHubClientError(GitMemoError):
    """Raised when a GitHub API request fails."""

    status_code = 500
    code = "github_error"


class AuthenticationFailed(GitHubClientError):
    status_code = 401
    code = "github_auth_failed"


class RemoteNotFound(GitHubClientError):
    status_code = 404
    code = "github_not_found"


class RateLimitExceeded(GitHubClientError):
    """Raised when the GitHub rate limit is exhausted after retries."""

    code = "github_rate_limited"

    def __init__(self, reset_at: datetime, message: str = "Rate limit exceeded"):
        self.reset_at = reset_at
        super().__init__(f"{message}. Resets at {reset_at.isoformat()}")


class NetworkError(GitHubClientError):
    code = "github_unreachable"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_since(value: datetime) -> str:
    """ISO 8601 in UTC with a Z suffix, as the issues endpoint expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def label_from_api(data: dict[str, Any]) -> LabelData:
    return LabelData(
        id=data.get("id"),
        name=data["name"],
        color=data.get("color") or "",
        description=data.get("description"),
    )


def issue_from_api(data: dict[str, Any]) -> IssueData:
    return IssueData(
        number=data["number"],
        title=data["title"],
        body=data.get("body") or "",
        state=data.get("state", "open"),
        labels=[label_from_api(label) for label in data.get("labels", []) if isinstance(label, dict)],
        github_created_at=_parse_datetime(data.get("created_at")),
    )


class GitHubClient:
    """
    GitHub REST API client using httpx with Bearer token auth.

    Example:
        >>> async with GitHubClient("ghp_token") as client:
        ...     issues = await client.list_issues("owner", "repo", page=1)
    """

    BASE_URL = "https://api.github.com"

    CONNECT_TIMEOUT = 5.0  # seconds
    READ_TIMEOUT = 30.0
    WRITE_TIMEOUT = 10.0
    POOL_TIMEOUT = 5.0

    # Retry configuration
    MAX_RETRIES = 3
    BASE_BACKOFF = 2  # seconds, exponential: min(MAX_BACKOFF, 2^attempt)
    MAX_BACKOFF = 60

    ISSUES_PER_PAGE = 50

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        max_retries: int = MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.max_retries = max_retries
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "gitmemo-sync/1.0",
            },
            timeout=httpx.Timeout(
                connect=self.CONNECT_TIMEOUT,
                read=self.READ_TIMEOUT,
                write=self.WRITE_TIMEOUT,
                pool=self.POOL_TIMEOUT,
            ),
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the httpx client and release connections."""
        await self._client.aclose()

    # --- Issues ---

    async def list_issues(
        self,
        owner: str,
        repo: str,
        page: int = 1,
        labels: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[IssueData]:
        """
        List one page of repository issues, pull requests excluded.

        Args:
            owner: Repository owner
            repo: Repository name
            page: 1-based page number
            labels: Comma-separated label names; issues must carry all of them
            since: Only issues updated after this time

        Returns:
            Issues on the page; empty when nothing matches
        """
        params: dict[str, str] = {
            "state": "all",
            "per_page": str(self.ISSUES_PER_PAGE),
            "page": str(page),
            "sort": "updated",
            "direction": "desc",
        }
        if since:
            params["since"] = format_since(since)
        if labels:
            params["labels"] = labels

        data = await self._request("GET", f"/repos/{owner}/{repo}/issues", params=params)
        return [issue_from_api(item) for item in data if not item.get("pull_request")]

    async def get_issue(self, owner: str, repo: str, number: int) -> IssueData:
        data = await self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        return issue_from_api(data)

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: Optional[str] = None,
        labels: Optional[list[str]] = None,
    ) -> IssueData:
        payload: dict[str, Any] = {"title": title, "body": body or "", "labels": labels or []}
        data = await self._request("POST", f"/repos/{owner}/{repo}/issues", json=payload)
        return issue_from_api(data)

    async def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[list[str]] = None,
        state: Optional[str] = None,
    ) -> IssueData:
        payload: dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = labels
        if state is not None:
            payload["state"] = state
        data = await self._request("PATCH", f"/repos/{owner}/{repo}/issues/{number}", json=payload)
        return issue_from_api(data)

    # --- Labels ---

    async def list_labels(self, owner: str, repo: str) -> list[LabelData]:
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/labels", params={"per_page": "100"}
        )
        return [label_from_api(item) for item in data]

    async def create_label(
        self,
        owner: str,
        repo: str,
        name: str,
        color: str,
        description: Optional[str] = None,
    ) -> LabelData:
        payload: dict[str, Any] = {"name": name, "color": color.lstrip("#")}
        if description is not None:
            payload["description"] = description
        data = await self._request("POST", f"/repos/{owner}/{repo}/labels", json=payload)
        return label_from_api(data)

    # --- Core HTTP ---

    def _backoff(self, attempt: int) -> float:
        return min(self.MAX_BACKOFF, self.BASE_BACKOFF ** (attempt + 1)) + random.uniform(0, 1)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json() if response.content else {}
        except (ValueError, UnicodeDecodeError):
            body = {}
        message = body.get("message") if isinstance(body, dict) else None
        return message or response.text or response.reason_phrase

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Make an API request with retries and error mapping.

        Raises:
            AuthenticationFailed: 401, or 403 that is not a rate limit
            RemoteNotFound: 404
            GitHubClientError: 422 and 5xx after retries
            RateLimitExceeded: rate limit still exhausted after retries
            NetworkError: connection failures and timeouts after retries
        """
        for attempt in range(self.max_retries + 1):
            try:
                response = await self._client.request(method, path, params=params, json=json)
            except httpx.TimeoutException as e:
                if attempt < self.max_retries:
                    backoff = self._backoff(attempt)
                    logger.warning(
                        "GitHub request timeout. Retrying in %.1fs (attempt %d/%d)",
                        backoff, attempt + 1, self.max_retries,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise NetworkError(f"Request timeout after {self.max_retries} retries: {e}") from e
            except httpx.HTTPError as e:
                raise NetworkError(f"HTTP error: {e}") from e

            status = response.status_code

            # Primary rate limit -- wait for reset and retry
            if status == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
                reset = float(response.headers.get("X-RateLimit-Reset", "0") or 0)
                if attempt < self.max_retries:
                    wait = min(max(1.0, reset - time.time()), self.MAX_BACKOFF)
                    logger.warning(
                        "GitHub rate limit hit. Waiting %.0fs (attempt %d/%d)",
                        wait, attempt + 1, self.max_retries,
                    )
                    await asyncio.sleep(wait)
                    continue
                raise RateLimitExceeded(datetime.fromtimestamp(reset, tz=timezone.utc))

            # Secondary rate limit (Retry-After header)
            if status == 429:
                retry_after = int(response.headers.get("Retry-After", "60"))
                if attempt < self.max_retries:
                    logger.warning(
                        "GitHub secondary rate limit. Retry-After: %ds (attempt %d/%d)",
                        retry_after, attempt + 1, self.max_retries,
                    )
                    await asyncio.sleep(min(retry_after, self.MAX_BACKOFF))
                    continue
                raise RateLimitExceeded(
                    datetime.fromtimestamp(time.time() + retry_after, tz=timezone.utc),
                    "Secondary rate limit exceeded",
                )

            if status in (401, 403):
                raise AuthenticationFailed(f"GitHub API error {status}: {self._error_message(response)}")
            if status == 404:
                raise RemoteNotFound(f"GitHub API error 404: {self._error_message(response)}")
            if status == 422:
                raise GitHubClientError(
                    f"GitHub API error 422: {self._error_message(response)}", status_code=422
                )

            # Server errors (retryable)
            if status >= 500:
                if attempt < self.max_retries:
                    backoff = self._backoff(attempt)
                    logger.warning(
                        "GitHub server error %d. Retrying in %.1fs (attempt %d/%d)",
                        status, backoff, attempt + 1, self.max_retries,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise GitHubClientError(
                    f"GitHub API server error {status} after {self.max_retries} retries"
                )

            if status >= 400:
                raise GitHubClientError(f"GitHub API error {status}: {self._error_message(response)}")

            return response.json() if response.content else None

        raise GitHubClientError("Request failed after all retries")
