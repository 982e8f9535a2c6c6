"""Summary: GitHub App and REST API clients.

Importance: Supplies pull request, review, and commit activity for briefs and team reports.
Alternatives: Use PyGithub or the GraphQL API.
"""

from __future__ import annotations

import base64
import logging
import time
import urllib.parse
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

import jwt

from workintel.config import AppConfig
from workintel.oauth import HttpError, HttpResponse, build_url, send_request


logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
MAX_RETRY_WAIT_SECONDS = 60


class GitHubClient:
    """Summary: Token-authenticated GitHub REST client.

    Importance: Works with personal access tokens and installation tokens alike.
    Alternatives: Use a separate client per token type.
    """

    def __init__(self, token: str, api_url: str = "https://api.github.com") -> None:
        self._token = token
        self._api_url = api_url.rstrip("/")

    def get_viewer(self) -> dict[str, Any]:
        return self._get("/user").body

    def get_org(self, org: str) -> dict[str, Any]:
        return self._get(f"/orgs/{urllib.parse.quote(org, safe='')}").body

    def rate_limit(self) -> HttpResponse:
        return self._get("/rate_limit")

    def search_issues(
        self, query: str, per_page: int = 30, sort: str = "updated", order: str = "desc"
    ) -> HttpResponse:
        params = {"q": query, "sort": sort, "order": order, "per_page": per_page}
        return self._get(build_url("/search/issues", params))

    def search_commits(self, query: str, per_page: int = 1) -> HttpResponse:
        return self._get(build_url("/search/commits", {"q": query, "per_page": per_page}))

    def list_reviews(self, full_name: str, number: int) -> list[dict[str, Any]]:
        return self._get(f"/repos/{full_name}/pulls/{number}/reviews").body

    def user_activity(self, username: str | None = None) -> dict[str, Any]:
        """Summary: Collect open pull requests, assigned issues, and pending review requests.

        Importance: Feeds the personal GitHub section of the daily brief.
        Alternatives: Read notifications instead of running searches.
        """

        login = username or self.get_viewer()["login"]
        pull_requests = self.search_issues(f"is:pr is:open involves:{login}", per_page=20).body
        issues = self.search_issues(f"is:issue is:open assignee:{login}", per_page=20).body
        review_requests = self.search_issues(f"is:pr is:open review-requested:{login}", per_page=10).body

        pending_reviews = []
        for item in review_requests.get("items", []):
            full_name = _full_name(item)
            try:
                reviews = self.list_reviews(full_name, item["number"])
            except RuntimeError as exc:
                logger.warning("Could not fetch reviews for %s#%s: %s", full_name, item.get("number"), exc)
                pending_reviews.append(item)
                continue
            already_approved = any(
                (review.get("user") or {}).get("login") == login and review.get("state") == "APPROVED"
                for review in reviews
            )
            if not already_approved:
                pending_reviews.append(item)

        return {
            "login": login,
            "pullRequests": [_summarize_issue(item) for item in pull_requests.get("items", [])],
            "issues": [_summarize_issue(item) for item in issues.get("items", [])],
            "reviewRequests": [_summarize_issue(item) for item in pending_reviews],
        }

    def _get(self, path: str) -> HttpResponse:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        return send_request("GET", f"{self._api_url}{path}", headers=headers)


class GitHubAppClient:
    """Summary: Authenticates as the Work Intel GitHub App.

    Importance: Lets organizations grant read access without sharing personal tokens.
    Alternatives: Require a personal access token per team.
    """

    def __init__(self, config: AppConfig, clock: Callable[[], float] = time.time) -> None:
        self._config = config
        self._clock = clock

    def install_url(self, state: str) -> str:
        slug = urllib.parse.quote(self._config.github_app_slug, safe="")
        return build_url(f"https://github.com/apps/{slug}/installations/new", {"state": state})

    def app_jwt(self) -> str:
        if not self._config.github_app_id:
            raise ValueError("GITHUB_APP_ID is not configured")
        if not self._config.github_app_private_key:
            raise ValueError("GITHUB_APP_PRIVATE_KEY is not configured")
        private_key = base64.b64decode(self._config.github_app_private_key).decode("utf-8")
        issued_at = int(self._clock())
        payload = {"iat": issued_at - 60, "exp": issued_at + 540, "iss": self._config.github_app_id}
        return jwt.encode(payload, private_key, algorithm="RS256")

    def installation_token(self, installation_id: int) -> tuple[str, str]:
        """Summary: Mint an installation access token.

        Importance: Installation tokens are the credential used for all org reads.
        Alternatives: Cache tokens until their one hour expiry.
        """

        response = send_request(
            "POST",
            f"{self._api_url}/app/installations/{installation_id}/access_tokens",
            headers=self._app_headers(),
        )
        body = response.body
        expires_at = body.get("expires_at") or (
            datetime.now(timezone.utc) + timedelta(hours=1)
        ).isoformat()
        return body["token"], expires_at

    def get_installation(self, installation_id: int) -> dict[str, Any]:
        response = send_request(
            "GET", f"{self._api_url}/app/installations/{installation_id}", headers=self._app_headers()
        )
        account = response.body.get("account")
        if not account:
            raise RuntimeError("Installation has no account")
        return {"org": account["login"], "org_id": account["id"]}

    @property
    def _api_url(self) -> str:
        return self._config.github_api_url.rstrip("/")

    def _app_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.app_jwt()}",
            "Accept": "application/vnd.github+json",
        }


def with_retry(
    call: Callable[[], T],
    max_retries: int = MAX_RETRIES,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.time,
) -> T:
    """Summary: Retry a GitHub call when it is rate limited.

    Importance: Waits for the advertised reset (capped at a minute) or backs off 1s, 2s, 4s.
    Alternatives: Fail fast and let the caller mark data as partial.
    """

    attempt = 0
    while True:
        try:
            return call()
        except HttpError as exc:
            if exc.status not in (403, 429) or attempt >= max_retries:
                raise
            reset_at = exc.headers.get("x-ratelimit-reset")
            if reset_at:
                wait = min(int(reset_at) - clock() + 1, MAX_RETRY_WAIT_SECONDS)
                if wait < 0:
                    wait = 1
            else:
                wait = 2**attempt
            logger.warning(
                "GitHub API rate limited (attempt %s/%s). Waiting %ss.", attempt + 1, max_retries + 1, round(wait)
            )
            sleep(wait)
            attempt += 1


def repo_name(item: dict[str, Any]) -> str:
    return item.get("repository_url", "").rstrip("/").split("/")[-1]


def _full_name(item: dict[str, Any]) -> str:
    return "/".join(item.get("repository_url", "").rstrip("/").split("/")[-2:])


def _summarize_issue(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": item.get("id"),
        "number": item.get("number"),
        "title": item.get("title"),
        "body": item.get("body"),
        "html_url": item.get("html_url"),
        "state": item.get("state"),
        "created_at": item.get("created_at"),
        "updated_at": item.get("updated_at"),
        "repository": {"name": repo_name(item), "full_name": _full_name(item)},
        "user": {"login": (item.get("user") or {}).get("login")},
        "labels": [label.get("name") for label in item.get("labels", []) if isinstance(label, dict)],
        "draft": item.get("draft", False),
        "requested_reviewers": [
            reviewer.get("login") for reviewer in item.get("requested_reviewers") or []
        ],
    }
