"""Summary: Atlassian OAuth and Jira REST clients.

Importance: Connects teams to Jira via OAuth and individuals via API tokens.
Alternatives: Use the atlassian-python-api package.
"""

from __future__ import annotations

import base64
import logging
import urllib.parse
from typing import Any

from workintel.config import AppConfig
from workintel.oauth import OAuthTokenResult, bearer, build_url, get_json, post_json


logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://auth.atlassian.com/authorize"
TOKEN_URL = "https://auth.atlassian.com/oauth/token"
API_URL = "https://api.atlassian.com"
ATLASSIAN_SCOPES = "read:jira-work read:jira-user offline_access"
CALLBACK_PATH = "/api/auth/atlassian/callback"


class AtlassianClient:
    """Summary: OAuth 2.0 (3LO) client for Atlassian Cloud.

    Importance: Owns the token exchange, refresh, and site discovery calls.
    Alternatives: Ask admins for a Jira API token instead of OAuth.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def build_auth_url(self, state: str) -> str:
        params = {
            "audience": "api.atlassian.com",
            "client_id": self._config.atlassian_client_id,
            "scope": ATLASSIAN_SCOPES,
            "redirect_uri": self._config.redirect_uri(CALLBACK_PATH),
            "state": state,
            "response_type": "code",
            "prompt": "consent",
        }
        return build_url(AUTHORIZE_URL, params)

    def exchange_code(self, code: str) -> OAuthTokenResult:
        self._ensure_credentials()
        payload = post_json(
            TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "client_id": self._config.atlassian_client_id,
                "client_secret": self._config.atlassian_client_secret,
                "code": code,
                "redirect_uri": self._config.redirect_uri(CALLBACK_PATH),
            },
        )
        return OAuthTokenResult.from_response(payload)

    def refresh(self, refresh_token: str) -> OAuthTokenResult:
        self._ensure_credentials()
        payload = post_json(
            TOKEN_URL,
            {
                "grant_type": "refresh_token",
                "client_id": self._config.atlassian_client_id,
                "client_secret": self._config.atlassian_client_secret,
                "refresh_token": refresh_token,
            },
        )
        return OAuthTokenResult.from_response(payload)

    def accessible_resources(self, access_token: str) -> list[dict[str, Any]]:
        return get_json(f"{API_URL}/oauth/token/accessible-resources", headers=bearer(access_token))

    def get_me(self, access_token: str) -> dict[str, Any]:
        return get_json(f"{API_URL}/me", headers=bearer(access_token))

    def list_projects(self, cloud_id: str, access_token: str) -> list[dict[str, Any]]:
        projects = get_json(self._jira_url(cloud_id, "/rest/api/3/project"), headers=bearer(access_token))
        return [
            {
                "id": project.get("id"),
                "key": project.get("key"),
                "name": project.get("name"),
                "avatarUrl": (project.get("avatarUrls") or {}).get("48x48"),
                "projectTypeKey": project.get("projectTypeKey"),
            }
            for project in projects
        ]

    def assignable_users(
        self, cloud_id: str, access_token: str, project_keys: list[str]
    ) -> list[dict[str, Any]]:
        """Summary: List human users assignable in any of the given projects.

        Importance: Candidate pool for matching team members to Jira accounts.
        Alternatives: Search all users in the site.
        """

        url = build_url(
            self._jira_url(cloud_id, "/rest/api/3/user/assignable/multiProjectSearch"),
            {"projectKeys": ",".join(project_keys), "maxResults": 200},
        )
        users = get_json(url, headers=bearer(access_token))
        return [
            {
                "accountId": user.get("accountId"),
                "displayName": user.get("displayName"),
                "emailAddress": user.get("emailAddress"),
            }
            for user in users
            if user.get("accountType", "atlassian") == "atlassian"
        ]

    def _jira_url(self, cloud_id: str, path: str) -> str:
        return f"{API_URL}/ex/jira/{urllib.parse.quote(cloud_id, safe='')}{path}"

    def _ensure_credentials(self) -> None:
        if not (self._config.atlassian_client_id and self._config.atlassian_client_secret):
            raise ValueError("Missing OAuth client credentials for atlassian")


class JiraClient:
    """Summary: Jira Cloud client authenticated with email and API token.

    Importance: Feeds a user's assigned issues into their daily brief.
    Alternatives: Reuse the team OAuth integration for personal data.
    """

    def test_connection(self, site_url: str, email: str, token: str) -> dict[str, Any]:
        return get_json(f"{_site(site_url)}/rest/api/3/myself", headers=_basic(email, token))

    def assigned_issues(self, site_url: str, email: str, token: str, limit: int = 25) -> list[dict[str, Any]]:
        url = build_url(
            f"{_site(site_url)}/rest/api/3/search",
            {
                "jql": "assignee = currentUser() AND statusCategory != Done ORDER BY updated DESC",
                "maxResults": limit,
                "fields": "summary,status,priority,assignee,duedate,description,labels",
            },
        )
        payload = get_json(url, headers=_basic(email, token))
        issues = []
        for issue in payload.get("issues", []):
            fields = issue.get("fields", {})
            issues.append(
                {
                    "id": issue.get("id"),
                    "key": issue.get("key"),
                    "summary": fields.get("summary"),
                    "status": (fields.get("status") or {}).get("name"),
                    "priority": (fields.get("priority") or {}).get("name"),
                    "assignee": (fields.get("assignee") or {}).get("displayName"),
                    "duedate": fields.get("duedate"),
                    "description": fields.get("description"),
                    "labels": fields.get("labels") or [],
                    "url": f"{_site(site_url)}/browse/{issue.get('key')}",
                }
            )
        return issues


def _site(site_url: str) -> str:
    site = site_url.rstrip("/")
    if not site.startswith("http"):
        site = f"https://{site}"
    return site


def _basic(email: str, token: str) -> dict[str, str]:
    encoded = base64.b64encode(f"{email}:{token}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {encoded}"}
