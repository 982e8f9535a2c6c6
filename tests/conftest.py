"""Summary: Shared fixtures and provider fakes for Work Intel tests.

Importance: Keeps every test offline by swapping provider clients for in-memory fakes.
Alternatives: Patch urllib calls in each test module.
"""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from workintel.ai import AiProvider, MockAiProvider
from workintel.api import SESSION_COOKIE, create_app
from workintel.app import AppContext, ProviderClients, build_context
from workintel.config import AppConfig
from workintel.mailer import MockEmailSender
from workintel.nylas import NylasGrant
from workintel.oauth import HttpError, HttpResponse, OAuthTokenResult


ENCRYPTION_KEY = "ab" * 32


def build_config(tmp_path: Path, **overrides: Any) -> AppConfig:
    """Summary: Build an AppConfig for tests.

    Importance: Ensures tests use isolated storage and no real credentials.
    Alternatives: Load AppConfig from environment variables.
    """

    config = AppConfig(
        db_path=str(tmp_path / "test.db"),
        base_url="http://testserver",
        api_host="127.0.0.1",
        api_port=8000,
        ai_provider="mock",
        openai_api_key=None,
        openai_model="gpt-4o-mini",
        anthropic_api_key=None,
        anthropic_model="claude-sonnet-4-20250514",
        encryption_key=ENCRYPTION_KEY,
        session_ttl_days=30,
        invite_ttl_days=7,
        secure_cookies=False,
        cron_secret="cron-secret",
        founder_email="founder@example.com",
        nylas_client_id="nylas-client",
        nylas_api_key="nylas-key",
        nylas_api_uri="https://api.us.nylas.com",
        atlassian_client_id="atlassian-client",
        atlassian_client_secret="atlassian-secret",
        google_client_id="google-client",
        google_client_secret="google-secret",
        github_app_id="",
        github_app_private_key="",
        github_app_slug="",
        github_api_url="https://api.github.com",
        email_provider="mock",
        resend_api_key=None,
        email_from_address="reports@work-intel.local",
    )
    return replace(config, **overrides)


def token_result(access_token: str, refresh_token: str | None = "refresh", expires_at: str | None = None) -> OAuthTokenResult:
    return OAuthTokenResult(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        token_type="Bearer",
        scope="read",
        raw={},
    )


class FakeNylas:
    def __init__(self) -> None:
        self.grants: dict[str, NylasGrant] = {}
        self.messages: dict[str, dict[str, Any]] = {}
        self.events: dict[str, dict[str, Any]] = {}
        self.revoked: list[str] = []

    def build_auth_url(self, state: str) -> str:
        return f"https://nylas.test/auth?state={state}"

    def exchange_code(self, code: str) -> NylasGrant:
        if code not in self.grants:
            raise RuntimeError("Invalid authorization code")
        return self.grants[code]

    def revoke_grant(self, grant_id: str) -> None:
        self.revoked.append(grant_id)

    def list_messages(self, grant_id: str, limit: int = 20, unread: bool | None = None, received_after: Any = None) -> list[dict[str, Any]]:
        return list(self.messages.values())[:limit]

    def list_events(self, grant_id: str, start: Any, end: Any) -> list[dict[str, Any]]:
        return list(self.events.values())

    def get_message(self, grant_id: str, message_id: str) -> dict[str, Any]:
        if message_id not in self.messages:
            raise RuntimeError(f"Message {message_id} not found")
        return self.messages[message_id]

    def get_event(self, grant_id: str, event_id: str) -> dict[str, Any]:
        if event_id not in self.events:
            raise RuntimeError(f"Event {event_id} not found")
        return self.events[event_id]


class FakeAtlassian:
    def __init__(self) -> None:
        self.users: list[dict[str, Any]] = []
        self.projects: list[dict[str, Any]] = [{"key": "ENG", "name": "Engineering"}]
        self.refresh_fails = False

    def build_auth_url(self, state: str) -> str:
        return f"https://auth.atlassian.test/authorize?state={state}"

    def exchange_code(self, code: str) -> OAuthTokenResult:
        return token_result(f"jira-{code}")

    def refresh(self, refresh_token: str) -> OAuthTokenResult:
        if self.refresh_fails:
            raise RuntimeError("refresh rejected")
        return token_result("jira-refreshed", refresh_token)

    def accessible_resources(self, access_token: str) -> list[dict[str, Any]]:
        return [{"id": "cloud-1", "url": "https://acme.atlassian.net", "name": "acme"}]

    def get_me(self, access_token: str) -> dict[str, Any]:
        return {"email": "admin@example.com"}

    def list_projects(self, cloud_id: str, access_token: str) -> list[dict[str, Any]]:
        return self.projects

    def assignable_users(self, cloud_id: str, access_token: str, project_keys: list[str]) -> list[dict[str, Any]]:
        return self.users


class FakeJira:
    def __init__(self) -> None:
        self.valid_tokens = {"jira-token"}
        self.issues: list[dict[str, Any]] = []

    def test_connection(self, site_url: str, email: str, token: str) -> dict[str, Any]:
        if token not in self.valid_tokens:
            raise HttpError(401, "Unauthorized")
        return {"emailAddress": email}

    def assigned_issues(self, site_url: str, email: str, token: str, limit: int = 25) -> list[dict[str, Any]]:
        return self.issues


class FakeGitHubApp:
    def __init__(self) -> None:
        self.installations = {42: {"org": "acme", "org_id": 7}}

    def install_url(self, state: str) -> str:
        return f"https://github.com/apps/work-intel/installations/new?state={state}"

    def installation_token(self, installation_id: int) -> tuple[str, str]:
        return f"installation-{installation_id}", "2099-01-01T00:00:00+00:00"

    def get_installation(self, installation_id: int) -> dict[str, Any]:
        if installation_id not in self.installations:
            raise HttpError(404, "Not Found")
        return self.installations[installation_id]


class FakeDrive:
    def __init__(self) -> None:
        self.revoked: list[str] = []

    def build_auth_url(self, state: str) -> str:
        return f"https://accounts.google.test/o/oauth2/v2/auth?state={state}"

    def exchange_code(self, code: str) -> OAuthTokenResult:
        return token_result(f"drive-{code}")

    def refresh(self, refresh_token: str) -> OAuthTokenResult:
        return token_result("drive-refreshed", None)

    def userinfo(self, access_token: str) -> dict[str, Any]:
        return {"email": "drive@example.com"}

    def revoke(self, access_token: str) -> None:
        self.revoked.append(access_token)

    def list_folders(self, access_token: str, parent_id: str | None = None) -> list[dict[str, Any]]:
        return [{"id": "folder-1", "name": "Design Docs"}]

    def list_recent_files(self, access_token: str, folder_id: str, limit: int = 5, modified_after: Any = None) -> list[dict[str, Any]]:
        return [{"id": "file-1", "name": "RFC", "modifiedTime": "2026-01-14T10:00:00Z", "webViewLink": "https://docs.test/rfc"}]

    def read_file(self, access_token: str, file: dict[str, Any]) -> str:
        return "Proposal text"


class FakeGitHub:
    """Summary: In-memory GitHub client keyed by token.

    Importance: Serves search results per member so team reports can run offline.
    Alternatives: Record HTTP fixtures and replay them.
    """

    valid_tokens = {"ghp-valid", "installation-42"}

    def __init__(self, token: str, members: dict[str, dict[str, Any]] | None = None, remaining: str = "5000") -> None:
        self.token = token
        self.members = members or {}
        self.remaining = remaining
        self.queries: list[str] = []

    def _check(self) -> None:
        if self.token not in self.valid_tokens:
            raise HttpError(401, "Bad credentials")

    def get_viewer(self) -> dict[str, Any]:
        self._check()
        return {"login": "octocat"}

    def get_org(self, org: str) -> dict[str, Any]:
        self._check()
        return {"login": org}

    def rate_limit(self) -> HttpResponse:
        return HttpResponse(200, {"x-ratelimit-remaining": self.remaining}, {})

    def search_issues(self, query: str, per_page: int = 30, sort: str = "updated", order: str = "desc") -> HttpResponse:
        self._check()
        self.queries.append(query)
        username = _query_user(query)
        member = self.members.get(username, {})
        if "is:merged" in query:
            items = member.get("merged", [])
        elif "reviewed-by:" in query:
            return HttpResponse(200, self._headers(), {"total_count": member.get("reviews", 0), "items": []})
        else:
            items = member.get("open", [])
        return HttpResponse(200, self._headers(), {"total_count": len(items), "items": items})

    def search_commits(self, query: str, per_page: int = 1) -> HttpResponse:
        self._check()
        member = self.members.get(_query_user(query), {})
        return HttpResponse(200, self._headers(), {"total_count": member.get("commits", 0), "items": []})

    def list_reviews(self, full_name: str, number: int) -> list[dict[str, Any]]:
        return []

    def user_activity(self, username: str | None = None) -> dict[str, Any]:
        self._check()
        return {"login": username or "octocat", "pullRequests": [], "issues": [], "reviewRequests": []}

    def _headers(self) -> dict[str, str]:
        return {"x-ratelimit-remaining": self.remaining}


def _query_user(query: str) -> str:
    for part in query.split():
        if part.startswith(("author:", "reviewed-by:")):
            return part.split(":", 1)[1]
    return ""


class ScriptedAi(AiProvider):
    """Summary: AI provider that answers each purpose from a fixed table.

    Importance: Lets tests shape model output without network access.
    Alternatives: Monkeypatch the mock provider.
    """

    def __init__(self, responses: dict[str, str] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, str]] = []
        self._fallback = MockAiProvider()

    def generate_text(self, prompt: str, purpose: str, system: str | None = None) -> tuple[str, int]:
        self.calls.append((purpose, prompt))
        if purpose in self.responses:
            return self.responses[purpose], 1
        return self._fallback.generate_text(prompt, purpose, system)


class GitHubFactory:
    def __init__(self) -> None:
        self.members: dict[str, dict[str, Any]] = {}
        self.remaining = "5000"
        self.clients: list[FakeGitHub] = []

    def __call__(self, token: str) -> FakeGitHub:
        client = FakeGitHub(token, self.members, self.remaining)
        self.clients.append(client)
        return client


def build_clients() -> ProviderClients:
    return ProviderClients(
        nylas=FakeNylas(),
        atlassian=FakeAtlassian(),
        jira=FakeJira(),
        github_app=FakeGitHubApp(),
        drive=FakeDrive(),
        github_factory=GitHubFactory(),
        email_sender=MockEmailSender(),
        ai_provider=ScriptedAi(),
    )


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return build_config(tmp_path)


@pytest.fixture
def clients() -> ProviderClients:
    return build_clients()


@pytest.fixture
def context(config: AppConfig, clients: ProviderClients) -> AppContext:
    return build_context(config, clients)


@pytest.fixture
def client(config: AppConfig, clients: ProviderClients) -> TestClient:
    return TestClient(create_app(config, clients), follow_redirects=False)


def sign_in(client: TestClient, email: str) -> int:
    """Summary: Create a user and attach a fresh session cookie to the client.

    Importance: Skips the provider login flow for tests that only need a session.
    Alternatives: Drive the Nylas callback in every test.
    """

    context: AppContext = client.app.state.context
    user = context.sessions.find_or_create_user(email)
    session = context.sessions.create_session(user.id)
    client.cookies.set(SESSION_COOKIE, session.token)
    return user.id


def brief_json(**sections: Any) -> str:
    payload: dict[str, Any] = {
        "topFocus": [],
        "meetings": [],
        "prsToReview": [],
        "myPrsWaiting": [],
        "emailsToActOn": [],
        "jiraTasks": [],
        "alerts": [],
        "summary": "Busy day.",
    }
    payload.update(sections)
    return json.dumps(payload)
