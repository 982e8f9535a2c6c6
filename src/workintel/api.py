"""Summary: FastAPI application for Work Intel.

Importance: Exposes the dashboard, OAuth flows, and JSON APIs for teams and briefs.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
import secrets
import urllib.parse
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, Field

from workintel.app import AppContext, AppServices, ProviderClients, build_context
from workintel.brief_processing import DEFAULT_SUGGESTIONS, MAX_SUGGESTIONS
from workintel.config import AppConfig
from workintel.models import Task
from workintel.oauth import HttpError
from workintel.rendering import render
from workintel.services import (
    ConflictError,
    ReauthRequired,
    claim_invite,
    consume_oauth_state,
    find_valid_invite,
    integration_payload,
    invite_payload,
    member_payload,
    task_payload,
    team_payload,
)
from workintel.storage.sqlite_store import StoredUser


logger = logging.getLogger(__name__)

SESSION_COOKIE = "work_intel_session"
INVITE_COOKIE = "pending_team_invite"
INVITE_COOKIE_MAX_AGE = 60 * 60
PUBLIC_PATHS = (
    "/login",
    "/health",
    "/api/auth/nylas/initiate",
    "/api/auth/nylas/callback",
    "/api/auth/google-drive/callback",
    "/api/auth/atlassian/callback",
    "/api/auth/github/callback",
    "/api/auth/github/config",
)
PUBLIC_PREFIXES = ("/api/invites/", "/api/cron/", "/static/")
CRON_PATHS = ("/api/brief/generate",)

LOGIN_LIMIT = (10, 60)
BRIEF_LIMIT = (5, 60)
INVITE_LIMIT = (20, 60 * 60)


class TeamCreateRequest(BaseModel):
    """Summary: Request payload for team creation.

    Importance: Keeps team inputs explicit for API clients.
    Alternatives: Derive the team from the signed-in user's email domain.
    """

    name: str = ""


class MemberAddRequest(BaseModel):
    """Summary: Request payload for adding an existing user to a team."""

    email: str = ""
    role: str = "member"
    github_username: str | None = None


class MemberUpdateRequest(BaseModel):
    """Summary: Partial member update; unset fields are left alone."""

    role: str | None = None
    github_username: str | None = None


class InviteCreateRequest(BaseModel):
    """Summary: Request payload for inviting someone by email.

    Importance: Invites let admins add people who have not signed in yet.
    Alternatives: Require every member to sign up first.
    """

    email: str = ""
    role: str = "member"
    github_username: str | None = None


class TeamRequest(BaseModel):
    teamId: int


class GitHubPatRequest(BaseModel):
    """Summary: Request payload for a team GitHub personal access token."""

    token: str = ""
    org: str = ""


class JiraProjectRequest(BaseModel):
    projectKey: str | None = None
    projectKeys: list[str] | None = None


class JiraMappingsRequest(BaseModel):
    mappings: list[dict[str, Any]] = Field(default_factory=list)


class DriveFolderRequest(BaseModel):
    """Summary: Request payload for watching a Drive folder."""

    folderId: str = ""
    folderName: str = ""
    purpose: str | None = None


class BriefGenerateRequest(BaseModel):
    force: bool = False


class BriefSuggestionsRequest(BaseModel):
    brief: dict[str, Any] | None = None
    maxSuggestions: int = Field(default=DEFAULT_SUGGESTIONS, ge=1, le=MAX_SUGGESTIONS)


class PrepareActionRequest(BaseModel):
    """Summary: Request payload for drafting a follow-up on a brief item.

    Importance: Ties the draft to one brief item and its surrounding context.
    Alternatives: Look the item up from the stored brief on the server.
    """

    type: str | None = None
    sourceId: str | None = None
    briefItemId: str | None = None
    briefContext: dict[str, Any] | None = None
    additionalData: dict[str, Any] | None = None


class TaskCreateRequest(BaseModel):
    """Summary: Request payload for a personal task."""

    title: str
    description: str = ""
    priority: str = Field(default="medium", pattern="^(critical|high|medium|low)$")
    status: str = Field(default="pending", pattern="^(pending|in_progress|completed)$")
    source: str | None = None
    source_id: str | None = None
    url: str | None = None
    due_date: str | None = None


class TaskUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: str | None = Field(default=None, pattern="^(critical|high|medium|low)$")
    status: str | None = Field(default=None, pattern="^(pending|in_progress|completed)$")
    url: str | None = None
    due_date: str | None = None


class TasksFromBriefRequest(BaseModel):
    brief: dict[str, Any]


class ToolConnectRequest(BaseModel):
    """Summary: Request payload for connecting a personal tool.

    Importance: GitHub takes a token; Jira takes a site URL, email, and API token.
    Alternatives: Use OAuth for every personal tool.
    """

    type: str
    credentials: dict[str, Any] = Field(default_factory=dict)


@contextmanager
def http_errors() -> Iterator[None]:
    """Summary: Translate service exceptions into HTTP errors.

    Importance: Services stay framework-free while routes return consistent statuses.
    Alternatives: Catch exceptions individually in every route.
    """

    try:
        yield
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ReauthRequired as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc).strip("'")) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except HttpError as exc:
        logger.error("Upstream request failed: %s", exc)
        raise HTTPException(status_code=502, detail="Upstream provider request failed") from exc
    except RuntimeError as exc:
        logger.exception("Request failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def create_app(config: AppConfig, clients: ProviderClients | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to Work Intel services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="Work Intel API", version="0.1.0")
    context = build_context(config, clients)
    app.state.context = context

    def _url(path: str, **params: Any) -> str:
        base = config.base_url.rstrip("/")
        query = urllib.parse.urlencode({key: value for key, value in params.items() if value is not None})
        return f"{base}{path}?{query}" if query else f"{base}{path}"

    def _is_cron(authorization: str | None) -> bool:
        if not config.cron_secret:
            logger.error("CRON_SECRET not configured, denying request")
            return False
        return secrets.compare_digest(authorization or "", f"Bearer {config.cron_secret}")

    def _limit(key: str, limit: tuple[int, int]) -> None:
        result = context.rate_limiter.hit(key, limit[0], limit[1])
        if not result.success:
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again later.",
                headers={"Retry-After": str(int(result.retry_after_seconds) + 1)},
            )

    def _set_session_cookie(response: Response, token: str) -> None:
        response.set_cookie(
            SESSION_COOKIE,
            token,
            max_age=config.session_ttl_days * 24 * 60 * 60,
            httponly=True,
            secure=config.secure_cookies,
            samesite="lax",
            path="/",
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.middleware("http")
    async def require_session_cookie(request: Request, call_next: Any) -> Response:
        """Summary: Reject requests without a session cookie before routing.

        Importance: API calls get a JSON 401; page loads are sent to the login page.
        Alternatives: Rely only on per-route dependencies.
        """

        path = request.url.path
        if is_public_path(path) or request.cookies.get(SESSION_COOKIE):
            return await call_next(request)
        if path in CRON_PATHS and request.headers.get("authorization"):
            return await call_next(request)
        if path.startswith("/api/"):
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return RedirectResponse(_url("/login", redirect=path), status_code=307)

    def current_user(request: Request) -> StoredUser:
        user = context.sessions.validate_session(request.cookies.get(SESSION_COOKIE))
        if user is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user

    def user_services(user: StoredUser = Depends(current_user)) -> AppServices:
        return context.services_for_user(user.id)

    # Pages

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/login", response_class=HTMLResponse)
    def login_page(error: str | None = None, team: str | None = None) -> str:
        return render_login(error, team)

    @app.get("/", response_class=HTMLResponse)
    def dashboard(user: StoredUser = Depends(current_user)) -> str:
        return render_dashboard(user)

    # Login and session

    @app.get("/api/auth/nylas/initiate")
    def nylas_initiate(request: Request) -> RedirectResponse:
        client = request.client.host if request.client else "unknown"
        _limit(f"login:{client}", LOGIN_LIMIT)
        state = f"login_{secrets.token_hex(16)}"
        return RedirectResponse(context.clients.nylas.build_auth_url(state), status_code=307)

    @app.get("/api/auth/nylas/callback")
    def nylas_callback(
        request: Request,
        code: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> RedirectResponse:
        """Summary: Finish sign-in, create the session, and claim any pending invite.

        Importance: This is the only way users sign in.
        Alternatives: Offer email and password accounts.
        """

        if error or not code:
            message = error_description or error or "Missing authorization code"
            return RedirectResponse(_url("/", auth="error", message=message), status_code=307)
        try:
            grant = context.clients.nylas.exchange_code(code)
            user = context.sessions.find_or_create_user(grant.email)
            context.sessions.link_nylas_grant(user.id, grant.grant_id, grant.email, grant.provider)
            session = context.sessions.create_session(user.id)
        except (RuntimeError, ValueError) as exc:
            logger.exception("Nylas callback failed")
            return RedirectResponse(_url("/", auth="error", message=str(exc)), status_code=307)

        response = RedirectResponse(
            _url("/", auth="success", email=grant.email, provider=grant.provider), status_code=307
        )
        _set_session_cookie(response, session.token)
        invite_token = request.cookies.get(INVITE_COOKIE)
        if invite_token:
            team = claim_invite(context.store, invite_token, user)
            if team is not None:
                logger.info("User %s joined team %s from an invite.", user.id, team.slug)
            response.delete_cookie(INVITE_COOKIE, path="/")
        return response

    @app.post("/api/auth/nylas/disconnect")
    def nylas_disconnect(user: StoredUser = Depends(current_user)) -> dict[str, Any]:
        grant_id = context.sessions.unlink_nylas_grant(user.id)
        if grant_id:
            try:
                context.clients.nylas.revoke_grant(grant_id)
            except RuntimeError as exc:
                logger.warning("Failed to revoke Nylas grant for user %s: %s", user.id, exc)
        return {"success": True}

    @app.get("/api/auth/me")
    def me(user: StoredUser = Depends(current_user)) -> dict[str, Any]:
        return {
            "user": {"id": user.id, "email": user.email, "displayName": user.display_name},
            "nylasConnected": bool(user.nylas_grant_id),
        }

    @app.post("/api/auth/logout")
    def logout(request: Request) -> JSONResponse:
        context.sessions.destroy_session(request.cookies.get(SESSION_COOKIE))
        response = JSONResponse({"success": True})
        response.delete_cookie(SESSION_COOKIE, path="/")
        return response

    @app.get("/api/auth/founder-check")
    def founder_check(user: StoredUser = Depends(current_user)) -> dict[str, bool]:
        return {"isFounder": context.sessions.is_founder(user)}

    # Jira OAuth

    @app.get("/api/auth/atlassian/connect")
    def atlassian_connect(teamId: int, services: AppServices = Depends(user_services)) -> RedirectResponse:
        with http_errors():
            url = services.integrations.start_atlassian(teamId)
        return RedirectResponse(url, status_code=307)

    @app.get("/api/auth/atlassian/callback")
    def atlassian_callback(
        code: str | None = None, state: str | None = None, error: str | None = None
    ) -> RedirectResponse:
        if error or not code:
            return RedirectResponse(_url("/", jira_error=error or "Missing authorization code"), status_code=307)
        try:
            stored = consume_oauth_state(context.store, state, "atlassian")
            team = context.services_for_user(stored.user_id).integrations.complete_atlassian(stored, code)
        except (RuntimeError, ValueError, LookupError) as exc:
            logger.exception("Atlassian callback failed")
            return RedirectResponse(_url("/", jira_error=str(exc)), status_code=307)
        return RedirectResponse(_url(f"/team/{team.slug}/settings", jira_connected="true"), status_code=307)

    @app.post("/api/auth/atlassian/disconnect")
    def atlassian_disconnect(payload: TeamRequest, services: AppServices = Depends(user_services)) -> dict[str, bool]:
        with http_errors():
            services.integrations.disconnect(payload.teamId, "jira")
        return {"success": True}

    # GitHub App

    @app.get("/api/auth/github/config")
    def github_config() -> dict[str, bool]:
        return {"githubAppEnabled": config.github_app_configured}

    @app.get("/api/auth/github/connect")
    def github_connect(
        teamId: int, redirect: str | None = None, services: AppServices = Depends(user_services)
    ) -> RedirectResponse:
        redirect_to = redirect if redirect in ("onboarding", "settings") else None
        with http_errors():
            url = services.integrations.start_github_app(teamId, redirect_to)
        return RedirectResponse(url, status_code=307)

    @app.get("/api/auth/github/callback")
    def github_callback(
        installation_id: str | None = None,
        setup_action: str | None = None,
        state: str | None = None,
    ) -> RedirectResponse:
        if setup_action == "request":
            message = "Installation was requested but not completed. An organization admin must approve it."
            return RedirectResponse(_url("/", github_error=message), status_code=307)
        try:
            stored = consume_oauth_state(context.store, state, "github")
            team = context.services_for_user(stored.user_id).integrations.complete_github_app(stored, installation_id)
        except (RuntimeError, ValueError, LookupError) as exc:
            logger.exception("GitHub App callback failed")
            return RedirectResponse(_url("/", github_error=str(exc)), status_code=307)
        if stored.redirect_to == "onboarding":
            target = _url(f"/team/{team.slug}/onboarding", step="0", github_connected="true")
        elif stored.redirect_to == "settings":
            target = _url(f"/team/{team.slug}/settings", github_connected="true")
        else:
            target = _url("/")
        return RedirectResponse(target, status_code=307)

    @app.post("/api/auth/github/disconnect")
    def github_disconnect(payload: TeamRequest, services: AppServices = Depends(user_services)) -> dict[str, bool]:
        with http_errors():
            services.integrations.disconnect(payload.teamId, "github")
        return {"success": True}

    # Google Drive

    @app.get("/api/auth/google-drive/connect")
    def drive_connect(services: AppServices = Depends(user_services)) -> RedirectResponse:
        return RedirectResponse(services.drive.start_connect(), status_code=307)

    @app.get("/api/auth/google-drive/callback")
    def drive_callback(
        code: str | None = None, state: str | None = None, error: str | None = None
    ) -> RedirectResponse:
        if error or not code:
            return RedirectResponse(_url("/", drive_error=error or "Missing authorization code"), status_code=307)
        try:
            stored = consume_oauth_state(context.store, state, "google_drive")
            context.services_for_user(stored.user_id).drive.complete_connect(code)
        except (RuntimeError, ValueError) as exc:
            logger.exception("Google Drive callback failed")
            return RedirectResponse(_url("/", drive_error=str(exc)), status_code=307)
        return RedirectResponse(_url("/", drive_connected="true"), status_code=307)

    @app.post("/api/auth/google-drive/disconnect")
    def drive_disconnect(services: AppServices = Depends(user_services)) -> dict[str, bool]:
        services.drive.disconnect()
        return {"success": True}

    @app.get("/api/drive/status")
    def drive_status(services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return services.drive.status()

    @app.get("/api/drive/browse")
    def drive_browse(parentId: str | None = None, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return {"folders": services.drive.browse(parentId)}

    @app.get("/api/drive/folders")
    def drive_folders(services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return {"folders": services.drive.status()["folders"]}

    @app.post("/api/drive/folders", status_code=201)
    def drive_add_folder(
        payload: DriveFolderRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        with http_errors():
            return {"folder": services.drive.add_folder(payload.folderId, payload.folderName, payload.purpose)}

    @app.delete("/api/drive/folders")
    def drive_remove_folder(folderId: str = "", services: AppServices = Depends(user_services)) -> dict[str, bool]:
        if not folderId:
            raise HTTPException(status_code=400, detail="folderId is required")
        with http_errors():
            services.drive.remove_folder(folderId)
        return {"success": True}

    # Teams

    @app.get("/api/teams")
    def list_teams(services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return {"teams": services.teams.list_teams()}

    @app.post("/api/teams", status_code=201)
    def create_team(payload: TeamCreateRequest, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            team = services.teams.create_team(payload.name)
        return {"team": team_payload(team)}

    @app.get("/api/teams/by-slug/{slug}")
    def team_by_slug(slug: str, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            team = services.teams.get_team_by_slug(slug)
            return services.teams.team_detail(team.id)

    @app.get("/api/teams/{team_id}")
    def team_detail(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return services.teams.team_detail(team_id)

    @app.get("/api/teams/{team_id}/members")
    def list_members(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            members = services.teams.list_members(team_id)
        return {"members": [member_payload(member) for member in members]}

    @app.post("/api/teams/{team_id}/members", status_code=201)
    def add_member(
        team_id: int, payload: MemberAddRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        role = "admin" if payload.role == "admin" else "member"
        with http_errors():
            member = services.teams.add_member(team_id, payload.email, role, payload.github_username)
        return {"member": member_payload(member)}

    @app.patch("/api/teams/{team_id}/members/{member_id}")
    def update_member(
        team_id: int,
        member_id: int,
        payload: MemberUpdateRequest,
        services: AppServices = Depends(user_services),
    ) -> dict[str, Any]:
        with http_errors():
            member = services.teams.update_member(team_id, member_id, payload.model_dump(exclude_unset=True))
        return {"member": member_payload(member)}

    @app.delete("/api/teams/{team_id}/members/{member_id}")
    def remove_member(team_id: int, member_id: int, services: AppServices = Depends(user_services)) -> dict[str, bool]:
        with http_errors():
            services.teams.remove_member(team_id, member_id)
        return {"success": True}

    # Invites

    @app.get("/api/teams/{team_id}/invites")
    def list_invites(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return {"invites": services.invites.list_invites(team_id)}

    @app.post("/api/teams/{team_id}/invites")
    def create_invite(
        team_id: int, payload: InviteCreateRequest, services: AppServices = Depends(user_services)
    ) -> JSONResponse:
        _limit(f"invite:{services.user_id}", INVITE_LIMIT)
        with http_errors():
            result = services.invites.create_invite(team_id, payload.email, payload.role, payload.github_username)
        invite = invite_payload(result.invite)
        if not result.created:
            return JSONResponse({"invite": invite, "message": "Invite updated and resent"})
        return JSONResponse({"invite": invite, "emailSent": result.email_sent}, status_code=201)

    @app.delete("/api/teams/{team_id}/invites/{invite_id}")
    def revoke_invite(team_id: int, invite_id: int, services: AppServices = Depends(user_services)) -> dict[str, bool]:
        with http_errors():
            services.invites.revoke_invite(team_id, invite_id)
        return {"success": True}

    @app.post("/api/teams/{team_id}/invites/{invite_id}/resend")
    def resend_invite(team_id: int, invite_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            invite = services.invites.resend_invite(team_id, invite_id)
        return {"success": True, "invite": invite_payload(invite)}

    @app.get("/api/invites/{token}")
    def accept_invite(token: str) -> RedirectResponse:
        found = find_valid_invite(context.store, token)
        if found is None:
            return RedirectResponse(_url("/login", error="Invalid or expired invitation"), status_code=307)
        _invite, team = found
        response = RedirectResponse(_url("/login", invite="true", team=team.name), status_code=307)
        response.set_cookie(
            INVITE_COOKIE,
            token,
            max_age=INVITE_COOKIE_MAX_AGE,
            httponly=True,
            secure=config.secure_cookies,
            samesite="lax",
            path="/",
        )
        return response

    # Team integrations

    @app.post("/api/teams/{team_id}/integrations/github")
    def connect_github_pat(
        team_id: int, payload: GitHubPatRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        with http_errors():
            return {"integration": services.integrations.connect_github_pat(team_id, payload.token, payload.org)}

    @app.delete("/api/teams/{team_id}/integrations/github")
    def remove_github_pat(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, bool]:
        with http_errors():
            services.integrations.remove_github_pat(team_id)
        return {"success": True}

    @app.get("/api/teams/{team_id}/integrations")
    def list_integrations(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            detail = services.teams.team_detail(team_id)
        return {"integrations": detail["integrations"]}

    @app.get("/api/teams/{team_id}/jira/projects")
    def jira_projects(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return {"projects": services.integrations.list_jira_projects(team_id)}

    @app.get("/api/teams/{team_id}/jira/project")
    def jira_project(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return services.integrations.get_jira_project(team_id)

    @app.post("/api/teams/{team_id}/jira/project")
    def set_jira_project(
        team_id: int, payload: JiraProjectRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        keys = payload.projectKeys if payload.projectKeys is not None else [payload.projectKey or ""]
        with http_errors():
            saved = services.integrations.set_jira_project(team_id, keys)
        return {"success": True, "projectKeys": saved}

    @app.post("/api/teams/{team_id}/jira/match-members")
    def match_jira_members(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return services.integrations.match_jira_members(team_id)

    @app.post("/api/teams/{team_id}/jira/confirm-members")
    def confirm_jira_members(
        team_id: int, payload: JiraMappingsRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        with http_errors():
            return services.integrations.confirm_jira_members(team_id, payload.mappings)

    # Team reports

    @app.get("/api/teams/{team_id}/github")
    def team_github(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return services.reports.fetch_team_github_data(team_id)

    @app.post("/api/teams/{team_id}/reports/generate")
    def generate_report(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return {"report": services.reports.generate(team_id)}

    @app.get("/api/teams/{team_id}/reports/latest")
    def latest_report(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            latest = services.reports.latest(team_id)
        if latest is None:
            return {"report": None, "message": "No report generated yet"}
        return latest

    @app.get("/api/teams/{team_id}/reports/trends")
    def report_trends(team_id: int, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return {"weeks": services.reports.trends(team_id)}

    @app.get("/api/cron/weekly-reports")
    def weekly_reports_cron(authorization: str | None = Header(default=None)) -> JSONResponse:
        if not _is_cron(authorization):
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return JSONResponse(context.reports().run_weekly_cron())

    # Briefs

    @app.post("/api/brief/generate")
    def generate_brief(
        request: Request,
        payload: BriefGenerateRequest | None = None,
        authorization: str | None = Header(default=None),
        x_user_id: int | None = Header(default=None),
    ) -> dict[str, Any]:
        """Summary: Generate today's brief for the session user or a cron-selected user.

        Importance: The scheduled job authenticates with the cron secret instead of a cookie.
        Alternatives: Run scheduled briefs only from the CLI.
        """

        if authorization and x_user_id is not None and _is_cron(authorization):
            if context.store.get_user(x_user_id) is None:
                raise HTTPException(status_code=404, detail="User not found")
            user_id, generated_by = x_user_id, "cron"
        else:
            user_id, generated_by = current_user(request).id, "user"
            _limit(f"brief:{user_id}", BRIEF_LIMIT)
        force = payload.force if payload else False
        with http_errors():
            brief, cached = context.services_for_user(user_id).briefs.generate(generated_by, force=force)
        return {"brief": brief, "cached": cached}

    @app.get("/api/brief/latest")
    def latest_brief(services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return services.briefs.latest()

    @app.get("/api/brief/history")
    def brief_history(limit: int = 30, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return {"briefs": services.briefs.history(max(1, min(limit, 90)))}

    @app.post("/api/brief/suggestions")
    def brief_suggestions(
        payload: BriefSuggestionsRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        with http_errors():
            suggestions = services.briefs.suggest(payload.brief, payload.maxSuggestions)
        return {"suggestions": suggestions, "generatedAt": datetime.now(timezone.utc).isoformat()}

    @app.post("/api/brief/prepare-action")
    def prepare_action(
        payload: PrepareActionRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        with http_errors():
            action = services.actions.prepare_action(
                payload.type,
                payload.sourceId,
                payload.briefItemId,
                payload.briefContext,
                payload.additionalData,
            )
        return {"success": True, "action": action}

    # Tasks

    @app.get("/api/tasks")
    def list_tasks(date: str | None = None, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return {"tasks": [task_payload(task) for task in services.tasks.list_tasks(date)]}

    @app.post("/api/tasks", status_code=201)
    def create_task(payload: TaskCreateRequest, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            task = services.tasks.create_task(Task(**payload.model_dump()))
        return {"task": task_payload(task)}

    @app.patch("/api/tasks/{task_id}")
    def update_task(
        task_id: int, payload: TaskUpdateRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        with http_errors():
            task = services.tasks.update_task(task_id, payload.model_dump(exclude_unset=True))
        return {"task": task_payload(task)}

    @app.delete("/api/tasks/{task_id}")
    def delete_task(task_id: int, services: AppServices = Depends(user_services)) -> dict[str, bool]:
        with http_errors():
            services.tasks.delete_task(task_id)
        return {"success": True}

    @app.post("/api/tasks/from-brief", status_code=201)
    def tasks_from_brief(
        payload: TasksFromBriefRequest, services: AppServices = Depends(user_services)
    ) -> dict[str, Any]:
        created = services.tasks.create_from_brief(payload.brief)
        return {"tasks": [task_payload(task) for task in created], "count": len(created)}

    # Tools and audit

    @app.get("/api/tools")
    def tool_statuses(services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return {"tools": services.tools.statuses()}

    @app.post("/api/tools/connect")
    def connect_tool(payload: ToolConnectRequest, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        with http_errors():
            return services.tools.connect(payload.type, payload.credentials)

    @app.get("/api/ai/requests")
    def ai_requests(limit: int = 50, services: AppServices = Depends(user_services)) -> dict[str, Any]:
        return {"requests": services.ai_audit.list_requests(max(1, min(limit, 200)))}

    return app


def render_login(error: str | None = None, team: str | None = None) -> str:
    """Summary: Render the sign-in page.

    Importance: Invite links land here with the team name; failed links land here with an error.
    Alternatives: Serve a separate frontend bundle.
    """

    return render("pages/login.html", error=error, team=team)


def render_dashboard(user: StoredUser) -> str:
    return render("pages/dashboard.html", user=user)


app = create_app(AppConfig.from_env())
