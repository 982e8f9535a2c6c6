"""Summary: Service layer for Work Intel workflows.

Importance: Centralizes business logic for sessions, teams, integrations, and briefs.
Alternatives: Put logic directly in API handlers or CLI commands.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from workintel.ai import AiProvider, estimate_tokens, extract_json, parse_model_json
from workintel.atlassian import AtlassianClient, JiraClient
from workintel.audit import audit_log
from workintel.brief_processing import (
    BRIEF_SYSTEM_PROMPT,
    DEFAULT_SUGGESTIONS,
    SUGGESTIONS_SYSTEM_PROMPT,
    build_brief_prompt,
    build_condensed_context,
    build_suggestion_context,
    build_suggestions_prompt,
    fallback_brief,
    parse_brief_response,
    parse_suggestions,
)
from workintel.cache import TtlCache, brief_key, tool_status_key
from workintel.config import AppConfig
from workintel.github import GitHubAppClient, GitHubClient
from workintel.google_drive import GoogleDriveClient, sanitize_drive_id
from workintel.mailer import EmailSender, invite_html, invite_subject
from workintel.models import TEAM_ROLES, AiRequest, AiResponse, SendEmailResult, Task
from workintel.nylas import NylasClient
from workintel.oauth import create_state_token, is_expired, needs_refresh, state_expiry
from workintel.sources import ToolDataCollector
from workintel.storage.sqlite_store import (
    SqliteStore,
    StoredDriveGrant,
    StoredIntegration,
    StoredInvite,
    StoredMember,
    StoredOAuthState,
    StoredSession,
    StoredTask,
    StoredTeam,
    StoredUser,
    utc_now,
)
from workintel.token_codec import TokenCodec


logger = logging.getLogger(__name__)

BRIEF_CACHE_SECONDS = 60 * 60
TOOL_STATUS_CACHE_SECONDS = 5 * 60
SENSITIVE_CONFIG_KEYS = ("access_token", "refresh_token", "token_expiry", "encrypted_token")
PERSONAL_TOOLS = ("github", "jira", "gmail", "calendar", "drive")
CONNECTABLE_TOOLS = ("github", "jira")
ACTION_TYPES = ("email_reply", "pr_nudge", "meeting_prep")
ACTION_BUTTONS = [
    {"label": "Copy to Clipboard", "action": "copy"},
    {"label": "Regenerate", "action": "regenerate"},
    {"label": "Skip", "action": "skip"},
]
URGENT_PRIORITIES = ("critical", "high")

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


class ConflictError(ValueError):
    """Summary: Raised when a create request collides with an existing record."""


class ReauthRequired(RuntimeError):
    """Summary: Raised when a stored provider credential can no longer be used.

    Importance: Lets the API answer 401 so the client prompts for a reconnect.
    Alternatives: Return None and let callers guess why.
    """


def slugify(name: str) -> str:
    """Summary: Derive a URL slug from a team name.

    Importance: Team URLs and lookups use the slug rather than the numeric id.
    Alternatives: Let users pick slugs explicitly.
    """

    return _SLUG_INVALID.sub("-", name.lower()).strip("-")


def coerce_role(role: str | None) -> str:
    return "admin" if role == "admin" else "member"


def require_membership(
    store: SqliteStore, team_id: int, user_id: int, message: str = "Not a team member"
) -> StoredMember:
    member = store.get_membership(team_id, user_id)
    if member is None:
        raise PermissionError(message)
    return member


def require_admin(
    store: SqliteStore,
    team_id: int,
    user_id: int,
    message: str = "Admin access required",
) -> StoredMember:
    member = store.get_membership(team_id, user_id)
    if member is None or member.role != "admin":
        raise PermissionError(message)
    return member


def consume_oauth_state(store: SqliteStore, state_token: str | None, provider: str) -> StoredOAuthState:
    """Summary: Pop a single-use OAuth state and reject unknown or expired tokens.

    Importance: Callbacks arrive without a session, so the state row names the user and team.
    Alternatives: Carry the user id in a signed cookie.
    """

    state = store.pop_oauth_state(state_token, provider) if state_token else None
    if state is None or is_expired(state.expires_at):
        raise ValueError("Invalid or expired state")
    return state


def sanitize_config(config: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in config.items() if key not in SENSITIVE_CONFIG_KEYS}


def team_payload(team: StoredTeam) -> dict[str, Any]:
    return asdict(team)


def member_payload(member: StoredMember) -> dict[str, Any]:
    return asdict(member)


def integration_payload(integration: StoredIntegration) -> dict[str, Any]:
    return {
        "id": integration.id,
        "team_id": integration.team_id,
        "provider": integration.provider,
        "config": sanitize_config(integration.config),
        "connected_by": integration.connected_by,
        "connected_at": integration.connected_at,
    }


def invite_payload(invite: StoredInvite, inviter: StoredUser | None = None) -> dict[str, Any]:
    payload = asdict(invite)
    payload.pop("token")
    if inviter is not None:
        payload["invited_by_name"] = inviter.display_name
        payload["invited_by_email"] = inviter.email
    return payload


def task_payload(task: StoredTask) -> dict[str, Any]:
    return asdict(task)


@dataclass(frozen=True)
class AiRecorder:
    """Summary: Calls the AI provider and stores the request and response.

    Importance: Provides auditability for every AI use across services.
    Alternatives: Rely solely on logs without persistence.
    """

    store: SqliteStore
    ai_provider: AiProvider
    provider_name: str
    model_name: str

    def generate(
        self, prompt: str, purpose: str, user_id: int | None = None, system: str | None = None
    ) -> str:
        response_text, latency_ms = self.ai_provider.generate_text(prompt, purpose, system=system)
        request = AiRequest(
            provider=self.provider_name,
            model=self.model_name,
            prompt=prompt,
            purpose=purpose,
            timestamp=datetime.now(timezone.utc),
        )
        request_id = self.store.log_ai_request(request, user_id=user_id)
        self.store.log_ai_response(
            AiResponse(
                request_id=request_id,
                response_text=response_text,
                latency_ms=latency_ms,
                token_estimate=estimate_tokens(response_text),
            )
        )
        return response_text


@dataclass(frozen=True)
class SessionService:
    """Summary: Manage users and cookie sessions.

    Importance: Every authenticated request resolves its user through this service.
    Alternatives: Use signed stateless session cookies.
    """

    store: SqliteStore
    config: AppConfig

    def find_or_create_user(self, email: str, display_name: str | None = None) -> StoredUser:
        normalized = email.strip().lower()
        if not normalized:
            raise ValueError("Email is required")
        user = self.store.ensure_user(normalized, display_name or normalized.split("@")[0])
        logger.info("Signed in user %s.", user.id)
        return user

    def create_session(self, user_id: int, now: datetime | None = None) -> StoredSession:
        current = now or datetime.now(timezone.utc)
        token = secrets.token_hex(32)
        expires_at = (current + timedelta(days=self.config.session_ttl_days)).isoformat()
        self.store.create_session(token, user_id, current.isoformat(), expires_at)
        session = self.store.get_session(token)
        if session is None:
            raise RuntimeError("Failed to persist session")
        return session

    def validate_session(self, token: str | None, now: datetime | None = None) -> StoredUser | None:
        """Summary: Resolve a session token to its user.

        Importance: Expired sessions are deleted as soon as they are seen.
        Alternatives: Leave expired rows for the cleanup job.
        """

        if not token:
            return None
        session = self.store.get_session(token)
        if session is None:
            return None
        if is_expired(session.expires_at, now):
            self.store.delete_session(token)
            return None
        return self.store.get_user(session.user_id)

    def destroy_session(self, token: str | None) -> None:
        if token:
            self.store.delete_session(token)

    def link_nylas_grant(self, user_id: int, grant_id: str, email: str, provider: str) -> None:
        self.store.save_nylas_grant(user_id, grant_id, email, provider)
        self.store.set_user_grant(user_id, grant_id)

    def unlink_nylas_grant(self, user_id: int) -> str | None:
        grant = self.store.get_nylas_grant(user_id)
        if grant is None:
            return None
        self.store.delete_nylas_grant(user_id)
        return grant.grant_id

    def is_founder(self, user: StoredUser) -> bool:
        return bool(self.config.founder_email) and user.email == self.config.founder_email.lower()

    def cleanup_expired(self) -> int:
        now = utc_now()
        removed = self.store.delete_expired_sessions(now)
        self.store.delete_expired_oauth_states(now)
        logger.info("Removed %s expired sessions.", removed)
        return removed


@dataclass(frozen=True)
class TeamService:
    """Summary: Team creation, membership, and role management.

    Importance: Enforces the membership and admin rules every team route depends on.
    Alternatives: Check roles inline in each handler.
    """

    store: SqliteStore
    user_id: int

    def create_team(self, name: str) -> StoredTeam:
        """Summary: Create a team and make the caller its first admin.

        Importance: A team without an admin could never be managed, so a failed
        membership insert removes the team again.
        Alternatives: Wrap both inserts in one database transaction.
        """

        cleaned = (name or "").strip()
        if len(cleaned) < 2:
            raise ValueError("Team name must be at least 2 characters")
        slug = slugify(cleaned)
        if not slug:
            raise ValueError("Team name must contain letters or numbers")
        try:
            team = self.store.create_team(cleaned, slug, self.user_id)
        except sqlite3.IntegrityError as exc:
            raise ConflictError("A team with this name already exists") from exc
        try:
            self.store.add_member(team.id, self.user_id, "admin")
        except sqlite3.Error as exc:
            self.store.delete_team(team.id)
            raise RuntimeError("Failed to create team") from exc
        logger.info("Created team %s.", team.slug)
        return team

    def list_teams(self) -> list[dict[str, Any]]:
        return [{**team_payload(team), "role": role} for team, role in self.store.list_teams_for_user(self.user_id)]

    def get_team_by_slug(self, slug: str) -> StoredTeam:
        team = self.store.get_team_by_slug(slug)
        if team is None:
            raise LookupError("Team not found")
        return team

    def get_team(self, team_id: int) -> StoredTeam:
        team = self.store.get_team(team_id)
        if team is None:
            raise LookupError("Team not found")
        return team

    def team_detail(self, team_id: int) -> dict[str, Any]:
        require_membership(self.store, team_id, self.user_id)
        team = self.get_team(team_id)
        return {
            "team": team_payload(team),
            "members": [member_payload(member) for member in self.store.list_members(team_id)],
            "integrations": [
                integration_payload(integration) for integration in self.store.list_integrations(team_id)
            ],
        }

    def list_members(self, team_id: int) -> list[StoredMember]:
        require_membership(self.store, team_id, self.user_id)
        return self.store.list_members(team_id)

    def add_member(
        self, team_id: int, email: str, role: str = "member", github_username: str | None = None
    ) -> StoredMember:
        require_admin(self.store, team_id, self.user_id)
        role = coerce_role(role)
        normalized = (email or "").strip().lower()
        if not normalized:
            raise ValueError("Email is required")
        user = self.store.get_user_by_email(normalized)
        if user is None:
            raise LookupError("User not found. They must sign up first.")
        if self.store.get_membership(team_id, user.id):
            raise ConflictError("User is already a team member")
        member = self.store.add_member(team_id, user.id, role, github_username or None)
        logger.info("Added user %s to team %s as %s.", user.id, team_id, role)
        return member

    def update_member(self, team_id: int, member_id: int, updates: dict[str, Any]) -> StoredMember:
        """Summary: Apply a partial role or GitHub username update.

        Importance: An empty GitHub username clears the mapping, and the last
        admin cannot be demoted.
        Alternatives: Require full member replacement on every edit.
        """

        require_admin(self.store, team_id, self.user_id)
        member = self.store.get_member(team_id, member_id)
        if member is None:
            raise LookupError("Member not found")

        changes: dict[str, Any] = {}
        if updates.get("role") in TEAM_ROLES:
            changes["role"] = updates["role"]
        if "github_username" in updates:
            changes["github_username"] = (updates["github_username"] or "").strip() or None
        if not changes:
            raise ValueError("No valid updates provided")

        demoting = member.role == "admin" and changes.get("role") == "member"
        if demoting and self.store.count_admins(team_id) <= 1:
            raise ValueError("Cannot remove the last admin")
        self.store.update_member(member_id, changes)
        updated = self.store.get_member(team_id, member_id)
        if updated is None:
            raise LookupError("Member not found")
        return updated

    def remove_member(self, team_id: int, member_id: int) -> None:
        require_admin(self.store, team_id, self.user_id)
        member = self.store.get_member(team_id, member_id)
        if member is None:
            raise LookupError("Member not found")
        if member.role == "admin" and self.store.count_admins(team_id) <= 1:
            raise ValueError("Cannot remove the last admin")
        self.store.delete_member(member_id)
        logger.info("Removed member %s from team %s.", member_id, team_id)


@dataclass(frozen=True)
class InviteResult:
    invite: StoredInvite
    created: bool
    email_sent: bool


@dataclass(frozen=True)
class InviteService:
    """Summary: Email invitations into teams.

    Importance: Lets admins add people who have never signed in.
    Alternatives: Require users to exist before they can be added.
    """

    store: SqliteStore
    config: AppConfig
    email_sender: EmailSender
    user_id: int

    def list_invites(self, team_id: int) -> list[dict[str, Any]]:
        require_admin(self.store, team_id, self.user_id)
        inviters: dict[int, StoredUser | None] = {}
        payloads = []
        for invite in self.store.list_invites(team_id):
            if invite.invited_by not in inviters:
                inviters[invite.invited_by] = self.store.get_user(invite.invited_by)
            payloads.append(invite_payload(invite, inviters[invite.invited_by]))
        return payloads

    def create_invite(
        self,
        team_id: int,
        email: str,
        role: str = "member",
        github_username: str | None = None,
    ) -> InviteResult:
        """Summary: Create an invite or refresh and resend an existing one.

        Importance: Re-inviting the same address never produces duplicate rows.
        Alternatives: Reject repeat invites with a conflict.
        """

        require_admin(self.store, team_id, self.user_id)
        normalized = (email or "").strip().lower()
        if not normalized:
            raise ValueError("Email is required")
        role = coerce_role(role)
        team = self.store.get_team(team_id)
        if team is None:
            raise LookupError("Team not found")
        existing_user = self.store.get_user_by_email(normalized)
        if existing_user and self.store.get_membership(team_id, existing_user.id):
            raise ConflictError("User is already a team member")

        expires_at = self._expiry()
        existing = self.store.get_invite_by_email(team_id, normalized)
        if existing is not None:
            self.store.refresh_invite(existing.id, role, github_username or None, expires_at)
            invite = self.store.get_invite(team_id, existing.id)
            if invite is None:
                raise LookupError("Invite not found")
            result = self._send(invite, team)
            audit_log("team.invite.resent", team_id=team_id, invite_id=invite.id, email=normalized, by=self.user_id)
            return InviteResult(invite=invite, created=False, email_sent=result.success)

        invite = self.store.create_invite(
            team_id,
            normalized,
            role,
            github_username or None,
            secrets.token_hex(32),
            self.user_id,
            expires_at,
        )
        result = self._send(invite, team)
        audit_log("team.invite.created", team_id=team_id, invite_id=invite.id, email=normalized, by=self.user_id)
        return InviteResult(invite=invite, created=True, email_sent=result.success)

    def revoke_invite(self, team_id: int, invite_id: int) -> None:
        require_admin(self.store, team_id, self.user_id)
        invite = self.store.get_invite(team_id, invite_id)
        if invite is None:
            raise LookupError("Invite not found")
        self.store.delete_invite(invite_id)
        audit_log("team.invite.revoked", team_id=team_id, invite_id=invite_id, email=invite.email, by=self.user_id)

    def resend_invite(self, team_id: int, invite_id: int) -> StoredInvite:
        require_admin(self.store, team_id, self.user_id)
        invite = self.store.get_invite(team_id, invite_id)
        team = self.store.get_team(team_id)
        if invite is None or team is None:
            raise LookupError("Invite not found")
        result = self._send(invite, team)
        if not result.success:
            raise RuntimeError(f"Failed to send email: {result.error}")
        self.store.touch_invite(invite.id)
        refreshed = self.store.get_invite(team_id, invite_id) or invite
        audit_log("team.invite.resent", team_id=team_id, invite_id=invite_id, email=invite.email, by=self.user_id)
        return refreshed

    def accept_url(self, invite: StoredInvite) -> str:
        return f"{self.config.base_url.rstrip('/')}/api/invites/{invite.token}"

    def _expiry(self) -> str:
        return (datetime.now(timezone.utc) + timedelta(days=self.config.invite_ttl_days)).isoformat()

    def _send(self, invite: StoredInvite, team: StoredTeam) -> SendEmailResult:
        inviter = self.store.get_user(self.user_id)
        inviter_name = inviter.display_name if inviter else "A teammate"
        result = self.email_sender.send(
            invite.email,
            invite_subject(team.name),
            invite_html(team.name, inviter_name, invite.role, self.accept_url(invite)),
        )
        if not result.success:
            logger.warning("Invite email to %s failed: %s", invite.email, result.error)
        return result


def find_valid_invite(store: SqliteStore, token: str | None) -> tuple[StoredInvite, StoredTeam] | None:
    """Summary: Look up an invite link that can still be accepted.

    Importance: Unknown and expired links resolve to None so callers redirect with an error.
    Alternatives: Raise distinct errors for unknown and expired tokens.
    """

    if not token:
        return None
    invite = store.get_invite_by_token(token)
    if invite is None or is_expired(invite.expires_at):
        return None
    team = store.get_team(invite.team_id)
    if team is None:
        return None
    return invite, team


def claim_invite(store: SqliteStore, token: str | None, user: StoredUser) -> StoredTeam | None:
    """Summary: Join the signed-in user to the team an invite link points at.

    Importance: Only the invited address may claim the invite; the invite is
    consumed once the membership exists.
    Alternatives: Let any signed-in user accept a forwarded link.
    """

    found = find_valid_invite(store, token)
    if found is None:
        return None
    invite, team = found
    if invite.email.lower() != user.email.lower():
        logger.warning("User %s tried to claim an invite for another address.", user.id)
        return None
    if store.get_membership(team.id, user.id) is None:
        store.add_member(team.id, user.id, invite.role, invite.github_username)
    store.delete_invite(invite.id)
    audit_log("team.invite.accepted", team_id=team.id, invite_id=invite.id, user_id=user.id)
    return team


@dataclass(frozen=True)
class IntegrationService:
    """Summary: Team-level Jira and GitHub integrations.

    Importance: Reports and member matching read credentials connected here.
    Alternatives: Store credentials per user instead of per team.
    """

    store: SqliteStore
    config: AppConfig
    codec: TokenCodec
    atlassian: AtlassianClient
    github_app: GitHubAppClient
    github_factory: Callable[[str], GitHubClient]
    ai: AiRecorder
    user_id: int

    # Jira OAuth

    def start_atlassian(self, team_id: int) -> str:
        require_admin(self.store, team_id, self.user_id, "Only team admins can connect Jira")
        state = self._save_state("atlassian", team_id)
        return self.atlassian.build_auth_url(state)

    def complete_atlassian(self, state: StoredOAuthState, code: str) -> StoredTeam:
        """Summary: Store the Jira site and encrypted tokens for a team.

        Importance: The first accessible site is used; project keys survive a reconnect.
        Alternatives: Ask the admin to pick a site after the redirect.
        """

        if state.team_id is None:
            raise ValueError("Invalid or expired state")
        team = self.store.get_team(state.team_id)
        if team is None:
            raise LookupError("Team not found")
        tokens = self.atlassian.exchange_code(code)
        resources = self.atlassian.accessible_resources(tokens.access_token)
        if not resources:
            raise ValueError("No accessible Jira sites found")
        site = resources[0]
        me = self.atlassian.get_me(tokens.access_token)
        previous = self.store.get_integration(team.id, "jira")
        config: dict[str, Any] = {
            "cloud_id": site["id"],
            "site_url": site.get("url"),
            "site_name": site.get("name"),
            "access_token": self.codec.encode(tokens.access_token),
            "refresh_token": self.codec.encode(tokens.refresh_token) if tokens.refresh_token else None,
            "token_expiry": tokens.expires_at,
            "scopes": tokens.scope,
            "connected_email": me.get("email"),
        }
        if previous and previous.config.get("project_keys"):
            config["project_keys"] = previous.config["project_keys"]
        self.store.upsert_integration(team.id, "jira", config, state.user_id)
        audit_log("team.jira.connected", team_id=team.id, site=site.get("url"), by=state.user_id)
        return team

    def jira_access_token(self, team_id: int) -> str | None:
        """Summary: Return a usable Jira access token, refreshing when close to expiry.

        Importance: Refresh failures return None so callers can ask for a reconnect.
        Alternatives: Refresh only after a 401 from Jira.
        """

        integration = self.store.get_integration(team_id, "jira")
        if integration is None:
            return None
        config = dict(integration.config)
        if not needs_refresh(config.get("token_expiry")):
            return self.codec.decode_if_encoded(config.get("access_token"))
        refresh_token = self.codec.decode_if_encoded(config.get("refresh_token"))
        if not refresh_token:
            return None
        try:
            tokens = self.atlassian.refresh(refresh_token)
        except (RuntimeError, ValueError) as exc:
            logger.error("Jira token refresh failed for team %s: %s", team_id, exc)
            return None
        config["access_token"] = self.codec.encode(tokens.access_token)
        if tokens.refresh_token:
            config["refresh_token"] = self.codec.encode(tokens.refresh_token)
        config["token_expiry"] = tokens.expires_at
        self.store.update_integration_config(team_id, "jira", config)
        return tokens.access_token

    def disconnect(self, team_id: int, provider: str) -> None:
        require_admin(self.store, team_id, self.user_id)
        if not self.store.delete_integration(team_id, provider):
            raise LookupError("Integration not found")
        event = "team.jira.disconnected" if provider == "jira" else "team.github.oauth_disconnected"
        audit_log(event, team_id=team_id, by=self.user_id)

    # GitHub App

    def start_github_app(self, team_id: int, redirect_to: str | None = None) -> str:
        require_admin(self.store, team_id, self.user_id)
        if not self.config.github_app_configured:
            raise ValueError("GitHub App is not configured")
        self.store.delete_expired_oauth_states(utc_now())
        state = self._save_state("github", team_id, redirect_to)
        return self.github_app.install_url(state)

    def complete_github_app(self, state: StoredOAuthState, installation_id: str | None) -> StoredTeam:
        if state.team_id is None:
            raise ValueError("Invalid or expired state")
        team = self.store.get_team(state.team_id)
        if team is None:
            raise LookupError("Team not found")
        try:
            parsed_id = int(installation_id or "")
        except ValueError as exc:
            raise ValueError("Invalid installation ID") from exc
        installation = self.github_app.get_installation(parsed_id)
        user = self.store.get_user(state.user_id) if state.user_id else None
        config = {
            "auth_type": "github_app",
            "installation_id": parsed_id,
            "org": installation["org"],
            "org_id": installation["org_id"],
            "connected_email": user.email if user else None,
        }
        self.store.upsert_integration(team.id, "github", config, state.user_id)
        audit_log(
            "team.github.oauth_connected",
            team_id=team.id,
            org=installation["org"],
            installation_id=parsed_id,
            by=state.user_id,
        )
        return team

    # GitHub personal access token

    def connect_github_pat(self, team_id: int, token: str, org: str) -> dict[str, Any]:
        require_admin(self.store, team_id, self.user_id)
        if not token or not org:
            raise ValueError("GitHub token and organization are required")
        try:
            self.github_factory(token).get_org(org)
        except RuntimeError as exc:
            raise ValueError(f"GitHub token validation failed: {exc}") from exc
        integration = self.store.upsert_integration(
            team_id,
            "github",
            {"auth_type": "pat", "org": org, "encrypted_token": self.codec.encode(token)},
            self.user_id,
        )
        audit_log("team.github.pat_connected", team_id=team_id, org=org, by=self.user_id)
        return {"id": integration.id, "provider": "github", "org": org}

    def remove_github_pat(self, team_id: int) -> None:
        require_admin(self.store, team_id, self.user_id)
        self.store.delete_integration(team_id, "github")
        audit_log("team.github.pat_removed", team_id=team_id, by=self.user_id)

    # Jira projects and member matching

    def list_jira_projects(self, team_id: int) -> list[dict[str, Any]]:
        require_membership(self.store, team_id, self.user_id)
        cloud_id, token = self._jira_session(team_id)
        return self.atlassian.list_projects(cloud_id, token)

    def get_jira_project(self, team_id: int) -> dict[str, Any]:
        require_membership(self.store, team_id, self.user_id)
        integration = self.store.get_integration(team_id, "jira")
        keys = list(integration.config.get("project_keys") or []) if integration else []
        return {"projectKey": keys[0] if keys else None, "projectKeys": keys}

    def set_jira_project(self, team_id: int, project_keys: list[str]) -> list[str]:
        require_admin(self.store, team_id, self.user_id, "Only team admins can set the Jira project")
        integration = self.store.get_integration(team_id, "jira")
        if integration is None:
            raise ValueError("Jira is not connected. Please connect Jira first.")
        keys = [key.strip() for key in project_keys if key and key.strip()]
        self.store.update_integration_config(team_id, "jira", {**integration.config, "project_keys": keys})
        logger.info("Set Jira projects for team %s: %s", team_id, ", ".join(keys) or "none")
        return keys

    def match_jira_members(self, team_id: int) -> dict[str, Any]:
        """Summary: Suggest a Jira account for each team member.

        Importance: Exact email matches are trusted outright; the AI only
        suggests accounts for the remaining members.
        Alternatives: Require admins to map every member by hand.
        """

        require_admin(self.store, team_id, self.user_id)
        cloud_id, token = self._jira_session(team_id)
        integration = self.store.get_integration(team_id, "jira")
        project_keys = list(integration.config.get("project_keys") or []) if integration else []
        jira_users = self.atlassian.assignable_users(cloud_id, token, project_keys)
        if not jira_users:
            return {
                "matches": [],
                "jiraUsers": [],
                "error": "No assignable Jira users found for configured projects",
            }

        members = self.store.list_members(team_id)
        by_email = {
            (user.get("emailAddress") or "").lower(): user for user in jira_users if user.get("emailAddress")
        }
        matches: dict[int, dict[str, Any]] = {}
        unmatched: list[StoredMember] = []
        for member in members:
            jira_user = by_email.get(member.email.lower())
            if jira_user:
                matches[member.user_id] = _match_entry(member, jira_user, "high", "Email match")
            else:
                unmatched.append(member)

        if unmatched:
            suggestions = self._ai_match(unmatched, jira_users)
            accounts = {user["accountId"]: user for user in jira_users}
            for member in unmatched:
                suggestion = suggestions.get(member.user_id, {})
                jira_user = accounts.get(suggestion.get("accountId"))
                confidence = suggestion.get("confidence")
                if jira_user and confidence in ("medium", "low"):
                    matches[member.user_id] = _match_entry(
                        member, jira_user, confidence, suggestion.get("reason") or "AI suggested match"
                    )
                else:
                    matches[member.user_id] = _match_entry(member, None, "none", "No match found")

        return {
            "matches": [matches[member.user_id] for member in members],
            "jiraUsers": jira_users,
        }

    def confirm_jira_members(self, team_id: int, mappings: list[dict[str, Any]]) -> dict[str, Any]:
        require_admin(self.store, team_id, self.user_id)
        if not isinstance(mappings, list):
            raise ValueError("mappings must be an array")
        updated = 0
        errors: list[str] = []
        for mapping in mappings:
            user_id = mapping.get("userId") if isinstance(mapping, dict) else None
            account_id = mapping.get("jiraAccountId") if isinstance(mapping, dict) else None
            if not user_id or not (account_id is None or isinstance(account_id, str)):
                raise ValueError("Each mapping needs a userId and a string or null jiraAccountId")
            if self.store.set_member_jira_account(team_id, int(user_id), account_id or None):
                updated += 1
            else:
                errors.append(f"User {user_id} is not a member of this team")
        result: dict[str, Any] = {"success": not errors, "updated": updated}
        if errors:
            result["errors"] = errors
        return result

    def _jira_session(self, team_id: int) -> tuple[str, str]:
        integration = self.store.get_integration(team_id, "jira")
        if integration is None:
            raise ValueError("Jira is not connected. Please connect Jira first.")
        token = self.jira_access_token(team_id)
        if not token:
            raise ReauthRequired("Jira authentication expired. Please reconnect Jira.")
        return integration.config["cloud_id"], token

    def _ai_match(
        self, members: list[StoredMember], jira_users: list[dict[str, Any]]
    ) -> dict[int, dict[str, Any]]:
        prompt = (
            "Match each team member to the Jira user most likely to be the same person. "
            "Use names, email local parts, and GitHub usernames. "
            'Respond with JSON: {"matches": [{"memberId": number, "accountId": string | null, '
            '"confidence": "medium" | "low" | "none", "reason": string}]}\n\n'
            "Team members:\n"
            + json.dumps(
                [
                    {
                        "memberId": member.user_id,
                        "email": member.email,
                        "displayName": member.display_name,
                        "githubUsername": member.github_username,
                    }
                    for member in members
                ]
            )
            + "\n\nJira users:\n"
            + json.dumps(jira_users)
        )
        try:
            text = self.ai.generate(prompt, "jira_match", user_id=self.user_id)
            payload = parse_model_json(extract_json(text))
        except (RuntimeError, ValueError) as exc:
            logger.error("AI member matching failed: %s", exc)
            return {}
        suggestions: dict[int, dict[str, Any]] = {}
        for item in payload.get("matches", []) if isinstance(payload, dict) else []:
            if isinstance(item, dict) and isinstance(item.get("memberId"), int):
                suggestions[item["memberId"]] = item
        return suggestions

    def _save_state(self, provider: str, team_id: int | None, redirect_to: str | None = None) -> str:
        token = create_state_token()
        self.store.save_oauth_state(
            StoredOAuthState(
                state_token=token,
                provider=provider,
                team_id=team_id,
                user_id=self.user_id,
                redirect_to=redirect_to,
                created_at=utc_now(),
                expires_at=state_expiry(),
            )
        )
        return token


def _match_entry(
    member: StoredMember, jira_user: dict[str, Any] | None, confidence: str, reason: str
) -> dict[str, Any]:
    return {
        "memberId": member.user_id,
        "memberEmail": member.email,
        "memberDisplayName": member.display_name,
        "githubUsername": member.github_username,
        "suggestedJiraUser": jira_user,
        "confidence": confidence,
        "matchReason": reason,
    }


@dataclass(frozen=True)
class DriveService:
    """Summary: Personal Google Drive connection and watched folders.

    Importance: Watched folders are the only Drive content read into briefs.
    Alternatives: Read the whole Drive on every brief.
    """

    store: SqliteStore
    codec: TokenCodec
    drive: GoogleDriveClient
    user_id: int

    def start_connect(self) -> str:
        token = create_state_token()
        self.store.save_oauth_state(
            StoredOAuthState(token, "google_drive", None, self.user_id, None, utc_now(), state_expiry())
        )
        return self.drive.build_auth_url(token)

    def complete_connect(self, code: str) -> StoredDriveGrant:
        tokens = self.drive.exchange_code(code)
        info = self.drive.userinfo(tokens.access_token)
        grant = StoredDriveGrant(
            user_id=self.user_id,
            access_token=self.codec.encode(tokens.access_token),
            refresh_token=self.codec.encode(tokens.refresh_token) if tokens.refresh_token else None,
            token_expiry=tokens.expires_at,
            email=info.get("email"),
            scopes=tokens.scope,
            updated_at=utc_now(),
        )
        self.store.upsert_drive_grant(grant)
        logger.info("Connected Google Drive for user %s.", self.user_id)
        return grant

    def valid_access_token(self) -> str | None:
        """Summary: Return a Drive access token, refreshing it when near expiry.

        Importance: Brief collection calls this once per run; failures disable Drive for that run.
        Alternatives: Refresh on every request.
        """

        grant = self.store.get_drive_grant(self.user_id)
        if grant is None:
            return None
        if not needs_refresh(grant.token_expiry):
            return self.codec.decode_if_encoded(grant.access_token)
        refresh_token = self.codec.decode_if_encoded(grant.refresh_token)
        if not refresh_token:
            return None
        try:
            tokens = self.drive.refresh(refresh_token)
        except (RuntimeError, ValueError) as exc:
            logger.error("Drive token refresh failed for user %s: %s", self.user_id, exc)
            return None
        self.store.upsert_drive_grant(
            StoredDriveGrant(
                user_id=self.user_id,
                access_token=self.codec.encode(tokens.access_token),
                refresh_token=(
                    self.codec.encode(tokens.refresh_token) if tokens.refresh_token else grant.refresh_token
                ),
                token_expiry=tokens.expires_at,
                email=grant.email,
                scopes=grant.scopes,
                updated_at=utc_now(),
            )
        )
        return tokens.access_token

    def disconnect(self) -> None:
        grant = self.store.get_drive_grant(self.user_id)
        if grant is None:
            return
        access_token = self.codec.decode_if_encoded(grant.access_token)
        if access_token:
            self.drive.revoke(access_token)
        self.store.delete_drive_grant(self.user_id)
        logger.info("Disconnected Google Drive for user %s.", self.user_id)

    def status(self) -> dict[str, Any]:
        grant = self.store.get_drive_grant(self.user_id)
        if grant is None:
            return {"connected": False, "email": None, "folders": []}
        return {
            "connected": True,
            "email": grant.email,
            "folders": [asdict(folder) for folder in self.store.list_drive_folders(self.user_id)],
        }

    def browse(self, parent_id: str | None = None) -> list[dict[str, Any]]:
        token = self.valid_access_token()
        if not token:
            raise ReauthRequired("Google Drive is not connected")
        return self.drive.list_folders(token, parent_id)

    def add_folder(self, folder_id: str, folder_name: str, purpose: str | None = None) -> dict[str, Any]:
        if not folder_id or not folder_name:
            raise ValueError("folderId and folderName are required")
        if self.store.get_drive_grant(self.user_id) is None:
            raise ValueError("Google Drive is not connected")
        folder = self.store.upsert_drive_folder(self.user_id, sanitize_drive_id(folder_id), folder_name, purpose)
        return asdict(folder)

    def remove_folder(self, folder_id: str) -> None:
        if not self.store.delete_drive_folder(self.user_id, folder_id):
            raise LookupError("Folder not found")


@dataclass(frozen=True)
class BriefService:
    """Summary: Generate, cache, and persist the daily brief.

    Importance: Briefs are served from memory, then the database, before any
    provider is called again.
    Alternatives: Regenerate on every page load.
    """

    store: SqliteStore
    cache: TtlCache
    collector: ToolDataCollector
    ai: AiRecorder
    user_id: int

    def generate(
        self, generated_by: str = "user", force: bool = False, now: datetime | None = None
    ) -> tuple[dict[str, Any], bool]:
        current = now or datetime.now(timezone.utc)
        today = current.date().isoformat()
        key = brief_key(self.user_id, today)
        if not force:
            cached = self.cache.get(key)
            if cached is not None:
                return cached, True
            stored = self.store.get_brief(self.user_id, today)
            if stored is not None:
                self.cache.set(key, stored.content, BRIEF_CACHE_SECONDS)
                return stored.content, True

        tool_data = self.collector.collect(current)
        brief = self.summarize(build_condensed_context(tool_data, current), current)
        self.cache.set(key, brief, BRIEF_CACHE_SECONDS)
        self.store.save_brief(self.user_id, today, brief, generated_by)
        logger.info("Generated %s brief for user %s.", generated_by, self.user_id)
        return brief, False

    def summarize(self, context: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
        prompt = build_brief_prompt(context)
        try:
            text = self.ai.generate(prompt, "daily_brief", user_id=self.user_id, system=BRIEF_SYSTEM_PROMPT)
            return parse_brief_response(text, now)
        except (RuntimeError, ValueError) as exc:
            logger.error("Brief generation failed for user %s: %s", self.user_id, exc)
            return fallback_brief(now)

    def suggest(self, brief: dict[str, Any] | None, limit: int = DEFAULT_SUGGESTIONS) -> list[dict[str, Any]]:
        if not brief:
            raise ValueError("Brief is required")
        context = build_suggestion_context(brief)
        if not context.strip():
            return []
        try:
            text = self.ai.generate(
                build_suggestions_prompt(context),
                "brief_suggestions",
                user_id=self.user_id,
                system=SUGGESTIONS_SYSTEM_PROMPT.format(limit=limit),
            )
        except RuntimeError as exc:
            logger.error("Suggestion generation failed for user %s: %s", self.user_id, exc)
            raise RuntimeError("Failed to generate suggestions") from exc
        return parse_suggestions(text, limit)

    def latest(self, now: datetime | None = None) -> dict[str, Any]:
        today = (now or datetime.now(timezone.utc)).date().isoformat()
        cached = self.cache.get(brief_key(self.user_id, today))
        if cached is not None:
            return {"brief": cached, "cached": True, "generatedAt": cached.get("generatedAt")}
        stored = self.store.get_brief(self.user_id, today)
        if stored is None:
            return {"brief": None, "message": "No brief available for today. Generate a new one."}
        self.cache.set(brief_key(self.user_id, today), stored.content, BRIEF_CACHE_SECONDS)
        return {"brief": stored.content, "cached": True, "generatedAt": stored.created_at}

    def history(self, limit: int = 30) -> list[dict[str, Any]]:
        return [
            {
                "date": brief.brief_date,
                "brief": brief.content,
                "generatedBy": brief.generated_by,
                "generatedAt": brief.created_at,
            }
            for brief in self.store.list_briefs(self.user_id, limit)
        ]


@dataclass(frozen=True)
class ActionService:
    """Summary: Draft follow-up content for a single brief item.

    Importance: Drafts are returned for the user to copy; nothing is sent.
    Alternatives: Send replies and nudges automatically.
    """

    store: SqliteStore
    nylas: NylasClient
    ai: AiRecorder
    user_id: int

    def prepare_action(
        self,
        action_type: str | None,
        source_id: str | None,
        brief_item_id: str | None = None,
        brief_context: dict[str, Any] | None = None,
        additional_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not action_type or not source_id:
            raise ValueError("Missing required fields: type, sourceId")
        if action_type not in ACTION_TYPES:
            raise ValueError("Invalid action type. Must be: email_reply, pr_nudge, or meeting_prep")
        context = brief_context or {}
        extra = additional_data or {}
        action: dict[str, Any] = {
            "id": f"{action_type}-{source_id}",
            "briefItemId": brief_item_id or source_id,
            "type": action_type,
            "actions": ACTION_BUTTONS,
        }
        try:
            if action_type == "email_reply":
                title, original, draft = self._email_reply(source_id)
            elif action_type == "pr_nudge":
                title, original, draft = self._pr_nudge(source_id, context, extra)
            else:
                title, original, draft = self._meeting_prep(source_id, context)
        except (RuntimeError, ValueError, KeyError) as exc:
            logger.error("Failed to prepare %s for %s: %s", action_type, source_id, exc)
            action.update(
                {
                    "title": "Unable to prepare draft",
                    "originalContent": "",
                    "draftContent": "",
                    "status": "error",
                    "error": str(exc),
                }
            )
            return action
        action.update({"title": title, "originalContent": original, "draftContent": draft, "status": "ready"})
        return action

    def _grant_id(self) -> str:
        grant = self.store.get_nylas_grant(self.user_id)
        if grant is None:
            raise ValueError("Email and calendar are not connected")
        return grant.grant_id

    def _email_reply(self, message_id: str) -> tuple[str, str, str]:
        message = self.nylas.get_message(self._grant_id(), message_id)
        original = f"From: {message['from']}\nSubject: {message['subject']}\n\n{message['body'] or message['snippet']}"
        prompt = (
            "Draft a concise, professional reply to this email. Do not send it. "
            "Return only the reply body.\n\n" + original
        )
        draft = self.ai.generate(prompt, "email_reply", user_id=self.user_id)
        return f"Reply to: {message['subject']}", original, draft

    def _pr_nudge(
        self, source_id: str, brief: dict[str, Any], extra: dict[str, Any]
    ) -> tuple[str, str, str]:
        pr_number = int(source_id)
        waiting = next(
            (
                item
                for item in brief.get("myPrsWaiting", [])
                if source_id in (str(item.get("sourceId")), str(item.get("id")))
            ),
            {},
        )
        repo = extra.get("repo") or waiting.get("repo") or "the repository"
        reviewers = extra.get("reviewers") or []
        title = waiting.get("title") or f"PR #{pr_number}"
        original = f"{repo}#{pr_number}: {title}"
        for detail in (waiting.get("summary"), waiting.get("context")):
            if detail:
                original += f"\n{detail}"
        prompt = (
            "Write a short, friendly Slack message nudging reviewers to look at a pull request. "
            "Return only the message.\n\n"
            f"Pull request: {original}\n"
            f"Reviewers: {', '.join(reviewers) if reviewers else 'the assigned reviewers'}"
        )
        draft = self.ai.generate(prompt, "pr_nudge", user_id=self.user_id)
        return f"Nudge reviewers on {repo}#{pr_number}", original, draft

    def _meeting_prep(self, event_id: str, brief: dict[str, Any]) -> tuple[str, str, str]:
        event = self.nylas.get_event(self._grant_id(), event_id)
        meeting = next((item for item in brief.get("meetings", []) if item.get("id") == event_id), {})
        attendees = ", ".join(
            attendee.get("name") or attendee.get("email") or "" for attendee in event.get("attendees", [])
        )
        original = (
            f"{event['title']}\nStarts: {event['startTime']}\nAttendees: {attendees}\n\n{event['description']}"
        )
        related = {
            "prepNeeded": meeting.get("prepNeeded"),
            "jiraTasks": brief.get("jiraTasks", []),
            "prsToReview": brief.get("prsToReview", []),
        }
        prompt = (
            "Prepare short meeting notes: goals, talking points, and open questions. "
            "Use the related work items where relevant.\n\n"
            f"Meeting:\n{original}\n\nRelated work:\n{json.dumps(related, default=str)}"
        )
        draft = self.ai.generate(prompt, "meeting_prep", user_id=self.user_id)
        return f"Prep for {event['title']}", original, draft


@dataclass(frozen=True)
class TaskService:
    """Summary: Personal task list management.

    Importance: Turns brief action items into work the user can track.
    Alternatives: Push tasks into Jira directly.
    """

    store: SqliteStore
    user_id: int

    def list_tasks(self, day: str | None = None) -> list[StoredTask]:
        return self.store.list_tasks(self.user_id, day)

    def create_task(self, task: Task) -> StoredTask:
        if not task.title.strip():
            raise ValueError("Title is required")
        stored = self.store.add_task(self.user_id, task)
        logger.info("Created task %s.", stored.id)
        return stored

    def update_task(self, task_id: int, updates: dict[str, Any]) -> StoredTask:
        if self.store.get_task(self.user_id, task_id) is None:
            raise LookupError("Task not found")
        updated = self.store.update_task(self.user_id, task_id, updates)
        if updated is None:
            raise LookupError("Task not found")
        return updated

    def delete_task(self, task_id: int) -> None:
        if not self.store.delete_task(self.user_id, task_id):
            raise LookupError("Task not found")

    def create_from_brief(self, brief: dict[str, Any]) -> list[StoredTask]:
        """Summary: Create tasks for urgent action items in a brief.

        Importance: Only critical and high priority items become tasks.
        Alternatives: Create a task for every brief item.
        """

        items = [
            item
            for section in ("prsToReview", "myPrsWaiting", "emailsToActOn", "jiraTasks")
            for item in brief.get(section, [])
            if isinstance(item, dict) and item.get("actionNeeded")
        ]
        created = []
        for item in items:
            priority = item.get("priority")
            if priority not in URGENT_PRIORITIES:
                continue
            description = " - ".join(part for part in (item.get("summary"), item.get("context")) if part)
            created.append(
                self.store.add_task(
                    self.user_id,
                    Task(
                        title=item.get("title") or "Brief action item",
                        description=description,
                        priority=priority,
                        source=item.get("source"),
                        source_id=item.get("sourceId"),
                        url=item.get("url"),
                    ),
                )
            )
        logger.info("Created %s tasks from brief for user %s.", len(created), self.user_id)
        return created


@dataclass(frozen=True)
class ToolService:
    """Summary: Personal tool connections and their live status.

    Importance: The dashboard shows which brief sources are usable.
    Alternatives: Report stored connection rows without testing them.
    """

    store: SqliteStore
    codec: TokenCodec
    cache: TtlCache
    jira: JiraClient
    github_factory: Callable[[str], GitHubClient]
    user_id: int

    def statuses(self) -> dict[str, dict[str, Any]]:
        key = tool_status_key(self.user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        now = utc_now()
        statuses = {tool: {"status": "disconnected"} for tool in PERSONAL_TOOLS}
        for connection in self.store.list_tool_connections(self.user_id):
            if connection.tool not in CONNECTABLE_TOOLS:
                continue
            try:
                self._test(connection.tool, connection.config)
            except (RuntimeError, ValueError, KeyError) as exc:
                statuses[connection.tool] = {"status": "error", "error": str(exc)}
            else:
                statuses[connection.tool] = {"status": "connected", "lastSync": now}
        if self.store.get_nylas_grant(self.user_id):
            statuses["gmail"] = {"status": "connected", "lastSync": now}
            statuses["calendar"] = {"status": "connected", "lastSync": now}
        if self.store.get_drive_grant(self.user_id):
            statuses["drive"] = {"status": "connected", "lastSync": now}
        self.cache.set(key, statuses, TOOL_STATUS_CACHE_SECONDS)
        return statuses

    def connect(self, tool: str, credentials: dict[str, Any]) -> dict[str, Any]:
        """Summary: Validate and store credentials for a personal tool.

        Importance: Credentials are tested before they are saved, and tokens are encrypted.
        Alternatives: Save first and surface failures on the next brief.
        """

        if tool not in CONNECTABLE_TOOLS:
            raise ValueError("Unsupported tool type")
        if tool == "github":
            if not credentials.get("token"):
                raise ValueError("GitHub token is required")
            config: dict[str, Any] = {"encrypted_token": self.codec.encode(credentials["token"])}
            if credentials.get("username"):
                config["username"] = credentials["username"]
        else:
            if not all(credentials.get(field) for field in ("url", "email", "token")):
                raise ValueError("Jira url, email, and token are required")
            config = {
                "url": credentials["url"].rstrip("/"),
                "email": credentials["email"],
                "encrypted_token": self.codec.encode(credentials["token"]),
            }
        try:
            self._test(tool, config)
        except (RuntimeError, ValueError, KeyError) as exc:
            logger.warning("Credential test failed for %s: %s", tool, exc)
            raise ValueError("Invalid credentials") from exc
        self.store.upsert_tool_connection(self.user_id, tool, config, "connected")
        self.cache.delete(tool_status_key(self.user_id))
        logger.info("Connected %s for user %s.", tool, self.user_id)
        return {"success": True, "message": "Tool connected successfully"}

    def _test(self, tool: str, config: dict[str, Any]) -> None:
        token = self.codec.decode_if_encoded(config.get("encrypted_token")) or ""
        if tool == "github":
            self.github_factory(token).get_viewer()
        else:
            self.jira.test_connection(config["url"], config["email"], token)


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Read access to the current user's AI request audit trail."""

    store: SqliteStore
    user_id: int

    def list_requests(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.store.list_ai_requests(self.user_id, limit)
