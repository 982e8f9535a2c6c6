"""Summary: SQLite storage implementation for Work Intel.

Importance: Provides the relational persistence layer for users, teams, integrations, and briefs.
Alternatives: Use an ORM or a hosted Postgres database.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from workintel.models import AiRequest, AiResponse, Task


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class StoredUser:
    """Summary: User record with database identifier.

    Importance: Anchors sessions, memberships, and personal data.
    Alternatives: Use the email address as the only identifier.
    """

    id: int
    email: str
    display_name: str
    nylas_grant_id: str | None
    created_at: str
    last_login_at: str | None


@dataclass(frozen=True)
class StoredSession:
    """Summary: Session token record.

    Importance: Backs cookie-based authentication.
    Alternatives: Use signed stateless tokens.
    """

    token: str
    user_id: int
    created_at: str
    expires_at: str


@dataclass(frozen=True)
class StoredTeam:
    """Summary: Team record with database identifier.

    Importance: Groups members, invites, integrations, and weekly reports.
    Alternatives: Derive teams from GitHub organizations only.
    """

    id: int
    name: str
    slug: str
    created_by: int
    created_at: str


@dataclass(frozen=True)
class StoredMember:
    """Summary: Team membership joined with the member's user profile.

    Importance: Carries role and external usernames for reports and authorization.
    Alternatives: Store memberships as a JSON list on the team row.
    """

    id: int
    team_id: int
    user_id: int
    role: str
    github_username: str | None
    jira_account_id: str | None
    joined_at: str
    email: str
    display_name: str


@dataclass(frozen=True)
class StoredInvite:
    """Summary: Pending team invitation.

    Importance: Allows onboarding people before they have an account.
    Alternatives: Require members to sign up before being added.
    """

    id: int
    team_id: int
    email: str
    role: str
    github_username: str | None
    token: str
    invited_by: int
    created_at: str
    last_sent_at: str
    expires_at: str


@dataclass(frozen=True)
class StoredIntegration:
    """Summary: Team integration credentials and settings.

    Importance: Connects a team to GitHub or Jira.
    Alternatives: Store credentials per user instead of per team.
    """

    id: int
    team_id: int
    provider: str
    config: dict[str, Any]
    connected_by: int | None
    connected_at: str


@dataclass(frozen=True)
class StoredOAuthState:
    """Summary: One-time OAuth state row.

    Importance: Binds a provider callback to the team and user that started it.
    Alternatives: Keep state in signed cookies.
    """

    state_token: str
    provider: str
    team_id: int | None
    user_id: int | None
    redirect_to: str | None
    created_at: str
    expires_at: str


@dataclass(frozen=True)
class StoredNylasGrant:
    """Summary: Link between a user and a Nylas grant.

    Importance: Enables email and calendar reads for briefs.
    Alternatives: Store the grant id on the user row only.
    """

    user_id: int
    grant_id: str
    email: str
    provider: str
    created_at: str


@dataclass(frozen=True)
class StoredDriveGrant:
    """Summary: Google Drive OAuth grant for a user.

    Importance: Holds encrypted tokens for Drive reads.
    Alternatives: Reuse the login grant with broader scopes.
    """

    user_id: int
    access_token: str
    refresh_token: str | None
    token_expiry: str | None
    email: str | None
    scopes: str | None
    updated_at: str


@dataclass(frozen=True)
class StoredDriveFolder:
    """Summary: Drive folder a user asked Work Intel to watch.

    Importance: Limits Drive reads to folders the user picked.
    Alternatives: Scan the whole Drive on every brief.
    """

    id: int
    user_id: int
    folder_id: str
    folder_name: str
    purpose: str | None
    enabled: bool


@dataclass(frozen=True)
class StoredToolConnection:
    """Summary: Personal GitHub or Jira credentials.

    Importance: Feeds personal brief sources.
    Alternatives: Only use team-level integrations.
    """

    user_id: int
    tool: str
    config: dict[str, Any]
    status: str
    connected_at: str


@dataclass(frozen=True)
class StoredBrief:
    """Summary: Persisted daily brief.

    Importance: Second-level cache and history for briefs.
    Alternatives: Regenerate briefs on every request.
    """

    user_id: int
    brief_date: str
    content: dict[str, Any]
    generated_by: str
    created_at: str


@dataclass(frozen=True)
class StoredReport:
    """Summary: Persisted weekly team report.

    Importance: Powers latest-report and trend views.
    Alternatives: Recompute reports from GitHub on demand.
    """

    team_id: int
    week_start: str
    report_data: dict[str, Any]
    generated_at: str


@dataclass(frozen=True)
class StoredTask:
    """Summary: Task record with database identifier.

    Importance: Tracks personal action items.
    Alternatives: Keep action items inside briefs only.
    """

    id: int
    user_id: int
    title: str
    description: str
    priority: str
    status: str
    source: str | None
    source_id: str | None
    url: str | None
    due_date: str | None
    created_at: str
    updated_at: str


_MEMBER_COLUMNS = """
    team_members.id, team_members.team_id, team_members.user_id, team_members.role,
    team_members.github_username, team_members.jira_account_id, team_members.joined_at,
    users.email, users.display_name
"""
_INVITE_COLUMNS = (
    "id, team_id, email, role, github_username, token, invited_by, created_at, last_sent_at, expires_at"
)
_TASK_COLUMNS = (
    "id, user_id, title, description, priority, status, source, source_id, url, due_date, "
    "created_at, updated_at"
)


class SqliteStore:
    """Summary: SQLite-backed storage for Work Intel.

    Importance: Keeps persistence self-contained with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before the first request.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    display_name TEXT NOT NULL,
                    nylas_grant_id TEXT,
                    created_at TEXT NOT NULL,
                    last_login_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    token TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS teams (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    created_by INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS team_members (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    github_username TEXT,
                    jira_account_id TEXT,
                    joined_at TEXT NOT NULL,
                    UNIQUE(team_id, user_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS team_invites (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL,
                    email TEXT NOT NULL,
                    role TEXT NOT NULL,
                    github_username TEXT,
                    token TEXT NOT NULL UNIQUE,
                    invited_by INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    last_sent_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    UNIQUE(team_id, email)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS team_integrations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL,
                    provider TEXT NOT NULL,
                    config TEXT NOT NULL,
                    connected_by INTEGER,
                    connected_at TEXT NOT NULL,
                    UNIQUE(team_id, provider)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS oauth_states (
                    state_token TEXT PRIMARY KEY,
                    provider TEXT NOT NULL,
                    team_id INTEGER,
                    user_id INTEGER,
                    redirect_to TEXT,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS nylas_grants (
                    user_id INTEGER PRIMARY KEY,
                    grant_id TEXT NOT NULL,
                    email TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS drive_grants (
                    user_id INTEGER PRIMARY KEY,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    token_expiry TEXT,
                    email TEXT,
                    scopes TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS drive_folders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    folder_id TEXT NOT NULL,
                    folder_name TEXT NOT NULL,
                    purpose TEXT,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    UNIQUE(user_id, folder_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS tool_connections (
                    user_id INTEGER NOT NULL,
                    tool TEXT NOT NULL,
                    config TEXT NOT NULL,
                    status TEXT NOT NULL,
                    connected_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, tool)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS briefs (
                    user_id INTEGER NOT NULL,
                    brief_date TEXT NOT NULL,
                    content TEXT NOT NULL,
                    generated_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, brief_date)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS weekly_reports (
                    team_id INTEGER NOT NULL,
                    week_start TEXT NOT NULL,
                    report_data TEXT NOT NULL,
                    generated_at TEXT NOT NULL,
                    PRIMARY KEY (team_id, week_start)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    status TEXT NOT NULL,
                    source TEXT,
                    source_id TEXT,
                    url TEXT,
                    due_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_responses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL,
                    response_text TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    token_estimate INTEGER NOT NULL
                )
                """
            )
            connection.commit()

    # Users and sessions

    def ensure_user(self, email: str, display_name: str) -> StoredUser:
        """Summary: Insert a user or refresh their last login time.

        Importance: Lets OAuth logins create accounts on first sign-in.
        Alternatives: Require a separate sign-up step.
        """

        now = utc_now()
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO users (email, display_name, created_at, last_login_at) "
                "VALUES (?, ?, ?, ?)",
                (email, display_name, now, now),
            )
            if not cursor.rowcount:
                cursor.execute("UPDATE users SET last_login_at = ? WHERE email = ?", (now, email))
            connection.commit()
        user = self.get_user_by_email(email)
        if user is None:
            raise RuntimeError(f"Failed to persist user {email}")
        return user

    def get_user(self, user_id: int) -> StoredUser | None:
        return self._fetch_user("WHERE id = ?", (user_id,))

    def get_user_by_email(self, email: str) -> StoredUser | None:
        return self._fetch_user("WHERE email = ?", (email,))

    def set_user_grant(self, user_id: int, grant_id: str | None) -> None:
        self._execute("UPDATE users SET nylas_grant_id = ? WHERE id = ?", (grant_id, user_id))

    def create_session(self, token: str, user_id: int, created_at: str, expires_at: str) -> None:
        self._execute(
            "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (token, user_id, created_at, expires_at),
        )

    def get_session(self, token: str) -> StoredSession | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT token, user_id, created_at, expires_at FROM sessions WHERE token = ?",
                (token,),
            )
            row = cursor.fetchone()
        return StoredSession(*row) if row else None

    def delete_session(self, token: str) -> None:
        self._execute("DELETE FROM sessions WHERE token = ?", (token,))

    def delete_expired_sessions(self, now: str) -> int:
        return self._execute("DELETE FROM sessions WHERE expires_at <= ?", (now,))

    # Teams and members

    def create_team(self, name: str, slug: str, created_by: int) -> StoredTeam:
        """Summary: Insert a team row.

        Importance: Raises sqlite3.IntegrityError on duplicate slugs so callers can map to 409.
        Alternatives: Check for duplicates before inserting.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT INTO teams (name, slug, created_by, created_at) VALUES (?, ?, ?, ?)",
                (name, slug, created_by, utc_now()),
            )
            team_id = cursor.lastrowid
            connection.commit()
        team = self.get_team(int(team_id))
        if team is None:
            raise RuntimeError(f"Failed to persist team {slug}")
        return team

    def get_team(self, team_id: int) -> StoredTeam | None:
        return self._fetch_team("WHERE id = ?", (team_id,))

    def get_team_by_slug(self, slug: str) -> StoredTeam | None:
        return self._fetch_team("WHERE slug = ?", (slug,))

    def delete_team(self, team_id: int) -> None:
        with self._connection() as connection:
            cursor = connection.cursor()
            for table in ("team_members", "team_invites", "team_integrations", "weekly_reports"):
                cursor.execute(f"DELETE FROM {table} WHERE team_id = ?", (team_id,))
            cursor.execute("DELETE FROM teams WHERE id = ?", (team_id,))
            connection.commit()

    def list_teams_for_user(self, user_id: int) -> list[tuple[StoredTeam, str]]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT teams.id, teams.name, teams.slug, teams.created_by, teams.created_at,
                       team_members.role
                FROM teams
                JOIN team_members ON team_members.team_id = teams.id
                WHERE team_members.user_id = ?
                ORDER BY teams.created_at DESC, teams.id DESC
                """,
                (user_id,),
            )
            rows = cursor.fetchall()
        return [(StoredTeam(*row[:5]), row[5]) for row in rows]

    def list_teams_with_integration(self, provider: str) -> list[StoredTeam]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT teams.id, teams.name, teams.slug, teams.created_by, teams.created_at
                FROM teams
                JOIN team_integrations ON team_integrations.team_id = teams.id
                WHERE team_integrations.provider = ?
                ORDER BY teams.id
                """,
                (provider,),
            )
            rows = cursor.fetchall()
        return [StoredTeam(*row) for row in rows]

    def add_member(
        self,
        team_id: int,
        user_id: int,
        role: str,
        github_username: str | None = None,
    ) -> StoredMember:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO team_members (team_id, user_id, role, github_username, joined_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (team_id, user_id, role, github_username, utc_now()),
            )
            member_id = cursor.lastrowid
            connection.commit()
        member = self.get_member(team_id, int(member_id))
        if member is None:
            raise RuntimeError(f"Failed to persist member for team {team_id}")
        return member

    def get_member(self, team_id: int, member_id: int) -> StoredMember | None:
        members = self._fetch_members(
            "WHERE team_members.team_id = ? AND team_members.id = ?", (team_id, member_id)
        )
        return members[0] if members else None

    def get_membership(self, team_id: int, user_id: int) -> StoredMember | None:
        members = self._fetch_members(
            "WHERE team_members.team_id = ? AND team_members.user_id = ?", (team_id, user_id)
        )
        return members[0] if members else None

    def list_members(self, team_id: int) -> list[StoredMember]:
        return self._fetch_members("WHERE team_members.team_id = ?", (team_id,))

    def update_member(self, member_id: int, updates: dict[str, Any]) -> None:
        """Summary: Apply column updates to a membership row.

        Importance: Supports partial PATCH semantics for role and usernames.
        Alternatives: Expose one method per editable column.
        """

        allowed = {"role", "github_username", "jira_account_id"}
        columns = [column for column in updates if column in allowed]
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        values = [updates[column] for column in columns]
        self._execute(f"UPDATE team_members SET {assignments} WHERE id = ?", (*values, member_id))

    def set_member_jira_account(self, team_id: int, user_id: int, account_id: str | None) -> bool:
        updated = self._execute(
            "UPDATE team_members SET jira_account_id = ? WHERE team_id = ? AND user_id = ?",
            (account_id, team_id, user_id),
        )
        return updated > 0

    def delete_member(self, member_id: int) -> None:
        self._execute("DELETE FROM team_members WHERE id = ?", (member_id,))

    def count_admins(self, team_id: int) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT COUNT(*) FROM team_members WHERE team_id = ? AND role = 'admin'",
                (team_id,),
            )
            row = cursor.fetchone()
        return int(row[0]) if row else 0

    # Invites

    def create_invite(
        self,
        team_id: int,
        email: str,
        role: str,
        github_username: str | None,
        token: str,
        invited_by: int,
        expires_at: str,
    ) -> StoredInvite:
        now = utc_now()
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO team_invites (
                    team_id, email, role, github_username, token, invited_by,
                    created_at, last_sent_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (team_id, email, role, github_username, token, invited_by, now, now, expires_at),
            )
            invite_id = cursor.lastrowid
            connection.commit()
        invite = self.get_invite(team_id, int(invite_id))
        if invite is None:
            raise RuntimeError(f"Failed to persist invite for {email}")
        return invite

    def get_invite(self, team_id: int, invite_id: int) -> StoredInvite | None:
        invites = self._fetch_invites("WHERE team_id = ? AND id = ?", (team_id, invite_id))
        return invites[0] if invites else None

    def get_invite_by_token(self, token: str) -> StoredInvite | None:
        invites = self._fetch_invites("WHERE token = ?", (token,))
        return invites[0] if invites else None

    def get_invite_by_email(self, team_id: int, email: str) -> StoredInvite | None:
        invites = self._fetch_invites("WHERE team_id = ? AND email = ?", (team_id, email))
        return invites[0] if invites else None

    def list_invites(self, team_id: int) -> list[StoredInvite]:
        return self._fetch_invites("WHERE team_id = ? ORDER BY created_at DESC, id DESC", (team_id,))

    def refresh_invite(
        self,
        invite_id: int,
        role: str,
        github_username: str | None,
        expires_at: str,
    ) -> None:
        self._execute(
            """
            UPDATE team_invites
            SET role = ?, github_username = ?, last_sent_at = ?, expires_at = ?
            WHERE id = ?
            """,
            (role, github_username, utc_now(), expires_at, invite_id),
        )

    def touch_invite(self, invite_id: int) -> None:
        self._execute("UPDATE team_invites SET last_sent_at = ? WHERE id = ?", (utc_now(), invite_id))

    def delete_invite(self, invite_id: int) -> None:
        self._execute("DELETE FROM team_invites WHERE id = ?", (invite_id,))

    # Integrations and OAuth state

    def upsert_integration(
        self, team_id: int, provider: str, config: dict[str, Any], connected_by: int | None
    ) -> StoredIntegration:
        self._execute(
            """
            INSERT INTO team_integrations (team_id, provider, config, connected_by, connected_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(team_id, provider) DO UPDATE SET
                config = excluded.config,
                connected_by = excluded.connected_by,
                connected_at = excluded.connected_at
            """,
            (team_id, provider, json.dumps(config), connected_by, utc_now()),
        )
        integration = self.get_integration(team_id, provider)
        if integration is None:
            raise RuntimeError(f"Failed to persist {provider} integration")
        return integration

    def update_integration_config(self, team_id: int, provider: str, config: dict[str, Any]) -> None:
        self._execute(
            "UPDATE team_integrations SET config = ? WHERE team_id = ? AND provider = ?",
            (json.dumps(config), team_id, provider),
        )

    def get_integration(self, team_id: int, provider: str) -> StoredIntegration | None:
        integrations = self._fetch_integrations(
            "WHERE team_id = ? AND provider = ?", (team_id, provider)
        )
        return integrations[0] if integrations else None

    def list_integrations(self, team_id: int) -> list[StoredIntegration]:
        return self._fetch_integrations("WHERE team_id = ? ORDER BY provider", (team_id,))

    def delete_integration(self, team_id: int, provider: str) -> bool:
        deleted = self._execute(
            "DELETE FROM team_integrations WHERE team_id = ? AND provider = ?", (team_id, provider)
        )
        return deleted > 0

    def save_oauth_state(self, state: StoredOAuthState) -> None:
        self._execute(
            """
            INSERT INTO oauth_states (
                state_token, provider, team_id, user_id, redirect_to, created_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                state.state_token,
                state.provider,
                state.team_id,
                state.user_id,
                state.redirect_to,
                state.created_at,
                state.expires_at,
            ),
        )

    def pop_oauth_state(self, state_token: str, provider: str) -> StoredOAuthState | None:
        """Summary: Read and delete an OAuth state row in one step.

        Importance: Makes every state token single-use.
        Alternatives: Mark states as consumed instead of deleting them.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT state_token, provider, team_id, user_id, redirect_to, created_at, expires_at
                FROM oauth_states WHERE state_token = ? AND provider = ?
                """,
                (state_token, provider),
            )
            row = cursor.fetchone()
            if row:
                cursor.execute("DELETE FROM oauth_states WHERE state_token = ?", (state_token,))
                connection.commit()
        return StoredOAuthState(*row) if row else None

    def delete_expired_oauth_states(self, now: str) -> int:
        return self._execute("DELETE FROM oauth_states WHERE expires_at <= ?", (now,))

    # Personal grants and connections

    def save_nylas_grant(self, user_id: int, grant_id: str, email: str, provider: str) -> None:
        self._execute(
            """
            INSERT INTO nylas_grants (user_id, grant_id, email, provider, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                grant_id = excluded.grant_id, email = excluded.email, provider = excluded.provider
            """,
            (user_id, grant_id, email, provider, utc_now()),
        )
        self.set_user_grant(user_id, grant_id)

    def get_nylas_grant(self, user_id: int) -> StoredNylasGrant | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT user_id, grant_id, email, provider, created_at FROM nylas_grants WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        return StoredNylasGrant(*row) if row else None

    def delete_nylas_grant(self, user_id: int) -> None:
        self._execute("DELETE FROM nylas_grants WHERE user_id = ?", (user_id,))
        self.set_user_grant(user_id, None)

    def upsert_drive_grant(self, grant: StoredDriveGrant) -> None:
        self._execute(
            """
            INSERT INTO drive_grants (
                user_id, access_token, refresh_token, token_expiry, email, scopes, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                token_expiry = excluded.token_expiry,
                email = excluded.email,
                scopes = excluded.scopes,
                updated_at = excluded.updated_at
            """,
            (
                grant.user_id,
                grant.access_token,
                grant.refresh_token,
                grant.token_expiry,
                grant.email,
                grant.scopes,
                grant.updated_at,
            ),
        )

    def get_drive_grant(self, user_id: int) -> StoredDriveGrant | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT user_id, access_token, refresh_token, token_expiry, email, scopes, updated_at
                FROM drive_grants WHERE user_id = ?
                """,
                (user_id,),
            )
            row = cursor.fetchone()
        return StoredDriveGrant(*row) if row else None

    def delete_drive_grant(self, user_id: int) -> None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("DELETE FROM drive_grants WHERE user_id = ?", (user_id,))
            cursor.execute("DELETE FROM drive_folders WHERE user_id = ?", (user_id,))
            connection.commit()

    def upsert_drive_folder(
        self, user_id: int, folder_id: str, folder_name: str, purpose: str | None
    ) -> StoredDriveFolder:
        self._execute(
            """
            INSERT INTO drive_folders (user_id, folder_id, folder_name, purpose, enabled)
            VALUES (?, ?, ?, ?, 1)
            ON CONFLICT(user_id, folder_id) DO UPDATE SET
                folder_name = excluded.folder_name, purpose = excluded.purpose, enabled = 1
            """,
            (user_id, folder_id, folder_name, purpose),
        )
        folders = [folder for folder in self.list_drive_folders(user_id) if folder.folder_id == folder_id]
        return folders[0]

    def list_drive_folders(self, user_id: int, enabled_only: bool = False) -> list[StoredDriveFolder]:
        query = (
            "SELECT id, user_id, folder_id, folder_name, purpose, enabled FROM drive_folders "
            "WHERE user_id = ?"
        )
        if enabled_only:
            query += " AND enabled = 1"
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(query + " ORDER BY folder_name", (user_id,))
            rows = cursor.fetchall()
        return [StoredDriveFolder(*row[:5], enabled=bool(row[5])) for row in rows]

    def delete_drive_folder(self, user_id: int, folder_id: str) -> bool:
        deleted = self._execute(
            "DELETE FROM drive_folders WHERE user_id = ? AND folder_id = ?", (user_id, folder_id)
        )
        return deleted > 0

    def upsert_tool_connection(
        self, user_id: int, tool: str, config: dict[str, Any], status: str
    ) -> None:
        self._execute(
            """
            INSERT INTO tool_connections (user_id, tool, config, status, connected_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, tool) DO UPDATE SET
                config = excluded.config, status = excluded.status, connected_at = excluded.connected_at
            """,
            (user_id, tool, json.dumps(config), status, utc_now()),
        )

    def get_tool_connection(self, user_id: int, tool: str) -> StoredToolConnection | None:
        connections = [item for item in self.list_tool_connections(user_id) if item.tool == tool]
        return connections[0] if connections else None

    def list_tool_connections(self, user_id: int) -> list[StoredToolConnection]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT user_id, tool, config, status, connected_at FROM tool_connections "
                "WHERE user_id = ? ORDER BY tool",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [
            StoredToolConnection(row[0], row[1], json.loads(row[2]), row[3], row[4]) for row in rows
        ]

    # Briefs and reports

    def save_brief(
        self, user_id: int, brief_date: str, content: dict[str, Any], generated_by: str
    ) -> None:
        self._execute(
            """
            INSERT INTO briefs (user_id, brief_date, content, generated_by, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, brief_date) DO UPDATE SET
                content = excluded.content,
                generated_by = excluded.generated_by,
                created_at = excluded.created_at
            """,
            (user_id, brief_date, json.dumps(content), generated_by, utc_now()),
        )

    def get_brief(self, user_id: int, brief_date: str) -> StoredBrief | None:
        briefs = self._fetch_briefs("WHERE user_id = ? AND brief_date = ?", (user_id, brief_date))
        return briefs[0] if briefs else None

    def list_briefs(self, user_id: int, limit: int) -> list[StoredBrief]:
        return self._fetch_briefs(
            "WHERE user_id = ? ORDER BY brief_date DESC LIMIT ?", (user_id, limit)
        )

    def save_weekly_report(
        self, team_id: int, week_start: str, report_data: dict[str, Any], generated_at: str
    ) -> None:
        self._execute(
            """
            INSERT INTO weekly_reports (team_id, week_start, report_data, generated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(team_id, week_start) DO UPDATE SET
                report_data = excluded.report_data, generated_at = excluded.generated_at
            """,
            (team_id, week_start, json.dumps(report_data), generated_at),
        )

    def list_weekly_reports(self, team_id: int, limit: int) -> list[StoredReport]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT team_id, week_start, report_data, generated_at
                FROM weekly_reports WHERE team_id = ?
                ORDER BY week_start DESC LIMIT ?
                """,
                (team_id, limit),
            )
            rows = cursor.fetchall()
        return [StoredReport(row[0], row[1], json.loads(row[2]), row[3]) for row in rows]

    def get_latest_weekly_report(self, team_id: int) -> StoredReport | None:
        reports = self.list_weekly_reports(team_id, 1)
        return reports[0] if reports else None

    # Tasks

    def add_task(self, user_id: int, task: Task) -> StoredTask:
        now = utc_now()
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO tasks (
                    user_id, title, description, priority, status, source, source_id, url,
                    due_date, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    task.title,
                    task.description,
                    task.priority,
                    task.status,
                    task.source,
                    task.source_id,
                    task.url,
                    task.due_date,
                    now,
                    now,
                ),
            )
            task_id = cursor.lastrowid
            connection.commit()
        stored = self.get_task(user_id, int(task_id))
        if stored is None:
            raise RuntimeError("Failed to persist task")
        return stored

    def get_task(self, user_id: int, task_id: int) -> StoredTask | None:
        tasks = self._fetch_tasks("WHERE user_id = ? AND id = ?", (user_id, task_id))
        return tasks[0] if tasks else None

    def list_tasks(self, user_id: int, day: str | None = None) -> list[StoredTask]:
        if day:
            return self._fetch_tasks(
                "WHERE user_id = ? AND substr(created_at, 1, 10) = ? ORDER BY created_at DESC, id DESC",
                (user_id, day),
            )
        return self._fetch_tasks("WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,))

    def update_task(self, user_id: int, task_id: int, updates: dict[str, Any]) -> StoredTask | None:
        allowed = {"title", "description", "priority", "status", "due_date", "url"}
        columns = [column for column in updates if column in allowed]
        if columns:
            assignments = ", ".join(f"{column} = ?" for column in columns)
            values = [updates[column] for column in columns]
            self._execute(
                f"UPDATE tasks SET {assignments}, updated_at = ? WHERE user_id = ? AND id = ?",
                (*values, utc_now(), user_id, task_id),
            )
        return self.get_task(user_id, task_id)

    def delete_task(self, user_id: int, task_id: int) -> bool:
        deleted = self._execute("DELETE FROM tasks WHERE user_id = ? AND id = ?", (user_id, task_id))
        return deleted > 0

    # AI audit

    def log_ai_request(self, request: AiRequest, user_id: int | None = None) -> int:
        """Summary: Persist an AI request for auditing.

        Importance: Tracks prompts and providers used by the system.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_requests (user_id, provider, model, prompt, purpose, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    request.provider,
                    request.model,
                    request.prompt,
                    request.purpose,
                    request.timestamp.isoformat(),
                ),
            )
            request_id = cursor.lastrowid
            connection.commit()
        return int(request_id)

    def log_ai_response(self, response: AiResponse) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_responses (request_id, response_text, latency_ms, token_estimate)
                VALUES (?, ?, ?, ?)
                """,
                (
                    response.request_id,
                    response.response_text,
                    response.latency_ms,
                    response.token_estimate,
                ),
            )
            response_id = cursor.lastrowid
            connection.commit()
        return int(response_id)

    def list_ai_requests(self, user_id: int, limit: int) -> list[dict[str, Any]]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT ai_requests.id, ai_requests.user_id, ai_requests.provider, ai_requests.model,
                       ai_requests.purpose, ai_requests.timestamp, ai_responses.latency_ms,
                       ai_responses.token_estimate
                FROM ai_requests
                LEFT JOIN ai_responses ON ai_responses.request_id = ai_requests.id
                WHERE ai_requests.user_id = ?
                ORDER BY ai_requests.id DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            rows = cursor.fetchall()
        keys = ("id", "user_id", "provider", "model", "purpose", "timestamp", "latency_ms", "token_estimate")
        return [dict(zip(keys, row)) for row in rows]

    # Internals

    def _fetch_user(self, where: str, params: tuple[Any, ...]) -> StoredUser | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, email, display_name, nylas_grant_id, created_at, last_login_at "
                f"FROM users {where}",
                params,
            )
            row = cursor.fetchone()
        return StoredUser(*row) if row else None

    def _fetch_team(self, where: str, params: tuple[Any, ...]) -> StoredTeam | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT id, name, slug, created_by, created_at FROM teams {where}", params)
            row = cursor.fetchone()
        return StoredTeam(*row) if row else None

    def _fetch_members(self, where: str, params: tuple[Any, ...]) -> list[StoredMember]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_MEMBER_COLUMNS}
                FROM team_members
                JOIN users ON users.id = team_members.user_id
                {where}
                ORDER BY team_members.joined_at, team_members.id
                """,
                params,
            )
            rows = cursor.fetchall()
        return [StoredMember(*row) for row in rows]

    def _fetch_invites(self, where: str, params: tuple[Any, ...]) -> list[StoredInvite]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT {_INVITE_COLUMNS} FROM team_invites {where}", params)
            rows = cursor.fetchall()
        return [StoredInvite(*row) for row in rows]

    def _fetch_integrations(self, where: str, params: tuple[Any, ...]) -> list[StoredIntegration]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, team_id, provider, config, connected_by, connected_at "
                f"FROM team_integrations {where}",
                params,
            )
            rows = cursor.fetchall()
        return [
            StoredIntegration(row[0], row[1], row[2], json.loads(row[3]), row[4], row[5])
            for row in rows
        ]

    def _fetch_briefs(self, where: str, params: tuple[Any, ...]) -> list[StoredBrief]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT user_id, brief_date, content, generated_by, created_at FROM briefs {where}",
                params,
            )
            rows = cursor.fetchall()
        return [StoredBrief(row[0], row[1], json.loads(row[2]), row[3], row[4]) for row in rows]

    def _fetch_tasks(self, where: str, params: tuple[Any, ...]) -> list[StoredTask]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT {_TASK_COLUMNS} FROM tasks {where}", params)
            rows = cursor.fetchall()
        return [StoredTask(*row) for row in rows]

    def _execute(self, sql: str, params: tuple[Any, ...]) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(sql, params)
            affected = cursor.rowcount
            connection.commit()
        return affected

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
        finally:
            connection.close()
