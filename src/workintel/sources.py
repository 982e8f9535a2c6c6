"""Summary: Collect per-user tool data for the daily brief.

Importance: Gathers GitHub, Jira, email, calendar, and Drive data in parallel.
Alternatives: Fetch sources sequentially inside the brief service.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable

from workintel.atlassian import JiraClient
from workintel.github import GitHubClient
from workintel.google_drive import GoogleDriveClient
from workintel.models import ToolData
from workintel.nylas import NylasClient
from workintel.storage.sqlite_store import SqliteStore
from workintel.token_codec import TokenCodec


logger = logging.getLogger(__name__)

DRIVE_LOOKBACK = timedelta(days=7)
DRIVE_FILES_PER_FOLDER = 5
EMAIL_LOOKBACK = timedelta(hours=24)


@dataclass(frozen=True)
class ToolDataCollector:
    """Summary: Runs every configured source fetch for one user.

    Importance: A failing source becomes None instead of failing the brief.
    Alternatives: Abort brief generation on the first source error.
    """

    store: SqliteStore
    codec: TokenCodec
    nylas: NylasClient
    jira: JiraClient
    drive: GoogleDriveClient
    github_factory: Callable[[str], GitHubClient]
    drive_token: Callable[[], str | None]
    user_id: int
    max_workers: int = 5

    def collect(self, now: datetime | None = None) -> ToolData:
        current = now or datetime.now(timezone.utc)
        grant = self.store.get_nylas_grant(self.user_id)
        drive_grant = self.store.get_drive_grant(self.user_id)

        fetchers: dict[str, Callable[[], dict[str, Any] | None]] = {
            "github": self.fetch_github,
            "jira": self.fetch_jira,
        }
        if grant:
            fetchers["gmail"] = lambda: self.fetch_gmail(grant.grant_id, current)
            fetchers["calendar"] = lambda: self.fetch_calendar(grant.grant_id, current)
        if drive_grant:
            fetchers["drive"] = lambda: self.fetch_drive(current)

        results: dict[str, dict[str, Any] | None] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {name: pool.submit(fetch) for name, fetch in fetchers.items()}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except (RuntimeError, ValueError, KeyError) as exc:
                    logger.error("%s fetch failed for user %s: %s", name, self.user_id, exc)
                    results[name] = None

        tool_data = ToolData(**results)
        logger.info(
            "Collected brief sources for user %s: %s.",
            self.user_id,
            ", ".join(tool_data.connected_sources()) or "none",
        )
        return tool_data

    def fetch_github(self) -> dict[str, Any] | None:
        connection = self.store.get_tool_connection(self.user_id, "github")
        if connection is None:
            return None
        token = self.codec.decode_if_encoded(connection.config["encrypted_token"])
        activity = self.github_factory(token).user_activity(connection.config.get("username"))
        return {"currentUser": {"login": activity["login"]}, **activity}

    def fetch_jira(self) -> dict[str, Any] | None:
        connection = self.store.get_tool_connection(self.user_id, "jira")
        if connection is None:
            return None
        config = connection.config
        issues = self.jira.assigned_issues(
            config["url"], config["email"], self.codec.decode_if_encoded(config["encrypted_token"])
        )
        return {"site": config["url"], "assignedIssues": issues}

    def fetch_gmail(self, grant_id: str, now: datetime) -> dict[str, Any]:
        unread = self.nylas.list_messages(grant_id, limit=20, unread=True)
        recent = self.nylas.list_messages(grant_id, limit=20, received_after=now - EMAIL_LOOKBACK)
        return {"unreadEmails": unread, "recentEmails": recent}

    def fetch_calendar(self, grant_id: str, now: datetime) -> dict[str, Any]:
        today = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo or timezone.utc)
        tomorrow = today + timedelta(days=1)
        return {
            "todayEvents": self.nylas.list_events(grant_id, today, tomorrow),
            "tomorrowEvents": self.nylas.list_events(grant_id, tomorrow, tomorrow + timedelta(days=1)),
        }

    def fetch_drive(self, now: datetime) -> dict[str, Any] | None:
        """Summary: Read recently modified files from the user's watched folders.

        Importance: Limits each folder to a handful of files edited in the last week.
        Alternatives: Index the whole Drive in the background.
        """

        grant = self.store.get_drive_grant(self.user_id)
        access_token = self.drive_token()
        if grant is None or not access_token:
            return None
        folders = self.store.list_drive_folders(self.user_id, enabled_only=True)
        if not folders:
            return {
                "connected": True,
                "email": grant.email,
                "folders": [],
                "totalFiles": 0,
                "summary": "Google Drive connected but no folders selected for monitoring.",
            }

        formatted = []
        for folder in folders:
            files = self.drive.list_recent_files(
                access_token,
                folder.folder_id,
                limit=DRIVE_FILES_PER_FOLDER,
                modified_after=now - DRIVE_LOOKBACK,
            )
            formatted.append(
                {
                    "name": folder.folder_name,
                    "purpose": folder.purpose,
                    "files": [
                        {
                            "name": file.get("name"),
                            "modifiedTime": file.get("modifiedTime"),
                            "content": self.drive.read_file(access_token, file),
                            "webViewLink": file.get("webViewLink"),
                        }
                        for file in files
                    ],
                }
            )
        total_files = sum(len(folder["files"]) for folder in formatted)
        return {
            "connected": True,
            "email": grant.email,
            "folders": formatted,
            "totalFiles": total_files,
            "summary": (
                f"Found {total_files} recently modified files across {len(folders)} watched folders."
            ),
        }
