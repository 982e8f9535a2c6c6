"""Summary: Tests for SQLite storage.

Importance: Validates persistence behavior the services build on.
Alternatives: Rely on service tests to catch storage regressions.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from workintel.models import Task
from workintel.storage.sqlite_store import SqliteStore, StoredOAuthState


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


def test_ensure_user_is_idempotent(tmp_path: Path) -> None:
    """Summary: Verify repeated sign-ins reuse the same user row.

    Importance: Every login goes through ensure_user.
    Alternatives: Look up users before inserting.
    """

    store = _store(tmp_path)
    first = store.ensure_user("dev@example.com", "dev")
    second = store.ensure_user("dev@example.com", "someone else")
    assert first.id == second.id
    assert second.display_name == "dev"
    assert store.get_user_by_email("dev@example.com") == second


def test_duplicate_team_slug_raises(tmp_path: Path) -> None:
    store = _store(tmp_path)
    user = store.ensure_user("admin@example.com", "admin")
    store.create_team("Platform", "platform", user.id)
    with pytest.raises(sqlite3.IntegrityError):
        store.create_team("Platform!", "platform", user.id)


def test_members_join_user_profile(tmp_path: Path) -> None:
    store = _store(tmp_path)
    admin = store.ensure_user("admin@example.com", "admin")
    team = store.create_team("Platform", "platform", admin.id)
    member = store.add_member(team.id, admin.id, "admin", "octo")
    assert member.email == "admin@example.com"
    assert member.github_username == "octo"
    assert store.count_admins(team.id) == 1
    assert store.set_member_jira_account(team.id, admin.id, "acc-1")
    assert store.get_membership(team.id, admin.id).jira_account_id == "acc-1"
    assert not store.set_member_jira_account(team.id, 999, "acc-2")
    assert store.list_teams_for_user(admin.id) == [(team, "admin")]


def test_oauth_state_is_single_use(tmp_path: Path) -> None:
    """Summary: Verify OAuth states are deleted when read.

    Importance: A replayed callback must not reconnect an integration.
    Alternatives: Mark states as consumed.
    """

    store = _store(tmp_path)
    state = StoredOAuthState("state-1", "atlassian", 1, 2, None, "2026-01-15T00:00:00+00:00", "2099-01-01T00:00:00+00:00")
    store.save_oauth_state(state)
    assert store.pop_oauth_state("state-1", "github") is None
    assert store.pop_oauth_state("state-1", "atlassian") == state
    assert store.pop_oauth_state("state-1", "atlassian") is None


def test_integration_upsert_replaces_config(tmp_path: Path) -> None:
    store = _store(tmp_path)
    admin = store.ensure_user("admin@example.com", "admin")
    team = store.create_team("Platform", "platform", admin.id)
    store.upsert_integration(team.id, "github", {"org": "old"}, admin.id)
    store.upsert_integration(team.id, "github", {"org": "new"}, admin.id)
    assert [item.config for item in store.list_integrations(team.id)] == [{"org": "new"}]
    assert [item.id for item in store.list_teams_with_integration("github")] == [team.id]
    assert store.delete_integration(team.id, "github")
    assert not store.delete_integration(team.id, "github")


def test_brief_upsert_keeps_one_row_per_day(tmp_path: Path) -> None:
    store = _store(tmp_path)
    user = store.ensure_user("dev@example.com", "dev")
    store.save_brief(user.id, "2026-01-15", {"summary": "first"}, "cron")
    store.save_brief(user.id, "2026-01-15", {"summary": "second"}, "user")
    store.save_brief(user.id, "2026-01-14", {"summary": "older"}, "user")
    briefs = store.list_briefs(user.id, 30)
    assert [brief.brief_date for brief in briefs] == ["2026-01-15", "2026-01-14"]
    assert briefs[0].content == {"summary": "second"}
    assert briefs[0].generated_by == "user"


def test_weekly_reports_ordered_newest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    admin = store.ensure_user("admin@example.com", "admin")
    team = store.create_team("Platform", "platform", admin.id)
    store.save_weekly_report(team.id, "2026-01-05", {"week": 1}, "2026-01-09T00:00:00+00:00")
    store.save_weekly_report(team.id, "2026-01-12", {"week": 2}, "2026-01-16T00:00:00+00:00")
    assert store.get_latest_weekly_report(team.id).report_data == {"week": 2}
    assert [report.week_start for report in store.list_weekly_reports(team.id, 6)] == ["2026-01-12", "2026-01-05"]


def test_tasks_are_scoped_to_user(tmp_path: Path) -> None:
    store = _store(tmp_path)
    owner = store.ensure_user("owner@example.com", "owner")
    other = store.ensure_user("other@example.com", "other")
    task = store.add_task(owner.id, Task(title="Review PR", priority="high"))
    assert store.get_task(other.id, task.id) is None
    assert not store.delete_task(other.id, task.id)
    updated = store.update_task(owner.id, task.id, {"status": "completed", "user_id": other.id})
    assert updated.status == "completed"
    assert updated.user_id == owner.id


def test_drive_disconnect_removes_folders(tmp_path: Path) -> None:
    from workintel.storage.sqlite_store import StoredDriveGrant

    store = _store(tmp_path)
    user = store.ensure_user("dev@example.com", "dev")
    store.upsert_drive_grant(StoredDriveGrant(user.id, "token", None, None, "dev@example.com", None, "now"))
    folder = store.upsert_drive_folder(user.id, "folder-1", "Docs", "Design docs")
    assert folder.enabled is True
    store.delete_drive_grant(user.id)
    assert store.get_drive_grant(user.id) is None
    assert store.list_drive_folders(user.id) == []
