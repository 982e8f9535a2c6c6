"""Summary: Tests for weekly team report generation and delivery.

Importance: Managers rely on these counts and on every member receiving the right email.
Alternatives: Review generated reports by hand each week.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone

import pytest

from workintel.app import AppContext
from workintel.team_report import (
    CHANGES_REQUESTED_REASON,
    NO_REVIEWERS_REASON,
    PARTIAL_DATA_MESSAGE,
    classify_stuck_prs,
    fetch_member_data,
    trend_metrics,
    week_start,
)

from conftest import FakeGitHub


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
REPO_URL = "https://api.github.com/repos/acme/api"

ALICE = {
    "merged": [
        {
            "title": "Add cache",
            "html_url": "https://github.com/acme/api/pull/1",
            "repository_url": REPO_URL,
            "pull_request": {"merged_at": "2026-01-14T10:00:00Z"},
        }
    ],
    "open": [
        {
            "title": "Old PR",
            "html_url": "https://github.com/acme/api/pull/2",
            "repository_url": REPO_URL,
            "created_at": "2026-01-05T00:00:00Z",
            "updated_at": "2026-01-10T00:00:00Z",
            "requested_reviewers": [],
        }
    ],
    "reviews": 4,
    "commits": 9,
}

ANALYSIS = {
    "summary": "Caching shipped.",
    "velocity": "Moderate output",
    "keyHighlights": ["Cache layer merged"],
    "needsAttention": [
        {
            "type": "unreviewed_pr",
            "title": "Old PR",
            "url": "https://github.com/acme/api/pull/2",
            "repo": "api",
            "author": "alice",
            "reason": NO_REVIEWERS_REASON,
        }
    ],
    "memberSummaries": [{"githubUsername": "alice", "aiSummary": "Shipped the cache."}],
}


def _team(context: AppContext, name: str = "Platform") -> tuple[int, int]:
    """Summary: Create a team with a GitHub PAT, an admin (alice), and a member (bob)."""

    admin = context.sessions.find_or_create_user(f"admin@{name.lower()}.example.com")
    services = context.services_for_user(admin.id)
    team = services.teams.create_team(name)
    admin_member = context.store.get_membership(team.id, admin.id)
    context.store.update_member(admin_member.id, {"github_username": "alice"})
    context.sessions.find_or_create_user(f"bob@{name.lower()}.example.com")
    services.teams.add_member(team.id, f"bob@{name.lower()}.example.com", github_username="bob")
    context.store.upsert_integration(
        team.id,
        "github",
        {"auth_type": "pat", "org": "acme", "encrypted_token": context.codec.encode("ghp-valid")},
        admin.id,
    )
    context.clients.github_factory.members["alice"] = ALICE
    return admin.id, team.id


def test_week_start() -> None:
    assert week_start(date(2026, 1, 15)) == "2026-01-12"
    assert week_start(date(2026, 1, 12)) == "2026-01-12"
    assert week_start(date(2026, 1, 18)) == "2026-01-12"


def test_classify_stuck_prs() -> None:
    """Summary: Verify the two staleness rules.

    Importance: Stuck PRs drive the manager's needs-attention list.
    Alternatives: Flag every open PR older than a week.
    """

    members = [
        {
            "githubUsername": "alice",
            "openPRs": [
                {"title": "No reviewers", "url": "u1", "repo": "api", "updated_at": "2026-01-11T12:00:00Z", "reviewers": []},
                {"title": "Fresh", "url": "u2", "repo": "api", "updated_at": "2026-01-14T12:00:00Z", "reviewers": []},
                {"title": "Changes", "url": "u3", "repo": "api", "updated_at": "2026-01-13T12:00:00Z", "reviewers": ["bob"], "review_state": "CHANGES_REQUESTED"},
                {"title": "Reviewed", "url": "u4", "repo": "api", "updated_at": "2026-01-01T12:00:00Z", "reviewers": ["bob"]},
            ],
        }
    ]
    stuck = classify_stuck_prs(members, NOW)
    assert [(pr["title"], pr["reason"], pr["daysSinceUpdate"]) for pr in stuck] == [
        ("No reviewers", NO_REVIEWERS_REASON, 4),
        ("Changes", CHANGES_REQUESTED_REASON, 2),
    ]


def test_fetch_member_data_failure_yields_empty_member() -> None:
    data, limited = fetch_member_data(FakeGitHub("revoked"), "alice", "acme", "2026-01-08")
    assert data == {"githubUsername": "alice", "mergedPRs": [], "openPRs": [], "reviewsGiven": 0, "commitCount": 0}
    assert not limited


def test_fetch_member_data_reads_search_results() -> None:
    client = FakeGitHub("ghp-valid", {"alice": ALICE}, remaining="0")
    data, limited = fetch_member_data(client, "alice", "acme", "2026-01-08")
    assert data["mergedPRs"] == [
        {"title": "Add cache", "url": "https://github.com/acme/api/pull/1", "repo": "api", "merged_at": "2026-01-14T10:00:00Z"}
    ]
    assert data["openPRs"][0]["reviewers"] == []
    assert (data["reviewsGiven"], data["commitCount"]) == (4, 9)
    assert limited
    assert "is:pr is:merged author:alice org:acme merged:>=2026-01-08" in client.queries


def test_generate_report_merges_analysis(context: AppContext) -> None:
    """Summary: Verify report counts come from GitHub data and text from the model.

    Importance: Totals must stay correct even when the model miscounts.
    Alternatives: Trust the model for every field.
    """

    admin_id, team_id = _team(context)
    context.clients.ai_provider.responses["team_report"] = json.dumps(ANALYSIS)
    report = context.reports(admin_id).generate(team_id, NOW)

    assert report["teamSummary"]["totalPRsMerged"] == 1
    assert report["teamSummary"]["totalPRsOpen"] == 1
    assert report["teamSummary"]["stuckPRsCount"] == 1
    assert report["teamSummary"]["velocity"] == "Moderate output"
    assert report["needsAttention"][0]["daysSinceUpdate"] == 5
    by_user = {member["githubUsername"]: member for member in report["memberSummaries"]}
    assert by_user["alice"]["aiSummary"] == "Shipped the cache."
    assert by_user["alice"]["inFlight"][0]["daysSinceUpdate"] == 5
    assert by_user["bob"]["aiSummary"] == ""
    assert by_user["bob"]["shipped"] == []

    latest = context.reports(admin_id).latest(team_id)
    assert latest["weekStart"] == "2026-01-12"
    assert latest["report"] == report


def test_invalid_analysis_fails_generation(context: AppContext) -> None:
    admin_id, team_id = _team(context)
    context.clients.ai_provider.responses["team_report"] = json.dumps({"summary": "Missing fields"})
    with pytest.raises(ValueError):
        context.reports(admin_id).generate(team_id, NOW)
    assert context.store.get_latest_weekly_report(team_id) is None


def test_github_data_is_cached(context: AppContext) -> None:
    admin_id, team_id = _team(context)
    reports = context.reports(admin_id)
    first = reports.fetch_team_github_data(team_id, NOW)
    factory = context.clients.github_factory
    created = len(factory.clients)
    assert reports.fetch_team_github_data(team_id, NOW) is first
    assert len(factory.clients) == created
    assert [member["githubUsername"] for member in first["members"]] == ["alice", "bob"]


def test_exhausted_rate_limit_marks_partial_data(context: AppContext) -> None:
    admin_id, team_id = _team(context)
    context.clients.github_factory.remaining = "0"
    data = context.reports(admin_id).fetch_team_github_data(team_id, NOW)
    assert data["members"] == []
    assert data["rateLimitInfo"] == {"isPartial": True, "message": PARTIAL_DATA_MESSAGE}


def test_team_without_usernames(context: AppContext) -> None:
    admin = context.sessions.find_or_create_user("solo@example.com")
    team = context.services_for_user(admin.id).teams.create_team("Solo")
    context.store.upsert_integration(team.id, "github", {"auth_type": "pat", "org": "acme", "encrypted_token": "ghp-valid"}, admin.id)
    with pytest.raises(ValueError, match="No team members have GitHub usernames"):
        context.reports(admin.id).fetch_team_github_data(team.id, NOW)


def test_reports_require_membership(context: AppContext) -> None:
    _admin_id, team_id = _team(context)
    outsider = context.sessions.find_or_create_user("outsider@example.com")
    with pytest.raises(PermissionError):
        context.reports(outsider.id).latest(team_id)
    with pytest.raises(PermissionError):
        context.reports(outsider.id).fetch_team_github_data(team_id, NOW)


def test_trends_oldest_first(context: AppContext) -> None:
    admin_id, team_id = _team(context)
    older = {"teamSummary": {"totalPRsMerged": 2, "totalPRsOpen": 1, "stuckPRsCount": 0}, "memberSummaries": [{"reviewActivity": 3, "commitCount": 7}]}
    newer = {"teamSummary": {"totalPRsMerged": 5, "totalPRsOpen": 0, "stuckPRsCount": 1}, "memberSummaries": []}
    context.store.save_weekly_report(team_id, "2026-01-05", older, "2026-01-09T00:00:00+00:00")
    context.store.save_weekly_report(team_id, "2026-01-12", newer, "2026-01-16T00:00:00+00:00")
    trends = context.reports(admin_id).trends(team_id)
    assert [week["weekStart"] for week in trends] == ["2026-01-05", "2026-01-12"]
    assert trends[0]["metrics"] == {"prsMerged": 2, "prsOpen": 1, "reviews": 3, "commits": 7, "stuckPRs": 0}
    assert trend_metrics({}) == {"prsMerged": 0, "prsOpen": 0, "reviews": 0, "commits": 0, "stuckPRs": 0}


def test_send_weekly_reports_routes_by_role(context: AppContext) -> None:
    """Summary: Verify admins get the manager email and members get their own view.

    Importance: Developers should see their own week, not the whole team table.
    Alternatives: Send the manager report to everyone.
    """

    admin_id, team_id = _team(context)
    context.clients.ai_provider.responses["team_report"] = json.dumps(ANALYSIS)
    context.reports(admin_id).generate(team_id, NOW)
    ai_calls = len(context.clients.ai_provider.calls)

    summary = context.reports().send_weekly_reports(team_id, NOW)
    assert (summary.emails_sent, summary.emails_failed, summary.total_members) == (2, 0, 2)
    assert len(context.clients.ai_provider.calls) == ai_calls
    outbox = context.clients.email_sender.outbox
    assert outbox[0]["subject"] == "[Platform] Weekly Report - Week of Jan 12, 2026"
    assert outbox[1]["subject"] == "Your Week - Platform - Week of Jan 12, 2026"
    assert "Your week on Platform" in outbox[1]["html"]
    assert "http://testserver/team/platform" in outbox[0]["html"]


def test_weekly_cron_records_team_failures(context: AppContext) -> None:
    _team(context)
    admin = context.sessions.find_or_create_user("solo@example.com")
    solo = context.services_for_user(admin.id).teams.create_team("Solo")
    context.store.upsert_integration(solo.id, "github", {"auth_type": "pat", "org": "acme", "encrypted_token": "ghp-valid"}, admin.id)
    context.clients.email_sender.fail_for.add("bob@platform.example.com")

    result = context.reports().run_weekly_cron(NOW)
    assert result["teams"] == 2
    assert result["teamsProcessed"] == 1
    assert result["teamsFailed"] == 1
    assert result["emailsSent"] == 1
    assert result["emailsFailed"] == 1
    assert result["errors"] == [{"teamId": solo.id, "error": "No team members have GitHub usernames configured"}]
    failed = [entry for entry in result["results"][0]["emailResults"] if not entry["success"]]
    assert failed == [{"success": False, "email": "bob@platform.example.com", "error": "Mock delivery failure"}]


def test_weekly_cron_without_teams(context: AppContext) -> None:
    result = context.reports().run_weekly_cron(NOW)
    assert result["teams"] == 0
    assert result["message"] == "No teams with GitHub integration found"
