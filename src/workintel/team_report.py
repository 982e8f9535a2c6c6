"""Summary: Weekly team reports built from GitHub activity.

Importance: Gives managers and developers a weekly view of what shipped and what is stuck.
Alternatives: Link to GitHub Insights instead of summarizing activity.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import BaseModel, Field

from workintel.ai import extract_json, parse_model_json
from workintel.cache import TtlCache, team_github_key
from workintel.config import AppConfig
from workintel.github import GitHubAppClient, GitHubClient, repo_name, with_retry
from workintel.mailer import (
    EmailSender,
    developer_report_html,
    developer_report_subject,
    manager_report_html,
    manager_report_subject,
)
from workintel.models import SendEmailResult, TeamEmailSummary
from workintel.oauth import HttpError, parse_timestamp
from workintel.services import AiRecorder, ReauthRequired, require_membership
from workintel.storage.sqlite_store import SqliteStore
from workintel.token_codec import TokenCodec


logger = logging.getLogger(__name__)

TEAM_GITHUB_CACHE_SECONDS = 15 * 60
MEMBER_CHUNK_SIZE = 3
TREND_WEEKS = 6
LOW_RATE_LIMIT = 10
PARTIAL_DATA_MESSAGE = "Some data may be missing due to GitHub API rate limits"
NO_REVIEWERS_REASON = "No reviewers assigned, open for 3+ days"
CHANGES_REQUESTED_REASON = "Changes requested, no update for 2+ days"

TEAM_REPORT_SYSTEM_PROMPT = """You are an engineering manager's assistant. Analyze the team's weekly GitHub activity and produce a concise summary.

GUIDELINES:
1. Summarize what the team shipped, what's in flight, and what needs attention
2. For velocity, describe trend qualitatively (e.g., "Strong week", "Moderate output", "Slow week - potential blockers")
3. Key highlights: top 3-5 notable items. If no notable items, return an empty array.
4. For needsAttention: only include PRs that are actually stuck. If none, return an empty array.
5. memberSummaries: include an entry for EVERY member in the input data with the exact githubUsername
   and a 1-2 sentence aiSummary (if no activity, say "No GitHub activity this week")

Return ONLY valid JSON with this exact structure:
{
  "summary": "string",
  "velocity": "string",
  "keyHighlights": ["string"],
  "needsAttention": [{"type": "stuck_pr|blocked_pr|unreviewed_pr", "title": "string", "url": "string", "repo": "string", "author": "string", "reason": "string"}],
  "memberSummaries": [{"githubUsername": "string", "aiSummary": "string"}]
}"""


class AttentionItem(BaseModel):
    type: str = Field(pattern="^(stuck_pr|blocked_pr|unreviewed_pr)$")
    title: str
    url: str
    repo: str
    author: str
    reason: str


class MemberSummary(BaseModel):
    githubUsername: str
    aiSummary: str


class TeamAiSummary(BaseModel):
    """Summary: Validated shape of the model's team analysis.

    Importance: A malformed analysis fails the report instead of saving partial garbage.
    Alternatives: Accept any JSON object and read keys with defaults.
    """

    summary: str
    velocity: str
    keyHighlights: list[str] = Field(max_length=5)
    needsAttention: list[AttentionItem]
    memberSummaries: list[MemberSummary]


def week_start(today: date) -> str:
    """Summary: Return the ISO date of the Monday starting ``today``'s week."""

    return (today - timedelta(days=today.weekday())).isoformat()


def days_since(timestamp: str, now: datetime) -> int:
    return int((now - parse_timestamp(timestamp)).total_seconds() // 86400)


def empty_member(username: str) -> dict[str, Any]:
    return {"githubUsername": username, "mergedPRs": [], "openPRs": [], "reviewsGiven": 0, "commitCount": 0}


def classify_stuck_prs(members: list[dict[str, Any]], now: datetime) -> list[dict[str, Any]]:
    """Summary: Find open pull requests that have stalled.

    Importance: Unreviewed PRs stall after three days; PRs with requested
    changes stall after two.
    Alternatives: Use a single staleness threshold for every PR.
    """

    stuck = []
    for member in members:
        for pr in member["openPRs"]:
            idle_days = days_since(pr["updated_at"], now)
            reason = None
            if idle_days >= 3 and not pr["reviewers"]:
                reason = NO_REVIEWERS_REASON
            elif pr.get("review_state") == "CHANGES_REQUESTED" and idle_days >= 2:
                reason = CHANGES_REQUESTED_REASON
            if reason:
                stuck.append(
                    {
                        "title": pr["title"],
                        "url": pr["url"],
                        "repo": pr["repo"],
                        "author": member["githubUsername"],
                        "daysSinceUpdate": idle_days,
                        "reason": reason,
                    }
                )
    return stuck


def fetch_member_data(
    client: GitHubClient,
    username: str,
    org: str,
    since: str,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[dict[str, Any], bool]:
    """Summary: Read one member's weekly GitHub activity.

    Importance: A failing member yields empty data so the rest of the team still reports.
    Alternatives: Fail the whole report on the first member error.
    """

    try:
        merged = with_retry(
            lambda: client.search_issues(
                f"is:pr is:merged author:{username} org:{org} merged:>={since}", per_page=50
            ),
            sleep=sleep,
        )
        opened = with_retry(
            lambda: client.search_issues(f"is:pr is:open author:{username} org:{org}", per_page=20),
            sleep=sleep,
        )
        reviews = with_retry(
            lambda: client.search_issues(
                f"is:pr reviewed-by:{username} org:{org} updated:>={since}", per_page=1
            ),
            sleep=sleep,
        )
        commits = with_retry(
            lambda: client.search_commits(f"author:{username} org:{org} committer-date:>={since}"),
            sleep=sleep,
        )
    except HttpError as exc:
        logger.error("Error fetching GitHub data for %s: %s", username, exc)
        return empty_member(username), exc.status in (403, 429)
    except RuntimeError as exc:
        logger.error("Error fetching GitHub data for %s: %s", username, exc)
        return empty_member(username), False

    remaining = int(commits.headers.get("x-ratelimit-remaining", "999"))
    if 0 < remaining < LOW_RATE_LIMIT:
        logger.warning("GitHub API rate limit low: %s requests remaining.", remaining)
    data = {
        "githubUsername": username,
        "mergedPRs": [
            {
                "title": item.get("title"),
                "url": item.get("html_url"),
                "repo": repo_name(item),
                "merged_at": (item.get("pull_request") or {}).get("merged_at") or item.get("updated_at"),
            }
            for item in merged.body.get("items", [])
        ],
        "openPRs": [
            {
                "title": item.get("title"),
                "url": item.get("html_url"),
                "repo": repo_name(item),
                "created_at": item.get("created_at"),
                "updated_at": item.get("updated_at"),
                "reviewers": [
                    reviewer.get("login", "") for reviewer in item.get("requested_reviewers") or []
                ],
                "review_state": None,
            }
            for item in opened.body.get("items", [])
        ],
        "reviewsGiven": reviews.body.get("total_count", 0),
        "commitCount": commits.body.get("total_count", 0),
    }
    return data, remaining == 0


def build_team_context(data: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "org": data["org"],
        "weekEnding": now.date().isoformat(),
        "totalMembers": len(data["members"]),
        "members": [
            {
                "username": member["githubUsername"],
                "prsMerged": len(member["mergedPRs"]),
                "mergedTitles": [f"{pr['title']} ({pr['repo']})" for pr in member["mergedPRs"][:5]],
                "prsOpen": len(member["openPRs"]),
                "openTitles": [f"{pr['title']} ({pr['repo']})" for pr in member["openPRs"][:5]],
                "reviewsGiven": member["reviewsGiven"],
                "commits": member["commitCount"],
            }
            for member in data["members"]
        ],
        "stuckPRs": data["stuckPRs"],
    }


def build_report(data: dict[str, Any], analysis: TeamAiSummary, now: datetime) -> dict[str, Any]:
    """Summary: Merge the model's analysis with raw GitHub metrics.

    Importance: Counts always come from GitHub data, never from the model.
    Alternatives: Ask the model to compute totals too.
    """

    stuck_days = {pr["url"]: pr["daysSinceUpdate"] for pr in data["stuckPRs"]}
    member_text = {item.githubUsername: item.aiSummary for item in analysis.memberSummaries}
    report: dict[str, Any] = {
        "teamSummary": {
            "totalPRsMerged": sum(len(member["mergedPRs"]) for member in data["members"]),
            "totalPRsOpen": sum(len(member["openPRs"]) for member in data["members"]),
            "stuckPRsCount": len(data["stuckPRs"]),
            "summary": analysis.summary,
            "velocity": analysis.velocity,
            "keyHighlights": analysis.keyHighlights,
        },
        "needsAttention": [
            {**item.model_dump(), "daysSinceUpdate": stuck_days.get(item.url, 0)}
            for item in analysis.needsAttention
        ],
        "memberSummaries": [
            {
                "githubUsername": member["githubUsername"],
                "shipped": [
                    {"title": pr["title"], "url": pr["url"], "repo": pr["repo"]} for pr in member["mergedPRs"]
                ],
                "inFlight": [
                    {
                        "title": pr["title"],
                        "url": pr["url"],
                        "repo": pr["repo"],
                        "daysSinceUpdate": days_since(pr["updated_at"], now),
                    }
                    for pr in member["openPRs"]
                ],
                "reviewActivity": member["reviewsGiven"],
                "commitCount": member["commitCount"],
                "aiSummary": member_text.get(member["githubUsername"], ""),
            }
            for member in data["members"]
        ],
    }
    if data.get("rateLimitInfo"):
        report["rateLimitInfo"] = data["rateLimitInfo"]
    return report


def trend_metrics(report: dict[str, Any]) -> dict[str, int]:
    members = report.get("memberSummaries", [])
    summary = report.get("teamSummary", {})
    return {
        "prsMerged": summary.get("totalPRsMerged", 0),
        "prsOpen": summary.get("totalPRsOpen", 0),
        "reviews": sum(member.get("reviewActivity", 0) for member in members),
        "commits": sum(member.get("commitCount", 0) for member in members),
        "stuckPRs": summary.get("stuckPRsCount", 0),
    }


@dataclass(frozen=True)
class TeamReportService:
    """Summary: Generate, store, and email weekly team reports.

    Importance: Used by team routes for one team and by the cron job for every team.
    Alternatives: Generate reports only on demand from the dashboard.
    """

    store: SqliteStore
    cache: TtlCache
    config: AppConfig
    codec: TokenCodec
    github_app: GitHubAppClient
    github_factory: Callable[[str], GitHubClient]
    ai: AiRecorder
    email_sender: EmailSender
    user_id: int | None = None
    sleep: Callable[[float], None] = time.sleep

    def github_client(self, team_id: int) -> tuple[GitHubClient, str]:
        """Summary: Build a GitHub client from whichever credential the team connected.

        Importance: App installations mint short-lived tokens; PATs are decoded from storage.
        Alternatives: Support only one GitHub auth type per deployment.
        """

        integration = self.store.get_integration(team_id, "github")
        if integration is None:
            raise ValueError("GitHub integration not configured for this team")
        config = integration.config
        if config.get("auth_type") == "github_app":
            token, _ = self.github_app.installation_token(int(config["installation_id"]))
        else:
            token = self.codec.decode_if_encoded(config.get("encrypted_token"))
        if not token:
            raise ReauthRequired("GitHub credentials are missing. Please reconnect GitHub.")
        return self.github_factory(token), config["org"]

    def fetch_team_github_data(self, team_id: int, now: datetime | None = None) -> dict[str, Any]:
        self._authorize(team_id)
        key = team_github_key(team_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        client, org = self.github_client(team_id)
        usernames = [member.github_username for member in self.store.list_members(team_id) if member.github_username]
        if not usernames:
            raise ValueError("No team members have GitHub usernames configured")

        current = now or datetime.now(timezone.utc)
        since = (current - timedelta(days=7)).date().isoformat()
        members: list[dict[str, Any]] = []
        rate_limited = False
        for offset in range(0, len(usernames), MEMBER_CHUNK_SIZE):
            chunk = usernames[offset : offset + MEMBER_CHUNK_SIZE]
            try:
                remaining = int(client.rate_limit().headers.get("x-ratelimit-remaining", "999"))
            except RuntimeError as exc:
                logger.warning("GitHub rate limit check failed: %s", exc)
            else:
                if remaining == 0:
                    logger.warning("GitHub API rate limit exhausted before fetching all members.")
                    rate_limited = True
                    break
            with ThreadPoolExecutor(max_workers=MEMBER_CHUNK_SIZE) as pool:
                results = list(
                    pool.map(lambda name: fetch_member_data(client, name, org, since, self.sleep), chunk)
                )
            for data, limited in results:
                members.append(data)
                rate_limited = rate_limited or limited

        result: dict[str, Any] = {
            "org": org,
            "members": members,
            "stuckPRs": classify_stuck_prs(members, current),
            "fetchedAt": current.isoformat(),
        }
        if rate_limited:
            result["rateLimitInfo"] = {"isPartial": True, "message": PARTIAL_DATA_MESSAGE}
        self.cache.set(key, result, TEAM_GITHUB_CACHE_SECONDS)
        return result

    def analyze(self, context: dict[str, Any]) -> TeamAiSummary:
        prompt = (
            "Analyze this team's weekly GitHub activity:\n\n"
            f"{json.dumps(context, indent=2, default=str)}\n\nReturn ONLY valid JSON."
        )
        text = self.ai.generate(prompt, "team_report", user_id=self.user_id, system=TEAM_REPORT_SYSTEM_PROMPT)
        return TeamAiSummary.model_validate(parse_model_json(extract_json(text)))

    def generate(self, team_id: int, now: datetime | None = None) -> dict[str, Any]:
        self._authorize(team_id)
        current = now or datetime.now(timezone.utc)
        data = self.fetch_team_github_data(team_id, current)
        report = build_report(data, self.analyze(build_team_context(data, current)), current)
        self.store.save_weekly_report(team_id, week_start(current.date()), report, current.isoformat())
        logger.info("Generated weekly report for team %s.", team_id)
        return report

    def latest(self, team_id: int) -> dict[str, Any] | None:
        self._authorize(team_id)
        stored = self.store.get_latest_weekly_report(team_id)
        if stored is None:
            return None
        return {"report": stored.report_data, "weekStart": stored.week_start, "generatedAt": stored.generated_at}

    def trends(self, team_id: int) -> list[dict[str, Any]]:
        self._authorize(team_id)
        reports = self.store.list_weekly_reports(team_id, TREND_WEEKS)
        return [
            {"weekStart": stored.week_start, "metrics": trend_metrics(stored.report_data)}
            for stored in reversed(reports)
        ]

    def send_weekly_reports(self, team_id: int, now: datetime | None = None) -> TeamEmailSummary:
        """Summary: Email the weekly report to every member of a team.

        Importance: Admins receive the manager view; members with a GitHub
        username receive their personal view.
        Alternatives: Send one identical email to the whole team.
        """

        current = now or datetime.now(timezone.utc)
        team = self.store.get_team(team_id)
        if team is None:
            raise LookupError(f"Team not found: {team_id}")
        stored = self.store.get_latest_weekly_report(team_id)
        if stored is not None and stored.generated_at.startswith(current.date().isoformat()):
            report = stored.report_data
        else:
            logger.info("Generating fresh report for team %s.", team.name)
            report = self.generate(team_id, current)

        starting = week_start(current.date())
        dashboard_url = f"{self.config.base_url.rstrip('/')}/team/{team.slug}"
        members = self.store.list_members(team_id)
        results: list[SendEmailResult] = []
        for member in members:
            if member.role == "admin":
                subject = manager_report_subject(team.name, starting)
            else:
                subject = developer_report_subject(team.name, starting)
            if member.role == "admin" or not member.github_username:
                body = manager_report_html(report, team.name, starting, dashboard_url)
            else:
                body = developer_report_html(report, member.github_username, team.name, starting, dashboard_url)
            results.append(self.email_sender.send(member.email, subject, body))
        summary = TeamEmailSummary(team_id=team.id, team_name=team.name, total_members=len(members), results=results)
        logger.info("Team %s: %s/%s emails sent.", team.name, summary.emails_sent, summary.total_members)
        return summary

    def run_weekly_cron(self, now: datetime | None = None) -> dict[str, Any]:
        """Summary: Send weekly reports for every team with a GitHub integration.

        Importance: A failing team is recorded and the run moves on to the next one.
        Alternatives: Queue one background job per team.
        """

        started = time.monotonic()
        teams = self.store.list_teams_with_integration("github")
        if not teams:
            return {
                "success": True,
                "message": "No teams with GitHub integration found",
                "teams": 0,
                "emailsSent": 0,
                "duration": _elapsed_ms(started),
            }

        logger.info("Processing weekly reports for %s teams.", len(teams))
        summaries: list[TeamEmailSummary] = []
        errors: list[dict[str, Any]] = []
        for team in teams:
            try:
                summaries.append(self.send_weekly_reports(team.id, now))
            except (RuntimeError, ValueError, LookupError) as exc:
                logger.error("Failed to process team %s: %s", team.id, exc)
                errors.append({"teamId": team.id, "error": str(exc)})

        result: dict[str, Any] = {
            "success": True,
            "teams": len(teams),
            "teamsProcessed": len(summaries),
            "teamsFailed": len(errors),
            "emailsSent": sum(summary.emails_sent for summary in summaries),
            "emailsFailed": sum(summary.emails_failed for summary in summaries),
            "duration": _elapsed_ms(started),
            "results": [
                {
                    "teamId": summary.team_id,
                    "teamName": summary.team_name,
                    "members": summary.total_members,
                    "sent": summary.emails_sent,
                    "failed": summary.emails_failed,
                    "emailResults": [
                        {key: value for key, value in vars(item).items() if value is not None}
                        for item in summary.results
                    ],
                }
                for summary in summaries
            ],
        }
        if errors:
            result["errors"] = errors
        return result

    def _authorize(self, team_id: int) -> None:
        if self.user_id is not None:
            require_membership(self.store, team_id, self.user_id)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
