"""Summary: Outbound email senders and HTML templates.

Importance: Delivers team invites and weekly reports.
Alternatives: Use SMTP directly or a provider SDK.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from workintel.config import AppConfig
from workintel.models import SendEmailResult
from workintel.oauth import bearer, post_json
from workintel.rendering import render


logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class EmailSender(ABC):
    """Summary: Abstract interface for sending one HTML email.

    Importance: Lets services send mail without knowing the delivery provider.
    Alternatives: Call the provider API inline in each service.
    """

    @abstractmethod
    def send(self, to: str, subject: str, html_body: str) -> SendEmailResult:
        """Summary: Deliver a message and report the outcome without raising."""


@dataclass
class MockEmailSender(EmailSender):
    """Summary: Records messages in memory instead of sending them.

    Importance: Keeps local runs and tests free of network calls.
    Alternatives: Write messages to .eml files on disk.
    """

    outbox: list[dict[str, str]] = field(default_factory=list)
    fail_for: set[str] = field(default_factory=set)

    def send(self, to: str, subject: str, html_body: str) -> SendEmailResult:
        if to in self.fail_for:
            logger.error("Mock delivery failure for %s", to)
            return SendEmailResult(success=False, email=to, error="Mock delivery failure")
        self.outbox.append({"to": to, "subject": subject, "html": html_body})
        logger.info("Queued mock email to %s: %s", to, subject)
        return SendEmailResult(success=True, email=to)


class ResendEmailSender(EmailSender):
    """Summary: Sends email through the Resend HTTP API."""

    def __init__(self, api_key: str, from_address: str) -> None:
        self._api_key = api_key
        self._from_address = from_address

    def send(self, to: str, subject: str, html_body: str) -> SendEmailResult:
        payload = {
            "from": f"Work Intel <{self._from_address}>",
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        try:
            post_json(RESEND_URL, payload, headers=bearer(self._api_key))
        except RuntimeError as exc:
            logger.error("Failed to send email to %s: %s", to, exc)
            return SendEmailResult(success=False, email=to, error=str(exc))
        logger.info("Sent email to %s: %s", to, subject)
        return SendEmailResult(success=True, email=to)


def build_email_sender(config: AppConfig) -> EmailSender:
    """Summary: Construct the configured email sender.

    Importance: Keeps provider selection in one place.
    Alternatives: Choose the sender inside each service.
    """

    if config.email_provider == "resend":
        if not config.resend_api_key:
            raise ValueError("RESEND_API_KEY is required for the resend email provider")
        return ResendEmailSender(config.resend_api_key, config.email_from_address)
    return MockEmailSender()


def invite_subject(team_name: str) -> str:
    return f"You're invited to join {team_name} on Work Intel"


def invite_html(team_name: str, inviter_name: str, role: str, accept_url: str) -> str:
    """Summary: Render the team invite email body.

    Importance: Team and inviter names are user supplied and rely on template autoescaping.
    Alternatives: Escape each value by hand in an f-string.
    """

    return render(
        "emails/invite.html",
        team_name=team_name,
        inviter_name=inviter_name,
        role=role,
        action_url=accept_url,
    )


def manager_report_subject(team_name: str, week_start: str) -> str:
    return f"[{team_name}] Weekly Report - Week of {format_week(week_start)}"


def developer_report_subject(team_name: str, week_start: str) -> str:
    return f"Your Week - {team_name} - Week of {format_week(week_start)}"


def manager_report_html(report: dict[str, Any], team_name: str, week_start: str, dashboard_url: str) -> str:
    return render(
        "emails/manager_report.html",
        report=report,
        team_name=team_name,
        week_label=format_week(week_start),
        action_url=dashboard_url,
    )


def developer_report_html(
    report: dict[str, Any],
    github_username: str,
    team_name: str,
    week_start: str,
    dashboard_url: str,
) -> str:
    """Summary: Render a member's personal weekly email.

    Importance: Members without a summary still get the team view.
    Alternatives: Skip the email for members missing from the report.
    """

    member = next(
        (
            item
            for item in report.get("memberSummaries", [])
            if item.get("githubUsername") == github_username
        ),
        None,
    )
    if member is None:
        return manager_report_html(report, team_name, week_start, dashboard_url)
    return render("emails/developer_report.html", member=member, team_name=team_name, action_url=dashboard_url)


def format_week(week_start: str) -> str:
    day = date.fromisoformat(week_start)
    return f"{day:%b} {day.day}, {day.year}"
