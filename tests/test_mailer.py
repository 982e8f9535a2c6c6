"""Summary: Tests for email senders and templates.

Importance: Invite and report emails interpolate user-supplied names.
Alternatives: Inspect rendered emails manually.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from workintel.config import AppConfig
from workintel.mailer import (
    MockEmailSender,
    ResendEmailSender,
    build_email_sender,
    developer_report_html,
    format_week,
    invite_html,
    invite_subject,
    manager_report_html,
)


REPORT = {
    "teamSummary": {"totalPRsMerged": 3, "totalPRsOpen": 2, "stuckPRsCount": 1, "summary": "Good week", "velocity": "Strong", "keyHighlights": ["Launched <beta>"]},
    "needsAttention": [{"title": "Old PR", "url": "https://github.com/acme/api/pull/2", "repo": "api", "author": "alice", "reason": "No reviewers"}],
    "memberSummaries": [
        {"githubUsername": "alice", "shipped": [{"title": "Cache", "url": "u1", "repo": "api"}], "inFlight": [], "reviewActivity": 2, "commitCount": 5, "aiSummary": "Busy"},
    ],
}


def test_invite_html_escapes_names() -> None:
    """Summary: Verify user-supplied values are HTML escaped.

    Importance: Team names come from users and must not inject markup.
    Alternatives: Reject names with angle brackets.
    """

    body = invite_html("<Ops>", "Eve & Co", "admin", "http://testserver/api/invites/abc")
    assert "&lt;Ops&gt;" in body
    assert "Eve &amp; Co" in body
    assert "as an admin" in body
    assert 'href="http://testserver/api/invites/abc"' in body
    assert invite_subject("Ops") == "You're invited to join Ops on Work Intel"


def test_manager_report_html() -> None:
    body = manager_report_html(REPORT, "Platform", "2026-01-12", "http://testserver/team/platform")
    assert "Platform: week of Jan 12, 2026" in body
    assert "Needs Attention" in body
    assert "Launched &lt;beta&gt;" in body
    assert "<td>alice</td>" in body


def test_developer_report_falls_back_for_unknown_member() -> None:
    personal = developer_report_html(REPORT, "alice", "Platform", "2026-01-12", "http://testserver/team/platform")
    assert "Your week on Platform" in personal
    assert "No open pull requests" in personal
    assert "2 reviews, 5 commits" in personal
    unknown = developer_report_html(REPORT, "zed", "Platform", "2026-01-12", "http://testserver/team/platform")
    assert "Platform: week of" in unknown


def test_developer_report_escapes_model_text() -> None:
    report = {
        "memberSummaries": [
            {"githubUsername": "bob", "shipped": [{"title": "<script>alert(1)</script>", "url": "u2", "repo": "web"}],
             "aiSummary": "Fixed <b>two</b> bugs"},
        ],
    }
    body = developer_report_html(report, "bob", "Platform", "2026-01-12", "http://testserver/team/platform")
    assert "Fixed &lt;b&gt;two&lt;/b&gt; bugs" in body
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in body
    assert "<script>" not in body
    assert "0 reviews, 0 commits" in body


def test_format_week() -> None:
    assert format_week("2026-01-05") == "Jan 5, 2026"


def test_mock_sender_records_and_fails() -> None:
    sender = MockEmailSender(fail_for={"bounce@example.com"})
    assert sender.send("dev@example.com", "Hi", "<p>Hi</p>").success
    failed = sender.send("bounce@example.com", "Hi", "<p>Hi</p>")
    assert not failed.success
    assert failed.error == "Mock delivery failure"
    assert [message["to"] for message in sender.outbox] == ["dev@example.com"]


def test_build_email_sender(config: AppConfig) -> None:
    assert isinstance(build_email_sender(config), MockEmailSender)
    with pytest.raises(ValueError, match="RESEND_API_KEY"):
        build_email_sender(replace(config, email_provider="resend"))
    sender = build_email_sender(replace(config, email_provider="resend", resend_api_key="re_test"))
    assert isinstance(sender, ResendEmailSender)
