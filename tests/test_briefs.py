"""Summary: Tests for daily brief generation and action drafts.

Importance: The brief is the core daily output and must degrade gracefully.
Alternatives: Validate briefs manually against live providers.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from workintel.app import AppContext
from workintel.brief_processing import FALLBACK_SUMMARY
from workintel.cache import brief_key
from workintel.storage.sqlite_store import StoredDriveGrant

from conftest import brief_json


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

REVIEW_ITEM = {
    "id": "pr-4",
    "source": "github",
    "sourceId": "4",
    "title": "Fix login",
    "summary": "Review requested by Bob",
    "priority": "high",
    "actionNeeded": True,
    "actionType": "review",
}


def _connected_user(context: AppContext) -> int:
    user = context.sessions.find_or_create_user("dev@example.com")
    context.store.save_nylas_grant(user.id, "grant-1", "dev@example.com", "google")
    context.clients.nylas.messages["m1"] = {
        "id": "m1",
        "from": "Alice <alice@example.com>",
        "subject": "Deploy window",
        "date": "2026-01-15T09:00:00Z",
        "unread": True,
        "snippet": "Can we ship at 3?",
        "body": "Can we ship at 3?",
    }
    return user.id


def test_generate_caches_and_persists(context: AppContext) -> None:
    """Summary: Verify a generated brief is cached, stored, and reused.

    Importance: Repeat dashboard loads must not call the model again.
    Alternatives: Regenerate on every request.
    """

    user_id = _connected_user(context)
    ai = context.clients.ai_provider
    ai.responses["daily_brief"] = brief_json(prsToReview=[REVIEW_ITEM])
    briefs = context.services_for_user(user_id).briefs

    brief, cached = briefs.generate(now=NOW)
    assert not cached
    assert brief["prsToReview"][0]["sourceId"] == "4"
    assert "Deploy window" in ai.calls[0][1]

    again, cached = briefs.generate(now=NOW)
    assert cached and again == brief
    assert len(ai.calls) == 1

    stored = context.store.get_brief(user_id, "2026-01-15")
    assert stored.content == brief
    assert stored.generated_by == "user"

    context.cache.delete(brief_key(user_id, "2026-01-15"))
    assert briefs.generate(now=NOW) == (brief, True)
    assert len(ai.calls) == 1


def test_force_regenerates(context: AppContext) -> None:
    user_id = _connected_user(context)
    briefs = context.services_for_user(user_id).briefs
    briefs.generate(now=NOW)
    context.clients.ai_provider.responses["daily_brief"] = brief_json(summary="Second pass")
    brief, cached = briefs.generate(generated_by="cron", force=True, now=NOW)
    assert not cached
    assert brief["summary"] == "Second pass"
    assert context.store.get_brief(user_id, "2026-01-15").generated_by == "cron"


def test_unparseable_model_output_falls_back(context: AppContext) -> None:
    user_id = _connected_user(context)
    context.clients.ai_provider.responses["daily_brief"] = "I could not do that."
    brief, _cached = context.services_for_user(user_id).briefs.generate(now=NOW)
    assert brief["summary"] == FALLBACK_SUMMARY
    assert brief["topFocus"] == []


def test_failing_source_does_not_fail_brief(context: AppContext) -> None:
    """Summary: Verify a source error leaves that source out of the brief.

    Importance: One expired token should not block the whole morning summary.
    Alternatives: Surface the error and skip the brief.
    """

    user = context.sessions.find_or_create_user("dev@example.com")
    context.store.upsert_tool_connection(
        user.id, "github", {"encrypted_token": context.codec.encode("ghp-revoked")}, "connected"
    )
    brief, cached = context.services_for_user(user.id).briefs.generate(now=NOW)
    assert not cached
    assert brief["summary"] == "Mock brief: no AI provider configured."


def test_drive_documents_reach_prompt(context: AppContext) -> None:
    user = context.sessions.find_or_create_user("dev@example.com")
    context.store.upsert_drive_grant(
        StoredDriveGrant(user.id, context.codec.encode("drive-token"), None, None, "dev@example.com", None, "now")
    )
    context.store.upsert_drive_folder(user.id, "folder-1", "Design Docs", "RFCs under review")
    context.services_for_user(user.id).briefs.generate(now=NOW)
    prompt = context.clients.ai_provider.calls[0][1]
    assert "Proposal text" in prompt
    assert "RFCs under review" in prompt


def test_latest_and_history(context: AppContext) -> None:
    user_id = _connected_user(context)
    briefs = context.services_for_user(user_id).briefs
    assert briefs.latest(now=NOW)["brief"] is None
    brief, _cached = briefs.generate(now=NOW)
    latest = briefs.latest(now=NOW)
    assert latest["brief"] == brief
    assert latest["cached"] is True
    history = briefs.history()
    assert [entry["date"] for entry in history] == ["2026-01-15"]
    assert history[0]["generatedBy"] == "user"


def test_prepare_email_reply(context: AppContext) -> None:
    user_id = _connected_user(context)
    context.clients.ai_provider.responses["email_reply"] = "Sounds good, 3pm works."
    action = context.services_for_user(user_id).actions.prepare_action("email_reply", "m1", "email-1")
    assert action["status"] == "ready"
    assert action["id"] == "email_reply-m1"
    assert action["briefItemId"] == "email-1"
    assert action["title"] == "Reply to: Deploy window"
    assert action["draftContent"] == "Sounds good, 3pm works."
    assert "From: Alice <alice@example.com>" in action["originalContent"]


def test_prepare_pr_nudge_uses_brief_context(context: AppContext) -> None:
    user = context.sessions.find_or_create_user("dev@example.com")
    brief = {"myPrsWaiting": [{**REVIEW_ITEM, "title": "Add caching", "context": "Waiting 3 days"}]}
    action = context.services_for_user(user.id).actions.prepare_action(
        "pr_nudge", "4", brief_context=brief, additional_data={"repo": "acme/api", "reviewers": ["bob"]}
    )
    assert action["status"] == "ready"
    assert action["title"] == "Nudge reviewers on acme/api#4"
    assert action["originalContent"].startswith("acme/api#4: Add caching")
    prompt = context.clients.ai_provider.calls[-1][1]
    assert "Reviewers: bob" in prompt


def test_prepare_action_errors(context: AppContext) -> None:
    """Summary: Verify invalid input raises while provider failures return an error draft.

    Importance: The dashboard shows failed drafts inline instead of as request errors.
    Alternatives: Return HTTP errors for every failure.
    """

    user = context.sessions.find_or_create_user("dev@example.com")
    actions = context.services_for_user(user.id).actions
    with pytest.raises(ValueError, match="Invalid action type"):
        actions.prepare_action("send_email", "1")
    with pytest.raises(ValueError, match="Missing required fields"):
        actions.prepare_action("pr_nudge", None)

    action = actions.prepare_action("meeting_prep", "event-1")
    assert action["status"] == "error"
    assert action["error"] == "Email and calendar are not connected"
    assert action["draftContent"] == ""


SUGGESTION = {
    "id": "s-pr-4",
    "title": "Review Fix login",
    "reason": "Bob has been waiting two days",
    "urgency": "high",
    "source": "github",
    "sourceId": "4",
    "actions": [
        {"label": "Nudge", "action": {"type": "draft_pr_nudge", "sourceId": "4", "source": "github"}, "variant": "primary"}
    ],
}


def test_suggestions_validate_and_limit(context: AppContext) -> None:
    """Summary: Verify model suggestions are validated, salvaged, and capped.

    Importance: The dashboard renders suggestion cards directly from this list.
    Alternatives: Trust the model to follow the schema.
    """

    user = context.sessions.find_or_create_user("dev@example.com")
    briefs = context.services_for_user(user.id).briefs
    partial = {"id": "s-mail", "title": "Reply to Carol", "reason": "Budget due", "source": "email", "actions": "none"}
    unusable = {"id": "s-bad", "title": "No reason", "source": "jira"}
    extra = {**SUGGESTION, "id": "s-extra", "urgency": "low"}
    context.clients.ai_provider.responses["brief_suggestions"] = json.dumps(
        {"suggestions": [SUGGESTION, partial, unusable, extra]}
    )

    brief = {"summary": "Busy day", "prsToReview": [REVIEW_ITEM], "meetings": [{"id": "m1", "time": "10:00", "title": "Standup"}]}
    suggestions = briefs.suggest(brief, limit=2)
    assert [item["id"] for item in suggestions] == ["s-pr-4", "s-mail"]
    assert suggestions[0]["actions"][0]["action"]["type"] == "draft_pr_nudge"
    assert "subtitle" not in suggestions[0]

    purpose, prompt = context.clients.ai_provider.calls[-1]
    assert purpose == "brief_suggestions"
    assert "PRs TO REVIEW:\n- [4] Fix login | Priority: high | Review requested by Bob" in prompt
    assert "- [m1] 10:00: Standup (0 attendees)" in prompt


def test_suggestions_edge_cases(context: AppContext, monkeypatch: pytest.MonkeyPatch) -> None:
    user = context.sessions.find_or_create_user("dev@example.com")
    briefs = context.services_for_user(user.id).briefs
    provider = context.clients.ai_provider

    with pytest.raises(ValueError, match="Brief is required"):
        briefs.suggest(None)
    assert briefs.suggest({"prsToReview": [], "alerts": []}) == []
    assert provider.calls == []

    provider.responses["brief_suggestions"] = "Nothing stands out today."
    assert briefs.suggest({"summary": "Quiet day"}) == []
    provider.responses["brief_suggestions"] = json.dumps({"suggestions": "none"})
    assert briefs.suggest({"summary": "Quiet day"}) == []

    def unavailable(prompt: str, purpose: str, system: str | None = None) -> tuple[str, int]:
        raise RuntimeError("provider down")

    monkeypatch.setattr(provider, "generate_text", unavailable)
    with pytest.raises(RuntimeError, match="Failed to generate suggestions"):
        briefs.suggest({"summary": "Quiet day"})
