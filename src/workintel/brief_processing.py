"""Summary: Condense raw tool data for the LLM and normalize the brief it returns.

Importance: Keeps prompts small and guarantees the stored brief has a predictable shape.
Alternatives: Send raw provider payloads and trust the model output.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from workintel.ai import extract_json, parse_model_json
from workintel.models import ToolData
from workintel.oauth import parse_timestamp


logger = logging.getLogger(__name__)

MAX_EMAILS = 15
MAX_PREVIEW_CHARS = 500
MAX_SNIPPET_CHARS = 100
MAX_PR_DESCRIPTION_CHARS = 300
MAX_EVENT_DESCRIPTION_CHARS = 300
MAX_JIRA_DESCRIPTION_CHARS = 300
MAX_DRIVE_CONTENT_CHARS = 5000
MAX_TOP_FOCUS = 3
MAX_SUMMARY_CHARS = 500

AUTOMATED_SENDERS = ("noreply", "no-reply", "donotreply", "notifications", "notification", "mailer-daemon")
AUTOMATED_TYPE_PATTERNS = (
    ("sentry", re.compile(r"sentry", re.IGNORECASE)),
    ("aws", re.compile(r"\baws\b|amazon", re.IGNORECASE)),
    ("github", re.compile(r"github", re.IGNORECASE)),
    ("jira", re.compile(r"jira|atlassian", re.IGNORECASE)),
    ("calendar", re.compile(r"calendar|invite", re.IGNORECASE)),
    ("marketing", re.compile(r"newsletter|marketing|promo|sale", re.IGNORECASE)),
)

DEFAULT_SUMMARY = "Daily brief generated."
FALLBACK_SUMMARY = "Brief generation failed. Please check logs and connection status."

BRIEF_SYSTEM_PROMPT = """You are an executive assistant for a senior software engineer. Analyze their work data and produce a prioritized daily brief.

Guidelines:
1. Meetings: what is on the calendar today and what prep is needed.
2. PRs to review: PRs assigned for review that are not yet reviewed.
3. My PRs waiting: the user's PRs waiting on others.
4. Emails to act on: skip marketing, flag AWS only for outages and Sentry only for production errors.
5. Jira tasks: in progress, blocked, or due soon.
6. Top focus: the three most important things today.

Preserve any "url" fields from the context in your output.

Return ONLY JSON with keys: generatedAt, topFocus[{rank,title,reason,relatedItemId}],
meetings[{id,title,time,attendees,prepNeeded,url}], prsToReview, myPrsWaiting, emailsToActOn, jiraTasks
(items: {id,source,sourceId,title,summary,priority,actionNeeded,actionType,deadline,context,url}),
alerts[{type,title,description,sourceId}], summary."""


Priority = Literal["critical", "high", "medium", "low"]


class BriefItem(BaseModel):
    """Summary: One actionable item in a brief section.

    Importance: Shared shape for PRs, emails, and Jira tasks.
    Alternatives: Use a separate model per source.
    """

    id: str
    source: Literal["email", "calendar", "github", "jira"]
    sourceId: str
    title: str
    summary: str = Field(max_length=200)
    priority: Priority
    actionNeeded: bool
    actionType: Optional[Literal["respond", "review", "attend", "complete", "investigate"]] = None
    deadline: Optional[str] = None
    context: Optional[str] = Field(default=None, max_length=300)
    url: Optional[str] = None


class FocusItem(BaseModel):
    rank: int
    title: str
    reason: str
    relatedItemId: str


class MeetingItem(BaseModel):
    id: str
    title: str
    time: str
    attendees: list[str]
    prepNeeded: Optional[str] = None
    relatedItems: Optional[list[str]] = None
    url: Optional[str] = None


class BriefAlert(BaseModel):
    type: Literal["outage", "production_error", "deadline", "blocker"]
    title: str
    description: str
    sourceId: str


BRIEF_SECTIONS = (
    ("topFocus", FocusItem),
    ("meetings", MeetingItem),
    ("prsToReview", BriefItem),
    ("myPrsWaiting", BriefItem),
    ("emailsToActOn", BriefItem),
    ("jiraTasks", BriefItem),
    ("alerts", BriefAlert),
)


def build_condensed_context(tool_data: ToolData, now: datetime | None = None) -> dict[str, Any]:
    """Summary: Reduce collected tool data to the fields the brief prompt needs.

    Importance: Bounded context keeps latency and token cost predictable.
    Alternatives: Let the model see every field.
    """

    current = now or datetime.now(timezone.utc)
    return {
        "emails": process_emails(tool_data.gmail, current),
        "prs": process_pull_requests(tool_data.github),
        "calendarEvents": process_calendar_events(tool_data.calendar),
        "jiraTasks": process_jira_tasks(tool_data.jira),
        "driveDocuments": process_drive_documents(tool_data.drive),
        "generatedAt": current.isoformat(),
    }


def process_emails(gmail: dict[str, Any] | None, now: datetime) -> list[dict[str, Any]]:
    if not gmail:
        return []
    cutoff = now - timedelta(hours=24)
    seen: set[str] = set()
    recent_unread = []
    for email in [*gmail.get("unreadEmails", []), *gmail.get("recentEmails", [])]:
        if email.get("id") in seen:
            continue
        seen.add(email.get("id"))
        if not email.get("unread") or not email.get("date"):
            continue
        if parse_timestamp(email["date"]) >= cutoff:
            recent_unread.append(email)

    processed = []
    for email in recent_unread[:MAX_EMAILS]:
        subject = email.get("subject") or "(No Subject)"
        body_preview = truncate(clean_html(email.get("body") or email.get("snippet") or ""), MAX_PREVIEW_CHARS)
        is_automated, automated_type = detect_automation(email.get("from", ""), subject)
        processed.append(
            {
                "id": email["id"],
                "from": email.get("from", ""),
                "subject": subject,
                "receivedAt": parse_timestamp(email["date"]).isoformat(),
                "snippet": truncate(email.get("snippet") or body_preview, MAX_SNIPPET_CHARS),
                "bodyPreview": body_preview,
                "isAutomated": is_automated,
                "automatedType": automated_type,
            }
        )
    return processed


def process_pull_requests(github: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not github:
        return []
    current_user = (github.get("currentUser") or {}).get("login")
    candidates = [(pr, True) for pr in github.get("reviewRequests", [])]
    candidates += [(pr, False) for pr in github.get("pullRequests", [])]

    seen: set[str] = set()
    processed = []
    for pr, review_assigned in candidates:
        key = f"{pr.get('id')}-{pr.get('number')}"
        if key in seen:
            continue
        seen.add(key)
        author = (pr.get("user") or {}).get("login") or "unknown"
        repository = pr.get("repository") or {}
        processed.append(
            {
                "id": str(pr.get("id")),
                "number": pr.get("number"),
                "title": pr.get("title") or "(No Title)",
                "author": author,
                "repo": repository.get("full_name") or repository.get("name") or "unknown",
                "createdAt": pr.get("created_at"),
                "reviewStatus": "pending",
                "isMyPR": bool(current_user) and author == current_user,
                "isReviewAssigned": review_assigned,
                "description": truncate(clean_html(pr.get("body") or ""), MAX_PR_DESCRIPTION_CHARS),
                "url": pr.get("html_url"),
            }
        )
    return processed


def process_calendar_events(calendar: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not calendar:
        return []
    seen: set[str] = set()
    processed = []
    for event in [*calendar.get("todayEvents", []), *calendar.get("tomorrowEvents", [])]:
        if event.get("id") in seen:
            continue
        seen.add(event.get("id"))
        attendees = [
            attendee.get("email") or attendee.get("name")
            for attendee in event.get("attendees") or []
            if attendee.get("email") or attendee.get("name")
        ]
        processed.append(
            {
                "id": event.get("id"),
                "title": event.get("title") or "(No Title)",
                "startTime": event.get("startTime"),
                "endTime": event.get("endTime"),
                "attendees": attendees,
                "description": truncate(clean_html(event.get("description") or ""), MAX_EVENT_DESCRIPTION_CHARS),
                "isRecurring": bool(event.get("recurring")),
                "meetingLink": (event.get("conferenceData") or {}).get("url") or event.get("htmlLink"),
            }
        )
    return processed


def process_jira_tasks(jira: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not jira:
        return []
    return [
        {
            "id": issue.get("id"),
            "key": issue.get("key"),
            "title": issue.get("summary") or "(No Title)",
            "status": issue.get("status") or "Unknown",
            "priority": issue.get("priority") or "Medium",
            "assignee": issue.get("assignee") or "Unassigned",
            "dueDate": issue.get("duedate"),
            "description": truncate(clean_html(extract_jira_text(issue.get("description"))), MAX_JIRA_DESCRIPTION_CHARS),
            "labels": issue.get("labels") or [],
            "url": issue.get("url"),
        }
        for issue in jira.get("assignedIssues", [])
    ]


def process_drive_documents(drive: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not drive:
        return []
    return [
        {
            "folder": folder.get("name"),
            "purpose": folder.get("purpose"),
            "name": file.get("name"),
            "modifiedTime": file.get("modifiedTime"),
            "content": truncate_lines(file.get("content") or "", MAX_DRIVE_CONTENT_CHARS),
            "url": file.get("webViewLink"),
        }
        for folder in drive.get("folders", [])
        for file in folder.get("files", [])
    ]


def detect_automation(sender: str, subject: str) -> tuple[bool, str | None]:
    combined = f"{sender} {subject}".lower()
    is_automated = any(marker in combined for marker in AUTOMATED_SENDERS)
    automated_type = next(
        (name for name, pattern in AUTOMATED_TYPE_PATTERNS if pattern.search(combined)), None
    )
    return is_automated, automated_type


_STYLE_BLOCK = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_SCRIPT_BLOCK = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def clean_html(value: str) -> str:
    value = _STYLE_BLOCK.sub(" ", value)
    value = _SCRIPT_BLOCK.sub(" ", value)
    value = _TAG.sub(" ", value)
    return _WHITESPACE.sub(" ", value).strip()


def truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3].rstrip() + "..."


def truncate_lines(content: str, max_length: int) -> str:
    """Summary: Truncate at a line break when one falls in the last fifth of the limit."""

    if len(content) <= max_length:
        return content
    head = content[:max_length]
    last_newline = head.rfind("\n")
    if last_newline > max_length * 0.8:
        head = head[:last_newline]
    return head + "\n\n[Content truncated...]"


def extract_jira_text(value: Any) -> str:
    """Summary: Flatten Atlassian document format into plain text."""

    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(extract_jira_text(item) for item in value)
    if isinstance(value, dict):
        if value.get("text"):
            return value["text"]
        if value.get("content"):
            return extract_jira_text(value["content"])
    return ""


def build_brief_prompt(context: dict[str, Any]) -> str:
    return (
        "Here is the condensed work context in JSON. Use only this data to generate the brief.\n\n"
        f"CONTEXT JSON:\n{json.dumps(context, indent=2, default=str)}\n\n"
        "Return ONLY valid JSON for BriefOutput."
    )


def parse_brief_response(text: str, now: datetime | None = None) -> dict[str, Any]:
    """Summary: Turn raw model text into a normalized brief.

    Importance: Invalid items are dropped individually so one bad entry does not sink the brief.
    Alternatives: Reject the whole response on the first schema error.
    """

    payload = parse_model_json(extract_json(text))
    if not isinstance(payload, dict):
        raise ValueError("Brief JSON must be an object")
    if _is_legacy_payload(payload):
        payload = coerce_legacy_payload(payload)
    return normalize_brief(payload, now)


def normalize_brief(payload: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    generated_at = payload.get("generatedAt")
    if not isinstance(generated_at, str) or not _is_timestamp(generated_at):
        generated_at = (now or datetime.now(timezone.utc)).isoformat()
    brief: dict[str, Any] = {"generatedAt": generated_at}
    for key, model in BRIEF_SECTIONS:
        brief[key] = _parse_items(payload.get(key), model)
    brief["topFocus"] = brief["topFocus"][:MAX_TOP_FOCUS]
    summary = payload.get("summary")
    brief["summary"] = summary[:MAX_SUMMARY_CHARS] if isinstance(summary, str) else DEFAULT_SUMMARY
    return brief


def fallback_brief(now: datetime | None = None) -> dict[str, Any]:
    brief: dict[str, Any] = {"generatedAt": (now or datetime.now(timezone.utc)).isoformat()}
    for key, _model in BRIEF_SECTIONS:
        brief[key] = []
    brief["summary"] = FALLBACK_SUMMARY
    return brief


def coerce_legacy_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Summary: Map older response layouts onto the current brief keys.

    Importance: Prompts and models drift; earlier key names still carry usable data.
    Alternatives: Treat legacy layouts as failures.
    """

    coerced = dict(payload)
    focus = payload.get("focusRecommendations")
    if isinstance(focus, list):
        coerced["topFocus"] = [
            {
                "rank": item.get("priority") if isinstance(item.get("priority"), int) else index + 1,
                "title": item.get("task") or item.get("title") or f"Focus {index + 1}",
                "reason": item.get("description") or item.get("reason") or "",
                "relatedItemId": f"focus-{index + 1}",
            }
            for index, item in enumerate(focus)
            if isinstance(item, dict)
        ]
    if payload.get("myPRsWaiting") and not payload.get("myPrsWaiting"):
        coerced["myPrsWaiting"] = payload["myPRsWaiting"]
    if not isinstance(payload.get("meetings"), list):
        coerced["meetings"] = []

    for key, source, action_type, label in (
        ("prsToReview", "github", "review", "PR"),
        ("myPrsWaiting", "github", "investigate", "PR"),
        ("emailsToActOn", "email", "respond", "Email"),
    ):
        items = coerced.get(key)
        if isinstance(items, list):
            coerced[key] = [
                _to_brief_item(item, source, action_type, f"{label} {index + 1}")
                for index, item in enumerate(items)
                if isinstance(item, dict)
            ]

    jira = payload.get("jiraTasks")
    if isinstance(jira, dict):
        jira = [*jira.get("inProgress", []), *jira.get("blocked", []), *jira.get("dueSoon", [])]
    if isinstance(jira, list):
        coerced["jiraTasks"] = [
            _to_brief_item(item, "jira", "complete", f"Jira {index + 1}")
            for index, item in enumerate(jira)
            if isinstance(item, dict)
        ]
    return coerced


DEFAULT_SUGGESTIONS = 5
MAX_SUGGESTIONS = 10

SUGGESTIONS_SYSTEM_PROMPT = """You analyze a developer's daily brief and suggest the next actions worth taking.
Reference actual items from the brief, explain why each one needs attention now, and favor items that are
time-sensitive or blocking others. Return at most {limit} suggestions.

Return ONLY valid JSON: {{"suggestions": [...]}}. Each suggestion has id, title, subtitle (optional), reason,
urgency (critical|high|medium|low), source (github|email|calendar|jira), sourceId and actions.
Each action has label, action {{type, sourceId, source, url, content, duration}}, variant
(default|primary|secondary|ghost), icon and confirmRequired. Action types: draft_email_reply, draft_pr_nudge,
draft_meeting_prep, open_url, copy_to_clipboard, dismiss, snooze."""

SuggestionSource = Literal["github", "email", "calendar", "jira"]


class SuggestionTarget(BaseModel):
    type: Literal[
        "draft_email_reply",
        "draft_pr_nudge",
        "draft_meeting_prep",
        "open_url",
        "copy_to_clipboard",
        "dismiss",
        "snooze",
    ]
    sourceId: Optional[str] = None
    source: Optional[SuggestionSource] = None
    url: Optional[str] = None
    content: Optional[str] = None
    duration: Optional[int] = None


class SuggestionAction(BaseModel):
    label: str
    action: SuggestionTarget
    variant: Optional[Literal["default", "primary", "secondary", "ghost"]] = None
    icon: Optional[str] = None
    confirmRequired: Optional[bool] = None


class Suggestion(BaseModel):
    """Summary: One proactive next step derived from the brief.

    Importance: Carries the reason and the actions the dashboard can offer for an item.
    Alternatives: Show brief items without ranking them into next steps.
    """

    id: str
    title: str
    subtitle: Optional[str] = None
    reason: str
    urgency: Priority
    source: SuggestionSource
    sourceId: str
    actions: list[SuggestionAction]


def build_suggestion_context(brief: dict[str, Any]) -> str:
    """Summary: Flatten a brief into labelled text sections for the suggestion prompt.

    Importance: Empty briefs produce empty text so no model call is made.
    Alternatives: Send the brief JSON as-is.
    """

    lines: list[str] = []
    if brief.get("summary"):
        lines.append(f"SUMMARY: {brief['summary']}")
    focus = _dict_items(brief.get("topFocus"))
    if focus:
        lines.append("\nTOP PRIORITIES:")
        lines.extend(f"{index}. {item.get('title')} - {item.get('reason')}" for index, item in enumerate(focus, 1))
    for key, label in (
        ("prsToReview", "PRs TO REVIEW"),
        ("myPrsWaiting", "MY PRs WAITING FOR REVIEW"),
        ("emailsToActOn", "EMAILS REQUIRING ACTION"),
    ):
        items = _dict_items(brief.get(key))
        if items:
            lines.append(f"\n{label}:")
            lines.extend(_suggestion_line(item, include_url=key != "emailsToActOn") for item in items)
    meetings = _dict_items(brief.get("meetings"))
    if meetings:
        lines.append("\nTODAY'S MEETINGS:")
        for meeting in meetings:
            line = (
                f"- [{meeting.get('id')}] {meeting.get('time')}: {meeting.get('title')} "
                f"({len(meeting.get('attendees') or [])} attendees)"
            )
            if meeting.get("prepNeeded"):
                line += f" | Prep: {meeting['prepNeeded']}"
            if meeting.get("url"):
                line += f" | URL: {meeting['url']}"
            lines.append(line)
    jira = _dict_items(brief.get("jiraTasks"))
    if jira:
        lines.append("\nJIRA TASKS:")
        lines.extend(_suggestion_line(task, include_url=True, include_deadline=True) for task in jira)
    alerts = _dict_items(brief.get("alerts"))
    if alerts:
        lines.append("\nALERTS:")
        lines.extend(
            f"- [{alert.get('type')}] {alert.get('title')}: {alert.get('description')}" for alert in alerts
        )
    return "\n".join(lines)


def build_suggestions_prompt(context: str) -> str:
    return f"Analyze this work brief and generate proactive suggestions:\n\n{context}\n\nReturn ONLY valid JSON."


def parse_suggestions(text: str, limit: int = DEFAULT_SUGGESTIONS) -> list[dict[str, Any]]:
    """Summary: Validate model suggestions, keeping partial items that still identify their source.

    Importance: A suggestion with a malformed action list is still worth showing.
    Alternatives: Return nothing unless every suggestion matches the schema.
    """

    try:
        payload = parse_model_json(extract_json(text))
    except ValueError as exc:
        logger.warning("Suggestion response was not JSON: %s", exc)
        return []
    raw = payload.get("suggestions") if isinstance(payload, dict) else None
    if not isinstance(raw, list):
        return []
    suggestions = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            suggestions.append(Suggestion.model_validate(item).model_dump(exclude_none=True))
        except ValidationError as exc:
            if all(item.get(field) for field in ("id", "title", "reason", "source")):
                logger.debug("Keeping partial suggestion %s: %s", item.get("id"), exc)
                suggestions.append(item)
    return suggestions[:limit]


def _to_brief_item(item: dict[str, Any], source: str, action_type: str, fallback_title: str) -> dict[str, Any]:
    source_id = (
        item.get("sourceId") or item.get("id") or item.get("key") or item.get("number")
        or item.get("subject") or fallback_title
    )
    priority = item.get("priority")
    return {
        "id": str(source_id),
        "source": source,
        "sourceId": str(source_id),
        "title": item.get("title") or item.get("subject") or item.get("summary") or fallback_title,
        "summary": item.get("summary") or item.get("reason") or item.get("description") or "",
        "priority": priority if priority in ("critical", "high", "medium", "low") else "medium",
        "actionNeeded": True,
        "actionType": action_type,
        "deadline": item.get("deadline") or item.get("dueDate") or item.get("due"),
        "context": item.get("context") or item.get("reason"),
        "url": item.get("url"),
    }


def _is_legacy_payload(payload: dict[str, Any]) -> bool:
    return (
        "focusRecommendations" in payload
        or "myPRsWaiting" in payload
        or isinstance(payload.get("jiraTasks"), dict)
    )


def _parse_items(value: Any, model: type[BaseModel]) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        try:
            items.append(model.model_validate(item).model_dump(exclude_none=True))
        except ValidationError as exc:
            logger.debug("Dropping invalid %s item: %s", model.__name__, exc)
    return items


def _is_timestamp(value: str) -> bool:
    try:
        parse_timestamp(value)
    except ValueError:
        return False
    return True


def _dict_items(value: Any) -> list[dict[str, Any]]:
    return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []


def _suggestion_line(item: dict[str, Any], include_url: bool = False, include_deadline: bool = False) -> str:
    line = f"- [{item.get('sourceId')}] {item.get('title')} | Priority: {item.get('priority')} | {item.get('summary')}"
    if include_deadline and item.get("deadline"):
        line += f" | Due: {item['deadline']}"
    if include_url and item.get("url"):
        line += f" | URL: {item['url']}"
    return line
