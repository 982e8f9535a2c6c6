"""Summary: Domain model dataclasses for Work Intel.

Importance: Defines the core entities shared across services and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


TEAM_ROLES = ("admin", "member")
TASK_PRIORITIES = ("critical", "high", "medium", "low")
TASK_STATUSES = ("pending", "in_progress", "completed")


@dataclass(frozen=True)
class User:
    """Summary: Represents a person who signs in to Work Intel.

    Importance: Owns sessions, briefs, tasks, and team memberships.
    Alternatives: Key everything by email address without a user record.
    """

    email: str
    display_name: str


@dataclass(frozen=True)
class Task:
    """Summary: Represents a personal to-do item.

    Importance: Turns brief action items into trackable work.
    Alternatives: Keep action items only inside the stored brief JSON.
    """

    title: str
    description: str = ""
    priority: str = "medium"
    status: str = "pending"
    source: str | None = None
    source_id: str | None = None
    url: str | None = None
    due_date: str | None = None


@dataclass(frozen=True)
class ToolData:
    """Summary: Raw per-source payloads gathered for a daily brief.

    Importance: Lets collection and condensing evolve independently.
    Alternatives: Pass provider responses straight into the prompt builder.
    """

    github: dict[str, Any] | None = None
    jira: dict[str, Any] | None = None
    gmail: dict[str, Any] | None = None
    calendar: dict[str, Any] | None = None
    drive: dict[str, Any] | None = None

    def connected_sources(self) -> list[str]:
        return [
            name
            for name in ("github", "jira", "gmail", "calendar", "drive")
            if getattr(self, name) is not None
        ]


@dataclass(frozen=True)
class SendEmailResult:
    """Summary: Outcome of a single outbound email.

    Importance: Lets batch senders report partial failures without raising.
    Alternatives: Raise on the first failed delivery.
    """

    success: bool
    email: str
    error: str | None = None


@dataclass(frozen=True)
class AiRequest:
    """Summary: Records an AI request for audit and traceability.

    Importance: Provides visibility into prompts and provider usage.
    Alternatives: Log requests only in observability logs.
    """

    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: datetime


@dataclass(frozen=True)
class AiResponse:
    """Summary: Records an AI response paired to a request.

    Importance: Enables audit trails and future tuning based on outputs.
    Alternatives: Store only final outputs in the brief or report records.
    """

    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int


@dataclass(frozen=True)
class TeamEmailSummary:
    """Summary: Per-team result of a weekly report email run.

    Importance: Feeds the cron response with sent and failed counts.
    Alternatives: Log delivery results without returning them.
    """

    team_id: int
    team_name: str
    total_members: int
    results: list[SendEmailResult] = field(default_factory=list)

    @property
    def emails_sent(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def emails_failed(self) -> int:
        return sum(1 for result in self.results if not result.success)
