"""Summary: Nylas client for Google sign-in, email, and calendar reads.

Importance: Provides the login flow and the email and calendar sources for daily briefs.
Alternatives: Call the Gmail and Google Calendar APIs directly.
"""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from workintel.config import AppConfig
from workintel.oauth import bearer, build_url, delete, get_json, post_json


logger = logging.getLogger(__name__)

NYLAS_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]
CALLBACK_PATH = "/api/auth/nylas/callback"


@dataclass(frozen=True)
class NylasGrant:
    grant_id: str
    email: str
    provider: str


class NylasClient:
    """Summary: Thin wrapper over the Nylas v3 REST API.

    Importance: Keeps grant management and data reads behind one object that tests can replace.
    Alternatives: Use the Nylas Python SDK.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def build_auth_url(self, state: str) -> str:
        params = {
            "client_id": self._config.nylas_client_id,
            "redirect_uri": self._config.redirect_uri(CALLBACK_PATH),
            "response_type": "code",
            "access_type": "offline",
            "provider": "google",
            "scope": " ".join(NYLAS_SCOPES),
            "state": state,
        }
        return build_url(f"{self._config.nylas_api_uri}/v3/connect/auth", params)

    def exchange_code(self, code: str) -> NylasGrant:
        """Summary: Exchange an authorization code for a grant and look up its email.

        Importance: Completes the login flow with the identity needed for the user record.
        Alternatives: Trust the email returned by the token endpoint alone.
        """

        if not (self._config.nylas_client_id and self._config.nylas_api_key):
            raise ValueError("Missing Nylas client credentials")
        token = post_json(
            f"{self._config.nylas_api_uri}/v3/connect/token",
            {
                "client_id": self._config.nylas_client_id,
                "client_secret": self._config.nylas_api_key,
                "redirect_uri": self._config.redirect_uri(CALLBACK_PATH),
                "code": code,
                "grant_type": "authorization_code",
                "code_verifier": "nylas",
            },
        )
        grant_id = token.get("grant_id")
        if not grant_id:
            raise RuntimeError("Nylas token response did not include a grant id")
        grant = get_json(self._grant_url(grant_id), headers=self._headers())
        data = grant.get("data", grant)
        email = data.get("email") or token.get("email")
        if not email:
            raise RuntimeError("Nylas grant has no email address")
        return NylasGrant(grant_id=grant_id, email=email, provider=data.get("provider", "google"))

    def revoke_grant(self, grant_id: str) -> None:
        delete(self._grant_url(grant_id), headers=self._headers())

    def list_messages(
        self,
        grant_id: str,
        limit: int = 20,
        unread: bool | None = None,
        received_after: datetime | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if unread is not None:
            params["unread"] = str(unread).lower()
        if received_after is not None:
            params["received_after"] = int(received_after.timestamp())
        payload = get_json(
            build_url(f"{self._grant_url(grant_id)}/messages", params), headers=self._headers()
        )
        return [_normalize_message(item) for item in payload.get("data", [])]

    def list_events(self, grant_id: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        params = {
            "calendar_id": "primary",
            "start": str(int(start.timestamp())),
            "end": str(int(end.timestamp())),
            "limit": 100,
        }
        payload = get_json(
            build_url(f"{self._grant_url(grant_id)}/events", params), headers=self._headers()
        )
        return [_normalize_event(item) for item in payload.get("data", [])]

    def get_message(self, grant_id: str, message_id: str) -> dict[str, Any]:
        url = f"{self._grant_url(grant_id)}/messages/{urllib.parse.quote(message_id, safe='')}"
        payload = get_json(url, headers=self._headers())
        return _normalize_message(payload.get("data", payload))

    def get_event(self, grant_id: str, event_id: str) -> dict[str, Any]:
        url = build_url(
            f"{self._grant_url(grant_id)}/events/{urllib.parse.quote(event_id, safe='')}",
            {"calendar_id": "primary"},
        )
        payload = get_json(url, headers=self._headers())
        return _normalize_event(payload.get("data", payload))

    def _grant_url(self, grant_id: str) -> str:
        return f"{self._config.nylas_api_uri}/v3/grants/{urllib.parse.quote(grant_id, safe='')}"

    def _headers(self) -> dict[str, str]:
        return bearer(self._config.nylas_api_key)


def _normalize_message(item: dict[str, Any]) -> dict[str, Any]:
    senders = item.get("from") or [{}]
    sender = senders[0]
    sender_text = sender.get("email", "")
    if sender.get("name"):
        sender_text = f"{sender['name']} <{sender_text}>"
    received = item.get("date")
    return {
        "id": item.get("id", ""),
        "from": sender_text,
        "subject": item.get("subject") or "",
        "date": _from_epoch(received) if isinstance(received, (int, float)) else received,
        "unread": bool(item.get("unread")),
        "snippet": item.get("snippet") or "",
        "body": item.get("body") or "",
    }


def _normalize_event(item: dict[str, Any]) -> dict[str, Any]:
    when = item.get("when") or {}
    start = when.get("start_time")
    end = when.get("end_time")
    if start is None and when.get("date"):
        start = end = when["date"]
    conferencing = (item.get("conferencing") or {}).get("details") or {}
    return {
        "id": item.get("id", ""),
        "title": item.get("title") or "",
        "startTime": _from_epoch(start) if isinstance(start, (int, float)) else start,
        "endTime": _from_epoch(end) if isinstance(end, (int, float)) else end,
        "attendees": [
            {"email": participant.get("email"), "name": participant.get("name")}
            for participant in item.get("participants", [])
        ],
        "description": item.get("description") or "",
        "recurring": bool(item.get("recurrence")),
        "htmlLink": item.get("html_link"),
        "conferenceData": {"url": conferencing.get("url")} if conferencing.get("url") else None,
    }


def _from_epoch(value: float) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
