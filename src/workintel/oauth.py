"""Summary: OAuth and HTTP helper utilities shared by provider integrations.

Importance: Performs token exchanges and provider API calls without extra dependencies.
Alternatives: Use provider SDKs or an HTTP client library for each integration.
"""

from __future__ import annotations

import json
import secrets
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any


STATE_TTL = timedelta(minutes=10)
REFRESH_BUFFER = timedelta(minutes=5)


class HttpError(RuntimeError):
    """Summary: Raised when a provider responds with a non-success status.

    Importance: Keeps the status code available for retry and rate-limit decisions.
    Alternatives: Return status codes alongside payloads.
    """

    def __init__(self, status: int, message: str, headers: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.headers = headers or {}


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: dict[str, str]
    body: Any


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Normalized OAuth token response data.

    Importance: Provides a consistent token representation for storage and refresh logic.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_at: str | None
    token_type: str | None
    scope: str | None
    raw: dict[str, Any]

    @staticmethod
    def from_response(payload: dict[str, Any]) -> "OAuthTokenResult":
        """Summary: Build an OAuthTokenResult from a provider payload.

        Importance: Normalizes expiry and optional fields across providers.
        Alternatives: Use provider-specific token response classes.
        """

        if "access_token" not in payload:
            raise RuntimeError("Token response did not include an access token")
        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)):
            expires_at = (datetime.now(timezone.utc) + timedelta(seconds=expires_in)).isoformat()
        return OAuthTokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            token_type=payload.get("token_type"),
            scope=payload.get("scope"),
            raw=payload,
        )


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use server-side session storage with pre-generated tokens.
    """

    return secrets.token_urlsafe(24)


def state_expiry(now: datetime | None = None) -> str:
    return ((now or datetime.now(timezone.utc)) + STATE_TTL).isoformat()


def is_expired(timestamp: str | None, now: datetime | None = None) -> bool:
    if not timestamp:
        return True
    return parse_timestamp(timestamp) <= (now or datetime.now(timezone.utc))


def needs_refresh(expires_at: str | None, now: datetime | None = None) -> bool:
    """Summary: Decide whether an access token should be refreshed.

    Importance: Refreshes tokens expiring within five minutes to avoid mid-request expiry.
    Alternatives: Refresh only after a 401 from the provider.
    """

    if not expires_at:
        return False
    current = now or datetime.now(timezone.utc)
    return parse_timestamp(expires_at) - current <= REFRESH_BUFFER


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_url(base: str, params: dict[str, Any]) -> str:
    return f"{base}?{urllib.parse.urlencode(params)}"


def send_request(
    method: str,
    url: str,
    payload: dict[str, Any] | None = None,
    form: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
    timeout: int = 15,
    decode_json: bool = True,
) -> HttpResponse:
    """Summary: Send an HTTP request and decode a JSON (or text) body.

    Importance: One code path for every provider call keeps error handling uniform.
    Alternatives: Use requests or httpx.
    """

    request_headers = {"Accept": "application/json", **(headers or {})}
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
        request_headers["Content-Type"] = "application/json"
    elif form is not None:
        data = urllib.parse.urlencode(form).encode("utf-8")
        request_headers["Content-Type"] = "application/x-www-form-urlencoded"
    request = urllib.request.Request(url, data=data, headers=request_headers, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8", errors="replace")
            status = response.status
            response_headers = {key.lower(): value for key, value in response.headers.items()}
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="replace")
        error_headers = {key.lower(): value for key, value in (exc.headers or {}).items()}
        raise HttpError(
            exc.code, f"{method} {url} failed ({exc.code}): {error_body or exc.reason}", error_headers
        ) from exc
    except urllib.error.URLError as exc:
        raise RuntimeError(f"{method} {url} failed: {exc.reason}") from exc
    body = _decode_body(raw) if decode_json else raw
    return HttpResponse(status=status, headers=response_headers, body=body)


def get_json(url: str, headers: dict[str, str] | None = None) -> Any:
    return send_request("GET", url, headers=headers).body


def get_text(url: str, headers: dict[str, str] | None = None) -> str:
    return send_request("GET", url, headers=headers, decode_json=False).body


def post_json(url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> Any:
    return send_request("POST", url, payload=payload, headers=headers).body


def post_form(url: str, form: dict[str, str], headers: dict[str, str] | None = None) -> Any:
    return send_request("POST", url, form=form, headers=headers).body


def delete(url: str, headers: dict[str, str] | None = None) -> Any:
    return send_request("DELETE", url, headers=headers).body


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _decode_body(raw: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw
