"""Summary: Google Drive OAuth and file access client.

Importance: Brings recently edited documents from watched folders into daily briefs.
Alternatives: Use google-api-python-client.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from workintel.config import AppConfig
from workintel.oauth import (
    OAuthTokenResult,
    bearer,
    build_url,
    get_json,
    get_text,
    post_form,
    send_request,
)


logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]
CALLBACK_PATH = "/api/auth/google-drive/callback"

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
GOOGLE_DOC = "application/vnd.google-apps.document"
GOOGLE_SHEET = "application/vnd.google-apps.spreadsheet"
READABLE_MIME_TYPES = [GOOGLE_DOC, GOOGLE_SHEET, "text/plain", "text/markdown", "application/pdf"]
MAX_CONTENT_CHARS = 50000
TRUNCATION_MARKER = "\n\n[Content truncated...]"

_DRIVE_ID = re.compile(r"^[a-zA-Z0-9_-]+$")


def sanitize_drive_id(drive_id: str) -> str:
    """Summary: Reject ids that could alter a Drive search query.

    Importance: Drive ids are interpolated into ``q`` expressions.
    Alternatives: Escape quotes instead of rejecting.
    """

    if not _DRIVE_ID.match(drive_id or ""):
        raise ValueError(f"Invalid Drive ID: {drive_id}")
    return drive_id


def truncate_content(content: str, max_length: int = MAX_CONTENT_CHARS) -> str:
    if len(content) <= max_length:
        return content
    return content[:max_length] + TRUNCATION_MARKER


class GoogleDriveClient:
    """Summary: OAuth and Drive v3 calls for one application.

    Importance: Access tokens are passed in so the caller owns refresh and storage.
    Alternatives: Let the client read grants from the database.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def build_auth_url(self, state: str) -> str:
        params = {
            "client_id": self._config.google_client_id,
            "redirect_uri": self._config.redirect_uri(CALLBACK_PATH),
            "response_type": "code",
            "scope": " ".join(DRIVE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return build_url(AUTHORIZE_URL, params)

    def exchange_code(self, code: str) -> OAuthTokenResult:
        self._ensure_credentials()
        payload = post_form(
            TOKEN_URL,
            {
                "client_id": self._config.google_client_id,
                "client_secret": self._config.google_client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self._config.redirect_uri(CALLBACK_PATH),
            },
        )
        return OAuthTokenResult.from_response(payload)

    def refresh(self, refresh_token: str) -> OAuthTokenResult:
        self._ensure_credentials()
        payload = post_form(
            TOKEN_URL,
            {
                "client_id": self._config.google_client_id,
                "client_secret": self._config.google_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        return OAuthTokenResult.from_response(payload)

    def userinfo(self, access_token: str) -> dict[str, Any]:
        return get_json(USERINFO_URL, headers=bearer(access_token))

    def revoke(self, access_token: str) -> None:
        try:
            send_request("POST", build_url(REVOKE_URL, {"token": access_token}))
        except RuntimeError as exc:
            logger.warning("Google token revoke failed: %s", exc)

    def list_folders(self, access_token: str, parent_id: str | None = None) -> list[dict[str, Any]]:
        parent = sanitize_drive_id(parent_id) if parent_id else "root"
        params = {
            "q": f"'{parent}' in parents and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false",
            "fields": "files(id, name, mimeType, modifiedTime, webViewLink)",
            "orderBy": "name",
            "pageSize": "100",
        }
        payload = get_json(build_url(f"{DRIVE_API}/files", params), headers=bearer(access_token))
        return payload.get("files", [])

    def list_recent_files(
        self,
        access_token: str,
        folder_id: str,
        limit: int = 20,
        modified_after: datetime | None = None,
    ) -> list[dict[str, Any]]:
        mime_filter = " or ".join(f"mimeType = '{mime}'" for mime in READABLE_MIME_TYPES)
        query = f"'{sanitize_drive_id(folder_id)}' in parents and trashed = false and ({mime_filter})"
        if modified_after is not None:
            query += f" and modifiedTime > '{modified_after.isoformat()}'"
        params = {
            "q": query,
            "fields": "files(id, name, mimeType, modifiedTime, webViewLink, size)",
            "orderBy": "modifiedTime desc",
            "pageSize": str(limit),
        }
        payload = get_json(build_url(f"{DRIVE_API}/files", params), headers=bearer(access_token))
        return payload.get("files", [])

    def read_file(self, access_token: str, file: dict[str, Any]) -> str:
        """Summary: Download a readable file as text.

        Importance: Docs and Sheets must be exported; other types download directly.
        Alternatives: Request the Drive full-text index instead.
        """

        file_id = sanitize_drive_id(file["id"])
        mime_type = file.get("mimeType")
        if mime_type == GOOGLE_DOC:
            url = build_url(f"{DRIVE_API}/files/{file_id}/export", {"mimeType": "text/plain"})
        elif mime_type == GOOGLE_SHEET:
            url = build_url(f"{DRIVE_API}/files/{file_id}/export", {"mimeType": "text/csv"})
        else:
            url = build_url(f"{DRIVE_API}/files/{file_id}", {"alt": "media"})
        try:
            content = get_text(url, headers=bearer(access_token))
        except RuntimeError as exc:
            logger.error("Failed to read Drive file %s: %s", file.get("name"), exc)
            return f"[Error reading file: {file.get('name')}]"
        return truncate_content(content)

    def _ensure_credentials(self) -> None:
        if not (self._config.google_client_id and self._config.google_client_secret):
            raise ValueError("Missing OAuth client credentials for google drive")
