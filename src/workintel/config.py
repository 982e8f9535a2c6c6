"""Summary: Application configuration for Work Intel.

Importance: Centralizes environment, .env, and packaged defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


DEFAULTS_PATH = Path(__file__).with_name("defaults.json")


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and the web layer.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Read environment variables ad hoc inside each module.
    """

    db_path: str
    base_url: str
    api_host: str
    api_port: int
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    anthropic_api_key: str | None
    anthropic_model: str
    encryption_key: str
    session_ttl_days: int
    invite_ttl_days: int
    secure_cookies: bool
    cron_secret: str
    founder_email: str
    nylas_client_id: str
    nylas_api_key: str
    nylas_api_uri: str
    atlassian_client_id: str
    atlassian_client_secret: str
    google_client_id: str
    google_client_secret: str
    github_app_id: str
    github_app_private_key: str
    github_app_slug: str
    github_api_url: str
    email_provider: str
    resend_api_key: str | None
    email_from_address: str

    @staticmethod
    def from_env(defaults_path: Path | None = None) -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps every variable declared in one defaults file while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(defaults_path or DEFAULTS_PATH)
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("WORK_INTEL_DB_PATH", defaults["db_path"]),
            base_url=os.getenv("WORK_INTEL_BASE_URL", defaults["base_url"]).rstrip("/"),
            api_host=os.getenv("WORK_INTEL_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("WORK_INTEL_API_PORT", defaults["api_port"])),
            ai_provider=os.getenv("WORK_INTEL_AI_PROVIDER", defaults["ai_provider"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or defaults["anthropic_api_key"] or None,
            anthropic_model=os.getenv("ANTHROPIC_MODEL", defaults["anthropic_model"]),
            encryption_key=os.getenv("ENCRYPTION_KEY", defaults["encryption_key"]),
            session_ttl_days=int(
                os.getenv("WORK_INTEL_SESSION_TTL_DAYS", defaults["session_ttl_days"])
            ),
            invite_ttl_days=int(os.getenv("WORK_INTEL_INVITE_TTL_DAYS", defaults["invite_ttl_days"])),
            secure_cookies=_parse_bool(
                os.getenv("WORK_INTEL_SECURE_COOKIES", defaults["secure_cookies"])
            ),
            cron_secret=os.getenv("CRON_SECRET", defaults["cron_secret"]),
            founder_email=os.getenv("FOUNDER_EMAIL", defaults["founder_email"]),
            nylas_client_id=os.getenv("NYLAS_CLIENT_ID", defaults["nylas_client_id"]),
            nylas_api_key=os.getenv("NYLAS_API_KEY", defaults["nylas_api_key"]),
            nylas_api_uri=os.getenv("NYLAS_API_URI", defaults["nylas_api_uri"]).rstrip("/"),
            atlassian_client_id=os.getenv("ATLASSIAN_CLIENT_ID", defaults["atlassian_client_id"]),
            atlassian_client_secret=os.getenv(
                "ATLASSIAN_CLIENT_SECRET", defaults["atlassian_client_secret"]
            ),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID", defaults["google_client_id"]),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", defaults["google_client_secret"]),
            github_app_id=os.getenv("GITHUB_APP_ID", defaults["github_app_id"]),
            github_app_private_key=os.getenv(
                "GITHUB_APP_PRIVATE_KEY", defaults["github_app_private_key"]
            ),
            github_app_slug=os.getenv("GITHUB_APP_SLUG", defaults["github_app_slug"]),
            github_api_url=os.getenv("GITHUB_API_URL", defaults["github_api_url"]).rstrip("/"),
            email_provider=os.getenv("WORK_INTEL_EMAIL_PROVIDER", defaults["email_provider"]),
            resend_api_key=os.getenv("RESEND_API_KEY") or defaults["resend_api_key"] or None,
            email_from_address=os.getenv("EMAIL_FROM_ADDRESS", defaults["email_from_address"]),
        )

    def redirect_uri(self, path: str) -> str:
        """Summary: Build an absolute callback URL under the public base URL.

        Importance: Keeps OAuth redirect URIs consistent with what providers have registered.
        Alternatives: Configure one redirect URI variable per provider.
        """

        return f"{self.base_url}{path}"

    @property
    def github_app_configured(self) -> bool:
        return bool(self.github_app_id and self.github_app_private_key and self.github_app_slug)


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip('"'))


def _parse_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in {"1", "true", "yes", "on"}
