"""Summary: Tests for configuration loading.

Importance: Ensures defaults, .env, and environment overrides behave correctly.
Alternatives: Validate configuration manually during runtime.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from workintel.config import DEFAULTS_PATH, AppConfig, load_defaults, load_dotenv


def test_load_defaults_reads_json(tmp_path: Path) -> None:
    """Summary: Verify defaults are parsed from JSON.

    Importance: Confirms the config file is the source of truth for variables.
    Alternatives: Hardcode defaults in the test.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text("{\"db_path\": \"test.db\"}", encoding="utf-8")
    assert load_defaults(defaults_path)["db_path"] == "test.db"


def test_load_defaults_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_defaults(tmp_path / "missing.json")


def test_load_dotenv_does_not_override_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Ensure .env fills gaps without overriding the real environment.

    Importance: Deployed environment variables must win over a stray local file.
    Alternatives: Let .env always take precedence.
    """

    env_path = tmp_path / ".env"
    env_path.write_text(
        "# comment\nWORK_INTEL_AI_PROVIDER=anthropic\nCRON_SECRET=\"from-file\"\n", encoding="utf-8"
    )
    monkeypatch.delenv("WORK_INTEL_AI_PROVIDER", raising=False)
    monkeypatch.setenv("CRON_SECRET", "from-env")
    load_dotenv(env_path)
    assert os.getenv("WORK_INTEL_AI_PROVIDER") == "anthropic"
    assert os.getenv("CRON_SECRET") == "from-env"
    monkeypatch.delenv("WORK_INTEL_AI_PROVIDER")


def test_app_config_uses_shipped_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify AppConfig honors defaults when env is absent.

    Importance: A fresh checkout must start with the mock AI and mock email providers.
    Alternatives: Require every variable to be set explicitly.
    """

    monkeypatch.chdir(tmp_path)
    for key in json.loads(DEFAULTS_PATH.read_text(encoding="utf-8")):
        monkeypatch.delenv(f"WORK_INTEL_{key.upper()}", raising=False)
    monkeypatch.delenv("CRON_SECRET", raising=False)
    monkeypatch.delenv("GITHUB_APP_ID", raising=False)
    config = AppConfig.from_env()
    assert config.ai_provider == "mock"
    assert config.email_provider == "mock"
    assert config.session_ttl_days == 30
    assert config.invite_ttl_days == 7
    assert config.secure_cookies is False
    assert config.cron_secret == ""
    assert config.github_app_configured is False


def test_app_config_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify environment variables override defaults.

    Importance: Deployments configure secrets and URLs through the environment.
    Alternatives: Edit defaults.json per environment.
    """

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WORK_INTEL_BASE_URL", "https://intel.example.com/")
    monkeypatch.setenv("WORK_INTEL_SECURE_COOKIES", "true")
    monkeypatch.setenv("WORK_INTEL_SESSION_TTL_DAYS", "14")
    monkeypatch.setenv("GITHUB_APP_ID", "123")
    monkeypatch.setenv("GITHUB_APP_PRIVATE_KEY", "a2V5")
    monkeypatch.setenv("GITHUB_APP_SLUG", "work-intel")
    config = AppConfig.from_env()
    assert config.base_url == "https://intel.example.com"
    assert config.redirect_uri("/api/auth/nylas/callback") == "https://intel.example.com/api/auth/nylas/callback"
    assert config.secure_cookies is True
    assert config.session_ttl_days == 14
    assert config.github_app_configured is True
