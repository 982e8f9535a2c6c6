"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from workintel.ai import AiProvider, AiProviderFactory
from workintel.atlassian import AtlassianClient, JiraClient
from workintel.cache import TtlCache
from workintel.config import AppConfig
from workintel.github import GitHubAppClient, GitHubClient
from workintel.google_drive import GoogleDriveClient
from workintel.mailer import EmailSender, build_email_sender
from workintel.nylas import NylasClient
from workintel.rate_limit import SlidingWindowRateLimiter
from workintel.services import (
    ActionService,
    AiAuditService,
    AiRecorder,
    BriefService,
    DriveService,
    IntegrationService,
    InviteService,
    SessionService,
    TaskService,
    TeamService,
    ToolService,
)
from workintel.sources import ToolDataCollector
from workintel.storage.sqlite_store import SqliteStore
from workintel.team_report import TeamReportService
from workintel.token_codec import TokenCodec


@dataclass(frozen=True)
class ProviderClients:
    """Summary: External provider clients shared by every request.

    Importance: Tests swap these for fakes without patching modules.
    Alternatives: Construct clients inside each service method.
    """

    nylas: NylasClient
    atlassian: AtlassianClient
    jira: JiraClient
    github_app: GitHubAppClient
    drive: GoogleDriveClient
    github_factory: Callable[[str], GitHubClient]
    email_sender: EmailSender
    ai_provider: AiProvider

    @staticmethod
    def from_config(config: AppConfig) -> "ProviderClients":
        return ProviderClients(
            nylas=NylasClient(config),
            atlassian=AtlassianClient(config),
            jira=JiraClient(),
            github_app=GitHubAppClient(config),
            drive=GoogleDriveClient(config),
            github_factory=lambda token: GitHubClient(token, config.github_api_url),
            email_sender=build_email_sender(config),
            ai_provider=AiProviderFactory(config).build(),
        )


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for building user services.

    Importance: Reuses storage, caches, and provider clients across user-bound services.
    Alternatives: Rebuild dependencies for every request.
    """

    store: SqliteStore
    config: AppConfig
    clients: ProviderClients
    codec: TokenCodec
    model_name: str
    cache: TtlCache = field(default_factory=TtlCache)
    rate_limiter: SlidingWindowRateLimiter = field(default_factory=SlidingWindowRateLimiter)

    @property
    def ai(self) -> AiRecorder:
        return AiRecorder(
            store=self.store,
            ai_provider=self.clients.ai_provider,
            provider_name=self.config.ai_provider,
            model_name=self.model_name,
        )

    @property
    def sessions(self) -> SessionService:
        return SessionService(store=self.store, config=self.config)

    def reports(self, user_id: int | None = None) -> TeamReportService:
        return TeamReportService(
            store=self.store,
            cache=self.cache,
            config=self.config,
            codec=self.codec,
            github_app=self.clients.github_app,
            github_factory=self.clients.github_factory,
            ai=self.ai,
            email_sender=self.clients.email_sender,
            user_id=user_id,
        )

    def services_for_user(self, user_id: int) -> "AppServices":
        """Summary: Build user-scoped services from shared context.

        Importance: Every service call is bound to the signed-in user.
        Alternatives: Pass the user id into every method.
        """

        ai = self.ai
        drive = DriveService(store=self.store, codec=self.codec, drive=self.clients.drive, user_id=user_id)
        collector = ToolDataCollector(
            store=self.store,
            codec=self.codec,
            nylas=self.clients.nylas,
            jira=self.clients.jira,
            drive=self.clients.drive,
            github_factory=self.clients.github_factory,
            drive_token=drive.valid_access_token,
            user_id=user_id,
        )
        return AppServices(
            teams=TeamService(store=self.store, user_id=user_id),
            invites=InviteService(
                store=self.store,
                config=self.config,
                email_sender=self.clients.email_sender,
                user_id=user_id,
            ),
            integrations=IntegrationService(
                store=self.store,
                config=self.config,
                codec=self.codec,
                atlassian=self.clients.atlassian,
                github_app=self.clients.github_app,
                github_factory=self.clients.github_factory,
                ai=ai,
                user_id=user_id,
            ),
            drive=drive,
            briefs=BriefService(store=self.store, cache=self.cache, collector=collector, ai=ai, user_id=user_id),
            actions=ActionService(store=self.store, nylas=self.clients.nylas, ai=ai, user_id=user_id),
            tasks=TaskService(store=self.store, user_id=user_id),
            tools=ToolService(
                store=self.store,
                codec=self.codec,
                cache=self.cache,
                jira=self.clients.jira,
                github_factory=self.clients.github_factory,
                user_id=user_id,
            ),
            reports=self.reports(user_id),
            ai_audit=AiAuditService(store=self.store, user_id=user_id),
            store=self.store,
            user_id=user_id,
        )


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of user-scoped services for Work Intel.

    Importance: Simplifies passing dependencies to the API and CLI layers.
    Alternatives: Use a dependency injection container.
    """

    teams: TeamService
    invites: InviteService
    integrations: IntegrationService
    drive: DriveService
    briefs: BriefService
    actions: ActionService
    tasks: TaskService
    tools: ToolService
    reports: TeamReportService
    ai_audit: AiAuditService
    store: SqliteStore
    user_id: int


def model_name_for(config: AppConfig) -> str:
    if config.ai_provider == "anthropic":
        return config.anthropic_model
    if config.ai_provider == "openai":
        return config.openai_model
    return "mock"


def build_context(config: AppConfig, clients: ProviderClients | None = None) -> AppContext:
    """Summary: Build shared context for user-scoped services.

    Importance: Initializes the schema once and reuses provider clients across requests.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    return AppContext(
        store=store,
        config=config,
        clients=clients or ProviderClients.from_config(config),
        codec=TokenCodec(config.encryption_key),
        model_name=model_name_for(config),
    )
