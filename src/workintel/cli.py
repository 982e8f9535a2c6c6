"""Summary: Command-line interface for Work Intel.

Importance: Runs setup, briefs, and scheduled report jobs without the web server.
Alternatives: Trigger everything through the HTTP cron endpoints.
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import Sequence

from workintel.app import build_context
from workintel.config import AppConfig


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="Work Intel CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database schema")

    create_user = subparsers.add_parser("create-user", help="Create or look up a user")
    create_user.add_argument("email", type=str)
    create_user.add_argument("--name", type=str, default=None)

    create_team = subparsers.add_parser("create-team", help="Create a team owned by a user")
    create_team.add_argument("name", type=str)
    create_team.add_argument("--owner", type=str, required=True, help="Owner email")

    subparsers.add_parser("list-teams", help="List every team with a GitHub integration")

    generate_brief = subparsers.add_parser("generate-brief", help="Generate today's brief for a user")
    generate_brief.add_argument("email", type=str)
    generate_brief.add_argument("--force", action="store_true")

    generate_report = subparsers.add_parser("generate-report", help="Generate a weekly team report")
    generate_report.add_argument("team_id", type=int)

    send_reports = subparsers.add_parser("send-weekly-reports", help="Email weekly reports")
    send_reports.add_argument("--team-id", type=int, default=None)

    subparsers.add_parser("cleanup-sessions", help="Delete expired sessions and OAuth states")

    return parser


def run_cli(argv: Sequence[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Lets operators run scheduled jobs from cron without HTTP.
    Alternatives: Invoke services via the HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    context = build_context(AppConfig.from_env())

    if args.command == "init-db":
        print(f"Database ready at {context.config.db_path}.")
        return

    if args.command == "create-user":
        user = context.sessions.find_or_create_user(args.email, args.name)
        print(f"{user.id}: {user.email} ({user.display_name})")
        return

    if args.command == "create-team":
        owner = context.store.get_user_by_email(args.owner.strip().lower())
        if owner is None:
            raise SystemExit(f"No user with email {args.owner}")
        team = context.services_for_user(owner.id).teams.create_team(args.name)
        print(f"Created team {team.id} ({team.slug}).")
        return

    if args.command == "list-teams":
        for team in context.store.list_teams_with_integration("github"):
            print(f"{team.id}: {team.name} ({team.slug})")
        return

    if args.command == "generate-brief":
        user = context.store.get_user_by_email(args.email.strip().lower())
        if user is None:
            raise SystemExit(f"No user with email {args.email}")
        brief, cached = context.services_for_user(user.id).briefs.generate("cron", force=args.force)
        if cached:
            print("Using cached brief for today.")
        print(json.dumps(brief, indent=2))
        return

    if args.command == "generate-report":
        report = context.reports().generate(args.team_id)
        print(json.dumps(report, indent=2))
        return

    if args.command == "send-weekly-reports":
        reports = context.reports()
        if args.team_id is None:
            print(json.dumps(reports.run_weekly_cron(), indent=2))
            return
        summary = reports.send_weekly_reports(args.team_id)
        print(f"{summary.team_name}: {summary.emails_sent}/{summary.total_members} emails sent.")
        return

    if args.command == "cleanup-sessions":
        removed = context.sessions.cleanup_expired()
        print(f"Removed {removed} expired records.")
        return


if __name__ == "__main__":
    run_cli()
