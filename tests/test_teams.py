"""Summary: Tests for team, membership, and invite services.

Importance: Membership and admin rules guard every team route.
Alternatives: Test the rules only through HTTP.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from workintel.app import AppContext
from workintel.services import ConflictError, claim_invite, find_valid_invite, slugify


def _users(context: AppContext, *emails: str) -> list[int]:
    return [context.sessions.find_or_create_user(email).id for email in emails]


def test_slugify() -> None:
    assert slugify("  Platform Team!  ") == "platform-team"
    assert slugify("Data & ML") == "data-ml"


def test_create_team_makes_creator_admin(context: AppContext) -> None:
    """Summary: Verify the creator becomes the first admin.

    Importance: A team without an admin could never be managed.
    Alternatives: Require a separate admin assignment step.
    """

    (admin_id,) = _users(context, "admin@example.com")
    teams = context.services_for_user(admin_id).teams
    team = teams.create_team("Platform Team")
    assert team.slug == "platform-team"
    assert teams.list_teams() == [{**teams.team_detail(team.id)["team"], "role": "admin"}]
    with pytest.raises(ValueError, match="at least 2"):
        teams.create_team("x")
    with pytest.raises(ConflictError):
        teams.create_team("platform team")


def test_non_member_cannot_read_team(context: AppContext) -> None:
    admin_id, outsider_id = _users(context, "admin@example.com", "outsider@example.com")
    team = context.services_for_user(admin_id).teams.create_team("Platform")
    with pytest.raises(PermissionError, match="Not a team member"):
        context.services_for_user(outsider_id).teams.team_detail(team.id)


def test_add_member_rules(context: AppContext) -> None:
    """Summary: Verify only existing users can be added, once, by an admin.

    Importance: Adding unknown emails is the invite flow's job.
    Alternatives: Create placeholder users on add.
    """

    admin_id, dev_id = _users(context, "admin@example.com", "dev@example.com")
    teams = context.services_for_user(admin_id).teams
    team = teams.create_team("Platform")
    with pytest.raises(LookupError, match="must sign up first"):
        teams.add_member(team.id, "ghost@example.com")
    member = teams.add_member(team.id, " Dev@Example.com ", "member", "devhub")
    assert member.user_id == dev_id
    assert member.github_username == "devhub"
    with pytest.raises(ConflictError, match="already a team member"):
        teams.add_member(team.id, "dev@example.com")
    with pytest.raises(PermissionError, match="Admin access required"):
        context.services_for_user(dev_id).teams.add_member(team.id, "admin@example.com")


def test_last_admin_cannot_be_demoted_or_removed(context: AppContext) -> None:
    admin_id, dev_id = _users(context, "admin@example.com", "dev@example.com")
    teams = context.services_for_user(admin_id).teams
    team = teams.create_team("Platform")
    admin_member = context.store.get_membership(team.id, admin_id)
    with pytest.raises(ValueError, match="last admin"):
        teams.update_member(team.id, admin_member.id, {"role": "member"})
    with pytest.raises(ValueError, match="last admin"):
        teams.remove_member(team.id, admin_member.id)

    dev_member = teams.add_member(team.id, "dev@example.com")
    teams.update_member(team.id, dev_member.id, {"role": "admin"})
    demoted = teams.update_member(team.id, admin_member.id, {"role": "member"})
    assert demoted.role == "member"


def test_update_member_clears_github_username(context: AppContext) -> None:
    admin_id, _dev_id = _users(context, "admin@example.com", "dev@example.com")
    teams = context.services_for_user(admin_id).teams
    team = teams.create_team("Platform")
    member = teams.add_member(team.id, "dev@example.com", github_username="devhub")
    assert teams.update_member(team.id, member.id, {"github_username": "  "}).github_username is None
    with pytest.raises(ValueError, match="No valid updates"):
        teams.update_member(team.id, member.id, {})


def test_invite_create_resend_and_claim(context: AppContext) -> None:
    """Summary: Verify invites are sent, deduplicated, and claimed by the invited address.

    Importance: Re-inviting must refresh the existing row, not add another.
    Alternatives: Reject repeat invites.
    """

    (admin_id,) = _users(context, "admin@example.com")
    services = context.services_for_user(admin_id)
    team = services.teams.create_team("Platform")
    first = services.invites.create_invite(team.id, "New@Example.com", "member", "newbie")
    assert first.created and first.email_sent
    second = services.invites.create_invite(team.id, "new@example.com", "admin")
    assert not second.created
    assert second.invite.id == first.invite.id
    assert second.invite.role == "admin"

    outbox = context.clients.email_sender.outbox
    assert len(outbox) == 2
    assert outbox[0]["to"] == "new@example.com"
    assert f"/api/invites/{first.invite.token}" in outbox[0]["html"]
    listed = services.invites.list_invites(team.id)
    assert "token" not in listed[0]
    assert listed[0]["invited_by_email"] == "admin@example.com"

    stranger = context.sessions.find_or_create_user("stranger@example.com")
    assert claim_invite(context.store, first.invite.token, stranger) is None
    invitee = context.sessions.find_or_create_user("new@example.com")
    assert claim_invite(context.store, first.invite.token, invitee) == team
    membership = context.store.get_membership(team.id, invitee.id)
    assert membership.role == "admin"
    assert find_valid_invite(context.store, first.invite.token) is None


def test_invite_for_existing_member_conflicts(context: AppContext) -> None:
    (admin_id,) = _users(context, "admin@example.com")
    services = context.services_for_user(admin_id)
    team = services.teams.create_team("Platform")
    with pytest.raises(ConflictError):
        services.invites.create_invite(team.id, "admin@example.com")


def test_expired_invite_is_not_valid(context: AppContext) -> None:
    (admin_id,) = _users(context, "admin@example.com")
    team = context.services_for_user(admin_id).teams.create_team("Platform")
    expired = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    context.store.create_invite(team.id, "late@example.com", "member", None, "expired-token", admin_id, expired)
    assert find_valid_invite(context.store, "expired-token") is None
    assert find_valid_invite(context.store, "unknown-token") is None


def test_resend_failure_raises(context: AppContext) -> None:
    (admin_id,) = _users(context, "admin@example.com")
    services = context.services_for_user(admin_id)
    team = services.teams.create_team("Platform")
    result = services.invites.create_invite(team.id, "bounce@example.com")
    context.clients.email_sender.fail_for.add("bounce@example.com")
    with pytest.raises(RuntimeError, match="Failed to send email"):
        services.invites.resend_invite(team.id, result.invite.id)
    services.invites.revoke_invite(team.id, result.invite.id)
    assert services.invites.list_invites(team.id) == []


def test_roles_are_coerced_and_invalid_updates_ignored(context: AppContext) -> None:
    """Summary: Verify unknown roles fall back to member and never reach the database.

    Importance: Role strings come straight from request bodies.
    Alternatives: Reject unknown roles with a validation error.
    """

    admin_id, _dev_id = _users(context, "admin@example.com", "dev@example.com")
    services = context.services_for_user(admin_id)
    team = services.teams.create_team("Platform")
    member = services.teams.add_member(team.id, "dev@example.com", "owner")
    assert member.role == "member"
    with pytest.raises(ValueError, match="No valid updates provided"):
        services.teams.update_member(team.id, member.id, {"role": "superuser"})

    invite = services.invites.create_invite(team.id, "new@example.com", "owner").invite
    assert invite.role == "member"
    assert len(invite.token) == 64
    int(invite.token, 16)
    with pytest.raises(ValueError, match="Email is required"):
        services.invites.create_invite(team.id, "  ")


def test_resend_keeps_expiry_and_touches_last_sent(context: AppContext) -> None:
    (admin_id,) = _users(context, "admin@example.com")
    services = context.services_for_user(admin_id)
    team = services.teams.create_team("Platform")
    stored = context.store.create_invite(
        team.id, "late@example.com", "member", None, "b" * 64, admin_id, "2030-01-01T00:00:00+00:00"
    )
    resent = services.invites.resend_invite(team.id, stored.id)
    assert resent.expires_at == "2030-01-01T00:00:00+00:00"
    assert resent.last_sent_at >= stored.last_sent_at
    assert context.clients.email_sender.outbox[-1]["to"] == "late@example.com"
