# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Tests for the lockdown of new repositories"""

import pytest
from conftest import api_error, make_settings

from gh_org_portal._errors import UnauthorizedError
from gh_org_portal._lockdown import NewRepositoryLockdownSystem
from gh_org_portal._organization import SpecialTeam

ALL_FEATURES = frozenset({"new-repository-lockdown-system", "lock-new-forks", "lock-transfers"})
SYSTEM_FEATURES = {"new_repository_lockdown": True, "lock_forks": True, "lock_transfers": True}


@pytest.fixture
def operations(make_operations):
    return make_operations(
        make_settings(
            features=ALL_FEATURES,
            special_teams={SpecialTeam.SYSTEM_ADMIN: [900], SpecialTeam.SYSTEM_READ: [901]},
        ),
        make_settings(name="sibling-org", organization_id=2),
        features=SYSTEM_FEATURES,
        system_accounts=["Portal-Bot"],
    )


@pytest.fixture
def make_lockdown(operations):
    def build(entity=None, **kwargs):
        organization = operations.get_organization("example-org")
        repository = organization.repository("new-repo", entity or {"id": 300, "fork": False})
        kwargs.setdefault("retry_delay", 0)
        return NewRepositoryLockdownSystem(operations, organization, repository, **kwargs)

    return build


def respond_with_access(github, teams, collaborators):
    github.respond("repos.listTeams", teams)
    github.respond("repos.listCollaborators", collaborators)
    github.respond("teams.removeRepo", None)
    github.respond("repos.removeCollaborator", None)
    github.respond("repos.addCollaborator", None)


def collaborator(login, *granted):
    return {"id": len(login), "login": login, "permissions": dict.fromkeys(granted, True)}


# ------------------------------------------------------------------------------
# Lockdown
# ------------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_failing_team_removal_does_not_stop_the_lockdown(github, make_lockdown):
    respond_with_access(
        github,
        [
            {"id": 1, "slug": "first", "permission": "push"},
            {"id": 2, "slug": "second", "permission": "push"},
            {"id": 3, "slug": "third", "permission": "admin"},
        ],
        [],
    )
    github.respond(
        "teams.removeRepo",
        lambda parameters: api_error(500) if parameters["team_id"] == 2 else None,
    )
    lockdown = make_lockdown()
    log: list[str] = []

    await lockdown.lockdown_repository(log, [], "creator")

    assert [call["team_id"] for call in github.calls_to("teams.removeRepo")] == [1, 2, 2, 2, 3]
    assert lockdown.changes.removed_teams == ["first", "third"]
    assert len(lockdown.changes.failures) == 1
    assert "second" in lockdown.changes.failures[0]
    assert any("Removed the team third" in line for line in log)


@pytest.mark.asyncio
async def test_lockdown_keeps_special_teams_and_system_accounts(github, make_lockdown):
    respond_with_access(
        github,
        [
            {"id": 900, "slug": "system-admins", "permission": "admin"},
            {"id": 901, "slug": "system-readers", "permission": "pull"},
            {"id": 5, "slug": "friends", "permission": "push"},
        ],
        [
            collaborator("portal-bot", "pull", "push", "admin"),
            collaborator("Creator", "pull", "push", "admin"),
            collaborator("stranger", "pull"),
        ],
    )
    lockdown = make_lockdown()

    await lockdown.lockdown_repository(lockdown.changes.log, ["portal-bot"], "creator")

    changes = lockdown.changes
    assert changes.kept_teams == ["system-admins", "system-readers"]
    assert changes.removed_teams == ["friends"]
    assert changes.kept_collaborators == ["portal-bot"]
    assert changes.removed_collaborators == ["stranger"]
    assert changes.downgraded_collaborators == ["Creator"]
    assert github.calls_to("repos.addCollaborator") == [
        {"owner": "example-org", "repo": "new-repo", "username": "Creator", "permission": "pull"}
    ]
    assert changes.failures == []


@pytest.mark.asyncio
async def test_creator_without_write_access_is_left_alone(github, make_lockdown):
    respond_with_access(github, [], [collaborator("creator", "pull")])
    lockdown = make_lockdown()

    await lockdown.lockdown_repository(lockdown.changes.log, [], "creator")

    assert github.calls_to("repos.addCollaborator") == []
    assert github.calls_to("repos.removeCollaborator") == []
    assert "Creator creator does not have administrative access" in lockdown.changes.log


@pytest.mark.asyncio
async def test_unauthorized_writes_are_not_retried(github, make_lockdown):
    respond_with_access(github, [{"id": 5, "slug": "friends", "permission": "push"}], [])
    github.respond("teams.removeRepo", UnauthorizedError("Bad credentials", status=401))
    lockdown = make_lockdown()

    await lockdown.lockdown_repository(lockdown.changes.log, [], "creator")

    assert len(github.calls_to("teams.removeRepo")) == 1
    assert lockdown.changes.removed_teams == []
    assert len(lockdown.changes.failures) == 1


@pytest.mark.asyncio
async def test_failing_listing_is_reported_not_raised(github, make_lockdown):
    github.respond("repos.listTeams", api_error(502))
    lockdown = make_lockdown()

    await lockdown.lockdown_repository(lockdown.changes.log, [], "creator")

    assert lockdown.changes.failures[0].startswith("Error during the lockdown")


@pytest.mark.asyncio
async def test_dry_run_changes_nothing(github, make_lockdown):
    respond_with_access(
        github,
        [{"id": 5, "slug": "friends", "permission": "push"}],
        [collaborator("stranger", "pull")],
    )
    lockdown = make_lockdown(dry=True)

    assert await lockdown.lockdown_if_necessary("created", "creator") is True

    assert github.calls_to("teams.removeRepo") == []
    assert github.calls_to("repos.removeCollaborator") == []
    assert lockdown.changes.locked is False
    assert lockdown.changes.removed_teams == ["friends"]
    assert "Would remove the team friends from the repository" in lockdown.changes.log
    assert not any(line.startswith("Removed") for line in lockdown.changes.log)


# ------------------------------------------------------------------------------
# Whether to lock down
# ------------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_repository_created_by_user_is_locked(github, make_lockdown):
    respond_with_access(github, [], [])
    lockdown = make_lockdown()

    assert await lockdown.lockdown_if_necessary("created", "someone") is True
    assert lockdown.changes.locked is True


@pytest.mark.asyncio
async def test_organization_without_opt_in(github, operations):
    organization = operations.get_organization("sibling-org")
    lockdown = NewRepositoryLockdownSystem(
        operations, organization, organization.repository("repo"), retry_delay=0
    )

    assert await lockdown.lockdown_if_necessary("created", "someone") is False
    assert github.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("username", ["dependabot[bot]", "portal-bot"])
async def test_bots_and_system_accounts_are_exempt(github, make_lockdown, username):
    lockdown = make_lockdown()

    assert await lockdown.lockdown_if_necessary("created", username) is False
    assert github.calls == []


@pytest.mark.asyncio
async def test_internal_transfers_are_exempt(github, make_lockdown):
    respond_with_access(github, [], [])

    internal = make_lockdown()
    external = make_lockdown()

    assert await internal.lockdown_if_necessary("transferred", "someone", "Sibling-Org") is False
    assert await external.lockdown_if_necessary("transferred", "someone", "elsewhere") is True


@pytest.mark.asyncio
async def test_transfers_need_their_own_opt_in(github, make_operations):
    operations = make_operations(
        make_settings(features=frozenset({"new-repository-lockdown-system"})),
        features=SYSTEM_FEATURES,
    )
    organization = operations.get_organization("example-org")
    lockdown = NewRepositoryLockdownSystem(
        operations, organization, organization.repository("repo"), retry_delay=0
    )

    assert await lockdown.lockdown_if_necessary("transferred", "someone", "elsewhere") is False
    assert github.calls == []


@pytest.mark.asyncio
async def test_forks_of_organization_owners_are_exempt(github, make_lockdown):
    respond_with_access(github, [], [])
    github.respond(
        "orgs.getMembershipForUser",
        lambda parameters: (
            {"state": "active", "role": "admin"}
            if parameters["username"] == "owner"
            else {"state": "active", "role": "member"}
        ),
    )
    fork = {"id": 300, "fork": True}

    assert await make_lockdown(fork).lockdown_if_necessary("created", "owner") is False
    assert await make_lockdown(fork).lockdown_if_necessary("created", "member") is True
    assert github.calls[0][3].max_age_seconds < 0
