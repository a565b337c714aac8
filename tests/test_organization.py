# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Tests for organizations, their settings, teams and administrators"""

import pytest
from conftest import api_error, make_settings

from gh_org_portal._errors import (
    InvalidStateError,
    NotFoundError,
    PortalError,
    RedirectError,
    UnrecognizedValueError,
)
from gh_org_portal._organization import SpecialTeam


# ------------------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------------------
def test_special_teams(make_operations):
    operations = make_operations(
        make_settings(
            special_teams={
                SpecialTeam.EVERYONE: [10],
                SpecialTeam.SUDO: [20],
                SpecialTeam.SYSTEM_READ: [30, 31],
                SpecialTeam.SYSTEM_ADMIN: [40],
            }
        )
    )
    org = operations.get_organization("EXAMPLE-ORG")

    assert org.broad_access_teams == [10]
    assert org.invitation_team.id == 10
    assert org.sudoers_team.id == 20
    assert org.system_sudoers_team is None
    assert org.special_repository_permission_teams == {"read": [30, 31], "write": [], "admin": [40]}
    assert org.system_team_ids == [20, 10, 30, 31, 40]


def test_multiple_invitation_teams_are_invalid(make_operations):
    operations = make_operations(make_settings(special_teams={SpecialTeam.EVERYONE: [10, 11]}))
    org = operations.get_organization("example-org")

    assert org.broad_access_teams == [10, 11]
    with pytest.raises(InvalidStateError):
        _ = org.invitation_team


def test_legal_entities_fall_back_to_defaults(make_operations):
    operations = make_operations(
        make_settings(name="own", legal_entities=("Own Corp",)),
        make_settings(name="inherits", organization_id=2),
        default_legal_entities=["Default Corp"],
    )

    assert operations.get_organization("own").legal_entities == ["Own Corp"]
    assert operations.get_organization("inherits").legal_entities == ["Default Corp"]


def test_missing_legal_entities_are_invalid(make_operations):
    org = make_operations().get_organization("example-org")

    with pytest.raises(InvalidStateError):
        _ = org.legal_entities


@pytest.mark.parametrize(
    "configured,expected",
    [
        ("public", ["public"]),
        ("publicprivate", ["public", "private"]),
        ("private", ["private"]),
        ("privatepublic", ["private", "public"]),
    ],
)
def test_repository_types(make_operations, configured, expected):
    org = make_operations(make_settings(repository_types=configured)).get_organization(
        "example-org"
    )

    assert org.get_supported_repository_types_by_priority() == expected
    assert org.private_repositories_supported == ("private" in expected)


def test_lockdown_needs_system_and_organization_opt_in(make_operations):
    settings = make_settings(
        features=frozenset({"new-repository-lockdown-system", "lock-new-forks"})
    )

    enabled = make_operations(settings, features={"new_repository_lockdown": True})
    disabled = make_operations(settings)

    assert enabled.get_organization("example-org").is_new_repository_lockdown_system_enabled()
    assert not enabled.get_organization("example-org").is_fork_lockdown_system_enabled()
    assert not disabled.get_organization("example-org").is_new_repository_lockdown_system_enabled()


def test_unknown_organization(make_operations):
    operations = make_operations()

    assert operations.is_managed_organization("Example-Org")
    with pytest.raises(NotFoundError):
        operations.get_organization("elsewhere")
    with pytest.raises(NotFoundError):
        operations.get_organization_by_id(99)


def test_duplicate_registration_is_rejected(make_operations):
    with pytest.raises(ValueError):
        make_operations(make_settings(name="org"), make_settings(name="ORG", organization_id=2))


# ------------------------------------------------------------------------------
# Teams
# ------------------------------------------------------------------------------
TEAMS = [
    {"id": 1, "name": "Core Team", "slug": "core-team"},
    {"id": 2, "name": "docs", "slug": "docs"},
]


@pytest.mark.asyncio
async def test_team_from_slug(github, make_operations):
    github.respond("teams.getByName", TEAMS[1])
    org = make_operations().get_organization("example-org")

    team = await org.get_team_from_name("docs")

    assert team.id == 2
    assert github.calls_to("teams.getByName") == [{"org": "example-org", "team_slug": "docs"}]


@pytest.mark.asyncio
async def test_team_found_by_name_redirects_to_slug(github, make_operations):
    github.respond("teams.list", TEAMS)
    org = make_operations().get_organization("example-org")

    with pytest.raises(RedirectError) as excinfo:
        await org.get_team_from_name("Core Team")

    assert excinfo.value.slug == "core-team"
    assert excinfo.value.team.id == 1


@pytest.mark.asyncio
async def test_team_found_by_id_redirects_to_slug(github, make_operations):
    github.respond("teams.list", TEAMS)
    org = make_operations().get_organization("example-org")

    with pytest.raises(RedirectError) as excinfo:
        await org.get_team_from_name("2")

    assert excinfo.value.slug == "docs"


@pytest.mark.asyncio
async def test_unknown_team(github, make_operations):
    github.respond("teams.list", TEAMS)
    org = make_operations().get_organization("example-org")

    with pytest.raises(NotFoundError):
        await org.get_team_from_name("nobody")


@pytest.mark.asyncio
async def test_team_slug_lookup_failure_propagates(github, make_operations):
    github.respond("teams.getByName", api_error(500))
    org = make_operations().get_organization("example-org")

    with pytest.raises(PortalError):
        await org.get_team_from_slug("docs")


# ------------------------------------------------------------------------------
# Repositories
# ------------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_repositories(github, make_operations):
    github.respond("repos.listForOrg", [{"id": 5, "name": "b"}, {"id": 4, "name": "a"}])
    org = make_operations().get_organization("example-org")

    repositories = await org.get_repositories()

    assert [repository.name for repository in repositories] == ["b", "a"]
    assert github.calls_to("repos.listForOrg")[0]["type"] == "all"


@pytest.mark.asyncio
async def test_repository_by_id_of_other_owner_is_not_found(github, make_operations):
    github.respond(
        "repos.getById", {"id": 5, "name": "moved", "owner": {"id": 999, "login": "elsewhere"}}
    )
    org = make_operations().get_organization("example-org")

    with pytest.raises(NotFoundError, match="relocated"):
        await org.get_repository_by_id(5)


@pytest.mark.asyncio
async def test_repository_by_id(github, make_operations):
    github.respond("repos.getById", {"id": 5, "name": "repo", "owner": {"id": 1}})
    org = make_operations().get_organization("example-org")

    repository = await org.get_repository_by_id(5)

    assert repository.name == "repo"
    assert repository.organization is org


# ------------------------------------------------------------------------------
# Members
# ------------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_add_membership_sets_the_role(github, make_operations):
    github.respond("orgs.setMembershipForUser", {"state": "pending", "role": "admin"})
    org = make_operations().get_organization("example-org")

    result = await org.add_membership("alice", "admin")

    assert result["state"] == "pending"
    assert github.calls == [
        (
            "post",
            "orgs.setMembershipForUser",
            {"org": "example-org", "username": "alice", "role": "admin"},
            None,
        )
    ]


@pytest.mark.asyncio
async def test_membership_of_non_member_is_none(github, make_operations):
    github.respond("orgs.getMembershipForUser", api_error(404))
    org = make_operations().get_organization("example-org")

    assert await org.get_membership("stranger") is None


@pytest.mark.asyncio
async def test_membership_errors_are_wrapped(github, make_operations):
    github.respond("orgs.getMembershipForUser", api_error(502, "Bad Gateway"))
    org = make_operations().get_organization("example-org")

    with pytest.raises(PortalError) as excinfo:
        await org.get_membership("alice")

    assert excinfo.value.status == 502


@pytest.mark.asyncio
async def test_public_membership(github, make_operations):
    github.respond(
        "orgs.checkPublicMembershipForUser",
        lambda parameters: None if parameters["username"] == "alice" else api_error(404),
    )
    org = make_operations().get_organization("example-org")

    assert await org.check_public_membership("alice") is True
    assert await org.check_public_membership("bob") is False


@pytest.mark.asyncio
async def test_get_details_learns_the_id(github, make_operations):
    github.respond("orgs.get", {"id": 77, "login": "example-org"})
    org = make_operations(make_settings(organization_id=None)).get_organization("example-org")

    await org.get_details()

    assert org.id == 77


# ------------------------------------------------------------------------------
# Administrators
# ------------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_no_sudoers_team_means_no_sudoer(github, make_operations):
    org = make_operations().get_organization("example-org")

    assert await org.is_sudoer("alice") is False
    assert github.calls == []


@pytest.mark.asyncio
async def test_sudoer_from_cached_member_list(github, make_operations, by_role):
    github.respond(
        "teams.listMembers", by_role({"maintainer": [], "member": [{"id": 3, "login": "Alice"}]})
    )
    org = make_operations(make_settings(special_teams={SpecialTeam.SUDO: [20]})).get_organization(
        "example-org"
    )

    assert await org.is_sudoer("alice") is True
    assert github.calls_to("teams.getMembership") == []


@pytest.mark.asyncio
async def test_unrecognized_sudo_role_fails(github, make_operations, by_role):
    github.respond("teams.listMembers", by_role({}))
    github.respond("teams.getMembership", {"role": "overlord", "state": "active"})
    org = make_operations(make_settings(special_teams={SpecialTeam.SUDO: [20]})).get_organization(
        "example-org"
    )

    with pytest.raises(UnrecognizedValueError):
        await org.is_sudoer("alice")


@pytest.mark.asyncio
async def test_administrators_merge_owners_and_sudoers(github, make_operations, by_role):
    github.respond(
        "orgs.listMembers",
        by_role({"admin": [{"id": 1, "login": "owner"}, {"id": 2, "login": "both"}]}),
    )
    github.respond(
        "teams.listMembers",
        by_role({None: [{"id": 2, "login": "both"}, {"id": 3, "login": "sudoer"}]}),
    )
    org = make_operations(make_settings(special_teams={SpecialTeam.SUDO: [20]})).get_organization(
        "example-org"
    )

    administrators = await org.get_organization_administrators()

    assert sorted(administrators) == [1, 2, 3]
    assert (administrators[1].owner, administrators[1].sudo) == (True, False)
    assert (administrators[2].owner, administrators[2].sudo) == (True, True)
    assert (administrators[3].owner, administrators[3].sudo) == (False, True)


@pytest.mark.asyncio
async def test_administrators_with_deleted_sudoers_team(github, make_operations, by_role):
    github.respond("orgs.listMembers", by_role({"admin": [{"id": 1, "login": "owner"}]}))
    github.respond("teams.listMembers", api_error(404))
    org = make_operations(make_settings(special_teams={SpecialTeam.SUDO: [20]})).get_organization(
        "example-org"
    )

    administrators = await org.get_organization_administrators()

    assert list(administrators) == [1]
    assert administrators[1].owner is True


@pytest.mark.asyncio
async def test_administrators_with_failing_sudoers_team(github, make_operations, by_role):
    github.respond("orgs.listMembers", by_role({"admin": []}))
    github.respond("teams.listMembers", api_error(500))
    org = make_operations(make_settings(special_teams={SpecialTeam.SUDO: [20]})).get_organization(
        "example-org"
    )

    with pytest.raises(PortalError):
        await org.get_organization_administrators()
