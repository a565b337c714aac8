# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Cross-organization lookups on live entity calls, used when no query cache
can answer a question"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ._cache import CacheOptions
from ._organization import OrganizationMembershipRole
from ._permissions import RepositoryPermission, is_permission_better_than
from ._repository import Repository
from ._team import TeamRepositoryPermission, TeamRole

if TYPE_CHECKING:
    from ._operations import Operations

# Team memberships across all organizations are expensive to collect
TEAM_MEMBERSHIPS_MAX_AGE_SECONDS = 60 * 20


@dataclass
class PersonalizedRepositoryPermission:
    """The access of one user to one repository, from all sources"""

    repository: Repository
    best_computed_permission: RepositoryPermission | None = None
    collaborator_permission: RepositoryPermission | None = None
    team_permissions: list[TeamRepositoryPermission] = field(default_factory=list)

    def as_json(self) -> dict[str, Any]:
        return {
            "repository": self.repository.as_json(),
            "organization": self.repository.organization.name,
            "best_computed_permission": (
                str(self.best_computed_permission) if self.best_computed_permission else None
            ),
            "collaborator_permission": (
                str(self.collaborator_permission) if self.collaborator_permission else None
            ),
            "team_permissions": [permission.as_json() for permission in self.team_permissions],
        }


class GraphManager:
    """Walks the members and teams of all managed organizations"""

    def __init__(self, operations: "Operations") -> None:
        self._operations = operations

    async def get_organization_statuses_by_name(
        self, user_id: int, role: OrganizationMembershipRole | str | None = None
    ) -> list[str]:
        """Names of the organizations the user is a member of, optionally only
        those where the user has a certain role"""
        user_id = int(user_id)
        names: list[str] = []
        for organization in self._operations.organizations.values():
            members = await organization.get_members(role=role)
            if any(member.id == user_id for member in members):
                names.append(organization.name)
        return names

    async def get_team_memberships(
        self, user_id: int, role: TeamRole | str | None = None
    ) -> list[dict]:
        """Raw team entities of all teams the user is a member of. Each entity
        carries the login of its organization"""
        user_id = int(user_id)
        options = CacheOptions(
            max_age_seconds=TEAM_MEMBERSHIPS_MAX_AGE_SECONDS, background_refresh=True
        )
        teams: list[dict] = []
        for organization in self._operations.organizations.values():
            for team in await organization.get_teams(options):
                members = await team.get_members(options, role=role)
                if any(member.id == user_id for member in members):
                    entity = team.to_simple_json_object()
                    entity["organization"] = {"login": organization.name}
                    teams.append(entity)
        return teams

    async def get_user_repos_by_team_memberships(
        self, user_id: int, options: CacheOptions | None = None
    ) -> list[PersonalizedRepositoryPermission]:
        """Repositories the user has access to through teams. Public
        repositories only granting pull are left out, the collaborator
        permission is never computed"""
        by_repository: dict[Any, PersonalizedRepositoryPermission] = {}
        for team_entity in await self.get_team_memberships(user_id):
            try:
                team = self._operations.get_team_by_id_with_organization(
                    team_entity["id"], team_entity["organization"]["login"], team_entity
                )
                team_repositories = await team.get_repositories(options)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logging.warning(
                    "Could not get the repositories of team %s: %s", team_entity.get("id"), exc
                )
                continue

            for team_repository in team_repositories:
                repository = team_repository.repository
                if (
                    repository.private is False
                    and team_repository.permission == RepositoryPermission.PULL
                ):
                    continue
                key = repository.id if repository.id is not None else repository.full_name
                personalized = by_repository.setdefault(
                    key, PersonalizedRepositoryPermission(repository=repository)
                )
                personalized.team_permissions.append(team_repository)
                if is_permission_better_than(
                    personalized.best_computed_permission, team_repository.permission
                ):
                    personalized.best_computed_permission = team_repository.permission

        return list(by_repository.values())
