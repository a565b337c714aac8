# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Precomputed snapshots of memberships and permissions, queried instead of
GitHub when available"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Protocol

from ._cache import CacheOptions
from ._errors import InvalidStateError, NotFoundError
from ._helpers import log_progress
from ._organization import Organization, OrganizationMembershipRole
from ._permissions import RepositoryPermission, massage_permission
from ._repository import GitHubCollaboratorAffiliation, Repository
from ._team import Team, TeamRepositoryPermission, TeamRole

if TYPE_CHECKING:
    from ._operations import Operations


class QueryCacheOperation(str, Enum):
    """What a write to the query cache did"""

    NEW = "new"
    UPDATE = "update"
    DELETE = "delete"


# ------------------------------------------------------------------------------
# Hydrated rows
# ------------------------------------------------------------------------------
@dataclass
class QueryCacheOrganizationMembership:
    organization: Organization
    role: str
    user_id: int


@dataclass
class QueryCacheTeamMembership:
    team: Team
    role: str
    user_id: int
    login: str | None = None


@dataclass
class QueryCacheTeamRepositoryPermission:
    team: Team
    repository: Repository
    permission: RepositoryPermission

    def as_team_repository_permission(self) -> TeamRepositoryPermission:
        """The row as the entity a team listing of repositories would return"""
        return TeamRepositoryPermission(
            self.team,
            {
                "id": self.repository.id,
                "name": self.repository.name,
                "private": self.repository.private,
                "permission": self.permission.value,
            },
        )


@dataclass
class QueryCacheRepositoryCollaborator:
    repository: Repository
    permission: RepositoryPermission
    user_id: int
    affiliation: str = GitHubCollaboratorAffiliation.DIRECT.value


class QueryCache(Protocol):
    """A query cache provider. Queries may only be called if the matching
    capability flag is set, check them with `capability()`"""

    supports_organization_membership: bool
    supports_team_membership: bool
    supports_team_permissions: bool
    supports_repository_collaborators: bool

    async def user_organizations(self, user_id: int) -> list[QueryCacheOrganizationMembership]:
        """Organizations the user is a member of"""

    async def user_teams(self, user_id: int) -> list[QueryCacheTeamMembership]:
        """Teams the user is a member of"""

    async def teams_permissions(
        self, team_ids: Iterable[int]
    ) -> list[QueryCacheTeamRepositoryPermission]:
        """Repository permissions granted to any of the teams"""

    async def user_collaborator_repositories(
        self, user_id: int
    ) -> list[QueryCacheRepositoryCollaborator]:
        """Repositories the user is a direct collaborator of"""


def capability(query_cache: Any, name: str) -> bool:
    """Whether a query cache is present and declares a capability"""
    if query_cache is None:
        return False
    return bool(getattr(query_cache, name, False))


# ------------------------------------------------------------------------------
# In-memory provider
# ------------------------------------------------------------------------------
@dataclass
class _RepositoryRow:
    name: str
    private: bool | None
    permission: RepositoryPermission
    affiliation: str | None = None


class MemoryQueryCache:  # pylint: disable=too-many-instance-attributes
    """Query cache provider keeping all rows in memory. Rows only hold ids and
    are turned into entities of the configured organizations on query"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        operations: "Operations",
        supports_organization_membership: bool = True,
        supports_team_membership: bool = True,
        supports_team_permissions: bool = True,
        supports_repository_collaborators: bool = True,
    ) -> None:
        self.operations = operations
        self.supports_organization_membership = supports_organization_membership
        self.supports_team_membership = supports_team_membership
        self.supports_team_permissions = supports_team_permissions
        self.supports_repository_collaborators = supports_repository_collaborators

        # (organization_id, user_id) -> role
        self._organization_members: dict[tuple[int, int], str] = {}
        # (organization_id, team_id, user_id) -> (role, login)
        self._team_members: dict[tuple[int, int, int], tuple[str, str | None]] = {}
        # (organization_id, repository_id, team_id) -> repository row
        self._team_permissions: dict[tuple[int, int, int], _RepositoryRow] = {}
        # (organization_id, repository_id, user_id) -> repository row
        self._collaborators: dict[tuple[int, int, int], _RepositoryRow] = {}

    def _require(self, flag: str, method: str) -> None:
        if not getattr(self, flag):
            raise InvalidStateError(
                f"The query cache method {method} is not supported, {flag} is disabled"
            )

    def _organization(self, organization_id: int) -> Organization | None:
        try:
            return self.operations.get_organization_by_id(organization_id)
        except NotFoundError:
            logging.debug(
                "Skipping query cache row of unconfigured organization %s", organization_id
            )
            return None

    def _repository(
        self, organization: Organization, repository_id: int, row: _RepositoryRow
    ) -> Repository:
        return organization.repository(
            row.name, {"id": repository_id, "name": row.name, "private": row.private}
        )

    # --------------------------------------------------------------------------
    # Organization membership
    # --------------------------------------------------------------------------
    async def user_organizations(self, user_id: int) -> list[QueryCacheOrganizationMembership]:
        self._require("supports_organization_membership", "user_organizations")
        rows = []
        for (organization_id, member_id), role in self._organization_members.items():
            if member_id != int(user_id):
                continue
            if organization := self._organization(organization_id):
                rows.append(
                    QueryCacheOrganizationMembership(
                        organization=organization, role=role, user_id=member_id
                    )
                )
        return rows

    async def add_or_update_organization_member(
        self, organization_id: int, user_id: int, role: OrganizationMembershipRole | str
    ) -> QueryCacheOperation | None:
        self._require("supports_organization_membership", "add_or_update_organization_member")
        key = (int(organization_id), int(user_id))
        role = OrganizationMembershipRole(role).value
        existing = self._organization_members.get(key)
        if existing == role:
            return None
        self._organization_members[key] = role
        return QueryCacheOperation.NEW if existing is None else QueryCacheOperation.UPDATE

    async def remove_organization_member(
        self, organization_id: int, user_id: int
    ) -> QueryCacheOperation | None:
        self._require("supports_organization_membership", "remove_organization_member")
        if self._organization_members.pop((int(organization_id), int(user_id)), None) is None:
            return None
        return QueryCacheOperation.DELETE

    # --------------------------------------------------------------------------
    # Team membership
    # --------------------------------------------------------------------------
    async def user_teams(self, user_id: int) -> list[QueryCacheTeamMembership]:
        self._require("supports_team_membership", "user_teams")
        rows = []
        for (organization_id, team_id, member_id), (role, login) in self._team_members.items():
            if member_id != int(user_id):
                continue
            if organization := self._organization(organization_id):
                rows.append(
                    QueryCacheTeamMembership(
                        team=organization.team(team_id), role=role, user_id=member_id, login=login
                    )
                )
        return rows

    async def add_or_update_team_member(  # pylint: disable=too-many-arguments
        self,
        organization_id: int,
        team_id: int,
        user_id: int,
        role: TeamRole | str,
        login: str | None = None,
    ) -> QueryCacheOperation | None:
        self._require("supports_team_membership", "add_or_update_team_member")
        key = (int(organization_id), int(team_id), int(user_id))
        value = (TeamRole(role).value, login)
        existing = self._team_members.get(key)
        if existing == value:
            return None
        self._team_members[key] = value
        return QueryCacheOperation.NEW if existing is None else QueryCacheOperation.UPDATE

    async def remove_team_member(
        self, organization_id: int, team_id: int, user_id: int
    ) -> QueryCacheOperation | None:
        self._require("supports_team_membership", "remove_team_member")
        if self._team_members.pop((int(organization_id), int(team_id), int(user_id)), None) is None:
            return None
        return QueryCacheOperation.DELETE

    # --------------------------------------------------------------------------
    # Team permissions
    # --------------------------------------------------------------------------
    async def teams_permissions(
        self, team_ids: Iterable[int]
    ) -> list[QueryCacheTeamRepositoryPermission]:
        self._require("supports_team_permissions", "teams_permissions")
        wanted = {int(team_id) for team_id in team_ids}
        if not wanted:
            return []
        rows = []
        for (organization_id, repository_id, team_id), row in self._team_permissions.items():
            if team_id not in wanted:
                continue
            if organization := self._organization(organization_id):
                rows.append(
                    QueryCacheTeamRepositoryPermission(
                        team=organization.team(team_id),
                        repository=self._repository(organization, repository_id, row),
                        permission=row.permission,
                    )
                )
        return rows

    async def add_or_update_team_permission(  # pylint: disable=too-many-arguments
        self,
        organization_id: int,
        repository_id: int,
        team_id: int,
        permission: RepositoryPermission | str,
        repository_name: str,
        repository_private: bool | None = None,
    ) -> QueryCacheOperation | None:
        self._require("supports_team_permissions", "add_or_update_team_permission")
        key = (int(organization_id), int(repository_id), int(team_id))
        row = _RepositoryRow(
            name=repository_name,
            private=repository_private,
            permission=massage_permission(permission),  # type: ignore[arg-type]
        )
        existing = self._team_permissions.get(key)
        if existing == row:
            return None
        self._team_permissions[key] = row
        return QueryCacheOperation.NEW if existing is None else QueryCacheOperation.UPDATE

    async def remove_team_permission(
        self, organization_id: int, repository_id: int, team_id: int
    ) -> QueryCacheOperation | None:
        self._require("supports_team_permissions", "remove_team_permission")
        key = (int(organization_id), int(repository_id), int(team_id))
        if self._team_permissions.pop(key, None) is None:
            return None
        return QueryCacheOperation.DELETE

    # --------------------------------------------------------------------------
    # Collaborators
    # --------------------------------------------------------------------------
    async def user_collaborator_repositories(
        self, user_id: int
    ) -> list[QueryCacheRepositoryCollaborator]:
        self._require("supports_repository_collaborators", "user_collaborator_repositories")
        rows = []
        for (organization_id, repository_id, member_id), row in self._collaborators.items():
            if member_id != int(user_id):
                continue
            if organization := self._organization(organization_id):
                rows.append(
                    QueryCacheRepositoryCollaborator(
                        repository=self._repository(organization, repository_id, row),
                        permission=row.permission,
                        user_id=member_id,
                        affiliation=row.affiliation or GitHubCollaboratorAffiliation.DIRECT.value,
                    )
                )
        return rows

    async def add_or_update_collaborator(  # pylint: disable=too-many-arguments
        self,
        organization_id: int,
        repository_id: int,
        user_id: int,
        permission: RepositoryPermission | str,
        repository_name: str,
        repository_private: bool | None = None,
        affiliation: GitHubCollaboratorAffiliation | str = GitHubCollaboratorAffiliation.DIRECT,
    ) -> QueryCacheOperation | None:
        self._require("supports_repository_collaborators", "add_or_update_collaborator")
        key = (int(organization_id), int(repository_id), int(user_id))
        row = _RepositoryRow(
            name=repository_name,
            private=repository_private,
            permission=massage_permission(permission),  # type: ignore[arg-type]
            affiliation=GitHubCollaboratorAffiliation(affiliation).value,
        )
        existing = self._collaborators.get(key)
        if existing == row:
            return None
        self._collaborators[key] = row
        return QueryCacheOperation.NEW if existing is None else QueryCacheOperation.UPDATE

    async def remove_collaborator(
        self, organization_id: int, repository_id: int, user_id: int
    ) -> QueryCacheOperation | None:
        self._require("supports_repository_collaborators", "remove_collaborator")
        key = (int(organization_id), int(repository_id), int(user_id))
        if self._collaborators.pop(key, None) is None:
            return None
        return QueryCacheOperation.DELETE

    # --------------------------------------------------------------------------
    # Whole organizations
    # --------------------------------------------------------------------------
    def _tables(self) -> tuple[dict, ...]:
        return (
            self._organization_members,
            self._team_members,
            self._team_permissions,
            self._collaborators,
        )

    async def remove_organization(self, organization_id: int) -> int:
        """Drop all rows of an organization. Returns the number of removed rows"""
        organization_id = int(organization_id)
        removed = 0
        for table in self._tables():
            for key in [key for key in table if key[0] == organization_id]:
                del table[key]
                removed += 1
        logging.debug("Removed %s query cache row(s) of organization %s", removed, organization_id)
        return removed

    async def replace_organization(
        self, organization_id: int, snapshot: "MemoryQueryCache"
    ) -> None:
        """Swap all rows of an organization for the rows of a snapshot"""
        organization_id = int(organization_id)
        await self.remove_organization(organization_id)
        for table, rows in zip(
            self._tables(), snapshot._tables()  # pylint: disable=protected-access
        ):
            table.update((key, row) for key, row in rows.items() if key[0] == organization_id)


async def refresh_organization(  # pylint: disable=too-many-branches
    query_cache: MemoryQueryCache,
    organization: Organization,
    options: CacheOptions | None = None,
) -> dict[str, int]:
    """Replace all rows of an organization with what GitHub returns right now.
    Rows are collected in a snapshot first, so a failing request leaves the
    previous rows in place. Returns the number of rows per kind"""
    if organization.id is None:
        await organization.get_details()
    organization_id: int = organization.id  # type: ignore[assignment]
    snapshot = MemoryQueryCache(
        query_cache.operations,
        supports_organization_membership=query_cache.supports_organization_membership,
        supports_team_membership=query_cache.supports_team_membership,
        supports_team_permissions=query_cache.supports_team_permissions,
        supports_repository_collaborators=query_cache.supports_repository_collaborators,
    )
    counts = {
        "organization_members": 0,
        "team_members": 0,
        "team_permissions": 0,
        "collaborators": 0,
    }

    if query_cache.supports_organization_membership:
        for role in OrganizationMembershipRole:
            for member in await organization.get_members(options, role=role):
                await snapshot.add_or_update_organization_member(
                    organization_id, member.id, role  # type: ignore[arg-type]
                )
                counts["organization_members"] += 1

    if query_cache.supports_team_membership or query_cache.supports_team_permissions:
        teams = await organization.get_teams(options)
        for index, team in enumerate(teams, start=1):
            log_progress(
                f"Refreshing team {index}/{len(teams)} of {organization.name}: {team.slug}"
            )
            if query_cache.supports_team_membership:
                for team_role in TeamRole:
                    for team_member in await team.get_members(options, role=team_role):
                        await snapshot.add_or_update_team_member(
                            organization_id,
                            team.id,
                            team_member.id,  # type: ignore[arg-type]
                            team_role,
                            team_member.login,
                        )
                        counts["team_members"] += 1
            if query_cache.supports_team_permissions:
                for team_repository in await team.get_repositories(options):
                    repository = team_repository.repository
                    await snapshot.add_or_update_team_permission(
                        organization_id,
                        repository.id,  # type: ignore[arg-type]
                        team.id,
                        team_repository.permission,  # type: ignore[arg-type]
                        repository.name,
                        repository.private,
                    )
                    counts["team_permissions"] += 1

    if query_cache.supports_repository_collaborators:
        repositories = await organization.get_repositories(options)
        for index, repository in enumerate(repositories, start=1):
            log_progress(
                f"Refreshing collaborators of repository {index}/{len(repositories)} "
                f"of {organization.name}: {repository.name}"
            )
            collaborators = await repository.get_collaborators(
                options, affiliation=GitHubCollaboratorAffiliation.DIRECT
            )
            for collaborator in collaborators:
                await snapshot.add_or_update_collaborator(
                    organization_id,
                    repository.id,  # type: ignore[arg-type]
                    collaborator.id,  # type: ignore[arg-type]
                    collaborator.get_best_permission(),
                    repository.name,
                    repository.private,
                )
                counts["collaborators"] += 1

    await query_cache.replace_organization(organization_id, snapshot)
    log_progress("")
    logging.info("Refreshed query cache of organization %s: %s", organization.name, counts)
    return counts
