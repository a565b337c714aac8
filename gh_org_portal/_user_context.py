# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Aggregated view of the organizations, teams and repositories of one user"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ._errors import UnrecognizedValueError, is_not_found
from ._graph_manager import PersonalizedRepositoryPermission
from ._helpers import settle_to_value
from ._organization import Organization, OrganizationMembershipRole
from ._permissions import RepositoryPermission, is_permission_better_than
from ._query_cache import QueryCache, QueryCacheTeamRepositoryPermission, capability
from ._repository import Repository
from ._team import Team, TeamRole

if TYPE_CHECKING:
    from ._operations import Operations


def _sort_organizations(organizations: list[Organization]) -> list[Organization]:
    return sorted(organizations, key=lambda organization: organization.name.lower())


@dataclass
class AggregateUserOrganizations:
    member: list[Organization] = field(default_factory=list)
    admin: list[Organization] = field(default_factory=list)
    available: list[Organization] = field(default_factory=list)

    def as_json(self) -> dict[str, list[str]]:
        return {
            "member": [organization.name for organization in self.member],
            "admin": [organization.name for organization in self.admin],
            "available": [organization.name for organization in self.available],
        }


@dataclass
class AggregateUserTeams:
    maintainer: list[Team] = field(default_factory=list)
    member: list[Team] = field(default_factory=list)

    def as_json(self) -> dict[str, list[dict]]:
        return {
            "maintainer": [team.to_simple_json_object() for team in self.maintainer],
            "member": [team.to_simple_json_object() for team in self.member],
        }


@dataclass
class AggregateLegacyUserRepositories:
    by_team: list[Repository] = field(default_factory=list)

    def as_json(self) -> dict[str, list[dict]]:
        return {"by_team": [repository.as_json() for repository in self.by_team]}


@dataclass
class AggregateUserSummary:
    organizations: AggregateUserOrganizations
    teams: AggregateUserTeams
    repos: AggregateLegacyUserRepositories

    def as_json(self) -> dict[str, Any]:
        return {
            "organizations": self.organizations.as_json(),
            "teams": self.teams.as_json(),
            "repos": self.repos.as_json(),
        }


@dataclass
class _RepositoryPermissionPair:
    repository: Repository
    collaboration_permission: RepositoryPermission | None = None
    team_permissions: list[QueryCacheTeamRepositoryPermission] = field(default_factory=list)


class UserContext:
    """Everything a user has access to, either from the query cache or, where
    it lacks a capability, from live lookups. Results are kept per instance"""

    def __init__(
        self, operations: "Operations", query_cache: QueryCache | None, user_id: int | str
    ) -> None:
        self.id = int(user_id)  # pylint: disable=invalid-name
        self._operations = operations
        self._query_cache = query_cache
        self._organizations: AggregateUserOrganizations | None = None
        self._teams: AggregateUserTeams | None = None
        self._legacy_repositories: AggregateLegacyUserRepositories | None = None
        self._repository_permissions: list[PersonalizedRepositoryPermission] | None = None

    def _supports(self, *names: str) -> bool:
        return all(capability(self._query_cache, name) for name in names)

    # --------------------------------------------------------------------------
    # Memoized views
    # --------------------------------------------------------------------------
    async def organizations(self) -> AggregateUserOrganizations:
        if self._organizations is None:
            self._organizations = await self._aggregate_organizations()
        return self._organizations

    async def teams(self) -> AggregateUserTeams:
        if self._teams is None:
            self._teams = await self._aggregate_teams()
        return self._teams

    async def repositories(self) -> AggregateLegacyUserRepositories:
        if self._legacy_repositories is None:
            self._legacy_repositories = await self._aggregate_legacy_repositories()
        return self._legacy_repositories

    async def repository_permissions(self) -> list[PersonalizedRepositoryPermission]:
        if self._repository_permissions is None:
            self._repository_permissions = await self._aggregate_repository_permissions()
        return self._repository_permissions

    # --------------------------------------------------------------------------
    # Overviews
    # --------------------------------------------------------------------------
    async def get_aggregated_overview(self) -> AggregateUserSummary:
        """Organizations, teams and repositories of the user. A failing part
        is logged and left empty instead of failing the whole overview"""
        organizations, teams, repositories = await asyncio.gather(
            settle_to_value(self._aggregate_organizations()),
            settle_to_value(self._aggregate_teams()),
            settle_to_value(self._aggregate_legacy_repositories()),
        )
        for part, state in (
            ("organizations", organizations),
            ("teams", teams),
            ("repositories", repositories),
        ):
            if not state.ok:
                logging.warning(
                    "Could not aggregate the %s of user %s: %s", part, self.id, state.error
                )

        return AggregateUserSummary(
            organizations=organizations.value or AggregateUserOrganizations(),
            teams=teams.value or AggregateUserTeams(),
            repos=repositories.value or AggregateLegacyUserRepositories(),
        )

    async def get_aggregated_organization_overview(
        self, organization: Organization
    ) -> AggregateUserSummary:
        """Like the overview, with only the teams of one organization"""
        results = await self.get_aggregated_overview()
        results.teams = self.reduce_organization_teams(organization, results.teams)
        return results

    @staticmethod
    def reduce_organization_teams(
        organization: Organization, teams: AggregateUserTeams
    ) -> AggregateUserTeams:
        name = organization.name.lower()
        return AggregateUserTeams(
            maintainer=[
                team for team in teams.maintainer if team.organization.name.lower() == name
            ],
            member=[team for team in teams.member if team.organization.name.lower() == name],
        )

    # --------------------------------------------------------------------------
    # Aggregation
    # --------------------------------------------------------------------------
    async def _aggregate_organizations(self) -> AggregateUserOrganizations:
        if self._supports("supports_organization_membership"):
            known = await self._get_query_cache_organizations()
        else:
            known = await self._get_graph_manager_organizations()

        known.admin = _sort_organizations(known.admin)
        known.member = _sort_organizations(known.member)
        member_names = {organization.name.lower() for organization in known.member}
        known.available = _sort_organizations(
            [
                organization
                for organization in self._operations.organizations.values()
                if organization.name.lower() not in member_names
            ]
        )
        return known

    async def _aggregate_teams(self) -> AggregateUserTeams:
        if self._supports("supports_team_membership"):
            return await self._get_query_cache_teams()
        return await self._get_graph_manager_teams()

    async def _aggregate_legacy_repositories(self) -> AggregateLegacyUserRepositories:
        if self._supports(
            "supports_repository_collaborators",
            "supports_team_permissions",
            "supports_team_membership",
        ):
            return await self._get_query_cache_repositories()
        return await self._get_graph_manager_repositories()

    async def _aggregate_repository_permissions(self) -> list[PersonalizedRepositoryPermission]:
        if self._supports("supports_team_permissions", "supports_team_membership"):
            return await self._get_query_cache_repository_permissions()
        return await self._operations.graph_manager.get_user_repos_by_team_memberships(self.id)

    # --------------------------------------------------------------------------
    # Query cache
    # --------------------------------------------------------------------------
    async def _get_query_cache_organizations(self) -> AggregateUserOrganizations:
        state = AggregateUserOrganizations()
        for row in await self._query_cache.user_organizations(self.id):  # type: ignore[union-attr]
            if row.role == OrganizationMembershipRole.ADMIN:
                state.admin.append(row.organization)
            elif row.role == OrganizationMembershipRole.MEMBER:
                state.member.append(row.organization)
            else:
                raise UnrecognizedValueError.role(
                    row.role, f"in organization {row.organization.name} for user {self.id}"
                )
        return state

    async def _get_query_cache_teams(self) -> AggregateUserTeams:
        state = AggregateUserTeams()
        for row in await self._query_cache.user_teams(self.id):  # type: ignore[union-attr]
            team = row.team
            try:
                if row.role == TeamRole.MAINTAINER:
                    bucket = state.maintainer
                elif row.role == TeamRole.MEMBER:
                    bucket = state.member
                else:
                    raise UnrecognizedValueError.role(
                        row.role, f"for team ID {team.id} in org {team.organization.name}"
                    )
                await team.get_details()
                bucket.append(team)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                if not is_not_found(exc):
                    logging.warning("Unable to get team information: %s", exc)
        return state

    async def _get_query_cache_team_permissions(self) -> list[QueryCacheTeamRepositoryPermission]:
        teams = await self._query_cache.user_teams(self.id)  # type: ignore[union-attr]
        team_ids = [row.team.id for row in teams]
        return await self._query_cache.teams_permissions(team_ids)  # type: ignore[union-attr]

    async def _get_query_cache_repositories(self) -> AggregateLegacyUserRepositories:
        repositories: dict[Any, Repository] = {}
        for row in await self._get_query_cache_team_permissions():
            repositories[row.repository.id] = row.repository
        return AggregateLegacyUserRepositories(by_team=list(repositories.values()))

    async def _get_query_cache_repository_permissions(
        self,
    ) -> list[PersonalizedRepositoryPermission]:
        pairs: dict[Any, _RepositoryPermissionPair] = {}

        def get_or_create_pair(repository: Repository) -> _RepositoryPermissionPair:
            if repository.id not in pairs:
                pairs[repository.id] = _RepositoryPermissionPair(repository=repository)
            return pairs[repository.id]

        if self._supports("supports_team_membership"):
            for team_row in await self._get_query_cache_team_permissions():
                get_or_create_pair(team_row.repository).team_permissions.append(team_row)

        if self._supports("supports_repository_collaborators"):
            query_cache = self._query_cache
            rows = await query_cache.user_collaborator_repositories(  # type: ignore[union-attr]
                self.id
            )
            for row in rows:
                get_or_create_pair(row.repository).collaboration_permission = row.permission

        personalized: list[PersonalizedRepositoryPermission] = []
        for pair in pairs.values():
            best: RepositoryPermission | None = None
            team_permissions = []
            for team_row in pair.team_permissions:
                team_permissions.append(team_row.as_team_repository_permission())
                if is_permission_better_than(best, team_row.permission):
                    best = team_row.permission
            if pair.collaboration_permission and is_permission_better_than(
                best, pair.collaboration_permission
            ):
                best = pair.collaboration_permission
            personalized.append(
                PersonalizedRepositoryPermission(
                    repository=pair.repository,
                    best_computed_permission=best,
                    collaborator_permission=pair.collaboration_permission,
                    team_permissions=team_permissions,
                )
            )
        return personalized

    # --------------------------------------------------------------------------
    # Live lookups
    # --------------------------------------------------------------------------
    async def _get_graph_manager_organizations(self) -> AggregateUserOrganizations:
        graph_manager = self._operations.graph_manager
        admin = await graph_manager.get_organization_statuses_by_name(
            self.id, OrganizationMembershipRole.ADMIN
        )
        member = await graph_manager.get_organization_statuses_by_name(self.id)
        return AggregateUserOrganizations(
            admin=[self._operations.get_organization(name) for name in admin],
            member=[self._operations.get_organization(name) for name in member],
        )

    async def _get_graph_manager_teams(self) -> AggregateUserTeams:
        graph_manager = self._operations.graph_manager
        maintainer = await graph_manager.get_team_memberships(self.id, TeamRole.MAINTAINER)
        member = await graph_manager.get_team_memberships(self.id)

        def to_team(entity: dict) -> Team:
            return self._operations.get_team_by_id_with_organization(
                entity["id"], entity["organization"]["login"], entity
            )

        return AggregateUserTeams(
            maintainer=[to_team(entity) for entity in maintainer],
            member=[to_team(entity) for entity in member],
        )

    async def _get_graph_manager_repositories(self) -> AggregateLegacyUserRepositories:
        repositories = await self._operations.graph_manager.get_user_repos_by_team_memberships(
            self.id
        )
        return AggregateLegacyUserRepositories(
            by_team=[personalized.repository for personalized in repositories]
        )
