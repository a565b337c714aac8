# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Teams of an organization, their members and repositories"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._cache import CacheOptions, create_cache_options, create_paged_cache_options
from ._credentials import AppPurpose
from ._errors import InvalidStateError, NotFoundError, is_not_found, wrap_error
from ._helpers import assign_known_fields_prefixed, create_instances
from ._permissions import (
    RepositoryPermission,
    massage_permission,
    permissions_object_to_value,
)

if TYPE_CHECKING:
    from ._organization import Organization
    from ._repository import Repository


class TeamRole(str, Enum):
    """Role of a member in a team"""

    MEMBER = "member"
    MAINTAINER = "maintainer"


TEAM_PRIMARY_PROPERTIES = [
    "id",
    "name",
    "slug",
    "description",
    "members_count",
    "repos_count",
    "created_at",
    "updated_at",
]
TEAM_SECONDARY_PROPERTIES = [
    "privacy",
    "permission",
    "organization",
    "url",
    "members_url",
    "repositories_url",
]

TEAM_MEMBER_PRIMARY_PROPERTIES = ["id", "login", "avatar_url", "permissions"]


class TeamMember:
    """A member of a team, recreated on every fetch"""

    _id: int | None = None
    _login: str | None = None
    _avatar_url: str | None = None
    _permissions: dict | None = None

    def __init__(self, team: "Team", entity: dict | None) -> None:
        self._team = team
        self.other_fields: dict[str, Any] = {}
        self.extra_fields: dict[str, Any] = {}
        assign_known_fields_prefixed(self, entity, "teamMember", TEAM_MEMBER_PRIMARY_PROPERTIES)

    @property
    def team(self) -> "Team":
        return self._team

    @property
    def id(self) -> int | None:  # pylint: disable=invalid-name
        return self._id

    @property
    def login(self) -> str | None:
        return self._login

    @property
    def avatar_url(self) -> str | None:
        return self._avatar_url

    @property
    def permissions(self) -> dict | None:
        return self._permissions

    def as_json(self) -> dict[str, Any]:
        """Simple JSON representation"""
        return {"id": self.id, "login": self.login, "avatar_url": self.avatar_url}


class TeamRepositoryPermission:
    """A repository the team has access to, and the permission it grants"""

    def __init__(self, team: "Team", entity: dict) -> None:
        self._team = team
        self._repository = team.organization.repository(entity["name"], entity)
        if isinstance(entity.get("permission"), str):
            self._permission = massage_permission(entity["permission"])
        else:
            self._permission = permissions_object_to_value(entity.get("permissions"))

    @property
    def team(self) -> "Team":
        return self._team

    @property
    def repository(self) -> "Repository":
        return self._repository

    @property
    def permission(self) -> RepositoryPermission | None:
        return self._permission

    def as_json(self) -> dict[str, Any]:
        """Simple JSON representation"""
        return {
            "team": self.team.to_simple_json_object(),
            "repository": self.repository.full_name or self.repository.name,
            "permission": str(self.permission) if self.permission else None,
        }


class Team:  # pylint: disable=too-many-public-methods
    """A GitHub team. It can only exist with a known numeric id"""

    _id: int
    _name: str | None = None
    _slug: str | None = None
    _description: str | None = None
    _members_count: int | None = None
    _repos_count: int | None = None
    _created_at: str | None = None
    _updated_at: str | None = None

    def __init__(self, organization: "Organization", entity: dict) -> None:
        if not entity or not isinstance(entity.get("id"), int) or isinstance(entity["id"], bool):
            raise InvalidStateError("Team instances require a numeric team ID")
        self._organization = organization
        self._details_entity: dict | None = None
        self.other_fields: dict[str, Any] = {}
        self.extra_fields: dict[str, Any] = {}
        assign_known_fields_prefixed(
            self, entity, "team", TEAM_PRIMARY_PROPERTIES, TEAM_SECONDARY_PROPERTIES
        )

    def __repr__(self) -> str:
        return f"Team(id={self.id}, slug={self.slug!r}, organization={self.organization.name!r})"

    # --------------------------------------------------------------------------
    # Fields
    # --------------------------------------------------------------------------
    @property
    def organization(self) -> "Organization":
        return self._organization

    @property
    def id(self) -> int:  # pylint: disable=invalid-name
        return self._id

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def slug(self) -> str | None:
        return self._slug

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def members_count(self) -> int | None:
        return self._members_count

    @property
    def repos_count(self) -> int | None:
        return self._repos_count

    @property
    def created_at(self) -> str | None:
        return self._created_at

    @property
    def updated_at(self) -> str | None:
        return self._updated_at

    @property
    def is_broad_access_team(self) -> bool:
        """Whether every member of the organization may join the team"""
        return self.id in self.organization.broad_access_teams

    @property
    def is_system_team(self) -> bool:
        """Whether the team has a special meaning in the organization"""
        return self.id in self.organization.system_team_ids

    def to_simple_json_object(self) -> dict[str, Any]:
        """Identity of the team as JSON"""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "organization": {"login": self.organization.name},
        }

    # --------------------------------------------------------------------------
    # Details
    # --------------------------------------------------------------------------
    async def get_details(self, options: CacheOptions | None = None) -> dict:
        """Get the team from GitHub. Once fetched, the details are kept unless
        new cache options are given"""
        if self._details_entity is not None and options is None:
            return self._details_entity

        operations = self.organization.operations
        cache_options = create_cache_options(operations.defaults, "team_detail", options)
        try:
            entity = await operations.github.call(
                await self.organization.authorize(AppPurpose.DATA),
                "teams.get",
                {"team_id": self.id},
                cache_options,
            )
        except Exception as exc:
            if is_not_found(exc):
                raise NotFoundError(
                    f"The GitHub team ID {self.id} could not be found or has been deleted"
                ) from exc
            raise wrap_error(exc, f"Could not get details about the team ID {self.id}.")

        self._details_entity = entity
        assign_known_fields_prefixed(
            self, entity, "team", TEAM_PRIMARY_PROPERTIES, TEAM_SECONDARY_PROPERTIES
        )
        return entity

    async def ensure_name(self) -> None:
        """Fetch the details if the name is not known yet"""
        if not self.name:
            await self.get_details()

    async def is_deleted(self, options: CacheOptions | None = None) -> bool:
        """Whether the team does not exist anymore"""
        try:
            await self.get_details(options)
        except NotFoundError:
            return True
        return False

    # --------------------------------------------------------------------------
    # Members
    # --------------------------------------------------------------------------
    def member(self, user_id: int, entity: dict | None = None) -> TeamMember:
        """Build a member of this team, without fetching it"""
        return TeamMember(self, entity if entity else {"id": user_id})

    def member_from_entity(self, entity: dict) -> TeamMember:
        return self.member(entity["id"], entity)

    async def get_members(
        self, options: CacheOptions | None = None, role: TeamRole | str | None = None
    ) -> list[TeamMember]:
        """Get the members of the team, optionally only those of a role"""
        operations = self.organization.operations
        parameters: dict[str, Any] = {"team_id": self.id, "per_page": operations.page_size}
        if role:
            parameters["role"] = TeamRole(role).value
        default_key = "team_maintainers" if role == TeamRole.MAINTAINER else "org_members"
        cache_options = create_paged_cache_options(operations.defaults, default_key, options)
        entities = await operations.github.collection(
            await self.organization.authorize(AppPurpose.DATA),
            "teams.listMembers",
            parameters,
            cache_options,
        )
        return create_instances(self.member_from_entity, entities)

    async def get_maintainers(self, options: CacheOptions | None = None) -> list[TeamMember]:
        return await self.get_members(options, role=TeamRole.MAINTAINER)

    async def is_member(
        self,
        username: str,
        options: CacheOptions | None = None,
        role: TeamRole | str = TeamRole.MEMBER,
    ) -> TeamRole | bool:
        """Check the cached member list of a role for the user. Returns the
        role if found"""
        expected = username.lower()
        for member in await self.get_members(options, role=role):
            if (member.login or "").lower() == expected:
                return TeamRole(role)
        return False

    async def is_maintainer(self, username: str, options: CacheOptions | None = None) -> bool:
        return bool(await self.is_member(username, options, role=TeamRole.MAINTAINER))

    async def get_membership(self, username: str) -> dict | bool:
        """Live lookup of the membership of a user. False if there is none"""
        try:
            return await self.organization.operations.github.post(
                await self.organization.authorize(AppPurpose.DATA),
                "teams.getMembership",
                {"team_id": self.id, "username": username},
            )
        except Exception as exc:
            if is_not_found(exc):
                return False
            raise wrap_error(
                exc, f'Trouble retrieving the membership for "{username}" in team {self.id}.'
            )

    async def get_membership_efficiently(self, username: str) -> dict | bool:
        """Get the membership of a user from the cached maintainer and member
        lists, and only ask GitHub directly if neither knows the user"""
        if await self.is_maintainer(username):
            return {"role": TeamRole.MAINTAINER.value, "state": "active"}
        if await self.is_member(username):
            return {"role": TeamRole.MEMBER.value, "state": "active"}

        membership = await self.get_membership(username)
        if not membership:
            return False
        return {
            "role": membership.get("role"),  # type: ignore[union-attr]
            "state": membership.get("state"),  # type: ignore[union-attr]
        }

    async def add_membership(
        self, username: str, role: TeamRole | str = TeamRole.MEMBER
    ) -> dict:
        """Add a user to the team, or change their role"""
        logging.info(
            "Setting membership of %s in team %s to '%s'", username, self.id, TeamRole(role).value
        )
        return await self.organization.operations.github.post(
            await self.organization.authorize(AppPurpose.OPERATIONS),
            "teams.addOrUpdateMembership",
            {"team_id": self.id, "username": username, "role": TeamRole(role).value},
        )

    async def add_maintainer(self, username: str) -> dict:
        return await self.add_membership(username, TeamRole.MAINTAINER)

    async def remove_membership(self, username: str) -> None:
        """Remove a user from the team"""
        logging.info("Removing %s from team %s", username, self.id)
        try:
            await self.organization.operations.github.post(
                await self.organization.authorize(AppPurpose.OPERATIONS),
                "teams.removeMembership",
                {"team_id": self.id, "username": username},
            )
        except Exception as exc:
            raise wrap_error(exc, f"Could not remove {username} from team {self.id}.")

    # --------------------------------------------------------------------------
    # Repositories
    # --------------------------------------------------------------------------
    async def get_repositories(
        self, options: CacheOptions | None = None, repository_type: str | None = None
    ) -> list[TeamRepositoryPermission]:
        """Get the repositories the team has access to. The type 'sources'
        leaves out forks"""
        if repository_type not in (None, "sources"):
            raise ValueError("The only supported repository type is 'sources'")

        operations = self.organization.operations
        parameters = {"team_id": self.id, "per_page": operations.page_size}
        cache_options = create_paged_cache_options(
            operations.defaults, "team_repository_permission", options
        )
        entities = await operations.github.collection(
            await self.organization.authorize(AppPurpose.DATA),
            "teams.listRepos",
            parameters,
            cache_options,
        )
        if repository_type == "sources":
            entities = [entity for entity in entities if not entity.get("fork")]
        return create_instances(lambda entity: TeamRepositoryPermission(self, entity), entities)
