# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Repositories of an organization, their collaborators and team permissions"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._cache import CacheOptions, create_cache_options, create_paged_cache_options
from ._credentials import AppPurpose
from ._errors import NotFoundError, is_not_found, wrap_error
from ._helpers import assign_known_fields_prefixed, create_instances
from ._permissions import (
    PERMISSION_ALIASES,
    RepositoryPermission,
    massage_permission,
    permission_to_permissions_object,
    permissions_object_to_value,
)

if TYPE_CHECKING:
    from ._organization import Organization
    from ._team import Team


class GitHubCollaboratorAffiliation(str, Enum):
    """Filter for the collaborators of a repository"""

    ALL = "all"
    DIRECT = "direct"
    OUTSIDE = "outside"


REPOSITORY_PRIMARY_PROPERTIES = [
    "id",
    "name",
    "full_name",
    "private",
    "html_url",
    "description",
    "fork",
    "url",
    "created_at",
    "updated_at",
    "pushed_at",
    "git_url",
    "homepage",
    "size",
    "stargazers_count",
    "watchers_count",
    "language",
    "has_issues",
    "has_wiki",
    "has_pages",
    "forks_count",
    "open_issues_count",
    "forks",
    "open_issues",
    "watchers",
    "license",
    "default_branch",
    "archived",
    "visibility",
]
REPOSITORY_SECONDARY_PROPERTIES = [
    "owner",
    "permissions",
    "forks_url",
    "keys_url",
    "clone_url",
    "collaborators_url",
    "teams_url",
    "hooks_url",
    "issue_events_url",
    "events_url",
    "assignees_url",
    "branches_url",
    "tags_url",
    "blobs_url",
    "git_tags_url",
    "git_refs_url",
    "has_downloads",
    "ssh_url",
    "trees_url",
    "statuses_url",
    "languages_url",
    "stargazers_url",
    "contributors_url",
    "subscribers_url",
    "subscription_url",
    "commits_url",
    "git_commits_url",
    "comments_url",
    "issue_comment_url",
    "contents_url",
    "compare_url",
    "merges_url",
    "archive_url",
    "downloads_url",
    "issues_url",
    "pulls_url",
    "milestones_url",
    "notifications_url",
    "labels_url",
    "releases_url",
    "svn_url",
    "mirror_url",
    "organization",
    "network_count",
    "subscribers_count",
]

COLLABORATOR_PRIMARY_PROPERTIES = ["id", "login", "avatar_url", "permissions"]
COLLABORATOR_PERMISSION_PRIMARY_PROPERTIES = ["permission", "user", "role_name"]


class Collaborator:
    """A user with access to a repository, recreated on every fetch"""

    _id: int | None = None
    _login: str | None = None
    _avatar_url: str | None = None
    _permissions: dict | None = None

    def __init__(self, entity: dict | None) -> None:
        self.other_fields: dict[str, Any] = {}
        self.extra_fields: dict[str, Any] = {}
        assign_known_fields_prefixed(self, entity, "collaborator", COLLABORATOR_PRIMARY_PROPERTIES)

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
    def permissions(self) -> dict:
        return self._permissions or {}

    def get_best_permission(self) -> RepositoryPermission:
        """Highest permission in the permissions object"""
        return permissions_object_to_value(self.permissions)

    def as_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "login": self.login,
            "avatar_url": self.avatar_url,
            "permissions": self.permissions,
        }


class CollaboratorPermissionLevel:
    """Response of the collaborator permission level check for one user"""

    _id: int | None = None
    _user: dict | None = None
    _permission: str | None = None
    _role_name: str | None = None

    def __init__(self, entity: dict | None) -> None:
        self.other_fields: dict[str, Any] = {}
        self.extra_fields: dict[str, Any] = {}
        assign_known_fields_prefixed(
            self, entity, "repositoryPermission", COLLABORATOR_PERMISSION_PRIMARY_PROPERTIES
        )
        if self._user:
            self._id = self._user.get("id")

    @property
    def id(self) -> int | None:  # pylint: disable=invalid-name
        return self._id

    @property
    def user(self) -> dict | None:
        return self._user

    @property
    def permission(self) -> str | None:
        """Level as returned by GitHub, e.g. admin, write, read or none"""
        return self._permission

    @property
    def role_name(self) -> str | None:
        return self._role_name

    def as_repository_permission(self) -> RepositoryPermission:
        """The level in the naming of the REST API, e.g. push instead of write"""
        return massage_permission(self._permission or "none")  # type: ignore[return-value]

    def as_collaborator_permissions(self) -> dict[str, bool]:
        return permission_to_permissions_object(self.as_repository_permission())

    def as_collaborator_json(self) -> dict[str, Any]:
        return {
            "avatar_url": None,
            "id": self.id,
            "login": (self.user or {}).get("login"),
            "permissions": self.as_collaborator_permissions(),
        }

    def has_custom_role_permission(self) -> bool:
        """Whether the user has a custom repository role"""
        role_name = (self._role_name or "").lower()
        return role_name in ("", "none") or role_name not in PERMISSION_ALIASES

    def interpret_role_as_detailed_permission(self) -> RepositoryPermission:
        """The role if it is a built-in one, e.g. triage or maintain. Custom
        roles fall back to the level"""
        if not self.has_custom_role_permission():
            return massage_permission(self._role_name)  # type: ignore[return-value]
        return self.as_repository_permission()


class TeamPermission:
    """A team with access to a repository, and the permission it grants"""

    def __init__(self, organization: "Organization", entity: dict) -> None:
        self._team = organization.team_from_entity(entity)
        self._permission = massage_permission(entity.get("permission"))
        self._permissions: dict | None = entity.get("permissions")

    @property
    def team(self) -> "Team":
        return self._team

    @property
    def permission(self) -> RepositoryPermission | None:
        return self._permission

    @property
    def permissions(self) -> dict[str, bool]:
        if self._permissions:
            return self._permissions
        return permission_to_permissions_object(self._permission)

    def as_json(self) -> dict[str, Any]:
        return {
            "permission": str(self.permission) if self.permission else None,
            "team": self.team.to_simple_json_object(),
        }


class Repository:  # pylint: disable=too-many-public-methods
    """A GitHub repository of a managed organization"""

    _id: int | None = None
    _name: str
    _full_name: str | None = None
    _private: bool | None = None
    _html_url: str | None = None
    _description: str | None = None
    _fork: bool | None = None
    _created_at: str | None = None
    _updated_at: str | None = None
    _pushed_at: str | None = None
    _default_branch: str | None = None
    _archived: bool | None = None
    _visibility: str | None = None

    def __init__(self, organization: "Organization", entity: dict) -> None:
        self._organization = organization
        self.other_fields: dict[str, Any] = {}
        self.extra_fields: dict[str, Any] = {}
        assign_known_fields_prefixed(
            self,
            entity,
            "repository",
            REPOSITORY_PRIMARY_PROPERTIES,
            REPOSITORY_SECONDARY_PROPERTIES,
        )

    def __repr__(self) -> str:
        return f"Repository(name={self.name!r}, organization={self.organization.name!r})"

    # --------------------------------------------------------------------------
    # Fields
    # --------------------------------------------------------------------------
    @property
    def organization(self) -> "Organization":
        return self._organization

    @property
    def id(self) -> int | None:  # pylint: disable=invalid-name
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def full_name(self) -> str | None:
        return self._full_name

    @property
    def private(self) -> bool | None:
        return self._private

    @property
    def html_url(self) -> str | None:
        return self._html_url

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def fork(self) -> bool | None:
        return self._fork

    @property
    def created_at(self) -> str | None:
        return self._created_at

    @property
    def updated_at(self) -> str | None:
        return self._updated_at

    @property
    def pushed_at(self) -> str | None:
        return self._pushed_at

    @property
    def default_branch(self) -> str | None:
        return self._default_branch

    @property
    def archived(self) -> bool | None:
        return self._archived

    @property
    def visibility(self) -> str | None:
        """public, private or internal. Derived from `private` if GitHub did
        not send it"""
        if self._visibility:
            return self._visibility
        if self._private is None:
            return None
        return "private" if self._private else "public"

    def _parameters(self, **extra: Any) -> dict[str, Any]:
        return {"owner": self.organization.name, "repo": self.name, **extra}

    def as_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "full_name": self.full_name,
            "private": self.private,
            "html_url": self.html_url,
            "description": self.description,
            "fork": self.fork,
        }

    # --------------------------------------------------------------------------
    # Details
    # --------------------------------------------------------------------------
    async def get_details(self, options: CacheOptions | None = None) -> dict:
        """Get the repository from GitHub and update all fields"""
        operations = self.organization.operations
        cache_options = create_cache_options(operations.defaults, "org_repo_details", options)
        try:
            entity = await operations.github.call(
                await self.organization.authorize(AppPurpose.DATA),
                "repos.get",
                self._parameters(),
                cache_options,
            )
        except Exception as exc:
            if is_not_found(exc):
                raise NotFoundError("The repo could not be found.") from exc
            raise wrap_error(exc, "Could not get details about the repo.")

        assign_known_fields_prefixed(
            self,
            entity,
            "repository",
            REPOSITORY_PRIMARY_PROPERTIES,
            REPOSITORY_SECONDARY_PROPERTIES,
        )
        return entity

    async def is_deleted(self, options: CacheOptions | None = None) -> bool:
        """Whether the repository does not exist anymore"""
        try:
            await self.get_details(options)
        except NotFoundError:
            return True
        return False

    # --------------------------------------------------------------------------
    # Collaborators
    # --------------------------------------------------------------------------
    async def get_collaborators(
        self,
        options: CacheOptions | None = None,
        affiliation: GitHubCollaboratorAffiliation | str = GitHubCollaboratorAffiliation.ALL,
    ) -> list[Collaborator]:
        """Get the collaborators of the repository"""
        operations = self.organization.operations
        parameters = self._parameters(
            affiliation=GitHubCollaboratorAffiliation(affiliation).value,
            per_page=operations.page_size,
        )
        cache_options = create_paged_cache_options(
            operations.defaults, "org_repo_collaborators", options
        )
        entities = await operations.github.collection(
            await self.organization.authorize(AppPurpose.DATA),
            "repos.listCollaborators",
            parameters,
            cache_options,
        )
        return create_instances(Collaborator, entities)

    async def get_collaborator(
        self, username: str, options: CacheOptions | None = None
    ) -> CollaboratorPermissionLevel:
        """Get the permission level of a single user"""
        operations = self.organization.operations
        cache_options = create_cache_options(operations.defaults, "org_repo_collaborator", options)
        entity = await operations.github.call(
            await self.organization.authorize(AppPurpose.CUSTOMER_FACING),
            "repos.getCollaboratorPermissionLevel",
            self._parameters(username=username),
            cache_options,
        )
        return CollaboratorPermissionLevel(entity)

    async def check_collaborator(self, username: str) -> bool:
        """Live check whether the user is a collaborator"""
        try:
            await self.organization.operations.github.post(
                await self.organization.authorize(AppPurpose.DATA),
                "repos.checkCollaborator",
                self._parameters(username=username),
            )
            return True
        except Exception as exc:
            if is_not_found(exc):
                return False
            raise wrap_error(exc, f"Could not check whether {username} is a collaborator.")

    async def add_collaborator(
        self, username: str, permission: RepositoryPermission | str
    ) -> Any:
        """Invite a collaborator or change their permission"""
        permission = massage_permission(permission)
        logging.info("Setting permission of %s in %s to '%s'", username, self.name, permission)
        return await self.organization.operations.github.post(
            await self.organization.authorize(AppPurpose.OPERATIONS),
            "repos.addCollaborator",
            self._parameters(username=username, permission=str(permission)),
        )

    async def remove_collaborator(self, username: str) -> None:
        """Remove a collaborator"""
        logging.info("Removing collaborator %s from %s", username, self.name)
        await self.organization.operations.github.post(
            await self.organization.authorize(AppPurpose.OPERATIONS),
            "repos.removeCollaborator",
            self._parameters(username=username),
        )

    # --------------------------------------------------------------------------
    # Teams
    # --------------------------------------------------------------------------
    async def get_team_permissions(
        self, options: CacheOptions | None = None
    ) -> list[TeamPermission]:
        """Get the teams with access to the repository"""
        operations = self.organization.operations
        parameters = self._parameters(per_page=operations.page_size)
        cache_options = create_paged_cache_options(operations.defaults, "org_repo_teams", options)
        entities = await operations.github.collection(
            await self.organization.authorize(AppPurpose.DATA),
            "repos.listTeams",
            parameters,
            cache_options,
        )
        return create_instances(
            lambda entity: TeamPermission(self.organization, entity), entities
        )

    async def set_team_permission(
        self, team_id: int, permission: RepositoryPermission | str
    ) -> Any:
        """Grant a team access, or change its permission"""
        permission = massage_permission(permission)
        logging.info("Setting permission of team %s in %s to '%s'", team_id, self.name, permission)
        return await self.organization.operations.github.post(
            await self.organization.authorize(AppPurpose.OPERATIONS),
            "teams.addOrUpdateRepo",
            self._parameters(team_id=team_id, permission=str(permission)),
        )

    async def remove_team_permission(self, team_id: int) -> None:
        """Remove the access of a team"""
        logging.info("Removing team %s from %s", team_id, self.name)
        await self.organization.operations.github.post(
            await self.organization.authorize(AppPurpose.OPERATIONS),
            "teams.removeRepo",
            self._parameters(team_id=team_id),
        )

    # --------------------------------------------------------------------------
    # Webhooks
    # --------------------------------------------------------------------------
    async def get_webhooks(self, options: CacheOptions | None = None) -> list[dict]:
        """Get the raw webhooks of the repository"""
        operations = self.organization.operations
        parameters = self._parameters(per_page=operations.page_size)
        cache_options = create_paged_cache_options(
            operations.defaults, "org_repo_webhooks", options
        )
        return await operations.github.collection(
            await self.organization.authorize(AppPurpose.DATA),
            "repos.listHooks",
            parameters,
            cache_options,
        )
