# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""A managed GitHub organization, its settings and members"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._cache import CacheOptions, create_cache_options, create_paged_cache_options
from ._credentials import AppPurpose, CredentialResolver
from ._errors import (
    InvalidStateError,
    NotFoundError,
    RedirectError,
    UnrecognizedValueError,
    get_status,
    is_not_found,
    wrap_error,
)
from ._helpers import assign_known_fields_prefixed, create_instances
from ._repository import Repository
from ._team import Team, TeamRole

if TYPE_CHECKING:
    from ._operations import Operations


class OrganizationMembershipRole(str, Enum):
    """Role of a member in an organization"""

    ADMIN = "admin"
    MEMBER = "member"


class SpecialTeam(str, Enum):
    """Teams with a special meaning in an organization, identified by their id"""

    EVERYONE = "everyone"
    SUDO = "sudo"
    GLOBAL_SUDO = "global_sudo"
    SYSTEM_READ = "system_read"
    SYSTEM_WRITE = "system_write"
    SYSTEM_ADMIN = "system_admin"


@dataclass(frozen=True)
class SpecialTeamEntry:
    """A team id configured for a special purpose"""

    special_team: SpecialTeam
    team_id: int


@dataclass(frozen=True)
class OrganizationSettings:  # pylint: disable=too-many-instance-attributes
    """Immutable configuration of a managed organization"""

    name: str
    organization_id: int | None = None
    active: bool = True
    priority: str = "secondary"
    repository_types: str = "public"
    portal_description: str = ""
    features: frozenset[str] = frozenset()
    legal_entities: tuple[str, ...] = ()
    hook_secrets: tuple[str, ...] = ()
    templates: tuple[str, ...] = ()
    special_teams: tuple[SpecialTeamEntry, ...] = ()

    def has_feature(self, feature: str) -> bool:
        """Whether the organization opted in to a feature"""
        return feature in self.features


@dataclass
class AdministratorBasics:
    """An administrator of an organization, either as owner or via the sudoers team"""

    id: int
    login: str
    owner: bool = False
    sudo: bool = False


MEMBER_PRIMARY_PROPERTIES = ["id", "login", "avatar_url"]
MEMBER_SECONDARY_PROPERTIES = ["type", "site_admin", "url", "html_url"]


class OrganizationMember:
    """A member of an organization, recreated on every fetch"""

    _id: int | None = None
    _login: str | None = None
    _avatar_url: str | None = None

    def __init__(self, organization: "Organization", entity: dict | None) -> None:
        self._organization = organization
        self.other_fields: dict[str, Any] = {}
        self.extra_fields: dict[str, Any] = {}
        assign_known_fields_prefixed(
            self, entity, "member", MEMBER_PRIMARY_PROPERTIES, MEMBER_SECONDARY_PROPERTIES
        )

    @property
    def organization(self) -> "Organization":
        """The organization of the member"""
        return self._organization

    @property
    def id(self) -> int | None:  # pylint: disable=invalid-name
        """GitHub user id"""
        return self._id

    @property
    def login(self) -> str | None:
        """GitHub username"""
        return self._login

    @property
    def avatar_url(self) -> str | None:
        """URL of the avatar"""
        return self._avatar_url

    def as_json(self) -> dict[str, Any]:
        """Simple JSON representation"""
        return {"id": self.id, "login": self.login, "avatar_url": self.avatar_url}


@dataclass
class Organization:  # pylint: disable=too-many-public-methods
    """A GitHub organization managed by this system"""

    operations: "Operations"
    settings: OrganizationSettings
    credentials: CredentialResolver = field(repr=False)
    id: int | None = None  # pylint: disable=invalid-name
    _entity: dict | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.id is None:
            self.id = self.settings.organization_id

    @property
    def name(self) -> str:
        """Name of the organization as configured"""
        return self.settings.name

    async def authorize(self, purpose: AppPurpose) -> str:
        """Get the token for a call with a certain purpose"""
        return await self.credentials.resolve(purpose)

    # --------------------------------------------------------------------------
    # Settings
    # --------------------------------------------------------------------------
    @property
    def active(self) -> bool:
        """Whether the organization is active"""
        return self.settings.active

    @property
    def priority(self) -> str:
        """primary or secondary"""
        return self.settings.priority or "secondary"

    @property
    def description(self) -> str:
        """Description of the organization in the portal"""
        return self.settings.portal_description

    @property
    def is_app_only(self) -> bool:
        """Whether only GitHub Apps may be used"""
        return self.settings.has_feature("appOnly")

    @property
    def locked(self) -> bool:
        """Whether the organization is locked for new members"""
        return self.settings.has_feature("locked")

    @property
    def hidden(self) -> bool:
        """Whether the organization is hidden in listings"""
        return self.settings.has_feature("hidden")

    @property
    def external_members_permitted(self) -> bool:
        """Whether members without a corporate link are permitted"""
        return self.settings.has_feature("externalMembersPermitted")

    @property
    def configured_repository_types(self) -> str:
        """Configured repository visibility policy"""
        return self.settings.repository_types or "public"

    def get_supported_repository_types_by_priority(self) -> list[str]:
        """Repository types supported by the organization. The first one is
        the recommended default for new repositories"""
        repository_type = self.configured_repository_types
        if repository_type == "public":
            return ["public"]
        if repository_type == "publicprivate":
            return ["public", "private"]
        if repository_type == "private":
            return ["private"]
        if repository_type == "privatepublic":
            return ["private", "public"]
        raise InvalidStateError(
            f"Unsupported configuration for repository types in the organization: {repository_type}"
        )

    @property
    def private_repositories_supported(self) -> bool:
        """Whether private repositories may be created"""
        return "private" in self.get_supported_repository_types_by_priority()

    @property
    def legal_entities(self) -> list[str]:
        """Legal entities of the organization, or the system-wide defaults"""
        if self.settings.legal_entities:
            return list(self.settings.legal_entities)
        if self.operations.default_legal_entities:
            return list(self.operations.default_legal_entities)
        raise InvalidStateError(
            f"No legal entities available or defined for the organization {self.name}, "
            "or all organizations through the default value"
        )

    @property
    def webhook_shared_secrets(self) -> list[str]:
        """Webhook secrets of the organization and the system-wide ones"""
        return list(self.settings.hook_secrets) + list(self.operations.webhook_shared_secrets)

    # --------------------------------------------------------------------------
    # Special teams
    # --------------------------------------------------------------------------
    def _get_special_team(self, special_team: SpecialTeam) -> list[int]:
        """Get the ids of all teams configured for a special purpose"""
        return [
            entry.team_id
            for entry in self.settings.special_teams
            if entry.special_team == special_team
        ]

    def _get_single_special_team(
        self, special_team: SpecialTeam, friendly_name: str
    ) -> Team | None:
        teams = self._get_special_team(special_team)
        if len(teams) > 1:
            raise InvalidStateError(
                f"Multiple {friendly_name} teams are configured for the organization "
                f"{self.name}, which is not supported"
            )
        return self.team(teams[0]) if teams else None

    @property
    def broad_access_teams(self) -> list[int]:
        """Teams every member may join"""
        return self._get_special_team(SpecialTeam.EVERYONE)

    @property
    def invitation_team(self) -> Team | None:
        """The team new members are invited to"""
        return self._get_single_special_team(SpecialTeam.EVERYONE, "invitation")

    @property
    def sudoers_team(self) -> Team | None:
        """Members of this team have administrative rights in the portal"""
        return self._get_single_special_team(SpecialTeam.SUDO, "sudoer")

    @property
    def system_sudoers_team(self) -> Team | None:
        """Members of this team have administrative rights for the whole system"""
        return self._get_single_special_team(SpecialTeam.GLOBAL_SUDO, "system sudoer")

    @property
    def special_repository_permission_teams(self) -> dict[str, list[int]]:
        """Teams which have read, write or admin access to every repository"""
        return {
            "read": self._get_special_team(SpecialTeam.SYSTEM_READ),
            "write": self._get_special_team(SpecialTeam.SYSTEM_WRITE),
            "admin": self._get_special_team(SpecialTeam.SYSTEM_ADMIN),
        }

    @property
    def system_team_ids(self) -> list[int]:
        """Ids of all teams with a special meaning"""
        team_ids: list[int] = []
        if sudoers := self.sudoers_team:
            team_ids.append(sudoers.id)
        team_ids.extend(self.broad_access_teams)
        for special_team_ids in self.special_repository_permission_teams.values():
            team_ids.extend(special_team_ids)
        return team_ids

    # --------------------------------------------------------------------------
    # Feature switches
    # --------------------------------------------------------------------------
    def is_new_repository_lockdown_system_enabled(self) -> bool:
        """Whether new repositories are locked down in this organization"""
        return self.operations.allow_new_repository_lockdown_system() and self.settings.has_feature(
            "new-repository-lockdown-system"
        )

    def is_fork_lockdown_system_enabled(self) -> bool:
        """Whether new forks are locked down in this organization"""
        return self.operations.allow_fork_lockdown_system() and self.settings.has_feature(
            "lock-new-forks"
        )

    def is_transfer_lockdown_system_enabled(self) -> bool:
        """Whether transferred repositories are locked down in this organization"""
        return self.operations.allow_transfer_lockdown_system() and self.settings.has_feature(
            "lock-transfers"
        )

    # --------------------------------------------------------------------------
    # Factories
    # --------------------------------------------------------------------------
    def repository(self, name: str, entity: dict | None = None) -> Repository:
        """Build a repository of this organization, without fetching it"""
        return Repository(self, {**(entity or {}), "name": name})

    def team(self, team_id: int, entity: dict | None = None) -> Team:
        """Build a team of this organization, without fetching it"""
        return Team(self, entity if entity else {"id": team_id})

    def member(self, user_id: int, entity: dict | None = None) -> OrganizationMember:
        """Build a member of this organization, without fetching it"""
        return OrganizationMember(self, entity if entity else {"id": user_id})

    def repository_from_entity(self, entity: dict) -> Repository:
        return self.repository(entity["name"], entity)

    def team_from_entity(self, entity: dict) -> Team:
        return self.team(entity["id"], entity)

    def member_from_entity(self, entity: dict) -> OrganizationMember:
        return self.member(entity["id"], entity)

    # --------------------------------------------------------------------------
    # Details
    # --------------------------------------------------------------------------
    async def get_details(self) -> dict:
        """Get the organization from GitHub, and learn its id"""
        try:
            entity = await self.operations.github.call(
                await self.authorize(AppPurpose.DATA), "orgs.get", {"org": self.name}
            )
        except Exception as exc:
            raise wrap_error(exc, f"Could not get details about the {self.name} organization.")
        if entity and entity.get("id"):
            self.id = entity["id"]
        self._entity = entity
        return entity

    # --------------------------------------------------------------------------
    # Repositories
    # --------------------------------------------------------------------------
    async def get_repositories(self, options: CacheOptions | None = None) -> list[Repository]:
        """Get all repositories of the organization"""
        operations = self.operations
        parameters = {"org": self.name, "type": "all", "per_page": operations.page_size}
        cache_options = create_paged_cache_options(operations.defaults, "org_repos", options)
        entities = await operations.github.collection(
            await self.authorize(AppPurpose.DATA), "repos.listForOrg", parameters, cache_options
        )
        return create_instances(self.repository_from_entity, entities)

    async def get_repository_by_id(
        self, repository_id: int, options: CacheOptions | None = None
    ) -> Repository:
        """Get a repository by its id. Repositories which moved to another
        owner are treated as not found"""
        if not repository_id:
            raise ValueError("Must provide a repository ID to retrieve the repository")
        operations = self.operations
        cache_options = create_cache_options(operations.defaults, "account_detail", options)
        try:
            entity = await operations.github.call(
                await self.authorize(AppPurpose.DATA),
                "repos.getById",
                {"id": repository_id},
                cache_options,
            )
        except Exception as exc:
            if is_not_found(exc):
                raise NotFoundError(
                    f"The GitHub repository ID {repository_id} could not be found"
                ) from exc
            raise wrap_error(exc, f"Could not get details about repository ID {repository_id}.")

        owner = entity.get("owner") or {}
        if self.id is not None and owner.get("id") != self.id:
            raise NotFoundError(
                f"Repository ID {repository_id} has a different owner of {owner.get('login')} "
                f"instead of {self.name}. It has been relocated and will be treated as a 404."
            )
        return self.repository_from_entity(entity)

    # --------------------------------------------------------------------------
    # Teams
    # --------------------------------------------------------------------------
    async def get_teams(self, options: CacheOptions | None = None) -> list[Team]:
        """Get all teams of the organization"""
        operations = self.operations
        parameters = {"org": self.name, "per_page": operations.page_size}
        cache_options = create_cache_options(operations.defaults, "org_teams", options)
        entities = await operations.github.collection(
            await self.authorize(AppPurpose.DATA), "teams.list", parameters, cache_options
        )
        return create_instances(self.team_from_entity, entities)

    async def get_team_from_slug(self, slug: str, options: CacheOptions | None = None) -> Team:
        """Get a team by its slug"""
        operations = self.operations
        cache_options = create_cache_options(
            operations.defaults, "org_team_details", options, background_refresh=False
        )
        try:
            entity = await operations.github.call(
                await self.authorize(AppPurpose.DATA),
                "teams.getByName",
                {"org": self.name, "team_slug": slug},
                cache_options,
            )
        except Exception as exc:
            if is_not_found(exc):
                raise NotFoundError(
                    f"The GitHub team with the slug {slug} could not be found"
                ) from exc
            raise
        return self.team_from_entity(entity)

    async def get_team_from_name(
        self, name_or_slug: str, options: CacheOptions | None = None
    ) -> Team:
        """Find a team by its slug, name or id. If the team is found by name or
        id, a RedirectError points to its slug"""
        try:
            return await self.get_team_from_slug(name_or_slug)
        except NotFoundError:
            pass
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logging.warning("Looking up the team slug %s failed: %s", name_or_slug, exc)

        if options is None or options.max_age_seconds is None:
            options = CacheOptions(
                max_age_seconds=self.operations.defaults.org_teams_slug_lookup,
                background_refresh=options.background_refresh if options else None,
            )
        expected = name_or_slug.lower()
        alternative_candidate_by_id: Team | None = None
        for team in await self.get_teams(options):
            name = (team.name or "").lower()
            slug = (team.slug or "").lower()
            if expected == name and name != slug:
                raise RedirectError(
                    f"The team is also available by slug: {slug}.", slug=slug, team=team
                )
            if str(team.id) == expected:
                alternative_candidate_by_id = team
            if expected == slug:
                return team

        if alternative_candidate_by_id:
            raise RedirectError(
                f"The team is also available by slug: {alternative_candidate_by_id.slug}.",
                slug=alternative_candidate_by_id.slug or "",
                team=alternative_candidate_by_id,
            )
        raise NotFoundError("No team was found within the organization matching the provided name")

    # --------------------------------------------------------------------------
    # Members
    # --------------------------------------------------------------------------
    async def get_members(
        self,
        options: CacheOptions | None = None,
        role: OrganizationMembershipRole | str | None = None,
        member_filter: str | None = None,
    ) -> list[OrganizationMember]:
        """Get members of the organization, optionally only those of a role"""
        operations = self.operations
        parameters: dict[str, Any] = {"org": self.name, "per_page": operations.page_size}
        if role:
            parameters["role"] = OrganizationMembershipRole(role).value
        if member_filter:
            parameters["filter"] = member_filter
        cache_options = create_paged_cache_options(operations.defaults, "org_members", options)
        entities = await operations.github.collection(
            await self.authorize(AppPurpose.DATA), "orgs.listMembers", parameters, cache_options
        )
        return create_instances(self.member_from_entity, entities)

    async def get_owners(self, options: CacheOptions | None = None) -> list[OrganizationMember]:
        """Get the owners of the organization"""
        return await self.get_members(options, role=OrganizationMembershipRole.ADMIN)

    async def get_membership(
        self, username: str, options: CacheOptions | None = None
    ) -> dict | None:
        """Get the membership of a user. None if the user is no member"""
        operations = self.operations
        cache_options = create_cache_options(
            operations.defaults, "org_membership_direct", options, background_refresh=False
        )
        try:
            return await operations.github.call(
                await self.authorize(AppPurpose.OPERATIONS),
                "orgs.getMembershipForUser",
                {"org": self.name, "username": username},
                cache_options,
            )
        except Exception as exc:
            if is_not_found(exc):
                return None
            raise wrap_error(
                exc,
                f'Trouble retrieving the membership for "{username}" '
                f"in the {self.name} organization.",
            )

    async def add_membership(
        self,
        username: str,
        role: OrganizationMembershipRole | str = OrganizationMembershipRole.MEMBER,
    ) -> dict:
        """Invite a user to the organization, or change their role"""
        logging.info(
            "Setting membership of %s in organization %s to '%s'",
            username,
            self.name,
            OrganizationMembershipRole(role).value,
        )
        return await self.operations.github.post(
            await self.authorize(AppPurpose.OPERATIONS),
            "orgs.setMembershipForUser",
            {
                "org": self.name,
                "username": username,
                "role": OrganizationMembershipRole(role).value,
            },
        )

    async def remove_member(self, login: str, user_id: int | None = None) -> None:
        """Remove a user from the organization, and from the query cache"""
        try:
            await self.operations.github.post(
                await self.authorize(AppPurpose.OPERATIONS),
                "orgs.removeMembershipForUser",
                {"org": self.name, "username": login},
            )
        except Exception as exc:
            raise wrap_error(exc, f"Could not remove the organization member {login}.")
        logging.info("Removed %s from organization %s", login, self.name)

        query_cache = self.operations.query_cache
        if user_id is not None and query_cache is not None and self.id is not None:
            remove = getattr(query_cache, "remove_organization_member", None)
            supported = getattr(query_cache, "supports_organization_membership", False)
            if remove is not None and supported:
                await remove(self.id, user_id)

    async def check_public_membership(self, username: str) -> bool:
        """Whether the user made their membership public"""
        try:
            await self.operations.github.post(
                await self.authorize(AppPurpose.CUSTOMER_FACING),
                "orgs.checkPublicMembershipForUser",
                {"org": self.name, "username": username},
            )
            return True
        except Exception as exc:
            if is_not_found(exc):
                return False
            raise wrap_error(
                exc,
                f"Trouble retrieving the public membership status for {username} "
                f"in the {self.name} organization.",
            )

    # --------------------------------------------------------------------------
    # Administrators
    # --------------------------------------------------------------------------
    async def is_sudoer(self, username: str) -> bool:
        """Whether the user is member or maintainer of the sudoers team"""
        sudoers_team = self.sudoers_team
        if not sudoers_team:
            return False

        membership = await sudoers_team.get_membership_efficiently(username)
        if not membership:
            return False
        role = membership.get("role") if isinstance(membership, dict) else membership
        if role in (TeamRole.MEMBER, TeamRole.MAINTAINER):
            return True
        raise UnrecognizedValueError.role(
            role, f"while determining the sudo status of {username} in {self.name}"
        )

    async def get_organization_administrators(self) -> dict[int, AdministratorBasics]:
        """Get owners and sudoers of the organization, keyed by user id"""
        administrators: dict[int, AdministratorBasics] = {}

        def get_administrator_entry(user_id: int, login: str) -> AdministratorBasics:
            if user_id not in administrators:
                administrators[user_id] = AdministratorBasics(id=user_id, login=login)
            return administrators[user_id]

        for owner in await self.get_owners():
            get_administrator_entry(owner.id, owner.login).owner = True  # type: ignore[arg-type]

        sudoers_team = self.sudoers_team
        if not sudoers_team:
            return administrators

        try:
            members = await sudoers_team.get_members()
        except Exception as exc:
            if is_not_found(exc):
                logging.warning(
                    "The sudoers team %s of organization %s does not exist anymore",
                    sudoers_team.id,
                    self.name,
                )
                return administrators
            logging.error(
                "Could not get the sudoers of organization %s (status %s)",
                self.name,
                get_status(exc),
            )
            raise
        for member in members:
            get_administrator_entry(member.id, member.login).sudo = True  # type: ignore[arg-type]

        return administrators

    def as_client_json(self) -> dict[str, Any]:
        """Simple JSON representation"""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "locked": self.locked,
            "hidden": self.hidden,
        }
