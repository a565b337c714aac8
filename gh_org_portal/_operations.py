# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""The shared context of all entities: GitHub client, cache defaults and the
registry of managed organizations"""

import logging
from typing import Any, Callable, Iterable

from ._cache import CacheDefaults, ResponseCache
from ._credentials import CredentialResolver, create_credential_resolver
from ._errors import NotFoundError
from ._gh_api import DEFAULT_PAGE_SIZE, GitHubClient
from ._graph_manager import GraphManager
from ._organization import Organization, OrganizationSettings
from ._query_cache import QueryCache
from ._repository import Repository
from ._team import Team


class Operations:  # pylint: disable=too-many-instance-attributes
    """Explicitly constructed registry and service object. Built once at
    startup and only read afterwards"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        github: GitHubClient,
        organizations: Iterable[OrganizationSettings],
        credentials: Callable[[OrganizationSettings], CredentialResolver],
        defaults: CacheDefaults | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        system_accounts: Iterable[str] = (),
        features: dict[str, bool] | None = None,
        webhook_shared_secrets: Iterable[str] = (),
        default_legal_entities: Iterable[str] = (),
        query_cache: QueryCache | None = None,
    ) -> None:
        self.github = github
        self.defaults = defaults or CacheDefaults()
        self.page_size = page_size
        self.system_accounts_by_username: list[str] = list(system_accounts)
        self.features: dict[str, bool] = dict(features or {})
        self.webhook_shared_secrets: list[str] = list(webhook_shared_secrets)
        self.default_legal_entities: list[str] = list(default_legal_entities)
        self.query_cache = query_cache
        self.graph_manager = GraphManager(self)

        # Keyed by lower-case name, in configured order
        self._organizations: dict[str, Organization] = {}
        for settings in organizations:
            key = settings.name.lower()
            if key in self._organizations:
                raise ValueError(f"Organization '{settings.name}' is registered more than once")
            self._organizations[key] = Organization(
                operations=self,
                settings=settings,
                credentials=credentials(settings),
            )
        logging.debug("Registered %s organization(s)", len(self._organizations))

    @classmethod
    def from_config(
        cls, app_config: dict, organization_settings: Iterable[OrganizationSettings]
    ) -> "Operations":
        """Build the context from the parsed configuration files"""
        cache_config = app_config.get("cache", {})
        cache = ResponseCache(
            max_entries=cache_config.get("max_entries", 10000),
            max_stale_seconds=cache_config.get("max_stale_seconds", 60 * 60 * 24),
        )
        client_arguments: dict[str, Any] = {
            "cache": cache,
            "page_size": app_config.get("page_size", DEFAULT_PAGE_SIZE),
        }
        if app_config.get("github_api_url"):
            client_arguments["base_url"] = app_config["github_api_url"]

        return cls(
            github=GitHubClient(**client_arguments),
            organizations=organization_settings,
            credentials=lambda settings: create_credential_resolver(settings.name, app_config),
            defaults=CacheDefaults.from_dict(cache_config.get("defaults")),
            page_size=app_config.get("page_size", DEFAULT_PAGE_SIZE),
            system_accounts=app_config.get("system_accounts", []),
            features=app_config.get("features", {}),
            webhook_shared_secrets=app_config.get("webhook_shared_secrets", []),
            default_legal_entities=app_config.get("default_legal_entities", []),
        )

    # --------------------------------------------------------------------------
    # Organizations
    # --------------------------------------------------------------------------
    @property
    def organizations(self) -> dict[str, Organization]:
        """All managed organizations, keyed by lower-case name"""
        return dict(self._organizations)

    def is_managed_organization(self, name: str) -> bool:
        """Whether the organization is configured"""
        return name.lower() in self._organizations

    def get_organization(self, name: str) -> Organization:
        """Get a configured organization by its case-insensitive name"""
        try:
            return self._organizations[name.lower()]
        except KeyError:
            raise NotFoundError(f"The organization '{name}' is not configured") from None

    def get_organization_by_id(self, organization_id: int | str) -> Organization:
        """Get a configured organization by its GitHub id"""
        for organization in self._organizations.values():
            if organization.id is not None and int(organization.id) == int(organization_id):
                return organization
        raise NotFoundError(f"No configured organization has the id {organization_id}")

    def get_team_by_id_with_organization(
        self, team_id: int, organization_name: str, entity: dict | None = None
    ) -> Team:
        """Build a team of a configured organization"""
        return self.get_organization(organization_name).team(team_id, entity)

    def get_repository_with_organization(
        self, name: str, organization_name: str, entity: dict | None = None
    ) -> Repository:
        """Build a repository of a configured organization"""
        return self.get_organization(organization_name).repository(name, entity)

    # --------------------------------------------------------------------------
    # Feature flags
    # --------------------------------------------------------------------------
    def allow_new_repository_lockdown_system(self) -> bool:
        """Whether the new repository lockdown is enabled system-wide"""
        return self.features.get("new_repository_lockdown", False)

    def allow_fork_lockdown_system(self) -> bool:
        """Whether forks may be locked down system-wide"""
        return self.features.get("lock_forks", False)

    def allow_transfer_lockdown_system(self) -> bool:
        """Whether transferred repositories may be locked down system-wide"""
        return self.features.get("lock_transfers", False)
