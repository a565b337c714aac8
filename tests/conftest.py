# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures: a fake GitHub client and builders for the operations context"""

import copy
from typing import Any, Callable

import pytest

from gh_org_portal._cache import CacheDefaults, CacheOptions
from gh_org_portal._credentials import TokenCredentialResolver
from gh_org_portal._errors import GitHubApiError
from gh_org_portal._operations import Operations
from gh_org_portal._organization import OrganizationSettings, SpecialTeam, SpecialTeamEntry


def api_error(status: int, message: str = "stubbed error") -> GitHubApiError:
    """Build the error the client raises for a failed response"""
    return GitHubApiError(message, status=status)


class FakeGitHubClient:
    """Answers named operations from canned responses and records every call.

    A response is either a value, an exception to raise, or a callable taking
    the parameters and returning one of both. Operations without a response
    fail with a 404.
    """

    def __init__(self) -> None:
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, str, dict, CacheOptions | None]] = []

    def respond(self, api: str, response: Any) -> None:
        self.responses[api] = response

    def calls_to(self, api: str) -> list[dict]:
        """Parameters of all calls of an operation"""
        return [parameters for _, called_api, parameters, _ in self.calls if called_api == api]

    def _answer(self, api: str, parameters: dict) -> Any:
        if api not in self.responses:
            raise api_error(404, f"No response for {api}")
        response = self.responses[api]
        if callable(response) and not isinstance(response, Exception):
            response = response(parameters)
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)

    async def call(
        self, token: str, api: str, parameters: dict, cache_options: CacheOptions | None = None
    ) -> Any:
        assert token
        self.calls.append(("call", api, dict(parameters), cache_options))
        return self._answer(api, parameters)

    async def collection(
        self, token: str, api: str, parameters: dict, cache_options: CacheOptions | None = None
    ) -> list:
        assert token
        self.calls.append(("collection", api, dict(parameters), cache_options))
        return self._answer(api, parameters)

    async def post(self, token: str, api: str, parameters: dict) -> Any:
        assert token
        self.calls.append(("post", api, dict(parameters), None))
        return self._answer(api, parameters)


def make_settings(
    name: str = "example-org",
    organization_id: int | None = 1,
    special_teams: dict[SpecialTeam, list[int]] | None = None,
    **kwargs: Any,
) -> OrganizationSettings:
    """Build the settings of an organization"""
    entries = tuple(
        SpecialTeamEntry(special_team=special_team, team_id=team_id)
        for special_team, team_ids in (special_teams or {}).items()
        for team_id in team_ids
    )
    return OrganizationSettings(
        name=name, organization_id=organization_id, special_teams=entries, **kwargs
    )


@pytest.fixture
def github() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def make_operations(github: FakeGitHubClient) -> Callable[..., Operations]:
    """Build an operations context with the fake client and a token for every
    organization"""

    def build(*settings: OrganizationSettings, **kwargs: Any) -> Operations:
        kwargs.setdefault("defaults", CacheDefaults())
        return Operations(
            github=github,  # type: ignore[arg-type]
            organizations=settings or [make_settings()],
            credentials=lambda _settings: TokenCredentialResolver(token="test-token"),
            **kwargs,
        )

    return build


@pytest.fixture
def settings_factory() -> Callable[..., OrganizationSettings]:
    return make_settings


def members_by_role(members: dict[str | None, list[dict]]) -> Callable[[dict], list[dict]]:
    """Response for member listings, depending on the requested role"""

    def respond(parameters: dict) -> list[dict]:
        return members.get(parameters.get("role"), [])

    return respond


@pytest.fixture
def by_role() -> Callable[[dict[str | None, list[dict]]], Callable[[dict], list[dict]]]:
    return members_by_role
