# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Tests for choosing and resolving GitHub credentials"""

from datetime import datetime, timedelta, timezone

import pytest

from gh_org_portal._credentials import (
    AppPurpose,
    GitHubAppCredentialResolver,
    GitHubAppCredentials,
    TokenCredentialResolver,
    _InstallationToken,
    create_credential_resolver,
)
from gh_org_portal._errors import InvalidStateError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for variable in ("GITHUB_TOKEN", "GITHUB_APP_ID", "GITHUB_APP_PRIVATE_KEY"):
        monkeypatch.delenv(variable, raising=False)


@pytest.mark.asyncio
async def test_token_from_config():
    resolver = create_credential_resolver("org", {"github_token": "config-token"})

    assert isinstance(resolver, TokenCredentialResolver)
    assert await resolver.resolve(AppPurpose.OPERATIONS) == "config-token"


@pytest.mark.asyncio
async def test_token_from_environment_wins(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "env-token")
    resolver = create_credential_resolver("org", {"github_token": "config-token"})

    assert await resolver.resolve(AppPurpose.DATA) == "env-token"


def test_app_is_preferred_over_token():
    resolver = create_credential_resolver(
        "org",
        {
            "github_token": "config-token",
            "github_app_id": 123,
            "github_app_private_key": "key",
            "github_apps": {"operations": {"app_id": 456, "private_key": "other"}},
        },
    )

    assert isinstance(resolver, GitHubAppCredentialResolver)
    assert set(resolver.apps) == {AppPurpose.DATA, AppPurpose.OPERATIONS}


def test_no_credentials_at_all():
    with pytest.raises(InvalidStateError):
        create_credential_resolver("org", {})


@pytest.mark.asyncio
async def test_installation_tokens_are_reused_until_expiry(monkeypatch):
    resolver = GitHubAppCredentialResolver(
        organization_name="org",
        apps={
            AppPurpose.DATA: GitHubAppCredentials(app_id=1, private_key="data"),
            AppPurpose.OPERATIONS: GitHubAppCredentials(app_id=2, private_key="ops"),
        },
    )
    created = []

    def fake_create(credentials):
        created.append(credentials.app_id)
        return _InstallationToken(
            token=f"token-{len(created)}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    monkeypatch.setattr(resolver, "_create_installation_token", fake_create)

    assert await resolver.resolve(AppPurpose.DATA) == "token-1"
    assert await resolver.resolve(AppPurpose.DATA) == "token-1"
    # Purposes without an own app share the data app
    assert await resolver.resolve(AppPurpose.SECURITY) == "token-1"
    assert await resolver.resolve(AppPurpose.OPERATIONS) == "token-2"
    assert created == [1, 2]


@pytest.mark.asyncio
async def test_installation_tokens_close_to_expiry_are_renewed(monkeypatch):
    resolver = GitHubAppCredentialResolver(
        organization_name="org",
        apps={AppPurpose.DATA: GitHubAppCredentials(app_id=1, private_key="data")},
    )
    created = []

    def fake_create(credentials):  # pylint: disable=unused-argument
        created.append(1)
        return _InstallationToken(
            token=f"token-{len(created)}",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=1),
        )

    monkeypatch.setattr(resolver, "_create_installation_token", fake_create)

    assert await resolver.resolve(AppPurpose.DATA) == "token-1"
    assert await resolver.resolve(AppPurpose.DATA) == "token-2"


@pytest.mark.asyncio
async def test_missing_app_for_purpose():
    resolver = GitHubAppCredentialResolver(
        organization_name="org",
        apps={AppPurpose.OPERATIONS: GitHubAppCredentials(app_id=2, private_key="ops")},
    )

    with pytest.raises(InvalidStateError):
        await resolver.resolve(AppPurpose.DATA)
