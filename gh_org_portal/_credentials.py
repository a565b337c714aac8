# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Resolving the GitHub credentials to use for a call, depending on its purpose"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

from github import Auth, GithubException, GithubIntegration
from jwt.exceptions import InvalidKeyError

from ._errors import InvalidStateError, UnauthorizedError
from ._gh_api import get_github_secrets_from_env

# Installation tokens are renewed this long before they expire
TOKEN_RENEWAL_MARGIN = timedelta(minutes=5)


class AppPurpose(str, Enum):
    """What a GitHub call is made for. Purposes may map to different GitHub Apps"""

    DATA = "data"
    OPERATIONS = "operations"
    CUSTOMER_FACING = "customer_facing"
    SECURITY = "security"
    UPDATES = "updates"


class CredentialResolver(Protocol):  # pylint: disable=too-few-public-methods
    """Yields the token to use for the next GitHub call"""

    async def resolve(self, purpose: AppPurpose) -> str:
        """Get a token for the purpose"""


@dataclass
class TokenCredentialResolver:  # pylint: disable=too-few-public-methods
    """A single personal access token used for every purpose"""

    token: str

    async def resolve(self, purpose: AppPurpose) -> str:  # pylint: disable=unused-argument
        """Get the token"""
        return self.token


@dataclass
class GitHubAppCredentials:
    """ID and private key of a GitHub App"""

    app_id: str | int
    private_key: str


@dataclass
class _InstallationToken:
    token: str
    expires_at: datetime | None


@dataclass
class GitHubAppCredentialResolver:
    """Installation tokens of one GitHub App per purpose, for one organization.
    Purposes without an own app use the app of the data purpose"""

    organization_name: str
    apps: dict[AppPurpose, GitHubAppCredentials]
    _tokens: dict[AppPurpose, _InstallationToken] = field(default_factory=dict, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def _app_for(self, purpose: AppPurpose) -> tuple[AppPurpose, GitHubAppCredentials]:
        if purpose in self.apps:
            return purpose, self.apps[purpose]
        if AppPurpose.DATA in self.apps:
            return AppPurpose.DATA, self.apps[AppPurpose.DATA]
        raise InvalidStateError(f"No GitHub App configured for the purpose '{purpose.value}'")

    def _create_installation_token(self, credentials: GitHubAppCredentials) -> _InstallationToken:
        """Login as app and get an access token for the organization installation"""
        logging.debug("Logging in via app %s", credentials.app_id)
        auth = Auth.AppAuth(app_id=credentials.app_id, private_key=credentials.private_key)
        app = GithubIntegration(auth=auth)
        try:
            installation = app.get_org_installation(org=self.organization_name)
            logging.debug("Getting access token for installation %s", installation.id)
            authorization = app.get_access_token(installation_id=installation.id)
        except InvalidKeyError:
            logging.critical("Invalid private key provided for GitHub App %s", credentials.app_id)
            raise UnauthorizedError(
                f"Invalid private key provided for GitHub App {credentials.app_id}", status=401
            ) from None
        except GithubException as exc:
            raise UnauthorizedError(
                f"GitHub App {credentials.app_id} has no usable installation in the "
                f"organization {self.organization_name}",
                status=exc.status,
            ) from exc

        return _InstallationToken(token=authorization.token, expires_at=authorization.expires_at)

    def _is_valid(self, token: _InstallationToken | None) -> bool:
        if token is None:
            return False
        if token.expires_at is None:
            return True
        expires_at = token.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) + TOKEN_RENEWAL_MARGIN < expires_at

    async def resolve(self, purpose: AppPurpose) -> str:
        """Get a valid installation token for the purpose"""
        app_purpose, credentials = self._app_for(purpose)
        async with self._lock:
            token = self._tokens.get(app_purpose)
            if not self._is_valid(token):
                token = await asyncio.to_thread(self._create_installation_token, credentials)
                self._tokens[app_purpose] = token
            return token.token  # type: ignore[union-attr]


def create_credential_resolver(organization_name: str, app_config: dict) -> CredentialResolver:
    """Choose how to authenticate for an organization, based on the app
    configuration and the environment. A GitHub App is preferred over a token"""
    token = get_github_secrets_from_env(
        env_variable="GITHUB_TOKEN", secret=app_config.get("github_token", "")
    )
    app_id = get_github_secrets_from_env(
        env_variable="GITHUB_APP_ID", secret=app_config.get("github_app_id", "")
    )
    app_private_key = get_github_secrets_from_env(
        env_variable="GITHUB_APP_PRIVATE_KEY", secret=app_config.get("github_app_private_key", "")
    )

    apps: dict[AppPurpose, GitHubAppCredentials] = {}
    if app_id and app_private_key:
        apps[AppPurpose.DATA] = GitHubAppCredentials(app_id=app_id, private_key=app_private_key)
    for purpose_name, app in (app_config.get("github_apps") or {}).items():
        apps[AppPurpose(purpose_name)] = GitHubAppCredentials(
            app_id=app["app_id"], private_key=app["private_key"]
        )

    if apps:
        logging.debug(
            "Using GitHub App(s) for organization %s and purposes: %s",
            organization_name,
            ", ".join(purpose.value for purpose in apps),
        )
        return GitHubAppCredentialResolver(organization_name=organization_name, apps=apps)
    if token:
        logging.debug("Using a personal access token for organization %s", organization_name)
        return TokenCredentialResolver(token=token)

    raise InvalidStateError("No GitHub token or App ID+private key provided")
