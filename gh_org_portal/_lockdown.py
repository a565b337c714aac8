# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Lockdown of new repositories: strip the access of teams and collaborators
until the repository has been set up properly"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

from ._cache import NO_CACHE
from ._errors import UnauthorizedError
from ._organization import Organization, OrganizationMembershipRole
from ._permissions import RepositoryPermission
from ._repository import GitHubCollaboratorAffiliation, Repository
from ._stats import LockdownChanges
from ._team import Team

if TYPE_CHECKING:
    from ._operations import Operations

BOT_BRACKET = "[bot]"
MAX_ATTEMPTS = 3
# Collaborator permissions of the creator which are downgraded to pull
DOWNGRADED_PERMISSIONS = (
    RepositoryPermission.ADMIN,
    RepositoryPermission.MAINTAIN,
    RepositoryPermission.PUSH,
)


class RepositoryLockdownCreateType(str, Enum):
    """How the repository came into the organization"""

    CREATED = "created"
    TRANSFERRED = "transferred"


class NewRepositoryLockdownSystem:
    """Locks down one new repository of a managed organization"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        operations: "Operations",
        organization: Organization,
        repository: Repository,
        changes: LockdownChanges | None = None,
        dry: bool = False,
        retry_delay: float = 1.0,
    ) -> None:
        self.operations = operations
        self.organization = organization
        self.repository = repository
        self.changes = changes if changes is not None else LockdownChanges(dry=dry)
        self.dry = dry
        self.retry_delay = retry_delay

    def _log(self, log: list[str], message: str) -> None:
        log.append(message)
        logging.info("[%s/%s] %s", self.organization.name, self.repository.name, message)

    async def _attempt(
        self, log: list[str], description: str, action: Callable[[], Awaitable[object]]
    ) -> bool:
        """Run a write up to MAX_ATTEMPTS times with exponential backoff. Failures
        are logged and reported, never raised"""
        if self.dry:
            self._log(log, f"Would {description}")
            return True

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                await action()
                return True
            except UnauthorizedError as exc:
                error: Exception = exc
                break
            except Exception as exc:  # pylint: disable=broad-exception-caught
                error = exc
                if attempt < MAX_ATTEMPTS:
                    delay = self.retry_delay * 2 ** (attempt - 1)
                    logging.debug(
                        "Attempt %s to %s failed, retrying in %ss: %s",
                        attempt,
                        description,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)

        message = f"Could not {description}: {error}"
        self._log(log, message)
        logging.error(message)
        self.changes.fail(message)
        return False

    # --------------------------------------------------------------------------
    # Single steps
    # --------------------------------------------------------------------------
    async def try_drop_team(self, log: list[str], team: Team) -> bool:
        """Remove the access of a team"""
        name = team.slug or team.name or str(team.id)
        if await self._attempt(
            log,
            f"remove the team {name} from the repository",
            lambda: self.repository.remove_team_permission(team.id),
        ):
            if not self.dry:
                self._log(log, f"Removed the team {name}")
            self.changes.remove_team(name)
            return True
        return False

    async def try_drop_collaborator(self, log: list[str], login: str) -> bool:
        """Remove a direct collaborator"""
        if await self._attempt(
            log,
            f"remove the collaborator {login}",
            lambda: self.repository.remove_collaborator(login),
        ):
            if not self.dry:
                self._log(log, f"Removed the collaborator {login}")
            self.changes.remove_collaborator(login)
            return True
        return False

    async def try_downgrade_collaborator(self, log: list[str], login: str) -> bool:
        """Reduce a collaborator to read access"""
        if await self._attempt(
            log,
            f"downgrade the collaborator {login} to read access",
            lambda: self.repository.add_collaborator(login, RepositoryPermission.PULL),
        ):
            if not self.dry:
                self._log(log, f"Downgraded the collaborator {login} to read access")
            self.changes.downgrade_collaborator(login)
            return True
        return False

    # --------------------------------------------------------------------------
    # Lockdown
    # --------------------------------------------------------------------------
    async def lockdown_repository(
        self, log: list[str], system_accounts: Iterable[str], creator_login: str
    ) -> None:
        """Remove all teams except the specially permitted ones, and all direct
        collaborators except system accounts. The creator keeps read access.
        Never raises"""
        system_logins = {login.lower() for login in system_accounts}
        creator = creator_login.lower()
        try:
            special_teams = self.organization.special_repository_permission_teams
            permitted_team_ids = set(
                special_teams["admin"] + special_teams["write"] + special_teams["read"]
            )
            for team_permission in await self.repository.get_team_permissions(NO_CACHE):
                team = team_permission.team
                name = team.slug or team.name or str(team.id)
                if team.id in permitted_team_ids:
                    self._log(
                        log,
                        f"Special permitted team {name} keeps its "
                        f"{team_permission.permission} access",
                    )
                    self.changes.keep_team(name)
                else:
                    await self.try_drop_team(log, team)

            collaborators = await self.repository.get_collaborators(
                NO_CACHE, affiliation=GitHubCollaboratorAffiliation.DIRECT
            )
            for collaborator in collaborators:
                login = collaborator.login or ""
                if login.lower() in system_logins:
                    self._log(log, f"System account {login} keeps its access")
                    self.changes.keep_collaborator(login)
                elif login.lower() != creator:
                    await self.try_drop_collaborator(log, login)
                elif collaborator.get_best_permission() in DOWNGRADED_PERMISSIONS:
                    await self.try_downgrade_collaborator(log, login)
                else:
                    self._log(log, f"Creator {login} does not have administrative access")
        except Exception as exc:  # pylint: disable=broad-exception-caught
            message = f"Error during the lockdown of the repository: {exc}"
            self._log(log, message)
            logging.error(message)
            self.changes.fail(message)

    async def lockdown_if_necessary(
        self,
        action: RepositoryLockdownCreateType | str,
        username: str,
        transfer_source_login: str | None = None,
    ) -> bool:
        """Decide whether the repository needs a lockdown and run it. Returns
        whether the repository has been locked down"""
        log = self.changes.log
        action = RepositoryLockdownCreateType(action)
        if not self.organization.is_new_repository_lockdown_system_enabled():
            self._log(log, "The organization has not opted in to the lockdown of new repositories")
            return False

        is_transfer = action == RepositoryLockdownCreateType.TRANSFERRED
        if is_transfer and not self.organization.is_transfer_lockdown_system_enabled():
            self._log(log, "Transferred repositories are not locked down in this organization")
            return False
        if is_transfer and transfer_source_login:
            if self.operations.is_managed_organization(transfer_source_login):
                self._log(
                    log,
                    f"Internal repository transfer from {transfer_source_login} "
                    f"to {self.organization.name}",
                )
                return False

        lowercase_username = username.lower()
        if BOT_BRACKET in lowercase_username:
            self._log(log, f"Created by a bot or GitHub App: {username}")
            return False
        system_accounts = [login.lower() for login in self.operations.system_accounts_by_username]
        if lowercase_username in system_accounts:
            self._log(log, f"Created by a system account: {username}")
            return False

        if self.repository.fork and self.organization.is_fork_lockdown_system_enabled():
            membership = await self.organization.get_membership(username, NO_CACHE)
            if (
                membership
                and membership.get("state") == "active"
                and membership.get("role") == OrganizationMembershipRole.ADMIN
            ):
                self._log(
                    log,
                    f"Allowing current organization owner {username} of org "
                    f"{self.organization.name} to create this fork",
                )
                return False

        if self.dry:
            self._log(log, "The repository would have been locked down")
        await self.lockdown_repository(log, system_accounts, username)
        self.changes.locked = not self.dry
        return True
