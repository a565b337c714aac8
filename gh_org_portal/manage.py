# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Inspect the permissions of users in managed GitHub organizations, and lock
down new repositories"""

import argparse
import asyncio
import json
import logging
import sys

from . import __version__
from ._config import parse_config_files
from ._errors import PortalError
from ._helpers import configure_logger, json_to_text, log_progress
from ._lockdown import NewRepositoryLockdownSystem, RepositoryLockdownCreateType
from ._operations import Operations
from ._query_cache import MemoryQueryCache, refresh_organization
from ._user_context import UserContext

# Main parser with root-level flags
parser = argparse.ArgumentParser(
    description=__doc__, formatter_class=argparse.ArgumentDefaultsHelpFormatter
)
parser.add_argument(
    "--version", action="version", version="GitHub Organization Portal " + __version__
)

# Initiate first-level subcommands
subparsers = parser.add_subparsers(dest="command", help="Available commands", required=True)

# Common flags, usable for all effective subcommands
common_flags = argparse.ArgumentParser(add_help=False)  # No automatic help to avoid duplication
common_flags.add_argument("-v", "--verbose", action="store_true", help="Get INFO logging output")
common_flags.add_argument("-vv", "--debug", action="store_true", help="Get DEBUG logging output")
common_flags.add_argument(
    "-c",
    "--config",
    required=True,
    help="Path to the directory in which the app and organisation configuration is located",
)

# Overview of a user
parser_overview = subparsers.add_parser(
    "overview",
    help="Show the organizations, teams and repositories of a user",
    parents=[common_flags],
)
parser_overview.add_argument("-u", "--user-id", required=True, type=int, help="GitHub user ID")
parser_overview.add_argument(
    "--org", help="Only show the teams of this organization, if configured"
)
parser_overview.add_argument(
    "-q",
    "--query-cache",
    action="store_true",
    help="Collect memberships and permissions of all organizations first, and answer from them",
)
parser_overview.add_argument(
    "-o",
    "--output",
    help="Output format for report",
    choices=["json", "text"],
    default="text",
)

# Administrators of an organization
parser_admins = subparsers.add_parser(
    "administrators",
    help="Show the owners and sudoers of an organization",
    parents=[common_flags],
)
parser_admins.add_argument("--org", required=True, help="Name of the organization")

# Lockdown of a new repository
parser_lockdown = subparsers.add_parser(
    "lockdown",
    help="Lock down a new repository, removing team and collaborator access",
    parents=[common_flags],
)
parser_lockdown.add_argument("--org", required=True, help="Name of the organization")
parser_lockdown.add_argument("--repo", required=True, help="Name of the repository")
parser_lockdown.add_argument(
    "--creator", required=True, help="GitHub username of the creator of the repository"
)
parser_lockdown.add_argument(
    "--action",
    choices=[action.value for action in RepositoryLockdownCreateType],
    default=RepositoryLockdownCreateType.CREATED.value,
    help="How the repository came into the organization",
)
parser_lockdown.add_argument(
    "--transfer-source", help="Organization the repository has been transferred from"
)
parser_lockdown.add_argument(
    "-f",
    "--force",
    action="store_true",
    help="Lock down even if the organization or the creator is exempt from the lockdown",
)
parser_lockdown.add_argument(
    "-o",
    "--output",
    help="Output format for report",
    choices=["json", "text"],
    default="text",
)
parser_lockdown.add_argument("--dry", action="store_true", help="Do not make any changes at GitHub")


async def overview(operations: Operations, args: argparse.Namespace) -> None:
    """Print the aggregated overview of a user"""
    if args.query_cache:
        query_cache = MemoryQueryCache(operations)
        operations.query_cache = query_cache
        for organization in operations.organizations.values():
            log_progress(f"Collecting memberships and permissions of {organization.name}...")
            await refresh_organization(query_cache, organization)

    log_progress("Aggregating...")
    context = UserContext(operations, operations.query_cache, args.user_id)
    if args.org:
        summary = await context.get_aggregated_organization_overview(
            operations.get_organization(args.org)
        )
    else:
        summary = await context.get_aggregated_overview()
    permissions = await context.repository_permissions()
    log_progress("")

    result = summary.as_json()
    result["repository_permissions"] = [permission.as_json() for permission in permissions]
    if args.output == "json":
        print(json.dumps(result, indent=2))
    else:
        print(json_to_text(result).strip())


async def administrators(operations: Operations, args: argparse.Namespace) -> None:
    """Print owners and sudoers of an organization"""
    organization = operations.get_organization(args.org)
    admins = await organization.get_organization_administrators()
    for admin in sorted(admins.values(), key=lambda admin: admin.login.lower()):
        roles = [role for role, active in (("owner", admin.owner), ("sudo", admin.sudo)) if active]
        print(f"{admin.login} ({admin.id}): {', '.join(roles)}")


async def lockdown(operations: Operations, args: argparse.Namespace) -> None:
    """Lock down a repository and print what has been changed"""
    organization = operations.get_organization(args.org)
    repository = organization.repository(args.repo)
    await repository.get_details()

    system = NewRepositoryLockdownSystem(operations, organization, repository, dry=args.dry)
    if args.force:
        logging.warning("Force mode activated, will not check whether a lockdown is necessary")
        await system.lockdown_repository(
            system.changes.log, operations.system_accounts_by_username, args.creator
        )
        system.changes.locked = not args.dry
    else:
        await system.lockdown_if_necessary(args.action, args.creator, args.transfer_source)

    system.changes.print_changes(
        orgname=organization.name, reponame=repository.name, output=args.output
    )


async def run(args: argparse.Namespace) -> None:
    """Build the context from the configuration and run the command"""
    cfg_app, organization_settings = parse_config_files(args.config)
    if not organization_settings:
        logging.critical("No GitHub organisation configured. Cannot continue")
        sys.exit(1)
    operations = Operations.from_config(cfg_app, organization_settings)

    try:
        if args.command == "overview":
            await overview(operations, args)
        elif args.command == "administrators":
            await administrators(operations, args)
        elif args.command == "lockdown":
            await lockdown(operations, args)
    finally:
        await operations.github.cache.wait_for_refreshes()


def main():
    """Main function"""

    # Process arguments
    args = parser.parse_args()

    configure_logger(verbose=args.verbose, debug=args.debug)

    if getattr(args, "dry", False):
        logging.info("Dry-run mode activated, will not make any changes at GitHub")

    try:
        asyncio.run(run(args))
    except PortalError as exc:
        log_progress("")
        logging.critical("%s", exc.message)
        sys.exit(1)
