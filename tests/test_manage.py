# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Tests for the command line interface"""

import json

import pytest
from conftest import make_settings

from gh_org_portal import manage
from gh_org_portal._organization import SpecialTeam


def test_lockdown_arguments():
    args = manage.parser.parse_args(
        ["lockdown", "-c", "config", "--org", "org", "--repo", "repo", "--creator", "alice"]
    )

    assert args.action == "created"
    assert args.dry is False
    assert args.force is False
    assert args.output == "text"


def test_overview_requires_numeric_user_id():
    with pytest.raises(SystemExit):
        manage.parser.parse_args(["overview", "-c", "config", "-u", "alice"])


def test_config_is_required():
    with pytest.raises(SystemExit):
        manage.parser.parse_args(["administrators", "--org", "org"])


@pytest.mark.asyncio
async def test_administrators_output(github, make_operations, by_role, capsys):
    github.respond("orgs.listMembers", by_role({"admin": [{"id": 1, "login": "owner"}]}))
    github.respond("teams.listMembers", by_role({None: [{"id": 2, "login": "Sudoer"}]}))
    operations = make_operations(make_settings(special_teams={SpecialTeam.SUDO: [20]}))
    args = manage.parser.parse_args(["administrators", "-c", "config", "--org", "example-org"])

    await manage.administrators(operations, args)

    assert capsys.readouterr().out.splitlines() == ["owner (1): owner", "Sudoer (2): sudo"]


@pytest.mark.asyncio
async def test_overview_as_json(github, make_operations, capsys):
    github.respond("orgs.listMembers", [])
    github.respond("teams.list", [])
    operations = make_operations()
    args = manage.parser.parse_args(["overview", "-c", "config", "-u", "7", "-o", "json"])

    await manage.overview(operations, args)

    result = json.loads(capsys.readouterr().out)
    assert result["organizations"]["available"] == ["example-org"]
    assert result["repository_permissions"] == []
