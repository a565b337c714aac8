# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Tests for parsing the app and organisation configuration"""

import pytest

from gh_org_portal._config import parse_config_files
from gh_org_portal._organization import SpecialTeam


def write(path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="UTF-8")


@pytest.fixture
def config_dir(tmp_path):
    write(
        tmp_path / "app.yaml",
        """
github_token: abc
system_accounts: [portal-bot]
cache:
  defaults:
    org_repos: 120
features:
  new_repository_lockdown: true
""",
    )
    write(
        tmp_path / "orgs" / "example.yaml",
        """
name: Example-Org
id: 42
priority: primary
type: publicprivate
legal_entities: [ACME]
features: [new-repository-lockdown-system]
special_teams:
  everyone: 10
  system_admin: [20, 21]
""",
    )
    return tmp_path


def test_parse_app_and_organizations(config_dir):
    cfg_app, settings = parse_config_files(str(config_dir))

    assert cfg_app["github_token"] == "abc"
    assert cfg_app["cache"]["defaults"]["org_repos"] == 120
    assert len(settings) == 1

    org = settings[0]
    assert org.name == "Example-Org"
    assert org.organization_id == 42
    assert org.priority == "primary"
    assert org.repository_types == "publicprivate"
    assert org.legal_entities == ("ACME",)
    assert org.has_feature("new-repository-lockdown-system")
    assert [(entry.special_team, entry.team_id) for entry in org.special_teams] == [
        (SpecialTeam.EVERYONE, 10),
        (SpecialTeam.SYSTEM_ADMIN, 20),
        (SpecialTeam.SYSTEM_ADMIN, 21),
    ]


def test_organization_defaults(tmp_path):
    write(tmp_path / "orgs" / "minimal.yml", "name: minimal\n")

    cfg_app, settings = parse_config_files(str(tmp_path))

    assert cfg_app == {}
    assert settings[0].active is True
    assert settings[0].repository_types == "public"
    assert settings[0].special_teams == ()


def test_duplicate_organization_names_are_rejected(config_dir):
    write(config_dir / "orgs" / "zzz.yaml", "name: example-org\n")

    with pytest.raises(ValueError, match="more than once"):
        parse_config_files(str(config_dir))


@pytest.mark.parametrize(
    "content",
    [
        "name: bad\nspecial_teams:\n  nobody: 1\n",
        "name: bad\ntype: secret\n",
        "id: 5\n",
    ],
)
def test_invalid_organization_config_is_rejected(tmp_path, content):
    write(tmp_path / "orgs" / "bad.yaml", content)

    with pytest.raises(ValueError):
        parse_config_files(str(tmp_path))


def test_invalid_app_config_is_rejected(config_dir):
    write(config_dir / "app.yaml", "features:\n  teleport: true\n")

    with pytest.raises(ValueError):
        parse_config_files(str(config_dir))
