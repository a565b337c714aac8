# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Handling the app and organisations configuration"""

import logging
import os
import re

import yaml
from jsonschema import FormatChecker, validate
from jsonschema.exceptions import ValidationError

from ._organization import OrganizationSettings, SpecialTeam, SpecialTeamEntry

# Global file with settings for the app, e.g. GitHub token and cache defaults
APP_CONFIG_FILE = r"app\.ya?ml"
# One file per managed organisation
ORG_CONFIG_DIR = "orgs"
ORG_CONFIG_FILES = r".+\.ya?ml"

_TEAM_IDS = {
    "oneOf": [
        {"type": "integer"},
        {"type": "array", "items": {"type": "integer"}},
    ]
}
_APP_CREDENTIALS = {
    "type": "object",
    "properties": {
        "app_id": {"type": ["integer", "string"]},
        "private_key": {"type": "string"},
    },
    "required": ["app_id", "private_key"],
    "additionalProperties": False,
}

# Schemas for config validation
APP_CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "github_token": {"type": "string"},
        "github_app_id": {"type": ["integer", "string"]},
        "github_app_private_key": {"type": "string"},
        "github_apps": {
            "type": "object",
            "propertyNames": {
                "enum": ["data", "operations", "customer_facing", "security", "updates"]
            },
            "additionalProperties": _APP_CREDENTIALS,
        },
        "github_api_url": {"type": "string", "format": "uri"},
        "page_size": {"type": "integer", "minimum": 1, "maximum": 100},
        "system_accounts": {"type": "array", "items": {"type": "string"}},
        "webhook_shared_secrets": {"type": "array", "items": {"type": "string"}},
        "default_legal_entities": {"type": "array", "items": {"type": "string"}},
        "cache": {
            "type": "object",
            "properties": {
                "max_entries": {"type": "integer", "minimum": 0},
                "max_stale_seconds": {"type": "integer", "minimum": 0},
                "defaults": {
                    "type": "object",
                    "additionalProperties": {"type": "integer"},
                },
            },
            "additionalProperties": False,
        },
        "features": {
            "type": "object",
            "properties": {
                "new_repository_lockdown": {"type": "boolean"},
                "lock_transfers": {"type": "boolean"},
                "lock_forks": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}
ORG_CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "id": {"type": "integer"},
        "active": {"type": "boolean"},
        "priority": {"type": "string", "enum": ["primary", "secondary"]},
        "type": {
            "type": "string",
            "enum": ["public", "publicprivate", "private", "privatepublic"],
        },
        "description": {"type": "string"},
        "features": {"type": "array", "items": {"type": "string"}},
        "legal_entities": {"type": "array", "items": {"type": "string"}},
        "hook_secrets": {"type": "array", "items": {"type": "string"}},
        "templates": {"type": "array", "items": {"type": "string"}},
        "special_teams": {
            "type": "object",
            "propertyNames": {"enum": [special.value for special in SpecialTeam]},
            "additionalProperties": _TEAM_IDS,
        },
    },
    "additionalProperties": False,
    "required": ["name"],
}


def _config_files(directory: str, pattern: str) -> list[str]:
    """Paths of the regular files in `directory` whose name matches `pattern`,
    sorted by name. A missing directory gives an empty list"""
    if not os.path.isdir(directory):
        logging.error("Configuration directory '%s' does not exist", directory)
        return []

    regex = re.compile(pattern + "$")
    files: list[str] = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if not regex.match(entry.name):
                continue
            if entry.is_file():
                files.append(entry.path)
            else:
                logging.warning("Ignoring '%s', it is not a regular file", entry.path)

    if not files:
        logging.error("No file matching '%s' in '%s'", pattern, directory)
    return sorted(files)


def _load_config_file(file: str, schema: dict) -> dict:
    """Read a YAML file and validate it. An empty file is an empty config"""
    logging.debug("Loading configuration from %s", file)
    with open(file, encoding="UTF-8") as yamlfile:
        cfg: dict = yaml.safe_load(yamlfile) or {}

    try:
        validate(instance=cfg, schema=schema, format_checker=FormatChecker())
    except ValidationError as e:
        logging.critical("Configuration in %s is invalid: %s", file, e.message)
        raise ValueError(e) from None

    return cfg


def organization_settings_from_config(cfg: dict) -> OrganizationSettings:
    """Turn a validated organisation config into settings"""
    special_teams: list[SpecialTeamEntry] = []
    for special_name, team_ids in cfg.get("special_teams", {}).items():
        for team_id in team_ids if isinstance(team_ids, list) else [team_ids]:
            special_teams.append(
                SpecialTeamEntry(special_team=SpecialTeam(special_name), team_id=team_id)
            )

    return OrganizationSettings(
        name=cfg["name"],
        organization_id=cfg.get("id"),
        active=cfg.get("active", True),
        priority=cfg.get("priority", "secondary"),
        repository_types=cfg.get("type", "public"),
        portal_description=cfg.get("description", ""),
        features=frozenset(cfg.get("features", [])),
        legal_entities=tuple(cfg.get("legal_entities", [])),
        hook_secrets=tuple(cfg.get("hook_secrets", [])),
        templates=tuple(cfg.get("templates", [])),
        special_teams=tuple(special_teams),
    )


def parse_config_files(path: str) -> tuple[dict, list[OrganizationSettings]]:
    """Read the app config and the settings of all organisations from a
    configuration directory"""
    cfg_app: dict = {}
    app_files = _config_files(path, APP_CONFIG_FILE)
    if len(app_files) > 1:
        logging.warning("Several app configuration files found, using %s", app_files[0])
    if app_files:
        cfg_app = _load_config_file(app_files[0], APP_CONFIG_SCHEMA)

    # Organisation names must be unique, regardless of their case
    settings: list[OrganizationSettings] = []
    defined_in: dict[str, str] = {}
    for org_file in _config_files(os.path.join(path, ORG_CONFIG_DIR), ORG_CONFIG_FILES):
        cfg = _load_config_file(org_file, ORG_CONFIG_SCHEMA)
        key = cfg["name"].lower()
        if key in defined_in:
            logging.critical(
                "Organisation '%s' in %s is already defined in %s",
                cfg["name"],
                org_file,
                defined_in[key],
            )
            raise ValueError(f"Organisation '{cfg['name']}' is configured more than once")
        defined_in[key] = org_file
        settings.append(organization_settings_from_config(cfg))

    return cfg_app, settings
