# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Repository permission levels and their ordering"""

from enum import Enum
from typing import Any

from ._errors import UnrecognizedValueError


class RepositoryPermission(str, Enum):
    """Repository permission levels in the naming of the GitHub REST API"""

    NONE = "none"
    PULL = "pull"
    TRIAGE = "triage"
    PUSH = "push"
    MAINTAIN = "maintain"
    ADMIN = "admin"

    def __str__(self) -> str:
        return self.value


# Lowest to highest
PERMISSION_RANKING: list[RepositoryPermission] = [
    RepositoryPermission.NONE,
    RepositoryPermission.PULL,
    RepositoryPermission.TRIAGE,
    RepositoryPermission.PUSH,
    RepositoryPermission.MAINTAIN,
    RepositoryPermission.ADMIN,
]

# Level strings of the collaborator permission API and GraphQL
PERMISSION_ALIASES: dict[str, RepositoryPermission] = {
    "none": RepositoryPermission.NONE,
    "": RepositoryPermission.NONE,
    "read": RepositoryPermission.PULL,
    "pull": RepositoryPermission.PULL,
    "triage": RepositoryPermission.TRIAGE,
    "write": RepositoryPermission.PUSH,
    "push": RepositoryPermission.PUSH,
    "maintain": RepositoryPermission.MAINTAIN,
    "admin": RepositoryPermission.ADMIN,
}


def massage_permission(value: RepositoryPermission | str | None) -> RepositoryPermission | None:
    """Convert a permission level string to the canonical enum. Unknown values
    raise, they are never defaulted"""
    if value is None:
        return None
    if isinstance(value, RepositoryPermission):
        return value
    if isinstance(value, str) and value.lower() in PERMISSION_ALIASES:
        return PERMISSION_ALIASES[value.lower()]

    raise UnrecognizedValueError.permission(value)


def _rank(permission: RepositoryPermission | str | None) -> int:
    """Position in the ordering. None ranks below NONE"""
    if permission is None:
        return -1
    return PERMISSION_RANKING.index(massage_permission(permission))  # type: ignore[arg-type]


def is_permission_better_than(
    current: RepositoryPermission | str | None, candidate: RepositoryPermission | str | None
) -> bool:
    """Check whether the candidate permission is strictly higher than the current one"""
    if candidate is None:
        return False
    return _rank(candidate) > _rank(current)


def best_permission(*permissions: RepositoryPermission | str | None) -> RepositoryPermission | None:
    """Fold multiple permissions into the highest one. None values are ignored"""
    best: RepositoryPermission | None = None
    for permission in permissions:
        if is_permission_better_than(best, permission):
            best = massage_permission(permission)

    return best


def permissions_object_to_value(permissions: dict[str, Any] | None) -> RepositoryPermission:
    """Convert a GitHub permissions object, e.g. {"admin": false, "push": true,
    "pull": true}, to the highest granted permission"""
    permissions = permissions or {}
    for permission in reversed(PERMISSION_RANKING[1:]):
        if permissions.get(permission.value):
            return permission

    return RepositoryPermission.NONE


def collaborator_permission_to_value(response: dict[str, Any] | str | None) -> RepositoryPermission:
    """Convert the response of a collaborator permission check, either a
    permissions object or a level string, to the canonical permission"""
    if isinstance(response, dict):
        # Full collaborator permission level response
        if "permission" in response and not isinstance(response.get("permission"), dict):
            return massage_permission(response["permission"])  # type: ignore[return-value]
        return permissions_object_to_value(response.get("permissions", response))
    if isinstance(response, str):
        return massage_permission(response)  # type: ignore[return-value]

    raise UnrecognizedValueError.permission(response)


def permission_to_permissions_object(
    permission: RepositoryPermission | str | None,
) -> dict[str, bool]:
    """Convert a permission to a GitHub permissions object. Higher permissions
    imply all lower ones"""
    rank = _rank(permission)
    return {level.value: rank >= _rank(level) for level in PERMISSION_RANKING[1:]}
