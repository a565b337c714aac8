# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Exceptions raised by the entity and aggregation layer"""

from typing import Any


class PortalError(Exception):
    """Base class for all errors of this package. Carries an HTTP-style status"""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)

    @property
    def message(self) -> str:
        """Human-readable message"""
        return str(self)


class NotFoundError(PortalError):
    """The entity does not exist (anymore) at GitHub"""

    def __init__(self, message: str, status: int | None = 404) -> None:
        super().__init__(message, status=status)


class InvalidStateError(PortalError):
    """Configuration or upstream contract violation, never silently coerced"""


class UnrecognizedValueError(InvalidStateError):
    """A role or permission value outside of the known set"""

    @classmethod
    def permission(cls, value: Any) -> "UnrecognizedValueError":
        """Return an error for an unknown permission level"""
        return cls(f"Unrecognized repository permission value: {value!r}")

    @classmethod
    def role(cls, value: Any, context: str) -> "UnrecognizedValueError":
        """Return an error for an unknown membership role"""
        return cls(f"Unrecognized or invalid role {value!r} {context}")


class UnauthorizedError(PortalError):
    """GitHub refused the credentials (401) or the operation (403)"""


class RedirectError(PortalError):
    """A team was looked up by name or id, but should be addressed by its slug"""

    def __init__(self, message: str, slug: str, team: Any) -> None:
        self.slug = slug
        self.team = team
        super().__init__(message, status=301)


class GitHubApiError(PortalError):
    """GitHub returned an error response"""

    def __init__(self, message: str, status: int | None = None, data: Any = None) -> None:
        self.data = data
        super().__init__(message, status=status)


def get_status(error: BaseException | None) -> int | None:
    """Get the HTTP-style status of an error, if there is one"""
    if error is None:
        return None
    status = getattr(error, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_not_found(error: BaseException | None) -> bool:
    """Whether an error means that the entity does not exist"""
    return isinstance(error, NotFoundError) or get_status(error) == 404


def wrap_error(error: BaseException, message: str) -> PortalError:
    """Enrich an error with context while keeping its status and cause.
    Authorization failures are returned untouched"""
    if isinstance(error, UnauthorizedError):
        return error
    status = get_status(error)
    detail = str(error)
    full_message = f"{message} {detail}".strip() if detail and detail not in message else message
    wrapped: PortalError
    if status == 404:
        wrapped = NotFoundError(full_message)
    else:
        wrapped = PortalError(full_message, status=status)
    wrapped.__cause__ = error
    return wrapped
