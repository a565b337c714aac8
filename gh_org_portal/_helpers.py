# SPDX-FileCopyrightText: 2025 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Helper functions"""

import logging
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

T = TypeVar("T")


def configure_logger(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Set logging options"""
    log = logging.getLogger()
    logging.basicConfig(
        encoding="utf-8",
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if debug:
        log.setLevel(logging.DEBUG)
    elif verbose:
        log.setLevel(logging.INFO)
    else:
        log.setLevel(logging.WARNING)

    return log


def log_progress(message: str) -> None:
    """Log progress messages to stderr"""
    # Clear line if no message is given
    if not message:
        sys.stderr.write("\r\033[K")
        sys.stderr.flush()
    else:
        sys.stderr.write(f"\r\033[K⏳ {message}")
        sys.stderr.flush()


# ------------------------------------------------------------------------------
# Entity projection
# ------------------------------------------------------------------------------
def assign_known_fields_prefixed(  # pylint: disable=too-many-arguments
    destination: Any,
    entity: dict | None,
    entity_type: str,
    known: Iterable[str],
    secondary: Iterable[str] | None = None,
    prefix: str = "_",
) -> None:
    """
    Project a raw GitHub API response onto a business entity.

    Known keys become attributes named `<prefix><key>`, secondary keys are
    collected in `destination.other_fields`, and all remaining keys end up in
    `destination.extra_fields`. The bags are rebuilt on every call, so
    projecting the same entity twice gives the same result.

    Args:
    - destination: The object to set the attributes on
    - entity: The raw response. A falsy value makes this a no-op
    - entity_type: Name of the entity type, only used for debug logging
    - known: Keys that become (prefixed) attributes
    - secondary: Keys that are kept, but only in `other_fields`
    - prefix: Prefix of the attribute names
    """
    if not entity:
        return

    # Work on a shallow copy, the input must stay untouched
    remaining = dict(entity)
    for key in known:
        if key in remaining:
            setattr(destination, prefix + key, remaining.pop(key))

    other_fields: dict[str, Any] = {}
    for key in secondary or []:
        if key in remaining:
            other_fields[key] = remaining.pop(key)

    destination.other_fields = other_fields
    destination.extra_fields = remaining
    if remaining:
        logging.debug(
            "%s entity has %s unknown field(s): %s",
            entity_type,
            len(remaining),
            ", ".join(sorted(remaining)),
        )


def create_instances(factory: Callable[[dict], T], entities: Iterable[dict] | None) -> list[T]:
    """Turn a fully paginated list of raw entities into typed objects, keeping
    the order of the server"""
    return [factory(entity) for entity in entities or []]


# ------------------------------------------------------------------------------
# Concurrency
# ------------------------------------------------------------------------------
@dataclass
class SettledState(Generic[T]):
    """Outcome of an awaitable that has been settled instead of raised"""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """Whether the awaitable completed without an error"""
        return self.error is None


async def settle_to_value(awaitable: Awaitable[T]) -> SettledState[T]:
    """Await something, but return its exception instead of raising it"""
    try:
        return SettledState(value=await awaitable)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        return SettledState(error=exc)


# ------------------------------------------------------------------------------
# Output
# ------------------------------------------------------------------------------
def json_to_text(data: Any, indent: int = 0) -> str:
    """Render JSON-like data as an indented outline. Empty values are left
    out, dicts inside lists are shown as nested blocks"""
    pad = "  " * indent
    text = ""
    if isinstance(data, dict):
        for key, value in data.items():
            if value in (None, "", [], {}):
                continue
            if isinstance(value, (dict, list)):
                text += f"{pad}{key}:\n" + json_to_text(value, indent + 1)
            else:
                text += f"{pad}{key}: {value}\n"
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                # First line of the block carries the list marker
                if block := json_to_text(item, indent + 1):
                    text += f"{pad}- " + block.lstrip(" ")
            else:
                text += f"{pad}- {item}\n"
    else:
        text += f"{pad}{data}\n"

    return text
