# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Cache options that every read operation accepts, and the response cache
honouring them"""

import asyncio
import hashlib
import logging
import math
import time
from dataclasses import dataclass, field, fields, replace
from typing import Any, Awaitable, Callable, Hashable

import cachetools
import cachetools.keys


@dataclass(frozen=True)
class CacheOptions:
    """Per-call cache configuration.

    - max_age_seconds: maximum acceptable age of a cached value. Negative
      values force a live lookup
    - background_refresh: serve a stale value immediately and refresh it
      asynchronously
    - page_request_delay: seconds to wait between the pages of a collection
    """

    max_age_seconds: int | float | None = None
    background_refresh: bool | None = None
    page_request_delay: float | None = None


NO_CACHE = CacheOptions(max_age_seconds=-1, background_refresh=False)


@dataclass
class CacheDefaults:  # pylint: disable=too-many-instance-attributes
    """Default maximum ages in seconds per call site"""

    org_repos: int = 60 * 15
    org_repo_teams: int = 60 * 3
    org_repo_collaborators: int = 60 * 30
    org_repo_collaborator: int = 30
    org_repo_details: int = 60 * 5
    org_teams: int = 60 * 5
    org_team_details: int = 60 * 30
    org_teams_slug_lookup: int = 30
    org_members: int = 60 * 30
    team_maintainers: int = 60 * 2
    org_membership: int = 60 * 5
    org_membership_direct: int = 30
    account_detail: int = 60 * 60 * 24
    team_detail: int = 60 * 60 * 2
    org_repo_webhooks: int = 60 * 60 * 8
    team_repository_permission: int = 0
    fallback: int = 60

    @classmethod
    def from_dict(cls, overrides: dict[str, int] | None) -> "CacheDefaults":
        """Create defaults with some values overridden, e.g. from configuration"""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in (overrides or {}).items() if key in known})


def get_max_age_seconds(
    defaults: CacheDefaults, key: str, options: CacheOptions | None = None
) -> int | float:
    """Get the maximum age for a call site: the caller's option if set, the
    default of the call site otherwise, and the fallback as a last resort"""
    if options is not None and options.max_age_seconds is not None:
        return options.max_age_seconds
    value = getattr(defaults, key, None)
    if value is None:
        return defaults.fallback
    return value


def create_cache_options(
    defaults: CacheDefaults,
    key: str,
    options: CacheOptions | None = None,
    background_refresh: bool | None = None,
) -> CacheOptions:
    """Merge the caller's options with the defaults of a call site. Values set
    by the caller are forwarded unchanged"""
    options = options or CacheOptions()
    return replace(
        options,
        max_age_seconds=get_max_age_seconds(defaults, key, options),
        background_refresh=(
            options.background_refresh
            if options.background_refresh is not None
            else background_refresh
        ),
    )


def create_paged_cache_options(
    defaults: CacheDefaults,
    key: str,
    options: CacheOptions | None = None,
) -> CacheOptions:
    """Like create_cache_options, for collections: background refresh unless
    the caller explicitly disabled it"""
    return create_cache_options(defaults, key, options, background_refresh=True)


def cache_key(token: str, api: str, parameters: dict[str, Any]) -> Hashable:
    """Build a cache key from the token, the API name and its parameters"""
    # Never keep the token itself in memory as part of a key
    fingerprint = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16] if token else ""
    return cachetools.keys.hashkey(
        fingerprint, api, *sorted((key, repr(value)) for key, value in parameters.items())
    )


@dataclass
class _Entry:
    """A stored response and the time it has been fetched"""

    fetched_at: float
    value: Any


@dataclass
class ResponseCache:
    """In-memory store of GitHub responses implementing the cache options.

    Entries live at most `max_stale_seconds`, and the least recently used
    entries are dropped once `max_entries` is reached.
    """

    max_entries: int = 10000
    max_stale_seconds: float = 60 * 60 * 24
    timer: Callable[[], float] = time.monotonic
    _store: cachetools.TLRUCache = field(init=False, repr=False)
    _refreshing: dict[Hashable, asyncio.Task] = field(init=False, repr=False, default_factory=dict)

    def __post_init__(self) -> None:
        size = self.max_entries if self.max_entries else math.inf
        self._store = cachetools.TLRUCache(
            maxsize=size,
            ttu=lambda _key, _value, now: now + self.max_stale_seconds,
            timer=self.timer,
        )

    def __len__(self) -> int:
        return len(self._store)

    def clear(self) -> None:
        """Drop all entries"""
        self._store.clear()

    def age(self, key: Hashable) -> float | None:
        """Age of a cached entry in seconds, None if not cached"""
        entry: _Entry | None = self._store.get(key)
        if entry is None:
            return None
        return self.timer() - entry.fetched_at

    def store(self, key: Hashable, value: Any) -> None:
        """Store a freshly fetched value"""
        self._store[key] = _Entry(fetched_at=self.timer(), value=value)

    async def get_or_fetch(
        self,
        key: Hashable,
        fetch: Callable[[], Awaitable[Any]],
        options: CacheOptions | None = None,
    ) -> Any:
        """Serve from cache or fetch, depending on the cache options"""
        options = options or CacheOptions()
        max_age = options.max_age_seconds if options.max_age_seconds is not None else 0

        entry: _Entry | None = None if max_age < 0 else self._store.get(key)
        if entry is not None:
            age = self.timer() - entry.fetched_at
            if age <= max_age:
                logging.debug("Cache hit for %s (age %.0fs)", key, age)
                return entry.value
            if options.background_refresh:
                logging.debug("Serving stale value for %s (age %.0fs), refreshing", key, age)
                self._refresh_in_background(key, fetch)
                return entry.value

        logging.debug("Cache miss or live lookup requested for %s", key)
        value = await fetch()
        self.store(key, value)
        return value

    def _refresh_in_background(self, key: Hashable, fetch: Callable[[], Awaitable[Any]]) -> None:
        """Schedule one refresh per key"""
        if key in self._refreshing:
            return

        async def refresh() -> None:
            try:
                self.store(key, await fetch())
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logging.warning("Background refresh of %s failed: %s", key, exc)
            finally:
                self._refreshing.pop(key, None)

        self._refreshing[key] = asyncio.get_running_loop().create_task(refresh())

    async def wait_for_refreshes(self) -> None:
        """Wait until all scheduled background refreshes have finished"""
        if self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)
