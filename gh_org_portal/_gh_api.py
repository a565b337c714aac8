# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""
Functions and the client for interacting with the GitHub API
"""

import asyncio
import hashlib
import logging
import os
import re
from typing import Any

import cachetools
from github import Auth, Github, GithubException
from github.Consts import DEFAULT_BASE_URL, DEFAULT_TIMEOUT

from ._cache import CacheOptions, ResponseCache, cache_key
from ._errors import GitHubApiError, UnauthorizedError

DEFAULT_PAGE_SIZE = 100

# Named REST operations and their HTTP verb and path template
API_ROUTES: dict[str, tuple[str, str]] = {
    # Organizations
    "orgs.get": ("GET", "/orgs/{org}"),
    "orgs.listMembers": ("GET", "/orgs/{org}/members"),
    "orgs.getMembershipForUser": ("GET", "/orgs/{org}/memberships/{username}"),
    "orgs.setMembershipForUser": ("PUT", "/orgs/{org}/memberships/{username}"),
    "orgs.removeMembershipForUser": ("DELETE", "/orgs/{org}/memberships/{username}"),
    "orgs.checkPublicMembershipForUser": ("GET", "/orgs/{org}/public_members/{username}"),
    # Repositories
    "repos.get": ("GET", "/repos/{owner}/{repo}"),
    "repos.getById": ("GET", "/repositories/{id}"),
    "repos.listForOrg": ("GET", "/orgs/{org}/repos"),
    "repos.listCollaborators": ("GET", "/repos/{owner}/{repo}/collaborators"),
    "repos.checkCollaborator": ("GET", "/repos/{owner}/{repo}/collaborators/{username}"),
    "repos.getCollaboratorPermissionLevel": (
        "GET",
        "/repos/{owner}/{repo}/collaborators/{username}/permission",
    ),
    "repos.addCollaborator": ("PUT", "/repos/{owner}/{repo}/collaborators/{username}"),
    "repos.removeCollaborator": ("DELETE", "/repos/{owner}/{repo}/collaborators/{username}"),
    "repos.listTeams": ("GET", "/repos/{owner}/{repo}/teams"),
    "repos.listHooks": ("GET", "/repos/{owner}/{repo}/hooks"),
    # Teams
    "teams.get": ("GET", "/teams/{team_id}"),
    "teams.getByName": ("GET", "/orgs/{org}/teams/{team_slug}"),
    "teams.list": ("GET", "/orgs/{org}/teams"),
    "teams.listMembers": ("GET", "/teams/{team_id}/members"),
    "teams.listRepos": ("GET", "/teams/{team_id}/repos"),
    "teams.getMembership": ("GET", "/teams/{team_id}/memberships/{username}"),
    "teams.addOrUpdateMembership": ("PUT", "/teams/{team_id}/memberships/{username}"),
    "teams.removeMembership": ("DELETE", "/teams/{team_id}/memberships/{username}"),
    "teams.addOrUpdateRepo": ("PUT", "/teams/{team_id}/repos/{owner}/{repo}"),
    "teams.removeRepo": ("DELETE", "/teams/{team_id}/repos/{owner}/{repo}"),
}

_PLACEHOLDER = re.compile(r"{(\w+)}")
_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


def get_github_secrets_from_env(env_variable: str, secret: str | int) -> str:
    """Get GitHub secrets from config or environment, while environment overrides"""
    if env_variable in os.environ and os.environ[env_variable]:
        logging.debug("GitHub secret taken from environment variable %s", env_variable)
        secret = os.environ[env_variable]
    elif secret:
        logging.debug("GitHub secret taken from app configuration file")

    return str(secret)


def build_request(api: str, parameters: dict[str, Any]) -> tuple[str, str, dict, dict]:
    """Resolve a named operation into verb, URL, query parameters and body"""
    try:
        verb, template = API_ROUTES[api]
    except KeyError:
        raise ValueError(f"Unknown GitHub API operation '{api}'") from None

    remaining = {key: value for key, value in parameters.items() if value is not None}
    path_keys = _PLACEHOLDER.findall(template)
    missing = [key for key in path_keys if key not in remaining]
    if missing:
        raise ValueError(f"GitHub API operation '{api}' requires the parameters: {missing}")
    url = template.format(**{key: remaining.pop(key) for key in path_keys})

    # per_page is always a query parameter, everything else is the request body
    # for writing operations
    if verb in ("GET", "DELETE"):
        return verb, url, remaining, {}
    query = {"per_page": remaining.pop("per_page")} if "per_page" in remaining else {}
    return verb, url, query, remaining


def next_page_url(headers: dict[str, str]) -> str | None:
    """Get the URL of the next page from the Link header"""
    link = headers.get("link") or headers.get("Link") or ""
    match = _NEXT_LINK.search(link)
    return match.group(1) if match else None


def _convert_exception(api: str, exc: GithubException) -> GitHubApiError | UnauthorizedError:
    """Turn an exception of PyGithub into one of ours"""
    message = exc.data.get("message", "") if isinstance(exc.data, dict) else str(exc.data or "")
    text = f"GitHub API operation '{api}' failed with status {exc.status}: {message}"
    if exc.status in (401, 403) and "rate limit" not in message.lower():
        return UnauthorizedError(text, status=exc.status)
    return GitHubApiError(text, status=exc.status, data=exc.data)


class GitHubClient:
    """Executes named GitHub REST operations, with caching and pagination"""

    def __init__(
        self,
        cache: ResponseCache | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.cache = cache if cache is not None else ResponseCache()
        self.base_url = base_url
        self.timeout = timeout
        self.page_size = page_size
        # One PyGithub instance per token, tokens of GitHub Apps rotate hourly
        self._sessions: cachetools.LRUCache = cachetools.LRUCache(maxsize=32)

    def _requester(self, token: str):
        """Get the PyGithub requester for a token"""
        fingerprint = hashlib.sha256(token.encode("utf-8")).hexdigest()
        if fingerprint not in self._sessions:
            self._sessions[fingerprint] = Github(
                auth=Auth.Token(token),
                base_url=self.base_url,
                timeout=self.timeout,
                per_page=self.page_size,
            )
        return self._sessions[fingerprint].requester

    async def _request(
        self, token: str, api: str, verb: str, url: str, query: dict, body: dict
    ) -> tuple[dict[str, str], Any]:
        """Run a single request in a worker thread"""
        requester = self._requester(token)
        logging.debug("GitHub API %s %s (%s)", verb, url, api)
        try:
            return await asyncio.to_thread(
                requester.requestJsonAndCheck,
                verb,
                url,
                parameters=query or None,
                input=body or None,
            )
        except GithubException as exc:
            raise _convert_exception(api, exc) from exc

    async def _fetch_one(self, token: str, api: str, parameters: dict[str, Any]) -> Any:
        verb, url, query, body = build_request(api, parameters)
        _, data = await self._request(token, api, verb, url, query, body)
        return data

    async def _fetch_all(
        self, token: str, api: str, parameters: dict[str, Any], page_request_delay: float | None
    ) -> list:
        verb, url, query, body = build_request(api, parameters)
        query.setdefault("per_page", self.page_size)

        results: list = []
        next_url: str | None = url
        page = 1
        while next_url:
            if page > 1 and page_request_delay:
                await asyncio.sleep(page_request_delay)
            headers, data = await self._request(token, api, verb, next_url, query, body)
            results.extend(data or [])
            # The next URL already contains all query parameters
            next_url = next_page_url(headers)
            query = {}
            page += 1

        logging.debug("Fetched %s item(s) in %s page(s) for %s", len(results), page - 1, api)
        return results

    async def call(
        self,
        token: str,
        api: str,
        parameters: dict[str, Any],
        cache_options: CacheOptions | None = None,
    ) -> Any:
        """Run a single read operation, honouring the cache options"""
        key = cache_key(token, api, parameters)
        return await self.cache.get_or_fetch(
            key, lambda: self._fetch_one(token, api, parameters), cache_options
        )

    async def collection(
        self,
        token: str,
        api: str,
        parameters: dict[str, Any],
        cache_options: CacheOptions | None = None,
    ) -> list:
        """Run a paginated read operation and return all items in server order"""
        delay = cache_options.page_request_delay if cache_options else None
        key = cache_key(token, api, parameters)
        return await self.cache.get_or_fetch(
            key, lambda: self._fetch_all(token, api, parameters, delay), cache_options
        )

    async def post(self, token: str, api: str, parameters: dict[str, Any]) -> Any:
        """Run an operation live, without any caching. Used for writes and
        lookups which must be current"""
        return await self._fetch_one(token, api, parameters)
