"""Cached, paginated GraphQL client for the GitLab API."""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from services.errors import RemoteAPIError, ResourceNotFoundError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_PAGE_DELAY_SECONDS = 0.1
DEFAULT_TIMEOUT_SECONDS = 30


def make_cache_key(query: str, variables: Optional[dict] = None) -> str:
    """Deterministic key for a (query, variables) pair."""
    return json.dumps(
        {"query": query, "variables": variables or {}},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


@dataclass
class CacheEntry:
    key: str
    payload: Any
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl


class ResponseCache:
    """In-memory response store scoped to one client.

    Expired entries are evicted lazily when they are next looked up. No
    locking: two threads racing on the same key at worst both fetch.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str):
        """Return the cached payload, or None on a miss or expiry."""
        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_fresh(self._clock()):
                self.hits += 1
                return entry.payload
            del self._entries[key]
        self.misses += 1
        return None

    def set(self, key: str, payload, ttl: float):
        self._entries[key] = CacheEntry(
            key=key, payload=payload, fetched_at=self._clock(), ttl=ttl
        )

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self):
        return len(self._entries)

    def stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": round(self.hits / lookups * 100, 1) if lookups else 0,
        }


def parent_path(path: str) -> Optional[str]:
    """Drop the last segment of a namespace path ("a/b/c" -> "a/b")."""
    segments = [s for s in (path or "").split("/") if s]
    if len(segments) < 2:
        return None
    return "/".join(segments[:-1])


class GraphQLClient:
    """Executes GraphQL queries with response caching and cursor pagination."""

    def __init__(self, url: str, token: str,
                 session: Optional[requests.Session] = None,
                 cache: Optional[ResponseCache] = None,
                 ttl: float = DEFAULT_TTL_SECONDS,
                 page_delay: float = DEFAULT_PAGE_DELAY_SECONDS,
                 sleep: Callable[[float], None] = time.sleep,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.url = url.rstrip("/")
        self.endpoint = f"{self.url}/api/graphql"
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self.cache = cache if cache is not None else ResponseCache()
        self.ttl = ttl
        self.page_delay = page_delay
        self._sleep = sleep
        self.timeout = timeout
        self.request_count = 0

    def _request(self, query: str, variables: Optional[dict] = None,
                 context: str = None) -> dict:
        """Make one network call and return the response's data object."""
        payload = {"query": query, "variables": variables or {}}
        self.request_count += 1
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Failed {context or 'executing query'}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("errors"):
            messages = [err.get("message", str(err)) for err in body["errors"]]
            raise RemoteAPIError(messages, context)

        if response.status_code >= 400:
            raise TransportError(
                f"HTTP {response.status_code} ({context or 'executing query'}): "
                f"{getattr(response, 'reason', None) or 'Unknown error'}"
            )

        if not isinstance(body, dict):
            raise TransportError(f"Invalid JSON response ({context or 'executing query'})")

        return body.get("data") or {}

    def execute(self, query: str, variables: Optional[dict] = None,
                cache_key: Optional[str] = None, ttl: Optional[float] = None,
                context: str = None) -> dict:
        """Run a query, serving it from the cache while the entry is fresh.

        A ttl of 0 or less skips the cache for this call.
        """
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            return self._request(query, variables, context)

        key = cache_key or make_cache_key(query, variables)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit: %s", context or "query")
            return cached

        logger.debug("Cache miss: %s", context or "query")
        data = self._request(query, variables, context)
        self.cache.set(key, data, ttl)
        return data

    def fetch_all_pages(self, query: str, variables: Optional[dict],
                        connection_path: tuple,
                        path_variable: str = "fullPath",
                        allow_parent_fallback: bool = False,
                        ttl: Optional[float] = None,
                        context: str = None) -> list:
        """Drain a cursor-paginated connection and return every node in order.

        ``connection_path`` names the keys from the response data down to the
        connection, e.g. ("group", "issues"); the first key is the root object
        that must exist. The concatenated result is cached as one entry; a
        failure on any page fails the whole query.
        """
        variables = dict(variables or {})
        ttl = self.ttl if ttl is None else ttl
        key = make_cache_key(query, variables)

        if ttl > 0:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit: %s", context or "paginated query")
                return list(cached)

        try:
            nodes = self._drain(query, variables, connection_path, path_variable, context)
        except ResourceNotFoundError:
            fallback = parent_path(variables.get(path_variable)) if allow_parent_fallback else None
            if not fallback:
                raise
            # TODO: confirm with product whether a missing group should fall back
            # to its parent; this can attribute data to the wrong namespace.
            logger.warning(
                "%s not found, trying parent path %s",
                variables.get(path_variable), fallback,
            )
            nodes = self._drain(
                query, {**variables, path_variable: fallback},
                connection_path, path_variable, context,
            )

        if ttl > 0:
            self.cache.set(key, list(nodes), ttl)
        return nodes

    def _drain(self, query, variables, connection_path, path_variable, context) -> list:
        root_key, *rest = connection_path
        all_nodes = []
        after = variables.get("after")
        page = 0

        while True:
            data = self._request(query, {**variables, "after": after}, context)
            page += 1

            connection = data.get(root_key)
            if connection is None:
                path = variables.get(path_variable)
                raise ResourceNotFoundError(
                    f"{root_key.capitalize()} not found: {path}", path=path
                )
            for part in rest:
                connection = connection.get(part) if connection else None

            if not connection:
                logger.warning(
                    "No %s returned for %s", ".".join(rest), variables.get(path_variable)
                )
                return all_nodes

            nodes = connection.get("nodes") or []
            all_nodes.extend(nodes)
            page_info = connection.get("pageInfo") or {}
            logger.debug("Fetched page %d (%d nodes) for %s", page, len(nodes), context)

            if not page_info.get("hasNextPage"):
                return all_nodes

            next_cursor = page_info.get("endCursor")
            if not next_cursor or next_cursor == after:
                raise RemoteAPIError(
                    [f"Pagination cursor did not advance after page {page} (endCursor={next_cursor!r})"],
                    context,
                )
            after = next_cursor
            self._sleep(self.page_delay)
