"""KeyedCache - AsyncOutcome instances cached per fetch parameters.

This module provides:
- get(): cached fetch returning a shared AsyncOutcome, with refetch policies
- get_settled_state(): get() and wait for settlement
- invalidate_key() / invalidate_params() / invalidate_all(): mark stale
- clear(): drop every entry
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from unwrapped.async_outcome import AsyncOutcome
from unwrapped.errors import defect
from unwrapped.outcome import Outcome
from unwrapped.timing import now_ms, parse_duration
from unwrapped.types import (
    REFETCH_POLICIES,
    AsyncState,
    CacheEntry,
    Duration,
    Failure,
    Loading,
    RefetchPolicy,
)

logger = logging.getLogger(__name__)

P = TypeVar("P")
V = TypeVar("V")
E = TypeVar("E")

Fetcher = Callable[[P], Outcome[V, E] | Awaitable[Outcome[V, E]]]
KeyFunction = Callable[[P], str]


def default_key(params: Any) -> str:
    """Stable key for fetch parameters.

    Composite parameters (dicts, lists, tuples, sets) are serialized as JSON
    with sorted keys, so equal structures share a key. Anything else uses str().
    """
    if isinstance(params, (dict, list, tuple, set, frozenset)):
        return json.dumps(_normalize(params), sort_keys=True, default=str)
    return str(params)


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_dict_key(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, (set, frozenset)):
        items = [_normalize(item) for item in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, default=str))
    return value


def _dict_key(key: Any) -> str:
    # Non-string keys are tagged with their type so 1 and "1" stay distinct
    if isinstance(key, str):
        return key
    return f"{type(key).__name__}:{key}"


class KeyedCache(Generic[P, V, E]):
    """A cache of AsyncOutcome instances, one per distinct parameter key.

    The cache owns its entries. Callers share read and subscribe access to
    the returned AsyncOutcome; a refetch reuses that same instance so
    existing listeners see the new loading cycle.

    Usage:
        cache = KeyedCache(fetch_user, default_ttl="5m")
        user = cache.get("123")
        state = await cache.get_settled_state("123", "if-error")
        cache.invalidate_params("123")
    """

    def __init__(
        self,
        fetcher: Fetcher[P, V, E],
        *,
        key_fn: KeyFunction[P] = default_key,
        default_ttl: Duration | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._key_fn = key_fn
        self._default_ttl = parse_duration(default_ttl)
        self._entries: dict[str, CacheEntry[V, E]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def key_for(self, params: P) -> str:
        return self._key_fn(params)

    def get(self, params: P, policy: RefetchPolicy = "no-refetch") -> AsyncOutcome[V, E]:
        """Return the AsyncOutcome for ``params``, fetching when needed.

        Args:
            params: Parameters passed to the fetcher
            policy: "refetch" always refetches, "if-error" refetches only
                when the cached state is an error, "no-refetch" refetches
                only once the entry's TTL has expired

        Returns:
            The cached (possibly loading) AsyncOutcome
        """
        if policy not in REFETCH_POLICIES:
            raise ValueError(f"Invalid refetch policy: {policy!r}")

        key = self._key_fn(params)
        entry = self._entries.get(key)

        if entry is None:
            logger.debug("Cache miss for %s", key)
            entry = CacheEntry(
                outcome=AsyncOutcome(), params=params, ttl=self._default_ttl
            )
            self._entries[key] = entry
            self._fetch(entry)
            return entry.outcome

        if self._should_refetch(entry, policy):
            logger.debug("Refetching %s (policy=%s, valid=%s)", key, policy, entry.valid)
            entry.params = params
            self._fetch(entry)
        return entry.outcome

    async def get_settled_state(
        self, params: P, policy: RefetchPolicy = "no-refetch"
    ) -> AsyncState[V, E]:
        """get() followed by wait_for_settled(); returns the resulting state."""
        outcome = self.get(params, policy)
        await outcome.wait_for_settled()
        return outcome.state

    def any_loading(self) -> bool:
        """Whether any cached outcome is currently loading."""
        return any(entry.outcome.is_loading() for entry in self._entries.values())

    def invalidate_key(self, key: str) -> None:
        """Mark an entry stale. Its last state stays visible until the next get()."""
        entry = self._entries.get(key)
        if entry is not None:
            entry.valid = False

    def invalidate_params(self, params: P) -> None:
        self.invalidate_key(self._key_fn(params))

    def invalidate_all(self) -> None:
        for entry in self._entries.values():
            entry.valid = False

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _should_refetch(self, entry: CacheEntry[V, E], policy: RefetchPolicy) -> bool:
        if not entry.valid:
            return True
        if policy == "refetch":
            return True
        if policy == "if-error":
            return isinstance(entry.outcome.state, Failure)
        # TTL only applies to settled entries
        if isinstance(entry.outcome.state, Loading):
            return False
        if entry.ttl is None or entry.last_settled_at is None:
            return False
        return now_ms() - entry.last_settled_at > entry.ttl

    def _fetch(self, entry: CacheEntry[V, E]) -> None:
        entry.valid = True
        try:
            result = self._fetcher(entry.params)
        except Exception as e:
            result = Outcome.err(defect(e))

        async def resolve() -> Outcome[V, E]:
            try:
                if inspect.isawaitable(result):
                    return await result
                return result
            finally:
                # Stamped before listeners see the settled state
                state = entry.outcome.state
                if isinstance(state, Loading) and state.pending is pending:
                    entry.last_settled_at = now_ms()

        pending = entry.outcome.update_from_result_awaitable(resolve())


def create_cache(
    fetcher: Fetcher[P, V, E],
    *,
    key_fn: KeyFunction[P] = default_key,
    default_ttl: Duration | None = None,
) -> KeyedCache[P, V, E]:
    """Create a keyed cache.

    Args:
        fetcher: Called with the params; returns an Outcome or an awaitable of one
        key_fn: Converts params to a unique string key
        default_ttl: Time to live for settled entries (default: unbounded)

    Returns:
        KeyedCache instance with get, get_settled_state, invalidate_*, clear
    """
    if not callable(fetcher):
        raise TypeError("fetcher must be callable")
    if not callable(key_fn):
        raise TypeError("key_fn must be callable")

    return KeyedCache(fetcher, key_fn=key_fn, default_ttl=default_ttl)


__all__ = ["Fetcher", "KeyFunction", "KeyedCache", "create_cache", "default_key"]
