"""OutcomeCollection - aggregate state over many tracked AsyncOutcomes."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from unwrapped.async_outcome import AsyncOutcome
from unwrapped.outcome import Outcome
from unwrapped.types import AsyncState, CollectionState, is_terminal

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")

CollectionListener = Callable[["OutcomeCollection[Any, Any]"], Any]
ItemListener = Callable[[AsyncOutcome[Any, Any], str], Any]


@dataclass(eq=False)
class CollectionItem(Generic[T, E]):
    """A tracked outcome and the subscription that tracks it."""

    key: str
    outcome: AsyncOutcome[T, E]
    unsubscribe: Callable[[], None] | None = None


class OutcomeCollection(Generic[T, E]):
    """Tracks many AsyncOutcomes and reports whether any is still loading.

    The aggregate state is "any-loading" while at least one tracked outcome
    is loading, "all-settled" otherwise. It is recomputed on every tracked
    transition and broadcast to collection listeners.

    Usage:
        uploads = OutcomeCollection()
        uploads.listen(lambda c: print(c.state))
        uploads.add("avatar.png", upload("avatar.png"))
    """

    def __init__(self) -> None:
        self._items: dict[str, CollectionItem[T, E]] = {}
        self._listeners: dict[int, CollectionListener] = {}
        self._ids = itertools.count()
        self._state: CollectionState = "all-settled"

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    @property
    def state(self) -> CollectionState:
        return self._state

    @property
    def items(self) -> list[AsyncOutcome[T, E]]:
        return [item.outcome for item in self._items.values()]

    @property
    def entries(self) -> list[tuple[str, AsyncOutcome[T, E]]]:
        return [(key, item.outcome) for key, item in self._items.items()]

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def listen(self, listener: CollectionListener) -> Callable[[], None]:
        """Call ``listener(collection)`` whenever the aggregate state is recomputed."""
        listener_id = next(self._ids)
        self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def on_item_success(self, listener: ItemListener) -> Callable[[], None]:
        """Call ``listener(outcome, key)`` for every successful item on each broadcast."""

        def notify(collection: OutcomeCollection[Any, Any]) -> None:
            for key, outcome in collection.entries:
                if outcome.is_success():
                    listener(outcome, key)

        return self.listen(notify)

    def on_item_error(self, listener: ItemListener) -> Callable[[], None]:
        """Call ``listener(outcome, key)`` for every failed item on each broadcast."""

        def notify(collection: OutcomeCollection[Any, Any]) -> None:
            for key, outcome in collection.entries:
                if outcome.is_error():
                    listener(outcome, key)

        return self.listen(notify)

    def _set_state(self, state: CollectionState) -> None:
        if state != self._state:
            logger.debug("Collection state %s -> %s", self._state, state)
        self._state = state
        for listener_id, listener in list(self._listeners.items()):
            if listener_id in self._listeners:
                listener(self)

    def _recompute(self) -> None:
        self._set_state("any-loading" if self.any_loading() else "all-settled")

    # -------------------------------------------------------------------------
    # Managing items
    # -------------------------------------------------------------------------

    def add(
        self, key: str, outcome: AsyncOutcome[T, E], remove_on_settle: bool = True
    ) -> AsyncOutcome[T, E]:
        """Track ``outcome`` under ``key``.

        With ``remove_on_settle`` the item is dropped as soon as it reaches a
        terminal state (immediately, if it already has). Otherwise it stays
        and keeps contributing to the aggregate state. Adding an existing key
        replaces the previous item.
        """
        previous = self._items.pop(key, None)
        if previous is not None and previous.unsubscribe is not None:
            previous.unsubscribe()

        item = CollectionItem(key=key, outcome=outcome)
        self._items[key] = item

        def settle_and_drop() -> None:
            # Listeners still see the settled item during this broadcast
            if item.unsubscribe is not None:
                item.unsubscribe()
            self._recompute()
            if self._items.get(key) is item:
                del self._items[key]

        def on_transition(
            tracked: AsyncOutcome[Any, Any], old_state: AsyncState[Any, Any] | None
        ) -> None:
            if remove_on_settle and is_terminal(tracked.state):
                settle_and_drop()
            else:
                self._recompute()

        item.unsubscribe = outcome.listen(on_transition, immediate=False)
        if remove_on_settle and is_terminal(outcome.state):
            settle_and_drop()
        else:
            self._recompute()
        return outcome

    def remove(self, key: str) -> bool:
        """Stop tracking ``key``. Returns False if it was not tracked."""
        item = self._items.pop(key, None)
        if item is None:
            return False
        if item.unsubscribe is not None:
            item.unsubscribe()
        self._recompute()
        return True

    def clear(self) -> None:
        """Stop tracking everything and report "all-settled"."""
        for item in self._items.values():
            if item.unsubscribe is not None:
                item.unsubscribe()
        self._items.clear()
        self._set_state("all-settled")

    # -------------------------------------------------------------------------
    # Querying items
    # -------------------------------------------------------------------------

    def any_loading(self) -> bool:
        return any(item.outcome.is_loading() for item in self._items.values())

    def get_all_filtered(
        self, predicate: Callable[[AsyncOutcome[T, E]], bool]
    ) -> list[AsyncOutcome[T, E]]:
        return [item.outcome for item in self._items.values() if predicate(item.outcome)]

    def get_all_filtered_and_map(
        self,
        predicate: Callable[[AsyncOutcome[T, E]], bool],
        map_fn: Callable[[AsyncOutcome[T, E]], U],
    ) -> list[U]:
        return [
            map_fn(item.outcome)
            for item in self._items.values()
            if predicate(item.outcome)
        ]

    def get_all_success(self) -> list[AsyncOutcome[T, E]]:
        return self.get_all_filtered(lambda outcome: outcome.is_success())

    def get_all_success_values(self) -> list[T]:
        return self.get_all_filtered_and_map(
            lambda outcome: outcome.is_success(),
            lambda outcome: outcome.unwrap_or_raise(),
        )

    def get_all_errors(self) -> list[AsyncOutcome[T, E]]:
        return self.get_all_filtered(lambda outcome: outcome.is_error())

    def get_all_error_values(self) -> list[E]:
        return self.get_all_filtered_and_map(
            lambda outcome: outcome.is_error(),
            lambda outcome: outcome.unwrap_error_or_none(),
        )

    def get_all_loading(self) -> list[AsyncOutcome[T, E]]:
        return self.get_all_filtered(lambda outcome: outcome.is_loading())

    def get_all_loading_futures(self) -> list[asyncio.Task[Outcome[T, E]]]:
        """Tasks resolving to the settled Outcome of every loading item."""
        return self.get_all_filtered_and_map(
            lambda outcome: outcome.is_loading(),
            lambda outcome: asyncio.ensure_future(outcome.to_outcome()),
        )

    # -------------------------------------------------------------------------
    # Debugging utilities
    # -------------------------------------------------------------------------

    def log(self, name: str | None = None) -> None:
        """Log the aggregate state and every tracked item at DEBUG level."""
        logger.debug(
            "%s: state=%s items=%s",
            name or "<anonymous collection>",
            self._state,
            {key: item.outcome.state.status for key, item in self._items.items()},
        )

    def debug(self, name: str | None = None) -> Callable[[], None]:
        """Log the collection on every broadcast. Returns the unsubscribe function."""
        return self.listen(lambda _: self.log(name))


__all__ = ["CollectionItem", "OutcomeCollection"]
