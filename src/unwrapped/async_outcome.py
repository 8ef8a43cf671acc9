"""AsyncOutcome - a four-state asynchronous result with listeners.

An AsyncOutcome is a mutable cell that moves through
idle -> loading -> success | error, and may re-enter loading from a
terminal state (refetch). Listeners are notified synchronously, in
registration order, on every state change.

Provides:
- Constructors: ok(), err(), err_tag(), from_result_awaitable(),
  from_value_awaitable(), from_action(), make_lazy_action()
- Settlement: wait_for_settled(), to_outcome(), ``await outcome``
- Subscription: listen(), listen_until_settled()
- Composition: chain(), flat_chain(), mirror(), mirror_until_settled(),
  to_debounced(), ensure_available()
- Sequencing: run(), run_in_place(), derived_from_parent()
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import math
import weakref
from collections.abc import Awaitable, Callable, Generator, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, cast

from unwrapped.errors import DomainError, UnsettledError, UnwrapError, defect
from unwrapped.outcome import Outcome
from unwrapped.timing import parse_duration
from unwrapped.types import (
    Action,
    AsyncState,
    Duration,
    Failure,
    Idle,
    LazyAction,
    Listener,
    Loading,
    NotifyProgress,
    ResultState,
    Success,
    is_terminal,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E")
O = TypeVar("O")  # noqa: E741
E2 = TypeVar("E2")

StepGenerator = Generator[Any, Any, T]
ChainFunction = Callable[[T], Outcome[O, E2] | Awaitable[Outcome[O, E2]]]


@dataclass(eq=False)
class _ListenerEntry:
    """Subscription record owned by a single AsyncOutcome."""

    callback: Listener
    notify_on_progress: bool
    debounce_ms: float
    timer: asyncio.TimerHandle | None = None
    loading_delivered: bool = False
    active: bool = True

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclass(eq=False)
class _ParentLink:
    """Non-owning reference to the outcome this one copies its state from."""

    parent: weakref.ref[AsyncOutcome[Any, Any]]
    detach: Callable[[], None]


async def _settle(awaitable: Awaitable[Any]) -> Outcome[Any, Any]:
    """Await a pending result, turning broken contracts into defect errors."""
    try:
        result = await awaitable
    except Exception as e:
        return Outcome.err(defect(e))
    if not isinstance(result, Outcome):
        return Outcome.err(
            defect(TypeError(f"Expected Outcome from awaitable, got {type(result)}"))
        )
    return result


def _resolved_state(pending: asyncio.Future[Any]) -> ResultState[Any, Any]:
    if pending.cancelled():
        return Failure(defect(asyncio.CancelledError("pending result was cancelled")))
    exc = pending.exception()
    if exc is not None:
        return Failure(defect(exc))
    result = pending.result()
    if not isinstance(result, Outcome):
        return Failure(
            defect(TypeError(f"Expected Outcome from pending, got {type(result)}"))
        )
    return result.state


class AsyncOutcome(Generic[T, E]):
    """A four-state (idle/loading/success/error) asynchronous result.

    Usage:
        user = AsyncOutcome.from_value_awaitable(fetch_user("123"))
        unsubscribe = user.listen(lambda outcome, old: render(outcome.state))
        outcome = await user          # Outcome[User, DomainError]
    """

    __slots__ = (
        "__weakref__",
        "_generation",
        "_ids",
        "_listeners",
        "_parent",
        "_state",
    )

    def __init__(self, state: AsyncState[T, E] | None = None) -> None:
        self._state: AsyncState[T, E] = state if state is not None else Idle()
        self._listeners: dict[int, _ListenerEntry] = {}
        self._ids = itertools.count()
        self._generation = 0
        self._parent: _ParentLink | None = None

    def __repr__(self) -> str:
        return f"AsyncOutcome({self._state!r})"

    @property
    def state(self) -> AsyncState[T, E]:
        return self._state

    @property
    def parent(self) -> AsyncOutcome[Any, Any] | None:
        """The outcome currently mirrored into this one, if still alive."""
        if self._parent is None:
            return None
        return self._parent.parent()

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @staticmethod
    def ok(value: T) -> AsyncOutcome[T, Any]:
        return AsyncOutcome(Success(value))

    @staticmethod
    def err(error: E) -> AsyncOutcome[Any, E]:
        return AsyncOutcome(Failure(error))

    @staticmethod
    def err_tag(
        code: str, message: str | None = None, cause: object | None = None
    ) -> AsyncOutcome[Any, DomainError]:
        return AsyncOutcome.err(DomainError(code, message, cause))

    @staticmethod
    def from_result_awaitable(
        awaitable: Awaitable[Outcome[T, E]],
    ) -> AsyncOutcome[T, E]:
        result: AsyncOutcome[T, E] = AsyncOutcome()
        result.update_from_result_awaitable(awaitable)
        return result

    @staticmethod
    def from_value_awaitable(awaitable: Awaitable[T]) -> AsyncOutcome[T, Any]:
        result: AsyncOutcome[T, Any] = AsyncOutcome()
        result.update_from_value_awaitable(awaitable)
        return result

    @staticmethod
    def from_action(action: Action) -> AsyncOutcome[Any, Any]:
        """Start ``action`` right away, wiring its progress callback to the result."""
        result: AsyncOutcome[Any, Any] = AsyncOutcome()
        result._run_action(action)
        return result

    @staticmethod
    def make_lazy_action(action: Action) -> LazyAction[Any, Any]:
        """Wrap ``action`` so it only starts when ``trigger()`` is called."""
        result: AsyncOutcome[Any, Any] = AsyncOutcome()

        def trigger() -> AsyncOutcome[Any, Any]:
            result._run_action(action)
            return result

        return LazyAction(trigger=trigger, result=result)

    # -------------------------------------------------------------------------
    # State queries
    # -------------------------------------------------------------------------

    def is_idle(self) -> bool:
        return isinstance(self._state, Idle)

    def is_loading(self) -> bool:
        return isinstance(self._state, Loading)

    def is_success(self) -> bool:
        return isinstance(self._state, Success)

    def is_error(self) -> bool:
        return isinstance(self._state, Failure)

    def unwrap_or_none(self) -> T | None:
        if isinstance(self._state, Success):
            return self._state.value
        return None

    def unwrap_or_raise(self) -> T:
        if isinstance(self._state, Success):
            return self._state.value
        raise UnwrapError("Tried to unwrap an AsyncOutcome that is not successful")

    def unwrap_error_or_none(self) -> E | None:
        if isinstance(self._state, Failure):
            return self._state.error
        return None

    # -------------------------------------------------------------------------
    # Mutators
    # -------------------------------------------------------------------------

    def _set_state(self, state: AsyncState[T, E], *, progress_only: bool = False) -> None:
        old_state = self._state
        self._state = state
        if not progress_only:
            self._generation += 1
        for listener_id, entry in list(self._listeners.items()):
            # A listener may unsubscribe another one while we iterate
            if self._listeners.get(listener_id) is not entry:
                continue
            self._dispatch(entry, old_state, progress_only)

    def update(self, state: AsyncState[T, E]) -> None:
        """Replace the current state and notify listeners."""
        self._set_state(state)

    def update_from_value(self, value: T) -> None:
        self._set_state(Success(value))

    def update_from_error(self, error: E) -> None:
        self._set_state(Failure(error))

    def update_progress(self, progress: Any) -> None:
        """Merge ``progress`` into the loading state. No-op unless loading.

        Dicts are merged key-wise, anything else replaces the previous value.
        Only listeners registered with ``notify_on_progress`` are called.
        """
        state = self._state
        if not isinstance(state, Loading):
            return
        if isinstance(state.progress, dict) and isinstance(progress, dict):
            progress = {**state.progress, **progress}
        self._set_state(Loading(state.pending, progress), progress_only=True)

    def update_from_result_awaitable(
        self, awaitable: Awaitable[Outcome[T, E]]
    ) -> asyncio.Future[Outcome[T, E]]:
        """Start a new loading cycle driven by ``awaitable``.

        Returns the pending future of the new cycle. If another cycle starts
        (or a terminal state is forced) before it resolves, its result is
        discarded.
        """
        loop = asyncio.get_running_loop()
        pending: asyncio.Future[Outcome[T, E]] = loop.create_task(_settle(awaitable))
        self._set_state(Loading(pending))
        generation = self._generation
        pending.add_done_callback(lambda fut: self._adopt(fut, generation))
        return pending

    def update_from_value_awaitable(
        self, awaitable: Awaitable[T]
    ) -> asyncio.Future[Outcome[T, E]]:
        async def wrap() -> Outcome[T, E]:
            return Outcome.ok(await awaitable)

        return self.update_from_result_awaitable(wrap())

    def copy_once_settled(self, other: AsyncOutcome[T, E]) -> None:
        """Load until ``other`` settles, then take its terminal state."""
        self.update_from_result_awaitable(other.to_outcome())

    def _adopt(self, pending: asyncio.Future[Outcome[T, E]], generation: int) -> None:
        if generation != self._generation:
            logger.debug(
                "Discarding superseded loading cycle %d (current %d)",
                generation,
                self._generation,
            )
            if not pending.cancelled():
                pending.exception()  # mark retrieved
            return
        self._set_state(_resolved_state(pending))

    def _run_action(self, action: Action) -> None:
        async def invoke() -> Outcome[T, E]:
            return await action(self.update_progress)

        self.update_from_result_awaitable(invoke())

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    async def wait_for_settled(self) -> AsyncOutcome[T, E]:
        """Suspend until no loading cycle is in flight.

        An idle outcome is returned unchanged.
        """
        while isinstance(self._state, Loading):
            pending = self._state.pending
            generation = self._generation
            await asyncio.wait((pending,))
            if generation == self._generation:
                # Nobody adopted the result (e.g. a state set via update())
                self._set_state(_resolved_state(pending))
        return self

    async def to_outcome(self) -> Outcome[T, E]:
        """Wait for settlement and return the terminal state as an Outcome.

        Raises UnsettledError if the outcome is (or stays) idle.
        """
        if isinstance(self._state, Idle):
            raise UnsettledError("Cannot convert an idle AsyncOutcome to an Outcome")
        await self.wait_for_settled()
        state = self._state
        if not is_terminal(state):
            raise UnsettledError(
                f"Cannot convert a {state.status} AsyncOutcome to an Outcome"
            )
        return Outcome(cast(ResultState[T, E], state))

    def __await__(self) -> Generator[Any, None, Outcome[T, E]]:
        return self.to_outcome().__await__()

    async def unwrap_or_none_once_settled(self) -> T | None:
        return (await self.wait_for_settled()).unwrap_or_none()

    async def unwrap_or_raise_once_settled(self) -> T:
        return (await self.wait_for_settled()).unwrap_or_raise()

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def listen(
        self,
        callback: Listener,
        *,
        immediate: bool = True,
        notify_on_progress: bool = False,
        debounce_ms: Duration | None = 0,
    ) -> Callable[[], None]:
        """Register ``callback(outcome, old_state)`` for state changes.

        Args:
            callback: Called synchronously on every state change
            immediate: Also call it now with the current state
            notify_on_progress: Deliver progress-only updates too
            debounce_ms: 0 delivers everything; a finite delay holds back
                loading states until they have lasted that long; None or
                math.inf never delivers loading states

        Returns:
            A function that removes the listener
        """
        listener_id = next(self._ids)
        entry = _ListenerEntry(
            callback=callback,
            notify_on_progress=notify_on_progress,
            debounce_ms=parse_duration(debounce_ms),
        )
        self._listeners[listener_id] = entry
        if immediate:
            self._dispatch(entry, None, False)

        def unsubscribe() -> None:
            removed = self._listeners.pop(listener_id, None)
            if removed is not None:
                removed.active = False
                removed.cancel_timer()

        return unsubscribe

    def listen_until_settled(
        self,
        callback: Listener,
        *,
        immediate: bool = True,
        notify_on_progress: bool = False,
        debounce_ms: Duration | None = 0,
    ) -> Callable[[], None]:
        """Like listen(), but unsubscribes after delivering a terminal state."""
        unsubscribe: Callable[[], None] | None = None
        settled = False

        def until_settled(
            outcome: AsyncOutcome[Any, Any], old_state: AsyncState[Any, Any] | None
        ) -> None:
            nonlocal settled
            callback(outcome, old_state)
            if is_terminal(outcome.state):
                settled = True
                if unsubscribe is not None:
                    unsubscribe()

        unsubscribe = self.listen(
            until_settled,
            immediate=immediate,
            notify_on_progress=notify_on_progress,
            debounce_ms=debounce_ms,
        )
        if settled:
            unsubscribe()
        return unsubscribe

    def _dispatch(
        self,
        entry: _ListenerEntry,
        old_state: AsyncState[T, E] | None,
        progress_only: bool,
    ) -> None:
        if progress_only and not entry.notify_on_progress:
            return
        if entry.debounce_ms <= 0:
            entry.callback(self, old_state)
            return

        if isinstance(self._state, Loading):
            if math.isinf(entry.debounce_ms):
                return
            if entry.loading_delivered:
                # Spinner already shown for this cycle
                entry.callback(self, old_state)
            elif entry.timer is None:
                loop = asyncio.get_running_loop()
                entry.timer = loop.call_later(
                    entry.debounce_ms / 1000, self._fire_debounced, entry, old_state
                )
            return

        entry.cancel_timer()
        entry.loading_delivered = False
        entry.callback(self, old_state)

    def _fire_debounced(
        self, entry: _ListenerEntry, old_state: AsyncState[T, E] | None
    ) -> None:
        entry.timer = None
        if not entry.active or not isinstance(self._state, Loading):
            return
        entry.loading_delivered = True
        entry.callback(self, old_state)

    # -------------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------------

    def chain(self, fn: ChainFunction[T, O, E2]) -> AsyncOutcome[O, E | E2]:
        """Once settled, feed the success value to ``fn``.

        ``fn`` may return an Outcome or an awaitable of one. Errors skip ``fn``.
        """

        async def build() -> Outcome[Any, Any]:
            settled = await self.to_outcome()
            state = settled.state
            if isinstance(state, Failure):
                return settled
            result = fn(state.value)
            if inspect.isawaitable(result):
                result = await result
            return result

        return AsyncOutcome.from_result_awaitable(build())

    def flat_chain(self, fn: FlatChainFunction[T, O, E2]) -> AsyncOutcome[O, E | E2]:
        """Like chain(), but ``fn`` returns an AsyncOutcome that is awaited too."""

        async def build() -> Outcome[Any, Any]:
            settled = await self.to_outcome()
            state = settled.state
            if isinstance(state, Failure):
                return settled
            return await fn(state.value).to_outcome()

        return AsyncOutcome.from_result_awaitable(build())

    def _copy_state(
        self, outcome: AsyncOutcome[Any, Any], old_state: AsyncState[Any, Any] | None
    ) -> None:
        state = outcome.state
        current = self._state
        progress_only = (
            isinstance(state, Loading)
            and isinstance(current, Loading)
            and state.pending is current.pending
        )
        self._set_state(state, progress_only=progress_only)

    def _link(
        self, parent: AsyncOutcome[Any, Any], unsubscribe: Callable[[], None]
    ) -> Callable[[], None]:
        if self._parent is not None:
            self._parent.detach()

        def detach() -> None:
            unsubscribe()
            if self._parent is link:
                self._parent = None

        link = _ParentLink(parent=weakref.ref(parent), detach=detach)
        self._parent = link
        return detach

    def detach(self) -> None:
        """Stop following the current parent, if any."""
        if self._parent is not None:
            self._parent.detach()

    def mirror(self, other: AsyncOutcome[T, E]) -> Callable[[], None]:
        """Keep this outcome's state a live copy of ``other``'s.

        Returns the detach function.
        """
        unsubscribe = other.listen(
            self._copy_state, immediate=True, notify_on_progress=True
        )
        return self._link(other, unsubscribe)

    def mirror_until_settled(self, other: AsyncOutcome[T, E]) -> Callable[[], None]:
        """Like mirror(), but detaches once ``other`` reaches a terminal state."""
        detach: Callable[[], None] | None = None

        def copy_until_settled(
            outcome: AsyncOutcome[Any, Any], old_state: AsyncState[Any, Any] | None
        ) -> None:
            self._copy_state(outcome, old_state)
            if detach is not None and is_terminal(outcome.state):
                detach()

        unsubscribe = other.listen(
            copy_until_settled, immediate=True, notify_on_progress=True
        )
        detach = self._link(other, unsubscribe)
        if is_terminal(other.state):
            detach()
        return detach

    def to_debounced(self, ms: Duration | None) -> AsyncOutcome[T, E]:
        """A new outcome mirroring this one through a debounced listener."""
        debounced: AsyncOutcome[T, E] = AsyncOutcome()
        unsubscribe = self.listen(
            debounced._copy_state,
            immediate=True,
            notify_on_progress=True,
            debounce_ms=ms,
        )
        debounced._link(self, unsubscribe)
        return debounced

    @staticmethod
    def ensure_available(
        results: Iterable[AsyncOutcome[Any, Any]],
    ) -> AsyncOutcome[list[Any], Any]:
        """Settle with the list of all values once every input has succeeded.

        The first error in input order wins. An empty input succeeds with [].
        """
        results = list(results)
        if not results:
            return AsyncOutcome.ok([])

        async def collect() -> Outcome[list[Any], Any]:
            settled = [await result.to_outcome() for result in results]
            for outcome in settled:
                if outcome.is_error():
                    return outcome
            return Outcome.ok([outcome.unwrap_or_raise() for outcome in settled])

        return AsyncOutcome.from_result_awaitable(collect())

    # -------------------------------------------------------------------------
    # Sequencing
    # -------------------------------------------------------------------------

    def __iter__(self) -> Generator[AsyncOutcome[T, E], Any, T]:
        # Lets sequenced generators write ``value = yield from outcome``
        value = yield self
        return cast(T, value)

    @staticmethod
    async def _drive(iterator: StepGenerator[T]) -> Outcome[T, Any]:
        """Run a step generator, stopping at the first error."""
        try:
            step = next(iterator)
            while True:
                if isinstance(step, AsyncOutcome):
                    settled = await step.to_outcome()
                elif isinstance(step, Outcome):
                    settled = step
                else:
                    raise TypeError(f"Expected Outcome or AsyncOutcome step, got {type(step)}")
                state = settled.state
                if isinstance(state, Failure):
                    return Outcome.err(state.error)
                step = iterator.send(state.value)
        except StopIteration as stop:
            return Outcome.ok(stop.value)
        finally:
            iterator.close()

    @staticmethod
    def run(
        generator_fn: Callable[[NotifyProgress], StepGenerator[T]],
    ) -> AsyncOutcome[T, Any]:
        """Drive a step generator into a new AsyncOutcome.

        ``generator_fn`` receives a ``notify_progress`` callback and yields
        Outcome/AsyncOutcome steps, receiving each success value back.

        Usage:
            def load_profile(notify_progress):
                user = yield fetch_user("123")
                notify_progress({"user": True})
                posts = yield from fetch_posts(user.id)
                return Profile(user, posts)

            profile = AsyncOutcome.run(load_profile)
        """
        result: AsyncOutcome[T, Any] = AsyncOutcome()
        result.run_in_place(generator_fn)
        return result

    def run_in_place(
        self, generator_fn: Callable[[NotifyProgress], StepGenerator[T]]
    ) -> None:
        """Like run(), but starts a new loading cycle on this instance."""
        iterator = generator_fn(self.update_progress)
        self.update_from_result_awaitable(AsyncOutcome._drive(iterator))

    @staticmethod
    def derived_from_parent(
        parent: AsyncOutcome[Any, Any],
        generator_fn: Callable[[Any, NotifyProgress], StepGenerator[T]],
    ) -> AsyncOutcome[T, Any]:
        """An outcome that re-runs ``generator_fn`` each time ``parent`` succeeds.

        Idle, loading and error states of the parent are copied as is.
        """
        derived: AsyncOutcome[T, Any] = AsyncOutcome()

        def on_parent(
            outcome: AsyncOutcome[Any, Any], old_state: AsyncState[Any, Any] | None
        ) -> None:
            state = outcome.state
            if isinstance(state, Success):
                derived.run_in_place(
                    lambda notify_progress: generator_fn(state.value, notify_progress)
                )
            else:
                derived._set_state(state)

        unsubscribe = parent.listen(on_parent, immediate=True)
        derived._link(parent, unsubscribe)
        return derived

    def derive(
        self, generator_fn: Callable[[T, NotifyProgress], StepGenerator[O]]
    ) -> AsyncOutcome[O, Any]:
        return AsyncOutcome.derived_from_parent(self, generator_fn)


FlatChainFunction = Callable[[T], AsyncOutcome[O, E2]]


__all__ = ["AsyncOutcome", "ChainFunction", "FlatChainFunction", "StepGenerator"]
