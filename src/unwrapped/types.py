"""Core types for the unwrapped library."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Generic,
    Literal,
    TypeVar,
    Union,
)

if TYPE_CHECKING:
    from unwrapped.async_outcome import AsyncOutcome
    from unwrapped.outcome import Outcome

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Idle:
    """Nothing has been requested yet."""

    status: ClassVar[str] = "idle"


@dataclass(frozen=True, slots=True)
class Loading:
    """An operation is in flight.

    ``pending`` resolves exactly once to the Outcome of this loading cycle.
    """

    pending: asyncio.Future[Any]
    progress: Any = None

    status: ClassVar[str] = "loading"


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    value: T

    status: ClassVar[str] = "success"


@dataclass(frozen=True, slots=True)
class Failure(Generic[E]):
    error: E

    status: ClassVar[str] = "error"


ResultState = Union[Success[T], Failure[E]]
AsyncState = Union[Idle, Loading, Success[T], Failure[E]]

TERMINAL_STATES = (Success, Failure)

# Duration type alias
Duration = str | int | float  # "250ms", "30s", "5m" or milliseconds

RefetchPolicy = Literal["refetch", "if-error", "no-refetch"]
REFETCH_POLICIES: tuple[str, ...] = ("refetch", "if-error", "no-refetch")

CollectionState = Literal["any-loading", "all-settled"]

# (outcome, previous_state) -> ignored
Listener = Callable[["AsyncOutcome[Any, Any]", "AsyncState[Any, Any] | None"], Any]
NotifyProgress = Callable[[Any], None]
Action = Callable[[NotifyProgress], Awaitable["Outcome[Any, Any]"]]


@dataclass(frozen=True, slots=True)
class LazyAction(Generic[T, E]):
    """An action that only runs when triggered.

    ``result`` stays idle until ``trigger()`` is called; every call starts a
    new loading cycle on the same ``result`` instance.
    """

    trigger: Callable[[], "AsyncOutcome[T, E]"]
    result: "AsyncOutcome[T, E]"


@dataclass(slots=True)
class CacheEntry(Generic[T, E]):
    """A cached AsyncOutcome with refetch metadata."""

    outcome: "AsyncOutcome[T, E]"
    params: Any
    valid: bool = True
    last_settled_at: int | None = None  # Unix timestamp ms
    ttl: float | None = None  # ms, None = unbounded


def is_terminal(state: object) -> bool:
    return isinstance(state, TERMINAL_STATES)


__all__ = [
    "Action",
    "AsyncState",
    "CacheEntry",
    "CollectionState",
    "Duration",
    "Failure",
    "Idle",
    "LazyAction",
    "Listener",
    "Loading",
    "NotifyProgress",
    "REFETCH_POLICIES",
    "RefetchPolicy",
    "ResultState",
    "Success",
    "TERMINAL_STATES",
    "is_terminal",
]
