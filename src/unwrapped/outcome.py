"""Outcome - a synchronous success/error value.

Provides:
- Outcome.ok() / Outcome.err() / Outcome.err_tag(): constructors
- unwrap_* accessors and chain() / flat_chain() composition
- try_function() / try_awaitable(): the only place exceptions become errors
- Outcome.run(): drive a generator of Outcome steps synchronously
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Generator
from typing import Any, Generic, TypeVar, cast

from unwrapped.errors import DomainError, UnwrapError
from unwrapped.types import Failure, ResultState, Success

T = TypeVar("T")
E = TypeVar("E")
O = TypeVar("O")  # noqa: E741
E2 = TypeVar("E2")
D = TypeVar("D")

ErrorMapper = Callable[[Exception], E]


class Outcome(Generic[T, E]):
    """An immutable success or error value."""

    __slots__ = ("_state",)

    def __init__(self, state: ResultState[T, E]) -> None:
        if not isinstance(state, (Success, Failure)):
            raise TypeError(f"Expected Success or Failure, got {type(state)}")
        self._state = state

    @property
    def state(self) -> ResultState[T, E]:
        return self._state

    def __repr__(self) -> str:
        return f"Outcome({self._state!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Outcome):
            return NotImplemented
        return self._state == other._state

    __hash__ = None  # type: ignore[assignment]

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @staticmethod
    def ok(value: T) -> Outcome[T, Any]:
        return Outcome(Success(value))

    @staticmethod
    def err(error: E) -> Outcome[Any, E]:
        return Outcome(Failure(error))

    @staticmethod
    def err_tag(
        code: str, message: str | None = None, cause: object | None = None
    ) -> Outcome[Any, DomainError]:
        """Shorthand for ``Outcome.err(DomainError(code, message, cause))``."""
        return Outcome.err(DomainError(code, message, cause))

    @staticmethod
    def try_function(
        fn: Callable[[], T], error_mapper: ErrorMapper[E]
    ) -> Outcome[T, E]:
        """Call ``fn``, mapping any exception it raises to an error Outcome."""
        try:
            value = fn()
        except Exception as e:
            return Outcome.err(error_mapper(e))
        return Outcome.ok(value)

    @staticmethod
    async def try_awaitable(
        awaitable: Awaitable[T], error_mapper: ErrorMapper[E]
    ) -> Outcome[T, E]:
        """Await ``awaitable``, mapping any exception it raises to an error Outcome."""
        try:
            value = await awaitable
        except Exception as e:
            return Outcome.err(error_mapper(e))
        return Outcome.ok(value)

    @staticmethod
    async def try_async_function(
        fn: Callable[[], Awaitable[T]], error_mapper: ErrorMapper[E]
    ) -> Outcome[T, E]:
        """Like try_awaitable(), but also catches exceptions raised by calling ``fn``."""
        try:
            value = await fn()
        except Exception as e:
            return Outcome.err(error_mapper(e))
        return Outcome.ok(value)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

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
        raise UnwrapError("Tried to unwrap an Outcome that is not successful")

    def unwrap_or(self, default: D) -> T | D:
        if isinstance(self._state, Success):
            return self._state.value
        return default

    def unwrap_error_or_none(self) -> E | None:
        if isinstance(self._state, Failure):
            return self._state.error
        return None

    # -------------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------------

    def chain(self, fn: Callable[[T], ResultState[O, E2]]) -> Outcome[O, E | E2]:
        """Apply ``fn`` to the success value; errors pass through untouched."""
        if isinstance(self._state, Success):
            return Outcome(fn(self._state.value))
        return cast("Outcome[O, E | E2]", self)

    def flat_chain(self, fn: Callable[[T], Outcome[O, E2]]) -> Outcome[O, E | E2]:
        """Like chain(), but ``fn`` returns an Outcome."""
        if isinstance(self._state, Success):
            return fn(self._state.value)
        return cast("Outcome[O, E | E2]", self)

    def __iter__(self) -> Generator[Outcome[T, E], Any, T]:
        # Lets sequenced generators write ``value = yield from outcome``
        value = yield self
        return cast(T, value)

    @staticmethod
    def run(
        generator_fn: Callable[[], Generator[Outcome[Any, E], Any, T]],
    ) -> Outcome[T, E]:
        """Drive a generator of Outcome steps synchronously.

        Each yielded Outcome is inspected: an error aborts the run and is
        returned as is, a success resumes the generator with its value.
        The generator's return value becomes the final success.

        Usage:
            def steps():
                a = yield Outcome.ok(1)
                b = yield from parse(a)
                return a + b

            Outcome.run(steps)
        """
        iterator = generator_fn()
        try:
            step = next(iterator)
            while True:
                if not isinstance(step, Outcome):
                    raise TypeError(f"Expected Outcome step, got {type(step)}")
                state = step._state
                if isinstance(state, Failure):
                    return Outcome.err(state.error)
                step = iterator.send(state.value)
        except StopIteration as stop:
            return Outcome.ok(stop.value)
        finally:
            iterator.close()


__all__ = ["ErrorMapper", "Outcome"]
