"""Error values, misuse exceptions and the injectable error sink."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import InitVar, dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Code carried by errors that come from a broken async contract
DEFECT_CODE = "defect"

ErrorSink = Callable[["DomainError"], Any]


@dataclass(frozen=True)
class DomainError:
    """A business-originated failure value.

    Errors are plain values that travel through Outcome/AsyncOutcome
    chains; they are never raised. Every construction is reported to the
    current error sink unless ``report=False``.
    """

    code: str
    message: str | None = None
    cause: object | None = None
    report: InitVar[bool] = True

    def __post_init__(self, report: bool) -> None:
        if report:
            _sink(self)

    def __str__(self) -> str:
        return f"Error {self.code}: {self.message or ''}"

    @property
    def is_defect(self) -> bool:
        return self.code == DEFECT_CODE


def defect(exc: BaseException) -> DomainError:
    """Wrap an unexpected exception into the defect error code."""
    return DomainError(DEFECT_CODE, str(exc) or type(exc).__name__, exc)


class UnwrappedError(Exception):
    """Base class for misuse of the unwrapped API."""


class UnwrapError(UnwrappedError):
    """Raised when unwrapping a result that is not successful."""


class UnsettledError(UnwrappedError):
    """Raised when an idle or unsettled AsyncOutcome is converted to an Outcome."""


# -----------------------------------------------------------------------------
# Error sink
# -----------------------------------------------------------------------------


def _log_error(error: DomainError) -> None:
    if isinstance(error.cause, BaseException):
        logger.error(str(error), exc_info=error.cause)
    else:
        logger.error(str(error))


_sink: ErrorSink = _log_error


def set_error_sink(sink: ErrorSink | None) -> None:
    """Replace the sink that receives every reported DomainError.

    Passing None silences reporting entirely.
    """
    global _sink
    _sink = sink if sink is not None else _ignore


def reset_error_sink() -> None:
    """Restore the default logging sink."""
    global _sink
    _sink = _log_error


def _ignore(error: DomainError) -> None:
    pass


__all__ = [
    "DEFECT_CODE",
    "DomainError",
    "ErrorSink",
    "UnsettledError",
    "UnwrapError",
    "UnwrappedError",
    "defect",
    "reset_error_sink",
    "set_error_sink",
]
