"""unwrapped - asynchronous results as observable values for Python."""

import logging

from unwrapped.async_outcome import AsyncOutcome
from unwrapped.cache import KeyedCache, create_cache, default_key
from unwrapped.collection import OutcomeCollection
from unwrapped.errors import (
    DEFECT_CODE,
    DomainError,
    UnsettledError,
    UnwrapError,
    UnwrappedError,
    reset_error_sink,
    set_error_sink,
)
from unwrapped.outcome import Outcome
from unwrapped.timing import delay, parse_duration

# Core types
from unwrapped.types import (
    AsyncState,
    CacheEntry,
    CollectionState,
    Duration,
    Failure,
    Idle,
    LazyAction,
    Loading,
    RefetchPolicy,
    ResultState,
    Success,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "DEFECT_CODE",
    "AsyncOutcome",
    "AsyncState",
    "CacheEntry",
    "CollectionState",
    "DomainError",
    "Duration",
    "Failure",
    "Idle",
    "KeyedCache",
    "LazyAction",
    "Loading",
    "Outcome",
    "OutcomeCollection",
    "RefetchPolicy",
    "ResultState",
    "Success",
    "UnsettledError",
    "UnwrapError",
    "UnwrappedError",
    "create_cache",
    "default_key",
    "delay",
    "parse_duration",
    "reset_error_sink",
    "set_error_sink",
]
