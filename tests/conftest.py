"""Shared pytest fixtures."""

import pytest

from unwrapped import DomainError, reset_error_sink, set_error_sink


@pytest.fixture(autouse=True)
def _restore_error_sink():
    """Every test starts and ends with the default error sink."""
    reset_error_sink()
    yield
    reset_error_sink()


@pytest.fixture
def reported_errors() -> list[DomainError]:
    """Collect every DomainError reported during the test."""
    errors: list[DomainError] = []
    set_error_sink(errors.append)
    return errors
