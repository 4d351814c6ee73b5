"""Shared fixtures for unit tests."""

from collections.abc import Iterator

import pytest

from momo.reactor import Reactor


@pytest.fixture
def reactor() -> Iterator[Reactor]:
    """Reactor closed after the test."""
    reactor = Reactor()
    yield reactor
    reactor.close()
